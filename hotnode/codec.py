"""Compact little-endian binary encoding with length-prefixed sequences."""

from __future__ import annotations

import io


class DecodeError(ValueError):
    """Raised when binary input is truncated or malformed."""


class Writer:
    """Accumulates encoded values."""

    def __init__(self) -> None:
        self._buf = io.BytesIO()

    def u32(self, value: int) -> "Writer":
        self._buf.write(value.to_bytes(4, "little"))
        return self

    def u64(self, value: int) -> "Writer":
        self._buf.write(value.to_bytes(8, "little"))
        return self

    def u128(self, value: int) -> "Writer":
        self._buf.write(value.to_bytes(16, "little"))
        return self

    def raw(self, data: bytes) -> "Writer":
        self._buf.write(bytes(data))
        return self

    def bytes(self, data: bytes) -> "Writer":
        self.u64(len(data))
        return self.raw(data)

    def string(self, text: str) -> "Writer":
        return self.bytes(text.encode("utf-8"))

    def getvalue(self) -> bytes:
        return self._buf.getvalue()


class Reader:
    """Decodes values from a byte string, front to back."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def raw(self, size: int) -> bytes:
        end = self._pos + size
        if size < 0 or end > len(self._data):
            raise DecodeError(f"need {size} bytes at offset {self._pos}")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def u32(self) -> int:
        return int.from_bytes(self.raw(4), "little")

    def u64(self) -> int:
        return int.from_bytes(self.raw(8), "little")

    def u128(self) -> int:
        return int.from_bytes(self.raw(16), "little")

    def bytes(self) -> bytes:
        return self.raw(self.u64())

    def string(self) -> str:
        try:
            return self.bytes().decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("invalid utf-8 string") from exc

    def at_end(self) -> bool:
        return self._pos == len(self._data)