"""BLAKE3 hashing (default 32-byte output, unkeyed mode)."""

from __future__ import annotations

import struct

_MASK = 0xFFFFFFFF
_IV = (
    0x6A09E667, 0xBB67AE85, 0x3C6EF372, 0xA54FF53A,
    0x510E527F, 0x9B05688C, 0x1F83D9AB, 0x5BE0CD19,
)
_PERM = (2, 6, 3, 10, 7, 0, 4, 13, 1, 11, 12, 5, 9, 14, 15, 8)
_CHUNK_START = 1
_CHUNK_END = 2
_PARENT = 4
_ROOT = 8
_BLOCK_LEN = 64
_CHUNK_LEN = 1024


def _g(s: list[int], a: int, b: int, c: int, d: int, mx: int, my: int) -> None:
    s[a] = (s[a] + s[b] + mx) & _MASK
    x = s[d] ^ s[a]
    s[d] = ((x >> 16) | (x << 16)) & _MASK
    s[c] = (s[c] + s[d]) & _MASK
    x = s[b] ^ s[c]
    s[b] = ((x >> 12) | (x << 20)) & _MASK
    s[a] = (s[a] + s[b] + my) & _MASK
    x = s[d] ^ s[a]
    s[d] = ((x >> 8) | (x << 24)) & _MASK
    s[c] = (s[c] + s[d]) & _MASK
    x = s[b] ^ s[c]
    s[b] = ((x >> 7) | (x << 25)) & _MASK


def _round(s: list[int], m: list[int]) -> None:
    _g(s, 0, 4, 8, 12, m[0], m[1])
    _g(s, 1, 5, 9, 13, m[2], m[3])
    _g(s, 2, 6, 10, 14, m[4], m[5])
    _g(s, 3, 7, 11, 15, m[6], m[7])
    _g(s, 0, 5, 10, 15, m[8], m[9])
    _g(s, 1, 6, 11, 12, m[10], m[11])
    _g(s, 2, 7, 8, 13, m[12], m[13])
    _g(s, 3, 4, 9, 14, m[14], m[15])


def _compress(cv, block_words, counter: int, block_len: int, flags: int) -> list[int]:
    s = list(cv) + list(_IV[:4]) + [counter & _MASK, (counter >> 32) & _MASK, block_len, flags]
    m = list(block_words)
    for r in range(7):
        _round(s, m)
        if r < 6:
            m = [m[i] for i in _PERM]
    for i in range(8):
        s[i] ^= s[i + 8]
        s[i + 8] ^= cv[i]
    return s


def _words(block: bytes) -> tuple[int, ...]:
    return struct.unpack("<16I", block.ljust(_BLOCK_LEN, b"\0"))


class _Output:
    def __init__(self, cv, block_words, counter, block_len, flags):
        self.cv = cv
        self.block_words = block_words
        self.counter = counter
        self.block_len = block_len
        self.flags = flags

    def chaining_value(self) -> list[int]:
        return _compress(self.cv, self.block_words, self.counter, self.block_len, self.flags)[:8]

    def root_bytes(self) -> bytes:
        words = _compress(self.cv, self.block_words, 0, self.block_len, self.flags | _ROOT)
        return struct.pack("<8I", *words[:8])


class _ChunkState:
    def __init__(self, key, counter: int):
        self.cv = list(key)
        self.counter = counter
        self.block = b""
        self.blocks_compressed = 0

    def __len__(self) -> int:
        return _BLOCK_LEN * self.blocks_compressed + len(self.block)

    def _start_flag(self) -> int:
        return _CHUNK_START if self.blocks_compressed == 0 else 0

    def update(self, data: bytes) -> None:
        while data:
            if len(self.block) == _BLOCK_LEN:
                self.cv = _compress(
                    self.cv, _words(self.block), self.counter, _BLOCK_LEN, self._start_flag()
                )[:8]
                self.blocks_compressed += 1
                self.block = b""
            take = _BLOCK_LEN - len(self.block)
            self.block += data[:take]
            data = data[take:]

    def output(self) -> _Output:
        return _Output(
            self.cv, _words(self.block), self.counter, len(self.block),
            self._start_flag() | _CHUNK_END,
        )


def _parent_output(left, right) -> _Output:
    return _Output(_IV, tuple(left) + tuple(right), 0, _BLOCK_LEN, _PARENT)


class Blake3Hasher:
    """Incremental BLAKE3 hasher."""

    def __init__(self, data: bytes = b"") -> None:
        self._chunk = _ChunkState(_IV, 0)
        self._stack: list[list[int]] = []
        if data:
            self.update(data)

    def _push_cv(self, cv: list[int], total_chunks: int) -> None:
        while total_chunks & 1 == 0:
            cv = _parent_output(self._stack.pop(), cv).chaining_value()
            total_chunks >>= 1
        self._stack.append(cv)

    def update(self, data) -> "Blake3Hasher":
        data = bytes(data)
        while data:
            if len(self._chunk) == _CHUNK_LEN:
                cv = self._chunk.output().chaining_value()
                total = self._chunk.counter + 1
                self._push_cv(cv, total)
                self._chunk = _ChunkState(_IV, total)
            take = _CHUNK_LEN - len(self._chunk)
            self._chunk.update(data[:take])
            data = data[take:]
        return self

    def digest(self) -> bytes:
        output = self._chunk.output()
        for cv in reversed(self._stack):
            output = _parent_output(cv, output.chaining_value())
        return output.root_bytes()


def blake3(data) -> bytes:
    """Return the 32-byte BLAKE3 hash of ``data``."""
    return Blake3Hasher(data).digest()