"""Quorum and timeout certificates, and their persistent storage."""

from __future__ import annotations

import abc
import contextlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .codec import DecodeError, Reader, Writer
from .crypto import SIGNATURE_LENGTH, Sig


@dataclass(frozen=True)
class Signed:
    voter: int
    sig: Sig


def _write_sigs(w: Writer, sigs: tuple[Signed, ...]) -> None:
    w.u64(len(sigs))
    for s in sigs:
        w.u32(s.voter).raw(s.sig.data)


def _read_sigs(r: Reader) -> tuple[Signed, ...]:
    return tuple(Signed(r.u32(), Sig(r.raw(SIGNATURE_LENGTH))) for _ in range(r.u64()))


@dataclass(frozen=True)
class QuorumCert:
    view: int
    root: bytes
    voters: tuple[int, ...] = ()
    sigs: tuple[Signed, ...] = ()

    def __post_init__(self) -> None:
        if len(self.root) != 32:
            raise ValueError("root must be 32 bytes")
        object.__setattr__(self, "root", bytes(self.root))
        object.__setattr__(self, "voters", tuple(self.voters))
        object.__setattr__(self, "sigs", tuple(self.sigs))

    def encode(self) -> bytes:
        w = Writer().u64(self.view).raw(self.root).u64(len(self.voters))
        for voter in self.voters:
            w.u32(voter)
        _write_sigs(w, self.sigs)
        return w.getvalue()

    @classmethod
    def decode(cls, data: bytes) -> "QuorumCert":
        r = Reader(data)
        view = r.u64()
        root = r.raw(32)
        voters = tuple(r.u32() for _ in range(r.u64()))
        sigs = _read_sigs(r)
        if not r.at_end():
            raise DecodeError("trailing bytes after quorum certificate")
        return cls(view, root, voters, sigs)


@dataclass(frozen=True)
class TimeoutCert:
    view: int
    sigs: tuple[Signed, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "sigs", tuple(self.sigs))

    def encode(self) -> bytes:
        w = Writer().u64(self.view)
        _write_sigs(w, self.sigs)
        return w.getvalue()

    @classmethod
    def decode(cls, data: bytes) -> "TimeoutCert":
        r = Reader(data)
        view = r.u64()
        sigs = _read_sigs(r)
        if not r.at_end():
            raise DecodeError("trailing bytes after timeout certificate")
        return cls(view, sigs)


class QcTcStore(abc.ABC):
    """Persistence for the highest known certificates."""

    @abc.abstractmethod
    def load_high_qc(self) -> Optional[QuorumCert]:
        ...

    @abc.abstractmethod
    def save_high_qc(self, qc: QuorumCert) -> None:
        ...

    @abc.abstractmethod
    def load_high_tc(self) -> Optional[TimeoutCert]:
        ...

    @abc.abstractmethod
    def save_high_tc(self, tc: TimeoutCert) -> None:
        ...


class FileStore(QcTcStore):
    """Keeps each certificate in its own file inside a directory.

    Reads that fail or hold malformed data yield None; failed writes are ignored.
    """

    def __init__(self, directory: Union[str, os.PathLike]) -> None:
        self.dir = Path(directory)
        with contextlib.suppress(OSError):
            self.dir.mkdir(parents=True, exist_ok=True)

    @property
    def qc_path(self) -> Path:
        return self.dir / "high_qc.bin"

    @property
    def tc_path(self) -> Path:
        return self.dir / "high_tc.bin"

    @staticmethod
    def _load(path: Path, cls):
        try:
            return cls.decode(path.read_bytes())
        except (OSError, DecodeError, ValueError):
            return None

    @staticmethod
    def _save(path: Path, data: bytes) -> None:
        with contextlib.suppress(OSError):
            path.write_bytes(data)

    def load_high_qc(self) -> Optional[QuorumCert]:
        return self._load(self.qc_path, QuorumCert)

    def save_high_qc(self, qc: QuorumCert) -> None:
        self._save(self.qc_path, qc.encode())

    def load_high_tc(self) -> Optional[TimeoutCert]:
        return self._load(self.tc_path, TimeoutCert)

    def save_high_tc(self, tc: TimeoutCert) -> None:
        self._save(self.tc_path, tc.encode())