"""Core ledger types: transfers, transactions, batches and receipts."""

from __future__ import annotations

import abc
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from .codec import DecodeError, Reader, Writer
from .hashing import Blake3Hasher

TxId = bytes


@dataclass(frozen=True)
class Transfer:
    from_: str
    to: str
    amount: int
    nonce: int = 0
    payload: Optional[bytes] = None

    def to_json(self) -> dict[str, Any]:
        return {
            "from": self.from_,
            "to": self.to,
            "amount": self.amount,
            "nonce": self.nonce,
            "payload": None if self.payload is None else list(self.payload),
        }

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> "Transfer":
        try:
            payload = obj.get("payload")
            return cls(
                from_=str(obj["from"]),
                to=str(obj["to"]),
                amount=int(obj["amount"]),
                nonce=int(obj["nonce"]),
                payload=None if payload is None else bytes(payload),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"invalid transfer: {exc}") from exc


@dataclass(frozen=True)
class Status:
    """Committed when ``reason`` is None, otherwise rejected with that reason."""

    reason: Optional[str] = None

    @classmethod
    def committed(cls) -> "Status":
        return cls(None)

    @classmethod
    def rejected(cls, reason: str) -> "Status":
        return cls(reason)

    @property
    def is_committed(self) -> bool:
        return self.reason is None

    def to_json(self) -> Any:
        return "Committed" if self.reason is None else {"Rejected": self.reason}


def now_ms() -> int:
    """Milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def make_tx_id(transfer: Transfer) -> TxId:
    h = Blake3Hasher()
    h.update(transfer.from_.encode("utf-8"))
    h.update(transfer.to.encode("utf-8"))
    h.update(transfer.amount.to_bytes(8, "little"))
    h.update(transfer.nonce.to_bytes(8, "little"))
    if transfer.payload is not None:
        h.update(transfer.payload)
    return h.digest()


@dataclass(frozen=True)
class Tx:
    id: TxId
    transfer: Transfer
    submitted_unix_ms: int

    @classmethod
    def create(cls, transfer: Transfer) -> "Tx":
        return cls(make_tx_id(transfer), transfer, now_ms())


@dataclass
class Batch:
    id: int
    txs: list[Tx] = field(default_factory=list)


@dataclass(frozen=True)
class Receipt:
    tx_id: TxId
    status: Status
    block_height: int
    latency_ms: int

    def to_json(self) -> dict[str, Any]:
        return {
            "tx_id": list(self.tx_id),
            "status": self.status.to_json(),
            "block_height": self.block_height,
            "latency_ms": self.latency_ms,
        }


class SubmitApi(abc.ABC):
    """What a node offers to clients."""

    @abc.abstractmethod
    async def submit_transfer(self, transfer: Transfer) -> Receipt:
        ...

    @abc.abstractmethod
    async def get_balance(self, addr: str) -> int:
        ...


def _write_tx(w: Writer, tx: Tx) -> None:
    t = tx.transfer
    w.raw(tx.id).string(t.from_).string(t.to).u64(t.amount).u64(t.nonce)
    if t.payload is None:
        w.raw(b"\x00")
    else:
        w.raw(b"\x01").bytes(t.payload)
    w.u128(tx.submitted_unix_ms)


def _read_tx(r: Reader) -> Tx:
    tx_id = r.raw(32)
    sender, recipient = r.string(), r.string()
    amount, nonce = r.u64(), r.u64()
    tag = r.raw(1)
    if tag == b"\x00":
        payload = None
    elif tag == b"\x01":
        payload = r.bytes()
    else:
        raise DecodeError(f"invalid option tag {tag!r}")
    return Tx(tx_id, Transfer(sender, recipient, amount, nonce, payload), r.u128())


def encode_batch(batch: Batch) -> bytes:
    w = Writer().u64(batch.id).u64(len(batch.txs))
    for tx in batch.txs:
        _write_tx(w, tx)
    return w.getvalue()


def decode_batch(data: bytes) -> Batch:
    r = Reader(data)
    batch_id = r.u64()
    txs = [_read_tx(r) for _ in range(r.u64())]
    if not r.at_end():
        raise DecodeError("trailing bytes after batch")
    return Batch(batch_id, txs)