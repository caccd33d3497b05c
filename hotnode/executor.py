"""Account-balance execution engines that apply committed batches."""

from __future__ import annotations

import abc
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterable

from .types import Batch, Receipt, Status, Tx, now_ms

log = logging.getLogger(__name__)

U64_MAX = 2**64 - 1
GENESIS_ACCOUNT = "alice"
GENESIS_BALANCE = 1_000_000_000_000


@dataclass(frozen=True)
class AccountState:
    addr: str
    ver: int
    bal: int
    last_update_height: int

    def to_json(self) -> dict[str, Any]:
        return {
            "addr": self.addr,
            "ver": self.ver,
            "bal": self.bal,
            "last_update_height": self.last_update_height,
        }

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> "AccountState":
        try:
            state = cls(
                addr=str(obj["addr"]),
                ver=int(obj["ver"]),
                bal=int(obj["bal"]),
                last_update_height=int(obj["last_update_height"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"invalid account state: {exc}") from exc
        if min(state.ver, state.bal, state.last_update_height) < 0:
            raise ValueError("account state fields must be non-negative")
        return state


class Executor(abc.ABC):
    """Applies batches of transactions to account state."""

    @abc.abstractmethod
    def balance(self, addr: str) -> int:
        ...

    @abc.abstractmethod
    def apply_batch(self, batch: Batch, block_height: int) -> list[Receipt]:
        ...

    @abc.abstractmethod
    def last_height(self) -> int:
        ...

    @abc.abstractmethod
    def snapshot(self) -> list[AccountState]:
        ...

    @abc.abstractmethod
    def diff_since(self, since: int) -> list[AccountState]:
        ...

    @abc.abstractmethod
    def restore(self, replace: bool, items: Iterable[AccountState]) -> None:
        ...


def _receipt(tx: Tx, status: Status, block_height: int) -> Receipt:
    latency = max(0, now_ms() - tx.submitted_unix_ms)
    return Receipt(tx.id, status, block_height, latency)


class InsufficientFunds(Exception):
    """Raised internally when a debit exceeds the account balance."""


class SimpleExecutor(Executor):
    """Sequential executor; starts with the genesis account funded."""

    def __init__(self) -> None:
        # addr -> (version, balance, last update height)
        self._accounts: dict[str, tuple[int, int, int]] = {}
        self._last_height = 0
        self._lock = threading.RLock()
        self._credit(GENESIS_ACCOUNT, GENESIS_BALANCE, 0)

    def _credit(self, addr: str, amount: int, height: int) -> None:
        with self._lock:
            ver, bal, _ = self._accounts.get(addr, (0, 0, 0))
            self._accounts[addr] = (ver + 1, min(bal + amount, U64_MAX), height)

    def _debit(self, addr: str, amount: int, height: int) -> None:
        with self._lock:
            entry = self._accounts.setdefault(addr, (0, 0, 0))
            ver, bal, _ = entry
            if bal < amount:
                raise InsufficientFunds(f"insufficient funds: {addr}")
            self._accounts[addr] = (ver + 1, bal - amount, height)

    def balance(self, addr: str) -> int:
        with self._lock:
            return self._accounts.get(addr, (0, 0, 0))[1]

    def apply_batch(self, batch: Batch, block_height: int) -> list[Receipt]:
        started = time.perf_counter()
        with self._lock:
            self._last_height = block_height
        receipts = []
        for tx in batch.txs:
            t = tx.transfer
            try:
                self._debit(t.from_, t.amount, block_height)
            except InsufficientFunds as exc:
                status = Status.rejected(str(exc))
            else:
                self._credit(t.to, t.amount, block_height)
                status = Status.committed()
            receipts.append(_receipt(tx, status, block_height))
        log.debug("applied batch %s in %.6fs", batch.id, time.perf_counter() - started)
        return receipts

    def last_height(self) -> int:
        with self._lock:
            return self._last_height

    def snapshot(self) -> list[AccountState]:
        with self._lock:
            return [AccountState(a, v, b, h) for a, (v, b, h) in self._accounts.items()]

    def diff_since(self, since: int) -> list[AccountState]:
        with self._lock:
            return [
                AccountState(a, v, b, h)
                for a, (v, b, h) in self._accounts.items()
                if h > since
            ]

    def restore(self, replace: bool, items: Iterable[AccountState]) -> None:
        with self._lock:
            if replace:
                self._accounts.clear()
            for it in items:
                self._accounts[it.addr] = (it.ver, it.bal, it.last_update_height)


class BlockStmExecutor(Executor):
    """Optimistic executor: validates account versions and retries conflicting transactions."""

    def __init__(self, inner: SimpleExecutor, max_retries: int = 5) -> None:
        self._inner = inner
        self.max_retries = max_retries

    def balance(self, addr: str) -> int:
        return self._inner.balance(addr)

    def apply_batch(self, batch: Batch, block_height: int) -> list[Receipt]:
        started = time.perf_counter()
        inner = self._inner
        txs = batch.txs
        with inner._lock:
            inner._last_height = block_height
        receipts: list[Receipt | None] = [None] * len(txs)
        for _ in range(self.max_retries):
            with inner._lock:
                snapshot = dict(inner._accounts)
            for i, tx in enumerate(txs):
                if receipts[i] is not None:
                    continue
                t = tx.transfer
                from_ver, from_bal, _ = snapshot.get(t.from_, (0, 0, 0))
                to_ver, to_bal, _ = snapshot.get(t.to, (0, 0, 0))
                if from_bal < t.amount:
                    receipts[i] = _receipt(
                        tx, Status.rejected("insufficient funds"), block_height
                    )
                    continue
                with inner._lock:
                    accounts = inner._accounts
                    ver_f, bal_f, _ = accounts.get(t.from_, (from_ver, from_bal, block_height))
                    ver_t, bal_t, _ = accounts.get(t.to, (to_ver, to_bal, block_height))
                    if ver_f == from_ver and ver_t == to_ver and bal_f >= t.amount:
                        accounts[t.from_] = (ver_f + 1, bal_f - t.amount, block_height)
                        accounts[t.to] = (ver_t + 1, bal_t + t.amount, block_height)
                        receipts[i] = _receipt(tx, Status.committed(), block_height)
            if all(r is not None for r in receipts):
                break
        result = [
            r if r is not None else _receipt(tx, Status.rejected("conflict"), block_height)
            for r, tx in zip(receipts, txs)
        ]
        log.debug("applied batch %s in %.6fs", batch.id, time.perf_counter() - started)
        return result

    def last_height(self) -> int:
        return self._inner.last_height()

    def snapshot(self) -> list[AccountState]:
        return self._inner.snapshot()

    def diff_since(self, since: int) -> list[AccountState]:
        return self._inner.diff_since(since)

    def restore(self, replace: bool, items: Iterable[AccountState]) -> None:
        self._inner.restore(replace, items)