"""HotStuff-style consensus over reliably broadcast, erasure-coded batches."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Iterator, Optional, Union

from .codec import DecodeError, Reader, Writer
from .crypto import SIGNATURE_LENGTH, PubKey, SecretKey, Sig, sign, verify
from .da import DaProof, MerkleProof, digest, encode as da_encode, proof_verify
from .erasure import ErasureError, ReedSolomon
from .hashing import blake3
from .store import QcTcStore, QuorumCert, Signed, TimeoutCert
from .transport import Address, NetOut, Received
from .types import Batch, decode_batch, encode_batch

log = logging.getLogger(__name__)

DA_K = 2
DA_M = 1
_MAX_PAYLOAD_PAD = 64


@dataclass(frozen=True)
class Validator:
    id: int
    addr: Address
    pubkey: PubKey


@dataclass
class Validators:
    self_id: int
    nodes: list[Validator]

    def __len__(self) -> int:
        return len(self.nodes)

    def f(self) -> int:
        """Number of faulty validators tolerated."""
        return max(len(self.nodes) - 1, 0) // 3

    def quorum(self) -> int:
        return 2 * self.f() + 1

    def leader_for(self, view: int) -> Validator:
        if view < 1:
            raise ValueError("views start at 1")
        if not self.nodes:
            raise ValueError("no validators")
        return self.nodes[(view - 1) % len(self.nodes)]

    def peers(self) -> Iterator[Validator]:
        return (v for v in self.nodes if v.id != self.self_id)

    def get_pub(self, voter_id: int) -> Optional[PubKey]:
        return next((v.pubkey for v in self.nodes if v.id == voter_id), None)


@dataclass
class KeySet:
    my_sk: SecretKey
    my_pk: PubKey
    pks: dict[int, PubKey]

    def sign(self, data: bytes) -> Sig:
        return sign(self.my_sk, data)

    def verify(self, voter: int, data: bytes, sig: Sig) -> bool:
        pk = self.pks.get(voter)
        return pk is not None and verify(pk, data, sig)


def sign_bytes(tag: str, data: bytes) -> bytes:
    """The bytes actually signed: the tag followed by the hash of ``data``."""
    return tag.encode("utf-8") + blake3(data)


def _view_bytes(view: int) -> bytes:
    return view.to_bytes(8, "little")


class RbcState:
    """Reliable-broadcast bookkeeping, keyed by Merkle root."""

    def __init__(self) -> None:
        self.shards: dict[bytes, list[tuple[int, bytes]]] = {}
        self.echo: dict[bytes, set[int]] = {}
        self.ready: dict[bytes, set[int]] = {}
        self.payloads: dict[bytes, bytes] = {}

    def push_shard(self, root: bytes, index: int, data: bytes) -> None:
        self.shards.setdefault(root, []).append((index, bytes(data)))

    def try_reconstruct(self, root: bytes, k: int, m: int) -> bool:
        """Rebuild the payload once enough shards are known; True if it is available."""
        if root in self.payloads:
            return True
        received = self.shards.get(root, [])
        if len(received) < k:
            return False
        total = k + m
        slots: list[Optional[bytes]] = [None] * total
        for index, data in received:
            if index < total:
                slots[index] = data
        try:
            ReedSolomon(k, m).reconstruct(slots)
        except ErasureError:
            return False
        self.payloads[root] = b"".join(slots[:k]).rstrip(b"\0")
        return True

    def has_payload(self, root: bytes) -> bool:
        return root in self.payloads

    def get_payload(self, root: bytes) -> Optional[bytes]:
        return self.payloads.get(root)


def _write_proof(w: Writer, proof: MerkleProof) -> None:
    w.raw(proof.root).u32(proof.index).u64(len(proof.path))
    for sibling in proof.path:
        w.raw(sibling)


def _read_proof(r: Reader) -> MerkleProof:
    root = r.raw(32)
    index = r.u32()
    path = tuple(r.raw(32) for _ in range(r.u64()))
    return MerkleProof(root, index, path)


def _write_da(w: Writer, proof: DaProof) -> None:
    w.u64(len(proof.ready_signers))
    for signer in proof.ready_signers:
        w.u32(signer)
    w.raw(proof.merkle_root).u32(proof.k).u32(proof.m)


def _read_da(r: Reader) -> DaProof:
    signers = tuple(r.u32() for _ in range(r.u64()))
    return DaProof(signers, r.raw(32), r.u32(), r.u32())


def _write_opt(w: Writer, cert) -> None:
    if cert is None:
        w.raw(b"\x00")
    else:
        w.raw(b"\x01").bytes(cert.encode())


def _read_opt(r: Reader, cls):
    tag = r.raw(1)
    if tag == b"\x00":
        return None
    if tag == b"\x01":
        return cls.decode(r.bytes())
    raise DecodeError(f"invalid option tag {tag!r}")


def _read_sig(r: Reader) -> Sig:
    return Sig(r.raw(SIGNATURE_LENGTH))


@dataclass(frozen=True)
class RbcShard:
    sender: int
    root: bytes
    shard_index: int
    data: bytes
    proof: MerkleProof

    def _write(self, w: Writer) -> None:
        w.u32(self.sender).raw(self.root).u32(self.shard_index).bytes(self.data)
        _write_proof(w, self.proof)

    @classmethod
    def _read(cls, r: Reader) -> "RbcShard":
        return cls(r.u32(), r.raw(32), r.u32(), r.bytes(), _read_proof(r))


@dataclass(frozen=True)
class RbcEcho:
    sender: int
    root: bytes
    sig: Sig

    def _write(self, w: Writer) -> None:
        w.u32(self.sender).raw(self.root).raw(self.sig.data)

    @classmethod
    def _read(cls, r: Reader) -> "RbcEcho":
        return cls(r.u32(), r.raw(32), _read_sig(r))


@dataclass(frozen=True)
class RbcReady:
    sender: int
    root: bytes
    sig: Sig

    def _write(self, w: Writer) -> None:
        w.u32(self.sender).raw(self.root).raw(self.sig.data)

    @classmethod
    def _read(cls, r: Reader) -> "RbcReady":
        return cls(r.u32(), r.raw(32), _read_sig(r))


@dataclass(frozen=True)
class Proposal:
    view: int
    proposer: int
    root: bytes
    da_proof: DaProof
    high_qc: Optional[QuorumCert]
    sig: Sig

    def _write(self, w: Writer) -> None:
        w.u64(self.view).u32(self.proposer).raw(self.root)
        _write_da(w, self.da_proof)
        _write_opt(w, self.high_qc)
        w.raw(self.sig.data)

    @classmethod
    def _read(cls, r: Reader) -> "Proposal":
        return cls(
            r.u64(), r.u32(), r.raw(32), _read_da(r), _read_opt(r, QuorumCert), _read_sig(r)
        )


@dataclass(frozen=True)
class Vote:
    view: int
    voter: int
    root: bytes
    sig: Sig

    def _write(self, w: Writer) -> None:
        w.u64(self.view).u32(self.voter).raw(self.root).raw(self.sig.data)

    @classmethod
    def _read(cls, r: Reader) -> "Vote":
        return cls(r.u64(), r.u32(), r.raw(32), _read_sig(r))


@dataclass(frozen=True)
class NewView:
    view: int
    voter: int
    high_qc: Optional[QuorumCert]
    tc: Optional[TimeoutCert]
    sig: Sig

    def _write(self, w: Writer) -> None:
        w.u64(self.view).u32(self.voter)
        _write_opt(w, self.high_qc)
        _write_opt(w, self.tc)
        w.raw(self.sig.data)

    @classmethod
    def _read(cls, r: Reader) -> "NewView":
        return cls(
            r.u64(), r.u32(), _read_opt(r, QuorumCert), _read_opt(r, TimeoutCert), _read_sig(r)
        )


@dataclass(frozen=True)
class Timeout:
    view: int
    voter: int
    sig: Sig

    def _write(self, w: Writer) -> None:
        w.u64(self.view).u32(self.voter).raw(self.sig.data)

    @classmethod
    def _read(cls, r: Reader) -> "Timeout":
        return cls(r.u64(), r.u32(), _read_sig(r))


Message = Union[RbcShard, RbcEcho, RbcReady, Proposal, Vote, NewView, Timeout]
_VARIANTS = (RbcShard, RbcEcho, RbcReady, Proposal, Vote, NewView, Timeout)


def encode_message(msg: Message) -> bytes:
    try:
        tag = _VARIANTS.index(type(msg))
    except ValueError:
        raise TypeError(f"not a consensus message: {type(msg).__name__}") from None
    w = Writer().u32(tag)
    msg._write(w)
    return w.getvalue()


def decode_message(data: bytes) -> Message:
    r = Reader(data)
    try:
        tag = r.u32()
        if tag >= len(_VARIANTS):
            raise DecodeError(f"unknown message variant {tag}")
        msg = _VARIANTS[tag]._read(r)
    except DecodeError:
        raise
    except ValueError as exc:
        raise DecodeError(str(exc)) from exc
    if not r.at_end():
        raise DecodeError("trailing bytes after message")
    return msg


def _decode_payload(payload: bytes) -> Optional[Batch]:
    # Reconstruction strips trailing zero bytes; restore as many as the decoder needs.
    for pad in range(_MAX_PAYLOAD_PAD + 1):
        try:
            return decode_batch(payload + bytes(pad))
        except DecodeError:
            continue
    return None


class _Engine:
    def __init__(self, to_exec, net_out, validators: Validators, keys: KeySet,
                 qc_store: Optional[QcTcStore]) -> None:
        self.to_exec = to_exec
        self.net_out = net_out
        self.validators = validators
        self.keys = keys
        self.qc_store = qc_store
        self.me = validators.self_id
        self.height = 1
        self.view = 1
        self.pending_root: Optional[bytes] = None
        self.votes: dict[int, Sig] = {}
        self.rbc = RbcState()
        self.f = validators.f()
        self.quorum = validators.quorum()
        self.prop_start: dict[bytes, float] = {}
        self.high_qc = qc_store.load_high_qc() if qc_store is not None else None

    def _is_leader(self, view: int) -> bool:
        return self.validators.leader_for(view).id == self.me

    async def _broadcast(self, msg: Message) -> None:
        data = encode_message(msg)
        for peer in self.validators.peers():
            await self.net_out.put(NetOut(peer.addr, data))

    async def _send_to(self, addr: Address, msg: Message) -> None:
        await self.net_out.put(NetOut(addr, encode_message(msg)))

    async def on_batch(self, batch: Batch) -> None:
        shards = da_encode(encode_batch(batch), DA_K, DA_M)
        root = shards[0].proof.root
        for s in shards:
            await self._broadcast(RbcShard(self.me, root, s.index, s.data, s.proof))
        echo_sig = self.keys.sign(sign_bytes("RBC_ECHO", root))
        await self._broadcast(RbcEcho(self.me, root, echo_sig))
        if self._is_leader(self.view):
            self.pending_root = root

    async def on_timeout(self) -> None:
        sig = self.keys.sign(sign_bytes("TIMEOUT", _view_bytes(self.view)))
        await self._broadcast(Timeout(self.view, self.me, sig))
        log.debug("timeout sent for view %d", self.view)
        self.view += 1
        sig = self.keys.sign(sign_bytes("NEWVIEW", _view_bytes(self.view)))
        await self._broadcast(NewView(self.view, self.me, self.high_qc, None, sig))

    async def on_message(self, msg: Message) -> None:
        if isinstance(msg, RbcShard):
            if proof_verify(msg.proof, digest(msg.data)):
                self.rbc.push_shard(msg.root, msg.proof.index, msg.data)
                self.rbc.try_reconstruct(msg.root, DA_K, DA_M)
        elif isinstance(msg, RbcEcho):
            await self._on_echo(msg)
        elif isinstance(msg, RbcReady):
            await self._on_ready(msg)
        elif isinstance(msg, Proposal):
            await self._on_proposal(msg)
        elif isinstance(msg, Vote):
            await self._on_vote(msg)
        elif isinstance(msg, NewView):
            if msg.view > self.view:
                self.view = msg.view

    async def _on_echo(self, msg: RbcEcho) -> None:
        if not self.keys.verify(msg.sender, sign_bytes("RBC_ECHO", msg.root), msg.sig):
            return
        echoes = self.rbc.echo.setdefault(msg.root, set())
        echoes.add(msg.sender)
        if len(echoes) >= len(self.validators) - self.f:
            sig = self.keys.sign(sign_bytes("RBC_READY", msg.root))
            await self._broadcast(RbcReady(self.me, msg.root, sig))

    async def _on_ready(self, msg: RbcReady) -> None:
        root = msg.root
        if not self.keys.verify(msg.sender, sign_bytes("RBC_READY", root), msg.sig):
            return
        has_payload = self.rbc.has_payload(root)
        readies = self.rbc.ready.setdefault(root, set())
        readies.add(msg.sender)
        if len(readies) < 2 * self.f + 1 or not has_payload:
            return
        if self.pending_root != root or not self._is_leader(self.view):
            return
        da_proof = DaProof(tuple(sorted(readies)), root, DA_K, DA_M)
        sig = self.keys.sign(sign_bytes("PROPOSAL", _view_bytes(self.view) + root))
        await self._broadcast(Proposal(self.view, self.me, root, da_proof, self.high_qc, sig))
        log.debug("proposal sent for view %d", self.view)
        self.prop_start[root] = time.monotonic()

    async def _on_proposal(self, msg: Proposal) -> None:
        if msg.view < 1:
            return
        pk = self.validators.get_pub(msg.proposer)
        prop_bytes = sign_bytes("PROPOSAL", _view_bytes(msg.view) + msg.root)
        if pk is None or not verify(pk, prop_bytes, msg.sig):
            return
        self.view = msg.view
        if self.rbc.has_payload(msg.root):
            vote_sig = self.keys.sign(sign_bytes("VOTE", _view_bytes(self.view) + msg.root))
            vote = Vote(self.view, self.me, msg.root, vote_sig)
            await self._send_to(self.validators.leader_for(self.view).addr, vote)

    async def _on_vote(self, msg: Vote) -> None:
        if msg.view < 1:
            return
        vote_bytes = sign_bytes("VOTE", _view_bytes(msg.view) + msg.root)
        if not self.keys.verify(msg.voter, vote_bytes, msg.sig):
            return
        if not self._is_leader(msg.view) or msg.view != self.view:
            return
        self.votes[msg.voter] = msg.sig
        if len(self.votes) < self.quorum:
            return
        root = msg.root
        qc = QuorumCert(
            self.view,
            root,
            tuple(sorted(self.votes)),
            tuple(Signed(v, s) for v, s in sorted(self.votes.items())),
        )
        if self.qc_store is not None:
            self.qc_store.save_high_qc(qc)
        log.debug("quorum certificate formed for view %d", self.view)
        payload = self.rbc.get_payload(root)
        if payload is not None:
            batch = _decode_payload(payload)
            if batch is not None:
                await self.to_exec.put((batch, self.height))
                self.height += 1
                start = self.prop_start.pop(root, None)
                if start is not None:
                    log.debug("proposal to commit took %.6fs", time.monotonic() - start)
        self.votes.clear()
        self.pending_root = None
        self.view += 1


async def run_hotstuff(from_mempool, to_exec, pacemaker_ms, net_out, net_in,
                       validators, keys, qc_store=None) -> None:
    """Run consensus until ``None`` arrives on ``from_mempool``.

    Committed batches go to ``to_exec`` as ``(batch, height)`` pairs. The pacemaker
    fires when ``pacemaker_ms`` passes without any input.
    """
    engine = _Engine(to_exec, net_out, validators, keys, qc_store)
    timeout = pacemaker_ms / 1000
    batch_get = asyncio.ensure_future(from_mempool.get())
    event_get = asyncio.ensure_future(net_in.get())
    try:
        while True:
            done, _ = await asyncio.wait(
                {batch_get, event_get}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
            if not done:
                await engine.on_timeout()
                continue
            if batch_get in done:
                batch = batch_get.result()
                if batch is None:
                    break
                await engine.on_batch(batch)
                batch_get = asyncio.ensure_future(from_mempool.get())
            if event_get in done:
                event = event_get.result()
                event_get = asyncio.ensure_future(net_in.get())
                if isinstance(event, Received):
                    try:
                        msg = decode_message(event.data)
                    except DecodeError:
                        msg = None
                    if msg is not None:
                        await engine.on_message(msg)
    finally:
        for fut in (batch_get, event_get):
            if not fut.done():
                fut.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await fut
    log.info("consensus loop ended")