"""Data availability: erasure-coded shards committed to by a Merkle tree."""

from __future__ import annotations

from dataclasses import dataclass

from .erasure import ReedSolomon
from .hashing import Blake3Hasher, blake3

ZERO_ROOT = bytes(32)


def digest(data: bytes) -> bytes:
    return blake3(data)


@dataclass(frozen=True)
class MerkleProof:
    root: bytes
    index: int
    path: tuple[bytes, ...]


@dataclass(frozen=True)
class Shard:
    index: int
    k: int
    m: int
    data: bytes
    proof: MerkleProof


@dataclass(frozen=True)
class DaProof:
    ready_signers: tuple[int, ...]
    merkle_root: bytes
    k: int
    m: int


def _merkle_hash(left: bytes, right: bytes) -> bytes:
    return Blake3Hasher().update(left).update(right).digest()


def _next_level(level: list[bytes]) -> list[bytes]:
    return [
        _merkle_hash(level[j], level[j + 1] if j + 1 < len(level) else level[j])
        for j in range(0, len(level), 2)
    ]


def merkle_root(leaves) -> bytes:
    level = list(leaves)
    if not level:
        return ZERO_ROOT
    while len(level) > 1:
        level = _next_level(level)
    return level[0]


def merkle_proof(leaves, index: int) -> tuple[bytes, ...]:
    path = []
    level = list(leaves)
    i = index
    while len(level) > 1:
        if i % 2 == 0:
            path.append(level[i + 1] if i + 1 < len(level) else level[i])
        else:
            path.append(level[i - 1])
        i //= 2
        level = _next_level(level)
    return tuple(path)


def proof_verify(proof: MerkleProof, leaf: bytes) -> bool:
    cur = leaf
    idx = proof.index
    for sibling in proof.path:
        cur = _merkle_hash(cur, sibling) if idx % 2 == 0 else _merkle_hash(sibling, cur)
        idx //= 2
    return cur == proof.root


def encode(payload: bytes, k: int, m: int) -> list[Shard]:
    """Split ``payload`` into ``k`` data shards plus ``m`` parity shards."""
    rs = ReedSolomon(k, m)
    shard_len = max((len(payload) + k - 1) // k, 1)
    shards = [
        payload[i * shard_len:(i + 1) * shard_len].ljust(shard_len, b"\0") for i in range(k)
    ] + [bytes(shard_len)] * m
    rs.encode(shards)
    leaves = [digest(s) for s in shards]
    root = merkle_root(leaves)
    return [
        Shard(i, k, m, data, MerkleProof(root, i, merkle_proof(leaves, i)))
        for i, data in enumerate(shards)
    ]