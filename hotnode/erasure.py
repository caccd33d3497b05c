"""Systematic Reed-Solomon erasure coding over GF(2^8)."""

from __future__ import annotations

from typing import Optional, Sequence

_EXP = [0] * 512
_LOG = [0] * 256
_x = 1
for _i in range(255):
    _EXP[_i] = _x
    _LOG[_x] = _i
    _x <<= 1
    if _x & 0x100:
        _x ^= 0x11D
for _i in range(255, 512):
    _EXP[_i] = _EXP[_i - 255]


def _mul(a: int, b: int) -> int:
    if a == 0 or b == 0:
        return 0
    return _EXP[_LOG[a] + _LOG[b]]


def _inv(a: int) -> int:
    return _EXP[255 - _LOG[a]]


def _pow(a: int, n: int) -> int:
    if n == 0:
        return 1
    if a == 0:
        return 0
    return _EXP[(_LOG[a] * n) % 255]


_MUL_TABLES = [bytes(_mul(c, v) for v in range(256)) for c in range(256)]


class ErasureError(ValueError):
    """Raised for invalid shard configurations or unrecoverable data."""


def _invert(matrix: list[list[int]]) -> list[list[int]]:
    n = len(matrix)
    work = [list(row) + [int(i == j) for j in range(n)] for i, row in enumerate(matrix)]
    for col in range(n):
        pivot = next((r for r in range(col, n) if work[r][col]), None)
        if pivot is None:
            raise ErasureError("singular matrix")
        work[col], work[pivot] = work[pivot], work[col]
        scale = _inv(work[col][col])
        work[col] = [_mul(v, scale) for v in work[col]]
        for r in range(n):
            factor = work[r][col]
            if r != col and factor:
                work[r] = [v ^ _mul(factor, p) for v, p in zip(work[r], work[col])]
    return [row[n:] for row in work]


def _matmul(a: list[list[int]], b: list[list[int]]) -> list[list[int]]:
    result = []
    for row in a:
        out = []
        for col in zip(*b):
            acc = 0
            for x, y in zip(row, col):
                acc ^= _mul(x, y)
            out.append(acc)
        result.append(out)
    return result


def _combine(coeffs: Sequence[int], vectors: Sequence[bytes], length: int) -> bytes:
    acc = 0
    for c, vec in zip(coeffs, vectors):
        if c:
            acc ^= int.from_bytes(bytes(vec).translate(_MUL_TABLES[c]), "little")
    return acc.to_bytes(length, "little")


class ReedSolomon:
    """Codec for ``data_shards`` data shards plus ``parity_shards`` parity shards."""

    def __init__(self, data_shards: int, parity_shards: int) -> None:
        if data_shards <= 0:
            raise ErasureError("too few data shards")
        if parity_shards <= 0:
            raise ErasureError("too few parity shards")
        if data_shards + parity_shards > 256:
            raise ErasureError("too many shards")
        self.data_shards = data_shards
        self.parity_shards = parity_shards
        total = data_shards + parity_shards
        vandermonde = [[_pow(r, c) for c in range(data_shards)] for r in range(total)]
        self._matrix = _matmul(vandermonde, _invert(vandermonde[:data_shards]))

    @property
    def total_shards(self) -> int:
        return self.data_shards + self.parity_shards

    def _check_sizes(self, shards: Sequence[Optional[bytes]]) -> int:
        if len(shards) != self.total_shards:
            raise ErasureError(f"expected {self.total_shards} shards, got {len(shards)}")
        sizes = {len(s) for s in shards if s is not None}
        if len(sizes) > 1:
            raise ErasureError("incorrect shard size")
        size = sizes.pop() if sizes else 0
        if size == 0:
            raise ErasureError("empty shard")
        return size

    def encode(self, shards: list[bytes]) -> list[bytes]:
        """Compute the parity entries of ``shards`` from its data entries, in place."""
        if any(s is None for s in shards):
            raise ErasureError("missing shard")
        size = self._check_sizes(shards)
        data = shards[: self.data_shards]
        for p in range(self.parity_shards):
            row = self._matrix[self.data_shards + p]
            shards[self.data_shards + p] = _combine(row, data, size)
        return shards

    def reconstruct(self, shards: list[Optional[bytes]]) -> list[bytes]:
        """Fill every ``None`` entry of ``shards`` in place."""
        size = self._check_sizes(shards)
        present = [i for i, s in enumerate(shards) if s is not None]
        if len(present) < self.data_shards:
            raise ErasureError("too few shards present")
        if len(present) == self.total_shards:
            return shards
        used = present[: self.data_shards]
        decode = _invert([self._matrix[i] for i in used])
        sub = [shards[i] for i in used]
        for i in range(self.data_shards):
            if shards[i] is None:
                shards[i] = _combine(decode[i], sub, size)
        data = shards[: self.data_shards]
        for i in range(self.data_shards, self.total_shards):
            if shards[i] is None:
                shards[i] = _combine(self._matrix[i], data, size)
        return shards