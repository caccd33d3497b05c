"""Ed25519 keys and signatures."""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

PUBLIC_KEY_LENGTH = 32
SECRET_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64


def _check(data: bytes, size: int, what: str) -> bytes:
    data = bytes(data)
    if len(data) != size:
        raise ValueError(f"{what} must be {size} bytes, got {len(data)}")
    return data


@dataclass(frozen=True)
class PubKey:
    data: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", _check(self.data, PUBLIC_KEY_LENGTH, "public key"))

    def hex(self) -> str:
        return self.data.hex()

    @classmethod
    def from_hex(cls, text: str) -> "PubKey":
        return cls(bytes.fromhex(text))


@dataclass(frozen=True)
class SecretKey:
    data: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", _check(self.data, SECRET_KEY_LENGTH, "secret key"))

    def __repr__(self) -> str:
        return "SecretKey(<hidden>)"

    def hex(self) -> str:
        return self.data.hex()

    @classmethod
    def from_hex(cls, text: str) -> "SecretKey":
        return cls(bytes.fromhex(text))

    def _signing_key(self) -> Ed25519PrivateKey:
        return Ed25519PrivateKey.from_private_bytes(self.data)

    def public_key(self) -> PubKey:
        raw = self._signing_key().public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        return PubKey(raw)


@dataclass(frozen=True)
class Sig:
    data: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", _check(self.data, SIGNATURE_LENGTH, "signature"))


def generate() -> tuple[SecretKey, PubKey]:
    """Create a fresh random key pair."""
    raw = Ed25519PrivateKey.generate().private_bytes(
        serialization.Encoding.Raw,
        serialization.PrivateFormat.Raw,
        serialization.NoEncryption(),
    )
    sk = SecretKey(raw)
    return sk, sk.public_key()


def sign(sk: SecretKey, msg: bytes) -> Sig:
    return Sig(sk._signing_key().sign(bytes(msg)))


def verify(pk: PubKey, msg: bytes, sig: Sig) -> bool:
    """True when ``sig`` is a valid signature of ``msg`` under ``pk``."""
    key = Ed25519PublicKey.from_public_bytes(pk.data)
    try:
        key.verify(sig.data, bytes(msg))
    except InvalidSignature:
        return False
    return True