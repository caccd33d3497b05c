import pytest

from hotnode.crypto import PubKey, SecretKey, Sig, generate, sign, verify

# Test vector 1 from the Ed25519 specification (empty message).
_VECTOR_SK = "9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60"
_VECTOR_PK = "d75a980182b10ab7d54bfed3c964073a0ee172f3daa62325af021a68f707511a"
_VECTOR_SIG = (
    "e5564300c360ac729086e2cc806e828a84877f1eb8e5d974d873e06522490155"
    "5fb8821590a33bacc61e39701cf9b46bd25bf5f0595bbe24655141438e7a100b"
)


def test_sign_and_verify():
    sk, pk = generate()
    sig = sign(sk, b"message")
    assert verify(pk, b"message", sig) is True
    assert verify(pk, b"other", sig) is False


def test_wrong_key_fails():
    sk, _ = generate()
    _, other_pk = generate()
    assert verify(other_pk, b"m", sign(sk, b"m")) is False


def test_hex_round_trip_and_public_key():
    sk, pk = generate()
    assert SecretKey.from_hex(sk.hex()) == sk
    assert PubKey.from_hex(pk.hex()) == pk
    assert sk.public_key() == pk
    assert len(pk.hex()) == 64


def test_length_validation():
    with pytest.raises(ValueError):
        PubKey(b"\x00" * 31)
    with pytest.raises(ValueError):
        Sig(b"\x00" * 63)


def test_signature_deterministic():
    sk = SecretKey.from_hex(_VECTOR_SK)
    expected = Sig(bytes.fromhex(_VECTOR_SIG))
    assert sign(sk, b"") == expected
    assert sign(sk, b"") == expected


def test_known_vector_public_key_and_verify():
    sk = SecretKey.from_hex(_VECTOR_SK)
    pk = sk.public_key()
    assert pk.hex() == _VECTOR_PK
    assert verify(pk, b"", Sig(bytes.fromhex(_VECTOR_SIG))) is True
    assert verify(pk, b"x", Sig(bytes.fromhex(_VECTOR_SIG))) is False