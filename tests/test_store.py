import pytest

from hotnode.codec import DecodeError
from hotnode.crypto import Sig
from hotnode.store import FileStore, QuorumCert, Signed, TimeoutCert


def _qc():
    sigs = (Signed(1, Sig(bytes([1]) * 64)), Signed(2, Sig(bytes([2]) * 64)))
    return QuorumCert(view=7, root=bytes(range(32)), voters=(1, 2), sigs=sigs)


def _tc():
    return TimeoutCert(view=4, sigs=(Signed(3, Sig(bytes([3]) * 64)),))


def test_quorum_cert_round_trip():
    qc = _qc()
    assert QuorumCert.decode(qc.encode()) == qc


def test_quorum_cert_encoding_starts_with_view_and_root():
    encoded = _qc().encode()
    assert encoded[:8] == (7).to_bytes(8, "little")
    assert encoded[8:40] == bytes(range(32))


def test_timeout_cert_round_trip():
    tc = _tc()
    assert TimeoutCert.decode(tc.encode()) == tc


def test_decode_truncated_raises():
    with pytest.raises(DecodeError):
        QuorumCert.decode(_qc().encode()[:-1])


def test_decode_trailing_bytes_raises():
    with pytest.raises(DecodeError):
        TimeoutCert.decode(_tc().encode() + b"\x00")


def test_root_must_be_32_bytes():
    with pytest.raises(ValueError):
        QuorumCert(view=1, root=b"short")


def test_file_store_round_trip(tmp_path):
    directory = tmp_path / "nested" / "store"
    store = FileStore(directory)
    assert directory.is_dir()
    assert store.load_high_qc() is None
    assert store.load_high_tc() is None
    store.save_high_qc(_qc())
    store.save_high_tc(_tc())
    reopened = FileStore(directory)
    assert reopened.load_high_qc() == _qc()
    assert reopened.load_high_tc() == _tc()
    assert store.qc_path.name == "high_qc.bin"
    assert store.tc_path.name == "high_tc.bin"


def test_file_store_overwrites(tmp_path):
    store = FileStore(tmp_path)
    store.save_high_qc(_qc())
    newer = QuorumCert(view=9, root=bytes(32))
    store.save_high_qc(newer)
    assert store.load_high_qc() == newer


def test_file_store_corrupt_file_loads_none(tmp_path):
    store = FileStore(tmp_path)
    store.qc_path.write_bytes(b"\x01\x02")
    assert store.load_high_qc() is None