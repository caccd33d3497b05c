import pytest

from hotnode.codec import DecodeError
from hotnode.types import (
    Batch, Receipt, Status, SubmitApi, Transfer, Tx, decode_batch, encode_batch,
    make_tx_id, now_ms,
)


def test_transfer_json_round_trip():
    t = Transfer("alice", "bob", 5, 3, b"\x01\x02")
    obj = t.to_json()
    assert obj["from"] == "alice"
    assert obj["payload"] == [1, 2]
    assert Transfer.from_json(obj) == t


def test_transfer_from_json_missing_field():
    with pytest.raises(ValueError):
        Transfer.from_json({"from": "a", "to": "b"})


def test_tx_id_deterministic_and_sensitive():
    a = Transfer("alice", "bob", 5)
    assert make_tx_id(a) == make_tx_id(Transfer("alice", "bob", 5))
    assert make_tx_id(a) != make_tx_id(Transfer("alice", "bob", 5, payload=b"x"))
    assert len(make_tx_id(a)) == 32


def test_tx_create_sets_id_and_time():
    before = now_ms()
    tx = Tx.create(Transfer("alice", "bob", 1))
    assert tx.id == make_tx_id(tx.transfer)
    assert before <= tx.submitted_unix_ms <= now_ms()


def test_batch_round_trip():
    batch = Batch(9, [Tx.create(Transfer("alice", "bob", 1)),
                      Tx.create(Transfer("carol", "dave", 2, 7, b"pl"))])
    assert decode_batch(encode_batch(batch)) == batch


def test_decode_batch_truncated():
    data = encode_batch(Batch(1, [Tx.create(Transfer("a", "b", 1))]))
    with pytest.raises(DecodeError):
        decode_batch(data[:-3])


def test_receipt_json_status_shapes():
    ok = Receipt(b"\x00" * 32, Status.committed(), 4, 10).to_json()
    bad = Receipt(b"\x00" * 32, Status.rejected("conflict"), 4, 10).to_json()
    assert ok["status"] == "Committed"
    assert bad["status"] == {"Rejected": "conflict"}
    assert ok["tx_id"] == [0] * 32


def test_submit_api_is_abstract():
    with pytest.raises(TypeError):
        SubmitApi()