import asyncio

import pytest

from hotnode.codec import DecodeError
from hotnode.consensus import (
    DA_K,
    DA_M,
    KeySet,
    NewView,
    Proposal,
    RbcEcho,
    RbcReady,
    RbcShard,
    RbcState,
    Timeout,
    Validator,
    Validators,
    Vote,
    decode_message,
    encode_message,
    run_hotstuff,
    sign_bytes,
)
from hotnode.crypto import generate, sign, verify
from hotnode.da import DaProof, encode as da_encode
from hotnode.hashing import blake3
from hotnode.store import FileStore, QuorumCert, Signed, TimeoutCert
from hotnode.transport import Received
from hotnode.types import Batch, Transfer, Tx, encode_batch


def make_cluster(n=4, self_index=0):
    keys = [generate() for _ in range(n)]
    nodes = [Validator(i + 1, ("127.0.0.1", 7001 + i), pk) for i, (_, pk) in enumerate(keys)]
    validators = Validators(self_id=nodes[self_index].id, nodes=nodes)
    sk, pk = keys[self_index]
    keyset = KeySet(sk, pk, {v.id: v.pubkey for v in nodes})
    return validators, keyset, keys


def make_batch():
    txs = [
        Tx.create(Transfer("alice", "bob", 5)),
        Tx.create(Transfer("alice", "carol", 7, nonce=1)),
    ]
    return Batch(1, txs)


def received(msg):
    return Received(("127.0.0.1", 9999), encode_message(msg))


def view_bytes(view):
    return view.to_bytes(8, "little")


async def next_of(queue, kind, timeout=3.0):
    async def find():
        while True:
            out = await queue.get()
            msg = decode_message(out.data)
            if isinstance(msg, kind):
                return out, msg

    return await asyncio.wait_for(find(), timeout)


def start(validators, keyset, pacemaker_ms=10_000, store=None, net_in=None):
    mempool, to_exec, net_out = asyncio.Queue(), asyncio.Queue(), asyncio.Queue()
    net_in = net_in if net_in is not None else asyncio.Queue()
    task = asyncio.create_task(
        run_hotstuff(mempool, to_exec, pacemaker_ms, net_out, net_in, validators, keyset, store)
    )
    return task, mempool, to_exec, net_out, net_in


async def stop(task, mempool):
    await mempool.put(None)
    return await asyncio.wait_for(task, 3.0)


def sample_messages():
    sk, _ = generate()
    sig = sign(sk, b"m")
    root = blake3(b"root")
    shard = da_encode(b"hello world", DA_K, DA_M)[1]
    qc = QuorumCert(3, root, (1, 2), (Signed(1, sig), Signed(2, sig)))
    tc = TimeoutCert(4, (Signed(3, sig),))
    return [
        RbcShard(1, shard.proof.root, shard.index, shard.data, shard.proof),
        RbcEcho(2, root, sig),
        RbcReady(3, root, sig),
        Proposal(5, 1, root, DaProof((1, 2, 3), root, DA_K, DA_M), qc, sig),
        Proposal(5, 1, root, DaProof((), root, DA_K, DA_M), None, sig),
        Vote(5, 2, root, sig),
        NewView(6, 2, qc, tc, sig),
        NewView(6, 2, None, None, sig),
        Timeout(7, 4, sig),
    ]


def test_four_validators_tolerate_one_fault():
    validators, _, _ = make_cluster(4)
    assert validators.f() == 1
    assert validators.quorum() == 3


@pytest.mark.parametrize("n", range(1, 11))
def test_fault_tolerance_bounds(n):
    validators, _, _ = make_cluster(n)
    f = validators.f()
    assert 3 * f + 1 <= n < 3 * f + 4
    assert validators.quorum() <= n - f
    assert len(validators) == n


def test_leader_rotation_wraps_around():
    validators, _, _ = make_cluster(4)
    assert validators.leader_for(1) == validators.nodes[0]
    assert validators.leader_for(2) == validators.nodes[1]
    assert validators.leader_for(len(validators) + 1) == validators.nodes[0]


def test_leader_for_view_zero_is_invalid():
    validators, _, _ = make_cluster(4)
    with pytest.raises(ValueError):
        validators.leader_for(0)


def test_peers_exclude_self_and_get_pub():
    validators, _, keys = make_cluster(4, self_index=2)
    peer_ids = [v.id for v in validators.peers()]
    assert validators.self_id not in peer_ids
    assert len(peer_ids) == len(validators) - 1
    assert validators.get_pub(2) == keys[1][1]
    assert validators.get_pub(99) is None


def test_keyset_sign_and_verify():
    validators, keyset, keys = make_cluster(4)
    sig = keyset.sign(b"data")
    assert keyset.verify(validators.self_id, b"data", sig)
    assert not keyset.verify(validators.self_id, b"other", sig)
    assert not keyset.verify(2, b"data", sig)
    assert not keyset.verify(99, b"data", sig)


def test_sign_bytes_is_tag_then_hash():
    out = sign_bytes("VOTE", b"abc")
    assert out[:4] == b"VOTE"
    assert out[4:] == blake3(b"abc")


@pytest.mark.parametrize("msg", sample_messages())
def test_message_round_trip(msg):
    assert decode_message(encode_message(msg)) == msg


@pytest.mark.parametrize("msg", sample_messages())
def test_truncated_or_padded_message_rejected(msg):
    data = encode_message(msg)
    with pytest.raises(DecodeError):
        decode_message(data[:-1])
    with pytest.raises(DecodeError):
        decode_message(data + b"\x00")


def test_message_wire_prefix():
    sk, _ = generate()
    data = encode_message(Timeout(1, 2, sign(sk, b"m")))
    assert data[:4] == b"\x06\x00\x00\x00"
    assert data[4:12] == view_bytes(1)


def test_unknown_variant_rejected():
    with pytest.raises(DecodeError):
        decode_message(b"\x07\x00\x00\x00")


def test_encode_rejects_non_message():
    with pytest.raises(TypeError):
        encode_message(object())


def test_rbc_reconstructs_from_data_shards():
    payload = b"payload for reconstruction"
    shards = da_encode(payload, DA_K, DA_M)
    root = shards[0].proof.root
    rbc = RbcState()
    assert not rbc.has_payload(root)
    for s in shards[:DA_K]:
        rbc.push_shard(root, s.index, s.data)
    assert rbc.try_reconstruct(root, DA_K, DA_M)
    assert rbc.has_payload(root)
    assert rbc.get_payload(root) == payload


def test_rbc_reconstructs_from_parity():
    payload = b"parity helps here"
    shards = da_encode(payload, DA_K, DA_M)
    root = shards[0].proof.root
    rbc = RbcState()
    rbc.push_shard(root, shards[2].index, shards[2].data)
    rbc.push_shard(root, shards[0].index, shards[0].data)
    assert rbc.try_reconstruct(root, DA_K, DA_M)
    assert rbc.get_payload(root) == payload


def test_rbc_strips_trailing_zeros():
    payload = b"abc\x00\x00"
    shards = da_encode(payload, DA_K, DA_M)
    root = shards[0].proof.root
    rbc = RbcState()
    for s in shards:
        rbc.push_shard(root, s.index, s.data)
    assert rbc.try_reconstruct(root, DA_K, DA_M)
    assert rbc.get_payload(root) == payload.rstrip(b"\x00")


def test_rbc_needs_enough_shards():
    shards = da_encode(b"not enough", DA_K, DA_M)
    root = shards[0].proof.root
    rbc = RbcState()
    rbc.push_shard(root, shards[0].index, shards[0].data)
    assert not rbc.try_reconstruct(root, DA_K, DA_M)
    rbc.push_shard(root, 50, shards[1].data)
    assert not rbc.try_reconstruct(root, DA_K, DA_M)
    assert rbc.get_payload(root) is None


@pytest.mark.asyncio
async def test_leader_commits_batch_after_ready_and_votes(tmp_path):
    validators, keyset, keys = make_cluster(4)
    store = FileStore(tmp_path)
    task, mempool, to_exec, net_out, net_in = start(validators, keyset, store=store)
    batch = make_batch()
    await mempool.put(batch)

    _, echo = await next_of(net_out, RbcEcho)
    root = echo.root
    shards = da_encode(encode_batch(batch), DA_K, DA_M)
    assert shards[0].proof.root == root

    for s in shards[:DA_K]:
        await net_in.put(received(RbcShard(2, root, s.index, s.data, s.proof)))
    peers = [(i + 1, keys[i][0]) for i in (1, 2, 3)]
    for pid, sk in peers:
        await net_in.put(received(RbcReady(pid, root, sign(sk, sign_bytes("RBC_READY", root)))))

    _, proposal = await next_of(net_out, Proposal)
    assert proposal.view == 1
    assert proposal.root == root
    assert set(proposal.da_proof.ready_signers) == {pid for pid, _ in peers}
    assert verify(keyset.my_pk, sign_bytes("PROPOSAL", view_bytes(1) + root), proposal.sig)

    vote_bytes = sign_bytes("VOTE", view_bytes(1) + root)
    for pid, sk in peers:
        await net_in.put(received(Vote(1, pid, root, sign(sk, vote_bytes))))

    committed, height = await asyncio.wait_for(to_exec.get(), 3.0)
    assert committed == batch
    assert height == 1

    qc = store.load_high_qc()
    assert qc.view == 1
    assert qc.root == root
    assert sorted(qc.voters) == [pid for pid, _ in peers]
    assert await stop(task, mempool) is None


@pytest.mark.asyncio
async def test_follower_votes_for_valid_proposal():
    validators, keyset, keys = make_cluster(4, self_index=1)
    task, mempool, to_exec, net_out, net_in = start(validators, keyset)
    batch = make_batch()
    shards = da_encode(encode_batch(batch), DA_K, DA_M)
    root = shards[0].proof.root
    for s in shards[:DA_K]:
        await net_in.put(received(RbcShard(1, root, s.index, s.data, s.proof)))
    leader_sk = keys[0][0]
    prop_sig = sign(leader_sk, sign_bytes("PROPOSAL", view_bytes(1) + root))
    proposal = Proposal(1, 1, root, DaProof((2, 3, 4), root, DA_K, DA_M), None, prop_sig)
    await net_in.put(received(proposal))

    out, vote = await next_of(net_out, Vote)
    assert out.addr == validators.nodes[0].addr
    assert vote.voter == validators.self_id
    assert vote.root == root
    assert verify(keyset.my_pk, sign_bytes("VOTE", view_bytes(1) + root), vote.sig)
    await stop(task, mempool)


@pytest.mark.asyncio
async def test_echo_quorum_triggers_ready():
    validators, keyset, keys = make_cluster(4)
    task, mempool, to_exec, net_out, net_in = start(validators, keyset)
    root = blake3(b"some root")
    for i in (1, 2, 3):
        sk = keys[i][0]
        await net_in.put(received(RbcEcho(i + 1, root, sign(sk, sign_bytes("RBC_ECHO", root)))))
    out, ready = await next_of(net_out, RbcReady)
    assert ready.root == root
    assert ready.sender == validators.self_id
    assert verify(keyset.my_pk, sign_bytes("RBC_READY", root), ready.sig)
    assert out.addr in {v.addr for v in validators.peers()}
    await stop(task, mempool)


@pytest.mark.asyncio
async def test_pacemaker_timeout_follows_new_view():
    validators, keyset, keys = make_cluster(4)
    net_in = asyncio.Queue()
    net_in.put_nowait(received(NewView(5, 2, None, None, sign(keys[1][0], b"x"))))
    task, mempool, to_exec, net_out, net_in = start(
        validators, keyset, pacemaker_ms=30, net_in=net_in
    )
    first = [await asyncio.wait_for(net_out.get(), 3.0) for _ in range(3)]
    assert {out.addr for out in first} == {v.addr for v in validators.peers()}
    timeout = decode_message(first[0].data)
    assert isinstance(timeout, Timeout)
    assert timeout.view == 5
    assert timeout.voter == validators.self_id
    assert verify(keyset.my_pk, sign_bytes("TIMEOUT", view_bytes(5)), timeout.sig)

    _, new_view = await next_of(net_out, NewView)
    assert new_view.view == 5 + 1
    assert new_view.tc is None
    await stop(task, mempool)


@pytest.mark.asyncio
async def test_loop_ends_when_mempool_closes():
    validators, keyset, _ = make_cluster(4)
    task, mempool, to_exec, net_out, net_in = start(validators, keyset)
    assert await stop(task, mempool) is None
    assert task.done()
    assert to_exec.empty()