# hotnode

`hotnode` is a small replicated ledger node. Client transfers flow through a
batching mempool, are dispersed to the other validators as Reed–Solomon shards
(2 data shards, 1 parity shard) with BLAKE3 Merkle proofs, agreed upon with a
HotStuff-style leader/vote protocol signed with Ed25519, and finally applied by
an in-memory account executor. Receipts are returned to the client over an
HTTP API.

It also ships two companion tools: a load generator for the HTTP API and a
state synchronisation helper that copies account state between nodes.

## Installation

```
pip install hotnode
```

For running the test suite:

```
pip install "hotnode[test]"
pytest
```

## Running a node

```
hotnode
```

The node takes no command-line options; it is configured from environment
variables:

| Variable          | Meaning                                                  | Default          |
|-------------------|----------------------------------------------------------|------------------|
| `RPC_ADDR`        | `host:port` the HTTP API listens on                      | `127.0.0.1:8080` |
| `QUIC_ADDR`       | `host:port` the validator transport listens on           | `127.0.0.1:7000` |
| `NODE_ID`         | this validator's numeric id                              | `1`              |
| `VALIDATORS`      | comma separated `id@ip:port` list of all validators      | empty            |
| `VALIDATORS_KEYS` | comma separated `id@<hex ed25519 public key>` list       | empty            |
| `NODE_SK`         | this node's hex encoded 32-byte Ed25519 secret key       | generated        |
| `DB_PATH`         | data directory (read, but nothing is stored there)       | `db`             |
| `P2P_LISTEN`      | gossip listen address (logged and ignored, see below)    | unset            |
| `CONFIG_YAML`     | path of a YAML file overriding the settings above        | unset            |
| `HOTNODE_LOG`     | log level (`debug`, `info`, `warning`, ...)              | `info`           |

When `VALIDATORS` is empty the node runs as a single validator on its own
transport address. Malformed entries in `VALIDATORS` and `VALIDATORS_KEYS` are
skipped. A validator listed without a public key gets an ephemeral key, and a
missing or malformed `NODE_SK` is replaced by a freshly generated key; both
cases are logged as warnings.

Validators talk to each other over TCP connections carrying length-prefixed
binary messages. The highest quorum certificate is written to a
`consensus_store` directory in the working directory, and a restarted node
resumes from it.

### YAML configuration

```yaml
rpc_addr: 127.0.0.1:8080
quic_addr: 127.0.0.1:7000
p2p_listen: /ip4/127.0.0.1/tcp/9000
node_id: 1
validators: 1@127.0.0.1:7000,2@127.0.0.1:7001,3@127.0.0.1:7002,4@127.0.0.1:7003
validators_keys: ""
node_sk: null
db_path: db
```

Every field except `node_sk` is required. The file's modification time is
checked every ten seconds and changes are logged; they are not applied to the
running node.

### HTTP API

* `GET /healthz` – returns `ok`.
* `POST /transfer` – body `{"from": "alice", "to": "bob", "amount": 5}`
  (`amount` defaults to 1). Waits for the transfer to be committed and returns
  its receipt as JSON:
  `{"tx_id": [...32 byte values...], "status": "Committed", "block_height": 3, "latency_ms": 41}`.
  A transfer that the executor refuses still returns a receipt, with a status
  such as `{"Rejected": "insufficient funds"}`. An unparsable body gives
  status 400, a malformed request 422, and a node failure (including the five
  second commit timeout) 500.
* `GET /balance/{addr}` – the account's balance as a JSON number.

A fresh node starts with the account `alice` funded with 1,000,000,000,000 so
it can be used at once.

## Load testing

```
hotnode-bench --url http://127.0.0.1:8080 --n 1000 --concurrency 32 \
    --from alice --to bench-bob --csv latencies.csv
```

It sends `n` transfers of amount 1 with at most `concurrency` in flight, then
prints the elapsed time, throughput and the p50/p95/p99 latencies. Failed
requests are timed and counted like the others. With `--csv` the sorted
per-request latencies in milliseconds are written one per line.

## State synchronisation

```
hotnode-state-sync --src http://10.0.0.1:8080 --dst http://10.0.0.2:8080
```

It asks the target for its last applied height (`GET /debug/state/height`),
fetches from the source either the accounts changed since that height
(`GET /debug/state/diff/{height}`, the default, `--incremental`) or a full
snapshot (`GET /debug/state/snapshot`, with `--no-incremental` or when the
target is at height 0), and posts them to the target's
`POST /debug/state/restore`. `--replace` asks the target to clear its accounts
before restoring. The tool prints the status of the restore request.

## What it does not do

* The node's HTTP API does not serve the `/debug/state/...` endpoints, so
  `hotnode-state-sync` only works against servers that provide them.
* There is no gossip networking: `P2P_LISTEN` and `P2P_BOOTSTRAP` are read
  but transactions are only accepted through the HTTP API.
* Account balances are kept in memory only and are lost on restart;
  `DB_PATH` is not used for storage.
* The validator transport is plain, unencrypted TCP.

## Library use

The building blocks can be used on their own:

```python
from hotnode import crypto, da

shards = da.encode(b"hello world", 2, 1)
root = shards[0].proof.root
assert all(da.proof_verify(s.proof, da.digest(s.data)) for s in shards)

sk, pk = crypto.generate()
sig = crypto.sign(sk, root)
assert crypto.verify(pk, root, sig)
```

Other modules:

* `hotnode.hashing` – pure-Python BLAKE3 (`blake3`, `Blake3Hasher`).
* `hotnode.erasure` – GF(2^8) Reed–Solomon codec (`ReedSolomon`).
* `hotnode.types` – `Transfer`, `Tx`, `Batch`, `Receipt`, `Status`,
  `make_tx_id`, `encode_batch` / `decode_batch`.
* `hotnode.executor` – `SimpleExecutor`, `BlockStmExecutor`, `AccountState`.
* `hotnode.mempool` – `spawn_mempool`, `run_mempool`.
* `hotnode.consensus` – `Validators`, `KeySet`, `RbcState`,
  `encode_message` / `decode_message`, `run_hotstuff`.
* `hotnode.store` – `QuorumCert`, `TimeoutCert`, `FileStore`.
* `hotnode.transport` – `spawn_server`, `NetOut`, `Received`.
* `hotnode.rpc` – `build_app`, `serve`; `hotnode.node` – `Node`,
  `NodeApiAdapter`.
* `hotnode.storage` – `InMemoryKv`; `hotnode.config` – `load_yaml`.