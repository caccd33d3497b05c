"""Node entry point: configuration from the environment and component wiring."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import ipaddress
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

from . import telemetry
from .config import NodeConfig, load_yaml, watch_and_log
from .consensus import KeySet, Validator, Validators, run_hotstuff
from .crypto import PUBLIC_KEY_LENGTH, SECRET_KEY_LENGTH, PubKey, SecretKey, generate
from .executor import BlockStmExecutor, Executor, SimpleExecutor
from .mempool import run_mempool, spawn_mempool
from .node import Node, NodeApiAdapter
from .rpc import serve
from .store import FileStore
from .transport import Address, spawn_server

log = logging.getLogger(__name__)

DEFAULT_RPC_ADDR = "127.0.0.1:8080"
DEFAULT_QUIC_ADDR = "127.0.0.1:7000"
DEFAULT_DB_PATH = "db"
STORE_DIR = "consensus_store"
FLUSH_MS = 25
MAX_BATCH_LEN = 128
PACEMAKER_MS = 60
_HEX = re.compile(r"[0-9a-fA-F]*")


@dataclass
class EnvConfig:
    rpc_addr: str = DEFAULT_RPC_ADDR
    quic_addr: Optional[str] = None
    p2p_listen: Optional[str] = None
    p2p_bootstrap: tuple[str, ...] = ()
    node_id: int = 1
    validators: str = ""
    validators_keys: str = ""
    node_sk: Optional[str] = field(default=None, repr=False)
    db_path: str = DEFAULT_DB_PATH
    use_yaml: Optional[str] = None


def _parse_u32(text: str) -> Optional[int]:
    digits = text[1:] if text.startswith("+") else text
    if digits and digits.isascii() and digits.isdigit():
        value = int(digits)
        if value < 2**32:
            return value
    return None


def _parse_socket_addr(text: str) -> Optional[Address]:
    if text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep or not rest.startswith(":"):
            return None
        port = rest[1:]
        version = 6
    else:
        host, sep, port = text.rpartition(":")
        if not sep:
            return None
        version = 4
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None
    if ip.version != version or not (port.isascii() and port.isdigit()) or int(port) > 65535:
        return None
    return str(ip), int(port)


def _parse_key(text: str, size: int) -> Optional[bytes]:
    if len(text) % 2 or not _HEX.fullmatch(text):
        return None
    raw = bytes.fromhex(text)
    return raw if len(raw) == size else None


def read_env_cfg(environ: Optional[Mapping[str, str]] = None) -> EnvConfig:
    """Build the configuration from environment variables."""
    env = os.environ if environ is None else environ
    bootstrap = tuple(
        part for part in env.get("P2P_BOOTSTRAP", "").split(",")
        if part.strip() and part.startswith("/")
    )
    node_id = _parse_u32(env.get("NODE_ID", ""))
    return EnvConfig(
        rpc_addr=env.get("RPC_ADDR", DEFAULT_RPC_ADDR),
        quic_addr=env.get("QUIC_ADDR"),
        p2p_listen=env.get("P2P_LISTEN"),
        p2p_bootstrap=bootstrap,
        node_id=1 if node_id is None else node_id,
        validators=env.get("VALIDATORS", ""),
        validators_keys=env.get("VALIDATORS_KEYS", ""),
        node_sk=env.get("NODE_SK"),
        db_path=env.get("DB_PATH", DEFAULT_DB_PATH),
        use_yaml=env.get("CONFIG_YAML"),
    )


def parse_validator_keys(text: str) -> dict[int, PubKey]:
    """Parse "id@hexpubkey,..."; malformed entries are skipped."""
    keys: dict[int, PubKey] = {}
    for part in text.split(","):
        if not part.strip():
            continue
        id_text, sep, key_hex = part.partition("@")
        voter = _parse_u32(id_text)
        raw = _parse_key(key_hex, PUBLIC_KEY_LENGTH) if sep else None
        if voter is not None and raw is not None:
            keys[voter] = PubKey(raw)
    return keys


def parse_validators(text: str, keys: Mapping[int, PubKey]) -> list[Validator]:
    """Parse "id@ip:port,..."; validators without a known key get an ephemeral one."""
    nodes = []
    for part in text.split(","):
        if not part.strip():
            continue
        id_text, sep, addr_text = part.partition("@")
        if not sep:
            continue
        voter = _parse_u32(id_text)
        addr = _parse_socket_addr(addr_text)
        if voter is None or addr is None:
            continue
        pubkey = keys.get(voter)
        if pubkey is None:
            _, pubkey = generate()
            log.warning("No ed25519 pubkey for id %d, using ephemeral %s", voter, pubkey.hex())
        nodes.append(Validator(voter, addr, pubkey))
    return nodes


def _load_secret(node_sk: Optional[str]) -> SecretKey:
    if node_sk is not None:
        raw = _parse_key(node_sk, SECRET_KEY_LENGTH)
        if raw is not None:
            return SecretKey(raw)
        reason = "NODE_SK invalid"
    else:
        reason = "NODE_SK not provided"
    sk, pk = generate()
    log.warning("%s; generated new key with public key %s", reason, pk.hex())
    return sk


async def _execute(executor: Executor, from_consensus: asyncio.Queue, committed: asyncio.Queue) -> None:
    commits = 0
    while True:
        batch, height = await from_consensus.get()
        receipts = executor.apply_batch(batch, height)
        commits += 1
        log.debug("executor committed %d batches", commits)
        for receipt in receipts:
            await committed.put(receipt)


async def run_node(cfg: EnvConfig) -> None:
    """Start every component and serve the RPC until cancelled."""
    log.info("launching node: %r", cfg)
    to_consensus: asyncio.Queue = asyncio.Queue(maxsize=1024)
    to_exec: asyncio.Queue = asyncio.Queue(maxsize=1024)
    committed: asyncio.Queue = asyncio.Queue(maxsize=1024)

    executor = BlockStmExecutor(SimpleExecutor())
    if cfg.p2p_listen:
        log.warning("gossip networking is unavailable; ignoring P2P_LISTEN=%s", cfg.p2p_listen)

    mempool_handle, mempool_rx = spawn_mempool(FLUSH_MS, MAX_BATCH_LEN, to_consensus)
    node = Node(mempool_handle, executor)
    tasks = [
        node.spawn_commit_listener(committed),
        asyncio.create_task(run_mempool(mempool_rx, to_consensus, FLUSH_MS, MAX_BATCH_LEN, None)),
    ]

    qc_store = FileStore(STORE_DIR)
    quic_addr = cfg.quic_addr or DEFAULT_QUIC_ADDR
    transport, inbound = await spawn_server(quic_addr)
    try:
        nodes = parse_validators(cfg.validators, parse_validator_keys(cfg.validators_keys))
        if not nodes:
            addr = _parse_socket_addr(quic_addr)
            if addr is None:
                raise ValueError(f"cannot parse transport address {quic_addr!r}")
            _, pubkey = generate()
            nodes.append(Validator(cfg.node_id, addr, pubkey))
        my_sk = _load_secret(cfg.node_sk)
        validators = Validators(cfg.node_id, nodes)
        keys = KeySet(my_sk, my_sk.public_key(), {v.id: v.pubkey for v in nodes})
        tasks.append(asyncio.create_task(run_hotstuff(
            to_consensus, to_exec, PACEMAKER_MS, transport.outbound, inbound,
            validators, keys, qc_store,
        )))
        tasks.append(asyncio.create_task(_execute(executor, to_exec, committed)))
        await serve(cfg.rpc_addr, NodeApiAdapter(node))
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await transport.close()


def _apply_yaml(cfg: EnvConfig, y: NodeConfig) -> EnvConfig:
    return dataclasses.replace(
        cfg,
        rpc_addr=y.rpc_addr,
        quic_addr=y.quic_addr,
        p2p_listen=y.p2p_listen,
        node_id=y.node_id,
        validators=y.validators,
        db_path=y.db_path,
        validators_keys=y.validators_keys,
        node_sk=y.node_sk,
    )


async def _run(cfg: EnvConfig) -> None:
    watcher = None
    if cfg.use_yaml:
        cfg = _apply_yaml(cfg, await load_yaml(cfg.use_yaml))
        watcher = asyncio.create_task(watch_and_log(cfg.use_yaml))
    try:
        await run_node(cfg)
    finally:
        if watcher is not None:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="hotnode",
        description="Run a consensus node. Configuration comes from environment variables "
        "(RPC_ADDR, QUIC_ADDR, NODE_ID, VALIDATORS, VALIDATORS_KEYS, NODE_SK, CONFIG_YAML, ...).",
    )
    parser.parse_args(argv)
    telemetry.init()
    log.info("starting node")
    cfg = read_env_cfg()
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_run(cfg))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())