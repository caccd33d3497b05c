"""Node configuration loaded from YAML."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, fields
from typing import Optional

import yaml

log = logging.getLogger(__name__)


@dataclass
class NodeConfig:
    rpc_addr: str
    quic_addr: str
    p2p_listen: str
    node_id: int
    validators: str
    validators_keys: str
    node_sk: Optional[str]
    db_path: str

    @classmethod
    def from_mapping(cls, data) -> "NodeConfig":
        if not isinstance(data, dict):
            raise ValueError("configuration must be a mapping")
        values = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                if f.name == "node_sk":
                    values[f.name] = None
                    continue
                raise ValueError(f"missing field `{f.name}`")
            value = data[f.name]
            if f.name == "node_id":
                if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value < 2**32:
                    raise ValueError("node_id must be an unsigned 32-bit integer")
            elif not isinstance(value, str):
                raise ValueError(f"field `{f.name}` must be a string")
            values[f.name] = value
        return cls(**values)


def _read(path: str) -> str:
    with open(path, encoding="utf-8") as fh:
        return fh.read()


async def load_yaml(path: str) -> NodeConfig:
    text = await asyncio.to_thread(_read, path)
    return NodeConfig.from_mapping(yaml.safe_load(text))


def _mtime(path: str) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


async def watch_and_log(path: str, interval: float = 10.0) -> None:
    """Log whenever the file's modification time changes; runs until cancelled."""
    last = None
    while True:
        changed = _mtime(path)
        if changed != last:
            last = changed
            log.info("config file changed or checked: %s", path)
        await asyncio.sleep(interval)