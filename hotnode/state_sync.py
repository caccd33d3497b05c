"""Copy account state from one node to another over their debug endpoints."""

from __future__ import annotations

import argparse
import asyncio
from http import HTTPStatus

import aiohttp

from .executor import AccountState


async def _get_json(session: aiohttp.ClientSession, url: str):
    async with session.get(url) as resp:
        return await resp.json(content_type=None)


async def sync_state(src: str, dst: str, incremental: bool = True, replace: bool = False) -> int:
    """Push ``src``'s state (a diff when possible) into ``dst``; return the restore status code."""
    async with aiohttp.ClientSession() as session:
        height_resp = await _get_json(session, f"{dst}/debug/state/height")
        height = height_resp.get("height") if isinstance(height_resp, dict) else None
        if not isinstance(height, int) or isinstance(height, bool) or height < 0:
            raise ValueError("invalid height response from target")
        if incremental and height > 0:
            raw_items = await _get_json(session, f"{src}/debug/state/diff/{height}")
        else:
            raw_items = await _get_json(session, f"{src}/debug/state/snapshot")
        if not isinstance(raw_items, list):
            raise ValueError("invalid state response from source")
        items = [AccountState.from_json(obj) for obj in raw_items]
        body = {"replace": replace, "items": [it.to_json() for it in items]}
        async with session.post(f"{dst}/debug/state/restore", json=body) as resp:
            return resp.status


def _describe(status: int) -> str:
    try:
        return f"{status} {HTTPStatus(status).phrase}"
    except ValueError:
        return str(status)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="hotnode-state-sync",
                                     description="Copy account state between nodes.")
    parser.add_argument("--src", required=True, help="base URL of the source node")
    parser.add_argument("--dst", required=True, help="base URL of the target node")
    parser.add_argument("--incremental", action=argparse.BooleanOptionalAction, default=True,
                        help="send only changes newer than the target's height")
    parser.add_argument("--replace", action="store_true",
                        help="replace the target's state instead of merging")
    args = parser.parse_args(argv)
    status = asyncio.run(sync_state(args.src, args.dst, args.incremental, args.replace))
    print(f"state-sync -> target status: {_describe(status)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())