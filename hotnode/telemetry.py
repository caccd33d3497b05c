"""Process-wide logging setup."""

from __future__ import annotations

import logging
import os
from typing import Optional

ENV_VAR = "HOTNODE_LOG"


def init(level: Optional[str] = None) -> int:
    """Configure root logging; the level comes from the argument, the environment, or info."""
    name = (level or os.environ.get(ENV_VAR) or "info").strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {name.lower()}")
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )
    return resolved