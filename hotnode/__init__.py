"""A HotStuff-style replicated ledger node with erasure-coded data availability."""

__version__ = "0.3.3"