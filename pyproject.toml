[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hotnode"
version = "0.3.3"
description = "A small HotStuff-style replicated ledger node with erasure-coded data availability, a transfer executor and an HTTP API"
requires-python = ">=3.10"
keywords = [
    "consensus",
    "hotstuff",
    "bft",
    "ledger",
    "reed-solomon",
    "merkle",
    "blake3",
    "data-availability",
    "ed25519",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "cryptography>=41",
    "pyyaml>=6.0",
    "aiohttp>=3.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
hotnode = "hotnode.app:main"
hotnode-bench = "hotnode.bench:main"
hotnode-state-sync = "hotnode.state_sync:main"

[tool.hatch.build.targets.wheel]
packages = ["hotnode"]

[tool.hatch.build.targets.sdist]
include = ["hotnode", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
