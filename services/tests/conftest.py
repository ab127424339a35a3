"""
Top-level test configuration for binmate.

Every test gets its own HOME, data, cache and bin directories under
tmp_path, and upstream HTTP is served by FakeGitHub through
httpx.MockTransport.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from binmate.config import load_settings
from binmate.context import EngineContext
from binmate.db.store import Store
from binmate.logging_config import configure_logging
from binmate.paths import Paths
from fakes import FakeGitHub

_ENV_VARS = (
    "XDG_DATA_HOME",
    "XDG_CACHE_HOME",
    "GITHUB_TOKEN",
    "BINMATE_CONFIG_PATH",
    "BINMATE_DATA_DIR",
    "BINMATE_CACHE_DIR",
    "BINMATE_BIN_DIR",
    "BINMATE_LOG_LEVEL",
    "BINMATE_JSON_LOGS",
    "BINMATE_VERSION",
)


@pytest.fixture(scope="session", autouse=True)
def _structlog_to_stdlib() -> None:
    configure_logging(log_level="debug")


@pytest.fixture(autouse=True)
def _restore_log_handlers():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture(autouse=True)
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def paths(tmp_path: Path, home: Path) -> Paths:
    return Paths(
        data_dir=tmp_path / "data" / "binmate",
        cache_dir=tmp_path / "cache" / "binmate",
        bin_dir=home / ".local" / "bin",
    )


@pytest_asyncio.fixture
async def store(paths: Paths) -> AsyncGenerator[Store]:
    store = await Store.open(paths.database_path)
    yield store
    await store.close()


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest_asyncio.fixture
async def engine(paths: Paths, github: FakeGitHub, home: Path) -> AsyncGenerator[EngineContext]:
    settings = load_settings()
    ctx = await EngineContext.create(
        settings,
        env={"HOME": str(home)},
        transport=github.transport,
        paths=paths,
    )
    yield ctx
    await ctx.close()
