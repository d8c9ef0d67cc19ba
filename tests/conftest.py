"""Shared test fixtures for the Sandbox IDE test suite.

Tests run with sandboxing disabled: guest commands execute directly on the
host with the running interpreter and /bin/sh.
"""

from __future__ import annotations

import os
import sys
import tempfile

from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

# ============================================================================
# EARLY INITIALIZATION: Runs before test collection
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Point settings at a throwaway workspaces root before any imports.

    api.main reads settings at import time, so the environment has to be in
    place before test modules are collected.
    """
    workspaces = tempfile.mkdtemp(prefix="sandbox-ide-tests-")
    os.environ["SANDBOX_ENABLED"] = "false"
    os.environ["WORKSPACES_PATH"] = workspaces
    os.environ["TERMINAL_SHELL"] = "/bin/sh"


# ============================================================================
# Test Isolation: Settings Management
# ============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Clear the cached settings so environment patches take effect."""
    from core.constants import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# Session Fixtures
# ============================================================================


@pytest.fixture
def workspaces_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def registry(workspaces_root: Path):  # type: ignore[no-untyped-def]
    from core.session_registry import SessionRegistry

    return SessionRegistry(workspaces_root, workspace_mode=0o755)


@pytest.fixture
def launcher(tmp_path: Path):  # type: ignore[no-untyped-def]
    """Launcher with sandboxing disabled (commands run on the host)."""
    from sandbox.launcher import SandboxLauncher

    return SandboxLauncher(enabled=False, rootfs=tmp_path, uid=1001)


@pytest.fixture
def python_interpreters() -> dict[str, tuple[str, ...]]:
    """Language table that resolves python to the running interpreter."""
    return {"python": (sys.executable,), "bash": ("/bin/sh",)}


# ============================================================================
# WebSocket Fixtures
# ============================================================================


@pytest.fixture
def mock_websocket() -> Mock:
    """Mock WebSocket with async accept/send/close."""
    ws = Mock()
    ws.accept = AsyncMock()
    ws.send_json = AsyncMock()
    ws.close = AsyncMock()
    return ws
