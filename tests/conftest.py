"""Shared test fixtures for tether."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tether.config.schema import EngineConfig, SandboxConfig
from tether.core.retry import RetryConfig
from tether.tools.registry import ToolRegistry
from tether.tools.store import JsonToolStore

if TYPE_CHECKING:
    from pathlib import Path

    from tests.fixtures.service import FakeService as FakeServiceType


@pytest.fixture
def registry() -> ToolRegistry:
    """In-memory registry (no store)."""
    return ToolRegistry(default_author="tests")


@pytest.fixture
def store(tmp_path: Path) -> JsonToolStore:
    return JsonToolStore(tmp_path / "tools")


@pytest.fixture
def stored_registry(store: JsonToolStore) -> ToolRegistry:
    return ToolRegistry(store, default_author="tests")


@pytest.fixture
def engine_config() -> EngineConfig:
    """Engine settings with no real waiting between polls."""
    return EngineConfig(poll_interval=0.0)


@pytest.fixture
def no_retry() -> RetryConfig:
    return RetryConfig(max_retries=0, jitter=False)


@pytest.fixture
def sandbox_config() -> SandboxConfig:
    import sys

    return SandboxConfig(python=sys.executable, timeout=10, max_output=2_000)


@pytest.fixture
def fake_service() -> FakeServiceType:
    """Service that completes immediately with reply 'done'."""
    from tests.fixtures.service import FakeService

    return FakeService()
