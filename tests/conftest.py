"""Shared fixtures for the project memory tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from specsafe.config import MemoryConfig
from specsafe.memory import ProjectMemoryManager, SteeringEngine


@pytest.fixture
def config() -> MemoryConfig:
    # Short lock timings keep lock-contention tests fast
    return MemoryConfig(lock_timeout=0.5, stale_after=30.0, poll_interval=0.01)


@pytest.fixture
def manager(tmp_path: Path, config: MemoryConfig) -> ProjectMemoryManager:
    m = ProjectMemoryManager(tmp_path, config)
    m.load("test-project")
    return m


@pytest.fixture
def engine(tmp_path: Path, config: MemoryConfig) -> SteeringEngine:
    e = SteeringEngine(tmp_path, config=config)
    e.initialize("test-project")
    return e
