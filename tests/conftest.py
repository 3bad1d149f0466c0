"""
Pytest configuration and fixtures for Gatehouse tests.

This module provides shared fixtures used across unit and integration
tests.
"""

import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Generator

import pytest

from gatehouse.engine import Gatehouse
from gatehouse.host import Host
from gatehouse.registry import ClassRegistry


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def write_policy(temp_dir: Path) -> Callable[[str, str], Path]:
    """Return a helper that writes policy text to a file in temp_dir."""

    def _write(name: str, text: str) -> Path:
        path = temp_dir / name
        path.write_text(text)
        return path

    return _write


@pytest.fixture
def gate() -> Gatehouse:
    """A fresh engine with default configuration."""
    return Gatehouse()


@pytest.fixture
def registry() -> ClassRegistry:
    """An empty class registry."""
    return ClassRegistry()


@pytest.fixture
def host(registry: ClassRegistry) -> Host:
    """An evaluation context over the (initially empty) registry."""
    return Host(registry.snapshot())


@pytest.fixture
def sample_policy() -> str:
    """A small policy exercising facts, rules and an inline query."""
    return """
# Facts
parent("alice", "bob");
parent("bob", "carol");

grandparent(x, z) := parent(x, y), parent(y, z);

?= grandparent("alice", "carol");
"""


@pytest.fixture
def sample_config_yaml() -> str:
    """Return an engine configuration YAML for testing."""
    return """
policy_extension: polar
load_roles_prelude: true
check_inline_queries: true
max_query_depth: 50
log_level: info
"""
