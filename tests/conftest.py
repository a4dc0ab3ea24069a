"""Shared pytest fixtures and configuration."""

from collections.abc import Generator

import pytest

from taskpilot.state_store import Project, StateStore


# Register custom markers
def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: fast tests with no external dependencies")
    config.addinivalue_line("markers", "integration: component interaction tests")


# Shared fixtures


@pytest.fixture
def store() -> Generator[StateStore, None, None]:
    """Create an in-memory StateStore."""
    s = StateStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def project(store: StateStore) -> Project:
    """Create a project with a local checkout, ready for execution."""
    return store.create_project(name="Demo", repo="owner/demo", repo_path="/tmp/demo")
