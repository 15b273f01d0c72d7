from __future__ import annotations

from pathlib import Path

import pytest

from tests._fixtures.workspace import FakeGenerator, FakeGit, Workspace


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    """Provide a repository root with default configuration and stores."""
    return Workspace(tmp_path)


@pytest.fixture
def fake_ai() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()
