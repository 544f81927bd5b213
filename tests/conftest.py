from __future__ import annotations

from pathlib import Path

import pytest

from distforge.orchestrator import Orchestrator
from tests._fixtures.fakes import FakeBundler, FakeDeclarationExtractor, FakeTranspiler
from tests._fixtures.repo_builder import RepoBuilder


@pytest.fixture
def repo_builder(tmp_path: Path) -> RepoBuilder:
    """Provide a reusable project builder rooted at the pytest tmp_path."""
    return RepoBuilder(tmp_path)


@pytest.fixture
def orchestrator() -> Orchestrator:
    """Orchestrator wired to in-process toolchain doubles."""
    return Orchestrator(
        transpiler=FakeTranspiler(),
        declaration_extractor=FakeDeclarationExtractor(),
        bundler=FakeBundler(),
    )
