# tests/conftest.py
import textwrap
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from laraguard.config import EngineConfig
from laraguard.detector import RunContext
from laraguard.probe import FetchResponse, Fetcher
from laraguard.process import CommandOutcome


def write_tree(root: Path, files: Dict[str, str]) -> Path:
    """Create ``files`` (relative path -> content) under ``root``."""
    for rel, content in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
    return root


@pytest.fixture
def project(tmp_path):
    """Factory: project(files) -> project root with those files."""
    def make(files: Dict[str, str]) -> Path:
        return write_tree(tmp_path, files)
    return make


@pytest.fixture
def context(tmp_path):
    return RunContext(root=tmp_path)


@pytest.fixture
def config():
    # Single worker keeps detector runs in the test thread
    return EngineConfig(workers=1)


class FakeFetcher(Fetcher):
    """Answers from a url -> FetchResponse map; unknown urls are unreachable."""

    def __init__(self, responses: Optional[Dict[str, FetchResponse]] = None):
        self.responses = responses or {}
        self.requested: List[str] = []

    def fetch(self, url):
        self.requested.append(url)
        return self.responses.get(url)


class FakeCommandRunner:
    """Returns canned outcomes keyed by the joined command line."""

    def __init__(self, outcomes=None, raises=None):
        self.outcomes = outcomes or {}
        self.raises = raises
        self.calls = []

    def __call__(self, args, cwd=None, timeout=None):
        self.calls.append(list(args))
        if self.raises is not None:
            raise self.raises
        return self.outcomes.get(" ".join(args))


def outcome(stdout="", stderr="", returncode=0) -> CommandOutcome:
    return CommandOutcome(returncode, stdout, stderr)
