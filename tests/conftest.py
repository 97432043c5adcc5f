from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import pytest

from specgraph.config import Settings
from specgraph.graph import Workspace

PHASE_DIR = {"req": "requirements", "design": "design", "impl": "implementation"}
PHASE_NAME = {"req": "requirement", "design": "design", "impl": "implementation"}


def _list_field(key, values):
    if not values:
        return [f"{key}: []"]
    return [f"{key}:"] + [f"  - {v}" for v in values]


def build_doc(ref, body, depends_on=(), references=(), artifact=None, phase=None):
    """Markdown document text for ref (e.g. "auth.req") with the given ## body."""
    name, suffix = ref.rsplit(".", 1)
    lines = ["---", f"artifact: {artifact or name}", f"phase: {phase or PHASE_NAME[suffix]}"]
    lines += _list_field("depends-on", list(depends_on))
    lines += _list_field("references", list(references))
    lines += ["version: 1.0.0", "last-updated: 2025-01-01", "---"]
    return "\n".join(lines) + f"\n\n# {name}\n\n{body.strip()}\n"


class FakeModel:
    """Scripted stand-in for the model: strings are returned, exceptions raised,
    callables called with the messages."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def chat(self, messages, max_tokens=None):
        self.calls.append(messages)
        if not self.responses:
            raise AssertionError("unexpected model call")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(messages)
        return response


class Project:

    def __init__(self, root: Path):
        self.root = root
        (root / "specs").mkdir(exist_ok=True)

    def path(self, ref):
        if ref == "ConOps":
            return self.root / "specs" / "ConOps.md"
        suffix = ref.rsplit(".", 1)[1]
        return self.root / "specs" / PHASE_DIR[suffix] / f"{ref}.md"

    def write(self, ref, content):
        path = self.path(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def read(self, ref):
        return self.path(ref).read_text(encoding="utf-8")

    def workspace(self):
        return Workspace.load(str(self.root))


@pytest.fixture
def project(tmp_path):
    return Project(tmp_path)


@pytest.fixture
def make_doc():
    return build_doc


@pytest.fixture
def fake_model():
    return FakeModel


@pytest.fixture
def settings():
    return Settings(git_check=False)
