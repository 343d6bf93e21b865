"""Unit tests for query composition (llm_scaffold.prompt_gen)."""

from __future__ import annotations

from pathlib import Path

import pytest

from llm_scaffold.models import ProjectRequest, Role
from llm_scaffold.parser import parse_text
from llm_scaffold.prompt_gen import FILE_MARKER, PROTOCOL_VERSION, compose

pytestmark = pytest.mark.unit


@pytest.fixture
def request_(tmp_path: Path) -> ProjectRequest:
    return ProjectRequest(
        description="A REST API that stores bookmarks in sqlite.",
        target_root=tmp_path / "bookmarks",
        language="Go",
    )


class TestCompose:
    def test_system_then_user(self, request_):
        query = compose(request_)
        assert [m.role for m in query.messages] == [Role.SYSTEM, Role.USER]

    def test_deterministic(self, request_):
        assert compose(request_) == compose(request_)

    def test_user_message_carries_request(self, request_):
        user = compose(request_).messages[1].content
        assert "A REST API that stores bookmarks in sqlite." in user
        assert "bookmarks" in user
        assert "Go" in user

    def test_language_defaults_to_model_choice(self, tmp_path: Path):
        request = ProjectRequest(description="A todo app", target_root=tmp_path / "todo")
        user = compose(request).messages[1].content
        assert "Choose the most suitable language" in user

    def test_name_hint_used(self, tmp_path: Path):
        request = ProjectRequest(description="A todo app", target_root=tmp_path / "out", project_name="tasky")
        assert "tasky" in compose(request).messages[1].content

    def test_deliverables_listed(self, request_):
        user = compose(request_).messages[1].content
        assert "Dockerfile" in user
        assert "Makefile" in user
        assert "README.md" in user

    def test_system_message_documents_format(self, request_):
        system = compose(request_).messages[0].content
        assert f"protocol v{PROTOCOL_VERSION}" in system
        assert f"{FILE_MARKER} relative/path/to/file.ext" in system
        assert "longer fence" in system

    def test_documented_example_is_parseable(self, request_):
        """The format example in the instructions parses as one file."""
        system = compose(request_).messages[0].content
        lines = system.splitlines()
        start = next(i for i, line in enumerate(lines) if line.strip().startswith(FILE_MARKER))
        example = "\n".join(line.strip() for line in lines[start:start + 4])
        project = parse_text(example)
        assert project.paths == ["relative/path/to/file.ext"]
