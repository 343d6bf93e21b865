"""Shared pytest fixtures for the llm-scaffold test suite.

Provides reusable fixtures for:
- Target directories
- Valid API keys and project requests
- Canned chat-completion bodies and a mocked endpoint (httpx.MockTransport)
- Fast retry configuration with a recorded, non-blocking sleep
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from llm_scaffold.config import Config, LlmConfig, RetryConfig
from llm_scaffold.credentials import validate_credential
from llm_scaffold.models import ProjectRequest

VALID_KEY = "sk-test0123456789abcdefghijklmnop"

TEST_BASE_URL = "https://llm.test/v1"


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def target_root(tmp_path: Path) -> Path:
    """A target root that does not exist yet (auto-cleanup)."""
    return tmp_path / "out" / "demo-app"


# ---------------------------------------------------------------------------
# Requests & credentials
# ---------------------------------------------------------------------------

@pytest.fixture
def valid_key():
    return validate_credential(VALID_KEY)


@pytest.fixture
def project_request(target_root: Path) -> ProjectRequest:
    return ProjectRequest(
        description="A tiny command line tool that prints a greeting.",
        target_root=target_root,
        project_name="demo-app",
    )


# ---------------------------------------------------------------------------
# Model output
# ---------------------------------------------------------------------------

FENCE = "`" * 3


def file_block(path: str, body: str, lang: str = "", fence: str = FENCE) -> str:
    """Render one ``FILE:`` marker plus fenced block the way the model does."""
    return f"FILE: {path}\n{fence}{lang}\n{body.rstrip(chr(10))}\n{fence}\n"


@pytest.fixture
def sample_model_text() -> str:
    """A well-formed answer with two files and no container setup."""
    return (
        "Here is your project.\n\n"
        + file_block("src/main.py", 'print("hello")', "python")
        + "\n"
        + file_block("README.md", "# demo-app\n\nRun `make run`.", "markdown")
    )


def completion_body(text: str, model: str = "gpt-3.5-turbo") -> dict[str, Any]:
    """Build a realistic chat-completion JSON body."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": text},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
    }


# ---------------------------------------------------------------------------
# Mock endpoint
# ---------------------------------------------------------------------------

class ScriptedEndpoint:
    """Replays a scripted list of responses and records every request.

    Each script item is either an ``httpx.Response`` or an exception
    instance to raise from the transport.
    """

    def __init__(self, script: list[Any]) -> None:
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.script:
            raise AssertionError("endpoint called more often than scripted")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def scripted_endpoint() -> Callable[[list[Any]], ScriptedEndpoint]:
    return ScriptedEndpoint


class RecordingSleep:
    """Drop-in for ``asyncio.sleep`` that returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def llm_config() -> LlmConfig:
    return LlmConfig(base_url=TEST_BASE_URL, request_timeout=5.0)


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Deterministic backoff: 1s, 2s, 4s ... without jitter."""
    return RetryConfig(
        max_attempts=5,
        initial_delay=1.0,
        max_delay=30.0,
        multiplier=2.0,
        jitter=0.0,
        overall_deadline=None,
    )


@pytest.fixture
def scaffold_config(llm_config: LlmConfig, fast_retry: RetryConfig) -> Config:
    return Config(llm=llm_config, retry=fast_retry)
