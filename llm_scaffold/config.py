"""llm-scaffold configuration.

Centralised, typed configuration for the synthesis pipeline. All settings use
Pydantic v2 models so they are validated at construction time and can be
serialised to/from JSON or environment variables without boiler-plate.

The configuration is built once (by the CLI or by the caller) and passed
explicitly into every component that needs a limit or a timeout.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class LlmConfig(BaseModel):
    """Connection settings for the chat-completion endpoint."""

    base_url: str = Field(default="https://api.openai.com/v1")
    model: str = Field(default="gpt-3.5-turbo")
    max_tokens: int = Field(default=2048, ge=1)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    request_timeout: float = Field(
        default=60.0, ge=1.0, description="Per-attempt timeout in seconds"
    )
    api_key_env: str = Field(
        default="OPENAI_API_KEY", description="Environment variable holding the API key"
    )


class RetryConfig(BaseModel):
    """Backoff policy for transient LLM failures."""

    max_attempts: int = Field(default=5, ge=1, description="Total attempts, first one included")
    initial_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Extra random delay as a fraction of the delay"
    )
    overall_deadline: Optional[float] = Field(
        default=300.0,
        gt=0.0,
        description="Seconds allowed across all attempts; None disables the deadline",
    )

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryConfig":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self


class LimitsConfig(BaseModel):
    """Size ceilings applied to a parsed response before anything is written."""

    max_file_bytes: int = Field(default=1024 * 1024, ge=1)
    max_total_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    max_files: int = Field(default=500, ge=1)


class CredentialRules(BaseModel):
    """Expected shape of the provider API key.

    Defaults describe OpenAI-style secret keys (``sk-`` followed by URL-safe
    characters).
    """

    prefix: str = Field(default="sk-")
    min_length: int = Field(default=20, ge=1)
    max_length: int = Field(default=256, ge=1)
    allowed_chars: str = Field(default=r"A-Za-z0-9_\-", description="Regex character class body")


class Config(BaseModel):
    """Global llm-scaffold configuration."""

    llm: LlmConfig = Field(default_factory=LlmConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    credentials: CredentialRules = Field(default_factory=CredentialRules)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file and return its path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            LLM_SCAFFOLD_BASE_URL, LLM_SCAFFOLD_MODEL, LLM_SCAFFOLD_MAX_TOKENS,
            LLM_SCAFFOLD_TIMEOUT, LLM_SCAFFOLD_MAX_ATTEMPTS,
            LLM_SCAFFOLD_DEADLINE, LLM_SCAFFOLD_MAX_FILE_BYTES,
            LLM_SCAFFOLD_MAX_TOTAL_BYTES.
        """
        llm_kwargs: dict[str, Any] = {}
        if os.environ.get("LLM_SCAFFOLD_BASE_URL"):
            llm_kwargs["base_url"] = os.environ["LLM_SCAFFOLD_BASE_URL"]
        if os.environ.get("LLM_SCAFFOLD_MODEL"):
            llm_kwargs["model"] = os.environ["LLM_SCAFFOLD_MODEL"]
        if os.environ.get("LLM_SCAFFOLD_MAX_TOKENS"):
            llm_kwargs["max_tokens"] = int(os.environ["LLM_SCAFFOLD_MAX_TOKENS"])
        if os.environ.get("LLM_SCAFFOLD_TIMEOUT"):
            llm_kwargs["request_timeout"] = float(os.environ["LLM_SCAFFOLD_TIMEOUT"])

        retry_kwargs: dict[str, Any] = {}
        if os.environ.get("LLM_SCAFFOLD_MAX_ATTEMPTS"):
            retry_kwargs["max_attempts"] = int(os.environ["LLM_SCAFFOLD_MAX_ATTEMPTS"])
        if os.environ.get("LLM_SCAFFOLD_DEADLINE"):
            retry_kwargs["overall_deadline"] = float(os.environ["LLM_SCAFFOLD_DEADLINE"])

        limits_kwargs: dict[str, Any] = {}
        if os.environ.get("LLM_SCAFFOLD_MAX_FILE_BYTES"):
            limits_kwargs["max_file_bytes"] = int(os.environ["LLM_SCAFFOLD_MAX_FILE_BYTES"])
        if os.environ.get("LLM_SCAFFOLD_MAX_TOTAL_BYTES"):
            limits_kwargs["max_total_bytes"] = int(os.environ["LLM_SCAFFOLD_MAX_TOTAL_BYTES"])

        return cls(
            llm=LlmConfig(**llm_kwargs),
            retry=RetryConfig(**retry_kwargs),
            limits=LimitsConfig(**limits_kwargs),
        )
