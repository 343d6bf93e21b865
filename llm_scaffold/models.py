"""Pydantic v2 models for the synthesis pipeline.

Every value that flows between stages is immutable (``frozen=True``): each
stage consumes its input and produces a new value, and nothing is shared
mutably across stages.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Role(str, Enum):
    """Role tag of a prompt segment."""
    SYSTEM = "system"
    USER = "user"


class ResponseStatus(str, Enum):
    """Outcome of a request to the model endpoint."""
    SUCCESS = "Success"
    RATE_LIMITED = "RateLimited"
    TIMEOUT = "Timeout"
    TRANSPORT_ERROR = "TransportError"
    INVALID_CREDENTIAL = "InvalidCredential"
    CANCELLED = "Cancelled"


class FileKind(str, Enum):
    """Classification of a generated file."""
    SOURCE = "source"
    CONFIG = "config"
    DOCKERFILE = "dockerfile"
    COMPOSE = "compose"


class MaterializationStatus(str, Enum):
    """Terminal status of a materialization run."""
    COMPLETE = "Complete"
    PARTIAL_FAILURE = "PartialFailure"
    ABORTED = "Aborted"


# ---------------------------------------------------------------------------
# Request & query
# ---------------------------------------------------------------------------

class ProjectRequest(BaseModel):
    """What the user asked for. Created once per invocation."""
    model_config = ConfigDict(frozen=True)

    description: str = Field(..., description="Free-text project description")
    target_root: Path = Field(..., description="Directory the project is written into")
    project_name: Optional[str] = Field(default=None, description="Optional name hint")
    language: Optional[str] = Field(default=None, description="Optional programming language hint")

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("description must not be empty")
        return value

    @property
    def effective_name(self) -> str:
        """The name hint, or the target directory's name."""
        if self.project_name and self.project_name.strip():
            return self.project_name.strip()
        return self.target_root.name or "app"


class QueryMessage(BaseModel):
    """One role-tagged text segment of the prompt."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class LlmQuery(BaseModel):
    """The composed prompt: system instructions followed by the user text."""
    model_config = ConfigDict(frozen=True)

    messages: tuple[QueryMessage, ...] = Field(default_factory=tuple)

    def as_payload(self) -> list[dict[str, str]]:
        """Return the messages in chat-completion wire format."""
        return [{"role": m.role.value, "content": m.content} for m in self.messages]


class LlmResponse(BaseModel):
    """Raw model output tagged with the outcome of the request."""
    model_config = ConfigDict(frozen=True)

    status: ResponseStatus
    text: str = Field(default="", description="Generated text (only meaningful on Success)")
    attempts: int = Field(default=0, ge=0, description="How many requests were sent")
    retryable: bool = Field(default=False, description="Whether the final failure was transient")
    http_status: Optional[int] = Field(default=None)
    error: Optional[str] = Field(default=None, description="Failure detail")
    model: str = Field(default="", description="Model reported by the server")

    @property
    def ok(self) -> bool:
        return self.status is ResponseStatus.SUCCESS


# ---------------------------------------------------------------------------
# Parsed project
# ---------------------------------------------------------------------------

class FileEntry(BaseModel):
    """A single file extracted from the model output."""
    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Normalized, forward-slash relative path")
    label: str = Field(default="", description="The path exactly as the model declared it")
    content: bytes = Field(default=b"")
    kind: FileKind = Field(default=FileKind.SOURCE)

    @property
    def segments(self) -> tuple[str, ...]:
        return tuple(part for part in self.path.split("/") if part)

    @property
    def size(self) -> int:
        return len(self.content)


class ParsedProject(BaseModel):
    """The files found in a response, in discovery order."""
    model_config = ConfigDict(frozen=True)

    files: tuple[FileEntry, ...] = Field(default_factory=tuple)
    has_container_manifest: bool = Field(default=False)

    @property
    def paths(self) -> list[str]:
        return [entry.path for entry in self.files]


# ---------------------------------------------------------------------------
# Materialization report
# ---------------------------------------------------------------------------

class SkippedFile(BaseModel):
    """A file that was not written, and why."""
    model_config = ConfigDict(frozen=True)

    path: str
    reason: str


class MaterializationReport(BaseModel):
    """Result of writing a project to disk. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    target_root: Path
    status: MaterializationStatus
    directories_created: int = Field(default=0, ge=0)
    files_written: tuple[str, ...] = Field(default_factory=tuple)
    files_skipped: tuple[SkippedFile, ...] = Field(default_factory=tuple)
    abort_kind: Optional[str] = Field(default=None, description="MaterializeErrorKind value when aborted")
    abort_reason: Optional[str] = Field(default=None)

    @property
    def files_written_count(self) -> int:
        return len(self.files_written)

    @property
    def files_skipped_count(self) -> int:
        return len(self.files_skipped)

    @property
    def succeeded(self) -> bool:
        """``True`` for Complete and PartialFailure runs."""
        return self.status is not MaterializationStatus.ABORTED
