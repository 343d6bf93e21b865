"""Exception hierarchy for the synthesis pipeline.

Every fatal error names the stage it came from and, where one exists, the
offending path or a raw excerpt of the model output so the user can adjust
the description and retry.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import ResponseStatus


class ScaffoldError(Exception):
    """Base class for all pipeline failures."""

    stage: str = "pipeline"

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        self.message = message
        self.detail = detail
        text = f"{self.stage}: {message}"
        if detail:
            text = f"{text} ({detail})"
        super().__init__(text)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class CredentialErrorKind(str, Enum):
    MISSING = "missing"
    MALFORMED = "malformed"


class CredentialError(ScaffoldError):
    """The API key is absent or does not look like a provider key."""

    stage = "credentials"

    def __init__(self, kind: CredentialErrorKind, message: str) -> None:
        self.kind = kind
        super().__init__(message)


# ---------------------------------------------------------------------------
# LLM transport
# ---------------------------------------------------------------------------


class LlmTransportError(ScaffoldError):
    """The model endpoint did not produce a usable response."""

    stage = "llm"

    def __init__(
        self,
        status: "ResponseStatus",
        message: str,
        *,
        retryable: bool = False,
        attempts: int = 0,
    ) -> None:
        self.status = status
        self.retryable = retryable
        self.attempts = attempts
        super().__init__(message, detail=f"status={status.value}, attempts={attempts}")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class ParseErrorKind(str, Enum):
    DUPLICATE_PATH = "duplicate_path"
    UNLABELED_CONTENT = "unlabeled_content"
    EMPTY_PROJECT = "empty_project"
    UNTERMINATED_BLOCK = "unterminated_block"
    DANGLING_LABEL = "dangling_label"
    UNUSABLE_RESPONSE = "unusable_response"


class ParseError(ScaffoldError):
    """The model output does not follow the file-block convention."""

    stage = "parse"

    def __init__(
        self,
        kind: ParseErrorKind,
        message: str,
        detail: Optional[str] = None,
        line: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.line = line
        super().__init__(message, detail)


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------


class SanitizeErrorKind(str, Enum):
    TRAVERSAL = "traversal"
    ABSOLUTE_PATH = "absolute_path"
    TOO_LARGE = "too_large"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_PATH = "invalid_path"


class SanitizeError(ScaffoldError):
    """An entry is unsafe to write; the whole batch is rejected."""

    stage = "sanitize"

    def __init__(self, kind: SanitizeErrorKind, message: str, path: Optional[str] = None) -> None:
        self.kind = kind
        self.path = path
        super().__init__(message, path)


# ---------------------------------------------------------------------------
# Materialization
# ---------------------------------------------------------------------------


class MaterializeErrorKind(str, Enum):
    ROOT_EXISTS = "root_exists"
    ROOT_UNAVAILABLE = "root_unavailable"
    WRITE_FAILED = "write_failed"


class MaterializeError(ScaffoldError):
    """A root-level failure that aborts materialization."""

    stage = "materialize"

    def __init__(self, kind: MaterializeErrorKind, message: str, path: Optional[str] = None) -> None:
        self.kind = kind
        self.path = path
        super().__init__(message, path)
