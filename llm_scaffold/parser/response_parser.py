"""Extracts path-labeled file blocks from raw model output.

The model is asked (see ``llm_scaffold.prompt_gen``) to emit each file as a
``FILE: <path>`` marker line followed by one fenced block. This module scans
the text line by line, pairs markers with fences in the order they appear,
and refuses anything ambiguous: duplicate paths, substantial unlabeled
blocks, dangling markers and truncated fences are all parse errors. Uses
regex and line structure only -- no AI calls, no I/O.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Optional

from ..errors import ParseError, ParseErrorKind
from ..models import FileEntry, FileKind, LlmResponse, ParsedProject
from ..utils import truncate


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_MARKER_PATTERN = re.compile(
    r"^\s{0,3}(?:#{1,6}\s*)?(?:\*\*|__)?\s*file\s*:\s*(?P<path>.+?)\s*$",
    re.IGNORECASE,
)
_FENCE_OPEN_PATTERN = re.compile(r"^\s{0,3}(?P<fence>`{3,}|~{3,})(?P<info>.*)$")
_FENCE_CLOSE_PATTERN = re.compile(r"^\s{0,3}(?P<fence>`{3,}|~{3,})\s*$")

# Unlabeled blocks up to this many non-blank lines are treated as commentary
# (e.g. a "run it with" shell snippet) and ignored.
_TRIVIAL_BLOCK_LINES = 2

_DOCKERFILE_PATTERN = re.compile(r"^(dockerfile(\..+)?|.+\.dockerfile)$", re.IGNORECASE)
_COMPOSE_PATTERN = re.compile(r"^(docker-compose(\..+)?|compose)\.ya?ml$", re.IGNORECASE)

_CONFIG_NAMES = {
    "makefile", "gnumakefile", ".gitignore", ".dockerignore", ".editorconfig",
    ".gitattributes", ".npmrc", ".nvmrc", ".python-version", "procfile",
    "requirements.txt", "requirements-dev.txt", "go.mod", "go.sum",
    "cargo.lock", "gemfile", "gemfile.lock", "pipfile", "pipfile.lock",
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml",
}
_CONFIG_SUFFIXES = {
    ".json", ".toml", ".yaml", ".yml", ".ini", ".cfg", ".conf", ".env",
    ".properties", ".xml", ".gradle", ".lock", ".mk",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_path(label: str) -> str:
    """Normalize a declared path label.

    Trims whitespace, unifies separators to ``/``, strips leading and
    trailing slashes and drops empty and ``.`` segments. ``..`` segments are
    kept so the sanitizer can reject them.

    Examples::

        normalize_path(" src\\\\main.py ") -> "src/main.py"
        normalize_path("./app//api/")    -> "app/api"
    """
    unified = label.strip().replace("\\", "/")
    segments = [seg for seg in unified.split("/") if seg not in ("", ".")]
    return "/".join(segments)


def classify_kind(path: str) -> FileKind:
    """Classify a normalized path as source, config, dockerfile or compose."""
    name = PurePosixPath(path).name
    lower = name.lower()
    if _DOCKERFILE_PATTERN.match(lower):
        return FileKind.DOCKERFILE
    if _COMPOSE_PATTERN.match(lower):
        return FileKind.COMPOSE
    if lower in _CONFIG_NAMES or lower.startswith(".env"):
        return FileKind.CONFIG
    if PurePosixPath(lower).suffix in _CONFIG_SUFFIXES:
        return FileKind.CONFIG
    return FileKind.SOURCE


def _clean_label(raw: str) -> str:
    """Strip markdown decoration (bold, backticks, quotes) around a path."""
    label = raw.strip()
    previous = None
    while label != previous:
        previous = label
        label = label.strip().strip("*").strip().strip("`'\"").strip()
    return label


def _match_marker(line: str) -> Optional[str]:
    match = _MARKER_PATTERN.match(line)
    if not match:
        return None
    label = _clean_label(match.group("path"))
    return label or None


def _match_fence_open(line: str) -> Optional[str]:
    match = _FENCE_OPEN_PATTERN.match(line)
    if not match:
        return None
    fence = match.group("fence")
    # A backtick fence's info string may not contain backticks (inline code).
    if fence[0] == "`" and "`" in match.group("info"):
        return None
    return fence


def _closes(line: str, fence: str) -> bool:
    match = _FENCE_CLOSE_PATTERN.match(line)
    if not match:
        return False
    candidate = match.group("fence")
    return candidate[0] == fence[0] and len(candidate) >= len(fence)


class _Label:
    """A marker line waiting for its fenced block."""

    __slots__ = ("text", "line")

    def __init__(self, text: str, line: int) -> None:
        self.text = text
        self.line = line


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_text(text: str) -> ParsedProject:
    """Parse raw model output into a ``ParsedProject``.

    Raises:
        ParseError: On duplicate paths, substantial unlabeled blocks, markers
            without a block, unterminated blocks or an empty result.
    """
    lines = text.splitlines()
    entries: list[FileEntry] = []
    seen: dict[str, int] = {}
    pending: Optional[_Label] = None
    index = 0

    while index < len(lines):
        line = lines[index]
        fence = _match_fence_open(line)

        if fence is not None:
            start = index
            body: list[str] = []
            index += 1
            while index < len(lines) and not _closes(lines[index], fence):
                body.append(lines[index])
                index += 1
            if index >= len(lines):
                where = f"FILE: {pending.text}" if pending else truncate(line, 80)
                raise ParseError(
                    ParseErrorKind.UNTERMINATED_BLOCK,
                    "a code block is never closed; the response was probably truncated",
                    detail=where,
                    line=start + 1,
                )
            index += 1

            if pending is None:
                non_blank = [b for b in body if b.strip()]
                if len(non_blank) > _TRIVIAL_BLOCK_LINES:
                    raise ParseError(
                        ParseErrorKind.UNLABELED_CONTENT,
                        "a code block has no FILE: label",
                        detail=truncate("\n".join(non_blank[:3]), 160),
                        line=start + 1,
                    )
                continue

            path = normalize_path(pending.text)
            if path in seen:
                raise ParseError(
                    ParseErrorKind.DUPLICATE_PATH,
                    f"path declared twice (first on line {seen[path]})",
                    detail=path,
                    line=pending.line,
                )
            seen[path] = pending.line
            content = "\n".join(body) + "\n" if body else ""
            entries.append(
                FileEntry(
                    path=path,
                    label=pending.text,
                    content=content.encode("utf-8"),
                    kind=classify_kind(path),
                )
            )
            pending = None
            continue

        label = _match_marker(line)
        if label is not None:
            if pending is not None:
                raise ParseError(
                    ParseErrorKind.DANGLING_LABEL,
                    "FILE: label is not followed by a code block",
                    detail=pending.text,
                    line=pending.line,
                )
            pending = _Label(label, index + 1)
        elif line.strip() and pending is not None:
            raise ParseError(
                ParseErrorKind.DANGLING_LABEL,
                "FILE: label is not followed by a code block",
                detail=pending.text,
                line=pending.line,
            )
        index += 1

    if pending is not None:
        raise ParseError(
            ParseErrorKind.DANGLING_LABEL,
            "FILE: label at the end of the response has no code block",
            detail=pending.text,
            line=pending.line,
        )
    if not entries:
        raise ParseError(
            ParseErrorKind.EMPTY_PROJECT,
            "the response contains no FILE: blocks",
            detail=truncate(text, 160) or None,
        )

    has_manifest = any(e.kind in (FileKind.DOCKERFILE, FileKind.COMPOSE) for e in entries)
    return ParsedProject(files=tuple(entries), has_container_manifest=has_manifest)


def parse(response: LlmResponse) -> ParsedProject:
    """Parse a successful ``LlmResponse``.

    Raises:
        ParseError: ``unusable_response`` when the response is not a
            success, otherwise whatever ``parse_text`` raises.
    """
    if not response.ok:
        raise ParseError(
            ParseErrorKind.UNUSABLE_RESPONSE,
            f"cannot parse a response with status {response.status.value}",
            detail=response.error,
        )
    return parse_text(response.text)
