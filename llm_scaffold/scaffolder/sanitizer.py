"""Path and size validation for parsed file entries.

Pure validation: nothing here touches the filesystem, so every rule can be
tested with synthetic entries. A single bad entry rejects the whole batch;
unsafe entries are never silently dropped.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Iterable, Optional

from ..config import LimitsConfig
from ..errors import SanitizeError, SanitizeErrorKind
from ..models import FileEntry
from ..utils import format_bytes

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")


def is_absolute_label(label: str) -> bool:
    """``True`` for POSIX roots, Windows drives, UNC shares and ``~`` paths."""
    stripped = label.strip()
    if not stripped:
        return False
    if stripped[0] in ("/", "\\", "~"):
        return True
    return bool(_DRIVE_PATTERN.match(stripped))


def is_within(root: str, candidate: str) -> bool:
    """Lexically check that *candidate* lies strictly inside *root*."""
    try:
        common = os.path.commonpath([root, candidate])
    except ValueError:
        # Different drives on Windows.
        return False
    return common == root and candidate != root


def _check_entry(entry: FileEntry, root: str) -> None:
    label = entry.label or entry.path

    if is_absolute_label(label):
        raise SanitizeError(
            SanitizeErrorKind.ABSOLUTE_PATH, "absolute paths are not allowed", label
        )
    if ".." in entry.segments or ".." in label.replace("\\", "/").split("/"):
        raise SanitizeError(
            SanitizeErrorKind.TRAVERSAL, "parent-directory segments are not allowed", label
        )
    if not entry.segments:
        raise SanitizeError(SanitizeErrorKind.INVALID_PATH, "empty path", label)
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in entry.path):
        raise SanitizeError(
            SanitizeErrorKind.INVALID_PATH, "path contains control characters", repr(label)
        )

    candidate = os.path.normpath(os.path.join(root, *entry.segments))
    if not is_within(root, candidate):
        raise SanitizeError(
            SanitizeErrorKind.TRAVERSAL, "path resolves outside the target root", label
        )


def sanitize(
    entries: Iterable[FileEntry],
    target_root: str | Path,
    limits: Optional[LimitsConfig] = None,
) -> tuple[FileEntry, ...]:
    """Validate every entry against *target_root* and the size *limits*.

    Returns:
        The entries, unchanged and in their original order.

    Raises:
        SanitizeError: ``absolute_path``, ``traversal`` or ``invalid_path``
            for an unsafe path, ``too_large`` for an oversized file,
            ``quota_exceeded`` when the batch exceeds the total-size or
            file-count ceiling.
    """
    limits = limits or LimitsConfig()
    root = os.path.normpath(os.path.abspath(str(target_root)))

    accepted: list[FileEntry] = []
    total = 0
    for entry in entries:
        _check_entry(entry, root)

        if entry.size > limits.max_file_bytes:
            raise SanitizeError(
                SanitizeErrorKind.TOO_LARGE,
                f"file is {format_bytes(entry.size)}, limit is {format_bytes(limits.max_file_bytes)}",
                entry.path,
            )

        total += entry.size
        if total > limits.max_total_bytes:
            raise SanitizeError(
                SanitizeErrorKind.QUOTA_EXCEEDED,
                f"project exceeds the total size limit of {format_bytes(limits.max_total_bytes)}",
                entry.path,
            )
        if len(accepted) + 1 > limits.max_files:
            raise SanitizeError(
                SanitizeErrorKind.QUOTA_EXCEEDED,
                f"project exceeds the limit of {limits.max_files} files",
                entry.path,
            )
        accepted.append(entry)

    return tuple(accepted)
