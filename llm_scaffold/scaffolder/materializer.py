"""Writes a validated set of file entries under a target root.

The materializer is the only component that mutates the filesystem. It
refuses to write into an existing non-empty directory unless overwrite mode
is requested, writes every file through a temporary sibling so no truncated
file is ever left under its final name, and keeps going when a single file
cannot be written -- the failure is recorded in the report instead.
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Iterable, Sequence

from ..errors import MaterializeErrorKind
from ..models import FileEntry, MaterializationReport, MaterializationStatus, SkippedFile


class _EscapesRoot(Exception):
    """An entry would land outside the root (unsafe path or outward symlink)."""


def _is_descendant(root: Path, candidate: Path) -> bool:
    return candidate != root and root in candidate.parents


class ProjectMaterializer:
    """Materializes entries on disk and reports what happened.

    Args:
        overwrite: Allow writing into an existing non-empty target root.
            Only the paths in the entry set are touched.
    """

    def __init__(self, overwrite: bool = False) -> None:
        self.overwrite = overwrite

    # -- Public API --------------------------------------------------------

    def materialize(
        self, entries: Iterable[FileEntry], target_root: str | Path
    ) -> MaterializationReport:
        """Write *entries* under *target_root* in the given order.

        Returns:
            A report with status ``Complete``, ``PartialFailure`` (some files
            were skipped) or ``Aborted`` (root-level failure, nothing written).
        """
        root = Path(target_root)
        created: list[Path] = []

        try:
            if root.exists():
                if not root.is_dir():
                    return self._aborted(
                        root,
                        MaterializeErrorKind.ROOT_UNAVAILABLE,
                        f"{root} exists and is not a directory",
                    )
                if not self.overwrite and any(root.iterdir()):
                    return self._aborted(
                        root,
                        MaterializeErrorKind.ROOT_EXISTS,
                        f"{root} already exists and is not empty (use overwrite mode to write into it)",
                    )
            else:
                self._create_root(root, created)
            resolved_root = root.resolve()
        except OSError as exc:
            return self._aborted(
                root,
                MaterializeErrorKind.ROOT_UNAVAILABLE,
                f"cannot create {root}: {exc.strerror or exc}",
            )

        written: list[str] = []
        skipped: list[SkippedFile] = []
        for entry in entries:
            try:
                if not entry.segments or ".." in entry.segments:
                    raise _EscapesRoot(f"{entry.path!r} is not a safe relative path")
                self._ensure_parents(resolved_root, entry.segments[:-1], created)
                destination = resolved_root.joinpath(*entry.segments)
                self._write_atomic(destination, entry.content)
                if entry.content.startswith(b"#!"):
                    _make_executable(destination)
            except _EscapesRoot as exc:
                skipped.append(SkippedFile(path=entry.path, reason=str(exc)))
                continue
            except OSError as exc:
                reason = f"{type(exc).__name__}: {exc.strerror or exc}"
                skipped.append(SkippedFile(path=entry.path, reason=reason))
                continue
            written.append(entry.path)

        status = MaterializationStatus.PARTIAL_FAILURE if skipped else MaterializationStatus.COMPLETE
        return MaterializationReport(
            target_root=root,
            status=status,
            directories_created=len(created),
            files_written=tuple(written),
            files_skipped=tuple(skipped),
        )

    # -- Internal helpers --------------------------------------------------

    @staticmethod
    def _aborted(root: Path, kind: MaterializeErrorKind, reason: str) -> MaterializationReport:
        return MaterializationReport(
            target_root=root,
            status=MaterializationStatus.ABORTED,
            abort_kind=kind.value,
            abort_reason=reason,
        )

    @staticmethod
    def _create_root(root: Path, created: list[Path]) -> None:
        """Create *root* and any missing parents, recording each new directory."""
        missing: list[Path] = []
        current = root.absolute()
        while not current.exists():
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent
        for directory in reversed(missing):
            directory.mkdir()
            created.append(directory)

    @staticmethod
    def _ensure_parents(root: Path, segments: Sequence[str], created: list[Path]) -> None:
        """Create intermediate directories one segment at a time.

        Walking segment by segment means an existing symlink is checked
        before anything is created beneath it.
        """
        current = root
        for segment in segments:
            current = current / segment
            if current.is_symlink() and not _is_descendant(root, current.resolve()):
                raise _EscapesRoot(f"{current.relative_to(root)} links outside the target root")
            if not current.exists():
                current.mkdir()
                created.append(current)
            elif not current.is_dir():
                raise NotADirectoryError(20, "Not a directory", str(current))

    @staticmethod
    def _write_atomic(destination: Path, content: bytes) -> None:
        """Write via a temporary sibling and ``os.replace``."""
        tmp = destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            with open(tmp, "xb") as fh:
                fh.write(content)
            os.replace(tmp, destination)
        except OSError:
            if tmp.exists():
                tmp.unlink()
            raise


def _make_executable(path: Path) -> None:
    """Mirror read bits onto execute bits for scripts with a shebang."""
    mode = path.stat().st_mode
    path.chmod(mode | ((mode & 0o444) >> 2))
