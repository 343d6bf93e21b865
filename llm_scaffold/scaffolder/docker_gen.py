"""Baseline Dockerfile / compose generation.

When the model's response carries no container setup, this module inspects
the parsed file set (marker files first, then extensions) to pick one of a
small fixed set of Jinja2 templates and renders a minimal Dockerfile. If
several independent top-level components are found, each gets its own
Dockerfile and a root ``docker-compose.yml`` references them. Detection is
best-effort: anything unrecognised falls back to the generic template.
Nothing is executed or fetched.
"""

from __future__ import annotations

import re
from collections import Counter
from pathlib import Path, PurePosixPath
from typing import Any, Optional, Sequence

from ..models import FileEntry, FileKind, ParsedProject
from ..utils import sanitize_name
from .templates import TemplateRenderer

GENERIC = "generic"

# Marker file name -> stack. Marker files win over extension counts.
_STACK_MARKERS: dict[str, str] = {
    "requirements.txt": "python",
    "pyproject.toml": "python",
    "setup.py": "python",
    "pipfile": "python",
    "package.json": "node",
    "go.mod": "go",
    "cargo.toml": "rust",
    "pom.xml": "java",
    "build.gradle": "java",
    "build.gradle.kts": "java",
}

_STACK_EXTENSIONS: dict[str, str] = {
    ".py": "python",
    ".js": "node",
    ".mjs": "node",
    ".cjs": "node",
    ".ts": "node",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
}

_ENTRYPOINTS: dict[str, tuple[str, ...]] = {
    "python": ("main.py", "app.py", "server.py", "run.py", "manage.py"),
    "node": ("index.js", "main.js", "server.js", "app.js"),
}

_CARGO_NAME_PATTERN = re.compile(r'^\s*name\s*=\s*"([^"]+)"', re.MULTILINE)
_GO_MODULE_PATTERN = re.compile(r"^\s*module\s+(\S+)", re.MULTILINE)


class Component:
    """A directory (or the root, ``path=""``) built into one container image."""

    __slots__ = ("path", "files")

    def __init__(self, path: str, files: Sequence[FileEntry]) -> None:
        self.path = path
        self.files = list(files)

    def relative(self, entry: FileEntry) -> PurePosixPath:
        """Path of *entry* relative to this component."""
        full = PurePosixPath(entry.path)
        return full.relative_to(self.path) if self.path else full

    def names(self) -> set[str]:
        """Lower-cased names of files directly inside the component."""
        return {self.relative(f).name.lower() for f in self.files if len(self.relative(f).parts) == 1}

    def __repr__(self) -> str:
        return f"Component(path={self.path!r}, files={len(self.files)})"


# ---------------------------------------------------------------------------
# Detection helpers
# ---------------------------------------------------------------------------

def detect_stack(component: Component) -> str:
    """Return ``python``/``node``/``go``/``rust``/``java`` or ``generic``."""
    # Markers directly in the component, in discovery order.
    for entry in component.files:
        rel = component.relative(entry)
        if len(rel.parts) == 1 and rel.name.lower() in _STACK_MARKERS:
            return _STACK_MARKERS[rel.name.lower()]

    counts: Counter[str] = Counter()
    first_seen: dict[str, int] = {}
    for position, entry in enumerate(component.files):
        stack = _STACK_EXTENSIONS.get(PurePosixPath(entry.path).suffix.lower())
        if stack:
            counts[stack] += 1
            first_seen.setdefault(stack, position)
    if not counts:
        return GENERIC
    return max(counts, key=lambda s: (counts[s], -first_seen[s]))


def detect_components(files: Sequence[FileEntry]) -> list[Component]:
    """Split the file set into independently buildable components.

    A top-level directory is a component when it directly holds a stack
    marker file. Fewer than two such directories means the project is one
    component rooted at the project root.
    """
    by_dir: dict[str, list[FileEntry]] = {}
    for entry in files:
        if len(entry.segments) > 1:
            by_dir.setdefault(entry.segments[0], []).append(entry)

    components = [
        Component(name, members)
        for name, members in by_dir.items()
        if any(len(m.segments) == 2 and m.segments[1].lower() in _STACK_MARKERS for m in members)
    ]
    if len(components) >= 2:
        return components
    return [Component("", files)]


def _find_entrypoint(component: Component, stack: str) -> Optional[str]:
    candidates = _ENTRYPOINTS.get(stack, ())
    matches = [
        component.relative(f)
        for f in component.files
        if component.relative(f).name in candidates
    ]
    if not matches:
        return None
    # Shallowest first, then by preference order of the candidate names.
    best = min(matches, key=lambda p: (len(p.parts), candidates.index(p.name)))
    return best.as_posix()


def _binary_name(component: Component, fallback: str) -> str:
    """Crate name from ``Cargo.toml`` or last module segment from ``go.mod``."""
    for entry in component.files:
        rel = component.relative(entry)
        if len(rel.parts) != 1:
            continue
        text = entry.content.decode("utf-8", errors="replace")
        name = rel.name.lower()
        if name == "cargo.toml":
            match = _CARGO_NAME_PATTERN.search(text)
            if match:
                return match.group(1)
        elif name == "go.mod":
            match = _GO_MODULE_PATTERN.search(text)
            if match:
                return match.group(1).rstrip("/").rsplit("/", 1)[-1]
    return fallback


def _service_names(components: Sequence[Component]) -> list[str]:
    """Compose service keys, one per component, unique after slugging.

    ``Web`` and ``web`` both slug to ``web``; later clashes get ``-2``,
    ``-3`` and so on.
    """
    names: list[str] = []
    taken: set[str] = set()
    for position, component in enumerate(components, start=1):
        base = sanitize_name(component.path) or f"service-{position}"
        name, suffix = base, 2
        while name in taken:
            name = f"{base}-{suffix}"
            suffix += 1
        taken.add(name)
        names.append(name)
    return names


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class DockerScaffoldGenerator:
    """Synthesizes baseline container files for projects that lack them."""

    def __init__(self, renderer: Optional[TemplateRenderer] = None) -> None:
        self.renderer = renderer or TemplateRenderer()

    def ensure_container_setup(
        self,
        parsed: ParsedProject,
        target_root: str | Path,
        project_name: Optional[str] = None,
    ) -> Optional[tuple[FileEntry, ...]]:
        """Return generated container files, or ``None`` when the model
        already supplied a Dockerfile or compose file.
        """
        if parsed.has_container_manifest:
            return None

        name = project_name or Path(target_root).name or "app"
        components = detect_components(parsed.files)
        generated: list[FileEntry] = []

        for component in components:
            context = self._build_context(component, name)
            content = self.renderer.render(self._dockerfile_template(context["stack"]), context)
            path = f"{component.path}/Dockerfile" if component.path else "Dockerfile"
            generated.append(
                FileEntry(path=path, label=path, content=content.encode("utf-8"), kind=FileKind.DOCKERFILE)
            )

        if len(components) > 1:
            services = [
                {"service": service, "path": c.path}
                for service, c in zip(_service_names(components), components)
            ]
            content = self.renderer.render(
                "docker-compose.yml.j2", {"project_name": name, "components": services}
            )
            generated.append(
                FileEntry(
                    path="docker-compose.yml",
                    label="docker-compose.yml",
                    content=content.encode("utf-8"),
                    kind=FileKind.COMPOSE,
                )
            )

        return tuple(generated)

    def _dockerfile_template(self, stack: str) -> str:
        """Stack template, or the generic one when a custom template
        directory does not provide it."""
        template = f"Dockerfile.{stack}.j2"
        if self.renderer.has_template(template):
            return template
        return f"Dockerfile.{GENERIC}.j2"

    @staticmethod
    def _build_context(component: Component, project_name: str) -> dict[str, Any]:
        stack = detect_stack(component)
        names = component.names()
        slug = sanitize_name(project_name) or "app"
        display = f"{project_name}/{component.path}" if component.path else project_name
        return {
            "project_name": display,
            "slug": slug,
            "stack": stack,
            "entrypoint": _find_entrypoint(component, stack),
            "has_requirements": "requirements.txt" in names,
            "has_pyproject": "pyproject.toml" in names,
            "has_package_json": "package.json" in names,
            "has_go_mod": "go.mod" in names,
            "has_makefile": "makefile" in names,
            "build_tool": "gradle" if names & {"build.gradle", "build.gradle.kts"} else "maven",
            "binary_name": _binary_name(component, sanitize_name(component.path) or slug),
        }
