"""Scaffolding -- validates parsed files, adds container setup and writes them.

Quick usage::

    from llm_scaffold.scaffolder import DockerScaffoldGenerator, ProjectMaterializer, sanitize

    extra = DockerScaffoldGenerator().ensure_container_setup(parsed, "/tmp/out") or ()
    entries = sanitize(parsed.files + extra, "/tmp/out")
    report = ProjectMaterializer().materialize(entries, "/tmp/out")
"""

from llm_scaffold.scaffolder.docker_gen import DockerScaffoldGenerator
from llm_scaffold.scaffolder.materializer import ProjectMaterializer
from llm_scaffold.scaffolder.sanitizer import sanitize
from llm_scaffold.scaffolder.templates import TemplateRenderer

__all__ = [
    "DockerScaffoldGenerator",
    "ProjectMaterializer",
    "TemplateRenderer",
    "sanitize",
]
