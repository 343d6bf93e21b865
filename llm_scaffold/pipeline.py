"""llm-scaffold pipeline orchestrator.

Runs one description through the stages in order:

1. CREDENTIALS -- local shape check of the API key.
2. COMPOSE     -- build the prompt.
3. QUERY       -- call the model, retrying transient failures.
4. PARSE       -- extract ``FILE:`` blocks from the answer.
5. CONTAINER   -- add a baseline Dockerfile if the model gave none.
6. SANITIZE    -- reject unsafe paths and oversized output.
7. WRITE       -- materialize the files under the target root.

Every stage before WRITE is side-effect free, so any failure up to and
including SANITIZE leaves the filesystem untouched.

Usage::

    python -m llm_scaffold "A CLI todo app with sqlite storage" -o ./todo
    llm-scaffold "A REST API for bookmarks" --language Go --dry-run
"""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from llm_scaffold.config import Config
from llm_scaffold.credentials import resolve_api_key, validate_credential
from llm_scaffold.errors import LlmTransportError, MaterializeError, MaterializeErrorKind, ScaffoldError
from llm_scaffold.llm_client import LlmClient
from llm_scaffold.models import FileEntry, MaterializationReport, MaterializationStatus, ProjectRequest
from llm_scaffold.parser import parse
from llm_scaffold.prompt_gen import compose
from llm_scaffold.scaffolder import DockerScaffoldGenerator, ProjectMaterializer, sanitize
from llm_scaffold.utils import (
    console,
    format_bytes,
    format_duration,
    print_error,
    print_success,
    print_summary_table,
    print_warning,
    sanitize_name,
)

DISCLAIMER = (
    "This project was generated by a language model. "
    "Review the code before building or running it."
)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class PipelineResult:
    """Outcome of one pipeline run.

    ``report`` is ``None`` for dry runs, where nothing is written.
    """

    target_root: Path
    entries: tuple[FileEntry, ...] = field(default_factory=tuple)
    report: Optional[MaterializationReport] = None
    generated_container: bool = False
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def dry_run(self) -> bool:
        return self.report is None


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ScaffoldPipeline:
    """Drives a ``ProjectRequest`` through every stage.

    Attributes:
        config: Global configuration (endpoint, retry policy, limits).
        client: LLM client; built from *config* when not supplied.
        docker: Generator for the fallback container files.
    """

    def __init__(self, config: Optional[Config] = None, client: Optional[LlmClient] = None) -> None:
        self.config = config or Config()
        self.client = client or LlmClient(self.config.llm, self.config.retry)
        self.docker = DockerScaffoldGenerator()

    async def run(
        self,
        request: ProjectRequest,
        api_key: Optional[str],
        *,
        overwrite: bool = False,
        dry_run: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PipelineResult:
        """Run the full pipeline for *request*.

        Raises:
            CredentialError, LlmTransportError, ParseError, SanitizeError:
                a stage failed; nothing has been written.
        """
        started = time.monotonic()

        credential = validate_credential(api_key, self.config.credentials)
        query = compose(request)

        response = await self.client.send(query, credential, cancel_event=cancel_event)
        if not response.ok:
            raise LlmTransportError(
                response.status,
                response.error or "the model endpoint returned no usable response",
                retryable=response.retryable,
                attempts=response.attempts,
            )

        parsed = parse(response)
        generated = self.docker.ensure_container_setup(
            parsed, request.target_root, request.effective_name
        )
        planned = parsed.files + (generated or ())
        entries = sanitize(planned, request.target_root, self.config.limits)

        report = None
        if not dry_run:
            materializer = ProjectMaterializer(overwrite=overwrite)
            report = materializer.materialize(entries, request.target_root)

        return PipelineResult(
            target_root=request.target_root,
            entries=entries,
            report=report,
            generated_container=generated is not None,
            attempts=response.attempts,
            elapsed=time.monotonic() - started,
        )


# ---------------------------------------------------------------------------
# Console output
# ---------------------------------------------------------------------------


def _print_plan(result: PipelineResult) -> None:
    table = Table(title="Planned files", show_header=True, header_style="bold cyan")
    table.add_column("Path")
    table.add_column("Kind", style="dim")
    table.add_column("Size", justify="right")
    for entry in result.entries:
        table.add_row(escape(entry.path), entry.kind.value, format_bytes(entry.size))
    console.print(table)
    console.print()


def _print_report(result: PipelineResult) -> None:
    report = result.report
    assert report is not None
    print_summary_table(
        {
            "Target": str(report.target_root),
            "Status": report.status.value,
            "Directories created": str(report.directories_created),
            "Files written": str(report.files_written_count),
            "Files skipped": str(report.files_skipped_count),
            "Container files generated": "yes" if result.generated_container else "no",
            "LLM attempts": str(result.attempts),
            "Duration": format_duration(result.elapsed),
        },
        title="Scaffold Report",
    )
    for skipped in report.files_skipped:
        print_warning(f"  skipped {skipped.path}: {skipped.reason}")


def _print_next_steps(target_root: Path) -> None:
    console.print(
        Panel(
            "\n".join([
                DISCLAIMER,
                "",
                "Next steps:",
                f"  cd {escape(str(target_root))}",
                "  make build",
                "  make run",
            ]),
            title="[bold]Done[/bold]",
            border_style="green",
        )
    )


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _build_config(args) -> Config:
    config = Config.load(Path(args.config)) if args.config else Config.from_env()
    if args.model:
        config.llm.model = args.model
    if args.max_tokens:
        config.llm.max_tokens = args.max_tokens
    return config


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for ``llm-scaffold`` / ``python -m llm_scaffold``."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="llm-scaffold",
        description="llm-scaffold -- generate a project skeleton from a description",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            '  llm-scaffold "A URL shortener with a REST API" -o ./shortener\n'
            '  llm-scaffold "A snake game for the terminal" -l Rust -n snake\n'
            '  llm-scaffold "A markdown to HTML converter" --dry-run\n'
        ),
    )

    parser.add_argument(
        "description",
        help="Free-text description of the project to generate",
    )
    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Target directory (default: ./<name>)",
    )
    parser.add_argument(
        "--name", "-n",
        default=None,
        help="Project name hint (default: the target directory name)",
    )
    parser.add_argument(
        "--language", "-l",
        default=None,
        help="Programming language hint (default: let the model choose)",
    )
    parser.add_argument(
        "--model", "-m",
        default=None,
        help="Model name (default: gpt-3.5-turbo)",
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=None,
        help="Maximum tokens in the model's answer (default: 2048)",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="API key (default: $OPENAI_API_KEY)",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Write into an existing non-empty target directory",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Query, parse and validate, but do not write anything",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a JSON configuration file",
    )

    args = parser.parse_args(argv)

    if not args.description.strip():
        print_error("Error: the project description must not be empty")
        sys.exit(EXIT_FAILURE)

    try:
        config = _build_config(args)
    except (OSError, ValueError) as exc:
        print_error(f"Error: cannot load configuration: {exc}")
        sys.exit(EXIT_FAILURE)

    target = Path(args.output) if args.output else Path(sanitize_name(args.name or "") or "app")
    request = ProjectRequest(
        description=args.description,
        target_root=target,
        project_name=args.name,
        language=args.language,
    )
    api_key = resolve_api_key(args.api_key, config.llm.api_key_env)

    pipeline = ScaffoldPipeline(config)
    console.print(
        f"[bold cyan]Generating {escape(request.effective_name)} "
        f"with {escape(config.llm.model)}...[/bold cyan]"
    )

    try:
        result = asyncio.run(
            pipeline.run(
                request,
                api_key,
                overwrite=args.overwrite,
                dry_run=args.dry_run,
            )
        )
    except KeyboardInterrupt:
        # asyncio.run has already cancelled the pipeline task; files written
        # before the interrupt stay in place.
        print_warning("Interrupted.")
        sys.exit(EXIT_INTERRUPTED)
    except ScaffoldError as exc:
        print_error(f"Error: {exc}")
        sys.exit(EXIT_FAILURE)

    if result.dry_run:
        _print_plan(result)
        print_success(f"Dry run: {len(result.entries)} file(s) would be written to {target}")
        return

    report = result.report
    assert report is not None
    _print_report(result)

    if report.status is MaterializationStatus.ABORTED:
        error = MaterializeError(
            MaterializeErrorKind(report.abort_kind or MaterializeErrorKind.ROOT_UNAVAILABLE.value),
            report.abort_reason or "materialization aborted",
            str(report.target_root),
        )
        print_error(f"Error: {error}")
        sys.exit(EXIT_FAILURE)

    if report.status is MaterializationStatus.PARTIAL_FAILURE:
        print_warning(f"Project written with {report.files_skipped_count} skipped file(s).")
    else:
        print_success(f"Project written to {report.target_root}")
    _print_next_steps(report.target_root)


if __name__ == "__main__":
    main()
