"""Unit tests for the pipeline orchestrator and CLI (llm_scaffold.pipeline).

Tests cover:
- ScaffoldPipeline.run stage ordering and error propagation
- Nothing written when any stage before materialization fails
- Dry runs
- main(): argument handling, exit codes, interrupt handling
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from llm_scaffold.config import Config
from llm_scaffold.errors import (
    CredentialError,
    LlmTransportError,
    ParseError,
    ParseErrorKind,
    SanitizeError,
    SanitizeErrorKind,
)
from llm_scaffold.llm_client import LlmClient
from llm_scaffold.models import (
    MaterializationReport,
    MaterializationStatus,
    ProjectRequest,
    ResponseStatus,
    SkippedFile,
)
from llm_scaffold.pipeline import PipelineResult, ScaffoldPipeline, main

from conftest import VALID_KEY, completion_body, file_block


@pytest.fixture
def make_pipeline(scaffold_config: Config, scripted_endpoint, recording_sleep):
    def _make(script):
        endpoint = scripted_endpoint(script)
        client = LlmClient(
            scaffold_config.llm,
            scaffold_config.retry,
            transport=endpoint.transport(),
            sleep=recording_sleep,
            rng=lambda: 0.0,
        )
        return ScaffoldPipeline(scaffold_config, client), endpoint
    return _make


def _ok(text: str) -> httpx.Response:
    return httpx.Response(200, json=completion_body(text))


# ---------------------------------------------------------------------------
# ScaffoldPipeline.run
# ---------------------------------------------------------------------------


class TestRun:
    @pytest.mark.unit
    async def test_happy_path(self, make_pipeline, project_request, sample_model_text, target_root):
        pipeline, endpoint = make_pipeline([_ok(sample_model_text)])

        result = await pipeline.run(project_request, VALID_KEY)

        assert result.report.status is MaterializationStatus.COMPLETE
        assert result.generated_container
        assert result.attempts == 1
        assert [e.path for e in result.entries] == ["src/main.py", "README.md", "Dockerfile"]
        assert (target_root / "src" / "main.py").read_text(encoding="utf-8") == 'print("hello")\n'
        assert (target_root / "Dockerfile").exists()

    @pytest.mark.unit
    async def test_model_dockerfile_kept(self, make_pipeline, project_request, target_root):
        text = file_block("app.py", "print(1)") + file_block("Dockerfile", "FROM scratch")
        pipeline, _ = make_pipeline([_ok(text)])

        result = await pipeline.run(project_request, VALID_KEY)

        assert not result.generated_container
        assert (target_root / "Dockerfile").read_text(encoding="utf-8") == "FROM scratch\n"

    @pytest.mark.unit
    async def test_invalid_key_sends_nothing(self, make_pipeline, project_request, target_root):
        pipeline, endpoint = make_pipeline([])

        with pytest.raises(CredentialError):
            await pipeline.run(project_request, "not-a-key")

        assert endpoint.requests == []
        assert not target_root.exists()

    @pytest.mark.unit
    async def test_transport_failure_raises(self, make_pipeline, project_request, target_root):
        pipeline, _ = make_pipeline([httpx.Response(401, text="invalid api key")])

        with pytest.raises(LlmTransportError) as exc_info:
            await pipeline.run(project_request, VALID_KEY)

        assert exc_info.value.status is ResponseStatus.INVALID_CREDENTIAL
        assert exc_info.value.attempts == 1
        assert not target_root.exists()

    @pytest.mark.unit
    async def test_parse_failure_writes_nothing(self, make_pipeline, project_request, target_root):
        pipeline, _ = make_pipeline([_ok("Sorry, I cannot do that.")])

        with pytest.raises(ParseError) as exc_info:
            await pipeline.run(project_request, VALID_KEY)

        assert exc_info.value.kind is ParseErrorKind.EMPTY_PROJECT
        assert not target_root.exists()

    @pytest.mark.unit
    async def test_sanitize_failure_writes_nothing(self, make_pipeline, project_request, target_root):
        text = file_block("ok.txt", "fine") + file_block("/etc/hosts", "evil")
        pipeline, _ = make_pipeline([_ok(text)])

        with pytest.raises(SanitizeError) as exc_info:
            await pipeline.run(project_request, VALID_KEY)

        assert exc_info.value.kind is SanitizeErrorKind.ABSOLUTE_PATH
        assert not target_root.exists()

    @pytest.mark.unit
    async def test_dry_run(self, make_pipeline, project_request, sample_model_text, target_root):
        pipeline, _ = make_pipeline([_ok(sample_model_text)])

        result = await pipeline.run(project_request, VALID_KEY, dry_run=True)

        assert result.dry_run
        assert result.report is None
        assert len(result.entries) == 3
        assert not target_root.exists()

    @pytest.mark.unit
    async def test_existing_root_aborts(self, make_pipeline, project_request, sample_model_text, target_root):
        target_root.mkdir(parents=True)
        (target_root / "mine.txt").write_text("x", encoding="utf-8")
        pipeline, _ = make_pipeline([_ok(sample_model_text)])

        result = await pipeline.run(project_request, VALID_KEY)

        assert result.report.status is MaterializationStatus.ABORTED
        assert sorted(p.name for p in target_root.iterdir()) == ["mine.txt"]

    @pytest.mark.unit
    async def test_overwrite(self, make_pipeline, project_request, sample_model_text, target_root):
        target_root.mkdir(parents=True)
        (target_root / "mine.txt").write_text("x", encoding="utf-8")
        pipeline, _ = make_pipeline([_ok(sample_model_text)])

        result = await pipeline.run(project_request, VALID_KEY, overwrite=True)

        assert result.report.status is MaterializationStatus.COMPLETE
        assert (target_root / "README.md").exists()
        assert (target_root / "mine.txt").exists()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _result(root: Path, status: MaterializationStatus, **kwargs) -> PipelineResult:
    report = MaterializationReport(target_root=root, status=status, **kwargs)
    return PipelineResult(target_root=root, report=report, attempts=1, elapsed=0.5)


class TestMain:
    @pytest.mark.unit
    def test_complete_exits_zero(self, tmp_path: Path):
        result = _result(tmp_path / "p", MaterializationStatus.COMPLETE, files_written=("a.txt",))
        with patch.object(ScaffoldPipeline, "run", AsyncMock(return_value=result)) as run:
            main(["A todo app", "-o", str(tmp_path / "p"), "--api-key", VALID_KEY])

        request: ProjectRequest = run.call_args.args[0]
        assert request.description == "A todo app"
        assert request.target_root == tmp_path / "p"
        assert run.call_args.args[1] == VALID_KEY

    @pytest.mark.unit
    def test_partial_failure_exits_zero(self, tmp_path: Path):
        result = _result(
            tmp_path / "p",
            MaterializationStatus.PARTIAL_FAILURE,
            files_written=("a.txt",),
            files_skipped=(SkippedFile(path="b.txt", reason="PermissionError: denied"),),
        )
        with patch.object(ScaffoldPipeline, "run", AsyncMock(return_value=result)):
            main(["A todo app", "-o", str(tmp_path / "p"), "--api-key", VALID_KEY])

    @pytest.mark.unit
    def test_aborted_exits_one(self, tmp_path: Path):
        result = _result(
            tmp_path / "p",
            MaterializationStatus.ABORTED,
            abort_kind="root_exists",
            abort_reason="not empty",
        )
        with patch.object(ScaffoldPipeline, "run", AsyncMock(return_value=result)):
            with pytest.raises(SystemExit) as exc_info:
                main(["A todo app", "-o", str(tmp_path / "p"), "--api-key", VALID_KEY])
        assert exc_info.value.code == 1

    @pytest.mark.unit
    def test_scaffold_error_exits_one(self, tmp_path: Path):
        error = SanitizeError(SanitizeErrorKind.TRAVERSAL, "parent-directory segments are not allowed", "../x")
        with patch.object(ScaffoldPipeline, "run", AsyncMock(side_effect=error)):
            with pytest.raises(SystemExit) as exc_info:
                main(["A todo app", "-o", str(tmp_path / "p"), "--api-key", VALID_KEY])
        assert exc_info.value.code == 1

    @pytest.mark.unit
    def test_error_detail_with_brackets_exits_one(self, tmp_path: Path):
        error = ParseError(
            ParseErrorKind.UNLABELED_CONTENT,
            "code block without a FILE: label",
            'parts = re.split(r"[/\\\\]", p)',
            line=3,
        )
        with patch.object(ScaffoldPipeline, "run", AsyncMock(side_effect=error)):
            with pytest.raises(SystemExit) as exc_info:
                main(["A todo app", "-o", str(tmp_path / "p"), "--api-key", VALID_KEY])
        assert exc_info.value.code == 1

    @pytest.mark.unit
    def test_partial_failure_with_bracketed_paths(self, tmp_path: Path):
        root = tmp_path / "[/]out"
        result = _result(
            root,
            MaterializationStatus.PARTIAL_FAILURE,
            files_written=("docs/[/bold]a.md",),
            files_skipped=(SkippedFile(path="docs/[/]x.md", reason="PermissionError: [Errno 13] denied"),),
        )
        with patch.object(ScaffoldPipeline, "run", AsyncMock(return_value=result)):
            main(["A [/red] app", "-o", str(root), "-n", "[/x]", "--api-key", VALID_KEY])

    @pytest.mark.unit
    def test_blank_description_exits_one(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["   "])
        assert exc_info.value.code == 1

    @pytest.mark.unit
    def test_interrupt_exits_130(self, tmp_path: Path):
        def interrupted(coro):
            coro.close()
            raise KeyboardInterrupt

        with patch("llm_scaffold.pipeline.asyncio.run", side_effect=interrupted), \
                patch("llm_scaffold.pipeline.print_warning") as warn:
            with pytest.raises(SystemExit) as exc_info:
                main(["A todo app", "-o", str(tmp_path / "p"), "--api-key", VALID_KEY])
        assert exc_info.value.code == 130
        warn.assert_called_once_with("Interrupted.")

    @pytest.mark.unit
    def test_options_reach_config_and_request(self, tmp_path: Path):
        result = PipelineResult(target_root=tmp_path / "p")
        captured = {}

        async def fake_run(self, request, api_key, **kwargs):
            captured["config"] = self.config
            captured["request"] = request
            captured["kwargs"] = kwargs
            return result

        with patch.object(ScaffoldPipeline, "run", fake_run):
            main([
                "A snake game", "-o", str(tmp_path / "p"), "-n", "snake", "-l", "Rust",
                "-m", "gpt-4o-mini", "--max-tokens", "4000", "--api-key", VALID_KEY,
                "--overwrite", "--dry-run",
            ])

        assert captured["config"].llm.model == "gpt-4o-mini"
        assert captured["config"].llm.max_tokens == 4000
        assert captured["request"].project_name == "snake"
        assert captured["request"].language == "Rust"
        assert captured["kwargs"]["overwrite"] is True
        assert captured["kwargs"]["dry_run"] is True

    @pytest.mark.unit
    def test_default_output_from_name(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = PipelineResult(target_root=Path("my-app"))
        with patch.object(ScaffoldPipeline, "run", AsyncMock(return_value=result)) as run:
            main(["An app", "-n", "My App", "--api-key", VALID_KEY, "--dry-run"])
        assert run.call_args.args[0].target_root == Path("my-app")

    @pytest.mark.unit
    def test_config_file(self, tmp_path: Path):
        config_path = Config(retry={"max_attempts": 2}).save(tmp_path / "cfg.json")
        captured = {}

        async def fake_run(self, request, api_key, **kwargs):
            captured["config"] = self.config
            return PipelineResult(target_root=request.target_root)

        with patch.object(ScaffoldPipeline, "run", fake_run):
            main(["An app", "-o", str(tmp_path / "p"), "--config", str(config_path), "--api-key", VALID_KEY, "--dry-run"])

        assert captured["config"].retry.max_attempts == 2

    @pytest.mark.unit
    def test_unreadable_config_exits_one(self, tmp_path: Path):
        with pytest.raises(SystemExit) as exc_info:
            main(["An app", "--config", str(tmp_path / "missing.json")])
        assert exc_info.value.code == 1
