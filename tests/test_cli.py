"""Smoke tests for the CLI.

These tests verify CLI behavior without requiring docker, git,
network access or a registry.
"""

import json
import logging
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from image_release import __version__
from image_release.cli import app
from image_release.db import history_session, open_history
from image_release.errors import TagConflictError
from image_release.pipeline import PipelineResult
from image_release.runs.service import start_run
from image_release.types import RunStatus, Stage, StageStatus

runner = CliRunner()

COMMIT = "0123456789abcdef0123456789abcdef01234567"


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo logging configuration done by commands."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def release_env(monkeypatch, tmp_path: Path) -> Path:
    """Configure the environment for a release run."""
    monkeypatch.setenv("IMG_RELEASE_REGISTRY", "registry.example.com")
    monkeypatch.setenv("IMG_RELEASE_IMAGE_NAME", "windmill")
    monkeypatch.setenv("IMG_RELEASE_RUN_ORDINAL", "7")
    monkeypatch.setenv("IMG_RELEASE_WORKSPACE", str(tmp_path))
    monkeypatch.setenv("IMG_RELEASE_LOG_LEVEL", "CRITICAL")
    return tmp_path


@pytest.fixture
def db_url(monkeypatch, tmp_path: Path) -> str:
    """Point the run history at a temporary database."""
    url = f"sqlite:///{tmp_path / 'db.sqlite'}"
    monkeypatch.setenv("IMG_RELEASE_DB_URL", url)
    return url


def _git_head() -> MagicMock:
    return MagicMock(returncode=0, stdout=COMMIT + "\n", stderr="")


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Image Release" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_sections(self) -> None:
        """CLI config should show every section."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        for section in ("Registry:", "Run:", "Build:", "Caches:", "Operational:"):
            assert section in result.stdout

    def test_config_hides_secrets(self, monkeypatch) -> None:
        """Secret values should never be printed."""
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIDEXAMPLE")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "s3cr3t")
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "s3cr3t" not in result.stdout
        assert "AKIDEXAMPLE" not in result.stdout
        assert "Secrets configured:  True" in result.stdout

    def test_config_json(self, monkeypatch) -> None:
        """CLI config --json should output valid JSON without secrets."""
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "s3cr3t")
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["region"] == "sa-east-1"
        assert "secret_access_key" not in data
        assert "s3cr3t" not in result.stdout


class TestCLIVersion:
    """Test CLI version command."""

    def test_version(self) -> None:
        """Should print the version for a date and ordinal."""
        result = runner.invoke(app, ["version", "--date", "2024-05-01", "-n", "7"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "2024.05.01-7"

    def test_version_from_ci_run_number(self, monkeypatch) -> None:
        """The ordinal should default to the CI run number."""
        monkeypatch.setenv("GITHUB_RUN_NUMBER", "12")
        result = runner.invoke(app, ["version", "-d", "2024-01-02"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "2024.01.02-12"

    @patch("image_release.version.utc_today", return_value=date(2024, 12, 31))
    def test_version_defaults_to_utc_date(self, _mock_today: MagicMock) -> None:
        """Without --date the version should use the UTC date like a run does."""
        result = runner.invoke(app, ["version", "-n", "3"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "2024.12.31-3"

    def test_version_without_ordinal(self) -> None:
        """Missing ordinal should exit 1."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 1

    def test_version_invalid_date(self) -> None:
        """Invalid dates should exit 1."""
        result = runner.invoke(app, ["version", "-d", "01/05/2024", "-n", "1"])
        assert result.exit_code == 1
        assert "Invalid date" in result.stdout


class TestCLIRun:
    """Test CLI run command."""

    @patch("image_release.revision.tagger.subprocess.run")
    def test_missing_registry(self, mock_run: MagicMock, release_env, monkeypatch):
        """A run without a registry should fail with config_error."""
        monkeypatch.delenv("IMG_RELEASE_REGISTRY")
        mock_run.return_value = _git_head()
        result = runner.invoke(app, ["run", "--no-history"])
        assert result.exit_code == 1
        assert "config_error" in result.stdout

    def test_missing_description(self, release_env) -> None:
        """A missing description file should exit 1."""
        result = runner.invoke(
            app, ["run", "--no-history", "-f", str(release_env / "missing.yaml")]
        )
        assert result.exit_code == 1
        assert "not found" in result.stdout

    @patch("image_release.pipeline.ReleasePipeline.run")
    @patch("image_release.revision.tagger.subprocess.run")
    def test_description_relative_to_workspace(
        self,
        mock_git: MagicMock,
        mock_pipeline_run: MagicMock,
        release_env: Path,
        monkeypatch,
    ) -> None:
        """A relative --description should be found in the workspace, not cwd."""
        (release_env / "release.yaml").write_text(
            "platform: linux/arm64\n", encoding="utf-8"
        )
        elsewhere = release_env / "elsewhere"
        elsewhere.mkdir()
        monkeypatch.chdir(elsewhere)
        mock_git.return_value = _git_head()
        mock_pipeline_run.return_value = PipelineResult(
            version="2024.05.01-7", status=RunStatus.SUCCEEDED
        )

        result = runner.invoke(
            app,
            ["run", "--no-history", "-f", "release.yaml", "--date", "2024-05-01"],
        )

        assert result.exit_code == 0
        context = mock_pipeline_run.call_args[0][0]
        assert context.platform == "linux/arm64"

    @patch("image_release.pipeline.ReleasePipeline.run")
    @patch("image_release.revision.tagger.subprocess.run")
    def test_successful_run_json(
        self, mock_git: MagicMock, mock_pipeline_run: MagicMock, release_env
    ) -> None:
        """A successful run should print the result and exit 0."""
        mock_git.return_value = _git_head()
        result_obj = PipelineResult(version="2024.05.01-7", status=RunStatus.SUCCEEDED)
        for outcome in result_obj.stages.values():
            outcome.status = StageStatus.SUCCEEDED
        mock_pipeline_run.return_value = result_obj

        result = runner.invoke(
            app, ["run", "--no-history", "--json", "--date", "2024-05-01"]
        )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["version"] == "2024.05.01-7"
        assert data["status"] == "succeeded"
        context = mock_pipeline_run.call_args[0][0]
        assert context.version == "2024.05.01-7"
        assert context.head_commit == COMMIT
        assert context.repository == "registry.example.com/windmill"

    @patch("image_release.pipeline.ReleasePipeline.run")
    @patch("image_release.revision.tagger.subprocess.run")
    def test_partial_run_exits_nonzero(
        self, mock_git: MagicMock, mock_pipeline_run: MagicMock, release_env
    ) -> None:
        """A partial run should report the failing stage and exit 1."""
        mock_git.return_value = _git_head()
        result_obj = PipelineResult(version="2024.05.01-7", status=RunStatus.PARTIAL)
        result_obj.failed_stage = Stage.TAG_REVISION
        result_obj.error = TagConflictError("2024.05.01-7")
        mock_pipeline_run.return_value = result_obj

        result = runner.invoke(app, ["run", "--no-history", "--date", "2024-05-01"])

        assert result.exit_code == 1
        assert "partial" in result.stdout
        assert "tag_conflict" in result.stdout


class TestCLIRuns:
    """Test CLI runs commands."""

    def test_list_empty(self, db_url: str) -> None:
        """Listing an empty history should say so."""
        result = runner.invoke(app, ["runs", "list"])
        assert result.exit_code == 0
        assert "No release runs found" in result.stdout

    def test_list_empty_json(self, db_url: str) -> None:
        """Listing an empty history as JSON should give an empty list."""
        result = runner.invoke(app, ["runs", "list", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_list_invalid_status(self, db_url: str) -> None:
        """Unknown status filters should exit 1."""
        result = runner.invoke(app, ["runs", "list", "--status", "bogus"])
        assert result.exit_code == 1

    def test_list_and_show(self, db_url: str) -> None:
        """Recorded runs should be listed and shown."""
        from datetime import date

        from image_release.context import PipelineContext

        context = PipelineContext(
            version="2024.05.01-7",
            run_date=date(2024, 5, 1),
            run_ordinal=7,
            region="sa-east-1",
            registry="registry.example.com",
            image_name="windmill",
            platform="linux/amd64",
            workspace=Path("."),
            head_commit=COMMIT,
        )
        with history_session(open_history(db_url)) as session:
            start_run(session, context)

        result = runner.invoke(app, ["runs", "list", "--json"])
        assert result.exit_code == 0
        assert [r["version"] for r in json.loads(result.stdout)] == ["2024.05.01-7"]

        result = runner.invoke(app, ["runs", "show", "2024.05.01-7", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["head_commit"] == COMMIT

    def test_show_missing(self, db_url: str) -> None:
        """Showing an unknown version should exit 1."""
        result = runner.invoke(app, ["runs", "show", "2024.05.01-99"])
        assert result.exit_code == 1
        assert "Run not found" in result.stdout


class TestCLICache:
    """Test CLI cache commands."""

    def test_cache_keys_json(self, monkeypatch, tmp_path: Path) -> None:
        """Should list a key for each domain."""
        (tmp_path / "backend").mkdir()
        (tmp_path / "frontend").mkdir()
        (tmp_path / "backend" / "Cargo.lock").write_text("[[package]]\n")
        (tmp_path / "frontend" / "package-lock.json").write_text("{}")
        monkeypatch.setenv("IMG_RELEASE_WORKSPACE", str(tmp_path))
        monkeypatch.setenv("IMG_RELEASE_CACHE_ROOT", str(tmp_path / "store"))
        monkeypatch.setenv("IMG_RELEASE_PACKAGE_CACHE_DIR", str(tmp_path / "npm"))
        result = runner.invoke(app, ["cache", "keys", "--json"])
        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert [r["domain"] for r in rows] == ["dependency", "package", "layer"]
        assert not any(r["stored"] for r in rows)

    @patch("image_release.cache.manager.subprocess.run")
    def test_cache_keys_unresolvable(self, mock_run: MagicMock, tmp_path: Path):
        """An unresolvable package cache should exit 1."""
        mock_run.side_effect = FileNotFoundError("npm")
        result = runner.invoke(app, ["cache", "keys"])
        assert result.exit_code == 1
        assert "cache_path_error" in result.stdout
