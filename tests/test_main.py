"""Tests for forksync.main CLI entry point logic."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from forksync.exceptions import (
    ConfigError,
    ConnectivityError,
    MergeAbortedError,
)
from forksync.git.models import CommitInfo
from forksync.main import EXIT_CONFIG, EXIT_FAILURE, EXIT_OK, build_parser, main, run
from forksync.sync.escalation import ConsolePrompt
from forksync.sync.models import (
    AnalysisResult,
    FileAnalysis,
    MergeStrategy,
    SquashResult,
    SyncResult,
    SyncSummary,
)


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("forksync.main.configure_logging"):
        yield


def _behind(path):
    return FileAnalysis(
        file_path=path,
        blob_status="different",
        sync_status="behind",
        merge_strategy=MergeStrategy(action="keep-upstream", reason="fork behind"),
    )


COMMIT = CommitInfo(hash="a" * 40, short_hash="aaaaaaa", subject="Release 2.0", date="1 day ago")


@pytest.fixture
def orchestrator():
    files = [_behind("src/a.py")]
    orch = MagicMock()
    orch.analyze = AsyncMock(
        return_value=AnalysisResult(
            files=files, summary=SyncSummary.from_files(files), upstream_commit=COMMIT
        )
    )
    orch.sync = AsyncMock(
        return_value=SyncResult(
            files=files,
            summary=SyncSummary.from_files(files),
            applied=True,
            applied_paths=["src/a.py"],
        )
    )
    return orch


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_global_options(self):
        args = build_parser().parse_args(["--upstream-branch", "dev", "sync", "--no-prompt"])
        assert args.upstream_branch == "dev"
        assert args.command == "sync"
        assert args.no_prompt is True


class TestMain:
    async def test_bad_fork_path(self, tmp_path, capsys):
        code = await main(["--fork-path", str(tmp_path / "missing"), "analyze"])
        assert code == EXIT_CONFIG
        assert "Configuration error" in capsys.readouterr().err

    async def test_analyze(self, fork_dir, orchestrator, capsys):
        with patch("forksync.main.build_orchestrator", return_value=orchestrator) as build:
            code = await main(["--fork-path", str(fork_dir), "analyze"])

        assert code == EXIT_OK
        config = build.call_args.args[0]
        assert config.fork_path == fork_dir.resolve()
        assert config.write_log is False
        out = capsys.readouterr().out
        assert "Upstream at aaaaaaa: Release 2.0" in out
        assert "1 files: 1 behind" in out
        assert "src/a.py (fork behind)" in out

    async def test_analyze_log_flag(self, fork_dir, orchestrator):
        with patch("forksync.main.build_orchestrator", return_value=orchestrator) as build:
            await main(["--fork-path", str(fork_dir), "analyze", "--log"])
        assert build.call_args.args[0].write_log is True

    async def test_sync_interactive_by_default(self, fork_dir, orchestrator, capsys):
        with patch("forksync.main.build_orchestrator", return_value=orchestrator) as build:
            code = await main(["--fork-path", str(fork_dir), "sync"])

        assert code == EXIT_OK
        assert isinstance(build.call_args.kwargs["prompt"], ConsolePrompt)
        assert "Staged 1 file(s)" in capsys.readouterr().out

    async def test_sync_no_prompt(self, fork_dir, orchestrator):
        with patch("forksync.main.build_orchestrator", return_value=orchestrator) as build:
            await main(["--fork-path", str(fork_dir), "sync", "--no-prompt"])
        assert build.call_args.kwargs["prompt"] is None

    async def test_sync_unresolved_conflicts(self, fork_dir, orchestrator, capsys):
        orchestrator.sync.return_value = SyncResult(
            files=[], summary=SyncSummary(), unresolved_conflicts=["src/app.py"]
        )
        with patch("forksync.main.build_orchestrator", return_value=orchestrator):
            code = await main(["--fork-path", str(fork_dir), "sync", "--no-prompt"])

        assert code == EXIT_FAILURE
        out = capsys.readouterr().out
        assert "src/app.py" in out
        assert "Nothing was applied." in out

    async def test_sync_aborted(self, fork_dir, orchestrator, capsys):
        orchestrator.sync.side_effect = MergeAbortedError("operator aborted")
        with patch("forksync.main.build_orchestrator", return_value=orchestrator):
            code = await main(["--fork-path", str(fork_dir), "sync"])
        assert code == EXIT_FAILURE
        assert "Aborted" in capsys.readouterr().err

    async def test_connectivity_error(self, fork_dir, orchestrator, capsys):
        orchestrator.analyze.side_effect = ConnectivityError("Could not fetch")
        with patch("forksync.main.build_orchestrator", return_value=orchestrator):
            code = await main(["--fork-path", str(fork_dir), "analyze"])
        assert code == EXIT_FAILURE
        assert "Could not fetch" in capsys.readouterr().err

    async def test_config_error_from_run(self, fork_dir, orchestrator):
        orchestrator.analyze.side_effect = ConfigError("Not a git repository")
        with patch("forksync.main.build_orchestrator", return_value=orchestrator):
            code = await main(["--fork-path", str(fork_dir), "analyze"])
        assert code == EXIT_CONFIG


class TestSquashCommand:
    async def test_requires_sync_branch(self, fork_dir, capsys):
        code = await main(["--fork-path", str(fork_dir), "squash"])
        assert code == EXIT_CONFIG
        assert "sync branch" in capsys.readouterr().err

    async def test_prints_message(self, fork_dir, capsys):
        result = SquashResult(commit_count=2, message="chore(sync): 2 commits from up")
        with patch("forksync.main.squash", AsyncMock(return_value=result)) as squash:
            code = await main(
                ["--fork-path", str(fork_dir), "squash", "--sync-branch", "upstream-sync"]
            )

        assert code == EXIT_OK
        assert squash.call_args.args[2] == "upstream-sync"
        assert squash.call_args.kwargs["remote"] == "forksync-upstream"
        assert "chore(sync): 2 commits from up" in capsys.readouterr().out

    async def test_nothing_to_squash(self, fork_dir, capsys, monkeypatch):
        monkeypatch.setenv("FORKSYNC_SYNC_BRANCH", "upstream-sync")
        with patch("forksync.main.squash", AsyncMock(return_value=None)):
            code = await main(["--fork-path", str(fork_dir), "squash"])
        assert code == EXIT_OK
        assert "Nothing to squash." in capsys.readouterr().out


class TestRun:
    def test_exits_with_main_code(self):
        with (
            patch("forksync.main.main", new=AsyncMock(return_value=EXIT_FAILURE)),
            pytest.raises(SystemExit) as exc_info,
        ):
            run()
        assert exc_info.value.code == EXIT_FAILURE
