"""Tests for the merge strategy resolver."""

import pytest

from forksync.sync.models import CommitSummary, FileAnalysis, FileRef
from forksync.sync.resolver import resolve, resolve_all


def _analysis(
    *,
    status=None,
    blob="different",
    override="none",
    upstream=True,
    fork=True,
    upstream_change="u1",
    fork_change="f1",
) -> FileAnalysis:
    return FileAnalysis(
        file_path="src/file.ts",
        upstream_file=FileRef.build("src/file.ts", "aaa", upstream_change) if upstream else None,
        fork_file=FileRef.build("src/file.ts", "bbb", fork_change) if fork else None,
        blob_status=blob,
        override_status=override,
        commit_summary=CommitSummary(status=status) if status else None,
    )


ALL_STATUSES = [None, "upToDate", "ahead", "behind", "diverged", "unrelated", "unknown"]


class TestResolve:
    @pytest.mark.parametrize("status", ALL_STATUSES)
    @pytest.mark.parametrize("blob", ["identical", "different", "missing"])
    def test_ignored_always_skips(self, status, blob):
        strategy = resolve(_analysis(status=status, blob=blob, override="ignored"))
        assert strategy.action == "skip-upstream"
        assert "ignored" in strategy.reason

    @pytest.mark.parametrize("status", ALL_STATUSES)
    @pytest.mark.parametrize("override", ["none", "pinned", "customized"])
    def test_identical_blob_keeps_fork(self, status, override):
        strategy = resolve(_analysis(status=status, blob="identical", override=override))
        assert strategy.action == "keep-fork"
        assert "identical" in strategy.reason

    def test_heads_identical_without_summary(self):
        strategy = resolve(_analysis(status=None, upstream_change="c1", fork_change="c1"))
        assert strategy.action == "keep-fork"
        assert strategy.reason == "HEADs identical"

    def test_unknown_with_empty_change_ids_is_not_heads_identical(self):
        strategy = resolve(_analysis(status="unknown", upstream_change="", fork_change=""))
        assert strategy.action == "unknown"

    @pytest.mark.parametrize("override", ["pinned", "customized"])
    @pytest.mark.parametrize("status", ["behind", "diverged", "unrelated", "ahead"])
    def test_protected_keeps_fork(self, override, status):
        strategy = resolve(_analysis(status=status, override=override))
        assert strategy.action == "keep-fork"
        assert "fork wins" in strategy.reason

    def test_ahead_keeps_fork(self):
        strategy = resolve(_analysis(status="ahead"))
        assert strategy.action == "keep-fork"
        assert "ahead" in strategy.reason

    def test_ahead_deleted_in_fork(self):
        strategy = resolve(_analysis(status="ahead", blob="missing", fork=False))
        assert strategy.action == "remove-from-fork"
        assert "deleted in fork" in strategy.reason

    def test_up_to_date_with_different_content(self):
        assert resolve(_analysis(status="upToDate")).action == "keep-fork"

    def test_behind_new_file(self):
        strategy = resolve(_analysis(status="behind", blob="missing", fork=False))
        assert strategy.action == "keep-upstream"
        assert "new file" in strategy.reason

    def test_behind_existing_file(self):
        strategy = resolve(_analysis(status="behind"))
        assert strategy.action == "keep-upstream"
        assert "fork behind" in strategy.reason

    @pytest.mark.parametrize("status", ["diverged", "unrelated"])
    def test_conflicting_histories_need_manual(self, status):
        strategy = resolve(_analysis(status=status))
        assert strategy.action == "manual"
        assert status in strategy.reason

    def test_unknown(self):
        strategy = resolve(_analysis(status="unknown"))
        assert strategy.action == "unknown"
        assert "could not determine" in strategy.reason

    @pytest.mark.parametrize("status", ALL_STATUSES)
    @pytest.mark.parametrize("blob", ["identical", "different", "missing"])
    @pytest.mark.parametrize("override", ["none", "ignored", "pinned", "customized"])
    def test_total_and_always_explained(self, status, blob, override):
        strategy = resolve(_analysis(status=status, blob=blob, override=override))
        assert strategy.reason

    def test_deterministic(self):
        analysis = _analysis(status="diverged")
        assert resolve(analysis) == resolve(analysis)

    def test_resolve_all_attaches_in_place(self):
        analyses = [_analysis(status="behind"), _analysis(status="ahead")]
        resolve_all(analyses)
        assert [a.merge_strategy.action for a in analyses] == ["keep-upstream", "keep-fork"]
