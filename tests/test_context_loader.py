"""Tests for building the run's context snapshot."""

import json
import subprocess
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from diff_triage.context.loader import load_context, parse_git_log, read_git_commits
from diff_triage.errors import ContextUnavailable

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def context_file(tmp_path):
    def _write(data):
        path = tmp_path / "context.json"
        path.write_text(json.dumps(data))
        return path
    return _write


class TestLoadContext:

    def test_full_context_file(self, context_file):
        path = context_file({
            "branch": "feature/palette",
            "prDescription": "Darken primary to #1976D2",
            "tokens": [{"name": "primary-600", "old": "#2196F3", "new": "#1976D2", "commit": "a1b2c3"}],
            "commits": [{"id": "a1b2c3", "message": "chore: tokens", "timestamp": "2026-10-18T09:00:00Z"}],
        })
        snapshot = load_context(context_file=path, now=NOW)
        assert snapshot.branch == "feature/palette"
        assert snapshot.is_pull_request
        assert snapshot.token_changes[0].new_value == "#1976D2"
        assert snapshot.token_changes[0].commit_id == "a1b2c3"
        assert [c.commit_id for c in snapshot.commits] == ["a1b2c3"]
        assert snapshot.unavailable == ()

    def test_commits_outside_lookback_are_dropped(self, context_file):
        path = context_file({
            "tokens": [],
            "commits": [
                {"id": "new", "message": "recent", "timestamp": "2026-10-15T00:00:00Z"},
                {"id": "old", "message": "stale", "timestamp": "2026-09-01T00:00:00Z"},
                {"id": "undated", "message": "no timestamp"},
            ],
        })
        snapshot = load_context(context_file=path, lookback_days=7, now=NOW)
        assert [c.commit_id for c in snapshot.commits] == ["new", "undated"]
        assert snapshot.lookback_days == 7

    def test_missing_parts_are_recorded(self, context_file):
        snapshot = load_context(context_file=context_file({"tokens": []}), now=NOW)
        assert snapshot.unavailable == ("commits", "pr")
        assert snapshot.is_partial
        assert not snapshot.is_pull_request

    def test_nothing_available_raises(self, tmp_path):
        with pytest.raises(ContextUnavailable):
            load_context(context_file=tmp_path / "missing.json", now=NOW)

    def test_malformed_tokens_marked_unavailable(self, context_file):
        path = context_file({"prDescription": "x", "tokens": [{"old": "#fff"}]})
        snapshot = load_context(context_file=path, now=NOW)
        assert "tokens" in snapshot.unavailable

    def test_commits_from_git_when_not_in_file(self, context_file, tmp_path):
        path = context_file({"tokens": []})
        output = "\x1eabc123\x1f2026-10-18T10:00:00+00:00\x1frefactor: split\n\x1f\n\nsrc/a.ts\n"
        with patch("diff_triage.context.loader.subprocess.run") as run:
            run.return_value.stdout = output
            snapshot = load_context(context_file=path, repo_dir=tmp_path, now=NOW)
        assert snapshot.commits[0].commit_id == "abc123"
        assert "commits" not in snapshot.unavailable


class TestGitLog:

    def test_parse_git_log(self):
        output = (
            "\x1eaaa111\x1f2026-10-18T10:00:00+02:00\x1frefactor(button): extract styles\n\nLonger body\n\x1f\n\n"
            "src/components/Button.tsx\nsrc/components/Button.css\n"
            "\x1ebbb222\x1f2026-10-17T08:00:00+02:00\x1ffix: typo\n\x1f\n"
        )
        commits = parse_git_log(output)
        assert [c.commit_id for c in commits] == ["aaa111", "bbb222"]
        assert commits[0].files == ("src/components/Button.tsx", "src/components/Button.css")
        assert commits[0].is_refactor
        assert commits[0].message.startswith("refactor(button)")
        assert commits[1].files == ()

    def test_git_failure_raises_context_unavailable(self, tmp_path):
        with patch(
            "diff_triage.context.loader.subprocess.run",
            side_effect=subprocess.CalledProcessError(128, "git"),
        ):
            with pytest.raises(ContextUnavailable):
                read_git_commits(tmp_path, 7)
