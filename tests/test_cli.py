"""Tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner

from diff_triage.cli import cli


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "current").mkdir()
    return tmp_path


class TestCli:

    def test_init_writes_default_policy(self, workspace):
        result = CliRunner().invoke(cli, ["init", "-o", "policy.json"])
        assert result.exit_code == 0
        data = json.loads((workspace / "policy.json").read_text())
        assert data["thresholds"]["warning"] == 0.05
        assert data["autoApprove"]["other"] is False

    def test_run_without_screenshots_fails(self, workspace):
        result = CliRunner().invoke(cli, ["run", "--current", "current"])
        assert result.exit_code == 1

    def test_first_run_then_regression(self, workspace, make_shot):
        runner = CliRunner()
        make_shot(rects=[(10, 10, 40, 20, "#2196F3")]).save(workspace / "current" / "button--primary.png")

        first = runner.invoke(cli, ["run", "--current", "current", "--baselines", "baselines"])
        assert first.exit_code == 0, first.output
        assert (workspace / "baselines" / "registry.json").exists()

        make_shot(rects=[(0, 0, 200, 50, "#000000")]).save(workspace / "current" / "button--primary.png")
        second = runner.invoke(cli, ["run", "--current", "current", "--baselines", "baselines"])
        assert second.exit_code == 1
        reports = list((workspace / "triage-reports").glob("report_*.json"))
        assert len(reports) == 2

    def test_baseline_list(self, workspace, make_shot):
        runner = CliRunner()
        make_shot().save(workspace / "current" / "card--default.png")
        runner.invoke(cli, ["run", "--current", "current", "--baselines", "baselines"])

        result = runner.invoke(cli, ["baseline", "list", "--baselines", "baselines"])
        assert result.exit_code == 0
        assert "card--default" in result.output
