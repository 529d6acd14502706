"""Tests for loading story screenshots and writing reports."""

import json

from diff_triage.models.report import RunOutcome, RunReport, StoryReport, StoryStatus
from diff_triage.models.verdict import BoundingBox, Category
from diff_triage.reporter.json_report import generate_json_report, load_json_report
from diff_triage.stories import load_stories


class TestLoadStories:

    def test_loads_pngs_sorted_with_metadata(self, tmp_path, make_shot):
        make_shot(width=50, height=20).save(tmp_path / "card--default.png")
        make_shot(width=30, height=10).save(tmp_path / "button--primary.png")
        meta = tmp_path / "meta.json"
        meta.write_text(json.dumps({
            "button--primary": {
                "sourceFile": "src/components/Button.tsx",
                "revision": "v2",
                "dynamicAreas": [{"x": 1, "y": 2, "width": 10, "height": 5, "tag": "timestamp"}],
            },
        }))

        stories = load_stories(tmp_path, meta)
        assert [s.story_id for s in stories] == ["button--primary", "card--default"]
        button = stories[0]
        assert button.current.size == (30, 10)
        assert button.component == "button"
        assert button.source_file == "src/components/Button.tsx"
        assert button.revision == "v2"
        assert button.dynamic_areas[0].bbox == BoundingBox(x=1, y=2, width=10, height=5)
        assert button.dynamic_areas[0].tag == "timestamp"
        assert stories[1].dynamic_areas == ()

    def test_empty_directory(self, tmp_path):
        assert load_stories(tmp_path) == []


class TestJsonReport:

    def test_report_written_and_reloaded(self, tmp_path):
        report = RunReport(
            run_id="run_1234",
            started_at="2026-10-19T10:00:00Z",
            outcome=RunOutcome.FAIL,
            category=Category.ERROR,
            stories=[StoryReport(story_id="a", status=StoryStatus.INCOMPATIBLE, category=Category.ERROR)],
        )
        path = tmp_path / "out" / "report.json"
        generate_json_report(report, path)

        data = json.loads(path.read_text())
        assert data["outcome"] == "fail"
        assert data["stories"][0]["status"] == "incompatible"
        assert load_json_report(path).story("a").category == Category.ERROR
