"""Tests for the rule-table categorization engine."""

import pytest

from diff_triage.models.config import Policy, Thresholds
from diff_triage.models.context import CommitInfo, ContextSnapshot, TokenChange
from diff_triage.models.verdict import (
    NO_CONTEXT_EVIDENCE,
    BoundingBox,
    Category,
    ChangeKind,
    ChangeRegion,
    Confidence,
    Recommendation,
)
from diff_triage.triage.engine import CategorizationEngine, StoryRef

BUTTON = StoryRef(story_id="button--primary", component="button", source_file="src/components/Button.tsx")


def _region(kind=ChangeKind.UNCLASSIFIED, pixel_count=200, total_pixels=10000, **kwargs) -> ChangeRegion:
    return ChangeRegion(
        region_id="button--primary#r1",
        bbox=BoundingBox(x=10, y=10, width=40, height=20),
        pixel_count=pixel_count,
        total_pixels=total_pixels,
        kind=kind,
        **kwargs,
    )


def _color(old="#2196f3", new="#1976d2", background="#ffffff", pixel_count=200) -> ChangeRegion:
    return _region(ChangeKind.COLOR, pixel_count=pixel_count, old_color=old, new_color=new, background_color=background)


def _shift(dx, dy) -> ChangeRegion:
    return _region(ChangeKind.SHIFT, displacement=(dx, dy), match_score=1.0)


class RecordingAdvisor:
    """Stand-in advisor that records which verdicts it was asked about."""

    def __init__(self, category=None):
        self.calls = []
        self.category = category

    def refine(self, region, verdict, context):
        self.calls.append((region.region_id, verdict.rule))
        if self.category is None:
            return verdict
        return verdict.model_copy(update={"category": self.category, "rule": "advisory"})


@pytest.fixture
def engine(policy):
    return CategorizationEngine(policy)


class TestRatioDefault:

    @pytest.mark.parametrize("pixels,expected", [
        (0, Category.IGNORE),
        (9, Category.IGNORE),
        (10, Category.EXPECTED),
        (99, Category.EXPECTED),
        (100, Category.WARNING),
        (499, Category.WARNING),
        (500, Category.ERROR),
        (10000, Category.ERROR),
    ])
    def test_ratio_partition_with_boundaries_in_higher_bucket(self, engine, empty_context, pixels, expected):
        verdict = engine.categorize(_region(pixel_count=pixels), empty_context, BUTTON)
        assert verdict.category == expected
        assert verdict.rule == "ratio-default"

    def test_custom_thresholds(self, empty_context):
        engine = CategorizationEngine(Policy(thresholds=Thresholds(ignore=0.01, expected=0.1, warning=0.5)))
        verdict = engine.categorize(_region(pixel_count=200), empty_context, BUTTON)
        assert verdict.category == Category.EXPECTED

    def test_expected_unclassified_change_uses_antialiasing_scope(self, engine, empty_context):
        verdict = engine.categorize(_region(pixel_count=50), empty_context, BUTTON)
        assert verdict.category == Category.EXPECTED
        assert verdict.approval_scope == "antiAliasing"

    def test_warning_has_no_approval_scope(self, engine, empty_context):
        verdict = engine.categorize(_region(pixel_count=200), empty_context, BUTTON)
        assert verdict.approval_scope is None

    def test_evidence_records_measurement(self, engine, empty_context):
        verdict = engine.categorize(_region(pixel_count=200), empty_context, BUTTON)
        assert verdict.evidence[0].kind == "measurement"
        assert verdict.evidence[0].value == "ratio=0.0200"

    @pytest.mark.parametrize("pixels,recommendation", [
        (5, Recommendation.AUTO_APPROVE),
        (50, Recommendation.APPROVE),
        (200, Recommendation.REVIEW),
        (800, Recommendation.REJECT),
    ])
    def test_recommendation_follows_category(self, engine, empty_context, pixels, recommendation):
        verdict = engine.categorize(_region(pixel_count=pixels), empty_context, BUTTON)
        assert verdict.recommendation == recommendation


class TestHardOverrides:

    def test_token_match_overrides_ratio(self, engine, token_context):
        verdict = engine.categorize(_color(), token_context, BUTTON)
        assert verdict.category == Category.EXPECTED
        assert verdict.rule == "token-match"
        assert verdict.approval_scope == "tokenChanges"
        assert verdict.confidence == Confidence.HIGH
        kinds = {e.kind: e.value for e in verdict.evidence}
        assert kinds["token"] == "primary-600"
        assert kinds["commit"] == "a1b2c3d4e5f6"

    def test_token_with_other_colors_does_not_match(self, engine, token_context):
        verdict = engine.categorize(_color(old="#ff0000", new="#00ff00", background="#000000"), token_context, BUTTON)
        assert verdict.rule == "ratio-default"
        assert verdict.category == Category.WARNING

    def test_contrast_violation_beats_token_match(self, engine):
        context = ContextSnapshot(token_changes=(
            TokenChange(name="gray-500", old_value="#757575", new_value="#959595"),
        ))
        verdict = engine.categorize(_color(old="#757575", new="#959595"), context, BUTTON)
        assert verdict.category == Category.ERROR
        assert verdict.rule == "contrast-violation"
        assert float(verdict.evidence[0].value.split("=")[1]) < 4.5

    def test_contrast_violation_regardless_of_ratio(self, engine, empty_context):
        verdict = engine.categorize(_color(old="#757575", new="#959595", pixel_count=1), empty_context, BUTTON)
        assert verdict.category == Category.ERROR

    def test_sufficient_contrast_is_not_a_violation(self, engine, empty_context):
        verdict = engine.categorize(_color(), empty_context, BUTTON)
        assert verdict.rule != "contrast-violation"

    def test_value_named_in_commit_message(self, engine):
        context = ContextSnapshot(commits=(
            CommitInfo(commit_id="c0ffee00beef", message="button: use #1976D2 for primary"),
        ))
        verdict = engine.categorize(_color(), context, BUTTON)
        assert verdict.category == Category.EXPECTED
        assert verdict.rule == "documented-value"
        assert verdict.evidence[0].kind == "commit"
        assert verdict.evidence[0].value == "c0ffee00beef"
        assert verdict.approval_scope == "other"

    def test_value_named_in_pr_description(self, engine):
        context = ContextSnapshot(pr_description="Bump the avatar size to 60px across the app.")
        region = _region(ChangeKind.SIZE, old_size=(40, 40), new_size=(60, 60))
        verdict = engine.categorize(region, context, BUTTON)
        assert verdict.category == Category.EXPECTED
        assert verdict.evidence[0].kind == "pr"
        assert "60px" in verdict.evidence[0].value

    def test_value_inside_longer_token_is_not_a_mention(self, engine):
        context = ContextSnapshot(pr_description="Resize to 160px")
        region = _region(ChangeKind.SIZE, old_size=(40, 40), new_size=(60, 60))
        verdict = engine.categorize(region, context, BUTTON)
        assert verdict.rule == "ratio-default"

    @pytest.mark.parametrize("tag,scope", [("timestamp", "timestamps"), ("uuid", "uuids"), ("ad", "other")])
    def test_dynamic_content_is_expected(self, engine, empty_context, tag, scope):
        region = _region(ChangeKind.CONTENT, pixel_count=900, content_tag=tag)
        verdict = engine.categorize(region, empty_context, BUTTON)
        assert verdict.category == Category.EXPECTED
        assert verdict.approval_scope == scope


class TestShiftRefinement:

    def test_sub_two_pixel_shift_is_ignored(self, engine, empty_context):
        verdict = engine.categorize(_shift(1, -1), empty_context, BUTTON)
        assert verdict.category == Category.IGNORE

    def test_moderate_shift_needs_review(self, engine, empty_context):
        verdict = engine.categorize(_shift(3, 0), empty_context, BUTTON)
        assert verdict.category == Category.WARNING
        assert verdict.rule == "shift-moderate"

    def test_large_shift_without_refactor_is_error(self, engine, empty_context):
        verdict = engine.categorize(_shift(6, 0), empty_context, BUTTON)
        assert verdict.category == Category.ERROR
        assert verdict.rule == "shift-large"

    def test_large_shift_with_refactor_is_warning(self, engine, refactor_context):
        verdict = engine.categorize(_shift(6, 0), refactor_context, BUTTON)
        assert verdict.category == Category.WARNING
        assert any(e.kind == "commit" and e.value == "f00dfeed1234" for e in verdict.evidence)

    def test_missing_commit_history_is_named_in_reason(self, engine):
        context = ContextSnapshot(branch="main", unavailable=("commits",))
        verdict = engine.categorize(_shift(6, 0), context, BUTTON)
        assert verdict.category == Category.ERROR
        assert verdict.reason.endswith("(context unavailable: commits)")
        assert NO_CONTEXT_EVIDENCE not in verdict.evidence

    def test_refactor_matched_by_component_name(self, engine, refactor_context):
        story = StoryRef(story_id="button--primary", component="button")
        verdict = engine.categorize(_shift(0, 7), refactor_context, story)
        assert verdict.category == Category.WARNING

    def test_refactor_of_another_component_does_not_count(self, engine, refactor_context):
        story = StoryRef(story_id="card--default", component="card", source_file="src/components/Card.tsx")
        verdict = engine.categorize(_shift(6, 0), refactor_context, story)
        assert verdict.category == Category.ERROR

    def test_non_refactor_commit_does_not_soften(self, engine):
        context = ContextSnapshot(commits=(
            CommitInfo(commit_id="abc123", message="feat(button): add icon slot", files=("src/components/Button.tsx",)),
        ))
        verdict = engine.categorize(_shift(6, 0), context, BUTTON)
        assert verdict.category == Category.ERROR


class TestPartialContext:

    def test_missing_tokens_named_for_colour_default(self, engine):
        context = ContextSnapshot(branch="main", unavailable=("tokens",))
        verdict = engine.categorize(_color(), context, BUTTON)
        assert verdict.rule == "ratio-default"
        assert "context unavailable: tokens" in verdict.reason

    def test_unrelated_missing_part_not_mentioned(self, engine):
        context = ContextSnapshot(branch="main", unavailable=("tokens",))
        verdict = engine.categorize(_region(), context, BUTTON)
        assert "unavailable" not in verdict.reason

    def test_complete_context_adds_no_note(self, engine, empty_context):
        verdict = engine.categorize(_color(), empty_context, BUTTON)
        assert "unavailable" not in verdict.reason


class TestDegradedMode:

    def test_no_context_skips_token_override(self, engine):
        verdict = engine.categorize(_color(), None, BUTTON)
        assert verdict.category == Category.WARNING
        assert verdict.confidence == Confidence.LOW
        assert NO_CONTEXT_EVIDENCE in verdict.evidence

    def test_contrast_override_skipped_without_context(self, engine):
        verdict = engine.categorize(_color(old="#757575", new="#959595"), None, BUTTON)
        assert verdict.category == Category.WARNING
        assert verdict.rule == "ratio-default"
        assert verdict.confidence == Confidence.LOW

    def test_faint_colour_change_uses_ratio_default_without_context(self, engine):
        region = _color(old="#ffffff", new="#eeeeee", pixel_count=100).model_copy(update={"total_pixels": 1_000_000})
        verdict = engine.categorize(region, None, BUTTON)
        assert verdict.rule == "ratio-default"
        assert verdict.category == Category.IGNORE
        assert NO_CONTEXT_EVIDENCE in verdict.evidence

    def test_dynamic_area_not_trusted_without_context(self, engine):
        verdict = engine.categorize(_region(ChangeKind.CONTENT, content_tag="timestamp"), None, BUTTON)
        assert verdict.rule == "ratio-default"
        assert verdict.approval_scope is None

    def test_large_shift_is_error_without_context(self, engine):
        verdict = engine.categorize(_shift(6, 0), None, BUTTON)
        assert verdict.category == Category.ERROR
        assert NO_CONTEXT_EVIDENCE in verdict.evidence

    def test_context_available_is_not_marked(self, engine, empty_context):
        verdict = engine.categorize(_region(), empty_context, BUTTON)
        assert NO_CONTEXT_EVIDENCE not in verdict.evidence


class TestAdvisorHook:

    def test_advisor_consulted_for_ratio_default(self, policy, empty_context):
        advisor = RecordingAdvisor(category=Category.EXPECTED)
        engine = CategorizationEngine(policy, advisor=advisor)
        verdict = engine.categorize(_region(), empty_context, BUTTON)
        assert advisor.calls == [("button--primary#r1", "ratio-default")]
        assert verdict.category == Category.EXPECTED

    def test_advisor_not_consulted_for_hard_overrides(self, policy, token_context):
        advisor = RecordingAdvisor(category=Category.ERROR)
        engine = CategorizationEngine(policy, advisor=advisor)
        verdict = engine.categorize(_color(), token_context, BUTTON)
        assert advisor.calls == []
        assert verdict.rule == "token-match"

    def test_advisor_not_consulted_for_shift_rules(self, policy, empty_context):
        advisor = RecordingAdvisor()
        CategorizationEngine(policy, advisor=advisor).categorize(_shift(6, 0), empty_context, BUTTON)
        assert advisor.calls == []

    def test_advisor_not_consulted_without_context(self, policy):
        advisor = RecordingAdvisor()
        CategorizationEngine(policy, advisor=advisor).categorize(_region(), None, BUTTON)
        assert advisor.calls == []
