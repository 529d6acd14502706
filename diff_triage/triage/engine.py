"""Categorization engine: ordered rule table mapping a region to a verdict.

Rules are evaluated top to bottom and the first match wins. Hard overrides
are checked before any ratio-based default. When no context snapshot is
available only the shift and ratio defaults run, and the resulting verdicts
are marked low confidence.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from diff_triage.color_utils import contrast_ratio, normalize_color
from diff_triage.models.config import Policy
from diff_triage.models.context import ContextSnapshot
from diff_triage.models.verdict import (
    NO_CONTEXT_EVIDENCE,
    Category,
    ChangeKind,
    ChangeRegion,
    Confidence,
    Evidence,
    Recommendation,
    Verdict,
)

logger = logging.getLogger(__name__)

MIN_CONTRAST_RATIO = 4.5
SMALL_SHIFT_PX = 2
LARGE_SHIFT_PX = 5

_RECOMMENDATIONS = {
    Category.IGNORE: Recommendation.AUTO_APPROVE,
    Category.EXPECTED: Recommendation.APPROVE,
    Category.WARNING: Recommendation.REVIEW,
    Category.ERROR: Recommendation.REJECT,
}

_DYNAMIC_SCOPES = {"timestamp": "timestamps", "uuid": "uuids"}


@dataclass(frozen=True)
class StoryRef:
    """What the engine needs to know about the story a region belongs to."""

    story_id: str
    component: str = ""
    source_file: Optional[str] = None


@dataclass(frozen=True)
class RuleInput:
    region: ChangeRegion
    context: Optional[ContextSnapshot]
    policy: Policy
    story: StoryRef


Rule = Callable[[RuleInput], Optional[Verdict]]


def _verdict(
    category: Category,
    reason: str,
    evidence: list[Evidence],
    rule: str,
    confidence: Confidence = Confidence.HIGH,
    approval_scope: Optional[str] = None,
) -> Verdict:
    return Verdict(
        category=category,
        reason=reason,
        evidence=evidence,
        recommendation=_RECOMMENDATIONS[category],
        confidence=confidence,
        rule=rule,
        approval_scope=approval_scope,
    )


# Context parts a kind's overrides rely on; a verdict reached without them says so
_CONTEXT_DEPENDENCIES = {
    ChangeKind.COLOR: ("tokens", "commits", "pr"),
    ChangeKind.SIZE: ("commits", "pr"),
    ChangeKind.SHIFT: ("commits", "pr"),
}


def _missing_note(context: Optional[ContextSnapshot], parts: tuple[str, ...]) -> str:
    if context is None:
        return ""
    missing = [p for p in parts if p in context.unavailable]
    return f" (context unavailable: {', '.join(missing)})" if missing else ""


def _measurement(region: ChangeRegion) -> Evidence:
    return Evidence(
        kind="measurement",
        value=f"ratio={region.ratio:.4f}",
        detail=f"{region.pixel_count} of {region.total_pixels} pixels",
    )


# ----------------------------------------------------------------------
# Hard overrides
# ----------------------------------------------------------------------

def contrast_violation(inp: RuleInput) -> Optional[Verdict]:
    region = inp.region
    if region.kind != ChangeKind.COLOR or not region.new_color or not region.background_color:
        return None
    ratio = contrast_ratio(region.new_color, region.background_color)
    if ratio >= MIN_CONTRAST_RATIO:
        return None
    return _verdict(
        Category.ERROR,
        f"Contrast {ratio:.2f}:1 between {region.new_color} and {region.background_color} "
        f"is below {MIN_CONTRAST_RATIO}:1",
        [Evidence(kind="measurement", value=f"contrast={ratio:.2f}", detail=f"{region.new_color} on {region.background_color}")],
        rule="contrast-violation",
    )


def token_match(inp: RuleInput) -> Optional[Verdict]:
    region, context = inp.region, inp.context
    if context is None or region.kind != ChangeKind.COLOR:
        return None
    for token in context.token_changes:
        if (
            normalize_color(token.old_value) == region.old_color
            and normalize_color(token.new_value) == region.new_color
        ):
            evidence = [Evidence(kind="token", value=token.name, detail=f"{token.old_value} -> {token.new_value}")]
            if token.commit_id:
                evidence.append(Evidence(kind="commit", value=token.commit_id))
            return _verdict(
                Category.EXPECTED,
                f"Colour change {region.old_color} -> {region.new_color} matches token {token.name}",
                evidence,
                rule="token-match",
                approval_scope="tokenChanges",
            )
    return None


def _value_patterns(region: ChangeRegion) -> list[str]:
    """Literal values a commit or PR would mention for this change."""
    values: list[str] = []
    if region.kind == ChangeKind.COLOR and region.new_color:
        values += [region.new_color, region.new_color.lstrip("#")]
    elif region.kind == ChangeKind.SIZE and region.new_size and region.old_size:
        (ow, oh), (nw, nh) = region.old_size, region.new_size
        values.append(f"{nw}x{nh}")
        if nw != ow:
            values.append(f"{nw}px")
        if nh != oh:
            values.append(f"{nh}px")
    elif region.kind == ChangeKind.SHIFT and region.displacement:
        dx, dy = region.displacement
        values += [f"{abs(v)}px" for v in (dx, dy) if v]
    return values


def _mentions(text: str, value: str) -> bool:
    return re.search(rf"(?<![\w#]){re.escape(value)}(?!\w)", text, re.IGNORECASE) is not None


def documented_value(inp: RuleInput) -> Optional[Verdict]:
    region, context = inp.region, inp.context
    if context is None:
        return None
    values = _value_patterns(region)
    if not values:
        return None
    for commit in context.commits:
        for value in values:
            if _mentions(commit.message, value):
                return _verdict(
                    Category.EXPECTED,
                    f"Changed value {value} is named in commit {commit.short_id}",
                    [Evidence(kind="commit", value=commit.commit_id, detail=commit.message.splitlines()[0][:120])],
                    rule="documented-value",
                    approval_scope="other",
                )
    for value in values:
        if _mentions(context.pr_description, value):
            idx = context.pr_description.lower().find(value.lower())
            excerpt = context.pr_description[max(0, idx - 40):idx + len(value) + 40].strip()
            return _verdict(
                Category.EXPECTED,
                f"Changed value {value} is named in the PR description",
                [Evidence(kind="pr", value=excerpt)],
                rule="documented-value",
                approval_scope="other",
            )
    return None


def dynamic_content(inp: RuleInput) -> Optional[Verdict]:
    region = inp.region
    if region.kind != ChangeKind.CONTENT or not region.content_tag:
        return None
    return _verdict(
        Category.EXPECTED,
        f"Change lies inside a declared dynamic {region.content_tag} area",
        [Evidence(kind="dynamic", value=region.content_tag, detail=f"bbox={region.bbox.x},{region.bbox.y},{region.bbox.width}x{region.bbox.height}")],
        rule="dynamic-content",
        approval_scope=_DYNAMIC_SCOPES.get(region.content_tag, "other"),
    )


# ----------------------------------------------------------------------
# Defaults
# ----------------------------------------------------------------------

def shift_refinement(inp: RuleInput) -> Optional[Verdict]:
    region = inp.region
    if region.kind != ChangeKind.SHIFT or region.displacement is None:
        return None
    dx, dy = region.displacement
    evidence = [Evidence(kind="measurement", value=f"displacement=({dx}, {dy})", detail=f"match score {region.match_score:.2f}")]

    if abs(dx) < SMALL_SHIFT_PX and abs(dy) < SMALL_SHIFT_PX:
        return _verdict(
            Category.IGNORE, f"Sub-{SMALL_SHIFT_PX}px shift ({dx}, {dy}) is rendering noise",
            evidence, rule="shift-small", confidence=Confidence.MEDIUM,
        )
    if abs(dx) > LARGE_SHIFT_PX or abs(dy) > LARGE_SHIFT_PX:
        refactors = []
        if inp.context is not None:
            refactors = inp.context.refactor_commits_for(inp.story.source_file, inp.story.component)
        if refactors:
            commit = refactors[0]
            evidence.append(Evidence(kind="commit", value=commit.commit_id, detail=commit.message.splitlines()[0][:120]))
            return _verdict(
                Category.WARNING,
                f"Large shift ({dx}, {dy}) correlates with refactor commit {commit.short_id}",
                evidence, rule="shift-large-refactor", confidence=Confidence.MEDIUM,
            )
        return _verdict(
            Category.ERROR,
            f"Large shift ({dx}, {dy}) with no correlated refactor commit"
            f"{_missing_note(inp.context, ('commits',))}",
            evidence, rule="shift-large", confidence=Confidence.MEDIUM,
        )
    return _verdict(
        Category.WARNING, f"Shift ({dx}, {dy}) needs review",
        evidence, rule="shift-moderate", confidence=Confidence.MEDIUM,
    )


def ratio_default(inp: RuleInput) -> Verdict:
    region = inp.region
    category = inp.policy.thresholds.categorize(region.ratio)
    scope = None
    if category == Category.EXPECTED:
        scope = "antiAliasing" if region.kind == ChangeKind.UNCLASSIFIED else "other"
    return _verdict(
        category,
        f"{region.kind.value} change covering {region.ratio:.2%} of the screenshot"
        f"{_missing_note(inp.context, _CONTEXT_DEPENDENCIES.get(region.kind, ()))}",
        [_measurement(region)],
        rule="ratio-default",
        confidence=Confidence.MEDIUM,
        approval_scope=scope,
    )


HARD_OVERRIDES: tuple[Rule, ...] = (contrast_violation, token_match, documented_value, dynamic_content)
DEFAULT_RULES: tuple[Rule, ...] = (shift_refinement,)


class CategorizationEngine:
    """Applies the ordered rule table, optionally consulting an advisor."""

    def __init__(self, policy: Policy, advisor=None):
        self.policy = policy
        self.advisor = advisor

    def categorize(
        self,
        region: ChangeRegion,
        context: Optional[ContextSnapshot],
        story: StoryRef,
    ) -> Verdict:
        inp = RuleInput(region=region, context=context, policy=self.policy, story=story)
        verdict = self._evaluate(inp)
        if context is None:
            verdict = verdict.model_copy(update={
                "confidence": Confidence.LOW,
                "evidence": [*verdict.evidence, NO_CONTEXT_EVIDENCE],
            })
        logger.debug("%s: rule %s -> %s", region.region_id, verdict.rule, verdict.category.value)
        return verdict

    def _evaluate(self, inp: RuleInput) -> Verdict:
        # Without a context snapshot only the default rules apply
        rules = DEFAULT_RULES if inp.context is None else (*HARD_OVERRIDES, *DEFAULT_RULES)
        for rule in rules:
            verdict = rule(inp)
            if verdict is not None:
                return verdict
        verdict = ratio_default(inp)
        if self.advisor is not None and inp.context is not None:
            verdict = self.advisor.refine(inp.region, verdict, inp.context)
        return verdict
