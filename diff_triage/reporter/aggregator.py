"""Aggregation of region verdicts into story and run reports."""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

from diff_triage.models.config import Policy
from diff_triage.models.report import (
    RegionVerdict,
    RunOutcome,
    RunReport,
    StoryReport,
    StoryStatus,
)
from diff_triage.models.verdict import Category

logger = logging.getLogger(__name__)


def max_category(categories: Iterable[Category]) -> Category:
    """Maximum severity; Ignore for an empty input."""
    return max(categories, default=Category.IGNORE)


def count_categories(categories: Iterable[Category]) -> dict[str, int]:
    counts = {c.value: 0 for c in Category}
    for c in categories:
        counts[c.value] += 1
    return counts


def aggregate_story(story_id: str, pairs: list[RegionVerdict], diff_ratio: float = 0.0) -> StoryReport:
    categories = [p.verdict.category for p in pairs]
    category = max_category(categories)
    if pairs:
        worst = next(p for p in pairs if p.verdict.category == category)
        reason = f"{len(pairs)} region(s); worst: {worst.verdict.reason}"
    else:
        reason = "No visual changes"
    return StoryReport(
        story_id=story_id,
        status=StoryStatus.COMPARED,
        category=category,
        reason=reason,
        diff_ratio=diff_ratio,
        regions=pairs,
        counts=count_categories(categories),
    )


def first_run_report(story_id: str) -> StoryReport:
    return StoryReport(
        story_id=story_id,
        status=StoryStatus.FIRST_RUN,
        category=None,
        reason="No baseline exists; current screenshot captured as baseline",
        counts=count_categories([]),
        capture_baseline=True,
    )


def corrupt_baseline_report(story_id: str, detail: str) -> StoryReport:
    return StoryReport(
        story_id=story_id,
        status=StoryStatus.CORRUPT_BASELINE,
        category=Category.WARNING,
        reason=f"Stored baseline unreadable ({detail}); recaptured from current screenshot",
        counts=count_categories([]),
        capture_baseline=True,
    )


def incompatible_report(story_id: str, detail: str) -> StoryReport:
    return StoryReport(
        story_id=story_id,
        status=StoryStatus.INCOMPATIBLE,
        category=Category.ERROR,
        reason=detail,
        counts=count_categories([]),
    )


def aborted_report(story_id: str, detail: str) -> StoryReport:
    return StoryReport(
        story_id=story_id,
        status=StoryStatus.ABORTED,
        category=Category.WARNING,
        reason=f"Analysis aborted: {detail}",
        counts=count_categories([]),
    )


def error_report(story_id: str, detail: str) -> StoryReport:
    return StoryReport(
        story_id=story_id,
        status=StoryStatus.ERROR,
        category=Category.ERROR,
        reason=f"Analysis failed: {detail}",
        counts=count_categories([]),
    )


def aggregate_run(
    run_id: str,
    stories: list[StoryReport],
    policy: Policy,
    started_at: str,
    branch: str = "",
    context_available: bool = True,
    aborted_reason: Optional[str] = None,
) -> RunReport:
    """Combine story reports; the gate compares the run maximum with ``policy.gate.fail_on``."""
    category = max_category(s.passing_category for s in stories)
    counts = count_categories(s.category for s in stories if s.category is not None)
    counts["first-run"] = sum(1 for s in stories if s.status == StoryStatus.FIRST_RUN)

    if aborted_reason is not None:
        outcome = RunOutcome.ABORTED
        reason = f"Run aborted: {aborted_reason}"
    elif category >= policy.gate.fail_on:
        outcome = RunOutcome.FAIL
        failing = [s.story_id for s in stories if s.passing_category >= policy.gate.fail_on]
        reason = f"{len(failing)} story(ies) at or above {policy.gate.fail_on.value}: {', '.join(failing[:10])}"
    else:
        outcome = RunOutcome.PASS
        reason = f"{len(stories)} story(ies) below {policy.gate.fail_on.value}"
    counts["pass"] = sum(1 for s in stories if s.passing_category < policy.gate.fail_on)
    counts["fail"] = len(stories) - counts["pass"]

    if outcome != RunOutcome.PASS:
        logger.warning("Run %s: %s", run_id, reason)
    return RunReport(
        run_id=run_id,
        started_at=started_at,
        completed_at=time.strftime("%Y-%m-%dT%H:%M:%SZ"),
        branch=branch,
        outcome=outcome,
        category=category,
        reason=reason,
        context_available=context_available,
        stories=stories,
        counts=counts,
    )
