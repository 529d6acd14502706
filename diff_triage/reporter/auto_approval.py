"""Auto-approval policy: which expected changes may update baselines silently."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from diff_triage.models.config import Policy
from diff_triage.models.report import BaselineUpdateRequest, StoryReport, StoryStatus
from diff_triage.models.verdict import Category, ChangeRegion, Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoApprovalDecision:
    region_id: str
    apply: bool
    reason: str
    update: Optional[BaselineUpdateRequest] = None


def decide_auto_approval(
    story_id: str,
    region: ChangeRegion,
    verdict: Verdict,
    policy: Policy,
) -> AutoApprovalDecision:
    """Only Expected verdicts whose approval scope is enabled are applied."""
    if verdict.category != Category.EXPECTED:
        return AutoApprovalDecision(region.region_id, False, f"category is {verdict.category.value}")
    scope = verdict.approval_scope or "other"
    if not policy.auto_approve.is_enabled(scope):
        return AutoApprovalDecision(region.region_id, False, f"autoApprove.{scope} is disabled")
    return AutoApprovalDecision(
        region.region_id,
        True,
        f"autoApprove.{scope} is enabled",
        BaselineUpdateRequest(
            story_id=story_id,
            regions=[region.bbox],
            region_ids=[region.region_id],
            reason=f"auto-approved ({scope})",
        ),
    )


def apply_auto_approval(report: StoryReport, policy: Policy) -> tuple[StoryReport, list[AutoApprovalDecision]]:
    """Return a copy of the report with auto-applied regions recorded."""
    if report.status != StoryStatus.COMPARED:
        return report, []
    decisions = [
        decide_auto_approval(report.story_id, pair.region, pair.verdict, policy)
        for pair in report.regions
    ]
    applied = [d.region_id for d in decisions if d.apply]
    if applied:
        logger.info("Story %s: auto-applied %d region(s)", report.story_id, len(applied))
    return report.model_copy(update={"auto_applied": applied}), decisions


def plan_baseline_update(
    report: StoryReport,
    resolved_region_ids: Iterable[str],
    reason: str = "",
) -> Optional[BaselineUpdateRequest]:
    """Turn resolved regions into one request for the story's baseline.

    Ignored regions need no resolution. The whole baseline is refreshed only
    when every remaining region is resolved; otherwise just the resolved
    regions are patched so unresolved changes stay visible next run.
    """
    if report.status != StoryStatus.COMPARED:
        return None
    resolved_ids = set(resolved_region_ids)
    pending = [p for p in report.regions if p.verdict.category != Category.IGNORE]
    resolved = [p for p in pending if p.region.region_id in resolved_ids]
    if not resolved:
        return None
    full = len(resolved) == len(pending)
    return BaselineUpdateRequest(
        story_id=report.story_id,
        full=full,
        regions=[] if full else [p.region.bbox for p in resolved],
        region_ids=[p.region.region_id for p in resolved],
        reason=reason or ("all regions resolved" if full else "partial resolution"),
    )
