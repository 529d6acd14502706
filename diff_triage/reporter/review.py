"""Review command protocol.

A presentation layer (PR comment bot, web UI, terminal prompt) collects
decisions from a human and hands them back as data; this module only
interprets them.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from diff_triage.models.context import TokenChange
from diff_triage.models.report import BaselineUpdateRequest, StoryReport
from diff_triage.models.verdict import ChangeKind
from diff_triage.reporter.auto_approval import plan_baseline_update

logger = logging.getLogger(__name__)


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    UPDATE_TOKEN = "update-token"
    SKIP = "skip"


class ReviewDecision(BaseModel):
    region_id: str
    action: ReviewAction
    token_name: Optional[str] = None
    comment: str = ""


class ReviewOutcome(BaseModel):
    story_id: str
    approved: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    token_updates: list[TokenChange] = Field(default_factory=list)
    baseline_update: Optional[BaselineUpdateRequest] = None
    errors: list[str] = Field(default_factory=list)


def apply_review(report: StoryReport, decisions: list[ReviewDecision]) -> ReviewOutcome:
    """Apply reviewer decisions to one story's report.

    Auto-applied regions count as resolved. ``update-token`` approves the
    region and emits a token update request for the token synchronizer.
    """
    outcome = ReviewOutcome(story_id=report.story_id)
    by_id = {p.region.region_id: p for p in report.regions}

    for decision in decisions:
        pair = by_id.get(decision.region_id)
        if pair is None:
            outcome.errors.append(f"Unknown region {decision.region_id}")
            continue
        match decision.action:
            case ReviewAction.APPROVE:
                outcome.approved.append(decision.region_id)
            case ReviewAction.REJECT:
                outcome.rejected.append(decision.region_id)
            case ReviewAction.SKIP:
                outcome.skipped.append(decision.region_id)
            case ReviewAction.UPDATE_TOKEN:
                region = pair.region
                if region.kind != ChangeKind.COLOR or not decision.token_name:
                    outcome.errors.append(
                        f"{decision.region_id}: update-token needs a colour change and a token name"
                    )
                    continue
                outcome.token_updates.append(TokenChange(
                    name=decision.token_name,
                    old_value=region.old_color or "",
                    new_value=region.new_color or "",
                ))
                outcome.approved.append(decision.region_id)

    rejected = set(outcome.rejected)
    resolved = [r for r in [*report.auto_applied, *outcome.approved] if r not in rejected]
    outcome.baseline_update = plan_baseline_update(report, resolved, reason="manual review")
    logger.info(
        "Review of %s: %d approved, %d rejected, %d skipped",
        report.story_id, len(outcome.approved), len(outcome.rejected), len(outcome.skipped),
    )
    return outcome
