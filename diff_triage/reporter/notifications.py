"""Notification routing; delivery is left to the caller."""

from __future__ import annotations

from typing import Optional

from diff_triage.models.config import NotifyMode, Policy
from diff_triage.models.context import ContextSnapshot
from diff_triage.models.report import Notification, RunOutcome, RunReport
from diff_triage.models.verdict import Category


def _should_send(mode: NotifyMode, is_pull_request: bool) -> bool:
    if mode == NotifyMode.ALWAYS:
        return True
    if mode == NotifyMode.PR_ONLY:
        return is_pull_request
    return False


def route_notifications(
    report: RunReport,
    policy: Policy,
    context: Optional[ContextSnapshot],
) -> list[Notification]:
    is_pr = context.is_pull_request if context is not None else False
    rules = policy.notifications
    notes: list[Notification] = []

    errors = [s.story_id for s in report.stories if s.category == Category.ERROR]
    warnings = [s.story_id for s in report.stories if s.category == Category.WARNING]

    if (errors or report.outcome == RunOutcome.ABORTED) and _should_send(rules.on_error, is_pr):
        notes.append(Notification(
            event="error",
            category=Category.ERROR,
            story_ids=errors,
            message=report.reason,
        ))
    if warnings and _should_send(rules.on_warning, is_pr):
        notes.append(Notification(
            event="warning",
            category=Category.WARNING,
            story_ids=warnings,
            message=f"{len(warnings)} story(ies) need review",
        ))
    if report.outcome == RunOutcome.PASS and not errors and not warnings and _should_send(rules.on_success, is_pr):
        notes.append(Notification(event="success", message=report.reason))
    return notes
