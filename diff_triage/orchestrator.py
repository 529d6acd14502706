"""Run orchestrator: coordinates diff, classify, categorize, aggregate and approve."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from diff_triage.ai.client import AIClient, set_debug_dir
from diff_triage.baseline.store import BaselineStore
from diff_triage.diff.pixel_differ import compute_diff
from diff_triage.diff.region_classifier import classify_regions
from diff_triage.errors import ContextUnavailable, CorruptBaseline, IncompatibleBaseline, RunAborted
from diff_triage.models.config import Policy
from diff_triage.models.context import ContextSnapshot
from diff_triage.models.report import (
    BaselineUpdateRequest,
    RegionVerdict,
    RunReport,
    StoryReport,
    StoryStatus,
)
from diff_triage.models.screenshot import StoryInput
from diff_triage.reporter.aggregator import (
    aborted_report,
    aggregate_run,
    aggregate_story,
    corrupt_baseline_report,
    error_report,
    first_run_report,
    incompatible_report,
)
from diff_triage.reporter.auto_approval import apply_auto_approval, plan_baseline_update
from diff_triage.reporter.notifications import route_notifications
from diff_triage.triage.advisor import AIAdvisor
from diff_triage.triage.engine import CategorizationEngine, StoryRef

logger = logging.getLogger(__name__)

ContextProvider = Callable[[], ContextSnapshot]


def build_advisor(policy: Policy, debug_dir: Optional[Path] = None) -> AIAdvisor | None:
    """Create the AI advisor if enabled (optional; the engine works without it)."""
    cfg = policy.ai_analysis
    if not cfg.enabled:
        return None
    try:
        client = AIClient(model=cfg.model, timeout=cfg.timeout_seconds)
    except EnvironmentError as e:
        logger.warning("AI advisor unavailable: %s. Using deterministic rules only.", e)
        return None
    if debug_dir is not None:
        set_debug_dir(debug_dir)
    return AIAdvisor(
        client,
        timeout_seconds=cfg.timeout_seconds,
        min_confidence=cfg.min_confidence,
        max_calls=cfg.max_calls_per_run,
    )


class StoryAnalyzer:
    """Runs one story through differencer, classifier and engine."""

    def __init__(self, policy: Policy, store: BaselineStore, engine: CategorizationEngine):
        self.policy = policy
        self.store = store
        self.engine = engine

    def analyze(self, story: StoryInput, context: Optional[ContextSnapshot]) -> StoryReport:
        start = time.time()
        report = self._analyze(story, context)
        report.duration_seconds = round(time.time() - start, 3)
        logger.info("[%s] %s: %s (%.2fs)",
                    report.category.value.upper() if report.category else report.status.value.upper(),
                    story.story_id, report.reason, report.duration_seconds)
        return report

    def _analyze(self, story: StoryInput, context: Optional[ContextSnapshot]) -> StoryReport:
        try:
            baseline = self.store.get(story.story_id, story.revision)
        except CorruptBaseline as e:
            logger.warning("Corrupt baseline for %s: %s", story.story_id, e)
            return corrupt_baseline_report(story.story_id, str(e))
        if baseline is None:
            logger.info("No baseline for %s, first run", story.story_id)
            return first_run_report(story.story_id)

        try:
            diff = compute_diff(baseline, story.current, self.policy.diff.pixel_tolerance)
        except IncompatibleBaseline as e:
            logger.error("Story %s: %s", story.story_id, e)
            return incompatible_report(story.story_id, str(e))

        regions = classify_regions(diff, story.story_id, self.policy.diff, story.dynamic_areas)
        ref = StoryRef(story_id=story.story_id, component=story.component, source_file=story.source_file)
        pairs = [
            RegionVerdict(region=region, verdict=self.engine.categorize(region, context, ref))
            for region in regions
        ]
        return aggregate_story(story.story_id, pairs, diff.ratio)


class RunOrchestrator:
    """Analyses all stories of one run concurrently against one shared context."""

    def __init__(
        self,
        policy: Policy,
        store: BaselineStore,
        context_provider: Optional[ContextProvider] = None,
        advisor: AIAdvisor | None = None,
        apply_updates: bool = True,
    ):
        self.policy = policy
        self.store = store
        self.context_provider = context_provider
        self.advisor = advisor
        self.apply_updates = apply_updates
        self.analyzer = StoryAnalyzer(policy, store, CategorizationEngine(policy, advisor))

    def run(self, stories: list[StoryInput]) -> RunReport:
        """Synchronous entry point."""
        return asyncio.run(self.run_async(stories))

    async def run_async(
        self,
        stories: list[StoryInput],
        cancel_event: asyncio.Event | None = None,
    ) -> RunReport:
        run_id = f"run_{uuid.uuid4().hex[:8]}"
        started_at = time.strftime("%Y-%m-%dT%H:%M:%SZ")
        start = time.time()
        logger.info("=== Starting triage run %s (%d stories) ===", run_id, len(stories))

        context = self._build_context()
        # Room for workers abandoned after a timeout
        pool = ThreadPoolExecutor(
            max_workers=self.policy.max_parallel_stories + len(stories), thread_name_prefix="story",
        )
        try:
            reports, aborted_reason = await self._analyze_all(stories, context, pool, cancel_event)
            if aborted_reason is None:
                reports, updates = await self._approve_and_update(stories, reports, run_id, pool)
            else:
                updates = []
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        run_report = aggregate_run(
            run_id, reports, self.policy, started_at,
            branch=context.branch if context else "",
            context_available=context is not None,
            aborted_reason=aborted_reason,
        )
        run_report.baseline_updates = updates
        run_report.context_unavailable = list(context.unavailable) if context else []
        run_report.notifications = route_notifications(run_report, self.policy, context)
        run_report.duration_seconds = round(time.time() - start, 2)
        logger.info("=== Run %s complete: %s (%s) in %.1fs ===",
                    run_id, run_report.outcome.value.upper(), run_report.category.value,
                    run_report.duration_seconds)
        return run_report

    def _build_context(self) -> Optional[ContextSnapshot]:
        """Fetch the context snapshot; called exactly once per run."""
        if self.context_provider is None:
            logger.warning("No context provider configured; running in degraded mode")
            return None
        try:
            return self.context_provider()
        except (ContextUnavailable, OSError) as e:
            logger.warning("Context unavailable (%s); running in degraded mode", e)
            return None

    async def _analyze_all(
        self,
        stories: list[StoryInput],
        context: Optional[ContextSnapshot],
        pool: ThreadPoolExecutor,
        cancel_event: asyncio.Event | None,
    ) -> tuple[list[StoryReport], Optional[str]]:
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.policy.max_parallel_stories)
        timeout = self.policy.story_timeout_seconds

        async def _run_one(story: StoryInput) -> StoryReport:
            async with semaphore:
                future = loop.run_in_executor(pool, self.analyzer.analyze, story, context)
                try:
                    return await asyncio.wait_for(future, timeout=timeout)
                except asyncio.TimeoutError:
                    logger.warning("Story %s timed out after %.1fs", story.story_id, timeout)
                    return aborted_report(story.story_id, f"timed out after {timeout:.1f}s")
                except RunAborted:
                    raise
                except Exception as e:
                    logger.exception("Story %s failed", story.story_id)
                    return error_report(story.story_id, f"{type(e).__name__}: {e}")

        tasks = [asyncio.create_task(_run_one(s)) for s in stories]
        gathered = asyncio.gather(*tasks)
        waiters: set[asyncio.Future] = {gathered}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        aborted_reason: Optional[str] = None
        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if gathered in done:
                try:
                    return list(gathered.result()), None
                except RunAborted as e:
                    logger.error("Run aborted: %s", e)
                    aborted_reason = str(e) or "unrecoverable failure"
            else:
                logger.warning("Run cancelled; abandoning in-flight stories")
                aborted_reason = "run cancelled"
                gathered.cancel()
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        reports = []
        for story, task in zip(stories, tasks):
            if task.cancelled() or task.exception() is not None:
                reports.append(aborted_report(story.story_id, aborted_reason))
            else:
                reports.append(task.result())
        return reports, aborted_reason

    async def _approve_and_update(
        self,
        stories: list[StoryInput],
        reports: list[StoryReport],
        run_id: str,
        pool: ThreadPoolExecutor,
    ) -> tuple[list[StoryReport], list[BaselineUpdateRequest]]:
        loop = asyncio.get_running_loop()
        by_id = {s.story_id: s for s in stories}
        approved: list[StoryReport] = []
        requests: list[BaselineUpdateRequest] = []

        for report in reports:
            report, _ = apply_auto_approval(report, self.policy)
            approved.append(report)
            if report.capture_baseline:
                reason = ("first-run capture" if report.status == StoryStatus.FIRST_RUN
                          else "recapture of corrupt baseline")
                requests.append(BaselineUpdateRequest(story_id=report.story_id, full=True, reason=reason))
            elif report.auto_applied:
                request = plan_baseline_update(report, report.auto_applied, reason="auto-approval")
                if request is not None:
                    requests.append(request)

        if self.apply_updates and requests:
            results = await asyncio.gather(*(
                loop.run_in_executor(pool, self._apply_update, req, by_id[req.story_id], run_id)
                for req in requests
            ))
            requests = list(results)
        return approved, requests

    def _apply_update(self, request: BaselineUpdateRequest, story: StoryInput, run_id: str) -> BaselineUpdateRequest:
        try:
            self.store.apply_update(request, story.current, run_id=run_id, revision=story.revision)
        except (OSError, CorruptBaseline) as e:
            logger.error("Baseline update for %s failed: %s", request.story_id, e)
            return request
        return request.model_copy(update={"applied": True})
