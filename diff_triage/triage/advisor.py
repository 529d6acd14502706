"""Optional AI advisor consulted for ratio-default verdicts.

The advisor's answer is advisory only. It never overrides a hard-override
or shift rule, and any failure, timeout or low-confidence answer leaves
the deterministic verdict untouched.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

from diff_triage.ai.client import AIClient
from diff_triage.ai.prompts.advisory import ADVISORY_SYSTEM_PROMPT, build_advisory_prompt
from diff_triage.errors import ClassifierTimeout
from diff_triage.models.context import ContextSnapshot
from diff_triage.models.verdict import Category, ChangeRegion, Evidence, Recommendation, Verdict

logger = logging.getLogger(__name__)

_RECOMMENDATION_BY_CATEGORY = {
    Category.IGNORE: Recommendation.AUTO_APPROVE,
    Category.EXPECTED: Recommendation.APPROVE,
    Category.WARNING: Recommendation.REVIEW,
    Category.ERROR: Recommendation.REJECT,
}


def summarize_context(context: ContextSnapshot, max_commits: int = 20) -> str:
    lines = [f"Branch: {context.branch or '(unknown)'}"]
    if context.unavailable:
        lines.append(f"Unavailable: {', '.join(context.unavailable)}")
    lines.append("Commits:")
    for c in context.commits[:max_commits]:
        lines.append(f"  {c.short_id} {c.message.splitlines()[0] if c.message else ''}")
    lines.append("Token changes:")
    for t in context.token_changes:
        lines.append(f"  {t.name}: {t.old_value} -> {t.new_value}")
    if context.pr_description:
        lines.append(f"PR description:\n{context.pr_description[:1500]}")
    return "\n".join(lines)


class AIAdvisor:
    """Asks Claude for a second opinion, bounded by a timeout and a call budget."""

    def __init__(
        self,
        ai_client: AIClient,
        timeout_seconds: float = 20.0,
        min_confidence: float = 0.8,
        max_calls: int = 50,
    ):
        self.ai_client = ai_client
        self.timeout_seconds = timeout_seconds
        self.min_confidence = min_confidence
        self.max_calls = max_calls
        self._call_count = 0
        self._lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="advisor")

    @property
    def budget_remaining(self) -> int:
        return max(0, self.max_calls - self._call_count)

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    def refine(self, region: ChangeRegion, verdict: Verdict, context: ContextSnapshot) -> Verdict:
        """Return the verdict, possibly adjusted by an advisory answer."""
        with self._lock:
            if self._call_count >= self.max_calls:
                logger.debug("Advisor budget exhausted, keeping deterministic verdict")
                return verdict
            self._call_count += 1

        try:
            data = self._ask(region, verdict, context)
        except ClassifierTimeout as e:
            logger.warning("%s: %s; using deterministic verdict", region.region_id, e)
            return verdict
        except ValueError as e:
            logger.error("Advisor response parse failed for %s: %s", region.region_id, e)
            return verdict
        except Exception as e:
            logger.error("Advisor call failed for %s: %s", region.region_id, e)
            return verdict

        try:
            category = Category(str(data.get("category", "")).lower())
            confidence = float(data.get("confidence", 0.0))
        except (ValueError, TypeError):
            logger.warning("Advisor returned an unusable answer for %s: %s", region.region_id, data)
            return verdict
        reasoning = str(data.get("reasoning", ""))[:300]

        if confidence < self.min_confidence or category == verdict.category:
            logger.debug("Advisor for %s: %s (%.2f) not applied", region.region_id, category.value, confidence)
            return verdict.model_copy(update={
                "evidence": [*verdict.evidence, Evidence(kind="advisory", value=category.value, detail=reasoning)],
            })

        logger.info("Advisor moved %s from %s to %s (%.2f)",
                    region.region_id, verdict.category.value, category.value, confidence)
        return Verdict(
            category=category,
            reason=f"{verdict.reason}; advisory classifier: {reasoning or category.value}",
            evidence=[*verdict.evidence, Evidence(kind="advisory", value=category.value, detail=reasoning)],
            recommendation=_RECOMMENDATION_BY_CATEGORY[category],
            confidence=verdict.confidence,
            rule="advisory",
            approval_scope=verdict.approval_scope if category == Category.EXPECTED else None,
        )

    def _ask(self, region: ChangeRegion, verdict: Verdict, context: ContextSnapshot) -> dict:
        user_message = build_advisory_prompt(
            region_json=json.dumps(region.model_dump(mode="json"), indent=2),
            verdict_json=json.dumps(verdict.model_dump(mode="json"), indent=2),
            context_summary=summarize_context(context),
        )
        future = self._pool.submit(
            self.ai_client.complete_json,
            system_prompt=ADVISORY_SYSTEM_PROMPT,
            user_message=user_message,
            max_tokens=300,
        )
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout as e:
            future.cancel()
            raise ClassifierTimeout(
                f"advisory classifier did not answer within {self.timeout_seconds:.1f}s"
            ) from e
