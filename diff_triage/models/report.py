"""Story-level and run-level report structures."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from diff_triage.models.verdict import BoundingBox, Category, ChangeRegion, Verdict


class StoryStatus(str, Enum):
    COMPARED = "compared"
    FIRST_RUN = "first-run"
    CORRUPT_BASELINE = "corrupt-baseline"
    INCOMPATIBLE = "incompatible"
    ABORTED = "aborted"
    ERROR = "error"


class RunOutcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    ABORTED = "aborted"


class RegionVerdict(BaseModel):
    region: ChangeRegion
    verdict: Verdict


class BaselineUpdateRequest(BaseModel):
    """Request to the baseline store to take pixels from the current capture.

    With ``full`` set the whole current screenshot becomes the baseline,
    otherwise only ``regions`` are patched into the existing baseline.
    """

    story_id: str
    full: bool = False
    regions: list[BoundingBox] = Field(default_factory=list)
    region_ids: list[str] = Field(default_factory=list)
    reason: str = ""
    applied: bool = False


class StoryReport(BaseModel):
    story_id: str
    status: StoryStatus
    category: Optional[Category] = None  # None only for first-run stories
    reason: str = ""
    diff_ratio: float = 0.0
    regions: list[RegionVerdict] = Field(default_factory=list)
    counts: dict[str, int] = Field(default_factory=dict)
    capture_baseline: bool = False
    auto_applied: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def passing_category(self) -> Category:
        """Category used for run-level gating; first runs count as Ignore."""
        return self.category if self.category is not None else Category.IGNORE


class Notification(BaseModel):
    event: str  # error, warning, success
    category: Optional[Category] = None
    story_ids: list[str] = Field(default_factory=list)
    message: str = ""


class RunReport(BaseModel):
    run_id: str
    started_at: str
    completed_at: str = ""
    branch: str = ""
    outcome: RunOutcome
    category: Category = Category.IGNORE
    reason: str = ""
    context_available: bool = True
    context_unavailable: list[str] = Field(default_factory=list)
    stories: list[StoryReport] = Field(default_factory=list)
    counts: dict[str, int] = Field(default_factory=dict)
    baseline_updates: list[BaselineUpdateRequest] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return self.outcome == RunOutcome.PASS

    def story(self, story_id: str) -> StoryReport | None:
        for s in self.stories:
            if s.story_id == story_id:
                return s
        return None
