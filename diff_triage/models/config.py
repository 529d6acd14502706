"""Configuration models for the visual diff triage engine."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from diff_triage.models.verdict import Category


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NotifyMode(str, Enum):
    ALWAYS = "always"
    PR_ONLY = "pr-only"
    NEVER = "never"


class Thresholds(_CamelModel):
    """Upper ratio bounds for the ignore, expected and warning buckets.

    Anything at or above ``warning`` is an error, so the three bounds
    partition [0, 1] into four contiguous, non-overlapping ranges.
    """

    ignore: float = 0.001
    expected: float = 0.01
    warning: float = 0.05

    @model_validator(mode="after")
    def check_partition(self) -> "Thresholds":
        if not 0.0 < self.ignore < self.expected < self.warning <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 < ignore < expected < warning <= 1, got "
                f"ignore={self.ignore}, expected={self.expected}, warning={self.warning}"
            )
        return self

    def categorize(self, ratio: float) -> Category:
        if ratio < self.ignore:
            return Category.IGNORE
        if ratio < self.expected:
            return Category.EXPECTED
        if ratio < self.warning:
            return Category.WARNING
        return Category.ERROR


class AutoApproveConfig(_CamelModel):
    token_changes: bool = Field(default=True, alias="tokenChanges")
    anti_aliasing: bool = Field(default=True, alias="antiAliasing")
    timestamps: bool = True
    uuids: bool = True
    other: bool = False  # catch-all for remaining expected changes

    def is_enabled(self, scope: str) -> bool:
        return {
            "tokenChanges": self.token_changes,
            "antiAliasing": self.anti_aliasing,
            "timestamps": self.timestamps,
            "uuids": self.uuids,
            "other": self.other,
        }.get(scope, self.other)


class NotificationConfig(_CamelModel):
    on_error: NotifyMode = Field(default=NotifyMode.ALWAYS, alias="onError")
    on_warning: NotifyMode = Field(default=NotifyMode.PR_ONLY, alias="onWarning")
    on_success: NotifyMode = Field(default=NotifyMode.NEVER, alias="onSuccess")


class AIAnalysisConfig(_CamelModel):
    enabled: bool = False
    lookback_days: int = Field(default=7, alias="lookbackDays", ge=0)
    model: str = "claude-opus-4-6"
    timeout_seconds: float = Field(default=20.0, alias="timeoutSeconds", gt=0)
    min_confidence: float = Field(default=0.8, alias="minConfidence", ge=0, le=1)
    max_calls_per_run: int = Field(default=50, alias="maxCallsPerRun", ge=0)


class GateConfig(_CamelModel):
    fail_on: Category = Field(default=Category.ERROR, alias="failOn")


class DiffConfig(_CamelModel):
    # Per-channel delta at or below this is treated as rendering noise
    pixel_tolerance: int = Field(default=12, alias="pixelTolerance", ge=0, le=255)
    merge_margin: int = Field(default=4, alias="mergeMargin", ge=0)
    max_shift_search: int = Field(default=8, alias="maxShiftSearch", ge=1)
    shift_match_score: float = Field(default=0.9, alias="shiftMatchScore", gt=0, le=1)
    color_pair_coverage: float = Field(default=0.9, alias="colorPairCoverage", gt=0, le=1)
    aspect_tolerance: float = Field(default=0.1, alias="aspectTolerance", ge=0)


class Policy(_CamelModel):
    thresholds: Thresholds = Field(default_factory=Thresholds)
    auto_approve: AutoApproveConfig = Field(default_factory=AutoApproveConfig, alias="autoApprove")
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    ai_analysis: AIAnalysisConfig = Field(default_factory=AIAnalysisConfig, alias="aiAnalysis")
    gate: GateConfig = Field(default_factory=GateConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)

    # Execution limits
    max_parallel_stories: int = Field(default=4, alias="maxParallelStories", ge=1)
    story_timeout_seconds: float = Field(default=60.0, alias="storyTimeoutSeconds", gt=0)

    # Reporting
    report_output_dir: str = Field(default="./triage-reports", alias="reportOutputDir")

    @classmethod
    def load(cls, path: str | Path) -> "Policy":
        """Load a policy from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Policy file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls.model_validate(data)

    def save(self, path: str | Path) -> None:
        """Save the policy to a JSON file using its camelCase keys."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json", by_alias=True), f, indent=2)
