"""Change regions and the verdicts assigned to them."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Category(str, Enum):
    """Severity category, totally ordered by need for human attention."""

    IGNORE = "ignore"
    EXPECTED = "expected"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _CATEGORY_RANK[self]

    def __lt__(self, other: "Category") -> bool:
        if isinstance(other, Category):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other: "Category") -> bool:
        if isinstance(other, Category):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other: "Category") -> bool:
        if isinstance(other, Category):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other: "Category") -> bool:
        if isinstance(other, Category):
            return self.rank >= other.rank
        return NotImplemented


_CATEGORY_RANK = {
    Category.IGNORE: 0,
    Category.EXPECTED: 1,
    Category.WARNING: 2,
    Category.ERROR: 3,
}


class ChangeKind(str, Enum):
    SHIFT = "shift"
    COLOR = "color"
    SIZE = "size"
    CONTENT = "content"
    UNCLASSIFIED = "unclassified"


class Recommendation(str, Enum):
    AUTO_APPROVE = "auto-approve"
    APPROVE = "approve"
    REVIEW = "review"
    REJECT = "reject"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BoundingBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def contains(self, other: "BoundingBox") -> bool:
        return (
            self.x <= other.x and self.y <= other.y
            and other.right <= self.right and other.bottom <= self.bottom
        )


class ChangeRegion(BaseModel):
    """A spatially coherent group of changed pixels with an inferred kind."""

    model_config = ConfigDict(frozen=True)

    region_id: str
    bbox: BoundingBox
    pixel_count: int
    total_pixels: int
    kind: ChangeKind = ChangeKind.UNCLASSIFIED
    # Sampled representative values, populated according to kind
    old_color: Optional[str] = None
    new_color: Optional[str] = None
    background_color: Optional[str] = None
    displacement: Optional[tuple[int, int]] = None
    old_size: Optional[tuple[int, int]] = None
    new_size: Optional[tuple[int, int]] = None
    content_tag: Optional[str] = None
    match_score: float = 0.0

    @property
    def ratio(self) -> float:
        """Changed pixels of this region relative to the whole screenshot."""
        if self.total_pixels <= 0:
            return 0.0
        return self.pixel_count / self.total_pixels


class Evidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str  # token, commit, pr, measurement, dynamic, advisory, none
    value: str
    detail: str = ""


NO_CONTEXT_EVIDENCE = Evidence(kind="none", value="no context available")
NONE_AVAILABLE_EVIDENCE = Evidence(kind="none", value="none available")


class Verdict(BaseModel):
    """Fixed verdict record; every field is required for aggregation."""

    model_config = ConfigDict(frozen=True)

    category: Category
    reason: str
    evidence: list[Evidence] = Field(min_length=1)
    recommendation: Recommendation
    confidence: Confidence
    rule: str
    # Auto-approve flag family this verdict falls under, if any
    approval_scope: Optional[str] = None
