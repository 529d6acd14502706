"""Pixel differencer: per-pixel change mask and overall change ratio."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from diff_triage.errors import IncompatibleBaseline
from diff_triage.models.screenshot import Screenshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiffResult:
    baseline: Screenshot
    current: Screenshot
    mask: np.ndarray  # HxW uint8, max per-channel delta where changed, else 0
    changed_pixels: int
    total_pixels: int
    tolerance: int

    @property
    def ratio(self) -> float:
        if self.total_pixels == 0:
            return 0.0
        return self.changed_pixels / self.total_pixels

    @property
    def changed(self) -> np.ndarray:
        return self.mask > 0

    @property
    def is_empty(self) -> bool:
        return self.changed_pixels == 0


def compute_diff(baseline: Screenshot, current: Screenshot, tolerance: int = 12) -> DiffResult:
    """Compare two screenshots of identical size.

    A pixel counts as changed when any channel differs by more than
    ``tolerance``, which absorbs anti-aliasing and font-rendering noise.
    """
    if baseline.size != current.size:
        raise IncompatibleBaseline(baseline.size, current.size)

    delta = np.abs(
        baseline.pixels.astype(np.int16) - current.pixels.astype(np.int16)
    ).max(axis=2)
    mask = np.where(delta > tolerance, delta, 0).astype(np.uint8)
    changed = int(np.count_nonzero(mask))

    logger.debug(
        "Pixel diff %dx%d: %d changed pixels (tolerance=%d)",
        baseline.width, baseline.height, changed, tolerance,
    )
    mask.setflags(write=False)
    return DiffResult(
        baseline=baseline,
        current=current,
        mask=mask,
        changed_pixels=changed,
        total_pixels=baseline.total_pixels,
        tolerance=tolerance,
    )
