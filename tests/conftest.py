"""Pytest configuration and shared fixtures."""

from typing import Callable

import numpy as np
import pytest

from diff_triage.color_utils import parse_color
from diff_triage.models.config import Policy
from diff_triage.models.context import CommitInfo, ContextSnapshot, TokenChange
from diff_triage.models.screenshot import Screenshot

WHITE = (255, 255, 255)

Rect = tuple  # (x, y, width, height, color or ndarray patch)


# ============================================================================
# Raster Fixtures
# ============================================================================


def _rgb(color) -> tuple[int, int, int]:
    return parse_color(color) if isinstance(color, str) else tuple(color)


@pytest.fixture
def make_shot() -> Callable[..., Screenshot]:
    """Factory: white canvas with filled rectangles or pasted pixel patches."""

    def _make(width: int = 200, height: int = 100, rects: list[Rect] = (), background=WHITE) -> Screenshot:
        pixels = np.empty((height, width, 3), dtype=np.uint8)
        pixels[:, :] = _rgb(background)
        for x, y, w, h, fill in rects:
            if isinstance(fill, np.ndarray):
                pixels[y:y + h, x:x + w] = fill
            else:
                pixels[y:y + h, x:x + w] = _rgb(fill)
        return Screenshot(pixels)

    return _make


@pytest.fixture
def noise_patch() -> Callable[..., np.ndarray]:
    """Factory: deterministic random texture that never looks like the white background."""

    def _noise(width: int, height: int, seed: int = 7) -> np.ndarray:
        rng = np.random.default_rng(seed)
        return rng.integers(0, 200, size=(height, width, 3), dtype=np.uint8)

    return _noise


# ============================================================================
# Policy / Context Fixtures
# ============================================================================


@pytest.fixture
def policy() -> Policy:
    """Default policy."""
    return Policy()


@pytest.fixture
def empty_context() -> ContextSnapshot:
    """A context with nothing relevant in it."""
    return ContextSnapshot(branch="main")


@pytest.fixture
def token_context() -> ContextSnapshot:
    """Context carrying the primary-600 token change."""
    return ContextSnapshot(
        commits=(
            CommitInfo(
                commit_id="a1b2c3d4e5f6",
                message="chore(tokens): darken primary palette",
                timestamp="2026-10-18T09:00:00Z",
                files=("tokens/colors.json",),
            ),
        ),
        token_changes=(
            TokenChange(name="primary-600", old_value="#2196F3", new_value="#1976D2", commit_id="a1b2c3d4e5f6"),
        ),
        pr_description="Darken the primary palette",
        branch="feature/palette",
    )


@pytest.fixture
def refactor_context() -> ContextSnapshot:
    """Context with a refactor commit touching the button component."""
    return ContextSnapshot(
        commits=(
            CommitInfo(
                commit_id="f00dfeed1234",
                message="refactor(button): extract base styles",
                timestamp="2026-10-17T12:00:00Z",
                files=("src/components/Button.tsx", "src/components/Button.css"),
            ),
        ),
        branch="refactor/button",
    )
