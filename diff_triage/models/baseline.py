"""Baseline registry data structures."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class BaselineEntry(BaseModel):
    story_id: str
    revision: Optional[str] = None
    width: int
    height: int
    image_path: str  # relative path from the baselines dir to the PNG
    captured_at: str  # ISO timestamp
    run_id: str = ""
    image_hash: str  # SHA-256 over dimensions and raw pixels


class BaselineRegistry(BaseModel):
    last_updated: str = ""
    baselines: dict[str, BaselineEntry] = Field(default_factory=dict)
    # key format: "{story_id}" or "{story_id}@{revision}"
