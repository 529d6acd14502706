"""File-based capture collaborator: story screenshots from a directory."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from diff_triage.models.screenshot import DynamicArea, Screenshot, StoryInput
from diff_triage.models.verdict import BoundingBox

logger = logging.getLogger(__name__)


def _dynamic_areas(items: list[dict[str, Any]]) -> tuple[DynamicArea, ...]:
    return tuple(
        DynamicArea(
            bbox=BoundingBox(x=a["x"], y=a["y"], width=a["width"], height=a["height"]),
            tag=str(a.get("tag", "dynamic")),
        )
        for a in items
    )


def load_stories(current_dir: Path, meta_file: Optional[Path] = None) -> list[StoryInput]:
    """Load ``<story-id>.png`` files, with optional per-story metadata.

    The metadata file maps story ids to ``sourceFile``, ``revision`` and
    ``dynamicAreas`` entries.
    """
    meta: dict[str, dict[str, Any]] = {}
    if meta_file is not None:
        with open(meta_file) as f:
            meta = json.load(f)

    stories = []
    for path in sorted(Path(current_dir).glob("*.png")):
        story_id = path.stem
        info = meta.get(story_id, {})
        stories.append(StoryInput(
            story_id=story_id,
            current=Screenshot.open(path),
            source_file=info.get("sourceFile"),
            revision=info.get("revision"),
            dynamic_areas=_dynamic_areas(info.get("dynamicAreas", [])),
        ))
    logger.info("Loaded %d story screenshots from %s", len(stories), current_dir)
    return stories
