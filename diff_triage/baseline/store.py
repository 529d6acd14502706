"""Baseline storage: read-many, write-rare, writes serialized per story key."""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from pathlib import Path
from typing import Optional, Protocol

from PIL import UnidentifiedImageError

from diff_triage.errors import CorruptBaseline
from diff_triage.models.baseline import BaselineEntry, BaselineRegistry
from diff_triage.models.report import BaselineUpdateRequest
from diff_triage.models.screenshot import Screenshot

logger = logging.getLogger(__name__)


class BaselineStore(Protocol):
    def get(self, story_id: str, revision: Optional[str] = None) -> Optional[Screenshot]:
        """Return the baseline, None if absent; raise CorruptBaseline if unreadable."""
        ...

    def put(self, story_id: str, screenshot: Screenshot, run_id: str = "",
            revision: Optional[str] = None) -> None:
        ...

    def apply_update(self, request: BaselineUpdateRequest, current: Screenshot,
                     run_id: str = "", revision: Optional[str] = None) -> None:
        ...


def baseline_key(story_id: str, revision: Optional[str] = None) -> str:
    return f"{story_id}@{revision}" if revision else story_id


class _KeyedLocks:
    """One re-entrant lock per story key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def for_key(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock


class _UpdateMixin:
    _locks: _KeyedLocks

    def apply_update(self, request: BaselineUpdateRequest, current: Screenshot,
                     run_id: str = "", revision: Optional[str] = None) -> None:
        """Apply a full refresh or a region patch as one read-modify-write."""
        with self._locks.for_key(baseline_key(request.story_id, revision)):
            if request.full:
                self.put(request.story_id, current, run_id=run_id, revision=revision)
                return
            existing = self.get(request.story_id, revision)
            if existing is None:
                logger.warning("No baseline to patch for %s; storing full capture", request.story_id)
                self.put(request.story_id, current, run_id=run_id, revision=revision)
                return
            patched = existing.with_patches(current, request.regions)
            self.put(request.story_id, patched, run_id=run_id, revision=revision)
            logger.info("Patched %d region(s) into baseline for %s",
                        len(request.regions), request.story_id)


class InMemoryBaselineStore(_UpdateMixin):
    """Dictionary-backed store for embedding and tests."""

    def __init__(self, baselines: Optional[dict[str, Screenshot]] = None):
        self._data: dict[str, Screenshot] = dict(baselines or {})
        self._locks = _KeyedLocks()
        self.writes: list[str] = []

    def get(self, story_id: str, revision: Optional[str] = None) -> Optional[Screenshot]:
        return self._data.get(baseline_key(story_id, revision))

    def put(self, story_id: str, screenshot: Screenshot, run_id: str = "",
            revision: Optional[str] = None) -> None:
        key = baseline_key(story_id, revision)
        with self._locks.for_key(key):
            self._data[key] = screenshot
            self.writes.append(key)


class FileBaselineStore(_UpdateMixin):
    """Stores baseline PNGs plus a JSON registry with content hashes."""

    def __init__(self, baselines_dir: Path):
        self.baselines_dir = Path(baselines_dir)
        self.registry_path = self.baselines_dir / "registry.json"
        self._locks = _KeyedLocks()
        self._registry_lock = threading.Lock()
        self.registry = self._load()

    def _load(self) -> BaselineRegistry:
        """Load registry from disk, or create a new one."""
        if self.registry_path.exists():
            try:
                with open(self.registry_path) as f:
                    data = json.load(f)
                return BaselineRegistry(**data)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load baseline registry: %s. Creating new.", e)
        return BaselineRegistry()

    def _save(self) -> None:
        """Persist registry to disk. Caller holds the registry lock."""
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)
        self.registry.last_updated = time.strftime("%Y-%m-%dT%H:%M:%SZ")
        tmp = self.registry_path.with_suffix(".json.tmp")
        with open(tmp, "w") as f:
            json.dump(self.registry.model_dump(), f, indent=2)
        tmp.replace(self.registry_path)
        logger.debug("Saved baseline registry to %s", self.registry_path)

    def _image_path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", key)
        return self.baselines_dir / "images" / f"{safe}.png"

    def entries(self) -> list[BaselineEntry]:
        with self._registry_lock:
            return list(self.registry.baselines.values())

    def get(self, story_id: str, revision: Optional[str] = None) -> Optional[Screenshot]:
        key = baseline_key(story_id, revision)
        with self._registry_lock:
            entry = self.registry.baselines.get(key)
        if entry is None:
            return None

        abs_path = self.baselines_dir / entry.image_path
        if not abs_path.exists():
            raise CorruptBaseline(f"baseline image missing for {key}: {abs_path}")
        try:
            shot = Screenshot.open(abs_path)
        except (OSError, UnidentifiedImageError, ValueError) as e:
            raise CorruptBaseline(f"baseline image unreadable for {key}: {e}") from e
        if shot.size != (entry.width, entry.height) or shot.digest() != entry.image_hash:
            raise CorruptBaseline(f"baseline image for {key} does not match its registry hash")
        return shot

    def put(self, story_id: str, screenshot: Screenshot, run_id: str = "",
            revision: Optional[str] = None) -> None:
        """Write the PNG and register it."""
        key = baseline_key(story_id, revision)
        with self._locks.for_key(key):
            dest = self._image_path(key)
            screenshot.save(dest)
            entry = BaselineEntry(
                story_id=story_id,
                revision=revision,
                width=screenshot.width,
                height=screenshot.height,
                image_path=str(dest.relative_to(self.baselines_dir)),
                captured_at=time.strftime("%Y-%m-%dT%H:%M:%SZ"),
                run_id=run_id,
                image_hash=screenshot.digest(),
            )
            with self._registry_lock:
                self.registry.baselines[key] = entry
                self._save()
        logger.info("Stored baseline for %s (%dx%d)", key, screenshot.width, screenshot.height)
