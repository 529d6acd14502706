"""Screenshot rasters and per-story inputs supplied by the capture side."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np
from PIL import Image

from diff_triage.models.verdict import BoundingBox


@dataclass(frozen=True)
class Screenshot:
    """An immutable RGB raster (height x width x 3, uint8)."""

    pixels: np.ndarray

    def __post_init__(self) -> None:
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 3:
            raise ValueError(f"Expected an HxWx3 RGB buffer, got shape {self.pixels.shape}")
        buf = np.ascontiguousarray(self.pixels, dtype=np.uint8)
        if buf is self.pixels:
            buf = buf.copy()
        buf.setflags(write=False)
        object.__setattr__(self, "pixels", buf)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def total_pixels(self) -> int:
        return self.width * self.height

    def digest(self) -> str:
        """SHA-256 over dimensions and raw pixel bytes."""
        h = hashlib.sha256(f"{self.width}x{self.height}".encode())
        h.update(self.pixels.tobytes())
        return h.hexdigest()

    def with_patches(self, source: "Screenshot", boxes: list[BoundingBox]) -> "Screenshot":
        """Return a copy with the given boxes taken from ``source``."""
        if source.size != self.size:
            raise ValueError(f"Cannot patch {self.size} screenshot from {source.size}")
        patched = self.pixels.copy()
        for box in boxes:
            patched[box.y:box.bottom, box.x:box.right] = source.pixels[box.y:box.bottom, box.x:box.right]
        return Screenshot(patched)

    @classmethod
    def from_image(cls, image: Image.Image) -> "Screenshot":
        if image.mode != "RGB":
            image = image.convert("RGB")
        return cls(np.array(image))

    @classmethod
    def open(cls, path: str | Path) -> "Screenshot":
        with Image.open(path) as img:
            return cls.from_image(img)

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.array(self.pixels))

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_image().save(path, format="PNG")


@dataclass(frozen=True)
class DynamicArea:
    """A screen area declared by the capture side as volatile content."""

    bbox: BoundingBox
    tag: str  # timestamp, uuid, ...


@dataclass(frozen=True)
class StoryInput:
    """Everything the capture collaborator supplies for one story."""

    story_id: str
    current: Screenshot
    source_file: Optional[str] = None
    revision: Optional[str] = None
    dynamic_areas: tuple[DynamicArea, ...] = field(default_factory=tuple)

    @property
    def component(self) -> str:
        """Component name, e.g. ``button`` for ``button--primary``."""
        return self.story_id.split("--", 1)[0].lower()
