"""Region classifier: groups changed pixels and infers a change kind."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import numpy as np
from scipy import ndimage

from diff_triage.color_utils import to_hex
from diff_triage.diff.pixel_differ import DiffResult
from diff_triage.models.config import DiffConfig
from diff_triage.models.screenshot import DynamicArea
from diff_triage.models.verdict import BoundingBox, ChangeKind, ChangeRegion

logger = logging.getLogger(__name__)

# 8-connectivity
_STRUCTURE = np.ones((3, 3), dtype=bool)
# Context ring sampled around a region's bounding box
_WINDOW_PAD = 3
# Shift search is evaluated on at most this many changed pixels per region
_MAX_SHIFT_SAMPLES = 20000

Box = tuple[int, int, int, int]  # x0, y0, x1, y1 (exclusive)


def classify_regions(
    diff: DiffResult,
    story_id: str,
    config: DiffConfig | None = None,
    dynamic_areas: Iterable[DynamicArea] = (),
) -> list[ChangeRegion]:
    """Turn a diff mask into ordered, independently classified change regions."""
    config = config or DiffConfig()
    if diff.is_empty:
        return []

    labels, count = ndimage.label(diff.changed, structure=_STRUCTURE)
    boxes = [
        (sl[1].start, sl[0].start, sl[1].stop, sl[0].stop)
        for sl in ndimage.find_objects(labels)
    ]
    groups = _merge_boxes(boxes, config.merge_margin)
    groups.sort(key=lambda g: (g[0][1], g[0][0]))
    logger.debug("Story %s: %d components merged into %d regions", story_id, count, len(groups))

    areas = list(dynamic_areas)
    regions = []
    for index, (box, members) in enumerate(groups, start=1):
        x0, y0, x1, y1 = box
        local = np.isin(labels[y0:y1, x0:x1], members)
        ys, xs = np.nonzero(local)
        regions.append(_classify_one(
            diff,
            region_id=f"{story_id}#r{index}",
            box=box,
            ys=ys + y0,
            xs=xs + x0,
            config=config,
            dynamic_areas=areas,
        ))
    if len(regions) > 1:
        regions = _merge_shifted(regions, diff.baseline.pixels, diff.tolerance)
        regions.sort(key=lambda r: (r.bbox.y, r.bbox.x))
        regions = [r.model_copy(update={"region_id": f"{story_id}#r{i}"}) for i, r in enumerate(regions, start=1)]
    return regions


def _merge_boxes(boxes: list[Box], margin: int) -> list[tuple[Box, list[int]]]:
    """Merge boxes closer than ``margin`` pixels until no pair is close."""
    groups = [(box, [i + 1]) for i, box in enumerate(boxes)]
    merged = True
    while merged:
        merged = False
        out: list[tuple[Box, list[int]]] = []
        for box, members in groups:
            for j, (other, other_members) in enumerate(out):
                if _near(box, other, margin):
                    out[j] = (_union(box, other), other_members + members)
                    merged = True
                    break
            else:
                out.append((box, members))
        groups = out
    return groups


def _near(a: Box, b: Box, margin: int) -> bool:
    return (
        b[0] <= a[2] + margin and a[0] <= b[2] + margin
        and b[1] <= a[3] + margin and a[1] <= b[3] + margin
    )


def _union(a: Box, b: Box) -> Box:
    return min(a[0], b[0]), min(a[1], b[1]), max(a[2], b[2]), max(a[3], b[3])


def _box_of(region: ChangeRegion) -> Box:
    b = region.bbox
    return b.x, b.y, b.x + b.width, b.y + b.height


def _merge_shifted(regions: list[ChangeRegion], before: np.ndarray, tolerance: int) -> list[ChangeRegion]:
    """Join Shift regions that are the vacated and newly covered edges of one moved element.

    A flat-filled element moved by (dx, dy) only differs where it left and
    where it arrived, so its interior leaves two strips with the same
    displacement. They belong together when the baseline is foreground all
    the way across the gap between them.
    """
    regions = list(regions)
    merged = True
    while merged:
        merged = False
        for i in range(len(regions)):
            for j in range(i + 1, len(regions)):
                if _same_element(regions[i], regions[j], before, tolerance):
                    regions[i] = _join(regions[i], regions[j])
                    del regions[j]
                    merged = True
                    break
            if merged:
                break
    return regions


def _same_element(a: ChangeRegion, b: ChangeRegion, before: np.ndarray, tolerance: int) -> bool:
    if a.kind != ChangeKind.SHIFT or b.kind != ChangeKind.SHIFT or a.displacement != b.displacement:
        return False
    dx, dy = a.displacement
    # 0 = horizontal move (x extents), 1 = vertical move (y extents)
    axis = 0 if abs(dx) >= abs(dy) else 1
    cross = 1 - axis
    box_a, box_b = _box_of(a), _box_of(b)
    lo = max(box_a[cross], box_b[cross])
    hi = min(box_a[cross + 2], box_b[cross + 2])
    if lo >= hi:
        return False

    first, second = sorted((box_a, box_b), key=lambda box: box[axis])
    start, end = first[axis + 2], second[axis]
    if end <= start:
        return True

    wx0, wy0, wx1, wy1 = _window(_union(box_a, box_b), before.shape, _WINDOW_PAD)
    bg_rgb = _border_background(before[wy0:wy1, wx0:wx1])
    if axis == 0:
        covered = _foreground(before[lo:hi, start:end], bg_rgb, tolerance).any(axis=0)
    else:
        covered = _foreground(before[start:end, lo:hi], bg_rgb, tolerance).any(axis=1)
    return bool(covered.all())


def _join(a: ChangeRegion, b: ChangeRegion) -> ChangeRegion:
    x0, y0, x1, y1 = _union(_box_of(a), _box_of(b))
    return a.model_copy(update={
        "bbox": BoundingBox(x=int(x0), y=int(y0), width=int(x1 - x0), height=int(y1 - y0)),
        "pixel_count": a.pixel_count + b.pixel_count,
        "match_score": min(a.match_score, b.match_score),
    })


def _classify_one(
    diff: DiffResult,
    region_id: str,
    box: Box,
    ys: np.ndarray,
    xs: np.ndarray,
    config: DiffConfig,
    dynamic_areas: list[DynamicArea],
) -> ChangeRegion:
    x0, y0, x1, y1 = box
    bbox = BoundingBox(x=int(x0), y=int(y0), width=int(x1 - x0), height=int(y1 - y0))
    before = diff.baseline.pixels
    after = diff.current.pixels
    base = dict(
        region_id=region_id,
        bbox=bbox,
        pixel_count=int(len(ys)),
        total_pixels=diff.total_pixels,
    )

    shift = _detect_shift(before, after, ys, xs, config, diff.tolerance)
    if shift is not None:
        (dx, dy), score = shift
        return ChangeRegion(**base, kind=ChangeKind.SHIFT, displacement=(dx, dy), match_score=score)

    color = _detect_color(before, after, ys, xs, box, config)
    if color is not None:
        old, new, background, coverage = color
        return ChangeRegion(
            **base, kind=ChangeKind.COLOR, old_color=old, new_color=new,
            background_color=background, match_score=coverage,
        )

    size = _detect_size(before, after, box, config, diff.tolerance)
    if size is not None:
        old_size, new_size = size
        return ChangeRegion(**base, kind=ChangeKind.SIZE, old_size=old_size, new_size=new_size)

    for area in dynamic_areas:
        if area.bbox.contains(bbox):
            return ChangeRegion(**base, kind=ChangeKind.CONTENT, content_tag=area.tag)

    return ChangeRegion(**base)


def _detect_shift(
    before: np.ndarray,
    after: np.ndarray,
    ys: np.ndarray,
    xs: np.ndarray,
    config: DiffConfig,
    tolerance: int,
) -> Optional[tuple[tuple[int, int], float]]:
    """Template-match the region's after-pixels against translated before-pixels."""
    if len(ys) > _MAX_SHIFT_SAMPLES:
        step = -(-len(ys) // _MAX_SHIFT_SAMPLES)
        ys, xs = ys[::step], xs[::step]
    h, w = before.shape[:2]
    target = after[ys, xs].astype(np.int16)
    n = len(ys)

    best_score, best_vec = 0.0, None
    radius = config.max_shift_search
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            if dx == 0 and dy == 0:
                continue
            sy, sx = ys - dy, xs - dx
            valid = (sy >= 0) & (sy < h) & (sx >= 0) & (sx < w)
            if not valid.any():
                continue
            source = before[sy[valid], sx[valid]].astype(np.int16)
            matched = np.abs(source - target[valid]).max(axis=1) <= tolerance
            score = float(matched.sum()) / n
            if score > best_score or (
                score == best_score and best_vec is not None
                and dx * dx + dy * dy < best_vec[0] ** 2 + best_vec[1] ** 2
            ):
                best_score, best_vec = score, (dx, dy)

    if best_vec is None or best_score < config.shift_match_score:
        return None
    return best_vec, round(best_score, 4)


def _pack(rgb: np.ndarray) -> np.ndarray:
    rgb = rgb.astype(np.int64)
    return (rgb[..., 0] << 16) | (rgb[..., 1] << 8) | rgb[..., 2]


def _window(box: Box, shape: tuple[int, ...], pad: int) -> Box:
    x0, y0, x1, y1 = box
    return max(0, x0 - pad), max(0, y0 - pad), min(shape[1], x1 + pad), min(shape[0], y1 + pad)


def _detect_color(
    before: np.ndarray,
    after: np.ndarray,
    ys: np.ndarray,
    xs: np.ndarray,
    box: Box,
    config: DiffConfig,
) -> Optional[tuple[str, str, Optional[str], float]]:
    """Detect an in-place recolour: one dominant (old, new) pair covering the footprint."""
    pairs = (_pack(before[ys, xs]) << 24) | _pack(after[ys, xs])
    values, counts = np.unique(pairs, return_counts=True)
    top = int(np.argmax(counts))
    dominant = int(counts[top])
    coverage = dominant / len(ys)
    if coverage < config.color_pair_coverage:
        return None
    old, new = int(values[top]) >> 24, int(values[top]) & 0xFFFFFF

    wx0, wy0, wx1, wy1 = _window(box, before.shape, _WINDOW_PAD)
    before_win = _pack(before[wy0:wy1, wx0:wx1])
    after_win = _pack(after[wy0:wy1, wx0:wx1])
    footprint = max(int(np.count_nonzero(before_win == old)), int(np.count_nonzero(after_win == new)))
    if footprint == 0 or dominant / footprint < config.color_pair_coverage:
        return None

    ring = np.ones(after_win.shape, dtype=bool)
    x0, y0, x1, y1 = box
    ring[y0 - wy0:y1 - wy0, x0 - wx0:x1 - wx0] = False
    surrounding = after_win[ring & (after_win != new)]
    background = None
    if surrounding.size:
        colors, color_counts = np.unique(surrounding, return_counts=True)
        background = to_hex(int(colors[int(np.argmax(color_counts))]))
    return to_hex(old), to_hex(new), background, round(coverage, 4)


def _detect_size(
    before: np.ndarray,
    after: np.ndarray,
    box: Box,
    config: DiffConfig,
    tolerance: int,
) -> Optional[tuple[tuple[int, int], tuple[int, int]]]:
    """Detect one element resized with a consistent aspect ratio."""
    wx0, wy0, wx1, wy1 = _window(box, before.shape, _WINDOW_PAD)
    before_win = before[wy0:wy1, wx0:wx1]
    after_win = after[wy0:wy1, wx0:wx1]

    bg_rgb = _border_background(before_win)

    old_size = _foreground_size(before_win, bg_rgb, tolerance)
    new_size = _foreground_size(after_win, bg_rgb, tolerance)
    if old_size is None or new_size is None or old_size == new_size:
        return None
    old_ar = old_size[0] / old_size[1]
    new_ar = new_size[0] / new_size[1]
    if abs(old_ar - new_ar) / old_ar > config.aspect_tolerance:
        return None
    return old_size, new_size


def _border_background(win: np.ndarray) -> np.ndarray:
    """Most common colour on the window's outer edge."""
    border = np.concatenate([win[0, :], win[-1, :], win[:, 0], win[:, -1]])
    colors, counts = np.unique(_pack(border), return_counts=True)
    bg = int(colors[int(np.argmax(counts))])
    return np.array([(bg >> 16) & 0xFF, (bg >> 8) & 0xFF, bg & 0xFF], dtype=np.int16)


def _foreground(win: np.ndarray, bg_rgb: np.ndarray, tolerance: int) -> np.ndarray:
    return np.abs(win.astype(np.int16) - bg_rgb).max(axis=2) > tolerance


def _foreground_size(win: np.ndarray, bg_rgb: np.ndarray, tolerance: int) -> Optional[tuple[int, int]]:
    fg = _foreground(win, bg_rgb, tolerance)
    rows = np.flatnonzero(fg.any(axis=1))
    cols = np.flatnonzero(fg.any(axis=0))
    if rows.size == 0:
        return None
    return int(cols[-1] - cols[0] + 1), int(rows[-1] - rows[0] + 1)
