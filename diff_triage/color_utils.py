"""Colour parsing and WCAG contrast helpers."""

from __future__ import annotations

import re

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_RGB_RE = re.compile(r"^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*[\d.]+\s*)?\)$")


def parse_color(value: str) -> tuple[int, int, int] | None:
    """Parse ``#rgb``, ``#rrggbb`` or ``rgb(r, g, b)``; None if not a colour."""
    value = value.strip()
    m = _HEX_RE.match(value)
    if m:
        digits = m.group(1)
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)
    m = _RGB_RE.match(value)
    if m:
        rgb = tuple(int(g) for g in m.groups())
        if all(0 <= c <= 255 for c in rgb):
            return rgb  # type: ignore[return-value]
    return None


def to_hex(rgb: tuple[int, int, int] | int) -> str:
    if isinstance(rgb, int):
        return f"#{rgb & 0xFFFFFF:06x}"
    r, g, b = rgb
    return f"#{r:02x}{g:02x}{b:02x}"


def normalize_color(value: str) -> str | None:
    rgb = parse_color(value)
    return to_hex(rgb) if rgb else None


def relative_luminance(rgb: tuple[int, int, int]) -> float:
    def channel(c: int) -> float:
        s = c / 255.0
        return s / 12.92 if s <= 0.04045 else ((s + 0.055) / 1.055) ** 2.4

    r, g, b = (channel(c) for c in rgb)
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def contrast_ratio(first: str | tuple[int, int, int], second: str | tuple[int, int, int]) -> float:
    """WCAG 2.x contrast ratio, from 1.0 to 21.0."""
    a = parse_color(first) if isinstance(first, str) else first
    b = parse_color(second) if isinstance(second, str) else second
    if a is None or b is None:
        raise ValueError(f"Cannot compute contrast for {first!r} and {second!r}")
    la, lb = relative_luminance(a), relative_luminance(b)
    lighter, darker = max(la, lb), min(la, lb)
    return (lighter + 0.05) / (darker + 0.05)
