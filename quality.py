"""Fixed quality ladder and rendition planning."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from errors import UnknownQuality


@dataclass(frozen=True, slots=True)
class QualityProfile:
    name: str
    width: int
    height: int
    video_bitrate: int  # kbps
    audio_bitrate: int  # kbps


# Ordered lowest tier -> highest tier; position is the entitlement ordinal.
LADDER: tuple[QualityProfile, ...] = (
    QualityProfile("SD_360", 640, 360, 800, 96),
    QualityProfile("SD_480", 854, 480, 1200, 96),
    QualityProfile("HD_720", 1280, 720, 2500, 128),
    QualityProfile("FHD_1080", 1920, 1080, 5000, 192),
    QualityProfile("UHD_4K", 3840, 2160, 15000, 192),
)

LOWEST_GUARANTEED = "SD_480"
HIGHEST_TIER = LADDER[-1].name

_BY_NAME = {p.name: p for p in LADDER}


def get_profile(name: str) -> QualityProfile:
    """Look up a ladder rung by name."""
    try:
        return _BY_NAME[name]
    except KeyError:
        raise UnknownQuality(f"Unknown quality: {name}") from None


def tier_index(name: str) -> int:
    """Ordinal position of a tier on the ladder, or -1 if not a ladder rung."""
    for i, profile in enumerate(LADDER):
        if profile.name == name:
            return i
    return -1


def is_within_tier(name: str, max_quality: str) -> bool:
    """True if `name` is a ladder rung at or below `max_quality`."""
    max_idx = tier_index(max_quality)
    if max_idx < 0:
        raise UnknownQuality(f"Unknown quality: {max_quality}")
    idx = tier_index(name)
    return 0 <= idx <= max_idx


def plan_qualities(source_width: int, source_height: int) -> list[QualityProfile]:
    """Select ladder rungs to produce for a source resolution.

    A rung qualifies when its width or height fits within the source's (no
    upscaling). If nothing qualifies, SD_480 is forced so every video has a
    playable rendition. Never empty. Returned in ascending bitrate order.
    """
    selected = [
        p for p in LADDER if p.width <= source_width or p.height <= source_height
    ]
    if not selected:
        selected = [_BY_NAME[LOWEST_GUARANTEED]]
    return sort_by_bitrate(selected)


def sort_by_bitrate(profiles: Iterable[QualityProfile]) -> list[QualityProfile]:
    return sorted(profiles, key=lambda p: (p.video_bitrate, tier_index(p.name)))
