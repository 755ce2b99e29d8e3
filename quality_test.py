"""Tests for quality.py - ladder lookup, entitlement tiers, rendition planning."""

from __future__ import annotations

import pytest

from errors import UnknownQuality
from quality import (
    HIGHEST_TIER,
    LADDER,
    get_profile,
    is_within_tier,
    plan_qualities,
    sort_by_bitrate,
    tier_index,
)


def _names(profiles):
    return [p.name for p in profiles]


class TestLadder:
    def test_ladder_order(self):
        assert _names(LADDER) == ["SD_360", "SD_480", "HD_720", "FHD_1080", "UHD_4K"]
        assert HIGHEST_TIER == "UHD_4K"

    def test_bitrates_increase_with_tier(self):
        bitrates = [p.video_bitrate for p in LADDER]
        assert bitrates == sorted(bitrates)

    def test_get_profile(self):
        p = get_profile("HD_720")
        assert (p.width, p.height, p.video_bitrate, p.audio_bitrate) == (1280, 720, 2500, 128)

    def test_get_profile_unknown(self):
        with pytest.raises(UnknownQuality):
            get_profile("8K")


class TestTiers:
    def test_tier_index(self):
        assert tier_index("SD_360") == 0
        assert tier_index("UHD_4K") == 4
        assert tier_index("nope") == -1

    def test_within_tier_inclusive(self):
        assert is_within_tier("HD_720", "HD_720")
        assert is_within_tier("SD_360", "HD_720")
        assert not is_within_tier("FHD_1080", "HD_720")

    def test_unknown_variant_never_within(self):
        assert not is_within_tier("weird", "UHD_4K")

    def test_unknown_max_quality_raises(self):
        with pytest.raises(UnknownQuality):
            is_within_tier("SD_360", "ULTRA")


class TestPlanQualities:
    def test_1080p_source(self):
        assert _names(plan_qualities(1920, 1080)) == ["SD_360", "SD_480", "HD_720", "FHD_1080"]

    def test_4k_source_gets_full_ladder(self):
        assert _names(plan_qualities(3840, 2160)) == _names(LADDER)

    def test_low_res_source_forces_sd480(self):
        assert _names(plan_qualities(480, 270)) == ["SD_480"]

    def test_either_dimension_qualifies(self):
        # Portrait 720x1280: only SD_360 fits by width, heights fit up to 1080
        assert _names(plan_qualities(720, 1280)) == ["SD_360", "SD_480", "HD_720", "FHD_1080"]

    def test_never_empty(self):
        for w, h in [(1, 1), (0, 0), (100, 5000), (5000, 100)]:
            assert plan_qualities(w, h)

    def test_deterministic(self):
        assert plan_qualities(1280, 720) == plan_qualities(1280, 720)

    def test_sort_by_bitrate(self):
        shuffled = [LADDER[3], LADDER[0], LADDER[4], LADDER[1]]
        assert _names(sort_by_bitrate(shuffled)) == ["SD_360", "SD_480", "FHD_1080", "UHD_4K"]


if __name__ == "__main__":
    from testing import run_tests

    run_tests(__file__)
