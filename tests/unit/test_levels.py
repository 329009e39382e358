"""Level resolution tests: the threshold table, the open-ended band and progress."""

import pytest

from gamify.progression.levels import (
    LEVEL_THRESHOLDS,
    level_progress,
    level_threshold,
    level_up_bonus,
    resolve_level,
)


class TestResolveLevel:
    """XP to level mapping."""

    def test_level_1_at_zero_xp(self):
        assert resolve_level(0) == 1

    def test_level_boundary_99_xp(self):
        """99 XP is still level 1."""
        assert resolve_level(99) == 1

    def test_level_2_at_100_xp(self):
        assert resolve_level(100) == 2

    def test_negative_xp_is_level_1(self):
        assert resolve_level(-50) == 1

    @pytest.mark.parametrize(("xp", "expected"), [
        (249, 2),
        (250, 3),
        (500, 4),
        (999, 4),
        (1000, 5),
        (2000, 6),
        (3500, 7),
        (5000, 8),
        (7000, 9),
        (10000, 10),
        (14999, 10),
    ])
    def test_table_band(self, xp, expected):
        assert resolve_level(xp) == expected

    @pytest.mark.parametrize(("xp", "expected"), [
        (15000, 16),
        (15500, 16),
        (15999, 16),
        (16000, 17),
        (100000, 101),
    ])
    def test_open_ended_band(self, xp, expected):
        """From 15000 XP every 1000 XP is one level."""
        assert resolve_level(xp) == expected

    def test_monotonic(self):
        previous = resolve_level(0)
        for xp in range(0, 30000, 37):
            current = resolve_level(xp)
            assert current >= previous
            previous = current

    def test_every_table_threshold_resolves_to_its_level(self):
        for entry in LEVEL_THRESHOLDS:
            assert resolve_level(entry["xp_required"]) == entry["level"]


class TestLevelThreshold:
    """Inverse of resolve_level."""

    def test_table_levels(self):
        assert level_threshold(1) == 0
        assert level_threshold(5) == 1000
        assert level_threshold(10) == 10000

    def test_open_ended_levels(self):
        assert level_threshold(16) == 15000
        assert level_threshold(17) == 16000

    def test_below_one(self):
        assert level_threshold(0) == 0


class TestLevelUpBonus:

    def test_bonus_scales_with_level(self):
        assert level_up_bonus(2) == 20
        assert level_up_bonus(10) == 100


class TestLevelProgress:
    """Progress toward the next level."""

    def test_xp_into_level_calculation(self):
        result = level_progress(150)  # 50 XP into level 2
        assert result["level"] == 2
        assert result["next_level"] == 3
        assert result["xp_into_level"] == 50
        assert result["xp_for_level"] == 150  # 250 - 100
        assert result["progress_percentage"] == 33.33

    def test_xp_into_level_at_boundary(self):
        result = level_progress(100)
        assert result["xp_into_level"] == 0
        assert result["progress_percentage"] == 0.0

    def test_level_10_band_is_wide(self):
        result = level_progress(12000)
        assert result["level"] == 10
        assert result["next_level"] == 16
        assert result["next_level_xp"] == 15000
        assert result["xp_for_level"] == 5000

    def test_open_ended(self):
        result = level_progress(15250)
        assert result["level"] == 16
        assert result["next_level"] == 17
        assert result["level_xp"] == 15000
        assert result["next_level_xp"] == 16000
        assert result["progress_percentage"] == 25.0
