"""Level resolver tests: pure mapping from total XP to level."""

import pytest

from devpath.config import DEFAULT_LEVEL_THRESHOLDS, LevelThreshold
from devpath.db.models import UserProgress
from devpath.progression.level_thresholds import recompute, resolve, validate_thresholds


def _linear_scan(total_xp: int, table: list[LevelThreshold]) -> int:
    level = table[0].level
    for row in table:
        if row.cumulative <= total_xp:
            level = row.level
    return level


class TestResolve:
    """resolve() against the default level table."""

    def test_level_1_at_zero_xp(self):
        info = resolve(0)
        assert info.level == 1
        assert info.title == "Code Apprentice"

    def test_level_boundary_99_xp(self):
        """99 XP is still level 1."""
        assert resolve(99).level == 1

    def test_level_2_at_100_xp(self):
        info = resolve(100)
        assert info.level == 2
        assert info.title == "Bug Hunter"
        assert info.xp_into_level == 0

    def test_distance_to_next_level(self):
        info = resolve(150)
        assert info.xp_into_level == 50
        assert info.xp_for_next_level == 350
        assert info.next_level == 3
        assert info.next_title == "Logic Architect"

    def test_max_level(self):
        """XP beyond the last threshold stays at the max level with nothing left to earn."""
        info = resolve(1_000_000)
        assert info.level == 7
        assert info.xp_for_next_level == 0
        assert info.next_level is None

    def test_negative_total_floors_to_first_level(self):
        assert resolve(-5).level == 1

    def test_monotonic_in_total_xp(self):
        levels = [resolve(xp).level for xp in range(0, 9000, 7)]
        assert levels == sorted(levels)

    def test_matches_linear_scan(self):
        table = list(DEFAULT_LEVEL_THRESHOLDS)
        for xp in (0, 1, 99, 100, 101, 499, 500, 1499, 1500, 2999, 3000, 4999, 5000, 7999, 8000, 12000):
            assert resolve(xp).level == _linear_scan(xp, table)

    def test_deterministic(self):
        assert resolve(1234) == resolve(1234)

    def test_custom_table(self):
        table = [
            LevelThreshold(level=1, title="One", cumulative=0),
            LevelThreshold(level=2, title="Two", cumulative=10),
        ]
        assert resolve(10, table).title == "Two"
        assert resolve(9, table).xp_for_next_level == 1


class TestValidateThresholds:
    """Configured level tables must be usable by resolve()."""

    def test_default_table_is_valid(self):
        validate_thresholds(DEFAULT_LEVEL_THRESHOLDS)

    def test_empty_table_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            validate_thresholds([])

    def test_must_start_at_zero(self):
        with pytest.raises(ValueError, match="start at 0"):
            validate_thresholds([LevelThreshold(level=1, title="One", cumulative=5)])

    def test_must_strictly_increase(self):
        table = [
            LevelThreshold(level=1, title="One", cumulative=0),
            LevelThreshold(level=2, title="Two", cumulative=100),
            LevelThreshold(level=3, title="Three", cumulative=100),
        ]
        with pytest.raises(ValueError, match="strictly increase"):
            validate_thresholds(table)


class TestRecompute:
    """recompute() updates the cached level and reports level-ups."""

    def test_level_up_detected(self):
        progress = UserProgress(user_id=1, total_xp=110, level=1, level_title="Code Apprentice")
        change = recompute(progress)
        assert change.leveled_up is True
        assert change.previous_level == 1
        assert progress.level == 2
        assert progress.level_title == "Bug Hunter"

    def test_no_level_up_within_level(self):
        progress = UserProgress(user_id=1, total_xp=60, level=1, level_title="Code Apprentice")
        change = recompute(progress)
        assert change.leveled_up is False
        assert progress.level == 1
