"""Level computation: floor(xp / 1000) + 1."""

import pytest

from edq.accounts.service import compute_level


class TestLevelComputation:

    def test_level_1_at_zero_xp(self):
        assert compute_level(0) == 1

    def test_boundary_999_xp(self):
        """999 XP is still level 1."""
        assert compute_level(999) == 1

    def test_level_2_at_1000_xp(self):
        assert compute_level(1000) == 2

    @pytest.mark.parametrize(
        "xp,expected_level",
        [(150, 1), (1999, 2), (2000, 3), (15400, 16), (1_000_000, 1001)],
    )
    def test_levels(self, xp, expected_level):
        assert compute_level(xp) == expected_level

    def test_custom_xp_per_level(self):
        assert compute_level(250, xp_per_level=100) == 3

    def test_negative_xp_rejected(self):
        with pytest.raises(ValueError):
            compute_level(-1)
