"""
Tests for duration parsing.
"""

import pytest

from vault_bootstrap.durations import parse_duration


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("5m", 300),
            ("30s", 30),
            ("1h30m", 5400),
            ("2m30s", 150),
            ("1.5s", 1.5),
            ("250ms", 0.25),
            ("45", 45),
            (" 10s ", 10),
            (12, 12),
            (2.5, 2.5),
        ],
    )
    def test_valid(self, value, expected):
        """Test accepted duration spellings."""
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "soon", "5 minutes", "10x", "m", True])
    def test_invalid(self, value):
        """Test rejected duration spellings."""
        with pytest.raises(ValueError):
            parse_duration(value)
