"""Tests for duration and label selector parsing."""

import pytest

from sentinel_rollout.duration import DurationParsingError, parse_duration
from sentinel_rollout.label_selector import LabelSelector


class TestParseDuration:
    """Test cases for parse_duration."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("PT60S", 60),
            ("PT1H30M", 5400),
            ("P1D", 86400),
            ("1h", 3600),
            ("45s", 45),
            ("5m", 300),
            ("1H30M", 5400),
            ("pt1.5m", 90),
        ],
    )
    def test_valid_durations(self, value, expected):
        """Test parsing of ISO8601 and bare time durations."""
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", None, "abc", "P", "PT", "10", "1D"])
    def test_invalid_durations(self, value):
        """Test that malformed durations raise."""
        with pytest.raises(DurationParsingError):
            parse_duration(value)


class TestLabelSelector:
    """Test cases for LabelSelector."""

    def test_parse_and_format(self):
        """Test that a selector round-trips to its string form."""
        selector = LabelSelector.parse("app=web,tier=frontend")

        assert selector.to_dict() == {"app": "web", "tier": "frontend"}
        assert str(selector) == "app=web,tier=frontend"

    def test_matches_superset(self):
        """Test that labels must include every selector pair."""
        selector = LabelSelector.parse("app=web")

        assert selector.matches({"app": "web", "extra": "x"}) is True
        assert selector.matches({"app": "api"}) is False
        assert selector.matches(None) is False

    @pytest.mark.parametrize(
        "text,message",
        [
            ("=web", "key is blank"),
            ("app!=web", "!= selectors"),
            ("app==web", "== selectors"),
        ],
    )
    def test_unsupported_selectors(self, text, message):
        """Test that unsupported selector syntax is rejected."""
        with pytest.raises(ValueError, match=message):
            LabelSelector.parse(text)

    def test_empty_selector_is_falsey(self):
        """Test truthiness of empty selectors."""
        assert not LabelSelector()
        assert LabelSelector({"a": "b"})
