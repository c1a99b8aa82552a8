"""Lenient ISO8601 duration parsing for timeout annotations.

Accepts full ISO8601 durations (``PT1H30M``, ``P1D``) as well as bare time
components (``1H``, ``45s``). Parsing is case-insensitive.
"""

import re

SECONDS_PER_UNIT = {
    "years": 31556952,
    "months": 2629746,
    "weeks": 604800,
    "days": 86400,
    "hours": 3600,
    "minutes": 60,
    "seconds": 1,
}

_NUMBER = r"(\d+(?:[.,]\d+)?)"

ISO8601_PATTERN = re.compile(
    rf"^P(?:{_NUMBER}Y)?(?:{_NUMBER}M)?(?:{_NUMBER}W)?(?:{_NUMBER}D)?"
    rf"(?:T(?:{_NUMBER}H)?(?:{_NUMBER}M)?(?:{_NUMBER}S)?)?$"
)
TIME_PATTERN = re.compile(rf"^(?:{_NUMBER}H)?(?:{_NUMBER}M)?(?:{_NUMBER}S)?$")


class DurationParsingError(ValueError):
    """Raised when a duration string cannot be parsed."""

    pass


def parse_duration(value) -> float:
    """
    Parse a duration string into seconds.

    Args:
        value: Duration such as "PT60S", "5m" or "1h30m"

    Returns:
        Total number of seconds

    Raises:
        DurationParsingError: If the value is blank or malformed
    """
    text = str(value or "").strip().upper()
    if not text:
        raise DurationParsingError("Cannot parse blank value")

    if text.startswith("P"):
        match = ISO8601_PATTERN.match(text)
        units = ["years", "months", "weeks", "days", "hours", "minutes", "seconds"]
        if match and text.endswith("T"):
            match = None
    else:
        match = TIME_PATTERN.match(text)
        units = ["hours", "minutes", "seconds"]

    if not match or not any(match.groups()):
        raise DurationParsingError(f"Invalid ISO 8601 duration: {text!r}")

    total = 0.0
    for unit, amount in zip(units, match.groups()):
        if amount:
            total += float(amount.replace(",", ".")) * SECONDS_PER_UNIT[unit]
    return total
