"""Equality-based label selectors (``key=value,key2=value2``)."""

from typing import Optional


class LabelSelector:
    """A parsed equality-only label selector."""

    def __init__(self, selector: Optional[dict[str, str]] = None):
        self._selector = dict(selector or {})

    @classmethod
    def parse(cls, text: str) -> "LabelSelector":
        """
        Parse a selector string.

        Raises:
            ValueError: If the selector uses unsupported operators or is malformed
        """
        selector: dict[str, str] = {}
        for pair in text.split(","):
            key, _, value = pair.partition("=")
            if not key.strip():
                raise ValueError("key is blank")
            if key.endswith("!"):
                raise ValueError("!= selectors are not supported")
            if value.startswith("="):
                raise ValueError("== selectors are not supported")
            selector[key] = value
        return cls(selector)

    def to_dict(self) -> dict[str, str]:
        return dict(self._selector)

    def matches(self, labels: Optional[dict[str, str]]) -> bool:
        """Return True if every selector pair is present in ``labels``."""
        labels = labels or {}
        return all(labels.get(key) == value for key, value in self._selector.items())

    def __bool__(self) -> bool:
        return bool(self._selector)

    def __str__(self) -> str:
        return ",".join(f"{key}={value}" for key, value in self._selector.items())
