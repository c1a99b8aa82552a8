"""Kubernetes event extraction for deploy debug output."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

EVENT_SEPARATOR = "ENDEVENT--BEGINEVENT"
FIELD_SEPARATOR = "ENDFIELD--BEGINFIELD"
FIELD_EMPTY_VALUE = "<no value>"
FIELDS = [
    ".involvedObject.kind",
    ".involvedObject.name",
    ".count",
    ".lastTimestamp",
    ".reason",
    ".message",
    ".eventTime",
    ".deprecatedCount",
    ".deprecatedLastTimestamp",
    ".series",
]
ROUTINE_REASONS = ["Started", "Created", "SuccessfulCreate", "Scheduled", "Pulling", "Pulled"]

_FRACTION = re.compile(r"(\.\d{6})\d+")
_SERIES_COUNT = re.compile(r"count:(\S+?)(?=\s)")
_SERIES_TIMESTAMP = re.compile(r"lastObservedTime:(\S+?)(?=\])")


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an RFC3339 timestamp (nanosecond precision is truncated)."""
    if not value or value == FIELD_EMPTY_VALUE:
        return None
    text = _FRACTION.sub(r"\1", value.strip()).replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _present(value: Optional[str]) -> bool:
    return bool(value) and value != FIELD_EMPTY_VALUE


@dataclass
class Event:
    """One Kubernetes event about a deployed object."""

    subject_kind: str
    subject_name: str
    count: int
    last_timestamp: Optional[datetime]
    reason: str
    message: str

    @staticmethod
    def go_template_for(kind: str, name: str) -> str:
        conditions = [
            f'(eq .involvedObject.kind "{kind}")',
            f'(eq .involvedObject.name "{name}")',
            *[f'(ne .reason "{reason}")' for reason in ROUTINE_REASONS],
        ]
        condition_start = "{{if and " + " ".join(conditions) + "}}"
        field_part = ('{{print "' + FIELD_SEPARATOR + '"}}').join("{{" + f + "}}" for f in FIELDS)
        return (
            "{{range .items}}" + condition_start + field_part
            + '{{print "' + EVENT_SEPARATOR + '"}}{{end}}{{end}}'
        )

    @classmethod
    def extract_all(cls, blob: str) -> list["Event"]:
        events = []
        for event_blob in blob.split(EVENT_SEPARATOR):
            if not event_blob.strip():
                continue
            pieces = event_blob.split(FIELD_SEPARATOR, len(FIELDS) - 1)
            pieces += [""] * (len(FIELDS) - len(pieces))
            field = dict(zip(FIELDS, pieces))
            events.append(
                cls(
                    subject_kind=field[".involvedObject.kind"],
                    subject_name=field[".involvedObject.name"],
                    count=cls._extract_count(field),
                    last_timestamp=cls._extract_timestamp(field),
                    reason=field[".reason"],
                    message=field[".message"].replace("\n", ""),
                )
            )
        return events

    @staticmethod
    def _extract_count(field: dict[str, str]) -> int:
        if _present(field[".count"]):
            raw = field[".count"]
        elif _present(field[".series"]) and _SERIES_COUNT.search(field[".series"]):
            raw = _SERIES_COUNT.search(field[".series"]).group(1)
        elif _present(field[".deprecatedCount"]):
            raw = field[".deprecatedCount"]
        else:
            raw = "1"
        try:
            return int(raw)
        except ValueError:
            return 1

    @staticmethod
    def _extract_timestamp(field: dict[str, str]) -> Optional[datetime]:
        if _present(field[".lastTimestamp"]):
            return parse_timestamp(field[".lastTimestamp"])
        if _present(field[".series"]) and _SERIES_TIMESTAMP.search(field[".series"]):
            return parse_timestamp(_SERIES_TIMESTAMP.search(field[".series"]).group(1))
        if _present(field[".deprecatedLastTimestamp"]):
            return parse_timestamp(field[".deprecatedLastTimestamp"])
        return parse_timestamp(field[".eventTime"])

    def seen_since(self, moment: datetime) -> bool:
        if self.last_timestamp is None:
            return False
        return int(moment.timestamp()) <= int(self.last_timestamp.timestamp())

    def __str__(self) -> str:
        return f"{self.reason}: {self.message} ({self.count} events)"
