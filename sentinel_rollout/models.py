"""Result and enum types shared across the rollout engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class RolloutOutcome(str, Enum):
    """Terminal outcome of a deploy phase."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CONFIG_INVALID = "config_invalid"


class DeployMethod(str, Enum):
    """How a resource's manifest is sent to the cluster."""

    APPLY = "apply"
    CREATE = "create"
    REPLACE = "replace"
    REPLACE_FORCE = "replace-force"


class RequiredRollout(str, Enum):
    """Values accepted by the required-rollout annotation (besides percentages)."""

    MAX_UNAVAILABLE = "maxUnavailable"
    FULL = "full"
    NONE = "none"


@dataclass
class WatchResult:
    """Outcome of driving a set of resources to a terminal state."""

    outcome: RolloutOutcome
    succeeded: list[Any] = field(default_factory=list)
    failed: list[Any] = field(default_factory=list)
    timed_out: list[Any] = field(default_factory=list)
    gave_up: list[Any] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome == RolloutOutcome.SUCCEEDED


@dataclass
class DeployResult:
    """Outcome of a deploy operation or one of its phases."""

    outcome: RolloutOutcome
    reasons: list[str] = field(default_factory=list)
    watch_result: Optional[WatchResult] = None

    @property
    def ok(self) -> bool:
        return self.outcome == RolloutOutcome.SUCCEEDED

    @classmethod
    def success(cls, watch_result: Optional[WatchResult] = None) -> "DeployResult":
        return cls(RolloutOutcome.SUCCEEDED, watch_result=watch_result)

    @classmethod
    def failure(cls, *reasons: str, watch_result: Optional[WatchResult] = None) -> "DeployResult":
        return cls(RolloutOutcome.FAILED, list(reasons), watch_result)
