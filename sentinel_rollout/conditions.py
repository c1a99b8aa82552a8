"""Generic JSONPath-based rollout conditions for custom resources."""

import json
from typing import Any, Optional

from jsonpath_ng.ext import parse as parse_jsonpath
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
)

from .errors import RolloutConditionsError

READY_STATUS_PATH = '$.status.conditions[?(@.type == "Ready")].status'
FAILED_STATUS_PATH = '$.status.conditions[?(@.type == "Failed")].status'
FAILED_MESSAGE_PATH = '$.status.conditions[?(@.type == "Failed")].message'


def _compile(expression: str):
    try:
        return parse_jsonpath(expression)
    except Exception as e:
        raise ValueError(f"invalid JSONPath expression {expression!r}: {e}") from e


def _first(query, document: dict[str, Any]) -> Any:
    matches = query.find(document)
    return matches[0].value if matches else None


class SuccessCondition(BaseModel):
    """A path whose first match must equal ``value``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    path: str
    value: str

    _query: Any = PrivateAttr(default=None)

    @field_validator("path")
    @classmethod
    def _validate_path(cls, v: str) -> str:
        _compile(v)
        return v

    def model_post_init(self, __context: Any) -> None:
        self._query = _compile(self.path)

    def matches(self, document: dict[str, Any]) -> bool:
        return _first(self._query, document) == self.value


class FailureCondition(SuccessCondition):
    """A success condition that also knows how to explain itself."""

    error_msg_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("error_msg_path", "error_message_path"),
    )
    custom_error_msg: Optional[str] = None

    _error_query: Any = PrivateAttr(default=None)

    @field_validator("error_msg_path")
    @classmethod
    def _validate_error_path(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            _compile(v)
        return v

    def model_post_init(self, __context: Any) -> None:
        super().model_post_init(__context)
        if self.error_msg_path:
            self._error_query = _compile(self.error_msg_path)

    def message(self, document: dict[str, Any]) -> Optional[str]:
        if self.custom_error_msg:
            return self.custom_error_msg
        if self._error_query is not None:
            return _first(self._error_query, document)
        return None


class RolloutConditions(BaseModel):
    """
    Parsed success and failure conditions.

    Every success condition must match for a rollout to succeed; any single
    failure condition matching marks it failed. Both lists must be non-empty.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    success_conditions: list[SuccessCondition] = Field(min_length=1)
    failure_conditions: list[FailureCondition] = Field(min_length=1)

    @classmethod
    def default(cls) -> "RolloutConditions":
        """Conditions checking the standard Ready/Failed status conditions."""
        return cls(
            success_conditions=[SuccessCondition(path=READY_STATUS_PATH, value="True")],
            failure_conditions=[
                FailureCondition(
                    path=FAILED_STATUS_PATH,
                    value="True",
                    error_msg_path=FAILED_MESSAGE_PATH,
                )
            ],
        )

    @classmethod
    def from_annotation(cls, conditions_string: str) -> "RolloutConditions":
        """
        Parse the rollout-conditions annotation value.

        Args:
            conditions_string: "true" for the defaults, otherwise a JSON object

        Returns:
            Parsed RolloutConditions

        Raises:
            RolloutConditionsError: If the JSON or any condition is invalid
        """
        if conditions_string.strip().lower() == "true":
            return cls.default()

        try:
            raw = json.loads(conditions_string)
        except json.JSONDecodeError as e:
            raise RolloutConditionsError(f"Rollout conditions are not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise RolloutConditionsError(
                f"Rollout conditions should be a JSON object but found {type(raw).__name__}"
            )

        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            problems = ", ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            )
            raise RolloutConditionsError(f"Error parsing rollout conditions: {problems}") from e

    def rollout_successful(self, instance_data: dict[str, Any]) -> bool:
        return all(condition.matches(instance_data) for condition in self.success_conditions)

    def rollout_failed(self, instance_data: dict[str, Any]) -> bool:
        return any(condition.matches(instance_data) for condition in self.failure_conditions)

    def failure_messages(self, instance_data: dict[str, Any]) -> list[str]:
        messages = []
        for condition in self.failure_conditions:
            if not condition.matches(instance_data):
                continue
            message = condition.message(instance_data)
            if message:
                messages.append(message)
        return messages
