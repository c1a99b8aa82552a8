"""CustomResourceDefinitions and instances of the kinds they define."""

from typing import Any, Optional

from ..conditions import RolloutConditions
from ..duration import DurationParsingError, parse_duration
from ..errors import RolloutConditionsError
from .base import KubernetesResource, annotation_key, dig, generation_is_current

ROLLOUT_CONDITIONS_ANNOTATION = "instance-rollout-conditions"
TIMEOUT_FOR_INSTANCE_ANNOTATION = "instance-timeout"
PRUNABLE_ANNOTATION = "prunable"
PREDEPLOYED_ANNOTATION = "predeployed"

TIMEOUT_MESSAGE_DIFFERENT_GENERATIONS = (
    "This resource's status could not be used to determine rollout success because it is not up-to-date\n"
    "(.metadata.generation != .status.observedGeneration).\n"
)


class CustomResourceDefinition(KubernetesResource):
    """A CRD, both as something to deploy and as the source of its instances' rollout rules."""

    KIND = "CustomResourceDefinition"
    TIMEOUT = 2 * 60
    GLOBAL = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._rollout_conditions: Optional[RolloutConditions] = None
        self._rollout_conditions_parsed = False

    @property
    def crd_kind(self) -> Optional[str]:
        return dig(self.definition, "spec", "names", "kind")

    @property
    def crd_group(self) -> Optional[str]:
        return dig(self.definition, "spec", "group")

    @property
    def group_kind(self) -> str:
        return f"{self.crd_group}/{self.crd_kind}"

    @property
    def group_version_kind(self) -> str:
        version = dig(self.definition, "spec", "versions", 0, "name")
        return f"{self.crd_group}/{version}/{self.crd_kind}"

    @property
    def prunable(self) -> bool:
        return self.annotation_value(PRUNABLE_ANNOTATION) == "true"

    @property
    def predeployed(self) -> bool:
        value = self.annotation_value(PREDEPLOYED_ANNOTATION)
        return value is None or value == "true"

    @property
    def timeout_for_instance(self) -> Optional[int]:
        try:
            return int(parse_duration(self.annotation_value(TIMEOUT_FOR_INSTANCE_ANNOTATION)))
        except DurationParsingError:
            return None

    @property
    def rollout_conditions(self) -> Optional[RolloutConditions]:
        """Parsed instance conditions, or None when absent or invalid."""
        if not self._rollout_conditions_parsed:
            self._rollout_conditions_parsed = True
            try:
                self._rollout_conditions = self._parse_rollout_conditions()
            except RolloutConditionsError:
                self._rollout_conditions = None
        return self._rollout_conditions

    def validate_rollout_conditions(self) -> None:
        """
        Raises:
            RolloutConditionsError: If the annotation is present but malformed
        """
        self._parse_rollout_conditions()

    def _parse_rollout_conditions(self) -> Optional[RolloutConditions]:
        raw = self.annotation_value(ROLLOUT_CONDITIONS_ANNOTATION)
        if raw is None:
            return None
        return RolloutConditions.from_annotation(raw)

    def _names_accepted_condition(self) -> dict[str, Any]:
        conditions = dig(self.instance_data, "status", "conditions", default=[])
        return next((c for c in conditions if c.get("type") == "NamesAccepted"), {})

    def _deploy_succeeded(self) -> bool:
        return self._names_accepted_condition().get("status") == "True"

    def _deploy_failed(self) -> bool:
        return self._names_accepted_condition().get("status") == "False"

    @property
    def status(self) -> str:
        if not self.exists:
            return super().status
        if self._deploy_succeeded():
            return "Names accepted"
        condition = self._names_accepted_condition()
        return f"{condition.get('reason')} ({condition.get('message')})"

    def timeout_message(self) -> Optional[str]:
        return "The names this CRD is attempting to register were neither accepted nor rejected in time"

    def validate_definition(self, kubectl=None, selector=None) -> None:
        super().validate_definition(kubectl=kubectl, selector=selector)
        try:
            self.validate_rollout_conditions()
        except RolloutConditionsError as e:
            self.validation_errors.append(
                f"Annotation {annotation_key(ROLLOUT_CONDITIONS_ANNOTATION)} on {self.name} is invalid: {e}"
            )


class CustomResource(KubernetesResource):
    """An instance of a CRD-defined kind, judged by the CRD's rollout conditions."""

    def __init__(self, *args, crd: CustomResourceDefinition, **kwargs):
        super().__init__(*args, **kwargs)
        self.crd = crd

    @property
    def type(self) -> str:
        return self.definition.get("kind")

    @property
    def rollout_conditions(self) -> Optional[RolloutConditions]:
        return self.crd.rollout_conditions

    @property
    def timeout(self) -> float:
        return self.timeout_override or self.crd.timeout_for_instance or self.TIMEOUT

    def _deploy_succeeded(self) -> bool:
        conditions = self.rollout_conditions
        if conditions is None:
            return self.exists and super()._deploy_succeeded()
        if not generation_is_current(self):
            return False
        return conditions.rollout_successful(self.instance_data)

    def _deploy_failed(self) -> bool:
        conditions = self.rollout_conditions
        if conditions is None:
            return False
        if not generation_is_current(self):
            return False
        return conditions.rollout_failed(self.instance_data)

    def failure_message(self) -> Optional[str]:
        if self.rollout_conditions is None:
            return None
        messages = self.rollout_conditions.failure_messages(self.instance_data)
        return "\n".join(str(m) for m in messages) if messages else None

    def timeout_message(self) -> Optional[str]:
        if self.rollout_conditions is not None and not generation_is_current(self):
            return TIMEOUT_MESSAGE_DIFFERENT_GENERATIONS
        return super().timeout_message()

    @property
    def status(self) -> str:
        if not self.exists or self.rollout_conditions is None:
            return super().status
        if self.deploy_succeeded():
            return "Healthy"
        if self.deploy_failed():
            return "Unhealthy"
        return "Unknown"

    def validate_definition(self, kubectl=None, selector=None) -> None:
        super().validate_definition(kubectl=kubectl, selector=selector)
        try:
            self.crd.validate_rollout_conditions()
        except RolloutConditionsError as e:
            self.validation_errors.append(
                "The CRD that specifies this resource is using invalid rollout conditions. "
                "Deploys will not be able to continue until those rollout conditions are fixed.\n"
                f"Rollout conditions can be found on the CRD that defines this resource ({self.crd.name}), "
                f"under the annotation {annotation_key(ROLLOUT_CONDITIONS_ANNOTATION)}.\n"
                f"Validation failed with: {e}"
            )
