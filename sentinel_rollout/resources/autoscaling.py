"""HorizontalPodAutoscaler rollout tracking."""

from typing import Any, Optional

from .base import KubernetesResource, dig

RECOVERABLE_CONDITION_PREFIX = "FailedGet"


class HorizontalPodAutoscaler(KubernetesResource):
    """
    An HPA is rolled out once it is actively scaling (or explicitly disabled).

    ``FailedGet*`` reasons usually mean metrics are not available yet, so they
    are left to time out rather than failing the deploy.
    """

    KIND = "HorizontalPodAutoscaler"
    TIMEOUT = 3 * 60

    @property
    def kubectl_resource_type(self) -> str:
        return "hpa.v2.autoscaling"

    def _condition(self, condition_type: str) -> dict[str, Any]:
        conditions = dig(self.instance_data, "status", "conditions", default=[])
        return next((c for c in conditions if c.get("type") == condition_type), {})

    @property
    def scaling_active_condition(self) -> dict[str, Any]:
        return self._condition("ScalingActive")

    @property
    def able_to_scale_condition(self) -> dict[str, Any]:
        return self._condition("AbleToScale")

    @property
    def scaling_disabled(self) -> bool:
        condition = self.scaling_active_condition
        return condition.get("status") == "False" and condition.get("reason") == "ScalingDisabled"

    def _deploy_succeeded(self) -> bool:
        return self.scaling_active_condition.get("status") == "True" or self.scaling_disabled

    def _deploy_failed(self) -> bool:
        if not self.exists or self.scaling_disabled:
            return False
        condition = self.scaling_active_condition
        return condition.get("status") == "False" and not (condition.get("reason") or "").startswith(
            RECOVERABLE_CONDITION_PREFIX
        )

    @property
    def status(self) -> str:
        if not self.exists:
            return super().status
        if self.scaling_disabled:
            return "ScalingDisabled"
        if self._deploy_succeeded():
            return "Configured"
        condition = self.scaling_active_condition or self.able_to_scale_condition
        if condition:
            return condition.get("reason") or "Unknown"
        return "Unknown"

    def failure_message(self) -> Optional[str]:
        condition = self.scaling_active_condition or self.able_to_scale_condition
        return condition.get("message")

    def timeout_message(self) -> Optional[str]:
        return self.failure_message() or super().timeout_message()
