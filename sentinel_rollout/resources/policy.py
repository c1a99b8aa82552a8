"""PodDisruptionBudget rollout tracking."""

from typing import Optional

from ..models import DeployMethod
from .base import UNUSUAL_FAILURE_MESSAGE, KubernetesResource, generation_is_current


class PodDisruptionBudget(KubernetesResource):
    """PDBs are immutable in older clusters, so they are always force-replaced."""

    KIND = "PodDisruptionBudget"
    TIMEOUT = 10

    @property
    def status(self) -> str:
        return "Available" if self.exists else "Not Found"

    def _deploy_succeeded(self) -> bool:
        return self.exists and generation_is_current(self)

    def _deploy_failed(self) -> bool:
        return False

    @property
    def deploy_method(self) -> DeployMethod:
        return DeployMethod.CREATE if self.uses_generate_name else DeployMethod.REPLACE_FORCE

    def timeout_message(self) -> Optional[str]:
        return UNUSUAL_FAILURE_MESSAGE
