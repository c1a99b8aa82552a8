"""Service rollout tracking."""

from typing import Any, Optional

from .base import KubernetesResource, dig


def pod_is_ready(pod_data: dict[str, Any]) -> bool:
    conditions = dig(pod_data, "status", "conditions", default=[])
    return any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions)


class Service(KubernetesResource):
    """
    A Service succeeds once it has somewhere to send traffic.

    Selector-based services need at least one ready pod behind them, unless
    every workload they front is scaled to zero. LoadBalancer services also
    need an ingress point provisioned.
    """

    KIND = "Service"
    TIMEOUT = 7 * 60
    SYNC_DEPENDENCIES = ("Pod", "Deployment", "StatefulSet")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.related_pods: list[dict[str, Any]] = []
        self.related_workloads: list[dict[str, Any]] = []

    def sync(self, cache) -> None:
        super().sync(cache)
        self.related_pods = cache.get_all("Pod", self.selector) if self.selector else []
        self.related_workloads = self._fetch_related_workloads(cache)

    @property
    def selector(self) -> dict[str, str]:
        return dig(self.definition, "spec", "selector", default={})

    @property
    def status(self) -> str:
        if not self.exists:
            return "Not found"
        if self._requires_publishing() and not self._published():
            return "LoadBalancer IP address is not provisioned yet"
        if not self._requires_endpoints():
            return "Doesn't require any endpoints"
        if self._selects_some_pods():
            return "Selects at least 1 pod"
        return "Selects 0 pods"

    def _deploy_succeeded(self) -> bool:
        if not self.exists:
            return False
        if self._requires_publishing():
            return self._published()
        if not self._requires_endpoints():
            return True
        # Endpoints can't be used here: they hide pods that are down
        return self._exposes_zero_replica_workload() or self._selects_some_pods()

    def _deploy_failed(self) -> bool:
        return False

    def timeout_message(self) -> Optional[str]:
        return (
            "This service does not seem to select any pods and this is likely invalid. "
            "Please confirm the spec.selector is correct and the targeted workload is healthy."
        )

    def _fetch_related_workloads(self, cache) -> list[dict[str, Any]]:
        if not self.selector:
            return []
        workloads = cache.get_all("Deployment") + cache.get_all("StatefulSet")
        return [
            workload
            for workload in workloads
            if all(
                dig(workload, "spec", "template", "metadata", "labels", key) == value
                for key, value in self.selector.items()
            )
        ]

    def _related_replica_count(self) -> Optional[int]:
        if not self.selector:
            return 0
        if not self.related_workloads:
            return None
        return sum(int(dig(w, "spec", "replicas", default=0)) for w in self.related_workloads)

    def _exposes_zero_replica_workload(self) -> bool:
        return self._related_replica_count() == 0

    def _requires_endpoints(self) -> bool:
        # ExternalName services never have endpoints
        if dig(self.definition, "spec", "type") == "ExternalName":
            return False
        replica_count = self._related_replica_count()
        if replica_count is None:
            return True
        return replica_count > 0

    def _selects_some_pods(self) -> bool:
        if not self.selector:
            return False
        return any(pod_is_ready(pod) for pod in self.related_pods)

    def _requires_publishing(self) -> bool:
        return dig(self.definition, "spec", "type") == "LoadBalancer"

    def _published(self) -> bool:
        return bool(dig(self.instance_data, "status", "loadBalancer", "ingress"))
