"""Rollout tracking for pod-owning workloads."""

import math
import re
from typing import Any, Optional

from ..models import RequiredRollout
from ..remote_logs import RemoteLogs
from .base import KubernetesResource, annotation_key, dig, generation_is_current, rollout_counts_status
from .pod import Pod

REQUIRED_ROLLOUT_ANNOTATION = "required-rollout"
REQUIRED_ROLLOUT_TYPES = [r.value for r in RequiredRollout]
DEFAULT_REQUIRED_ROLLOUT = RequiredRollout.FULL.value
REVISION_ANNOTATION = "deployment.kubernetes.io/revision"

_PERCENT = re.compile(r"\d+%")


def is_percent(value) -> bool:
    return isinstance(value, str) and bool(_PERCENT.search(value))


def _leading_int(value) -> int:
    match = re.match(r"\s*(\d+)", str(value or ""))
    return int(match.group(1)) if match else 0


def min_available_replicas(desired: int, required_rollout: str, max_unavailable) -> int:
    """Replicas that must be available for a maxUnavailable or percentage rollout."""
    if is_percent(required_rollout):
        return math.ceil(desired * _leading_int(required_rollout) / 100.0)
    if is_percent(max_unavailable):
        return math.ceil(desired * (100 - _leading_int(max_unavailable)) / 100.0)
    return desired - _leading_int(max_unavailable)


def owned_by(data: dict[str, Any], owner: KubernetesResource) -> bool:
    owner_uid = dig(owner.instance_data, "metadata", "uid")
    references = dig(data, "metadata", "ownerReferences", default=[])
    return any(ref.get("uid") == owner_uid for ref in references)


def validate_required_rollout(resource: KubernetesResource, required_rollout: str, strategy_path) -> None:
    key = annotation_key(REQUIRED_ROLLOUT_ANNOTATION)
    if required_rollout not in REQUIRED_ROLLOUT_TYPES and not is_percent(required_rollout):
        resource.validation_errors.append(
            f"'{key}: {required_rollout}' is invalid. Acceptable values: {', '.join(REQUIRED_ROLLOUT_TYPES)}"
        )
    strategy = str(dig(resource.definition, *strategy_path, default=""))
    if required_rollout.lower() == "maxunavailable" and strategy and strategy.lower() != "rollingupdate":
        resource.validation_errors.append(
            f"'{key}: {required_rollout}' is incompatible with strategy '{strategy}'"
        )


class PodSetBase(KubernetesResource):
    """Shared behaviour for workloads whose health is the health of their pods."""

    SYNC_DEPENDENCIES = ("Pod",)

    def __init__(self, *args, parent: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.parent = parent
        self.pods: list[Pod] = []

    def sync(self, cache) -> None:
        super().sync(cache)
        self.pods = self.find_pods(cache) if self.exists else []

    def parent_of_pod(self, pod_data: dict[str, Any]) -> bool:
        return owned_by(pod_data, self)

    def find_pods(self, cache) -> list[Pod]:
        match_labels = dig(self.instance_data, "spec", "selector", "matchLabels")
        pods = []
        for pod_data in cache.get_all(Pod.KIND, match_labels):
            if not self.parent_of_pod(pod_data):
                continue
            pod = Pod(
                pod_data,
                self.namespace,
                self.context,
                self.logger,
                parent=f"{self.name.capitalize()} {self.type}",
                deploy_started_at=self.deploy_started_at,
            )
            pod.sync(cache)
            pods.append(pod)
        return pods

    def most_useful_pod(self) -> Optional[Pod]:
        for predicate in (Pod.deploy_failed, Pod.deploy_timed_out):
            for pod in self.pods:
                if predicate(pod):
                    return pod
        return self.pods[0] if self.pods else None

    def failure_message(self) -> Optional[str]:
        return self._unique_pod_messages(Pod.failure_message)

    def timeout_message(self) -> Optional[str]:
        return self._unique_pod_messages(Pod.timeout_message)

    def _unique_pod_messages(self, accessor) -> str:
        messages = []
        for pod in self.pods:
            message = accessor(pod)
            if message and message not in messages:
                messages.append(message)
        return "\n".join(messages)

    def fetch_events(self, kubectl) -> dict[str, list[str]]:
        events = super().fetch_events(kubectl)
        pod = self.most_useful_pod()
        if pod is not None:
            events.update(pod.fetch_events(kubectl))
        return events

    @property
    def container_names(self) -> list[str]:
        pod_spec = dig(self.definition, "spec", "template", "spec", default={})
        containers = pod_spec.get("containers") or []
        init_containers = pod_spec.get("initContainers") or []
        return [c["name"] for c in containers + init_containers]

    @property
    def print_debug_logs(self) -> bool:
        # kubectl logs times out when there are no pods
        return bool(self.pods)

    def fetch_debug_logs(self, kubectl) -> RemoteLogs:
        logs = RemoteLogs(
            logger=self.logger,
            parent_id=self.id,
            parent_pretty_id=self.id,
            container_names=self.container_names,
        )
        logs.sync(kubectl)
        return logs


class ReplicaSet(PodSetBase):
    """A ReplicaSet, usually tracked as the latest revision of a Deployment."""

    KIND = "ReplicaSet"
    TIMEOUT = 5 * 60

    @property
    def stale_status(self) -> bool:
        return not generation_is_current(self)

    @property
    def rollout_data(self) -> dict[str, Any]:
        data = {"replicas": 0}
        if self.exists:
            status = self.instance_data.get("status") or {}
            data.update({k: status[k] for k in ("replicas", "availableReplicas", "readyReplicas") if k in status})
        return data

    @property
    def desired_replicas(self) -> int:
        return int(dig(self.instance_data, "spec", "replicas", default=0)) if self.exists else -1

    @property
    def ready_replicas(self) -> int:
        return int(self.rollout_data.get("readyReplicas", 0)) if self.exists else -1

    @property
    def available_replicas(self) -> int:
        return int(self.rollout_data.get("availableReplicas", 0)) if self.exists else -1

    @property
    def status(self) -> str:
        if not self.exists:
            return super().status
        return rollout_counts_status(self.rollout_data)

    def _deploy_succeeded(self) -> bool:
        if self.stale_status:
            return False
        return self.desired_replicas == self.available_replicas == self.ready_replicas

    def _deploy_failed(self) -> bool:
        return bool(self.pods) and all(pod.deploy_failed() for pod in self.pods) and not self.stale_status


class Deployment(KubernetesResource):
    """
    A Deployment, judged through its latest ReplicaSet.

    The required-rollout annotation selects how much of the new ReplicaSet
    must be available: all of it (full), nothing beyond an observed
    generation (none), or the strategy's maxUnavailable / an explicit
    percentage.
    """

    KIND = "Deployment"
    TIMEOUT = 7 * 60
    SYNC_DEPENDENCIES = ("Pod", "ReplicaSet")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.latest_rs: Optional[ReplicaSet] = None

    def sync(self, cache) -> None:
        super().sync(cache)
        self.latest_rs = self._find_latest_rs(cache) if self.exists else None

    @property
    def current_generation(self):
        if not self.exists:
            return -2
        return dig(self.instance_data, "metadata", "generation")

    @property
    def observed_generation(self):
        if not self.exists:
            return -1
        return dig(self.instance_data, "status", "observedGeneration")

    @property
    def required_rollout(self) -> str:
        return self.annotation_value(REQUIRED_ROLLOUT_ANNOTATION) or DEFAULT_REQUIRED_ROLLOUT

    @property
    def desired_replicas(self) -> int:
        return int(dig(self.instance_data, "spec", "replicas", default=0)) if self.exists else -1

    @property
    def rollout_data(self) -> dict[str, Any]:
        data = {"replicas": 0}
        if self.exists:
            status = self.instance_data.get("status") or {}
            keys = ("replicas", "updatedReplicas", "availableReplicas", "unavailableReplicas")
            data.update({k: status[k] for k in keys if k in status})
        return data

    @property
    def status(self) -> str:
        if not self.exists:
            return super().status
        return rollout_counts_status(self.rollout_data)

    @property
    def max_unavailable(self):
        source = self.instance_data if self.exists else self.definition
        return dig(source, "spec", "strategy", "rollingUpdate", "maxUnavailable")

    @property
    def progress_condition(self) -> Optional[dict[str, Any]]:
        if not self.exists:
            return None
        conditions = dig(self.instance_data, "status", "conditions", default=[])
        return next((c for c in conditions if c.get("type") == "Progressing"), None)

    @property
    def progress_deadline(self):
        source = self.instance_data if self.exists else self.definition
        return dig(source, "spec", "progressDeadlineSeconds")

    def _deploy_succeeded(self) -> bool:
        if not self.exists or self.latest_rs is None:
            return False
        if not generation_is_current(self):
            return False

        rs = self.latest_rs
        required_rollout = self.required_rollout
        if required_rollout == RequiredRollout.FULL:
            updated = int(self.rollout_data.get("updatedReplicas", 0))
            available = int(self.rollout_data.get("availableReplicas", 0))
            return (
                rs.deploy_succeeded()
                and rs.desired_replicas == self.desired_replicas
                and updated == self.desired_replicas
                and updated == available
            )
        if required_rollout == RequiredRollout.NONE:
            return True
        if required_rollout == RequiredRollout.MAX_UNAVAILABLE or is_percent(required_rollout):
            minimum_needed = min_available_replicas(self.desired_replicas, required_rollout, self.max_unavailable)
            return (
                rs.desired_replicas >= minimum_needed
                and rs.ready_replicas >= minimum_needed
                and rs.available_replicas >= minimum_needed
            )
        return False

    def _deploy_failed(self) -> bool:
        return (
            self.latest_rs is not None
            and self.latest_rs.deploy_failed()
            and generation_is_current(self)
        )

    def deploy_timed_out(self) -> bool:
        if self.deploy_failed():
            return False
        if self.timeout_override or self.progress_condition is None:
            return super().deploy_timed_out()
        # Progress deadline replaces the hard timeout when the controller reports it
        return (
            self.deploy_started
            and generation_is_current(self)
            and self.progress_condition.get("status") == "False"
        )

    @property
    def pretty_timeout_type(self) -> str:
        if self.timeout_override:
            return f"timeout override: {self.timeout_override}s"
        if self.progress_deadline:
            return f"progress deadline: {self.progress_deadline}s"
        return super().pretty_timeout_type

    def failure_message(self) -> Optional[str]:
        if self.latest_rs is None:
            return None
        return f"Latest ReplicaSet: {self.latest_rs.name}\n\n{self.latest_rs.failure_message()}"

    def timeout_message(self) -> Optional[str]:
        if self.timeout_override:
            reason_msg = super().timeout_message()
        elif self.progress_condition:
            reason_msg = f"Timeout reason: {self.progress_condition.get('reason')}"
        else:
            reason_msg = f"Timeout reason: hard deadline for {self.type}"
        if self.latest_rs is None:
            return reason_msg
        return f"{reason_msg}\nLatest ReplicaSet: {self.latest_rs.name}\n\n{self.latest_rs.timeout_message()}"

    def validate_definition(self, kubectl=None, selector=None) -> None:
        super().validate_definition(kubectl=kubectl, selector=selector)
        validate_required_rollout(self, self.required_rollout, ("spec", "strategy", "type"))

    def fetch_events(self, kubectl) -> dict[str, list[str]]:
        events = super().fetch_events(kubectl)
        if self.latest_rs is not None:
            events.update(self.latest_rs.fetch_events(kubectl))
        return events

    @property
    def print_debug_logs(self) -> bool:
        return self.latest_rs is not None

    def fetch_debug_logs(self, kubectl) -> RemoteLogs:
        return self.latest_rs.fetch_debug_logs(kubectl)

    def _find_latest_rs(self, cache) -> Optional[ReplicaSet]:
        match_labels = dig(self.instance_data, "spec", "selector", "matchLabels")
        current_revision = dig(self.instance_data, "metadata", "annotations", REVISION_ANNOTATION)
        for rs_data in cache.get_all(ReplicaSet.KIND, match_labels):
            if not owned_by(rs_data, self):
                continue
            if dig(rs_data, "metadata", "annotations", REVISION_ANNOTATION) != current_revision:
                continue
            rs = ReplicaSet(
                rs_data,
                self.namespace,
                self.context,
                self.logger,
                parent=f"{self.name.capitalize()} deployment",
                deploy_started_at=self.deploy_started_at,
            )
            rs.sync(cache)
            return rs
        return None


class StatefulSet(PodSetBase):
    """A StatefulSet; only pods of the current update revision are considered."""

    KIND = "StatefulSet"
    TIMEOUT = 10 * 60
    ON_DELETE = "OnDelete"

    @property
    def update_strategy(self) -> str:
        if not self.exists:
            return "Unknown"
        return dig(self.instance_data, "spec", "updateStrategy", "type", default="RollingUpdate")

    @property
    def required_rollout(self) -> Optional[str]:
        return self.annotation_value(REQUIRED_ROLLOUT_ANNOTATION)

    @property
    def desired_replicas(self) -> int:
        return int(dig(self.instance_data, "spec", "replicas", default=0)) if self.exists else -1

    @property
    def status(self) -> str:
        status = self.instance_data.get("status")
        if not status:
            return super().status
        keys = ("replicas", "readyReplicas", "currentReplicas")
        return rollout_counts_status({k: status[k] for k in keys if k in status})

    def _skips_rollout_check(self) -> bool:
        return self.update_strategy == self.ON_DELETE and self.required_rollout != RequiredRollout.FULL

    def _deploy_succeeded(self) -> bool:
        if not generation_is_current(self):
            return False
        if self._skips_rollout_check():
            if not self._success_assumption_warning_shown:
                self.logger.warning(
                    f"WARNING: Your StatefulSet's updateStrategy is set to {self.update_strategy}, "
                    "which means updates will not be applied until its pods are deleted."
                )
                self._success_assumption_warning_shown = True
            return True
        status = self.instance_data.get("status") or {}
        return (
            self.desired_replicas == int(status.get("readyReplicas", 0))
            and self.desired_replicas == int(status.get("updatedReplicas", 0))
        )

    def _deploy_failed(self) -> bool:
        if self._skips_rollout_check():
            return False
        return bool(self.pods) and any(pod.deploy_failed() for pod in self.pods) and generation_is_current(self)

    def parent_of_pod(self, pod_data: dict[str, Any]) -> bool:
        update_revision = dig(self.instance_data, "status", "updateRevision")
        pod_revision = dig(pod_data, "metadata", "labels", "controller-revision-hash")
        return owned_by(pod_data, self) and update_revision == pod_revision


class DaemonSet(PodSetBase):
    """A DaemonSet; readiness is checked against the nodes pods actually run on."""

    KIND = "DaemonSet"
    TIMEOUT = 5 * 60
    SYNC_DEPENDENCIES = ("Pod", "Node")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.node_names: list[str] = []

    def sync(self, cache) -> None:
        super().sync(cache)
        if not self.node_names:
            self.node_names = [dig(node, "metadata", "name") for node in cache.get_all("Node")]

    @property
    def required_rollout(self) -> str:
        return self.annotation_value(REQUIRED_ROLLOUT_ANNOTATION) or DEFAULT_REQUIRED_ROLLOUT

    @property
    def rollout_data(self) -> dict[str, Any]:
        if not self.exists:
            return {"currentNumberScheduled": 0}
        status = self.instance_data.get("status") or {}
        keys = ("updatedNumberScheduled", "desiredNumberScheduled", "numberReady", "numberAvailable")
        return {k: status[k] for k in keys if k in status}

    @property
    def desired_replicas(self) -> int:
        return int(self.rollout_data.get("desiredNumberScheduled", 0)) if self.exists else -1

    @property
    def max_unavailable(self):
        source = self.instance_data if self.exists else self.definition
        return dig(source, "spec", "updateStrategy", "rollingUpdate", "maxUnavailable")

    @property
    def status(self) -> str:
        if not self.exists:
            return super().status
        return rollout_counts_status(self.rollout_data, singularize=False)

    def _deploy_succeeded(self) -> bool:
        if not self.exists or not generation_is_current(self):
            return False
        data = self.rollout_data
        required_rollout = self.required_rollout
        if required_rollout == RequiredRollout.FULL:
            desired = int(data.get("desiredNumberScheduled", 0))
            return desired == int(data.get("updatedNumberScheduled", 0)) and self._relevant_pods_ready()
        if required_rollout == RequiredRollout.NONE:
            return True
        if required_rollout == RequiredRollout.MAX_UNAVAILABLE or is_percent(required_rollout):
            minimum_needed = min_available_replicas(self.desired_replicas, required_rollout, self.max_unavailable)
            return (
                int(data.get("updatedNumberScheduled", 0)) >= minimum_needed
                and int(data.get("numberReady", 0)) >= minimum_needed
                and int(data.get("numberAvailable", 0)) >= minimum_needed
            )
        return False

    def _deploy_failed(self) -> bool:
        return bool(self.pods) and any(pod.deploy_failed() for pod in self.pods) and generation_is_current(self)

    def _relevant_pods_ready(self) -> bool:
        data = self.rollout_data
        number_ready = int(data.get("numberReady", 0))
        if int(data.get("desiredNumberScheduled", 0)) == number_ready:
            return True
        considered = [pod for pod in self.pods if pod.node_name in self.node_names]
        self.logger.debug(
            f"DaemonSet is reporting {number_ready} pods ready. Considered {len(considered)} pods "
            f"out of {len(self.pods)} for {len(self.node_names)} nodes."
        )
        return bool(considered) and all(pod.deploy_succeeded() for pod in considered) and number_ready >= len(considered)

    def validate_definition(self, kubectl=None, selector=None) -> None:
        super().validate_definition(kubectl=kubectl, selector=selector)
        validate_required_rollout(self, self.required_rollout, ("spec", "updateStrategy", "type"))

    def parent_of_pod(self, pod_data: dict[str, Any]) -> bool:
        template_generation = dig(self.instance_data, "spec", "templateGeneration") or dig(
            self.instance_data, "metadata", "annotations", "deprecated.daemonset.template.generation"
        )
        if not template_generation:
            return False
        pod_generation = dig(pod_data, "metadata", "labels", "pod-template-generation")
        return owned_by(pod_data, self) and _leading_int(pod_generation) == _leading_int(template_generation)

    def fetch_debug_logs(self, kubectl) -> RemoteLogs:
        return self.most_useful_pod().fetch_debug_logs(kubectl)
