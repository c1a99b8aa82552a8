"""Pod rollout tracking."""

import re
from typing import Any, Optional

import yaml

from ..errors import FatalDeploymentError, InvalidTemplateError
from ..remote_logs import RemoteLogs
from .base import STANDARD_TIMEOUT_MESSAGE, KubernetesResource, dig

FAILED_PHASE_NAME = "Failed"
TRANSIENT_FAILURE_REASONS = ("Evicted", "Preempting")

_IMAGE_PULL_PROBLEM = re.compile(r"(?:not found)|(?:back-off)", re.IGNORECASE)


class Container:
    """Status view of one (init) container in a pod."""

    def __init__(self, definition: dict[str, Any], init_container: bool = False):
        self.name = definition.get("name")
        self.image = definition.get("image")
        self.init_container = init_container
        self._http_probe_location = dig(definition, "readinessProbe", "httpGet", "path")
        self._exec_probe_command = dig(definition, "readinessProbe", "exec", "command")
        self._status: dict[str, Any] = {}

    def update_status(self, data: Optional[dict[str, Any]]) -> None:
        self._status = data or {}

    def reset_status(self) -> None:
        self._status = {}

    @property
    def ready(self) -> bool:
        return self._status.get("ready") is True

    @property
    def doomed(self) -> bool:
        return bool(self.doom_reason)

    @property
    def doom_reason(self) -> Optional[str]:
        limbo_reason = dig(self._status, "state", "waiting", "reason")
        limbo_message = dig(self._status, "state", "waiting", "message") or ""

        for state in ("lastState", "state"):
            if dig(self._status, state, "terminated", "reason") == "ContainerCannotRun":
                exit_code = dig(self._status, state, "terminated", "exitCode")
                message = dig(self._status, state, "terminated", "message")
                return f"Failed to start (exit {exit_code}): {message}"

        if limbo_reason == "CrashLoopBackOff":
            exit_code = dig(self._status, "lastState", "terminated", "exitCode")
            return f"Crashing repeatedly (exit {exit_code}). See logs for more information."
        if limbo_reason in ("ImagePullBackOff", "ErrImagePull") and _IMAGE_PULL_PROBLEM.search(limbo_message):
            return (
                f"Failed to pull image {self.image}. "
                "Did you wait for it to be built and pushed to the registry before deploying?"
            )
        if limbo_reason == "CreateContainerConfigError":
            return f"Failed to generate container configuration: {limbo_message}"
        return None

    @property
    def readiness_fail_reason(self) -> Optional[str]:
        if self.ready or self.init_container:
            return None
        if self._http_probe_location:
            return f"> {self.name} must respond with a good status code at '{self._http_probe_location}'"
        if self._exec_probe_command:
            return f"> {self.name} must exit 0 from the following command: '{' '.join(self._exec_probe_command)}'"
        return None


class Pod(KubernetesResource):
    """
    A pod, either deployed directly (unmanaged) or owned by a controller.

    Unmanaged pods are expected to run to completion; managed pods only need
    to be running and ready.
    """

    KIND = "Pod"
    TIMEOUT = 10 * 60

    def __init__(self, definition, namespace, context, logger, parent: Optional[str] = None, **kwargs):
        spec = definition.get("spec") or {}
        self.containers = [Container(c) for c in spec.get("containers") or []]
        if not self.containers:
            raise InvalidTemplateError(
                "Template is missing required field spec.containers",
                content=yaml.safe_dump(definition),
            )
        self.containers += [Container(c, init_container=True) for c in spec.get("initContainers") or []]
        self.parent = parent
        self.stream_logs = False
        super().__init__(definition, namespace, context, logger, **kwargs)
        self._logs: Optional[RemoteLogs] = None

    @property
    def unmanaged(self) -> bool:
        return not self.parent

    @property
    def node_name(self) -> Optional[str]:
        return dig(self.instance_data, "spec", "nodeName")

    @property
    def logs(self) -> RemoteLogs:
        if self._logs is None:
            self._logs = RemoteLogs(
                logger=self.logger,
                parent_id=self.name,
                parent_pretty_id=self.id,
                container_names=[c.name for c in self.containers],
            )
        return self._logs

    def sync(self, cache) -> None:
        super().sync(cache)
        if self.exists and self.unmanaged and not self.deploy_started:
            self._raise_predates_deploy_error()

        if self.exists:
            if self.unmanaged:
                self.logs.sync(cache.kubectl)
            self._update_container_statuses(self.instance_data.get("status") or {})
        else:
            for container in self.containers:
                container.reset_status()

    def after_sync(self) -> None:
        if self.stream_logs:
            self.logs.print_latest()
        elif self.unmanaged and self.deploy_succeeded():
            self.logs.print_all()

    @property
    def phase(self) -> str:
        return dig(self.instance_data, "status", "phase", default="Unknown")

    @property
    def status(self) -> str:
        reason = dig(self.instance_data, "status", "reason")
        return f"{self.phase} (Reason: {reason})" if reason else self.phase

    @property
    def ready(self) -> bool:
        conditions = dig(self.instance_data, "status", "conditions", default=[])
        return any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions)

    def _deploy_succeeded(self) -> bool:
        if self.unmanaged:
            return self.phase == "Succeeded"
        return self.phase == "Running" and self.ready

    def _deploy_failed(self) -> bool:
        if self._deploy_succeeded():
            return False
        return bool(self.failure_message())

    def failure_message(self) -> Optional[str]:
        doomed = [c for c in self.containers if c.doomed]
        container_problems = ""
        if doomed:
            if self.unmanaged:
                container_problems = "The following containers encountered errors:\n"
            else:
                container_problems = "The following containers are in a state that is unlikely to be recoverable:\n"
            for container in doomed:
                container_problems += f"> {container.name}: {container.doom_reason}\n"
        message = f"{self._phase_failure_message() or ''} {container_problems}".strip()
        return message or None

    def timeout_message(self) -> Optional[str]:
        if not self._readiness_probe_failure():
            return STANDARD_TIMEOUT_MESSAGE
        probe_failures = [c.readiness_fail_reason for c in self.containers if c.readiness_fail_reason]
        header = "The following containers have not passed their readiness probes on at least one pod:\n"
        return header + "\n".join(probe_failures) + "\n"

    @property
    def print_debug_logs(self) -> bool:
        return self.exists and not self.stream_logs

    def fetch_debug_logs(self, kubectl) -> RemoteLogs:
        self.logs.sync(kubectl)
        return self.logs

    def _phase_failure_message(self) -> Optional[str]:
        if self.phase == FAILED_PHASE_NAME and not self._transient_failure_reason():
            return f"Pod status: {self.status}."
        if not self.unmanaged:
            return None
        if self.terminating:
            return "Pod status: Terminating."
        if self.disappeared:
            return "Pod status: Disappeared."
        return None

    def _transient_failure_reason(self) -> bool:
        if self.unmanaged:
            return False
        return dig(self.instance_data, "status", "reason") in TRANSIENT_FAILURE_REASONS

    def _readiness_probe_failure(self) -> bool:
        if self.ready or self.unmanaged or self.phase != "Running":
            return False
        return any(c.readiness_fail_reason for c in self.containers)

    def _update_container_statuses(self, status_data: dict[str, Any]) -> None:
        for container in self.containers:
            key = "initContainerStatuses" if container.init_container else "containerStatuses"
            if key in status_data:
                data = next((s for s in status_data[key] or [] if s.get("name") == container.name), None)
                container.update_status(data)
            else:
                container.reset_status()

    def _raise_predates_deploy_error(self) -> None:
        self.logger.summary.add_paragraph(
            f"Unmanaged pods like {self.id} must have unique names on every deploy in order to work as intended.\n"
            "The recommended way to achieve this is to use metadata.generateName instead of metadata.name."
        )
        raise FatalDeploymentError(f"{self.id} existed before the deploy started")
