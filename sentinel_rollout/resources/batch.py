"""Job and CronJob rollout tracking."""

from datetime import timedelta
from typing import Any, Optional

from ..events import parse_timestamp
from .base import UNUSUAL_FAILURE_MESSAGE, KubernetesResource, dig, utcnow

# A job must stay active this long before it counts as started
JOB_START_GRACE_PERIOD = timedelta(seconds=5)


class Job(KubernetesResource):
    """
    A Job. Deploys do not wait for long-running jobs to finish: one active
    pod past the grace period is enough.
    """

    KIND = "Job"
    TIMEOUT = 10 * 60

    def _failed_status_condition(self) -> Optional[dict[str, Any]]:
        conditions = dig(self.instance_data, "status", "conditions", default=[])
        return next(
            (c for c in conditions if c.get("type") == "Failed" and c.get("status") == "True"),
            None,
        )

    def _done(self) -> bool:
        succeeded = dig(self.instance_data, "status", "succeeded", default=0)
        return succeeded == dig(self.instance_data, "spec", "completions")

    def _running(self) -> bool:
        start_time = parse_timestamp(dig(self.instance_data, "status", "startTime"))
        if start_time is None or utcnow() - start_time < JOB_START_GRACE_PERIOD:
            return False
        return dig(self.instance_data, "status", "active", default=0) >= 1

    def _deploy_succeeded(self) -> bool:
        return self._done() or self._running()

    def _deploy_failed(self) -> bool:
        if self._failed_status_condition():
            return True
        backoff_limit = dig(self.instance_data, "spec", "backoffLimit")
        if backoff_limit is None:
            return False
        return dig(self.instance_data, "status", "failed", default=0) >= backoff_limit

    @property
    def status(self) -> str:
        if not self.exists:
            return super().status
        if self._done():
            return "Succeeded"
        if self._running():
            return "Started"
        if self._deploy_failed():
            return "Failed"
        return "Unknown"

    def failure_message(self) -> Optional[str]:
        condition = self._failed_status_condition()
        if condition:
            return f"{condition.get('reason')} ({condition.get('message')})"
        return None


class CronJob(KubernetesResource):
    """A CronJob has no rollout beyond being created."""

    KIND = "CronJob"
    TIMEOUT = 30

    def _deploy_succeeded(self) -> bool:
        return self.exists

    def _deploy_failed(self) -> bool:
        return not self.exists

    def timeout_message(self) -> Optional[str]:
        return UNUSUAL_FAILURE_MESSAGE
