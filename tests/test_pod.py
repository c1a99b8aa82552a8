"""Tests for Pod rollout tracking."""

import pytest

from helpers import build_definition, cache_with, pod_spec
from sentinel_rollout.errors import FatalDeploymentError
from sentinel_rollout.resources import Pod


def live_pod(name="web", phase="Running", ready=True, container_statuses=None, reason=None, **metadata):
    data = build_definition("Pod", name, spec=pod_spec())
    data["metadata"].update(metadata)
    status = {
        "phase": phase,
        "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
        "containerStatuses": container_statuses or [{"name": "app", "ready": ready}],
    }
    if reason:
        status["reason"] = reason
    data["status"] = status
    return data


def build_pod(deploy_logger, started_at=None, parent=None, **spec_extra):
    pod = Pod(
        build_definition("Pod", "web", spec=pod_spec(**spec_extra)),
        "test-ns",
        "minikube",
        deploy_logger,
        parent=parent,
    )
    pod.deploy_started_at = started_at
    return pod


class TestUnmanagedPod:
    """Test cases for pods deployed directly."""

    def test_succeeds_when_completed(self, deploy_logger, started_at, mock_kubectl):
        """Test that an unmanaged pod must run to completion."""
        pod = build_pod(deploy_logger, started_at)
        pod.sync(cache_with(live_pod(phase="Succeeded", ready=False), kubectl=mock_kubectl))

        assert pod.deploy_succeeded() is True

    def test_running_is_not_enough(self, deploy_logger, started_at, mock_kubectl):
        """Test that a running unmanaged pod is still in progress."""
        pod = build_pod(deploy_logger, started_at)
        pod.sync(cache_with(live_pod(), kubectl=mock_kubectl))

        assert pod.deploy_succeeded() is False
        assert pod.deploy_failed() is False

    def test_failed_phase(self, deploy_logger, started_at, mock_kubectl):
        """Test that the Failed phase fails the pod."""
        pod = build_pod(deploy_logger, started_at)
        pod.sync(cache_with(live_pod(phase="Failed", ready=False), kubectl=mock_kubectl))

        assert pod.deploy_failed() is True
        assert pod.failure_message() == "Pod status: Failed."

    def test_disappeared_pod_fails(self, deploy_logger, started_at, mock_kubectl):
        """Test that an unmanaged pod vanishing after deploy start is a failure."""
        pod = build_pod(deploy_logger, started_at)
        pod.sync(cache_with(kubectl=mock_kubectl))

        assert pod.deploy_failed() is True
        assert "Disappeared" in pod.failure_message()

    def test_terminating_pod_fails(self, deploy_logger, started_at, mock_kubectl):
        """Test that an unmanaged pod being deleted is a failure."""
        pod = build_pod(deploy_logger, started_at)
        pod.sync(cache_with(live_pod(deletionTimestamp="2024-01-01T00:00:00Z"), kubectl=mock_kubectl))

        assert pod.deploy_failed() is True
        assert "Terminating" in pod.failure_message()

    def test_existing_before_deploy_is_fatal(self, deploy_logger):
        """Test that an unmanaged pod must not exist before its deploy."""
        pod = build_pod(deploy_logger)

        with pytest.raises(FatalDeploymentError, match="existed before the deploy started"):
            pod.sync(cache_with(live_pod()))
        assert "must have unique names" in deploy_logger.summary.paragraphs[0]


class TestManagedPod:
    """Test cases for pods owned by a controller."""

    def test_running_and_ready_succeeds(self, deploy_logger, started_at):
        """Test that managed pods need Running and Ready."""
        pod = build_pod(deploy_logger, started_at, parent="Web deployment")
        pod.sync(cache_with(live_pod()))

        assert pod.deploy_succeeded() is True

    def test_not_ready_is_in_progress(self, deploy_logger, started_at):
        """Test that a running but unready managed pod is still in progress."""
        pod = build_pod(deploy_logger, started_at, parent="Web deployment")
        pod.sync(cache_with(live_pod(ready=False)))

        assert pod.deploy_succeeded() is False
        assert pod.deploy_failed() is False

    def test_evicted_is_transient(self, deploy_logger, started_at):
        """Test that eviction of a managed pod is not a failure."""
        pod = build_pod(deploy_logger, started_at, parent="Web deployment")
        pod.sync(cache_with(live_pod(phase="Failed", ready=False, reason="Evicted")))

        assert pod.deploy_failed() is False

    def test_disappearance_is_not_failure(self, deploy_logger, started_at):
        """Test that managed pods may be replaced without failing."""
        pod = build_pod(deploy_logger, started_at, parent="Web deployment")
        pod.sync(cache_with())

        assert pod.deploy_failed() is False

    def test_readiness_probe_timeout_message(self, deploy_logger, started_at):
        """Test that timeout messages explain failing readiness probes."""
        pod = build_pod(
            deploy_logger, started_at, parent="Web deployment", readinessProbe={"httpGet": {"path": "/health"}}
        )
        pod.sync(cache_with(live_pod(ready=False)))

        assert "must respond with a good status code at '/health'" in pod.timeout_message()


class TestContainerDoom:
    """Test cases for unrecoverable container states."""

    @pytest.mark.parametrize(
        "state,expected",
        [
            (
                {"state": {"waiting": {"reason": "CrashLoopBackOff"}}, "lastState": {"terminated": {"exitCode": 1}}},
                "Crashing repeatedly (exit 1)",
            ),
            (
                {"state": {"waiting": {"reason": "ImagePullBackOff", "message": "Back-off pulling image"}}},
                "Failed to pull image busybox",
            ),
            (
                {"state": {"waiting": {"reason": "CreateContainerConfigError", "message": "secret missing"}}},
                "Failed to generate container configuration: secret missing",
            ),
            (
                {"state": {"terminated": {"reason": "ContainerCannotRun", "exitCode": 128, "message": "no exec"}}},
                "Failed to start (exit 128): no exec",
            ),
        ],
    )
    def test_doomed_container_fails_pod(self, deploy_logger, started_at, state, expected):
        """Test that doomed containers fail a managed pod."""
        pod = build_pod(deploy_logger, started_at, parent="Web deployment")
        status = {"name": "app", "ready": False, **state}
        pod.sync(cache_with(live_pod(phase="Pending", ready=False, container_statuses=[status])))

        assert pod.deploy_failed() is True
        assert "unlikely to be recoverable" in pod.failure_message()
        assert expected in pod.failure_message()
