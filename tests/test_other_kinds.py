"""Tests for the remaining resource kinds."""

import json

from helpers import StaticCache, build_definition, cache_with, pod_spec
from sentinel_rollout.models import DeployMethod
from sentinel_rollout.resources import (
    CronJob,
    CustomResource,
    CustomResourceDefinition,
    HorizontalPodAutoscaler,
    Job,
    PersistentVolumeClaim,
    PodDisruptionBudget,
    ResourceQuota,
    Service,
)

LONG_AGO = "2020-01-01T00:00:00Z"


def build(cls, deploy_logger, started_at, name="web", spec=None, api_version="v1", annotations=None, **kwargs):
    definition = build_definition(cls.KIND, name, api_version=api_version, spec=spec, annotations=annotations)
    resource = cls(definition, "test-ns", "minikube", deploy_logger, **kwargs)
    resource.deploy_started_at = started_at
    return resource


def with_status(definition, status, **metadata):
    definition = json.loads(json.dumps(definition))
    definition["metadata"].update(metadata)
    definition["status"] = status
    return definition


class TestJob:
    """Test cases for Job rollouts."""

    def test_completed_job_succeeds(self, deploy_logger, started_at):
        """Test that reaching completions succeeds."""
        job = build(Job, deploy_logger, started_at, api_version="batch/v1", spec={"completions": 1})
        job.sync(cache_with(with_status(job.definition, {"succeeded": 1})))

        assert job.deploy_succeeded() is True
        assert job.status == "Succeeded"

    def test_running_job_succeeds_after_grace_period(self, deploy_logger, started_at):
        """Test that an active job counts as started once past the grace period."""
        job = build(Job, deploy_logger, started_at, api_version="batch/v1", spec={"completions": 3})
        job.sync(cache_with(with_status(job.definition, {"active": 1, "startTime": LONG_AGO})))

        assert job.deploy_succeeded() is True
        assert job.status == "Started"

    def test_failed_condition(self, deploy_logger, started_at):
        """Test that a Failed condition fails the job and explains why."""
        job = build(Job, deploy_logger, started_at, api_version="batch/v1", spec={"completions": 1})
        status = {"conditions": [{"type": "Failed", "status": "True", "reason": "DeadlineExceeded", "message": "too slow"}]}
        job.sync(cache_with(with_status(job.definition, status)))

        assert job.deploy_failed() is True
        assert job.deploy_succeeded() is False
        assert job.failure_message() == "DeadlineExceeded (too slow)"

    def test_backoff_limit_reached(self, deploy_logger, started_at):
        """Test that exhausting the backoff limit fails the job."""
        job = build(Job, deploy_logger, started_at, api_version="batch/v1", spec={"completions": 1, "backoffLimit": 2})
        job.sync(cache_with(with_status(job.definition, {"failed": 2})))

        assert job.deploy_failed() is True

    def test_backoff_limit_reached_with_successes(self, deploy_logger, started_at):
        """Test that a job past its backoff limit fails even when some pods succeeded."""
        job = build(Job, deploy_logger, started_at, api_version="batch/v1", spec={"completions": 1, "backoffLimit": 2})
        job.sync(cache_with(with_status(job.definition, {"failed": 2, "succeeded": 1})))

        assert job.deploy_failed() is True
        assert job.deploy_succeeded() is False


class TestCronJob:
    """Test cases for CronJob rollouts."""

    def test_exists_is_success(self, deploy_logger, started_at):
        """Test that a cron job only needs to exist."""
        cron = build(CronJob, deploy_logger, started_at, api_version="batch/v1")
        cron.sync(cache_with(cron.definition))

        assert cron.deploy_succeeded() is True


class TestService:
    """Test cases for Service rollouts."""

    def ready_pod(self, name="web-1", ready=True):
        pod = build_definition("Pod", name, spec=pod_spec(), labels={"app": "web"})
        pod["status"] = {"conditions": [{"type": "Ready", "status": "True" if ready else "False"}]}
        return pod

    def workload(self, replicas):
        return build_definition(
            "Deployment",
            "web",
            api_version="apps/v1",
            spec={"replicas": replicas, "template": {"metadata": {"labels": {"app": "web"}}}},
        )

    def test_selects_ready_pod(self, deploy_logger, started_at):
        """Test that a ready pod behind the selector is enough."""
        svc = build(Service, deploy_logger, started_at, spec={"selector": {"app": "web"}})
        svc.sync(cache_with(svc.definition, self.ready_pod(), self.workload(2)))

        assert svc.deploy_succeeded() is True
        assert svc.status == "Selects at least 1 pod"

    def test_unready_pods_do_not_count(self, deploy_logger, started_at):
        """Test that pods that are not ready leave the service waiting."""
        svc = build(Service, deploy_logger, started_at, spec={"selector": {"app": "web"}})
        svc.sync(cache_with(svc.definition, self.ready_pod(ready=False), self.workload(2)))

        assert svc.deploy_succeeded() is False
        assert svc.status == "Selects 0 pods"

    def test_zero_replica_workload(self, deploy_logger, started_at):
        """Test that fronting only scaled-down workloads needs no endpoints."""
        svc = build(Service, deploy_logger, started_at, spec={"selector": {"app": "web"}})
        svc.sync(cache_with(svc.definition, self.workload(0)))

        assert svc.deploy_succeeded() is True
        assert svc.status == "Doesn't require any endpoints"

    def test_load_balancer_needs_ingress(self, deploy_logger, started_at):
        """Test that LoadBalancer services wait for an ingress point."""
        svc = build(Service, deploy_logger, started_at, spec={"type": "LoadBalancer", "selector": {"app": "web"}})
        svc.sync(cache_with(svc.definition, self.ready_pod()))

        assert svc.deploy_succeeded() is False

        svc.sync(cache_with(with_status(svc.definition, {"loadBalancer": {"ingress": [{"ip": "10.0.0.1"}]}})))

        assert svc.deploy_succeeded() is True

    def test_external_name(self, deploy_logger, started_at):
        """Test that ExternalName services succeed once they exist."""
        svc = build(Service, deploy_logger, started_at, spec={"type": "ExternalName", "externalName": "example.com"})
        svc.sync(cache_with(svc.definition))

        assert svc.deploy_succeeded() is True


class TestHorizontalPodAutoscaler:
    """Test cases for HPA rollouts."""

    def hpa(self, deploy_logger, started_at, condition):
        hpa = build(HorizontalPodAutoscaler, deploy_logger, started_at, api_version="autoscaling/v2")
        data = with_status(hpa.definition, {"conditions": [condition]})
        hpa.sync(StaticCache({"hpa.v2.autoscaling": {"web": data}}))
        return hpa

    def test_scaling_active(self, deploy_logger, started_at):
        """Test that an active ScalingActive condition succeeds."""
        hpa = self.hpa(deploy_logger, started_at, {"type": "ScalingActive", "status": "True"})

        assert hpa.deploy_succeeded() is True
        assert hpa.status == "Configured"

    def test_failed_get_is_recoverable(self, deploy_logger, started_at):
        """Test that metrics not being available yet is not a failure."""
        hpa = self.hpa(
            deploy_logger,
            started_at,
            {"type": "ScalingActive", "status": "False", "reason": "FailedGetResourceMetric", "message": "no metrics"},
        )

        assert hpa.deploy_failed() is False
        assert hpa.timeout_message() == "no metrics"

    def test_other_inactive_reason_fails(self, deploy_logger, started_at):
        """Test that other inactive reasons fail the HPA."""
        hpa = self.hpa(
            deploy_logger,
            started_at,
            {"type": "ScalingActive", "status": "False", "reason": "InvalidSelector", "message": "bad selector"},
        )

        assert hpa.deploy_failed() is True
        assert hpa.failure_message() == "bad selector"


class TestPodDisruptionBudget:
    """Test cases for PDBs."""

    def test_always_replaced_with_force(self, deploy_logger):
        """Test that PDBs are force-replaced rather than applied."""
        pdb = build(PodDisruptionBudget, deploy_logger, None, api_version="policy/v1")

        assert pdb.deploy_method == DeployMethod.REPLACE_FORCE

    def test_observed_generation(self, deploy_logger, started_at):
        """Test that the PDB succeeds once its generation is observed."""
        pdb = build(PodDisruptionBudget, deploy_logger, started_at, api_version="policy/v1")
        pdb.sync(cache_with(with_status(pdb.definition, {"observedGeneration": 1}, generation=1)))

        assert pdb.deploy_succeeded() is True


class TestPersistentVolumeClaim:
    """Test cases for PVC rollouts."""

    def storage_class(self, name, binding_mode="Immediate", default=False):
        sc = build_definition(
            "StorageClass",
            name,
            api_version="storage.k8s.io/v1",
            annotations={"storageclass.kubernetes.io/is-default-class": "true"} if default else None,
        )
        sc["volumeBindingMode"] = binding_mode
        return sc

    def test_bound_succeeds(self, deploy_logger, started_at):
        """Test that a bound claim succeeds."""
        pvc = build(PersistentVolumeClaim, deploy_logger, started_at, spec={"storageClassName": "fast"})
        pvc.sync(cache_with(with_status(pvc.definition, {"phase": "Bound"}), self.storage_class("fast")))

        assert pvc.deploy_succeeded() is True

    def test_wait_for_first_consumer_pending(self, deploy_logger, started_at):
        """Test that Pending is success for WaitForFirstConsumer classes."""
        pvc = build(PersistentVolumeClaim, deploy_logger, started_at, spec={})
        pvc.sync(
            cache_with(
                with_status(pvc.definition, {"phase": "Pending"}),
                self.storage_class("lazy", binding_mode="WaitForFirstConsumer", default=True),
            )
        )

        assert pvc.deploy_succeeded() is True

    def test_multiple_default_classes_fail(self, deploy_logger, started_at):
        """Test that two default storage classes fail a claim without a class."""
        pvc = build(PersistentVolumeClaim, deploy_logger, started_at, spec={})
        pvc.sync(
            cache_with(
                with_status(pvc.definition, {"phase": "Pending"}),
                self.storage_class("one", default=True),
                self.storage_class("two", default=True),
            )
        )

        assert pvc.deploy_failed() is True
        assert "multiple StorageClasses" in pvc.failure_message()

    def test_missing_storage_class_timeout_message(self, deploy_logger, started_at):
        """Test that the timeout message names a missing storage class."""
        pvc = build(PersistentVolumeClaim, deploy_logger, started_at, spec={"storageClassName": "gone"})
        pvc.sync(cache_with(with_status(pvc.definition, {"phase": "Pending"})))

        assert "StorageClass of gone but the resource does not exist" in pvc.timeout_message()


class TestResourceQuota:
    """Test cases for ResourceQuota rollouts."""

    def test_status_mirrors_spec(self, deploy_logger, started_at):
        """Test that the quota succeeds once status.hard matches spec.hard."""
        quota = build(ResourceQuota, deploy_logger, started_at, spec={"hard": {"pods": "4"}})
        quota.sync(cache_with(with_status(quota.definition, {})))

        assert quota.deploy_succeeded() is False

        quota.sync(cache_with(with_status(quota.definition, {"hard": {"pods": "4"}})))

        assert quota.deploy_succeeded() is True


def build_crd(deploy_logger, annotations=None):
    definition = build_definition(
        "CustomResourceDefinition",
        "widgets.example.com",
        api_version="apiextensions.k8s.io/v1",
        annotations=annotations,
        spec={"group": "example.com", "names": {"kind": "Widget"}, "versions": [{"name": "v1"}]},
    )
    return CustomResourceDefinition(definition, None, "minikube", deploy_logger)


def build_widget(deploy_logger, started_at, crd):
    definition = build_definition("Widget", "w", api_version="example.com/v1")
    widget = CustomResource(definition, "test-ns", "minikube", deploy_logger, crd=crd)
    widget.deploy_started_at = started_at
    return widget


class TestCustomResourceDefinition:
    """Test cases for CRD rollouts and metadata."""

    def test_names_accepted(self, deploy_logger, started_at):
        """Test that the NamesAccepted condition drives CRD success."""
        crd = build_crd(deploy_logger)
        crd.deploy_started_at = started_at
        status = {"conditions": [{"type": "NamesAccepted", "status": "True"}]}
        crd.sync(cache_with(with_status(crd.definition, status)))

        assert crd.deploy_succeeded() is True
        assert crd.status == "Names accepted"

    def test_names_rejected(self, deploy_logger, started_at):
        """Test that rejected names fail the CRD."""
        crd = build_crd(deploy_logger)
        crd.deploy_started_at = started_at
        status = {"conditions": [{"type": "NamesAccepted", "status": "False", "reason": "Conflict", "message": "taken"}]}
        crd.sync(cache_with(with_status(crd.definition, status)))

        assert crd.deploy_failed() is True
        assert crd.status == "Conflict (taken)"

    def test_metadata(self, deploy_logger):
        """Test the CRD's derived identity and annotations."""
        crd = build_crd(
            deploy_logger,
            annotations={"rollout.sentinel.io/prunable": "true", "rollout.sentinel.io/instance-timeout": "5m"},
        )

        assert crd.global_ is True
        assert crd.group_version_kind == "example.com/v1/Widget"
        assert crd.prunable is True
        assert crd.predeployed is True
        assert crd.timeout_for_instance == 300

    def test_invalid_rollout_conditions_rejected(self, deploy_logger):
        """Test that malformed rollout conditions fail CRD validation."""
        crd = build_crd(deploy_logger, annotations={"rollout.sentinel.io/instance-rollout-conditions": "{nope"})

        crd.validate_definition()

        assert "instance-rollout-conditions on widgets.example.com is invalid" in crd.validation_errors[0]


class TestCustomResource:
    """Test cases for instances of CRD-defined kinds."""

    def test_default_conditions(self, deploy_logger, started_at):
        """Test that "true" enables the standard Ready/Failed conditions."""
        crd = build_crd(deploy_logger, annotations={"rollout.sentinel.io/instance-rollout-conditions": "true"})
        widget = build_widget(deploy_logger, started_at, crd)
        ready = {"observedGeneration": 1, "conditions": [{"type": "Ready", "status": "True"}]}
        widget.sync(cache_with(with_status(widget.definition, ready, generation=1)))

        assert widget.deploy_succeeded() is True
        assert widget.status == "Healthy"

    def test_failure_message_from_condition(self, deploy_logger, started_at):
        """Test that failure messages are read from the failing condition."""
        crd = build_crd(deploy_logger, annotations={"rollout.sentinel.io/instance-rollout-conditions": "true"})
        widget = build_widget(deploy_logger, started_at, crd)
        failed = {
            "observedGeneration": 1,
            "conditions": [{"type": "Failed", "status": "True", "message": "quota exceeded"}],
        }
        widget.sync(cache_with(with_status(widget.definition, failed, generation=1)))

        assert widget.deploy_failed() is True
        assert widget.failure_message() == "quota exceeded"

    def test_stale_generation_waits(self, deploy_logger, started_at):
        """Test that conditions are ignored until the generation is observed."""
        crd = build_crd(deploy_logger, annotations={"rollout.sentinel.io/instance-rollout-conditions": "true"})
        widget = build_widget(deploy_logger, started_at, crd)
        ready = {"observedGeneration": 1, "conditions": [{"type": "Ready", "status": "True"}]}
        widget.sync(cache_with(with_status(widget.definition, ready, generation=2)))

        assert widget.deploy_succeeded() is False
        assert "not up-to-date" in widget.timeout_message()

    def test_without_conditions_exists_is_success(self, deploy_logger, started_at, caplog):
        """Test that instances of CRDs without conditions succeed once they exist."""
        widget = build_widget(deploy_logger, started_at, build_crd(deploy_logger))
        widget.sync(cache_with(widget.definition))

        assert widget.deploy_succeeded() is True
        assert "Don't know how to monitor resources of type Widget" in caplog.text

    def test_instance_timeout_from_crd(self, deploy_logger, started_at):
        """Test that the CRD's instance timeout applies to its instances."""
        crd = build_crd(deploy_logger, annotations={"rollout.sentinel.io/instance-timeout": "90s"})

        assert build_widget(deploy_logger, started_at, crd).timeout == 90

    def test_invalid_crd_conditions_fail_validation(self, deploy_logger):
        """Test that instances report their CRD's broken rollout conditions."""
        crd = build_crd(
            deploy_logger,
            annotations={"rollout.sentinel.io/instance-rollout-conditions": '{"success_conditions": []}'},
        )
        widget = build_widget(deploy_logger, None, crd)

        widget.validate_definition()

        assert "using invalid rollout conditions" in widget.validation_errors[0]
