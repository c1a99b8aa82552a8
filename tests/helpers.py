"""Builders and stand-ins shared by the rollout tests."""

import json
from unittest.mock import MagicMock

from sentinel_rollout.errors import ResourceNotFoundError
from sentinel_rollout.kubectl import KubectlResult
from sentinel_rollout.resources.base import KubernetesResource, utcnow


class KubectlRoutes:
    """Answers kubectl.run calls by matching the leading arguments."""

    def __init__(self):
        self.routes = []

    def add(self, *prefix, stdout="", stderr="", exit_status=0, raises=None):
        self.routes.append((prefix, KubectlResult(stdout, stderr, exit_status), raises))

    def add_items(self, kind, items):
        self.add("get", kind, stdout=json.dumps({"items": items}))

    def __call__(self, *args, **kwargs):
        for prefix, result, raises in self.routes:
            if args[: len(prefix)] == prefix:
                if raises is not None:
                    raise raises
                return result
        return KubectlResult("", "", 0)


def build_definition(kind, name, api_version="v1", spec=None, annotations=None, labels=None):
    metadata = {"name": name}
    if annotations:
        metadata["annotations"] = annotations
    if labels:
        metadata["labels"] = labels
    definition = {"apiVersion": api_version, "kind": kind, "metadata": metadata}
    if spec is not None:
        definition["spec"] = spec
    return definition


def pod_spec(name="app", **extra):
    container = {"name": name, "image": "busybox"}
    container.update(extra)
    return {"containers": [container]}


class StaticCache:
    """Resource cache stand-in serving fixed objects."""

    def __init__(self, objects=None, kubectl=None):
        self.objects = objects or {}
        self.kubectl = kubectl or MagicMock()

    def get_instance(self, kind, name, raise_if_not_found=False):
        instance = self.objects.get(kind, {}).get(name, {})
        if not instance and raise_if_not_found:
            raise ResourceNotFoundError(f"{kind}/{name} not found")
        return instance

    def get_all(self, kind, selector=None):
        instances = list(self.objects.get(kind, {}).values())
        if not selector:
            return instances
        return [
            i for i in instances
            if selector.items() <= ((i.get("metadata") or {}).get("labels") or {}).items()
        ]


def cache_with(*objects, kubectl=None):
    by_kind = {}
    for obj in objects:
        by_kind.setdefault(obj["kind"], {})[obj["metadata"]["name"]] = obj
    return StaticCache(by_kind, kubectl=kubectl)


class MockResource(KubernetesResource):
    """Resource that reaches ``final_status`` after ``hits_to_complete`` syncs."""

    KIND = "MockResource"

    def __init__(self, name, logger, hits_to_complete=1, final_status="success", kind=None):
        super().__init__(
            build_definition(kind or self.KIND, name),
            "test-ns",
            "minikube",
            logger,
            kind=kind,
            deploy_started_at=utcnow(),
        )
        self.hits_to_complete = hits_to_complete
        self.final_status = final_status
        self.hits = 0

    def sync(self, cache):
        self.hits += 1

    def _done(self):
        return self.hits >= self.hits_to_complete

    def _deploy_succeeded(self):
        return self._done() and self.final_status == "success"

    def _deploy_failed(self):
        return self._done() and self.final_status == "failed"

    def deploy_timed_out(self):
        return self._done() and self.final_status == "timeout"

    def failure_message(self):
        return "Something went wrong"

    @property
    def status(self):
        return f"{self.final_status} ({self.hits} hits)"

    def sync_debug_info(self, kubectl):
        pass


class FakeClock:
    """Monotonic clock that only advances when slept on."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def assert_in_order(messages, expected):
    """Assert every expected fragment appears in a later message than the previous one."""
    position = 0
    for fragment in expected:
        for index in range(position, len(messages)):
            if fragment in messages[index]:
                position = index + 1
                break
        else:
            raise AssertionError(f"{fragment!r} not found in order in {messages!r}")
