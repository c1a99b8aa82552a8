"""Kinds whose rollout is complete as soon as they exist (or nearly so)."""

from typing import Any, Optional

from .base import STANDARD_TIMEOUT_MESSAGE, UNUSUAL_FAILURE_MESSAGE, KubernetesResource, dig

DEFAULT_CLASS_ANNOTATIONS = (
    "storageclass.kubernetes.io/is-default-class",
    "storageclass.beta.kubernetes.io/is-default-class",
)


class ExistenceResource(KubernetesResource):
    """Succeeds once the object exists; never fails."""

    TIMEOUT = 30

    @property
    def status(self) -> str:
        return "Available" if self.exists else "Not Found"

    def _deploy_succeeded(self) -> bool:
        return self.exists

    def _deploy_failed(self) -> bool:
        return False

    def timeout_message(self) -> Optional[str]:
        return UNUSUAL_FAILURE_MESSAGE


class ConfigMap(ExistenceResource):
    KIND = "ConfigMap"


class Secret(ExistenceResource):
    KIND = "Secret"
    SENSITIVE_TEMPLATE_CONTENT = True
    SERVER_DRY_RUNNABLE = True


class ServiceAccount(ExistenceResource):
    KIND = "ServiceAccount"

    @property
    def status(self) -> str:
        return "Created" if self.exists else "Not Found"


class Role(ExistenceResource):
    KIND = "Role"

    @property
    def status(self) -> str:
        return "Created" if self.exists else "Not Found"


class RoleBinding(ExistenceResource):
    KIND = "RoleBinding"

    @property
    def status(self) -> str:
        return "Created" if self.exists else "Not Found"


class NetworkPolicy(ExistenceResource):
    KIND = "NetworkPolicy"
    TIMEOUT = 30

    @property
    def status(self) -> str:
        return "Created" if self.exists else "Not Found"


class PodTemplate(ExistenceResource):
    KIND = "PodTemplate"


class Ingress(ExistenceResource):
    KIND = "Ingress"
    TIMEOUT = 30

    @property
    def status(self) -> str:
        return "Created" if self.exists else "Not Found"


class ResourceQuota(KubernetesResource):
    """A quota is in effect once the controller mirrors spec.hard into status.hard."""

    KIND = "ResourceQuota"
    TIMEOUT = 30

    @property
    def status(self) -> str:
        return "In effect" if self.exists else "Not Found"

    def _deploy_succeeded(self) -> bool:
        return self.exists and dig(self.instance_data, "spec", "hard") == dig(self.instance_data, "status", "hard")

    def _deploy_failed(self) -> bool:
        return False

    def timeout_message(self) -> Optional[str]:
        return UNUSUAL_FAILURE_MESSAGE


def _is_default_storage_class(storage_class: dict[str, Any]) -> bool:
    return any(
        dig(storage_class, "metadata", "annotations", annotation) == "true"
        for annotation in DEFAULT_CLASS_ANNOTATIONS
    )


class PersistentVolumeClaim(KubernetesResource):
    """
    A PVC is rolled out once Bound.

    With a WaitForFirstConsumer StorageClass it will not bind until a pod
    mounts it, so Pending counts as success too.
    """

    KIND = "PersistentVolumeClaim"
    TIMEOUT = 5 * 60
    SYNC_DEPENDENCIES = ("StorageClass",)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.storage_classes: list[dict[str, Any]] = []

    def sync(self, cache) -> None:
        super().sync(cache)
        self.storage_classes = cache.get_all("StorageClass")

    @property
    def status(self) -> str:
        if not self.exists:
            return "Not Found"
        return dig(self.instance_data, "status", "phase", default="Unknown")

    @property
    def storage_class_name(self) -> Optional[str]:
        return dig(self.definition, "spec", "storageClassName")

    @property
    def storage_class(self) -> Optional[dict[str, Any]]:
        name = self.storage_class_name
        if name:
            return next((sc for sc in self.storage_classes if dig(sc, "metadata", "name") == name), None)
        # "" explicitly requests no storage class, None requests the default one
        if name is None:
            return next((sc for sc in self.storage_classes if _is_default_storage_class(sc)), None)
        return None

    def _deploy_succeeded(self) -> bool:
        if self.status == "Bound":
            return True
        storage_class = self.storage_class
        if storage_class and storage_class.get("volumeBindingMode") == "WaitForFirstConsumer":
            return self.status == "Pending"
        return False

    def _deploy_failed(self) -> bool:
        return self.status == "Lost" or bool(self.failure_message())

    def failure_message(self) -> Optional[str]:
        defaults = [sc for sc in self.storage_classes if _is_default_storage_class(sc)]
        if self.storage_class_name is None and len(defaults) > 1:
            return (
                "PVC has no StorageClass specified and there are multiple StorageClasses "
                "annotated as default. This is an invalid cluster configuration."
            )
        return None

    def timeout_message(self) -> Optional[str]:
        if self.storage_class_name and self.storage_class is None:
            return f"PVC specified a StorageClass of {self.storage_class_name} but the resource does not exist"
        return STANDARD_TIMEOUT_MESSAGE
