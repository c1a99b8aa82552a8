"""Kubernetes resource kinds with rollout-verification knowledge."""

from typing import Any, Iterable, Optional

import yaml

from ..errors import InvalidTemplateError
from ..logger import DeployLogger
from .autoscaling import HorizontalPodAutoscaler
from .base import KubernetesResource, annotation_key, dig
from .batch import CronJob, Job
from .custom import CustomResource, CustomResourceDefinition
from .pod import Pod
from .pod_sets import DaemonSet, Deployment, ReplicaSet, StatefulSet
from .policy import PodDisruptionBudget
from .service import Service
from .simple import (
    ConfigMap,
    Ingress,
    NetworkPolicy,
    PersistentVolumeClaim,
    PodTemplate,
    ResourceQuota,
    Role,
    RoleBinding,
    Secret,
    ServiceAccount,
)

KIND_REGISTRY: dict[str, type[KubernetesResource]] = {
    cls.KIND: cls
    for cls in (
        ConfigMap,
        CronJob,
        CustomResourceDefinition,
        DaemonSet,
        Deployment,
        HorizontalPodAutoscaler,
        Ingress,
        Job,
        NetworkPolicy,
        PersistentVolumeClaim,
        Pod,
        PodDisruptionBudget,
        PodTemplate,
        ReplicaSet,
        ResourceQuota,
        Role,
        RoleBinding,
        Secret,
        Service,
        ServiceAccount,
        StatefulSet,
    )
}


def _debug_content(definition: dict[str, Any]) -> str:
    return (
        f"apiVersion: {definition.get('apiVersion', '<missing>')}\n"
        f"kind: {definition.get('kind', '<missing>')}\n"
        f"metadata: {yaml.safe_dump(definition.get('metadata') or {}, default_flow_style=True).strip()}\n"
        "<Template body suppressed because content sensitivity could not be determined.>"
    )


def build_resource(
    definition: dict[str, Any],
    namespace: Optional[str],
    context: Optional[str],
    logger: DeployLogger,
    crd: Optional[CustomResourceDefinition] = None,
    global_kinds: Iterable[str] = (),
) -> KubernetesResource:
    """
    Build the resource object for one manifest.

    Known kinds get their dedicated class, kinds defined by a discovered CRD
    become CustomResources, and anything else falls back to the generic
    resource (which assumes success once deployed).

    Raises:
        InvalidTemplateError: If kind or name is missing
    """
    kind = definition.get("kind")
    if not kind:
        raise InvalidTemplateError(
            "Template is missing required field 'kind'", content=_debug_content(definition)
        )
    if not dig(definition, "metadata", "name") and not dig(definition, "metadata", "generateName"):
        raise InvalidTemplateError(
            "Template must specify one of 'metadata.name' or 'metadata.generateName'",
            content=_debug_content(definition),
        )

    resource_class = KIND_REGISTRY.get(kind)
    if resource_class is not None:
        return resource_class(definition, namespace, context, logger)
    if crd is not None:
        return CustomResource(definition, namespace, context, logger, crd=crd)
    is_global = kind.lower() in {k.lower() for k in global_kinds}
    return KubernetesResource(definition, namespace, context, logger, kind=kind, global_=is_global)


__all__ = [
    "KIND_REGISTRY",
    "ConfigMap",
    "CronJob",
    "CustomResource",
    "CustomResourceDefinition",
    "DaemonSet",
    "Deployment",
    "HorizontalPodAutoscaler",
    "Ingress",
    "Job",
    "KubernetesResource",
    "NetworkPolicy",
    "PersistentVolumeClaim",
    "Pod",
    "PodDisruptionBudget",
    "PodTemplate",
    "ReplicaSet",
    "ResourceQuota",
    "Role",
    "RoleBinding",
    "Secret",
    "Service",
    "ServiceAccount",
    "StatefulSet",
    "annotation_key",
    "build_resource",
]
