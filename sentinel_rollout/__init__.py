"""Sentinel Rollout - Kubernetes deploy orchestration and rollout verification."""

from .cache import ResourceCache
from .cluster import ClusterConnection
from .concurrency import split_across_threads
from .conditions import FailureCondition, RolloutConditions, SuccessCondition
from .config import RolloutSettings, get_settings
from .deploy_task import DeployTask
from .deployer import ResourceDeployer
from .discovery import ClusterResourceDiscovery
from .errors import (
    DeploymentTimeoutError,
    FatalDeploymentError,
    InvalidTemplateError,
    KubectlError,
    NamespaceNotFoundError,
    ResourceNotFoundError,
    RolloutConditionsError,
    TaskConfigurationError,
)
from .kubectl import Kubectl, KubectlResult
from .label_selector import LabelSelector
from .logger import DeployLogger
from .models import DeployMethod, DeployResult, RolloutOutcome, WatchResult
from .resources import KubernetesResource, build_resource
from .watcher import ResourceWatcher

__version__ = "0.1.0"

__all__ = [
    # Orchestration
    "DeployTask",
    "ResourceDeployer",
    "ResourceWatcher",
    # Resources
    "KubernetesResource",
    "build_resource",
    "RolloutConditions",
    "SuccessCondition",
    "FailureCondition",
    # Cluster access
    "ClusterConnection",
    "ClusterResourceDiscovery",
    "Kubectl",
    "KubectlResult",
    "ResourceCache",
    "split_across_threads",
    # Configuration and logging
    "RolloutSettings",
    "get_settings",
    "DeployLogger",
    "LabelSelector",
    # Results
    "DeployMethod",
    "DeployResult",
    "RolloutOutcome",
    "WatchResult",
    # Errors
    "FatalDeploymentError",
    "DeploymentTimeoutError",
    "TaskConfigurationError",
    "NamespaceNotFoundError",
    "InvalidTemplateError",
    "RolloutConditionsError",
    "KubectlError",
    "ResourceNotFoundError",
]
