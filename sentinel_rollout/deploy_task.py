"""Ship a set of manifests to one namespace and verify the rollout."""

import logging
import os
from typing import Optional, Sequence

from kubernetes.client.exceptions import ApiException

from .cache import ResourceCache
from .cluster import ClusterConnection
from .concurrency import split_across_threads
from .deployer import ResourceDeployer
from .discovery import ClusterResourceDiscovery
from .errors import (
    DeploymentTimeoutError,
    FatalDeploymentError,
    InvalidTemplateError,
    KubectlError,
    NamespaceNotFoundError,
    TaskConfigurationError,
)
from .kubectl import Kubectl
from .label_selector import LabelSelector
from .logger import DeployLogger, add_para_from_list, indent_four, record_invalid_template
from .models import DeployResult, RolloutOutcome
from .resources import KubernetesResource, build_resource
from .templates import TemplateSource

logger = logging.getLogger(__name__)

PROTECTED_NAMESPACES = ("default", "kube-system", "kube-public")
MIN_KUBE_VERSION = (1, 15, 0)

PREDEPLOY_BEFORE_CRS = ("ResourceQuota", "NetworkPolicy")
PREDEPLOY_AFTER_CRS = (
    "ConfigMap",
    "PersistentVolumeClaim",
    "ServiceAccount",
    "Role",
    "RoleBinding",
    "Secret",
    "Pod",
)

# Namespace, PersistentVolume, Endpoints, PersistentVolumeClaim and
# ReplicationController are never pruned.
DEFAULT_PRUNE_WHITELIST = (
    "core/v1/ConfigMap",
    "core/v1/Pod",
    "core/v1/Service",
    "core/v1/ResourceQuota",
    "core/v1/Secret",
    "core/v1/ServiceAccount",
    "core/v1/PodTemplate",
    "core/v1/PersistentVolumeClaim",
    "batch/v1/Job",
    "apps/v1/ReplicaSet",
    "apps/v1/DaemonSet",
    "apps/v1/Deployment",
    "networking.k8s.io/v1/Ingress",
    "networking.k8s.io/v1/NetworkPolicy",
    "apps/v1/StatefulSet",
    "autoscaling/v2/HorizontalPodAutoscaler",
    "policy/v1/PodDisruptionBudget",
    "batch/v1/CronJob",
    "rbac.authorization.k8s.io/v1/Role",
    "rbac.authorization.k8s.io/v1/RoleBinding",
)


class DeployTask:
    """
    Deploy manifests to a namespace.

    Runs four phases: configuration checks and resource discovery, an
    initial status check, predeployment of priority kinds, then the bulk
    deploy with optional pruning and verification.
    """

    def __init__(
        self,
        namespace: str,
        context: str,
        template_paths: Sequence[str],
        logger: Optional[DeployLogger] = None,
        kubectl: Optional[Kubectl] = None,
        connection: Optional[ClusterConnection] = None,
        discovery: Optional[ClusterResourceDiscovery] = None,
        global_timeout: Optional[float] = None,
        selector: Optional[LabelSelector] = None,
        protected_namespaces: Optional[Sequence[str]] = None,
    ):
        """
        Initialize deploy task.

        Args:
            namespace: Target namespace
            context: Kubeconfig context
            template_paths: Manifest files and directories
            logger: Deploy logger (defaults to one prefixed with context/namespace)
            kubectl: kubectl client
            connection: Typed cluster connection
            discovery: Cluster resource discovery
            global_timeout: Maximum seconds to watch each verification pass
            selector: Only deploy and prune objects carrying these labels
            protected_namespaces: Namespaces that must not be pruned
        """
        self.namespace = namespace
        self.context = context
        self.logger = logger or DeployLogger(context=context, namespace=namespace)
        self.templates = TemplateSource(template_paths)
        self.global_timeout = global_timeout
        self.selector = selector
        self.protected_namespaces = list(
            PROTECTED_NAMESPACES if protected_namespaces is None else protected_namespaces
        )
        self._kubectl = kubectl
        self._connection = connection
        self._discovery = discovery
        self._owns_connection = connection is None
        self._owns_discovery = discovery is None
        self._resources: list[KubernetesResource] = []

    @property
    def kubectl(self) -> Kubectl:
        if self._kubectl is None:
            self._kubectl = Kubectl(self.namespace, self.context, self.logger, log_failure_by_default=True)
        return self._kubectl

    @property
    def connection(self) -> ClusterConnection:
        if self._connection is None:
            self._connection = ClusterConnection(self.context)
        return self._connection

    @property
    def discovery(self) -> ClusterResourceDiscovery:
        if self._discovery is None:
            self._discovery = ClusterResourceDiscovery(self.connection, self.namespace, self.logger)
        return self._discovery

    @property
    def predeploy_sequence(self) -> list[str]:
        predeployed_crds = [crd.crd_kind for crd in self.discovery.crds if crd.predeployed]
        return [*PREDEPLOY_BEFORE_CRS, *predeployed_crds, *PREDEPLOY_AFTER_CRS]

    @property
    def prune_whitelist(self) -> list[str]:
        prunable_crds = [crd.group_version_kind for crd in self.discovery.crds if crd.prunable]
        return [*DEFAULT_PRUNE_WHITELIST, *prunable_crds]

    def run(
        self,
        verify_result: bool = True,
        allow_protected_ns: bool = False,
        prune: bool = True,
    ) -> DeployResult:
        """
        Run the deploy.

        Args:
            verify_result: Wait for every resource to finish rolling out
            allow_protected_ns: Permit deploying (without pruning) to a protected namespace
            prune: Delete whitelisted objects that are not in the templates

        Returns:
            DeployResult; the summary has already been printed
        """
        self.logger.reset()
        try:
            result = self._run(verify_result, allow_protected_ns, prune)
        except TaskConfigurationError as e:
            if str(e):
                self.logger.summary.add_action(str(e))
            result = DeployResult(RolloutOutcome.CONFIG_INVALID, [str(e)])
        except FatalDeploymentError as e:
            if str(e):
                self.logger.summary.add_action(str(e))
            result = DeployResult.failure(str(e))
        except KubectlError as e:
            self.logger.summary.add_action(f"kubectl failed: {e}")
            result = DeployResult.failure(str(e))
        finally:
            for resource in self._resources:
                resource.discard_definition_file()
            self._close_connection()

        self.logger.print_summary(result.outcome)
        return result

    def run_strict(self, **kwargs) -> DeployResult:
        """
        Run the deploy, raising if it did not succeed.

        Raises:
            TaskConfigurationError: If the configuration was invalid
            DeploymentTimeoutError: If every unsuccessful resource timed out
            FatalDeploymentError: For any other failure
        """
        result = self.run(**kwargs)
        message = "; ".join(reason for reason in result.reasons if reason)
        if result.outcome == RolloutOutcome.CONFIG_INVALID:
            raise TaskConfigurationError(message or "Configuration invalid")
        if result.outcome == RolloutOutcome.TIMED_OUT:
            raise DeploymentTimeoutError(message or "Timed out waiting for resources to deploy")
        if result.outcome == RolloutOutcome.FAILED:
            raise FatalDeploymentError(message or "Failed to deploy resources")
        return result

    def _run(self, verify_result: bool, allow_protected_ns: bool, prune: bool) -> DeployResult:
        self.logger.phase_heading("Initializing deploy")
        self._validate_configuration(allow_protected_ns, prune)
        resources = self._discover_resources()
        self._resources = resources
        self._validate_resources(resources)

        self.logger.phase_heading("Checking initial resource statuses")
        self._check_initial_status(resources)

        deployer = ResourceDeployer(
            self.kubectl,
            self.logger,
            prune_whitelist=self.prune_whitelist,
            global_timeout=self.global_timeout,
            selector=self.selector,
            global_kinds=self.discovery.global_resource_kinds,
        )

        predeploy_sequence = self.predeploy_sequence
        if any(r.type in predeploy_sequence for r in resources):
            self.logger.phase_heading("Predeploying priority resources")
            result = deployer.predeploy_priority_resources(resources, predeploy_sequence)
            if not result.ok:
                for reason in result.reasons:
                    self.logger.summary.add_action(reason)
                return result

        self.logger.phase_heading("Deploying all resources")
        return deployer.deploy(resources, verify=verify_result, prune=prune)

    def _validate_configuration(self, allow_protected_ns: bool, prune: bool) -> None:
        errors = []
        if not self.context:
            errors.append("Context can not be blank")
        if not self.namespace:
            errors.append("Namespace can not be blank")
        if not errors:
            try:
                self._validate_server_version()
            except KubectlError as e:
                errors.append(str(e))
            try:
                self._confirm_namespace_exists()
            except NamespaceNotFoundError as e:
                errors.append(str(e))
        errors.extend(self.templates.validate())
        errors.extend(self._protected_namespace_errors(allow_protected_ns, prune))

        if errors:
            add_para_from_list(self.logger, "Configuration invalid", errors)
            raise TaskConfigurationError()

        if self.selector:
            self.logger.info(f"Using resource selector {self.selector}")
        self.logger.info("All required parameters and files are present")

    def _validate_server_version(self) -> None:
        version = self.kubectl.server_version()
        if version < MIN_KUBE_VERSION:
            minimum, actual = (".".join(map(str, v)) for v in (MIN_KUBE_VERSION, version))
            self.logger.warning(
                f"Minimum cluster version requirement of {minimum} not met. "
                f"Using {actual} could result in unexpected behavior as it is no longer tested against"
            )

    def _close_connection(self) -> None:
        if not self._owns_connection or self._connection is None:
            return
        self._connection.close()
        self._connection = None
        if self._owns_discovery:
            self._discovery = None

    def _confirm_namespace_exists(self) -> None:
        try:
            exists = self.connection.namespace_exists(self.namespace)
        except (ApiException, ValueError) as e:
            raise TaskConfigurationError(f"Could not connect to kubernetes cluster. {e}") from e
        if not exists:
            raise NamespaceNotFoundError(self.namespace, self.context)

    def _protected_namespace_errors(self, allow_protected_ns: bool, prune: bool) -> list[str]:
        if self.namespace not in self.protected_namespaces:
            return []
        if allow_protected_ns and prune:
            return [f"Refusing to deploy to protected namespace '{self.namespace}' with pruning enabled"]
        if allow_protected_ns:
            self.logger.warning(
                f"You're deploying to protected namespace {self.namespace}, which cannot be pruned."
            )
            self.logger.warning(
                "Existing resources can only be removed manually with kubectl. "
                "Removing templates from the set deployed will have no effect."
            )
            self.logger.warning(
                f"***Please do not deploy to {self.namespace} unless you really know what you are doing.***"
            )
            return []
        return [f"Refusing to deploy to protected namespace '{self.namespace}'"]

    def _discover_resources(self) -> list[KubernetesResource]:
        self.logger.info("Discovering resources:")
        try:
            crds_by_kind = {crd.crd_kind: crd for crd in reversed(self.discovery.crds)}
            global_kinds = self.discovery.global_resource_kinds
        except ApiException as e:
            raise FatalDeploymentError(f"Failed to discover cluster resources: {e.status} {e.reason}") from e

        resources = []
        filename = None
        try:
            for filename, definition in self.templates.definitions():
                resource = build_resource(
                    definition,
                    self.namespace,
                    self.context,
                    self.logger,
                    crd=crds_by_kind.get(definition.get("kind")),
                    global_kinds=global_kinds,
                )
                resources.append(resource)
                self.logger.info(f"  - {resource.id}")
        except InvalidTemplateError as e:
            record_invalid_template(self.logger, str(e), e.filename or filename, content=e.content)
            raise FatalDeploymentError("Failed to render and parse template") from e
        return sorted(resources, key=lambda r: r.id)

    def _validate_resources(self, resources: list[KubernetesResource]) -> None:
        split_across_threads(
            resources, lambda r: r.validate_definition(self.kubectl, selector=self.selector)
        )

        failed = [r for r in resources if r.validation_failed]
        if failed:
            for resource in failed:
                content = None
                if not resource.sensitive_template_content and os.path.isfile(resource.file_path):
                    with open(resource.file_path, encoding="utf-8") as f:
                        content = f.read()
                record_invalid_template(
                    self.logger,
                    resource.validation_error_msg,
                    os.path.basename(resource.file_path),
                    content=content,
                )
            raise FatalDeploymentError("Template validation failed")
        self._validate_globals(resources)

    def _validate_globals(self, resources: list[KubernetesResource]) -> None:
        global_resources = [r for r in resources if r.global_]
        if not global_resources:
            return
        names = "\n".join(
            f"{r.name} ({r.type}) in {os.path.basename(r.file_path)}" for r in global_resources
        )
        self.logger.summary.add_paragraph(f"Global resources:\n{indent_four(names)}")
        raise FatalDeploymentError(
            "This command is namespaced and cannot be used to deploy global resources."
        )

    def _check_initial_status(self, resources: list[KubernetesResource]) -> None:
        cache = ResourceCache(self.kubectl, self.discovery.global_resource_kinds)
        cache.prewarm(resources)
        split_across_threads(resources, lambda r: r.sync(cache))
        for resource in resources:
            self.logger.info(resource.pretty_status)
