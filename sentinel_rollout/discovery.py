"""Discover CRDs and API resource kinds from the cluster."""

import logging
from dataclasses import dataclass
from typing import Optional

from kubernetes.client.exceptions import ApiException
from tenacity import retry, stop_after_attempt, wait_exponential

from .cluster import ClusterConnection
from .logger import DeployLogger
from .resources.custom import CustomResourceDefinition

logger = logging.getLogger(__name__)


@dataclass
class ApiResource:
    """One kind served by the API server."""

    group: str
    version: str
    kind: str
    namespaced: bool


class ClusterResourceDiscovery:
    """Answers questions about what the cluster serves, caching each answer."""

    def __init__(self, connection: ClusterConnection, namespace: Optional[str], logger: DeployLogger):
        """
        Initialize discovery.

        Args:
            connection: Typed cluster connection
            namespace: Namespace the discovered CRD objects are attached to
            logger: Deploy logger
        """
        self.connection = connection
        self.namespace = namespace
        self.logger = logger
        self._crds: Optional[list[CustomResourceDefinition]] = None
        self._api_resources: Optional[list[ApiResource]] = None

    @property
    def crds(self) -> list[CustomResourceDefinition]:
        if self._crds is None:
            self._crds = [
                CustomResourceDefinition(
                    definition, self.namespace, self.connection.context, self.logger
                )
                for definition in self._fetch_crds()
            ]
        return self._crds

    @property
    def global_resource_kinds(self) -> list[str]:
        return [r.kind for r in self.api_resources if not r.namespaced]

    @property
    def api_resources(self) -> list[ApiResource]:
        if self._api_resources is None:
            self._api_resources = self._fetch_api_resources()
        return self._api_resources

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    def _fetch_crds(self) -> list[dict]:
        response = self.connection.apiextensions_v1.list_custom_resource_definition()
        serialize = self.connection.api_client.sanitize_for_serialization
        return [serialize(item) for item in response.items or []]

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    def _fetch_api_resources(self) -> list[ApiResource]:
        resources = self._to_api_resources("", "v1", self.connection.core_v1.get_api_resources())

        for api_group in self.connection.apis.get_api_versions().groups or []:
            preferred = api_group.preferred_version or api_group.versions[0]
            try:
                resource_list = self.connection.api_client.call_api(
                    f"/apis/{preferred.group_version}",
                    "GET",
                    response_type="V1APIResourceList",
                    auth_settings=["BearerToken"],
                    _return_http_data_only=True,
                )
            except ApiException as e:
                # Aggregated APIs can be unavailable without affecting the deploy
                logger.warning(f"Skipping API group {preferred.group_version}: {e.status} {e.reason}")
                continue
            resources.extend(self._to_api_resources(api_group.name, preferred.version, resource_list))
        return resources

    @staticmethod
    def _to_api_resources(group: str, version: str, resource_list) -> list[ApiResource]:
        return [
            ApiResource(
                group=group,
                version=version,
                kind=resource.kind,
                namespaced=bool(resource.namespaced),
            )
            for resource in resource_list.resources or []
            if "/" not in resource.name
        ]
