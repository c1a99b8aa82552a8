"""Typed Kubernetes API access for a single kubeconfig context."""

import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client import ApiClient, ApiextensionsV1Api, ApisApi, CoreV1Api
from kubernetes.client.exceptions import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, ApiException) and (error.status is None or error.status >= 500)


class ClusterConnection:
    """Connection to the cluster named by a kubeconfig context."""

    def __init__(
        self,
        context: Optional[str],
        kubeconfig_path: Optional[str] = None,
        api_client: Optional[ApiClient] = None,
    ):
        """
        Initialize cluster connection.

        Args:
            context: Kubeconfig context to use (None for in-cluster config)
            kubeconfig_path: Kubeconfig file (defaults to $KUBECONFIG / ~/.kube/config)
            api_client: Preconfigured client, skips kubeconfig loading

        Raises:
            ValueError: If the kubeconfig cannot be loaded
        """
        self.context = context
        self.kubeconfig_path = kubeconfig_path
        self._api_client = api_client or self._load_client()
        self._core_v1: Optional[CoreV1Api] = None
        self._apis: Optional[ApisApi] = None
        self._apiextensions_v1: Optional[ApiextensionsV1Api] = None

    def _load_client(self) -> ApiClient:
        try:
            if self.context or self.kubeconfig_path:
                configuration = client.Configuration()
                config.load_kube_config(
                    config_file=self.kubeconfig_path,
                    context=self.context,
                    client_configuration=configuration,
                )
            else:
                configuration = client.Configuration()
                config.load_incluster_config(client_configuration=configuration)
            return ApiClient(configuration)
        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def api_client(self) -> ApiClient:
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client

    @property
    def core_v1(self) -> CoreV1Api:
        if self._core_v1 is None:
            self._core_v1 = CoreV1Api(self.api_client)
        return self._core_v1

    @property
    def apis(self) -> ApisApi:
        if self._apis is None:
            self._apis = ApisApi(self.api_client)
        return self._apis

    @property
    def apiextensions_v1(self) -> ApiextensionsV1Api:
        if self._apiextensions_v1 is None:
            self._apiextensions_v1 = ApiextensionsV1Api(self.api_client)
        return self._apiextensions_v1

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    def namespace_exists(self, name: str) -> bool:
        """
        Check whether a namespace exists.

        Args:
            name: Namespace name

        Returns:
            True if the namespace exists, False on 404

        Raises:
            ApiException: For errors other than not found
        """
        try:
            self.core_v1.read_namespace(name=name)
            return True
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"Namespace {name} not found in context {self.context}")
                return False
            raise

    def close(self):
        """Close the underlying API client."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None
        self._core_v1 = None
        self._apis = None
        self._apiextensions_v1 = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
