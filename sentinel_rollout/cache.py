"""Per-sync read cache of live cluster objects."""

import json
import logging
import threading
from typing import Any, Iterable, Optional

from .concurrency import split_across_threads
from .errors import KubectlError, ResourceNotFoundError
from .kubectl import Kubectl

logger = logging.getLogger(__name__)

SENSITIVE_KINDS = frozenset({"Secret"})
DEFAULT_GLOBAL_KINDS = frozenset({"Node", "StorageClass", "CustomResourceDefinition", "Namespace"})


class ResourceCache:
    """
    Lazily populated cache mapping kind -> name -> live object.

    The first caller to ask for a kind lists every object of that kind with a
    single kubectl call; concurrent callers for the same kind block on a
    per-kind lock and reuse the result. A new cache is created for each sync
    pass so data never outlives one watcher tick.
    """

    def __init__(self, kubectl: Kubectl, global_kinds: Optional[Iterable[str]] = None):
        """
        Initialize resource cache.

        Args:
            kubectl: Client used to list objects (failures are not logged)
            global_kinds: Cluster-scoped kinds, listed without --namespace
        """
        self.kubectl = kubectl
        self.global_kinds = set(DEFAULT_GLOBAL_KINDS) | set(global_kinds or [])
        self._kind_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._data: dict[str, dict[str, dict[str, Any]]] = {}

    def get_instance(
        self,
        kind: str,
        name: str,
        raise_if_not_found: bool = False,
    ) -> dict[str, Any]:
        """
        Get one live object.

        Returns:
            The object, or an empty dict if it does not exist or listing failed

        Raises:
            ResourceNotFoundError: If raise_if_not_found and the object is missing
        """
        try:
            instance = self._use_or_populate(kind).get(name, {})
        except KubectlError:
            return {}
        if not instance and raise_if_not_found:
            raise ResourceNotFoundError(f"Resource does not exist (used cache for kind {kind})")
        return instance

    def get_all(self, kind: str, selector: Optional[dict[str, str]] = None) -> list[dict[str, Any]]:
        """
        Get every live object of a kind, optionally filtered by labels.

        Args:
            kind: Resource kind
            selector: Labels every returned object must carry

        Returns:
            Matching objects (empty if listing failed)
        """
        try:
            instances = list(self._use_or_populate(kind).values())
        except KubectlError:
            return []
        if not selector:
            return instances
        return [
            instance
            for instance in instances
            if selector.items() <= ((instance.get("metadata") or {}).get("labels") or {}).items()
        ]

    def prewarm(self, resources: Iterable[Any]) -> None:
        """Populate the cache for the given resources and their sync dependencies."""
        kinds: list[str] = []
        for resource in resources:
            for kind in (resource.kubectl_resource_type, *resource.sync_dependencies):
                if kind not in kinds:
                    kinds.append(kind)
        split_across_threads(kinds, self.get_all, max_threads=len(kinds) or None)

    def _lock_for(self, kind: str) -> threading.Lock:
        with self._locks_guard:
            return self._kind_locks.setdefault(kind, threading.Lock())

    def _use_or_populate(self, kind: str) -> dict[str, dict[str, Any]]:
        with self._lock_for(kind):
            if kind not in self._data:
                self._data[kind] = self._fetch(kind)
            return self._data[kind]

    def _fetch(self, kind: str) -> dict[str, dict[str, Any]]:
        result = self.kubectl.run(
            "get",
            kind,
            "--chunk-size=0",
            attempts=5,
            output="json",
            output_is_sensitive=kind in SENSITIVE_KINDS,
            use_namespace=kind not in self.global_kinds,
        )
        if not result.success:
            raise KubectlError(f"Failed to list {kind}")
        try:
            items = json.loads(result.stdout).get("items") or []
        except json.JSONDecodeError as e:
            raise KubectlError(f"Could not parse {kind} list: {e}") from e
        logger.debug(f"Cached {len(items)} {kind} objects")
        return {item["metadata"]["name"]: item for item in items}
