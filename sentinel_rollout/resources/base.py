"""Base Kubernetes resource with rollout-tracking state."""

import os
import re
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import yaml

from ..config import get_settings
from ..duration import DurationParsingError, parse_duration
from ..errors import ResourceNotFoundError
from ..events import Event
from ..label_selector import LabelSelector
from ..logger import DeployLogger
from ..models import DeployMethod
from ..remote_logs import DEFAULT_LINE_LIMIT, RemoteLogs

ANNOTATION_PREFIX = "rollout.sentinel.io"

TIMEOUT_OVERRIDE_ANNOTATION = "timeout-override"
DEPLOY_METHOD_OVERRIDE_ANNOTATION = "deploy-method-override"
ALLOWED_DEPLOY_METHOD_OVERRIDES = ["create", "replace", "replace-force"]
MAX_TIMEOUT_OVERRIDE = 24 * 60 * 60

DEBUG_RESOURCE_NOT_FOUND_MESSAGE = "None found. Please check your usual logging service (e.g. Splunk)."
DISABLED_LOG_INFO_MESSAGE = "collection is disabled by the SENTINEL_ROLLOUT_DISABLE_FETCHING_LOG_INFO setting."
DISABLED_EVENT_INFO_MESSAGE = "collection is disabled by the SENTINEL_ROLLOUT_DISABLE_FETCHING_EVENT_INFO setting."
UNUSUAL_FAILURE_MESSAGE = (
    "It is very unusual for this resource type to fail to deploy. Please try the deploy again.\n"
    "If that new deploy also fails, contact your cluster administrator.\n"
)
STANDARD_TIMEOUT_MESSAGE = (
    "Kubernetes will continue to attempt to deploy this resource in the cluster, but at this point "
    "it is considered unlikely that it will succeed.\n"
    "If you have reason to believe it will succeed, retry the deploy to continue to monitor the rollout.\n"
)
SERVER_DRY_RUN_DISABLED_ERROR = re.compile(
    r"(unknown flag: --server-dry-run)|(does[\s']n[o|']t support dry[-\s]run)|(dryRun alpha feature is disabled)"
)
DRY_RUN_RETRY_WHITELIST = ["client_timeout", "empty", "context_deadline"]


def annotation_key(suffix: str) -> str:
    return f"{ANNOTATION_PREFIX}/{suffix}"


def dig(data: Optional[dict], *keys, default=None):
    """Walk nested dicts/lists, returning ``default`` as soon as a step is missing."""
    current: Any = data
    for key in keys:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int) and -len(current) <= key < len(current):
            current = current[key]
        else:
            return default
        if current is None:
            return default
    return current


def pluralize(word: str, count) -> str:
    return word if count == 1 else f"{word}s"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KubernetesResource:
    """
    One manifest being deployed, plus what was last observed about it.

    Subclasses override ``_deploy_succeeded``/``_deploy_failed`` (and usually
    ``status``); the public predicates always report False before the
    resource's deploy has started. This base class doubles as the fallback
    for kinds without dedicated rollout knowledge.
    """

    KIND: Optional[str] = None
    TIMEOUT = 5 * 60
    GLOBAL = False
    SENSITIVE_TEMPLATE_CONTENT = False
    SERVER_DRY_RUNNABLE = False
    SYNC_DEPENDENCIES: tuple[str, ...] = ()

    def __init__(
        self,
        definition: dict[str, Any],
        namespace: Optional[str],
        context: Optional[str],
        logger: DeployLogger,
        kind: Optional[str] = None,
        global_: bool = False,
        deploy_started_at: Optional[datetime] = None,
    ):
        metadata = definition.get("metadata") or {}
        self.definition = definition
        self.name = str(metadata.get("name") or metadata.get("generateName") or "")
        self.namespace = namespace
        self.context = context
        self.logger = logger
        self._type = kind
        self._global = global_
        self.deploy_started_at = deploy_started_at
        self.instance_data: dict[str, Any] = {}
        self.validation_errors: list[str] = []
        self.server_dry_run_validated = False
        self._disappeared = False
        self._success_assumption_warning_shown = False
        self._file_path: Optional[str] = None
        self._debug_events: dict[str, list[str]] = {}
        self._debug_logs: Optional[RemoteLogs] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"

    # Identity

    @property
    def type(self) -> str:
        return self._type or self.KIND or type(self).__name__

    @property
    def id(self) -> str:
        return f"{self.type}/{self.name}"

    @property
    def kubectl_resource_type(self) -> str:
        return self.type

    @property
    def sync_dependencies(self) -> tuple[str, ...]:
        return self.SYNC_DEPENDENCIES

    @property
    def global_(self) -> bool:
        return self._global or self.GLOBAL

    @property
    def group(self) -> str:
        group, _, version = (self.definition.get("apiVersion") or "").rpartition("/")
        return group or "core"

    @property
    def labels(self) -> Optional[dict[str, str]]:
        return dig(self.definition, "metadata", "labels")

    @property
    def sensitive_template_content(self) -> bool:
        return self.SENSITIVE_TEMPLATE_CONTENT

    def annotation_value(self, suffix: str) -> Optional[str]:
        return dig(self.definition, "metadata", "annotations", annotation_key(suffix))

    # Observed state

    @property
    def exists(self) -> bool:
        return bool(self.instance_data)

    @property
    def disappeared(self) -> bool:
        return self._disappeared

    @property
    def deploy_started(self) -> bool:
        return self.deploy_started_at is not None

    @property
    def terminating(self) -> bool:
        return bool(dig(self.instance_data, "metadata", "deletionTimestamp"))

    @property
    def current_generation(self):
        if not self.exists:
            return -1
        return dig(self.instance_data, "metadata", "generation")

    @property
    def observed_generation(self):
        if not self.exists:
            return -2
        return dig(self.instance_data, "status", "observedGeneration")

    @property
    def status(self) -> str:
        return "Exists" if self.exists else "Not Found"

    def sync(self, cache) -> None:
        """Refresh ``instance_data`` from the cache."""
        try:
            self.instance_data = cache.get_instance(
                self.kubectl_resource_type, self.name, raise_if_not_found=True
            )
        except ResourceNotFoundError:
            if self.deploy_started:
                self._disappeared = True
            self.instance_data = {}

    def after_sync(self) -> None:
        pass

    # Rollout predicates

    def deploy_failed(self) -> bool:
        if not self.deploy_started:
            return False
        return bool(self._deploy_failed())

    def deploy_succeeded(self) -> bool:
        if not self.deploy_started:
            return False
        if self._deploy_failed():
            return False
        return bool(self._deploy_succeeded())

    def deploy_timed_out(self) -> bool:
        if not self.deploy_started:
            return False
        if self.deploy_succeeded() or self.deploy_failed():
            return False
        return utcnow() - self.deploy_started_at > timedelta(seconds=self.timeout)

    def _deploy_succeeded(self) -> bool:
        if not self._success_assumption_warning_shown:
            self.logger.warning(
                f"Don't know how to monitor resources of type {self.type}. "
                f"Assuming {self.id} deployed successfully."
            )
            self._success_assumption_warning_shown = True
        return True

    def _deploy_failed(self) -> bool:
        return False

    # Timeouts

    @property
    def timeout_override(self) -> Optional[int]:
        try:
            return int(parse_duration(self.annotation_value(TIMEOUT_OVERRIDE_ANNOTATION)))
        except DurationParsingError:
            return None

    @property
    def timeout(self) -> float:
        return self.timeout_override or self.TIMEOUT

    @property
    def pretty_timeout_type(self) -> str:
        return f"timeout: {int(self.timeout)}s"

    def timeout_message(self) -> Optional[str]:
        return STANDARD_TIMEOUT_MESSAGE

    def failure_message(self) -> Optional[str]:
        return None

    # Deploy method

    @property
    def uses_generate_name(self) -> bool:
        return bool(dig(self.definition, "metadata", "generateName"))

    @property
    def deploy_method_override(self) -> Optional[DeployMethod]:
        value = self.annotation_value(DEPLOY_METHOD_OVERRIDE_ANNOTATION)
        if value in ALLOWED_DEPLOY_METHOD_OVERRIDES:
            return DeployMethod(value)
        return None

    @property
    def deploy_method(self) -> DeployMethod:
        if not dig(self.definition, "metadata", "name") and self.uses_generate_name:
            return DeployMethod.CREATE
        return self.deploy_method_override or DeployMethod.APPLY

    @property
    def server_dry_runnable(self) -> bool:
        # generateName only works with create, server dry-run only with apply
        return self.SERVER_DRY_RUNNABLE and not self.uses_generate_name

    def use_generated_name(self, instance_data: dict[str, Any]) -> None:
        """Adopt the name the API server generated for a ``generateName`` resource."""
        self.name = dig(instance_data, "metadata", "name")
        metadata = self.definition.setdefault("metadata", {})
        metadata["name"] = self.name
        metadata.pop("generateName", None)
        self.discard_definition_file()

    # Definition file

    @property
    def file_path(self) -> str:
        if self._file_path is None:
            safe_name = re.sub(r"[^A-Za-z0-9_.-]", "-", f"{self.type}-{self.name}")
            with tempfile.NamedTemporaryFile(
                mode="w", prefix=safe_name, suffix=".yml", delete=False
            ) as f:
                yaml.safe_dump(self.definition, f, default_flow_style=False)
                self._file_path = f.name
        return self._file_path

    def discard_definition_file(self) -> None:
        if self._file_path and os.path.exists(self._file_path):
            os.unlink(self._file_path)
        self._file_path = None

    # Validation

    @property
    def validation_failed(self) -> bool:
        return bool(self.validation_errors)

    @property
    def validation_error_msg(self) -> str:
        return "\n".join(self.validation_errors)

    def validate_definition(self, kubectl=None, selector: Optional[LabelSelector] = None) -> None:
        """
        Validate the manifest, accumulating problems in ``validation_errors``.

        Args:
            kubectl: When given, the manifest is also dry-run against the cluster
            selector: Label selector every deployed resource must match
        """
        self.validation_errors = []
        if selector:
            self._validate_selector(selector)
        self._validate_timeout_annotation()
        self._validate_deploy_method_override_annotation()
        if kubectl is not None:
            self._validate_spec_with_kubectl(kubectl)

    def _validate_selector(self, selector: LabelSelector) -> None:
        labels = self.labels
        if labels is None:
            self.validation_errors.append(f"selector {selector} passed in, but no labels were defined")
            return
        if not selector.matches(labels):
            label_name = pluralize("label", len(labels))
            self.validation_errors.append(
                f"selector {selector} does not match {label_name} {LabelSelector(labels)}"
            )

    def _validate_timeout_annotation(self) -> None:
        value = self.annotation_value(TIMEOUT_OVERRIDE_ANNOTATION)
        if value is None:
            return
        key = annotation_key(TIMEOUT_OVERRIDE_ANNOTATION)
        try:
            override = parse_duration(value)
        except DurationParsingError as e:
            self.validation_errors.append(f"{key} annotation is invalid: {e}")
            return
        if override <= 0:
            self.validation_errors.append(f"{key} annotation is invalid: Value must be greater than 0")
        elif override > MAX_TIMEOUT_OVERRIDE:
            self.validation_errors.append(f"{key} annotation is invalid: Value must be less than 24h")

    def _validate_deploy_method_override_annotation(self) -> None:
        value = self.annotation_value(DEPLOY_METHOD_OVERRIDE_ANNOTATION)
        if value is None or value in ALLOWED_DEPLOY_METHOD_OVERRIDES:
            return
        self.validation_errors.append(
            f"{annotation_key(DEPLOY_METHOD_OVERRIDE_ANNOTATION)} is invalid: Accepted values are: "
            f"{', '.join(ALLOWED_DEPLOY_METHOD_OVERRIDES)} but got {value}"
        )

    def _validate_spec_with_kubectl(self, kubectl) -> None:
        err = ""
        result = None
        if self.server_dry_runnable and kubectl.server_dry_run_enabled():
            result = kubectl.run(
                "apply", "-f", self.file_path, "--dry-run=server",
                output="name",
                log_failure=False,
                output_is_sensitive=self.sensitive_template_content,
                retry_whitelist=DRY_RUN_RETRY_WHITELIST,
                attempts=3,
            )
            self.server_dry_run_validated = result.success
            if result.success:
                return
            err = result.stderr

        if not err or SERVER_DRY_RUN_DISABLED_ERROR.search(err):
            verb = "apply" if self.deploy_method == DeployMethod.APPLY else "create"
            result = kubectl.run(
                verb, "-f", self.file_path, "--dry-run=client",
                output="name",
                log_failure=False,
                output_is_sensitive=self.sensitive_template_content,
                retry_whitelist=DRY_RUN_RETRY_WHITELIST,
                attempts=3,
                use_namespace=not self.global_,
            )
            if result.success:
                return
            err = result.stderr

        if self.sensitive_template_content:
            self.validation_errors.append(
                f"Validation for {self.id} failed. Detailed information is unavailable "
                "as the raw error may contain sensitive data."
            )
        else:
            self.validation_errors.append(err)

    # Debug information

    @property
    def print_debug_logs(self) -> bool:
        return False

    def fetch_debug_logs(self, kubectl) -> Optional[RemoteLogs]:
        return None

    def fetch_events(self, kubectl) -> dict[str, list[str]]:
        """
        Fetch recent non-routine events about this resource.

        Returns:
            Mapping of resource id to formatted event lines
        """
        if not self.exists:
            return {}
        result = kubectl.run(
            "get",
            "events",
            f"--output=go-template={Event.go_template_for(self.type, self.name)}",
            log_failure=False,
            use_namespace=not self.global_,
        )
        if not result.success:
            return {}
        since = (self.deploy_started_at or utcnow()) - timedelta(seconds=5)
        lines = [str(event) for event in Event.extract_all(result.stdout) if event.seen_since(since)]
        return {self.id: lines} if lines else {}

    def sync_debug_info(self, kubectl) -> None:
        settings = get_settings()
        if not settings.disable_fetching_event_info:
            self._debug_events = self.fetch_events(kubectl)
        if self.print_debug_logs and not settings.disable_fetching_log_info:
            self._debug_logs = self.fetch_debug_logs(kubectl)

    def debug_message(self, cause: Optional[str] = None, timeout: Optional[float] = None) -> str:
        """Build the summary paragraph explaining why this resource did not succeed."""
        settings = get_settings()
        helpful_info: list[str] = []
        if cause == "gave_up":
            heading = f"{self.id}: GLOBAL WATCH TIMEOUT ({timeout} seconds)"
            helpful_info.append(
                f"If you expected it to take longer than {timeout} seconds for your deploy "
                "to roll out, increase the global timeout."
            )
        elif self.deploy_failed():
            heading = f"{self.id}: FAILED"
            if self.failure_message():
                helpful_info.append(self.failure_message())
        elif self.deploy_timed_out():
            heading = f"{self.id}: TIMED OUT ({self.pretty_timeout_type})"
            if self.timeout_message():
                helpful_info.append(self.timeout_message())
        else:
            heading = f"{self.id}: MONITORING ERROR"
            if self.failure_message():
                helpful_info.append(self.failure_message())
            if self.timeout_message() and self.timeout_message() != STANDARD_TIMEOUT_MESSAGE:
                helpful_info.append(self.timeout_message())

        final_status = f"  - Final status: {self.status}"
        if helpful_info and not helpful_info[-1].endswith("\n"):
            final_status = f"\n{final_status}"
        helpful_info.insert(0, heading)
        helpful_info.append(final_status)

        if self._debug_events:
            helpful_info.append("  - Events (common success events excluded):")
            for identifier, events in self._debug_events.items():
                helpful_info.extend(f"      [{identifier}]\t{event}" for event in events)
        elif settings.disable_fetching_event_info:
            helpful_info.append(f"  - Events: {DISABLED_EVENT_INFO_MESSAGE}")
        else:
            helpful_info.append(f"  - Events: {DEBUG_RESOURCE_NOT_FOUND_MESSAGE}")

        if self.print_debug_logs:
            if settings.disable_fetching_log_info:
                helpful_info.append(f"  - Logs: {DISABLED_LOG_INFO_MESSAGE}")
            elif not self._debug_logs or self._debug_logs.empty:
                helpful_info.append(f"  - Logs: {DEBUG_RESOURCE_NOT_FOUND_MESSAGE}")
            else:
                for logs in sorted(self._debug_logs.container_logs, key=lambda c: len(c.lines)):
                    if logs.empty:
                        helpful_info.append(
                            f"  - Logs from container '{logs.container_name}': {DEBUG_RESOURCE_NOT_FOUND_MESSAGE}"
                        )
                        continue
                    truncated = ""
                    if len(logs.lines) == DEFAULT_LINE_LIMIT:
                        truncated = f" (last {DEFAULT_LINE_LIMIT} lines shown)"
                    helpful_info.append(f"  - Logs from container '{logs.container_name}'{truncated}:")
                    helpful_info.extend(f"      {line}" for line in logs.lines)

        return "\n".join(helpful_info)

    @property
    def pretty_status(self) -> str:
        padding = " " * max(50 - len(self.id), 1)
        return f"{self.id}{padding}{self.status}"


def generation_is_current(resource: KubernetesResource) -> bool:
    """True when the controller has observed the latest spec."""
    return resource.observed_generation == resource.current_generation


def rollout_counts_status(rollout_data: dict[str, Any], singularize: bool = True) -> str:
    """Render replica counts like "3 replicas, 1 updatedReplica"."""
    parts = []
    for state, count in rollout_data.items():
        word = state[:-1] if singularize and state.endswith("s") else state
        parts.append(f"{count} {pluralize(word, count) if singularize else word}")
    return ", ".join(parts)

