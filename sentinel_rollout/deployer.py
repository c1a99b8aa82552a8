"""Mutate the cluster and verify the result."""

import json
import logging
import os
import re
import shlex
import tempfile
from typing import Optional, Sequence

from .concurrency import split_across_threads
from .errors import FatalDeploymentError, ResourceNotFoundError
from .kubectl import Kubectl, KubectlResult
from .label_selector import LabelSelector
from .logger import DeployLogger, indent_four, record_invalid_template
from .models import DeployMethod, DeployResult, RolloutOutcome, WatchResult
from .resources.base import KubernetesResource, pluralize, utcnow
from .resources.pod import Pod
from .watcher import ResourceWatcher

logger = logging.getLogger(__name__)

_PRUNED_LINE = re.compile(r"^(.*) pruned$", re.MULTILINE)
_TEMPLATE_PATH = re.compile(r'"(/\S+\.ya?ml\S*)"')

VERIFICATION_DISABLED_WARNING = (
    "Deploy result verification is disabled for this deploy.\n"
    "This means the desired changes were communicated to Kubernetes, "
    "but the deploy did not make sure they actually succeeded."
)
APPLY_FAILURE_WARNING = (
    "WARNING: Any resources not mentioned in the error(s) below were likely created/updated. "
    "You may wish to roll back this deploy."
)
SENSITIVE_APPLY_FAILURE_WARNING = (
    "WARNING: There was an error applying some or all resources. "
    "The raw output may be sensitive and so cannot be displayed."
)


class ResourceDeployer:
    """
    Sends manifests to the cluster and hands the result to a ResourceWatcher.

    Resources using the ``apply`` method go out in one batch (optionally
    pruning), everything else is created or replaced one at a time.
    """

    def __init__(
        self,
        kubectl: Kubectl,
        logger: DeployLogger,
        prune_whitelist: Sequence[str] = (),
        global_timeout: Optional[float] = None,
        selector: Optional[LabelSelector] = None,
        global_kinds: Sequence[str] = (),
        watcher_class=ResourceWatcher,
    ):
        """
        Initialize resource deployer.

        Args:
            kubectl: Client used for mutation and verification
            logger: Deploy logger
            prune_whitelist: group/version/kind strings eligible for pruning
            global_timeout: Maximum watch time for each verification pass
            selector: Restrict pruning to objects with these labels
            global_kinds: Cluster-scoped kinds, forwarded to the watcher's cache
            watcher_class: Watcher implementation
        """
        self.kubectl = kubectl
        self.logger = logger
        self.prune_whitelist = list(prune_whitelist)
        self.global_timeout = global_timeout
        self.selector = selector
        self.global_kinds = list(global_kinds)
        self.watcher_class = watcher_class

    def deploy(
        self,
        resources: Sequence[KubernetesResource],
        verify: bool = True,
        prune: bool = False,
    ) -> DeployResult:
        """
        Deploy every resource and optionally wait for the rollout to finish.

        Returns:
            DeployResult with the watch outcome, or SUCCEEDED when verification is off

        Raises:
            FatalDeploymentError: If the cluster rejected a mutation
        """
        watch_result = self._deploy_resources(resources, prune=prune, verify=verify)
        if verify:
            if watch_result.ok:
                return DeployResult.success(watch_result)
            return DeployResult(watch_result.outcome, [], watch_result)

        count = len(resources)
        self.logger.summary.add_action(f"deployed {count} {pluralize('resource', count)}")
        self.logger.summary.add_paragraph(VERIFICATION_DISABLED_WARNING)
        return DeployResult.success()

    def predeploy_priority_resources(
        self,
        resources: Sequence[KubernetesResource],
        predeploy_sequence: Sequence[str],
    ) -> DeployResult:
        """
        Deploy and verify priority kinds one group at a time.

        A group that does not fully succeed stops the sequence; later groups
        are never sent to the cluster.

        Args:
            resources: All resources of the deploy
            predeploy_sequence: Kinds to deploy first, in order

        Returns:
            DeployResult, FAILED (or TIMED_OUT) naming how many priority resources failed
        """
        bare_pods = [r for r in resources if isinstance(r, Pod)]
        if len(bare_pods) == 1:
            bare_pods[0].stream_logs = True

        for resource_type in predeploy_sequence:
            matching = [r for r in resources if r.type == resource_type]
            if not matching:
                continue
            watch_result = self._deploy_resources(matching, verify=True, record_summary=False)

            failed = [r for r in matching if not r.deploy_succeeded()]
            if failed:
                split_across_threads(failed, lambda r: r.sync_debug_info(self.kubectl))
                for resource in failed:
                    self.logger.summary.add_paragraph(resource.debug_message())
                count = len(failed)
                outcome = (
                    RolloutOutcome.TIMED_OUT
                    if watch_result.outcome == RolloutOutcome.TIMED_OUT
                    else RolloutOutcome.FAILED
                )
                return DeployResult(
                    outcome,
                    [f"Failed to deploy {count} priority {pluralize('resource', count)}"],
                    watch_result,
                )
            self.logger.blank_line()
        return DeployResult.success()

    def _deploy_resources(
        self,
        resources: Sequence[KubernetesResource],
        prune: bool = False,
        verify: bool = True,
        record_summary: bool = True,
    ) -> WatchResult:
        if not resources:
            return WatchResult(RolloutOutcome.SUCCEEDED)

        if len(resources) > 1:
            self.logger.info("Deploying resources:")
            for resource in resources:
                self.logger.info(f"- {resource.id} ({resource.pretty_timeout_type})")
        else:
            resource = resources[0]
            self.logger.info(f"Deploying {resource.id} ({resource.pretty_timeout_type})")

        applyables = [r for r in resources if r.deploy_method == DeployMethod.APPLY]
        individuals = [r for r in resources if r.deploy_method != DeployMethod.APPLY]
        prunable_types = {entry.split("/")[-1] for entry in self.prune_whitelist}
        applyables += [r for r in individuals if r.type in prunable_types]

        for resource in individuals:
            resource.deploy_started_at = utcnow()
            if resource.deploy_method == DeployMethod.CREATE:
                result = self._create_resource(resource)
            elif resource.deploy_method == DeployMethod.REPLACE:
                result = self._replace_or_create_resource(resource)
            elif resource.deploy_method == DeployMethod.REPLACE_FORCE:
                result = self._replace_or_create_resource(resource, force=True)
            else:
                raise ValueError(f"Unexpected deploy method! ({resource.deploy_method!r})")

            if not result.success:
                err = "<suppressed sensitive output>" if resource.sensitive_template_content else result.stderr
                raise FatalDeploymentError(f"Failed to replace or create resource: {resource.id}\n{err}")

        self._apply_all(applyables, prune)

        if not verify:
            return WatchResult(RolloutOutcome.SUCCEEDED, succeeded=list(resources))
        watcher = self.watcher_class(
            resources,
            logger=self.logger,
            kubectl=self.kubectl,
            global_timeout=self.global_timeout,
            global_kinds=self.global_kinds,
        )
        return watcher.run(record_summary=record_summary)

    def apply_command(self, directory: str, prune: bool) -> list[str]:
        """Build the bulk apply arguments for the manifests in ``directory``."""
        command = ["apply", "-f", directory]
        if prune and self.prune_whitelist:
            command.append("--prune")
            if self.selector:
                command.extend(["--selector", str(self.selector)])
            else:
                command.append("--all")
            command.extend(f"--prune-allowlist={entry}" for entry in self.prune_whitelist)
        return command

    def _apply_all(self, resources: Sequence[KubernetesResource], prune: bool) -> None:
        if not resources:
            return
        with tempfile.TemporaryDirectory() as tmp_dir:
            for resource in resources:
                path = resource.file_path
                os.symlink(path, os.path.join(tmp_dir, os.path.basename(path)))
                resource.deploy_started_at = utcnow()
            command = self.apply_command(tmp_dir, prune)
            logger.debug(f"Applying {len(resources)} manifests from {tmp_dir}")

            output_is_sensitive = any(r.sensitive_template_content for r in resources)
            global_mode = all(r.global_ for r in resources)
            result = self.kubectl.run(
                *command,
                log_failure=False,
                output_is_sensitive=output_is_sensitive,
                use_namespace=not global_mode,
            )

            if result.success:
                if prune:
                    self._log_pruning(result.stdout)
            else:
                self._record_apply_failure(result.stderr, resources)
                raise FatalDeploymentError(f"Command failed: {shlex.join(command)}")

    def _log_pruning(self, kubectl_output: str) -> None:
        pruned = _PRUNED_LINE.findall(kubectl_output or "")
        if not pruned:
            return
        self.logger.info(f"The following resources were pruned: {', '.join(pruned)}")
        self.logger.summary.add_action(f"pruned {len(pruned)} {pluralize('resource', len(pruned))}")

    def _record_apply_failure(self, err: str, resources: Sequence[KubernetesResource]) -> None:
        self.logger.summary.add_paragraph(APPLY_FAILURE_WARNING)

        sensitive_files = {
            os.path.basename(r.file_path) for r in resources if r.sensitive_template_content
        }
        dry_run_validated = {
            os.path.basename(r.file_path) for r in resources if r.server_dry_run_validated
        }

        unidentified_errors = []
        for line in (err or "").splitlines(keepends=True):
            bad_files = self._find_bad_files(line)
            if not bad_files:
                unidentified_errors.append(line)
                continue
            for filename, content in bad_files:
                if filename in sensitive_files:
                    # Server dry-run already vetted the content of validated files
                    err_msg = line if filename in dry_run_validated else "SUPPRESSED FOR SECURITY"
                    record_invalid_template(self.logger, err_msg, filename, content=None)
                else:
                    record_invalid_template(self.logger, line, filename, content=content)

        if not unidentified_errors:
            return
        if sensitive_files - dry_run_validated:
            self.logger.summary.add_paragraph(SENSITIVE_APPLY_FAILURE_WARNING)
        else:
            self.logger.summary.add_paragraph(
                f"Unidentified error(s):\n{indent_four(''.join(unidentified_errors))}"
            )

    @staticmethod
    def _find_bad_files(line: str) -> list[tuple[str, Optional[str]]]:
        bad_files = []
        for path in _TEMPLATE_PATH.findall(line):
            content = None
            if os.path.isfile(path):
                with open(path, encoding="utf-8") as f:
                    content = f.read()
            bad_files.append((os.path.basename(path), content))
        return bad_files

    def _replace_or_create_resource(self, resource: KubernetesResource, force: bool = False) -> KubectlResult:
        if force:
            args = ["replace", "--force", "--cascade=background", "-f", resource.file_path]
        else:
            args = ["replace", "-f", resource.file_path]
        try:
            return self.kubectl.run(
                *args,
                log_failure=False,
                output_is_sensitive=resource.sensitive_template_content,
                raise_if_not_found=True,
                use_namespace=not resource.global_,
            )
        except ResourceNotFoundError:
            return self._create_resource(resource)

    def _create_resource(self, resource: KubernetesResource) -> KubectlResult:
        result = self.kubectl.run(
            "create",
            "-f",
            resource.file_path,
            log_failure=False,
            output="json",
            output_is_sensitive=resource.sensitive_template_content,
            use_namespace=not resource.global_,
        )
        if result.success and resource.uses_generate_name:
            resource.use_generated_name(json.loads(result.stdout))
        return result
