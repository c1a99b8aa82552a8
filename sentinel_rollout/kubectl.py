"""Subprocess-based kubectl client."""

import json
import logging
import re
import shlex
import subprocess
import time
from typing import Callable, NamedTuple, Optional

from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_exponential

from .config import get_settings
from .errors import KubectlError, ResourceNotFoundError
from .logger import DeployLogger

ERROR_MATCHERS = {
    "not_found": re.compile(r"NotFound"),
    "client_timeout": re.compile(r"Client\.Timeout exceeded while awaiting headers"),
    "empty": re.compile(r"\A\Z"),
    "context_deadline": re.compile(r"context deadline exceeded"),
}
MAX_RETRY_DELAY = 16
SERVER_DRY_RUN_MIN_VERSION = (1, 13)

_VERSION_PATTERN = re.compile(r"v?(\d+)\.(\d+)\.(\d+)")


class KubectlResult(NamedTuple):
    """Captured output of one kubectl invocation."""

    stdout: str
    stderr: str
    exit_status: int

    @property
    def success(self) -> bool:
        return self.exit_status == 0


def parse_version(text: str) -> tuple[int, int, int]:
    match = _VERSION_PATTERN.search(text or "")
    if not match:
        raise KubectlError(f"Could not parse version from {text!r}")
    return tuple(int(part) for part in match.groups())


class Kubectl:
    """
    Thin wrapper around the kubectl binary.

    Every call is scoped to the configured namespace and context unless told
    otherwise. Failed calls whose stderr matches the retry whitelist are
    retried with exponential backoff.
    """

    def __init__(
        self,
        namespace: Optional[str],
        context: str,
        logger: DeployLogger,
        log_failure_by_default: bool = True,
        default_timeout: Optional[int] = None,
        output_is_sensitive_default: bool = False,
        executable: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize kubectl client.

        Args:
            namespace: Namespace passed as --namespace
            context: Kubeconfig context passed as --context
            logger: Deploy logger
            log_failure_by_default: Warn about failed commands unless overridden per call
            default_timeout: --request-timeout in seconds (defaults to settings)
            output_is_sensitive_default: Suppress stdout/stderr in logs
            executable: kubectl binary (defaults to settings)
            sleep: Sleep function used between retries
        """
        settings = get_settings()
        self.namespace = namespace
        self.context = context
        self.logger = logger
        self.log_failure_by_default = log_failure_by_default
        self.default_timeout = (
            settings.kubectl_request_timeout if default_timeout is None else default_timeout
        )
        self.output_is_sensitive_default = output_is_sensitive_default
        self.executable = executable or settings.kubectl_executable
        self._sleep = sleep
        self._server_version: Optional[tuple[int, int, int]] = None

    def run(
        self,
        *args: str,
        log_failure: Optional[bool] = None,
        use_context: bool = True,
        use_namespace: bool = True,
        output: Optional[str] = None,
        raise_if_not_found: bool = False,
        attempts: int = 1,
        output_is_sensitive: Optional[bool] = None,
        retry_whitelist: Optional[list[str]] = None,
    ) -> KubectlResult:
        """
        Run a kubectl command.

        Args:
            *args: kubectl arguments, e.g. ("get", "pods")
            log_failure: Warn about failures
            use_context: Append --context
            use_namespace: Append --namespace
            output: Value for --output
            raise_if_not_found: Raise ResourceNotFoundError on NotFound errors
            attempts: Maximum number of attempts
            output_is_sensitive: Never log stdout/stderr
            retry_whitelist: Error matcher names that make a failure retriable

        Returns:
            KubectlResult of the last attempt

        Raises:
            ValueError: If a namespace is required but not configured
            ResourceNotFoundError: If raise_if_not_found and the object does not exist
        """
        if use_namespace and not self.namespace:
            raise ValueError("namespace is required")
        if log_failure is None:
            log_failure = self.log_failure_by_default
        if output_is_sensitive is None:
            output_is_sensitive = self.output_is_sensitive_default
        for name in retry_whitelist or []:
            if name not in ERROR_MATCHERS:
                raise NotImplementedError(f"No matcher defined for {name!r}")

        cmd = self._build_command(args, use_namespace, use_context, output)
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, min=1, max=MAX_RETRY_DELAY),
            retry=retry_if_result(
                lambda result: not result.success and self._retriable(result.stderr, retry_whitelist)
            ),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            sleep=self._sleep,
        )
        result = None
        for attempt in retrying:
            with attempt:
                result = self._run_once(
                    cmd,
                    attempt.retry_state.attempt_number,
                    attempts,
                    log_failure=log_failure,
                    raise_if_not_found=raise_if_not_found,
                    output_is_sensitive=output_is_sensitive,
                    retry_whitelist=retry_whitelist,
                )
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(result)
        return result

    def _run_once(
        self,
        cmd: list[str],
        current_attempt: int,
        attempts: int,
        log_failure: bool,
        raise_if_not_found: bool,
        output_is_sensitive: bool,
        retry_whitelist: Optional[list[str]],
    ) -> KubectlResult:
        self.logger.debug(f"Running command (attempt {current_attempt}): {' '.join(cmd)}")
        completed = subprocess.run(cmd, capture_output=True, text=True, encoding="utf-8", errors="replace")
        result = KubectlResult(completed.stdout.rstrip("\n"), completed.stderr.rstrip("\n"), completed.returncode)

        if not output_is_sensitive and self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("Kubectl out: " + re.sub(r"\s+", " ", result.stdout))

        if result.success:
            return result
        if raise_if_not_found and ERROR_MATCHERS["not_found"].search(result.stderr):
            raise ResourceNotFoundError(result.stderr)

        if log_failure:
            if current_attempt == attempts:
                warning = f"The following command failed (attempt {current_attempt}/{attempts})"
            elif self._retriable(result.stderr, retry_whitelist):
                warning = (
                    f"The following command failed and will be retried "
                    f"(attempt {current_attempt}/{attempts})"
                )
            else:
                warning = "The following command failed and cannot be retried"
            self.logger.warning(f"{warning}: {shlex.join(cmd)}")
            if not output_is_sensitive:
                self.logger.warning(result.stderr)
        else:
            stderr = "<suppressed sensitive output>" if output_is_sensitive else result.stderr
            self.logger.debug(f"Kubectl err: {stderr}")
        return result

    def server_version(self) -> tuple[int, int, int]:
        """
        Get the API server version.

        Returns:
            (major, minor, patch) tuple

        Raises:
            KubectlError: If the version cannot be retrieved
        """
        if self._server_version is None:
            result = self.run("version", use_namespace=False, log_failure=True, output="json")
            if not result.success:
                raise KubectlError("Could not retrieve kubectl version info")
            try:
                info = json.loads(result.stdout)
            except json.JSONDecodeError as e:
                raise KubectlError(f"Could not parse kubectl version info: {e}") from e
            git_version = (info.get("serverVersion") or {}).get("gitVersion")
            self._server_version = parse_version(git_version)
        return self._server_version

    def server_dry_run_enabled(self) -> bool:
        return self.server_version()[:2] >= SERVER_DRY_RUN_MIN_VERSION

    def _build_command(
        self,
        args,
        use_namespace: bool,
        use_context: bool,
        output: Optional[str],
    ) -> list[str]:
        cmd = [self.executable, *args]
        if use_namespace:
            cmd.append(f"--namespace={self.namespace}")
        if use_context:
            cmd.append(f"--context={self.context}")
        if output:
            cmd.append(f"--output={output}")
        if self.default_timeout:
            cmd.append(f"--request-timeout={self.default_timeout}")
        return cmd

    @staticmethod
    def _retriable(stderr: str, retry_whitelist: Optional[list[str]]) -> bool:
        if retry_whitelist is None:
            return not ERROR_MATCHERS["not_found"].search(stderr)
        return any(ERROR_MATCHERS[name].search(stderr) for name in retry_whitelist)
