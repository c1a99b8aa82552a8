"""Container log retrieval for pods and pod-owning resources."""

from datetime import datetime
from typing import Optional

from .events import parse_timestamp
from .kubectl import Kubectl
from .logger import DeployLogger

DEFAULT_LINE_LIMIT = 250


class ContainerLogs:
    """Incrementally fetched logs of one container."""

    def __init__(self, parent_id: str, container_name: str, logger: DeployLogger):
        self.parent_id = parent_id
        self.container_name = container_name
        self.logger = logger
        self.lines: list[str] = []
        self._last_printed_index = -1
        self._last_timestamp: Optional[datetime] = None

    @property
    def empty(self) -> bool:
        return not self.lines

    @property
    def printing_started(self) -> bool:
        return self._last_printed_index >= 0

    def sync(self, kubectl: Kubectl) -> None:
        cmd = ["logs", self.parent_id, f"--container={self.container_name}", "--timestamps"]
        if self._last_timestamp:
            cmd.append(f"--since-time={self._last_timestamp.isoformat()}")
        else:
            cmd.append(f"--tail={DEFAULT_LINE_LIMIT}")
        result = kubectl.run(*cmd, log_failure=False)
        self.lines.extend(self._deduplicate(result.stdout.split("\n") if result.stdout else []))

    def print_latest(self, prefix: bool = False) -> None:
        prefix_str = f"[{self.container_name}]  " if prefix else ""
        for line in self.lines[self._last_printed_index + 1 :]:
            self.logger.info(f"{prefix_str}{line}")
        self._last_printed_index = len(self.lines) - 1

    def print_all(self) -> None:
        for line in self.lines:
            self.logger.info(f"\t{line}")

    def _deduplicate(self, raw_lines: list[str]) -> list[str]:
        deduped = []
        for raw_line in raw_lines:
            timestamp_text, _, message = raw_line.partition(" ")
            timestamp = parse_timestamp(timestamp_text)
            # --since-time is only second-granular
            if timestamp and self._last_timestamp and timestamp <= self._last_timestamp:
                continue
            deduped.append(message if timestamp else raw_line)
            if timestamp:
                self._last_timestamp = timestamp
        return deduped


class RemoteLogs:
    """Logs of every container in a pod."""

    def __init__(
        self,
        logger: DeployLogger,
        parent_id: str,
        parent_pretty_id: str,
        container_names: list[str],
    ):
        self.logger = logger
        self.parent_pretty_id = parent_pretty_id
        self.container_logs = [ContainerLogs(parent_id, name, logger) for name in container_names]
        self._already_displayed = False

    @property
    def empty(self) -> bool:
        return all(logs.empty for logs in self.container_logs)

    def sync(self, kubectl: Kubectl) -> None:
        for logs in self.container_logs:
            logs.sync(kubectl)

    def print_latest(self) -> None:
        for logs in self.container_logs:
            if not logs.printing_started:
                self.logger.info(
                    f"Streaming logs from {self.parent_pretty_id} container '{logs.container_name}':"
                )
            logs.print_latest(prefix=len(self.container_logs) > 1)

    def print_all(self, prevent_duplicate: bool = True) -> None:
        if self._already_displayed and prevent_duplicate:
            return
        if self.empty:
            self.logger.warning(f"No logs found for {self.parent_pretty_id}")
            return
        for logs in self.container_logs:
            if logs.empty:
                self.logger.warning(
                    f"No logs found for {self.parent_pretty_id} container '{logs.container_name}'"
                )
            else:
                self.logger.info(f"Logs from {self.parent_pretty_id} container '{logs.container_name}':")
                logs.print_all()
                self.logger.blank_line()
        self._already_displayed = True
