"""Drive a set of resources to a terminal rollout state."""

import logging
import time
from typing import Callable, Iterable, Optional, Sequence

from .cache import ResourceCache
from .concurrency import split_across_threads
from .config import get_settings
from .kubectl import Kubectl
from .logger import DeployLogger
from .models import RolloutOutcome, WatchResult
from .resources.base import KubernetesResource, pluralize

logger = logging.getLogger(__name__)


class ResourceWatcher:
    """
    Polls resources until each has succeeded, failed or timed out.

    Every tick builds a fresh ResourceCache, syncs only the resources that are
    still pending, and logs transitions as they happen. A global timeout
    gives up on whatever is left.
    """

    def __init__(
        self,
        resources: Sequence[KubernetesResource],
        logger: DeployLogger,
        kubectl: Kubectl,
        global_timeout: Optional[float] = None,
        global_kinds: Iterable[str] = (),
        cache_factory: Optional[Callable[[], ResourceCache]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize resource watcher.

        Args:
            resources: Resources whose deploy has started
            logger: Deploy logger
            kubectl: Client used for syncing and debug info
            global_timeout: Seconds after which to give up (defaults to settings)
            global_kinds: Cluster-scoped kinds, for the per-tick cache
            cache_factory: Builds the per-tick cache
            clock: Monotonic time source
            sleep: Sleep function
        """
        if isinstance(resources, (str, bytes)) or not isinstance(resources, Iterable):
            raise TypeError(f"ResourceWatcher expects a collection, got `{type(resources).__name__}` instead")
        self.resources = list(resources)
        self.logger = logger
        self.kubectl = kubectl
        self.global_timeout = global_timeout if global_timeout is not None else get_settings().global_timeout
        self._global_kinds = list(global_kinds)
        self._cache_factory = cache_factory or (lambda: ResourceCache(self.kubectl, self._global_kinds))
        self._clock = clock
        self._sleep = sleep
        self._started_at: Optional[float] = None
        self._next_sync_time: Optional[float] = None

    def run(
        self,
        delay_sync: Optional[float] = None,
        reminder_interval: Optional[float] = None,
        record_summary: bool = True,
    ) -> WatchResult:
        """
        Watch until every resource is terminal or the global timeout elapses.

        Args:
            delay_sync: Minimum seconds between sync starts
            reminder_interval: Seconds between "Still waiting" reminders
            record_summary: Add actions and paragraphs to the deferred summary

        Returns:
            WatchResult describing what succeeded, failed, timed out or was given up on
        """
        settings = get_settings()
        delay_sync = settings.delay_sync if delay_sync is None else delay_sync
        reminder_interval = settings.reminder_interval if reminder_interval is None else reminder_interval

        self._started_at = self._clock()
        last_message_logged_at = self._started_at
        remainder = list(self.resources)

        while remainder:
            if self._global_timeout_reached():
                return self._report_and_give_up(remainder, record_summary)
            self._sleep_until_next_sync(delay_sync)
            self._sync_resources(remainder)

            new_successes = [r for r in remainder if r.deploy_succeeded()]
            remainder = [r for r in remainder if r not in new_successes]
            new_failures = [r for r in remainder if r.deploy_failed()]
            remainder = [r for r in remainder if r not in new_failures]
            new_timeouts = [r for r in remainder if r.deploy_timed_out()]
            remainder = [r for r in remainder if r not in new_timeouts]

            if new_successes or new_failures or new_timeouts:
                self._report_what_just_happened(new_successes, new_failures, new_timeouts)
                self._report_what_is_left(remainder, reminder=False)
                last_message_logged_at = self._clock()
            elif self._clock() >= last_message_logged_at + reminder_interval:
                self._report_what_is_left(remainder, reminder=True)
                last_message_logged_at = self._clock()

        successful = [r for r in self.resources if r.deploy_succeeded()]
        unsuccessful = [r for r in self.resources if r not in successful]
        if record_summary:
            self._record_success_statuses(successful)
            self._record_failed_statuses(unsuccessful)

        failures = [r for r in unsuccessful if not r.deploy_timed_out()]
        if failures:
            outcome = RolloutOutcome.FAILED
        elif unsuccessful:
            outcome = RolloutOutcome.TIMED_OUT
        else:
            outcome = RolloutOutcome.SUCCEEDED
        return WatchResult(
            outcome=outcome,
            succeeded=successful,
            failed=failures,
            timed_out=[r for r in unsuccessful if r not in failures],
        )

    def _watch_time(self) -> float:
        return round(self._clock() - self._started_at, 1)

    def _global_timeout_reached(self) -> bool:
        return bool(self.global_timeout) and self._clock() - self._started_at > self.global_timeout

    def _sleep_until_next_sync(self, min_interval: float) -> None:
        if self._next_sync_time is None:
            self._next_sync_time = self._clock()
        sleep_duration = self._next_sync_time - self._clock()
        if sleep_duration > 0:
            self._sleep(sleep_duration)
        self._next_sync_time = self._clock() + min_interval

    def _sync_resources(self, resources: list[KubernetesResource]) -> None:
        cache = self._cache_factory()
        split_across_threads(resources, lambda r: r.sync(cache))
        for resource in resources:
            resource.after_sync()

    def _report_what_just_happened(self, new_successes, new_failures, new_timeouts) -> None:
        watch_time = self._watch_time()
        for resource in new_failures:
            self.logger.error(f"{resource.id} failed to deploy after {watch_time}s")
        for resource in new_timeouts:
            self.logger.error(f"{resource.id} rollout timed out after {watch_time}s")
        if new_successes:
            ids = ", ".join(r.id for r in new_successes)
            self.logger.info(f"Successfully deployed in {watch_time}s: {ids}")

    def _report_what_is_left(self, resources, reminder: bool) -> None:
        if not resources:
            return
        resource_list = ", ".join(r.id for r in resources)
        prefix = "Still waiting for" if reminder else "Continuing to wait for"
        self.logger.info(f"{prefix}: {resource_list}")

    def _report_and_give_up(self, remaining: list[KubernetesResource], record_summary: bool) -> WatchResult:
        finished = [r for r in self.resources if r not in remaining]
        successful = [r for r in finished if r.deploy_succeeded()]
        failed = [r for r in finished if r not in successful]
        if record_summary:
            self._record_success_statuses(successful)
            self._record_failed_statuses(failed, global_timeouts=remaining)

        failures = [r for r in failed if not r.deploy_timed_out()]
        outcome = RolloutOutcome.FAILED if failures else RolloutOutcome.TIMED_OUT
        return WatchResult(
            outcome=outcome,
            succeeded=successful,
            failed=failures,
            timed_out=[r for r in failed if r not in failures],
            gave_up=list(remaining),
        )

    def _record_success_statuses(self, successful: list[KubernetesResource]) -> None:
        if not successful:
            return
        count = len(successful)
        self.logger.summary.add_action(
            f"successfully deployed {count} {pluralize('resource', count)}"
        )
        final_statuses = "\n".join(r.pretty_status for r in successful)
        self.logger.summary.add_paragraph(f"Successful resources\n{final_statuses}")

    def _record_failed_statuses(
        self,
        failed: list[KubernetesResource],
        global_timeouts: Sequence[KubernetesResource] = (),
    ) -> None:
        if not failed and not global_timeouts:
            return
        timeouts = [r for r in failed if r.deploy_timed_out()] + list(global_timeouts)
        failures = [r for r in failed if not r.deploy_timed_out()]
        if timeouts:
            self.logger.summary.add_action(
                f"timed out waiting for {len(timeouts)} {pluralize('resource', len(timeouts))} to deploy"
            )
        if failures:
            self.logger.summary.add_action(
                f"failed to deploy {len(failures)} {pluralize('resource', len(failures))}"
            )

        split_across_threads([*failed, *global_timeouts], self._sync_debug_info)

        for resource in failed:
            self.logger.summary.add_paragraph(resource.debug_message())
        for resource in global_timeouts:
            self.logger.summary.add_paragraph(
                resource.debug_message("gave_up", timeout=self.global_timeout)
            )

    def _sync_debug_info(self, resource: KubernetesResource) -> None:
        try:
            resource.sync_debug_info(self.kubectl)
        except Exception as e:
            logger.warning(f"Could not fetch debug information for {resource.id}: {e}", exc_info=True)
            self.logger.warning(f"Could not fetch debug information for {resource.id}: {e}")
