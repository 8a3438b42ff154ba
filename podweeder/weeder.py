"""A weeder deletes dependant pods that are stuck in CrashLoopBackOff."""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional

from podweeder.config import DEFAULT_WATCH_DURATION, Config, DependantSelectors
from podweeder.watcher import PodWatcher, WatchClient

CRASH_LOOP_BACK_OFF = "CrashLoopBackOff"


def is_container_in_crashloop_backoff(state: Optional[Mapping[str, Any]]) -> bool:
    """Return True if a container state is waiting with reason CrashLoopBackOff."""
    waiting = (state or {}).get("waiting")
    return waiting is not None and waiting.get("reason") == CRASH_LOOP_BACK_OFF


def is_pod_in_crashloop_backoff(status: Optional[Mapping[str, Any]]) -> bool:
    """Return True if any container of the pod status is in CrashLoopBackOff."""
    container_statuses = (status or {}).get("containerStatuses") or []
    return any(
        is_container_in_crashloop_backoff(cs.get("state")) for cs in container_statuses
    )


def should_delete_pod(pod: Mapping[str, Any]) -> bool:
    """A pod is deleted only if it is not already being deleted and is crash looping."""
    metadata = pod.get("metadata") or {}
    not_marked_for_deletion = metadata.get("deletionTimestamp") is None
    return not_marked_for_deletion and is_pod_in_crashloop_backoff(pod.get("status"))


def shoot_pod_if_necessary(log: Any, client: Any, pod: Mapping[str, Any]) -> bool:
    """Delete the pod through `client` if it should be deleted; return whether it was."""
    if not should_delete_pod(pod):
        return False
    metadata = pod.get("metadata") or {}
    log.info(
        "Deleting pod namespace=%s podName=%s",
        metadata.get("namespace"),
        metadata.get("name"),
    )
    client.delete(pod)
    return True


class Weeder:
    """Watches the dependants of one service and weeds out crash-looping pods.

    The weeder lives for the configured watch duration, counted from its creation,
    or until it is cancelled.
    """

    def __init__(
        self,
        namespace: str,
        config: Config,
        ctrl_client: Any,
        watch_client: Optional[WatchClient],
        endpoint_name: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        duration = config.watch_duration or DEFAULT_WATCH_DURATION
        self.namespace = namespace
        self.endpoint_name = endpoint_name
        self.ctrl_client = ctrl_client
        self.watch_client = watch_client
        self.watch_duration = duration
        self.dependant_selectors = config.services_and_dependant_selectors.get(
            endpoint_name, DependantSelectors()
        )
        self.logger = logging.LoggerAdapter(
            logger or logging.getLogger(__name__),
            {"weederRunning": True, "watchDuration": str(duration)},
        )
        self.done = threading.Event()
        self._timer = threading.Timer(duration.total_seconds(), self.done.set)
        self._timer.daemon = True
        self._timer.start()

    def cancel(self) -> None:
        """Stop the weeder and all of its watchers."""
        self.done.set()
        self._timer.cancel()

    def is_cancelled(self) -> bool:
        """Return True once the weeder has expired or been cancelled."""
        return self.done.is_set()

    def run(self) -> None:
        """Start one watcher per pod selector and block until the weeder ends."""
        threads = []
        for selector in self.dependant_selectors.pod_selectors:
            watcher = PodWatcher(
                namespace=self.namespace,
                endpoint_name=self.endpoint_name,
                selector=selector,
                handler=shoot_pod_if_necessary,
                watch_client=self.watch_client,
                ctrl_client=self.ctrl_client,
                done=self.done,
                logger=self.logger,
            )
            thread = threading.Thread(target=watcher.watch, daemon=True)
            thread.start()
            threads.append(thread)
        self.done.wait()
        self._timer.cancel()
        for thread in threads:
            thread.join()