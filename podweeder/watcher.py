"""Watching pods that match a label selector and handing events to a handler."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from podweeder.config import LabelSelector

WATCH_CREATION_RETRY_INTERVAL = 0.5


class EventType(str, Enum):
    """Kind of change reported by a watch."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


@dataclass(frozen=True)
class WatchEvent:
    """A single event delivered by a pod watch."""

    type: EventType
    object: Any


class PodWatch(Protocol):
    """An open watch. A None put on `events` means the watch has closed."""

    events: "queue.Queue[Optional[WatchEvent]]"

    def stop(self) -> None: ...


class WatchClient(Protocol):
    """Opens pod watches for a namespace and label selector."""

    def watch_pods(self, namespace: str, label_selector: str) -> PodWatch: ...


PodEventHandler = Callable[[logging.Logger, Any, Any], None]


def can_process_event(event: WatchEvent) -> bool:
    """Only added and modified pods are of interest."""
    return event.type in (EventType.ADDED, EventType.MODIFIED)


class PodWatcher:
    """Watches pods selected by a label selector until `done` is set."""

    def __init__(
        self,
        *,
        namespace: str,
        endpoint_name: str,
        selector: LabelSelector,
        handler: PodEventHandler,
        watch_client: WatchClient,
        ctrl_client: Any,
        done: threading.Event,
        logger: Optional[logging.Logger] = None,
        retry_interval: float = WATCH_CREATION_RETRY_INTERVAL,
        poll_interval: float = 0.1,
    ) -> None:
        self.namespace = namespace
        self.endpoint_name = endpoint_name
        self.selector = selector
        self._handler = handler
        self._watch_client = watch_client
        self._ctrl_client = ctrl_client
        self._done = done
        self._log = logger or logging.getLogger(__name__)
        self._retry_interval = retry_interval
        self._poll_interval = poll_interval
        self._watch: Optional[PodWatch] = None

    def close(self) -> None:
        """Stop the underlying watch, if one is open."""
        if self._watch is not None:
            self._watch.stop()

    def watch(self) -> None:
        """Process pod events until the done event is set, recreating closed watches."""
        try:
            self._create_watch()
            self._log.info("Watching for pods in CrashLoopBackoff")
            while True:
                if self._done.is_set():
                    self._log.info(
                        "Exiting watch as context has timed-out or has been cancelled "
                        "namespace=%s endpoint=%s selector=%s",
                        self.namespace,
                        self.endpoint_name,
                        self.selector,
                    )
                    return
                if self._watch is None:
                    self._done.wait(self._poll_interval)
                    continue
                try:
                    event = self._watch.events.get(timeout=self._poll_interval)
                except queue.Empty:
                    continue
                if event is None:
                    self._log.debug(
                        "Watch has stopped, recreating kubernetes watch namespace=%s endpoint=%s",
                        self.namespace,
                        self.endpoint_name,
                    )
                    self._create_watch()
                    continue
                if not can_process_event(event):
                    continue
                self._dispatch(event.object)
        finally:
            self.close()

    def _dispatch(self, pod: Any) -> None:
        try:
            self._handler(self._log, self._ctrl_client, pod)
        except Exception:
            self._log.exception(
                "Error processing pod namespace=%s podName=%s",
                self.namespace,
                getattr(pod, "name", pod),
            )

    def _create_watch(self) -> None:
        operation = (
            f"Creating kubernetes watch for namespace {self.namespace}, "
            f"service {self.endpoint_name} with selector {self.selector}"
        )
        while not self._done.is_set():
            try:
                label_selector = self.selector.to_selector_string()
                self._watch = self._watch_client.watch_pods(self.namespace, label_selector)
                return
            except Exception as exc:
                self._log.warning("%s failed, will retry: %s", operation, exc)
                self._done.wait(self._retry_interval)