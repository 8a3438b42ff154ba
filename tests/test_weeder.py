import logging
import queue
from datetime import timedelta

import pytest

from podweeder.config import Config, DependantSelectors, LabelSelector
from podweeder.watcher import EventType, WatchEvent
from podweeder.weeder import (
    Weeder,
    is_container_in_crashloop_backoff,
    is_pod_in_crashloop_backoff,
    should_delete_pod,
    shoot_pod_if_necessary,
)

LOG = logging.getLogger("test")


def make_pod(name, reason=None, deleting=False):
    state = {"waiting": {"reason": reason}} if reason else {"running": {}}
    metadata = {"name": name, "namespace": "hawai"}
    if deleting:
        metadata["deletionTimestamp"] = "2023-01-01T00:00:00Z"
    return {"metadata": metadata, "status": {"containerStatuses": [{"state": state}]}}


class FakeClient:
    def __init__(self, fail=False):
        self.deleted = []
        self.fail = fail

    def delete(self, pod):
        if self.fail:
            raise RuntimeError("delete failed")
        self.deleted.append(pod)


class FakeWatch:
    def __init__(self):
        self.events = queue.Queue()
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeWatchClient:
    def __init__(self):
        self.watch = FakeWatch()
        self.requests = []

    def watch_pods(self, namespace, label_selector):
        self.requests.append((namespace, label_selector))
        return self.watch


def test_container_in_crashloop():
    assert is_container_in_crashloop_backoff({"waiting": {"reason": "CrashLoopBackOff"}}) is True
    assert is_container_in_crashloop_backoff({"waiting": {"reason": "ContainerCreating"}}) is False
    assert is_container_in_crashloop_backoff({"running": {}}) is False
    assert is_container_in_crashloop_backoff(None) is False


def test_pod_in_crashloop_if_any_container():
    status = {
        "containerStatuses": [
            {"state": {"running": {}}},
            {"state": {"waiting": {"reason": "CrashLoopBackOff"}}},
        ]
    }
    assert is_pod_in_crashloop_backoff(status) is True
    assert is_pod_in_crashloop_backoff({"containerStatuses": []}) is False
    assert is_pod_in_crashloop_backoff({}) is False


def test_should_delete_pod():
    assert should_delete_pod(make_pod("a", "CrashLoopBackOff")) is True
    assert should_delete_pod(make_pod("b", "CrashLoopBackOff", deleting=True)) is False
    assert should_delete_pod(make_pod("c")) is False


def test_shoot_pod_if_necessary_deletes_crashlooping_pod():
    client = FakeClient()
    pod = make_pod("a", "CrashLoopBackOff")
    assert shoot_pod_if_necessary(LOG, client, pod) is True
    assert client.deleted == [pod]


def test_shoot_pod_if_necessary_leaves_healthy_pod():
    client = FakeClient()
    assert shoot_pod_if_necessary(LOG, client, make_pod("a")) is False
    assert client.deleted == []


def test_shoot_pod_propagates_client_error():
    with pytest.raises(RuntimeError):
        shoot_pod_if_necessary(LOG, FakeClient(fail=True), make_pod("a", "CrashLoopBackOff"))


def make_config(duration):
    selector = LabelSelector(match_labels={"app": "etcd"})
    return Config(
        services_and_dependant_selectors={
            "etcd-main": DependantSelectors(pod_selectors=[selector])
        },
        watch_duration=duration,
    )


def test_weeder_selects_dependants_of_its_endpoint():
    config = make_config(timedelta(seconds=10))
    w = Weeder("hawai", config, None, None, "etcd-main")
    other = Weeder("hawai", config, None, None, "unknown")
    try:
        assert len(w.dependant_selectors.pod_selectors) == 1
        assert other.dependant_selectors.pod_selectors == []
    finally:
        w.cancel()
        other.cancel()


def test_weeder_cancel():
    w = Weeder("hawai", make_config(timedelta(seconds=10)), None, None, "etcd-main")
    assert w.is_cancelled() is False
    w.cancel()
    assert w.is_cancelled() is True


def test_weeder_expires_after_watch_duration():
    w = Weeder("hawai", make_config(timedelta(milliseconds=50)), None, None, "etcd-main")
    assert w.done.wait(2) is True
    assert w.is_cancelled() is True


def test_weeder_run_deletes_only_crashlooping_pods():
    client = FakeClient()
    watch_client = FakeWatchClient()
    crashing = make_pod("crashing", "CrashLoopBackOff")
    healthy = make_pod("healthy")
    deleted_event_pod = make_pod("gone", "CrashLoopBackOff")
    watch_client.watch.events.put(WatchEvent(EventType.ADDED, crashing))
    watch_client.watch.events.put(WatchEvent(EventType.MODIFIED, healthy))
    watch_client.watch.events.put(WatchEvent(EventType.DELETED, deleted_event_pod))

    w = Weeder("hawai", make_config(timedelta(seconds=1)), client, watch_client, "etcd-main")
    w.run()

    assert client.deleted == [crashing]
    assert watch_client.requests == [("hawai", "app=etcd")]
    assert watch_client.watch.stopped is True
    assert w.is_cancelled() is True