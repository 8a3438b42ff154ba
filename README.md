# podweeder

`podweeder` watches the pods that depend on a service and deletes any that are
stuck in `CrashLoopBackOff`, so they restart straight away once the service
they depend on is reachable again instead of waiting out a long back-off.

## Installation

```
pip install podweeder
```

## Configuration

`podweeder.config.load_config(filename)` reads a YAML file that maps each
service (endpoint) name to the label selectors of the pods that depend on it:

```yaml
watchDuration: 5m
servicesAndDependantSelectors:
  etcd-main:
    podSelectors:
      - matchExpressions:
          - key: gardener.cloud/component
            operator: In
            values:
              - controlplane
  kube-apiserver:
    podSelectors:
      - matchLabels:
          role: controller
```

```python
from podweeder.config import load_config

config = load_config("weeder-config.yaml")
print(config.watch_duration)                      # a datetime.timedelta
print(config.services_and_dependant_selectors)    # name -> DependantSelectors
```

- `watchDuration` is optional and defaults to five minutes
  (`DEFAULT_WATCH_DURATION`). It is parsed by `parse_duration`, which accepts
  strings such as `500ms`, `10s`, `5m` or `1h30m` (units `ns`, `us`, `ms`,
  `s`, `m`, `h`) and raises `ValueError` for anything else.
- There must be at least one service, every service must list at least one
  pod selector, and every selector must be valid (label keys and values well
  formed; operators `In`, `NotIn`, `Exists`, `DoesNotExist`; `In`/`NotIn` need
  values, `Exists`/`DoesNotExist` must have none). Otherwise `load_config`
  raises `ConfigError`, a `ValueError` whose `errors` attribute lists every
  problem found.
- A missing file raises `FileNotFoundError`.

### Label selectors

`LabelSelector` holds `match_labels` and `match_expressions`
(`LabelSelectorRequirement` items). `LabelSelector.from_dict` builds one from
its mapping form, `to_selector_string()` renders it in label-selector query
syntax (e.g. `app=web,tier in (a,b)`), and `matches(labels)` tests a label
mapping against it. Both raise `ValueError` for an invalid selector.

## Weeding pods

Pods are plain mappings in their Kubernetes form (`metadata`, `status`, ...).
The decision is made by functions in `podweeder.weeder`:

- `is_container_in_crashloop_backoff(state)` – the container state is
  `waiting` with reason `CrashLoopBackOff`.
- `is_pod_in_crashloop_backoff(status)` – any entry of `containerStatuses` is.
- `should_delete_pod(pod)` – the pod has no `metadata.deletionTimestamp` and
  is crash looping.
- `shoot_pod_if_necessary(log, client, pod)` – calls `client.delete(pod)` when
  the pod should be deleted and returns whether it did.

A `Weeder` covers one service:

```python
from podweeder.weeder import Weeder

weeder = Weeder("my-namespace", config, ctrl_client, watch_client, "etcd-main")
weeder.run()   # blocks until the watch duration ends or weeder.cancel() is called
```

The watch duration is counted from the weeder's creation. `run()` starts one
`PodWatcher` thread per pod selector of the service and waits for them to
finish. `is_cancelled()` reports whether the weeder has expired or been
cancelled.

### Clients you supply

The package does not talk to a cluster by itself; you pass in the clients:

- `ctrl_client` needs a `delete(pod)` method.
- `watch_client` needs `watch_pods(namespace, label_selector)`, returning a
  watch object with an `events` attribute (a `queue.Queue` of
  `podweeder.watcher.WatchEvent`) and a `stop()` method. Putting `None` on the
  queue signals that the watch has closed; the watcher then opens a new one.
  If opening a watch fails, it is retried every half second until the weeder
  ends.

Only `EventType.ADDED` and `EventType.MODIFIED` events are handled
(`can_process_event`). Errors raised while handling a pod are logged and the
watcher carries on.

## Managing weeders

`WeederManager` in `podweeder.manager` keeps one weeder per
`namespace/endpoint` key, as made by `create_key`:

```python
from podweeder.manager import WeederManager, create_key

manager = WeederManager()
manager.register(weeder)          # cancels any earlier weeder with the same key
registration = manager.get_registration(create_key(weeder))   # None if unknown
print(registration.is_closed())
manager.unregister(create_key(weeder))   # closes it; False if the key is unknown
manager.unregister_all()
```

## What it does not do

`podweeder` is a library. It has no command-line program, does not watch
service endpoints to decide when to start a weeder, and ships no client for
the Kubernetes API: connecting to a cluster and starting weeders is left to
the code that uses it.