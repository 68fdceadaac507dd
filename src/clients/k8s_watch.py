"""List-and-watch informer for namespaced custom resources.

`ResourceInformer` keeps a local cache of the resources in one namespace and
delivers add/update/delete callbacks, in the manner of a client-go informer:

- An initial list fills the cache; `has_synced()` turns True afterwards.
- A watch started from the list's `resourceVersion` keeps the cache current.
- HTTP 410 (resource version too old) triggers a relist. Differences between
  the cache and the fresh list are delivered as add/update/delete callbacks,
  deletions with `final_state_unknown=True`.
- Every `resync_period_s` all cached objects are replayed as
  `on_update(obj, obj)`.

Callbacks run on the informer thread. Exceptions raised by a callback are
logged and do not stop the informer.
"""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from kubernetes import watch
from kubernetes.client.rest import ApiException

logger = logging.getLogger("operator.informer")

MAX_BACKOFF_SECONDS = 30


def object_key(obj: dict[str, Any]) -> str:
    """Return `<namespace>/<name>` of a raw API object."""
    metadata = obj.get("metadata") or {}
    return f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"


def _resource_version(obj: dict[str, Any]) -> str | None:
    return (obj.get("metadata") or {}).get("resourceVersion")


class _Gone(Exception):
    """The watch reported that our resource version expired."""


class ResourceInformer:
    """Informer over one namespaced resource type.

    Args:
        list_func: Callable with the signature of
            `CustomObjectsApi.list_namespaced_custom_object` bound to a group,
            version and plural; must accept `namespace`, `resource_version`,
            `timeout_seconds` and `watch` keyword arguments.
        namespace: Namespace to watch.
        resync_period_s: Seconds between resync replays.
        watch_timeout_s: Server-side timeout of one watch request.
        watch_factory: Factory for `kubernetes.watch.Watch` objects.

    Example:
        >>> informer = ResourceInformer(apps.list_raw, "flink")
        >>> informer.add_event_handler(on_add=..., on_update=..., on_delete=...)
        >>> informer.start()
    """

    def __init__(
        self,
        list_func: Callable[..., dict[str, Any]],
        namespace: str,
        resync_period_s: float = 600.0,
        watch_timeout_s: int = 300,
        watch_factory: Callable[[], watch.Watch] = watch.Watch,
    ) -> None:
        self.list_func = list_func
        self.namespace = namespace
        self.resync_period_s = resync_period_s
        self.watch_timeout_s = watch_timeout_s
        self.watch_factory = watch_factory

        self._cache: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._synced = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._active_watch: watch.Watch | None = None
        self._resource_version: str | None = None
        self._last_resync = time.monotonic()

        self._on_add: Callable[[dict[str, Any]], None] | None = None
        self._on_update: Callable[[dict[str, Any], dict[str, Any]], None] | None = None
        self._on_delete: Callable[[dict[str, Any], bool], None] | None = None

    def add_event_handler(
        self,
        on_add: Callable[[dict[str, Any]], None] | None = None,
        on_update: Callable[[dict[str, Any], dict[str, Any]], None] | None = None,
        on_delete: Callable[[dict[str, Any], bool], None] | None = None,
    ) -> None:
        """Register the callbacks. Must be called before `start()`."""
        self._on_add = on_add
        self._on_update = on_update
        self._on_delete = on_delete

    # Cache access

    def get(self, key: str) -> dict[str, Any] | None:
        """Return the cached object for `key`, or None."""
        with self._lock:
            return self._cache.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._cache)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(self, timeout: float | None = None) -> bool:
        return self._synced.wait(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # Lifecycle

    def start(self) -> None:
        """Start the informer on a daemon thread."""
        if self.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="informer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the informer and wait for its thread."""
        self._stop.set()
        active = self._active_watch
        if active is not None:
            active.stop()
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        """List, then watch until stopped. Runs on the informer thread."""
        backoff = 1
        need_list = True
        while not self._stop.is_set():
            try:
                if need_list:
                    self.relist()
                    need_list = False
                self._watch_once()
                self._maybe_resync()
                backoff = 1
            except _Gone:
                logger.warning("Watch resource version expired, re-listing", extra={"namespace": self.namespace})
                need_list = True
            except ApiException as e:
                if e.status == 410:
                    logger.warning("Watch resource version expired, re-listing", extra={"namespace": self.namespace})
                    need_list = True
                    continue
                logger.exception(
                    "Watch failed, backing off",
                    extra={"namespace": self.namespace, "status": e.status, "backoff_seconds": backoff},
                )
                need_list = need_list or not self.has_synced()
                self._stop.wait(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)
            except Exception:
                logger.exception(
                    "Informer error, backing off",
                    extra={"namespace": self.namespace, "backoff_seconds": backoff},
                )
                self._stop.wait(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)

    def relist(self) -> None:
        """List all objects and reconcile the cache with the result."""
        result = self.list_func(namespace=self.namespace)
        items = {object_key(item): item for item in result.get("items", [])}
        self._resource_version = (result.get("metadata") or {}).get("resourceVersion")

        with self._lock:
            previous = dict(self._cache)
            self._cache = dict(items)

        for key, obj in items.items():
            old = previous.get(key)
            if old is None:
                self._dispatch_add(obj)
            elif _resource_version(old) != _resource_version(obj):
                self._dispatch_update(old, obj)
        for key, old in previous.items():
            if key not in items:
                self._dispatch_delete(old, True)

        self._last_resync = time.monotonic()
        if not self._synced.is_set():
            logger.info("Informer synced", extra={"namespace": self.namespace, "object_count": len(items)})
        self._synced.set()

    def _watch_once(self) -> None:
        remaining = self.resync_period_s - (time.monotonic() - self._last_resync)
        timeout_seconds = max(1, min(self.watch_timeout_s, int(remaining)))

        watcher = self.watch_factory()
        self._active_watch = watcher
        try:
            stream = watcher.stream(
                self.list_func,
                namespace=self.namespace,
                resource_version=self._resource_version,
                timeout_seconds=timeout_seconds,
            )
            for event in stream:
                if self._stop.is_set():
                    break
                self.handle_event(event)
        finally:
            self._active_watch = None

    def handle_event(self, event: dict[str, Any]) -> None:
        """Apply one watch event to the cache and dispatch the callback.

        Raises:
            _Gone: On an ERROR event with code 410.
        """
        event_type = str(event.get("type", ""))
        obj = event.get("object") or event.get("raw_object") or {}

        if event_type == "ERROR":
            if obj.get("code") == 410:
                raise _Gone
            logger.warning("Watch error event", extra={"namespace": self.namespace, "event_object": obj})
            return

        rv = _resource_version(obj)
        if rv:
            self._resource_version = rv

        if event_type == "BOOKMARK":
            return

        key = object_key(obj)
        with self._lock:
            old = self._cache.get(key)
            if event_type == "DELETED":
                self._cache.pop(key, None)
            else:
                self._cache[key] = obj

        if event_type == "ADDED" and old is None:
            self._dispatch_add(obj)
        elif event_type in ("ADDED", "MODIFIED"):
            self._dispatch_update(old or obj, obj)
        elif event_type == "DELETED":
            self._dispatch_delete(obj, False)

    def _maybe_resync(self) -> None:
        if time.monotonic() - self._last_resync < self.resync_period_s:
            return
        self._last_resync = time.monotonic()
        with self._lock:
            snapshot = list(self._cache.values())
        logger.debug("Resyncing informer cache", extra={"namespace": self.namespace, "object_count": len(snapshot)})
        for obj in snapshot:
            self._dispatch_update(obj, obj)

    # Dispatch

    def _dispatch_add(self, obj: dict[str, Any]) -> None:
        if self._on_add is not None:
            self._safe_call("add", self._on_add, obj)

    def _dispatch_update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        if self._on_update is not None:
            self._safe_call("update", self._on_update, old, new)

    def _dispatch_delete(self, obj: dict[str, Any], final_state_unknown: bool) -> None:
        if self._on_delete is not None:
            self._safe_call("delete", self._on_delete, obj, final_state_unknown)

    def _safe_call(self, kind: str, handler: Callable[..., None], *args: Any) -> None:
        try:
            handler(*args)
        except Exception:
            key = object_key(args[-1] if kind != "delete" else args[0])
            logger.exception("Event handler failed", extra={"event": kind, "key": key})
