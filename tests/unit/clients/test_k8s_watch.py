"""Unit tests for clients.k8s_watch module.

This file tests the ResourceInformer with a fake list function and a fake
watch stream, so no API server is needed.

# Test Coverage

The tests cover:
  - relist: initial sync, add/update/delete diffing, final_state_unknown
  - handle_event: ADDED/MODIFIED/DELETED/BOOKMARK, 410 ERROR events
  - Resync replay and handler exception isolation
  - run/start/stop on a background thread

# Running Tests

Run with: pytest tests/unit/clients/test_k8s_watch.py
"""

# pylint: disable=redefined-outer-name

import threading
import time
from typing import Any
from unittest.mock import MagicMock

import pytest

from clients.k8s_watch import ResourceInformer, _Gone, object_key


def obj(name: str, rv: str = "1", namespace: str = "flink") -> dict[str, Any]:
    return {"metadata": {"name": name, "namespace": namespace, "resourceVersion": rv}}


def listing(*items: dict[str, Any], rv: str = "100") -> dict[str, Any]:
    return {"items": list(items), "metadata": {"resourceVersion": rv}}


@pytest.fixture
def handlers() -> dict[str, MagicMock]:
    return {"on_add": MagicMock(), "on_update": MagicMock(), "on_delete": MagicMock()}


@pytest.fixture
def list_func() -> MagicMock:
    return MagicMock(return_value=listing(obj("a"), obj("b")))


@pytest.fixture
def informer(list_func: MagicMock, handlers: dict[str, MagicMock]) -> ResourceInformer:
    inf = ResourceInformer(list_func, "flink", resync_period_s=600.0, watch_factory=MagicMock())
    inf.add_event_handler(**handlers)
    return inf


def test_object_key() -> None:
    assert object_key(obj("app1")) == "flink/app1"


# =============================================================================
# Relist Tests
# =============================================================================


class TestRelist:
    """Test suite for ResourceInformer.relist."""

    def test_initial_list_syncs_and_adds(self, informer, handlers) -> None:
        assert informer.has_synced() is False

        informer.relist()

        assert informer.has_synced() is True
        assert informer.keys() == ["flink/a", "flink/b"]
        assert handlers["on_add"].call_count == 2
        assert informer._resource_version == "100"

    def test_relist_diffs_against_cache(self, informer, list_func, handlers) -> None:
        """Test that a relist after a lost watch reconciles the cache.

        **Why this test is important:**
          - After a 410 the operator may have missed events
          - Deletions missed during the gap must still be delivered

        **What it tests:**
          - Changed objects are delivered as updates
          - Unchanged objects produce no callback
          - Missing objects are delivered as deletes with final_state_unknown
          - New objects are delivered as adds
        """
        informer.relist()
        for handler in handlers.values():
            handler.reset_mock()
        list_func.return_value = listing(obj("a", rv="2"), obj("c"))

        informer.relist()

        handlers["on_update"].assert_called_once_with(obj("a"), obj("a", rv="2"))
        handlers["on_add"].assert_called_once_with(obj("c"))
        handlers["on_delete"].assert_called_once_with(obj("b"), True)
        assert informer.get("flink/b") is None


# =============================================================================
# Event Handling Tests
# =============================================================================


class TestHandleEvent:
    """Test suite for ResourceInformer.handle_event."""

    def test_added_then_modified_then_deleted(self, informer, handlers) -> None:
        informer.handle_event({"type": "ADDED", "object": obj("x")})
        informer.handle_event({"type": "MODIFIED", "object": obj("x", rv="2")})
        informer.handle_event({"type": "DELETED", "object": obj("x", rv="3")})

        handlers["on_add"].assert_called_once_with(obj("x"))
        handlers["on_update"].assert_called_once_with(obj("x"), obj("x", rv="2"))
        handlers["on_delete"].assert_called_once_with(obj("x", rv="3"), False)
        assert informer.get("flink/x") is None
        assert informer._resource_version == "3"

    def test_added_for_known_object_is_update(self, informer, handlers) -> None:
        informer.relist()
        handlers["on_add"].reset_mock()

        informer.handle_event({"type": "ADDED", "object": obj("a", rv="5")})

        handlers["on_add"].assert_not_called()
        handlers["on_update"].assert_called_once()

    def test_bookmark_only_advances_resource_version(self, informer, handlers) -> None:
        informer.handle_event({"type": "BOOKMARK", "object": {"metadata": {"resourceVersion": "55"}}})

        assert informer._resource_version == "55"
        assert informer.keys() == []
        for handler in handlers.values():
            handler.assert_not_called()

    def test_gone_error_raises(self, informer) -> None:
        with pytest.raises(_Gone):
            informer.handle_event({"type": "ERROR", "object": {"code": 410, "reason": "Expired"}})

    def test_other_error_is_ignored(self, informer, handlers) -> None:
        informer.handle_event({"type": "ERROR", "object": {"code": 500}})
        handlers["on_add"].assert_not_called()

    def test_handler_exception_is_contained(self, informer, handlers) -> None:
        handlers["on_add"].side_effect = RuntimeError("handler bug")

        informer.handle_event({"type": "ADDED", "object": obj("x")})

        assert informer.get("flink/x") == obj("x")


# =============================================================================
# Resync Tests
# =============================================================================


class TestResync:
    """Test suite for the periodic resync replay."""

    def test_resync_replays_updates(self, informer, handlers) -> None:
        informer.relist()
        informer.resync_period_s = 0.0

        informer._maybe_resync()

        assert handlers["on_update"].call_count == 2
        old, new = handlers["on_update"].call_args.args
        assert old is new

    def test_no_resync_before_period(self, informer, handlers) -> None:
        informer.relist()
        informer._maybe_resync()
        handlers["on_update"].assert_not_called()


# =============================================================================
# Lifecycle Tests
# =============================================================================


class TestLifecycle:
    """Test suite for start/stop on the informer thread."""

    def test_run_lists_then_watches(self, list_func, handlers) -> None:
        seen = threading.Event()
        handlers["on_add"].side_effect = lambda o: seen.set() if o == obj("w") else None

        def stream(*args: Any, **kwargs: Any):
            yield {"type": "ADDED", "object": obj("w", rv="101")}
            time.sleep(0.01)

        watcher = MagicMock()
        watcher.stream.side_effect = stream
        informer = ResourceInformer(list_func, "flink", watch_factory=lambda: watcher)
        informer.add_event_handler(**handlers)

        informer.start()
        try:
            assert informer.wait_for_sync(timeout=2.0) is True
            assert seen.wait(timeout=2.0) is True
            assert informer.is_alive() is True
        finally:
            informer.stop(timeout=2.0)

        assert informer.is_alive() is False
        assert watcher.stream.call_args.kwargs["resource_version"] in ("100", "101")
        assert informer.get("flink/w") == obj("w", rv="101")
