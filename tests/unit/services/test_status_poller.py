"""Unit tests for core.services.status_poller module.

# Test Coverage

The tests cover:
  - collect: one record per job, savepoint locations from the ledger
  - publish: status merge-patch, empty status on failure
  - poll_once: every registered application, failures isolated
  - run: periodic cycles until stopped

# Running Tests

Run with: pytest tests/unit/services/test_status_poller.py
"""

import threading
from unittest.mock import MagicMock

from core.exceptions import UpstreamError
from core.services.status_poller import StatusPoller


class TestStatusPoller:
    """Test suite for StatusPoller."""

    def test_collect_enriches_from_ledger(self, poller: StatusPoller, make_app, make_entry, ledger) -> None:
        """Test the job status records of one application.

        **Why this test is important:**
          - Users read savepoint paths from the resource status
          - Only jobs with a recorded savepoint carry a location

        **What it tests:**
          - Two running jobs with one ledger entry yield two records
          - Exactly the job with a ledger entry carries its path
        """
        ledger.record("J1", "s3://sp/J1", "flink/app1")

        status = poller.collect(make_entry(make_app()))

        records = {r.job_id: r for r in status.job_statuses}
        assert set(records) == {"J1", "J2"}
        assert records["J1"].savepoint_location == "s3://sp/J1"
        assert records["J2"].savepoint_location is None
        assert records["J1"].state == "RUNNING"
        assert records["J2"].job_name == "enrich"

    def test_publish_patches_status(self, poller: StatusPoller, make_app, make_entry, mock_applications) -> None:
        poller.publish(make_entry(make_app()))

        namespace, name, status = mock_applications.patch_status.call_args.args
        assert (namespace, name) == ("flink", "app1")
        assert [j["jobId"] for j in status["jobStatuses"]] == ["J1", "J2"]
        assert status["reconcileState"] is None

    def test_failure_publishes_empty_status(
        self, poller: StatusPoller, make_app, make_entry, mock_rest_client, mock_applications
    ) -> None:
        mock_rest_client.list_jobs.side_effect = UpstreamError("jobmanager down")

        poller.publish(make_entry(make_app()))

        status = mock_applications.patch_status.call_args.args[2]
        assert status["jobStatuses"] == []

    def test_patch_failure_is_logged(self, poller: StatusPoller, make_app, make_entry, mock_applications) -> None:
        mock_applications.patch_status.side_effect = UpstreamError("api down")
        poller.publish(make_entry(make_app()))

    def test_poll_once_continues_after_failure(
        self, poller: StatusPoller, registry, make_app, make_entry, mock_rest_client, mock_applications
    ) -> None:
        registry.put(make_entry(make_app("a")))
        registry.put(make_entry(make_app("b")))
        mock_rest_client.list_jobs.side_effect = [RuntimeError("unexpected"), []]

        poller.poll_once()

        assert mock_applications.patch_status.call_count == 2
        assert poller.cycles == 1

    def test_uses_pooled_client_per_application(
        self, poller: StatusPoller, make_app, make_entry, mock_rest_clients: MagicMock
    ) -> None:
        poller.collect(make_entry(make_app("app1", "flink")))
        mock_rest_clients.get.assert_called_once_with("flink/app1", "http://app1-rest.flink:8081")

    def test_run_until_stopped(self, poller: StatusPoller) -> None:
        stop = threading.Event()
        thread = threading.Thread(target=poller.run, args=(stop,))
        thread.start()
        try:
            threading.Event().wait(0.1)
        finally:
            stop.set()
            thread.join(timeout=2.0)

        assert not thread.is_alive()
        assert poller.cycles >= 1
