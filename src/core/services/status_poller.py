"""Status poller: republishes observed job status onto each application.

Runs on its own thread at a fixed interval, independent of the work queue.
Each cycle lists the live jobs of every registered application and replaces
the application's `status.jobStatuses`. Jobs with a known savepoint carry its
location. When listing fails for an application its status is cleared rather
than left stale, and the cycle moves on to the next application.
"""

import logging
import threading
from datetime import datetime, timezone

from clients.flink_rest import FlinkRestClientPool
from clients.k8s_resources import FlinkApplicationClient
from core.models import FlinkApplicationStatus, JobStatus
from core.state import ApplicationRegistry, RegistryEntry, SavepointLedger
from foundation.exceptions import UpstreamError

logger = logging.getLogger("operator.poller")


class StatusPoller:
    """Publishes job status for every registered application."""

    def __init__(
        self,
        registry: ApplicationRegistry,
        ledger: SavepointLedger,
        applications: FlinkApplicationClient,
        rest_clients: FlinkRestClientPool,
        interval_s: float = 60.0,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.applications = applications
        self.rest_clients = rest_clients
        self.interval_s = interval_s
        self.cycles = 0

    def run(self, stop: threading.Event) -> None:
        """Poll every `interval_s` seconds until `stop` is set."""
        logger.info("Status poller started", extra={"interval_seconds": self.interval_s})
        while not stop.wait(self.interval_s):
            self.poll_once()
        logger.info("Status poller stopped")

    def poll_once(self) -> None:
        """Run one cycle over a snapshot of the Registry."""
        entries = self.registry.snapshot()
        for entry in entries:
            self.publish(entry)
        self.cycles += 1
        logger.debug("Status poll cycle finished", extra={"application_count": len(entries)})

    def collect(self, entry: RegistryEntry) -> FlinkApplicationStatus:
        """List the jobs of `entry` and build its status.

        Raises:
            UpstreamError: If the jobs cannot be listed.
        """
        client = self.rest_clients.get(entry.config.key, entry.config.rest_url)
        observed_at = datetime.now(timezone.utc)
        records = tuple(
            JobStatus(
                job_name=job.name,
                job_id=job.job_id,
                state=job.state,
                update_time=observed_at,
                savepoint_location=self.ledger.get(job.job_id),
            )
            for job in client.list_jobs()
        )
        return FlinkApplicationStatus(job_statuses=records)

    def publish(self, entry: RegistryEntry) -> None:
        """Publish the status of one application; never raises."""
        app = entry.app
        try:
            status = self.collect(entry)
        except Exception:
            logger.warning("Failed to list jobs, clearing status", exc_info=True, extra={"key": app.key})
            status = FlinkApplicationStatus()

        try:
            self.applications.patch_status(app.namespace, app.name, status.to_dict())
        except UpstreamError:
            logger.exception("Failed to publish status", extra={"key": app.key})
