"""Controller: wires the informer, work queue, reconciler and status poller.

## Threads

- **informer**: list/watch of FlinkApplications. Add and update callbacks
  only enqueue the key; the delete callback runs the deletion handler
  synchronously.
- **reconciler**: waits for the informer's initial sync, then drains the
  work queue one key at a time.
- **status-poller**: publishes job status every poll interval.

`start()` and `stop()` are called from the HTTP app lifespan (see
`api.app`). `is_ready()` backs the readiness probe.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

from clients.flink_rest import FlinkRestClientPool
from clients.k8s_deployer import FlinkDeployer
from clients.k8s_resources import (
    DeploymentClient,
    FlinkApplicationClient,
    IngressClient,
    load_kubernetes_config,
)
from clients.k8s_watch import ResourceInformer, object_key
from config import Settings
from core.ingress import IngressPublisher
from core.models import FlinkApplication, split_key
from core.state import ApplicationRegistry, SavepointLedger
from core.work_queue import WorkQueue

from .reconciler import Reconciler
from .status_poller import StatusPoller

logger = logging.getLogger("operator.controller")

DEQUEUE_TIMEOUT_SECONDS = 1.0


class DeletionHandler:
    """Tears down the cluster of a deleted FlinkApplication.

    Runs on the informer thread, so it only issues the Deployment delete
    (foreground cascading) and drops in-memory state. No savepoint is taken.
    """

    def __init__(
        self,
        registry: ApplicationRegistry,
        ledger: SavepointLedger,
        deployments: DeploymentClient,
        rest_clients: FlinkRestClientPool,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.deployments = deployments
        self.rest_clients = rest_clients

    def handle(self, key: str) -> None:
        namespace, name = split_key(key)
        logger.info("Application deleted, destroying Flink cluster", extra={"key": key})
        self.deployments.delete(namespace, name, cascading=True)
        self.registry.forget(key)
        evicted = self.ledger.evict_owner(key)
        self.rest_clients.discard(key)
        logger.info("Application removed", extra={"key": key, "evicted_savepoints": evicted})


def cache_lookup(informer: ResourceInformer) -> Callable[[str], FlinkApplication | None]:
    """Return a function reading applications from the informer cache."""

    def lookup(key: str) -> FlinkApplication | None:
        obj = informer.get(key)
        if obj is None:
            return None
        return FlinkApplication.from_dict(obj)

    return lookup


class FlinkApplicationController:
    """Runs the operator's control loops.

    Use `from_settings()` to build a controller against a live cluster; the
    constructor takes the collaborators directly so tests can inject fakes.
    """

    def __init__(
        self,
        *,
        informer: ResourceInformer,
        queue: WorkQueue,
        registry: ApplicationRegistry,
        ledger: SavepointLedger,
        reconciler: Reconciler,
        poller: StatusPoller,
        deletion_handler: DeletionHandler,
        rest_clients: FlinkRestClientPool | None = None,
    ) -> None:
        self.informer = informer
        self.queue = queue
        self.registry = registry
        self.ledger = ledger
        self.reconciler = reconciler
        self.poller = poller
        self.deletion_handler = deletion_handler
        self.rest_clients = rest_clients

        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

        informer.add_event_handler(on_add=self.on_add, on_update=self.on_update, on_delete=self.on_delete)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FlinkApplicationController":
        """Build a controller with real Kubernetes and Flink clients.

        Raises:
            kubernetes.config.ConfigException: If no cluster configuration
                can be loaded.
        """
        load_kubernetes_config()

        op = settings.operator
        registry = ApplicationRegistry()
        ledger = SavepointLedger()
        queue = WorkQueue(capacity=op.queue_capacity)
        applications = FlinkApplicationClient()
        deployments = DeploymentClient()
        rest_clients = FlinkRestClientPool(settings.flink)

        informer = ResourceInformer(
            applications.list_raw,
            op.namespace,
            resync_period_s=op.resync_period_s,
            watch_timeout_s=op.watch_timeout_s,
        )
        ingress = IngressPublisher(
            registry,
            IngressClient(),
            deployments,
            name=op.operator_name,
            namespace=op.namespace,
            domain=settings.flink.ingress_domain,
        )
        reconciler = Reconciler(
            lookup=cache_lookup(informer),
            registry=registry,
            ledger=ledger,
            deployer=FlinkDeployer(),
            deployments=deployments,
            applications=applications,
            rest_clients=rest_clients,
            ingress=ingress,
            operator_config=op,
            flink_config=settings.flink,
        )
        poller = StatusPoller(
            registry,
            ledger,
            applications,
            rest_clients,
            interval_s=op.status_poll_interval_s,
        )
        return cls(
            informer=informer,
            queue=queue,
            registry=registry,
            ledger=ledger,
            reconciler=reconciler,
            poller=poller,
            deletion_handler=DeletionHandler(registry, ledger, deployments, rest_clients),
            rest_clients=rest_clients,
        )

    # Watch callbacks (informer thread)

    def on_add(self, obj: dict[str, Any]) -> None:
        self.queue.enqueue(object_key(obj))

    def on_update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        self.queue.enqueue(object_key(new))

    def on_delete(self, obj: dict[str, Any], final_state_unknown: bool = False) -> None:
        key = object_key(obj)
        if final_state_unknown:
            logger.info("Missed delete event, cleaning up after relist", extra={"key": key})
        try:
            self.deletion_handler.handle(key)
        except ValueError:
            logger.warning("Ignoring delete of invalid object", extra={"key": key})

    # Loops

    def _reconcile_loop(self) -> None:
        while not self._stop.is_set():
            if self.informer.wait_for_sync(DEQUEUE_TIMEOUT_SECONDS):
                break
        logger.info("Reconciler started")
        while not self._stop.is_set():
            key = self.queue.dequeue(timeout=DEQUEUE_TIMEOUT_SECONDS)
            if key is not None:
                self.reconciler.process(key)
        logger.info("Reconciler stopped")

    def start(self) -> None:
        """Start the informer, reconciler and poller threads."""
        if self._threads:
            return
        self._stop.clear()
        self.informer.start()
        self._threads = [
            threading.Thread(target=self._reconcile_loop, name="reconciler", daemon=True),
            threading.Thread(target=self.poller.run, args=(self._stop,), name="status-poller", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Controller started", extra={"namespace": self.informer.namespace})

    def stop(self, timeout: float = 10.0) -> None:
        """Signal all loops to stop and wait for their threads."""
        self._stop.set()
        self.informer.stop(timeout)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        if self.rest_clients is not None:
            self.rest_clients.close()
        logger.info("Controller stopped")

    def is_ready(self) -> bool:
        """True once the informer synced and every loop thread is alive."""
        return (
            self.informer.has_synced()
            and self.informer.is_alive()
            and bool(self._threads)
            and all(t.is_alive() for t in self._threads)
        )
