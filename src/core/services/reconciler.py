"""Reconciler: drives each FlinkApplication towards its declared spec.

One reconciliation pass handles one application key taken from the work
queue. It runs on the single reconciler thread and is not re-entrant.

## Per-key state machine

```
Unknown ──create/recover──▶ Deployed ──image change──▶ Updating ──▶ Deployed
                               │                           │
                               └──deployment gone──▶ Removed ◀──┘ (update failed: unmanaged)
```

## Pass outline

0. Read the application from the watch cache. Gone: nothing to do. Marked
   unmanaged with the same spec: skip.
1. Resolve the effective configuration. Invalid: log and stop, no mutation.
2. Not registered, no JobManager Deployment: deploy, register, publish the
   ingress. A failed deploy is logged and the application is registered
   anyway; the next pass notices the missing Deployment.
3. Not registered, Deployment exists: register without deploying (operator
   restart).
4. Registered, Deployment gone: the cluster was deleted behind our back.
   Unregister, evict its savepoints, republish the ingress. No recreate.
5. Otherwise: savepoint trigger protocol, then image-update protocol. Without
   an image change the accepted spec replaces the Registry entry.

Every failure is caught and logged inside the pass. Nothing is retried by
the reconciler itself; the application is looked at again on the next watch
event or resync.
"""

import logging
from collections.abc import Callable

from clients.flink_rest import FlinkRestClient, FlinkRestClientPool
from clients.k8s_deployer import FlinkDeployer
from clients.k8s_resources import DeploymentClient, FlinkApplicationClient
from config import FlinkConfig, OperatorConfig
from core.effective_config import EffectiveConfig, resolve_effective_config
from core.exceptions import (
    ConfigurationError,
    DeployError,
    OperatorTimeoutError,
    SavepointError,
    UpstreamError,
)
from core.ingress import IngressPublisher
from core.models import RECONCILE_STATE_UPDATE_FAILED, FlinkApplication, FlinkApplicationStatus
from core.state import ApplicationRegistry, RegistryEntry, SavepointLedger
from foundation.exceptions import PollTimeoutError
from foundation.retry import poll_until

logger = logging.getLogger("operator.reconciler")


class Reconciler:
    """Reconciles FlinkApplications one key at a time.

    Args:
        lookup: Returns the current application for a key from the watch
            cache, or None if it no longer exists.
        registry: Managed applications.
        ledger: Savepoint paths per job.
        deployer: Creates Flink clusters.
        deployments: Reads JobManager Deployments.
        applications: Writes FlinkApplication status.
        rest_clients: REST clients per application.
        ingress: Ingress publisher.
        operator_config: Teardown wait settings.
        flink_config: Flink defaults for configuration resolution.

    Example:
        >>> reconciler = Reconciler(lookup=..., registry=registry, ledger=ledger, ...)
        >>> reconciler.reconcile("flink/my-app")
    """

    def __init__(
        self,
        *,
        lookup: Callable[[str], FlinkApplication | None],
        registry: ApplicationRegistry,
        ledger: SavepointLedger,
        deployer: FlinkDeployer,
        deployments: DeploymentClient,
        applications: FlinkApplicationClient,
        rest_clients: FlinkRestClientPool,
        ingress: IngressPublisher,
        operator_config: OperatorConfig,
        flink_config: FlinkConfig,
    ) -> None:
        self.lookup = lookup
        self.registry = registry
        self.ledger = ledger
        self.deployer = deployer
        self.deployments = deployments
        self.applications = applications
        self.rest_clients = rest_clients
        self.ingress = ingress
        self.operator_config = operator_config
        self.flink_config = flink_config

    def process(self, key: str) -> None:
        """Run one pass for `key`; never raises."""
        try:
            self.reconcile(key)
        except Exception:
            logger.exception("Reconciliation failed", extra={"key": key})

    def reconcile(self, key: str) -> None:
        """Run one reconciliation pass for `key`.

        Raises:
            UpstreamError: If the Deployment lookup fails. Other failures are
                handled inside the pass.
        """
        app = self.lookup(key)
        if app is None:
            logger.info("Application no longer exists", extra={"key": key})
            return

        mark = self.registry.unmanaged_mark(key)
        if mark is not None:
            if mark.spec_fingerprint == app.spec.fingerprint():
                logger.info("Skipping unmanaged application", extra={"key": key, "reason": mark.reason})
                return
            self.registry.clear_unmanaged(key)
            logger.info("Spec of unmanaged application changed, reconciling again", extra={"key": key})

        try:
            config = resolve_effective_config(app, self.flink_config)
        except ConfigurationError as e:
            logger.error("Invalid application spec", extra={"key": key, "error": str(e)})
            return

        entry = self.registry.get(key)
        deployment_exists = self.deployments.exists(app.namespace, app.name)

        if entry is None:
            if deployment_exists:
                self.registry.put(RegistryEntry(app=app, config=config))
                logger.info("Recovered running application", extra={"key": key, "image": config.image})
            else:
                self._create(app, config)
            return

        if not deployment_exists:
            self._handle_external_deletion(key)
            return

        accepted = self._accept_generation(entry, app)
        self.trigger_savepoints(entry, accepted)

        if accepted.spec.image_name != entry.app.spec.image_name:
            self.update_image(entry, accepted)
            return

        self.registry.put(RegistryEntry(app=accepted, config=config))
        self.ingress.publish()

    # Steps

    def _create(self, app: FlinkApplication, config: EffectiveConfig) -> None:
        logger.info("Deploying new application", extra={"key": app.key, "image": config.image})
        try:
            self.deployer.run(config)
        except DeployError:
            logger.exception("Failed to deploy application", extra={"key": app.key})
        self.registry.put(RegistryEntry(app=app, config=config))
        self.ingress.publish()

    def _handle_external_deletion(self, key: str) -> None:
        logger.warning("JobManager deployment was deleted externally, no longer managing", extra={"key": key})
        self.registry.remove(key)
        evicted = self.ledger.evict_owner(key)
        self.rest_clients.discard(key)
        self.ingress.publish()
        logger.info("Removed application", extra={"key": key, "evicted_savepoints": evicted})

    def _accept_generation(self, entry: RegistryEntry, app: FlinkApplication) -> FlinkApplication:
        recorded = entry.savepoint_generation
        requested = app.spec.savepoint_generation
        if requested >= recorded:
            return app
        logger.warning(
            "Savepoint generation decreased, keeping the recorded one",
            extra={"key": app.key, "recorded_generation": recorded, "requested_generation": requested},
        )
        return app.with_spec(app.spec.with_savepoint_generation(recorded))

    def _rest_client(self, config: EffectiveConfig) -> FlinkRestClient:
        return self.rest_clients.get(config.key, config.rest_url)

    def trigger_savepoints(self, entry: RegistryEntry, app: FlinkApplication) -> int:
        """Take a savepoint of every live job if the generation was raised.

        Args:
            entry: Registry entry before this pass.
            app: Application as accepted in this pass.

        Returns:
            Number of savepoints recorded in the ledger.
        """
        if app.spec.savepoint_generation <= entry.savepoint_generation:
            return 0

        key = app.key
        logger.info(
            "Savepoint generation raised, triggering savepoints",
            extra={
                "key": key,
                "previous_generation": entry.savepoint_generation,
                "generation": app.spec.savepoint_generation,
            },
        )
        client = self._rest_client(entry.config)
        try:
            jobs = client.list_jobs()
        except UpstreamError:
            logger.exception("Failed to list jobs for savepoint", extra={"key": key})
            return 0

        recorded = 0
        for job in jobs:
            try:
                path = client.trigger_savepoint(job.job_id, app.spec.savepoints_dir)
            except (SavepointError, UpstreamError):
                logger.exception("Failed to trigger savepoint", extra={"key": key, "job_id": job.job_id})
                continue
            self.ledger.record(job.job_id, path, key)
            recorded += 1
        return recorded

    def update_image(self, entry: RegistryEntry, app: FlinkApplication) -> bool:
        """Blue/green image update: stop with savepoint, then redeploy from it.

        The application is read again once the old cluster is down. If it was
        deleted meanwhile nothing is redeployed; if its spec was edited the
        latest spec is deployed from the savepoint.

        Args:
            entry: Registry entry of the running deployment.
            app: Application with the new image.

        Returns:
            True if the new deployment was created and registered, False if
            the update was aborted or failed.
        """
        key = app.key
        logger.info(
            "Image changed, updating application",
            extra={"key": key, "old_image": entry.app.spec.image_name, "new_image": app.spec.image_name},
        )

        try:
            resolve_effective_config(app, self.flink_config)
        except ConfigurationError as e:
            logger.error("Invalid spec for image update, keeping current deployment", extra={"key": key, "error": str(e)})
            return False

        restore_path = self._stop_jobs_with_savepoint(entry, app)

        failure: str | None = None
        if restore_path is not None:
            try:
                self.wait_for_teardown(entry.config)
            except OperatorTimeoutError as e:
                logger.exception("Old deployment did not terminate", extra={"key": key})
                failure = str(e)
        else:
            failure = "No savepoint was taken from the running jobs"

        self.registry.remove(key)
        self.rest_clients.discard(key)

        # The resource may have been deleted or edited while jobs were stopping
        current = self.lookup(key)
        if current is None:
            self._drop_deleted(key)
            return False
        latest = self._accept_generation(entry, current)
        if latest.spec.fingerprint() != app.spec.fingerprint():
            logger.info("Spec changed during update, deploying the latest spec", extra={"key": key})
            app = latest

        if failure is None:
            restored = app.with_spec(app.spec.with_from_savepoint(restore_path))
            try:
                config = resolve_effective_config(restored, self.flink_config)
                self.deployer.run(config)
            except (ConfigurationError, DeployError) as e:
                logger.exception("Failed to deploy updated application", extra={"key": key})
                failure = f"Redeploy failed: {e}"
            else:
                self.registry.put(RegistryEntry(app=restored, config=config))
                # Registered before the check so a concurrent delete either
                # sees the entry or has already left the cache
                if self.lookup(key) is None:
                    self.deployments.delete(config.namespace, config.cluster_id, cascading=True)
                    self._drop_deleted(key)
                    return False
                self.ingress.publish()
                logger.info(
                    "Application updated",
                    extra={"key": key, "image": config.image, "from_savepoint": restore_path},
                )
                return True

        self._leave_unmanaged(app, failure)
        return False

    def _stop_jobs_with_savepoint(self, entry: RegistryEntry, app: FlinkApplication) -> str | None:
        key = app.key
        target = app.spec.savepoints_dir or entry.app.spec.savepoints_dir
        client = self._rest_client(entry.config)
        try:
            jobs = client.list_jobs()
        except UpstreamError:
            logger.exception("Failed to list jobs before update", extra={"key": key})
            return None

        restore_path: str | None = None
        for job in jobs:
            try:
                if app.spec.drain_flag:
                    path = client.stop_with_savepoint(job.job_id, target, drain=True)
                else:
                    path = client.cancel_with_savepoint(job.job_id, target)
            except (SavepointError, UpstreamError):
                logger.exception("Failed to stop job with savepoint", extra={"key": key, "job_id": job.job_id})
                continue
            self.ledger.record(job.job_id, path, key)
            restore_path = path
        return restore_path

    def wait_for_teardown(self, config: EffectiveConfig) -> None:
        """Block until the JobManager Deployment of `config` is gone.

        Lookup errors are logged and the wait continues.

        Raises:
            OperatorTimeoutError: If the Deployment is still there after the
                teardown timeout.
        """

        def gone() -> bool:
            try:
                return not self.deployments.exists(config.namespace, config.cluster_id)
            except UpstreamError:
                logger.warning("Deployment lookup failed during teardown", exc_info=True, extra={"key": config.key})
                return False

        try:
            poll_until(
                gone,
                interval_s=self.operator_config.teardown_poll_interval_s,
                timeout_s=self.operator_config.teardown_timeout_s,
                description=f"deployment {config.key} to terminate",
                logger=logger,
            )
        except PollTimeoutError as e:
            raise OperatorTimeoutError(str(e)) from e

    def _drop_deleted(self, key: str) -> None:
        logger.info("Application deleted during update, not redeploying", extra={"key": key})
        self.registry.remove(key)
        evicted = self.ledger.evict_owner(key)
        self.rest_clients.discard(key)
        self.ingress.publish()
        logger.info("Removed application", extra={"key": key, "evicted_savepoints": evicted})

    def _leave_unmanaged(self, app: FlinkApplication, reason: str) -> None:
        key = app.key
        self.registry.mark_unmanaged(key, app.spec.fingerprint(), reason)
        self.ingress.publish()
        status = FlinkApplicationStatus(reconcile_state=RECONCILE_STATE_UPDATE_FAILED, error=reason)
        try:
            self.applications.patch_status(app.namespace, app.name, status.to_dict())
        except UpstreamError:
            logger.exception("Failed to publish update failure", extra={"key": key})
