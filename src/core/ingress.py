"""Ingress publication.

The operator exposes the REST endpoint of every managed Flink cluster through
one Ingress, named after the operator and living in the operator namespace.
`build_ingress()` computes it from a Registry snapshot; it is a pure function.
`IngressPublisher.publish()` writes it (create-or-replace) and skips the write
when the rules are unchanged since the last successful publication.

A Kubernetes Ingress needs at least one rule or a default backend, so with no
managed applications the Ingress is deleted instead.
"""

import logging
import threading
from collections.abc import Iterable
from typing import Any

from clients.k8s_resources import DeploymentClient, IngressClient
from core.state import ApplicationRegistry, RegistryEntry
from foundation.exceptions import UpstreamError

logger = logging.getLogger("operator.ingress")


def ingress_host(name: str, namespace: str, domain: str) -> str:
    return f"{name}.{namespace}.{domain}"


def build_rules(entries: Iterable[RegistryEntry], domain: str) -> list[dict[str, Any]]:
    """One rule per entry, sorted by host."""
    rules = []
    for entry in entries:
        cfg = entry.config
        rules.append(
            {
                "host": ingress_host(cfg.cluster_id, cfg.namespace, domain),
                "http": {
                    "paths": [
                        {
                            "path": "/",
                            "pathType": "Prefix",
                            "backend": {
                                "service": {
                                    "name": f"{cfg.cluster_id}-rest",
                                    "port": {"number": cfg.rest_port},
                                }
                            },
                        }
                    ]
                },
            }
        )
    return sorted(rules, key=lambda r: r["host"])


def build_ingress(
    entries: Iterable[RegistryEntry],
    *,
    name: str,
    namespace: str,
    domain: str,
    owner_uid: str | None = None,
) -> dict[str, Any]:
    """Build the operator Ingress for the given Registry entries.

    Args:
        entries: Registry snapshot.
        name: Ingress name; also the name of the owning operator Deployment.
        namespace: Operator namespace.
        domain: Host suffix.
        owner_uid: UID of the operator Deployment. No owner reference when None.

    Returns:
        The Ingress as a `networking.k8s.io/v1` dictionary.
    """
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "labels": {"app.kubernetes.io/managed-by": name},
    }
    if owner_uid:
        metadata["ownerReferences"] = [
            {
                "apiVersion": "apps/v1",
                "kind": "Deployment",
                "name": name,
                "uid": owner_uid,
                "controller": True,
                "blockOwnerDeletion": False,
            }
        ]
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": metadata,
        "spec": {"rules": build_rules(entries, domain)},
    }


class IngressPublisher:
    """Publishes the operator Ingress from the Registry.

    Args:
        registry: Source of the managed applications.
        ingresses: Ingress API client.
        deployments: Deployment API client, used to find the operator
            Deployment for the owner reference.
        name: Ingress and operator Deployment name.
        namespace: Operator namespace.
        domain: Host suffix.
    """

    def __init__(
        self,
        registry: ApplicationRegistry,
        ingresses: IngressClient,
        deployments: DeploymentClient,
        *,
        name: str,
        namespace: str,
        domain: str,
    ) -> None:
        self.registry = registry
        self.ingresses = ingresses
        self.deployments = deployments
        self.name = name
        self.namespace = namespace
        self.domain = domain
        self._lock = threading.Lock()
        self._last_rules: list[dict[str, Any]] | None = None

    def publish(self) -> bool:
        """Publish the Ingress for the current Registry contents.

        Failures are logged, not raised.

        Returns:
            True if the API was written, False if nothing changed or the
            write failed.
        """
        with self._lock:
            entries = self.registry.snapshot()
            rules = build_rules(entries, self.domain)
            if rules == self._last_rules:
                logger.debug("Ingress unchanged, skipping", extra={"rule_count": len(rules)})
                return False

            try:
                if not rules:
                    self.ingresses.delete(self.namespace, self.name)
                else:
                    body = build_ingress(
                        entries,
                        name=self.name,
                        namespace=self.namespace,
                        domain=self.domain,
                        owner_uid=self._owner_uid(),
                    )
                    self.ingresses.create_or_replace(self.namespace, self.name, body)
            except UpstreamError:
                logger.exception("Failed to publish ingress", extra={"ingress": self.name, "rule_count": len(rules)})
                return False

            self._last_rules = rules
            logger.info(
                "Published ingress",
                extra={"ingress": self.name, "hosts": [r["host"] for r in rules]},
            )
            return True

    def _owner_uid(self) -> str | None:
        deployment = self.deployments.get(self.namespace, self.name)
        if deployment is None:
            return None
        return deployment.metadata.uid
