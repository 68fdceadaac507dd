"""Shared in-memory state of the controller.

Two lock-guarded maps are shared between the reconciler thread, the status
poller thread, the watch thread (deletions) and the HTTP surface:

- `ApplicationRegistry`: application key -> `RegistryEntry` (last accepted
  application plus its effective configuration), and the set of applications
  left unmanaged after a failed image update.
- `SavepointLedger`: job id -> savepoint path, tagged with the owning
  application so entries can be evicted when it goes away.

Readers get snapshots; no caller ever holds a reference into the live maps.
"""

import logging
import threading

import attrs

from core.effective_config import EffectiveConfig
from core.models import FlinkApplication

logger = logging.getLogger("operator.state")


@attrs.define(frozen=True, slots=True)
class RegistryEntry:
    """Last accepted application and the configuration it was resolved to."""

    app: FlinkApplication
    config: EffectiveConfig

    @property
    def key(self) -> str:
        return self.app.key

    @property
    def savepoint_generation(self) -> int:
        return self.app.spec.savepoint_generation


@attrs.define(frozen=True, slots=True)
class UnmanagedMark:
    """Why an application is not managed any more.

    Attributes:
        spec_fingerprint: Fingerprint of the spec whose update failed.
        reason: Human readable cause.
    """

    spec_fingerprint: str
    reason: str


class ApplicationRegistry:
    """Registry of managed applications."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, RegistryEntry] = {}
        self._unmanaged: dict[str, UnmanagedMark] = {}

    def get(self, key: str) -> RegistryEntry | None:
        with self._lock:
            return self._entries.get(key)

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def put(self, entry: RegistryEntry) -> None:
        """Insert or replace the entry of `entry.key`.

        Also clears an unmanaged mark for the key, since the application is
        managed again.
        """
        with self._lock:
            self._entries[entry.key] = entry
            self._unmanaged.pop(entry.key, None)

    def remove(self, key: str) -> RegistryEntry | None:
        with self._lock:
            return self._entries.pop(key, None)

    def snapshot(self) -> list[RegistryEntry]:
        """Return the entries sorted by key."""
        with self._lock:
            return [self._entries[k] for k in sorted(self._entries)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # Unmanaged applications

    def mark_unmanaged(self, key: str, spec_fingerprint: str, reason: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._unmanaged[key] = UnmanagedMark(spec_fingerprint=spec_fingerprint, reason=reason)
        logger.warning("Application left unmanaged", extra={"key": key, "reason": reason})

    def unmanaged_mark(self, key: str) -> UnmanagedMark | None:
        with self._lock:
            return self._unmanaged.get(key)

    def clear_unmanaged(self, key: str) -> bool:
        with self._lock:
            return self._unmanaged.pop(key, None) is not None

    def unmanaged_snapshot(self) -> dict[str, UnmanagedMark]:
        with self._lock:
            return dict(self._unmanaged)

    def forget(self, key: str) -> None:
        """Drop every trace of `key`: entry and unmanaged mark."""
        with self._lock:
            self._entries.pop(key, None)
            self._unmanaged.pop(key, None)


@attrs.define(frozen=True, slots=True)
class LedgerEntry:
    path: str
    owner: str


class SavepointLedger:
    """Last known savepoint path per job."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, LedgerEntry] = {}

    def record(self, job_id: str, path: str, owner: str) -> None:
        """Record `path` as the latest savepoint of `job_id`, owned by application `owner`."""
        with self._lock:
            self._entries[job_id] = LedgerEntry(path=path, owner=owner)

    def get(self, job_id: str) -> str | None:
        with self._lock:
            entry = self._entries.get(job_id)
        return entry.path if entry else None

    def evict_owner(self, owner: str) -> int:
        """Remove all entries of application `owner`.

        Returns:
            Number of removed entries.
        """
        with self._lock:
            doomed = [job_id for job_id, entry in self._entries.items() if entry.owner == owner]
            for job_id in doomed:
                del self._entries[job_id]
        return len(doomed)

    def snapshot(self) -> dict[str, LedgerEntry]:
        with self._lock:
            return dict(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
