# -*- coding: utf-8 -*-
"""
Per target results and the frozen summary of one sync cycle.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Outcome(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    SKIPPED = "Skipped"
    FAILED = "Failed"
    DELETED = "Deleted"
    KEYS_REMOVED = "KeysRemoved"

    @property
    def is_change(self):
        return self in (Outcome.CREATED, Outcome.UPDATED, Outcome.DELETED, Outcome.KEYS_REMOVED)


STATUS_FAILED = "Failed"
STATUS_UP_TO_DATE = "UP-TO-DATE"
STATUS_SUCCESS = "Success"


def _utcnow():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TargetResult:
    namespace: str
    name: str
    outcome: Outcome
    error: str = None
    change_reason: str = None
    source_item_count: int = 0
    key_count: int = 0
    dry_run: bool = False
    timestamp: datetime = field(default_factory=_utcnow)
    source_revision: datetime = None

    def to_dict(self):
        return {
            "namespace": self.namespace,
            "name": self.name,
            "outcome": self.outcome.value,
            "error": self.error,
            "change_reason": self.change_reason,
            "source_item_count": self.source_item_count,
            "key_count": self.key_count,
            "dry_run": self.dry_run,
            "timestamp": self.timestamp.isoformat(),
            "source_revision": self.source_revision.isoformat() if self.source_revision else None,
        }


@dataclass(frozen=True)
class OrphanResult:
    namespace: str
    name: str
    outcome: Outcome
    removed_keys: tuple = ()
    preserved_keys: tuple = ()
    error: str = None
    dry_run: bool = False

    def to_dict(self):
        return {
            "namespace": self.namespace,
            "name": self.name,
            "outcome": self.outcome.value,
            "removed_keys": list(self.removed_keys),
            "preserved_keys": list(self.preserved_keys),
            "error": self.error,
            "dry_run": self.dry_run,
        }


@dataclass(frozen=True)
class NamespaceSummary:
    name: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    source_items: int = 0
    secrets: tuple = ()
    errors: tuple = ()

    @property
    def success(self):
        return self.failed == 0

    def to_dict(self):
        return {
            "name": self.name,
            "success": self.success,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "source_items": self.source_items,
            "secrets": list(self.secrets),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class OrphanCleanupSummary:
    enabled: bool = False
    ran: bool = False
    results: tuple = ()
    errors: tuple = ()

    def _count(self, outcome):
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def found(self):
        return len(self.results)

    @property
    def deleted(self):
        return self._count(Outcome.DELETED)

    @property
    def keys_removed(self):
        return self._count(Outcome.KEYS_REMOVED)

    @property
    def failed(self):
        return self._count(Outcome.FAILED)

    @property
    def success(self):
        return self.failed == 0 and not self.errors

    def to_dict(self):
        return {
            "enabled": self.enabled,
            "ran": self.ran,
            "success": self.success,
            "found": self.found,
            "deleted": self.deleted,
            "keys_removed": self.keys_removed,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class SyncSummary:
    """Everything that happened in one cycle. Built by SummaryAccumulator."""
    sync_number: int
    started_at: datetime
    finished_at: datetime
    dry_run: bool = False
    total_items: int = 0
    results: tuple = ()
    namespaces: tuple = ()
    orphan_cleanup: OrphanCleanupSummary = field(default_factory=OrphanCleanupSummary)
    warnings: tuple = ()
    errors: tuple = ()
    cancelled: bool = False

    def _count(self, outcome):
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def created(self):
        return self._count(Outcome.CREATED)

    @property
    def updated(self):
        return self._count(Outcome.UPDATED)

    @property
    def skipped(self):
        return self._count(Outcome.SKIPPED)

    @property
    def failed(self):
        return self._count(Outcome.FAILED)

    @property
    def processed(self):
        return len(self.results)

    @property
    def total_namespaces(self):
        return len(self.namespaces)

    @property
    def duration_seconds(self):
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def has_changes(self):
        return any(r.outcome.is_change for r in self.results) or \
            any(r.outcome.is_change for r in self.orphan_cleanup.results)

    @property
    def overall_success(self):
        return self.failed == 0 and not self.errors and self.orphan_cleanup.success

    @property
    def status(self):
        if not self.overall_success:
            return STATUS_FAILED
        if not self.has_changes:
            return STATUS_UP_TO_DATE
        return STATUS_SUCCESS

    def namespace(self, name):
        for namespace in self.namespaces:
            if namespace.name == name:
                return namespace
        return None

    def result_for(self, namespace, name):
        for result in self.results:
            if result.namespace == namespace and result.name == name:
                return result
        return None

    def describe(self):
        """Short multi-line text for logs."""
        lines = [
            f"Sync #{self.sync_number} {self.status}{' (dry run)' if self.dry_run else ''}"
            f" in {self.duration_seconds:.2f}s: {self.total_items} items,"
            f" {self.processed} secrets in {self.total_namespaces} namespaces",
            f"  created={self.created} updated={self.updated} skipped={self.skipped} failed={self.failed}",
        ]
        if self.orphan_cleanup.ran:
            lines.append(f"  orphans found={self.orphan_cleanup.found} deleted={self.orphan_cleanup.deleted}"
                         f" keys_removed={self.orphan_cleanup.keys_removed}"
                         f" failed={self.orphan_cleanup.failed}")
        if self.cancelled:
            lines.append("  cancelled before completion")
        lines.extend(f"  warning: {w}" for w in self.warnings)
        lines.extend(f"  error: {e}" for e in self.errors)
        return "\n".join(lines)

    def to_dict(self):
        return {
            "sync_number": self.sync_number,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "dry_run": self.dry_run,
            "status": self.status,
            "overall_success": self.overall_success,
            "has_changes": self.has_changes,
            "cancelled": self.cancelled,
            "total_items": self.total_items,
            "total_namespaces": self.total_namespaces,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "namespaces": [n.to_dict() for n in self.namespaces],
            "results": [r.to_dict() for r in self.results],
            "orphan_cleanup": self.orphan_cleanup.to_dict(),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }


class SummaryAccumulator:
    """Thread safe collector that freezes into a SyncSummary."""

    def __init__(self, sync_number=1, dry_run=False, orphan_cleanup_enabled=False):
        self._lock = threading.Lock()
        self._sync_number = sync_number
        self._dry_run = dry_run
        self._orphans_enabled = orphan_cleanup_enabled
        self._orphans_ran = False
        self._started_at = _utcnow()
        self._total_items = 0
        self._results = []
        self._orphan_results = []
        self._orphan_errors = []
        self._warnings = []
        self._errors = []
        self._cancelled = False

    @property
    def started_at(self):
        return self._started_at

    @property
    def cancelled(self):
        with self._lock:
            return self._cancelled

    def set_total_items(self, count):
        with self._lock:
            self._total_items = count

    def add_result(self, result):
        with self._lock:
            self._results.append(result)

    def add_orphan_result(self, result):
        with self._lock:
            self._orphans_ran = True
            self._orphan_results.append(result)

    def add_orphan_error(self, message):
        with self._lock:
            self._orphan_errors.append(message)

    def mark_orphan_cleanup_ran(self):
        with self._lock:
            self._orphans_ran = True

    def add_warning(self, message):
        with self._lock:
            self._warnings.append(message)

    def add_error(self, message):
        with self._lock:
            self._errors.append(message)

    def mark_cancelled(self):
        with self._lock:
            self._cancelled = True

    def results(self):
        with self._lock:
            return list(self._results)

    def _namespaces(self, results):
        by_namespace = {}
        for result in results:
            by_namespace.setdefault(result.namespace, []).append(result)
        summaries = []
        for name in sorted(by_namespace):
            entries = by_namespace[name]
            summaries.append(NamespaceSummary(
                name=name,
                created=sum(1 for r in entries if r.outcome == Outcome.CREATED),
                updated=sum(1 for r in entries if r.outcome == Outcome.UPDATED),
                skipped=sum(1 for r in entries if r.outcome == Outcome.SKIPPED),
                failed=sum(1 for r in entries if r.outcome == Outcome.FAILED),
                source_items=sum(r.source_item_count for r in entries),
                secrets=tuple(sorted(r.name for r in entries)),
                errors=tuple(f"{r.name}: {r.error}" for r in entries if r.error),
            ))
        return tuple(summaries)

    def freeze(self):
        with self._lock:
            results = tuple(sorted(self._results, key=lambda r: (r.namespace, r.name)))
            return SyncSummary(
                sync_number=self._sync_number,
                started_at=self._started_at,
                finished_at=_utcnow(),
                dry_run=self._dry_run,
                total_items=self._total_items,
                results=results,
                namespaces=self._namespaces(results),
                orphan_cleanup=OrphanCleanupSummary(
                    enabled=self._orphans_enabled,
                    ran=self._orphans_ran,
                    results=tuple(sorted(self._orphan_results, key=lambda r: (r.namespace, r.name))),
                    errors=tuple(self._orphan_errors)),
                warnings=tuple(self._warnings),
                errors=tuple(self._errors),
                cancelled=self._cancelled,
            )
