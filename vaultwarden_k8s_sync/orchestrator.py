# -*- coding: utf-8 -*-
"""
One full sync cycle: lock, authenticate, fetch, reconcile, clean orphans.
"""

import logging
import threading

from vaultwarden_k8s_sync.cleanup import OrphanCleaner
from vaultwarden_k8s_sync.collaborators import LoggingAuditSink
from vaultwarden_k8s_sync.config import SyncSettings
from vaultwarden_k8s_sync.engine import ReconciliationEngine
from vaultwarden_k8s_sync.exceptions import AuthenticationFailure, PersistentEmptySource
from vaultwarden_k8s_sync.locks import ProcessLock
from vaultwarden_k8s_sync.summary import SummaryAccumulator


class SyncOrchestrator:
    """Runs sync cycles and keeps the little state that spans them.

    The state is the cycle counter, whether the source is authenticated and
    how many items the last cycle saw. An empty vault right after a cycle that
    had items usually means an expired session rather than a wiped vault, so
    the source is re-authenticated and the cycle refuses to continue (and
    delete everything) if it stays empty.

    Args:
        source (SecretSource): vault items.
        sink (SecretSink): cluster secrets.
        settings (SyncSettings, optional): defaults to SyncSettings().
        audit (AuditSink, optional): defaults to LoggingAuditSink.
        engine (ReconciliationEngine, optional): built from sink and settings.
        cleaner (OrphanCleaner, optional): built from sink and settings.
        process_lock (ProcessLock, optional): built from settings.lock_path.
    """

    def __init__(self, source, sink, settings=None, audit=None, engine=None, cleaner=None,
                 process_lock=None):
        self._source = source
        self._sink = sink
        self._settings = settings or SyncSettings()
        self._audit = audit or LoggingAuditSink()
        self._engine = engine or ReconciliationEngine(sink, self._settings, audit=self._audit)
        self._cleaner = cleaner or OrphanCleaner(sink, self._settings, audit=self._audit)
        self._process_lock = process_lock or ProcessLock(self._settings.lock_path)
        self._state_lock = threading.Lock()
        self._sync_count = 0
        self._authenticated = False
        self._last_item_count = 0

    @property
    def sync_count(self):
        return self._sync_count

    @property
    def last_item_count(self):
        return self._last_item_count

    @property
    def authenticated(self):
        return self._authenticated

    def reset(self):
        with self._state_lock:
            self._sync_count = 0
            self._authenticated = False
            self._last_item_count = 0

    def _authenticate(self, reason):
        logging.getLogger(__name__).info(f"Authenticating with vault ({reason})")
        if not self._source.authenticate():
            self._authenticated = False
            raise AuthenticationFailure(reason)
        self._authenticated = True

    def _fetch_items(self, accumulator):
        if not self._authenticated:
            self._authenticate("not authenticated")
        items = list(self._source.fetch_items())
        if items:
            return items
        if self._last_item_count > 0:
            logging.getLogger(__name__).warning(
                f"Vault returned no items but last sync saw {self._last_item_count}, re-authenticating")
            self._authenticated = False
            self._authenticate("empty result after a successful fetch")
            items = list(self._source.fetch_items())
            if not items:
                raise PersistentEmptySource(self._last_item_count)
            return items
        accumulator.add_warning("No items found in vault")
        logging.getLogger(__name__).warning("No items found in vault")
        return items

    def sync_once(self, cancel_event=None):
        """Run a single cycle and return its SyncSummary.

        Raises:
            SyncAlreadyRunning: another process holds the lock.
            AuthenticationFailure: the vault refused the credentials.
            PersistentEmptySource: the vault stayed empty after re-authentication.
        """
        with self._process_lock:
            with self._state_lock:
                self._sync_count += 1
                sync_number = self._sync_count
            logging.getLogger(__name__).info(
                f"Starting sync #{sync_number}{' (dry run)' if self._settings.dry_run else ''}")
            accumulator = SummaryAccumulator(sync_number=sync_number,
                                             dry_run=self._settings.dry_run,
                                             orphan_cleanup_enabled=self._settings.delete_orphans)

            items = self._fetch_items(accumulator)
            accumulator.set_total_items(len(items))
            if not items:
                summary = accumulator.freeze()
                self._record_summary(summary)
                return summary

            plan = self._engine.plan(items)
            for message in plan.rejected:
                accumulator.add_warning(message)
            self._engine.reconcile(plan, accumulator, cancel_event)

            if self._settings.delete_orphans:
                if accumulator.cancelled or (cancel_event is not None and cancel_event.is_set()):
                    accumulator.add_warning("Orphan cleanup skipped, sync was cancelled")
                elif plan.rejected:
                    accumulator.add_warning("Orphan cleanup skipped, some items could not be projected")
                else:
                    self._cleaner.cleanup(plan.active_keys, accumulator, cancel_event)

            summary = accumulator.freeze()
            with self._state_lock:
                self._last_item_count = len(items)

        self._record_summary(summary)
        return summary

    def _record_summary(self, summary):
        try:
            self._audit.record_summary(summary)
        except Exception as e:
            logging.getLogger(__name__).warning(f"Audit of sync #{summary.sync_number} summary failed: {e}")
