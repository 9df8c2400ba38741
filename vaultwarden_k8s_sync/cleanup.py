# -*- coding: utf-8 -*-
"""
Removal of secrets, or the synced keys inside them, whose vault items are gone.
"""

import logging

from vaultwarden_k8s_sync.collaborators import LoggingAuditSink
from vaultwarden_k8s_sync.config import CREATED_BY_LABEL, SYNC_OWNED_ANNOTATIONS, SyncSettings
from vaultwarden_k8s_sync.merge import strip_managed_keys
from vaultwarden_k8s_sync.summary import Outcome, OrphanResult


class OrphanCleaner:
    """Find secrets this sync created that no vault item targets any more.

    A candidate must carry the created-by label and a non-empty ledger. Its
    owned keys are dropped, if nothing else is left the secret is deleted,
    otherwise the remaining keys are written back and the secret stops being
    marked as created by this sync. Annotations and labels that came from
    item metadata go with the owned keys.
    """

    def __init__(self, sink, settings=None, audit=None):
        self._sink = sink
        self._settings = settings or SyncSettings()
        self._audit = audit or LoggingAuditSink()

    @property
    def dry_run(self):
        return self._settings.dry_run

    def candidates(self, namespace):
        managed = set(self._sink.list_managed_secret_names(namespace))
        managed.discard(self._settings.auth_token_secret)
        if not managed:
            return []
        with_keys = set(self._sink.list_secrets_with_managed_keys(namespace))
        return sorted(managed & with_keys)

    def cleanup(self, active_targets, accumulator, cancel_event=None):
        """Process every orphan outside active_targets.

        Returns:
            list: OrphanResult per orphan found.
        """
        accumulator.mark_orphan_cleanup_ran()
        results = []
        try:
            namespaces = list(self._sink.list_namespaces())
        except Exception as e:
            message = f"Orphan cleanup could not list namespaces: {e}"
            logging.getLogger(__name__).error(message)
            accumulator.add_orphan_error(message)
            return results

        for namespace in namespaces:
            if cancel_event is not None and cancel_event.is_set():
                accumulator.mark_cancelled()
                accumulator.add_warning("Cancelled during orphan cleanup")
                break
            try:
                names = self.candidates(namespace)
            except Exception as e:
                message = f"Orphan cleanup could not list secrets in {namespace}: {e}"
                logging.getLogger(__name__).error(message)
                accumulator.add_orphan_error(message)
                continue
            for name in names:
                if (namespace, name) in active_targets:
                    continue
                result = self.clean(namespace, name)
                accumulator.add_orphan_result(result)
                results.append(result)
        logging.getLogger(__name__).info(f"Orphan cleanup handled {len(results)} secrets")
        return results

    def clean(self, namespace, name):
        """Strip or delete one orphan. Never raises."""
        try:
            result = self._clean(namespace, name)
        except Exception as e:
            logging.getLogger(__name__).error(f"Failed to clean orphan {namespace}/{name}: {e}")
            result = OrphanResult(namespace=namespace, name=name, outcome=Outcome.FAILED,
                                  error=str(e), dry_run=self.dry_run)
        try:
            self._audit.record_outcome(result)
        except Exception as e:
            logging.getLogger(__name__).warning(f"Audit of orphan {namespace}/{name} failed: {e}")
        return result

    def _clean(self, namespace, name):
        existing = self._sink.get_secret(namespace, name)
        if existing is None:
            # deleted by someone else since listing
            return OrphanResult(namespace=namespace, name=name, outcome=Outcome.DELETED,
                                dry_run=self.dry_run)
        stripped = strip_managed_keys(existing.data, existing.ledger)
        if stripped.is_empty:
            if not self.dry_run:
                self._sink.delete_secret(namespace, name)
            logging.getLogger(__name__).info(
                f"{'Would delete' if self.dry_run else 'Deleted'} orphaned secret {namespace}/{name}")
            return OrphanResult(namespace=namespace, name=name, outcome=Outcome.DELETED,
                                removed_keys=tuple(stripped.stale_keys), dry_run=self.dry_run)

        synced_annotations, synced_labels = existing.managed_metadata
        annotations = {k: v for k, v in existing.annotations.items()
                       if k not in SYNC_OWNED_ANNOTATIONS and k not in synced_annotations}
        labels = {k: v for k, v in existing.labels.items()
                  if k != CREATED_BY_LABEL and k not in synced_labels}
        if not self.dry_run:
            self._sink.update_secret(namespace, name, stripped.data, annotations, labels)
        logging.getLogger(__name__).info(
            f"{'Would remove' if self.dry_run else 'Removed'} synced keys {stripped.stale_keys} from "
            f"{namespace}/{name}, external keys preserved: {stripped.preserved_keys}")
        return OrphanResult(namespace=namespace, name=name, outcome=Outcome.KEYS_REMOVED,
                            removed_keys=tuple(stripped.stale_keys),
                            preserved_keys=tuple(stripped.preserved_keys),
                            dry_run=self.dry_run)
