# -*- coding: utf-8 -*-
"""
Reconciliation of projected vault items against the secrets in the sink.

A cycle is two steps. plan() groups the projections of all items by
(namespace, secret name) and merges them into one Target each, reconcile()
then creates, updates or skips the secret for every Target.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from vaultwarden_k8s_sync.collaborators import LoggingAuditSink
from vaultwarden_k8s_sync.config import CREATED_BY_LABEL, CREATED_BY_VALUE, MANAGED_BY_LABEL, \
    MANAGED_BY_VALUE, MANAGED_KEYS_ANNOTATION, MANAGED_METADATA_ANNOTATION, SIGNATURE_ANNOTATION, \
    SYNC_OWNED_ANNOTATIONS, SyncSettings
from vaultwarden_k8s_sync.exceptions import InvalidArgument, SecretNotFound, TargetNotFound
from vaultwarden_k8s_sync.locks import TargetLocks
from vaultwarden_k8s_sync.merge import merge_managed_keys
from vaultwarden_k8s_sync.projector import ItemProjector
from vaultwarden_k8s_sync.signature import compute_signature, serialize_ledger, serialize_metadata_keys
from vaultwarden_k8s_sync.summary import Outcome, TargetResult

MANAGEMENT_LABELS = {
    MANAGED_BY_LABEL: MANAGED_BY_VALUE,
    CREATED_BY_LABEL: CREATED_BY_VALUE,
}

REASON_INITIAL_SIGNATURE = "initial-signature"
REASON_CONTENT = "content"
REASON_DRIFT = "drift"
REASON_RECREATED = "recreated"


@dataclass
class Target:
    namespace: str
    name: str
    document: dict = field(default_factory=dict)
    annotations: dict = field(default_factory=dict)
    labels: dict = field(default_factory=dict)
    item_ids: list = field(default_factory=list)
    revision_date: object = None

    @property
    def key(self):
        return (self.namespace, self.name)

    @property
    def signature(self):
        return compute_signature(self.document, self.annotations, self.labels)

    def absorb(self, projection):
        self.document.update(projection.document)
        self.annotations.update(projection.annotations)
        self.labels.update(projection.labels)
        self.item_ids.append(projection.item_id)
        if projection.revision_date is not None and (
                self.revision_date is None or projection.revision_date > self.revision_date):
            self.revision_date = projection.revision_date


@dataclass
class Plan:
    targets: dict = field(default_factory=dict)
    rejected: list = field(default_factory=list)
    ignored_items: int = 0

    @property
    def active_keys(self):
        return set(self.targets)

    @property
    def namespaces(self):
        return sorted({namespace for namespace, _ in self.targets})


class ReconciliationEngine:
    """Drive secrets in a SecretSink towards the documents of a Plan.

    Args:
        sink (SecretSink): where secrets are read and written.
        settings (SyncSettings, optional): dry run, worker count, field names.
        projector (ItemProjector, optional): defaults to one built from
            settings.field_names.
        audit (AuditSink, optional): told about every TargetResult.
        target_locks (TargetLocks, optional): share with other engines in the
            same process so one target is never written twice at once.
    """

    def __init__(self, sink, settings=None, projector=None, audit=None, target_locks=None):
        self._sink = sink
        self._settings = settings or SyncSettings()
        self._projector = projector or ItemProjector(self._settings.field_names)
        self._audit = audit or LoggingAuditSink()
        self._target_locks = target_locks or TargetLocks()

    @property
    def settings(self):
        return self._settings

    @property
    def dry_run(self):
        return self._settings.dry_run

    def plan(self, items):
        plan = Plan()
        for item in items:
            try:
                projection = self._projector.project(item)
            except InvalidArgument as e:
                plan.rejected.append(f"Item {item.id} ({item.name}) rejected: {e}")
                logging.getLogger(__name__).warning(plan.rejected[-1])
                continue
            if projection is None:
                plan.ignored_items += 1
                continue
            if projection.secret_name == self._settings.auth_token_secret:
                plan.rejected.append(f"Item {item.id} ({item.name}) rejected: secret name "
                                     f"{projection.secret_name} is reserved for the auth token")
                logging.getLogger(__name__).warning(plan.rejected[-1])
                continue
            for namespace in projection.namespaces:
                key = (namespace, projection.secret_name)
                target = plan.targets.get(key)
                if target is None:
                    target = Target(namespace=namespace, name=projection.secret_name)
                    plan.targets[key] = target
                target.absorb(projection)
        logging.getLogger(__name__).info(
            f"Planned {len(plan.targets)} secrets from {len(items)} items, "
            f"{plan.ignored_items} without namespaces, {len(plan.rejected)} rejected")
        return plan

    def _check_namespaces(self, plan):
        status = {}
        for namespace in plan.namespaces:
            try:
                status[namespace] = (self._sink.namespace_exists(namespace), None)
            except Exception as e:
                logging.getLogger(__name__).warning(f"Could not check namespace {namespace}: {e}")
                status[namespace] = (False, str(e))
        return status

    def reconcile(self, plan, accumulator, cancel_event=None):
        """Reconcile every target of plan, results also go to accumulator."""
        namespace_status = self._check_namespaces(plan)
        targets = list(plan.targets.values())

        def run(target):
            if cancel_event is not None and cancel_event.is_set():
                return None
            result = self.reconcile_target(target, namespace_status.get(target.namespace))
            accumulator.add_result(result)
            return result

        if self._settings.max_workers <= 1 or len(targets) <= 1:
            results = [run(target) for target in targets]
        else:
            with ThreadPoolExecutor(max_workers=self._settings.max_workers,
                                    thread_name_prefix="vaultwarden-sync") as executor:
                results = list(executor.map(run, targets))

        done = [r for r in results if r is not None]
        if len(done) < len(targets):
            accumulator.mark_cancelled()
            accumulator.add_warning(f"Cancelled, {len(targets) - len(done)} secrets were not processed")
        return done

    def reconcile_target(self, target, namespace_status=None):
        """Create, update or skip one secret. Never raises."""
        with self._target_locks.for_target(target.namespace, target.name):
            try:
                result = self._apply(target, namespace_status)
            except Exception as e:
                logging.getLogger(__name__).error(
                    f"Failed to sync secret {target.namespace}/{target.name}: {e}")
                result = self._result(target, Outcome.FAILED, error=str(e))
        self._record(result)
        return result

    def _record(self, result):
        try:
            self._audit.record_outcome(result)
        except Exception as e:
            logging.getLogger(__name__).warning(f"Audit of {result.namespace}/{result.name} failed: {e}")

    def _result(self, target, outcome, error=None, change_reason=None):
        return TargetResult(namespace=target.namespace,
                            name=target.name,
                            outcome=outcome,
                            error=error,
                            change_reason=change_reason,
                            source_item_count=len(target.item_ids),
                            key_count=len(target.document),
                            dry_run=self.dry_run,
                            source_revision=target.revision_date)

    @staticmethod
    def custom_annotations(target):
        return {k: v for k, v in target.annotations.items() if k not in SYNC_OWNED_ANNOTATIONS}

    @staticmethod
    def custom_labels(target):
        return {k: v for k, v in target.labels.items() if k not in MANAGEMENT_LABELS}

    def labels_for(self, target, existing=None):
        labels = {}
        if existing is not None:
            _, previous = existing.managed_metadata
            labels = {k: v for k, v in existing.labels.items() if k not in previous}
        labels.update(self.custom_labels(target))
        labels.update(MANAGEMENT_LABELS)
        return labels

    def annotations_for(self, target, ledger, signature, existing=None):
        """Annotations to write: foreign ones kept, item metadata and bookkeeping on top.

        Item metadata written by an earlier cycle and no longer on the item is
        dropped, the keys written now are recorded for the next cycle and for
        orphan cleanup.
        """
        annotations = {}
        if existing is not None:
            previous, _ = existing.managed_metadata
            annotations = {k: v for k, v in existing.annotations.items() if k not in previous}
        custom = self.custom_annotations(target)
        annotations.update(custom)
        annotations[MANAGED_KEYS_ANNOTATION] = serialize_ledger(ledger)
        annotations[MANAGED_METADATA_ANNOTATION] = serialize_metadata_keys(custom, self.custom_labels(target))
        annotations[SIGNATURE_ANNOTATION] = signature
        return annotations

    @staticmethod
    def is_current(target, existing, signature):
        if existing.signature != signature:
            return False
        return all(existing.data.get(k) == v for k, v in target.document.items())

    def _create(self, target, signature):
        if not self.dry_run:
            self._sink.create_secret(target.namespace, target.name, dict(target.document),
                                     self.annotations_for(target, target.document, signature),
                                     self.labels_for(target))

    def _apply(self, target, namespace_status):
        if namespace_status is None:
            namespace_status = (self._sink.namespace_exists(target.namespace), None)
        exists, error = namespace_status
        if error:
            return self._result(target, Outcome.FAILED, error=error)
        if not exists:
            raise TargetNotFound(target.namespace)

        signature = target.signature
        existing = self._sink.get_secret(target.namespace, target.name)
        if existing is None:
            self._create(target, signature)
            logging.getLogger(__name__).info(
                f"{'Would create' if self.dry_run else 'Created'} secret {target.namespace}/{target.name}"
                f" with {len(target.document)} keys")
            return self._result(target, Outcome.CREATED)

        if self.is_current(target, existing, signature):
            logging.getLogger(__name__).debug(f"Secret {target.namespace}/{target.name} is up to date")
            return self._result(target, Outcome.SKIPPED)

        if existing.signature is None:
            reason = REASON_INITIAL_SIGNATURE
        elif existing.signature != signature:
            reason = REASON_CONTENT
        else:
            reason = REASON_DRIFT
        merged = merge_managed_keys(existing.data, existing.ledger, target.document)
        if merged.stale_keys:
            logging.getLogger(__name__).info(
                f"Removing keys {merged.stale_keys} no longer in vault from {target.namespace}/{target.name}")
        if not self.dry_run:
            try:
                self._sink.update_secret(target.namespace, target.name, merged.data,
                                         self.annotations_for(target, merged.ledger, signature, existing),
                                         self.labels_for(target, existing))
            except SecretNotFound:
                logging.getLogger(__name__).info(
                    f"Secret {target.namespace}/{target.name} vanished before update, creating it")
                self._create(target, signature)
                return self._result(target, Outcome.CREATED, change_reason=REASON_RECREATED)
        logging.getLogger(__name__).info(
            f"{'Would update' if self.dry_run else 'Updated'} secret {target.namespace}/{target.name}"
            f" ({reason})")
        return self._result(target, Outcome.UPDATED, change_reason=reason)
