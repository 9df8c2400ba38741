# -*- coding: utf-8 -*-
"""vaultwarden_k8s_sync

Keep Kubernetes secrets in step with items in a Vaultwarden (Bitwarden) vault.
Items name their target namespaces in a custom field, each sync creates,
updates or skips the matching secrets and cleans up the ones whose items are
gone, without touching keys that other tools own inside the same secret.

"""

from vaultwarden_k8s_sync.exceptions import SyncError, \
    InvalidArgument, \
    TargetNotFound, \
    SecretNotFound, \
    TransientTransport, \
    AuthenticationFailure, \
    PersistentEmptySource, \
    SyncAlreadyRunning
from vaultwarden_k8s_sync.config import FieldNames, \
    SyncSettings, \
    KubernetesSettings, \
    BitwardenSettings
from vaultwarden_k8s_sync.sanitizer import sanitize_name, sanitize_key
from vaultwarden_k8s_sync.items import SourceItem, CustomField, LoginInfo, SshKeyInfo, ItemType, FieldType
from vaultwarden_k8s_sync.projector import ItemProjector, Projection, parse_metadata_block
from vaultwarden_k8s_sync.signature import compute_signature, serialize_ledger, parse_ledger
from vaultwarden_k8s_sync.merge import merge_managed_keys, strip_managed_keys, MergeResult
from vaultwarden_k8s_sync.locks import ProcessLock, TargetLocks
from vaultwarden_k8s_sync.summary import Outcome, \
    TargetResult, \
    OrphanResult, \
    NamespaceSummary, \
    OrphanCleanupSummary, \
    SyncSummary, \
    SummaryAccumulator
from vaultwarden_k8s_sync.collaborators import SinkSecret, \
    SecretSource, \
    SecretSink, \
    AuditSink, \
    LoggingAuditSink
from vaultwarden_k8s_sync.engine import ReconciliationEngine, Target, Plan
from vaultwarden_k8s_sync.cleanup import OrphanCleaner
from vaultwarden_k8s_sync.orchestrator import SyncOrchestrator
from vaultwarden_k8s_sync.memory import InMemorySecretSink, StaticSecretSource
from vaultwarden_k8s_sync.kubernetes_sink import KubernetesSecretSink
from vaultwarden_k8s_sync.bitwarden_source import BitwardenCliSource
from ._version import __version__

__all__ = ["__version__",
           "SyncError",
           "InvalidArgument",
           "TargetNotFound",
           "SecretNotFound",
           "TransientTransport",
           "AuthenticationFailure",
           "PersistentEmptySource",
           "SyncAlreadyRunning",
           "FieldNames",
           "SyncSettings",
           "KubernetesSettings",
           "BitwardenSettings",
           "sanitize_name",
           "sanitize_key",
           "SourceItem",
           "CustomField",
           "LoginInfo",
           "SshKeyInfo",
           "ItemType",
           "FieldType",
           "ItemProjector",
           "Projection",
           "parse_metadata_block",
           "compute_signature",
           "serialize_ledger",
           "parse_ledger",
           "merge_managed_keys",
           "strip_managed_keys",
           "MergeResult",
           "ProcessLock",
           "TargetLocks",
           "Outcome",
           "TargetResult",
           "OrphanResult",
           "NamespaceSummary",
           "OrphanCleanupSummary",
           "SyncSummary",
           "SummaryAccumulator",
           "SinkSecret",
           "SecretSource",
           "SecretSink",
           "AuditSink",
           "LoggingAuditSink",
           "ReconciliationEngine",
           "Target",
           "Plan",
           "OrphanCleaner",
           "SyncOrchestrator",
           "InMemorySecretSink",
           "StaticSecretSource",
           "KubernetesSecretSink",
           "BitwardenCliSource"]
