# -*- coding: utf-8 -*-
"""
Interfaces the engine talks to.

The engine never speaks to a vault or a cluster directly. A SecretSource
supplies items, a SecretSink stores secrets and an AuditSink is told about
every outcome. Concrete transports live in bitwarden_source, kubernetes_sink
and memory.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from vaultwarden_k8s_sync.config import CREATED_BY_LABEL, CREATED_BY_VALUE, \
    MANAGED_KEYS_ANNOTATION, MANAGED_METADATA_ANNOTATION, SECRET_TYPE, SIGNATURE_ANNOTATION
from vaultwarden_k8s_sync.signature import parse_ledger, parse_metadata_keys


@dataclass
class SinkSecret:
    namespace: str
    name: str
    data: dict = field(default_factory=dict)
    annotations: dict = field(default_factory=dict)
    labels: dict = field(default_factory=dict)
    type: str = SECRET_TYPE

    @property
    def ledger(self):
        return parse_ledger(self.annotations.get(MANAGED_KEYS_ANNOTATION))

    @property
    def managed_metadata(self):
        """(annotation keys, label keys) the sync wrote from item metadata."""
        return parse_metadata_keys(self.annotations.get(MANAGED_METADATA_ANNOTATION))

    @property
    def signature(self):
        return self.annotations.get(SIGNATURE_ANNOTATION)

    @property
    def created_by_sync(self):
        return self.labels.get(CREATED_BY_LABEL) == CREATED_BY_VALUE


class SecretSource(ABC):
    """Where vault items come from."""

    @abstractmethod
    def authenticate(self):
        """Log in and unlock.

        Returns:
            bool: True when the source is ready to fetch items.
        """
        return False

    @abstractmethod
    def fetch_items(self):
        """Every item visible to the authenticated account.

        Returns:
            list: SourceItem objects in vault order.
        """
        return []


class SecretSink(ABC):
    """Where secrets are written.

    update_secret replaces data, annotations and labels as a whole and keeps
    the existing secret type. Missing secrets are reported by get_secret
    returning None and by update_secret raising SecretNotFound.
    """

    @abstractmethod
    def namespace_exists(self, namespace):
        pass

    @abstractmethod
    def list_namespaces(self):
        pass

    @abstractmethod
    def get_secret(self, namespace, name):
        pass

    @abstractmethod
    def create_secret(self, namespace, name, data, annotations, labels):
        pass

    @abstractmethod
    def update_secret(self, namespace, name, data, annotations, labels):
        pass

    @abstractmethod
    def delete_secret(self, namespace, name):
        pass

    @abstractmethod
    def list_managed_secret_names(self, namespace):
        """Names of secrets carrying the created-by label of this sync."""
        pass

    @abstractmethod
    def list_secrets_with_managed_keys(self, namespace):
        """Names of secrets with a non-empty managed-keys ledger."""
        pass

    def secret_exists(self, namespace, name):
        return self.get_secret(namespace, name) is not None


class AuditSink(ABC):
    @abstractmethod
    def record_outcome(self, result):
        pass

    @abstractmethod
    def record_summary(self, summary):
        pass


class LoggingAuditSink(AuditSink):
    def record_outcome(self, result):
        if result.error:
            logging.getLogger(__name__).warning(
                f"{result.outcome.value} {result.namespace}/{result.name}: {result.error}")
        else:
            logging.getLogger(__name__).info(f"{result.outcome.value} {result.namespace}/{result.name}")

    def record_summary(self, summary):
        logging.getLogger(__name__).info(summary.describe())
