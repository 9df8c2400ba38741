# -*- coding: utf-8 -*-
"""
In-memory source and sink, handy for dry harnesses and tests.
"""

import copy
import threading

from vaultwarden_k8s_sync.collaborators import SecretSink, SecretSource, SinkSecret
from vaultwarden_k8s_sync.config import CREATED_BY_LABEL, CREATED_BY_VALUE, SECRET_TYPE
from vaultwarden_k8s_sync.exceptions import SecretNotFound, TargetNotFound


class StaticSecretSource(SecretSource):
    def __init__(self, items=None, authenticate_result=True):
        self.items = list(items or [])
        self.authenticate_result = authenticate_result
        self.authenticate_calls = 0
        self.fetch_calls = 0

    def authenticate(self):
        self.authenticate_calls += 1
        return self.authenticate_result

    def fetch_items(self):
        self.fetch_calls += 1
        return list(self.items)


class InMemorySecretSink(SecretSink):
    """Secrets kept in a dict keyed by (namespace, name).

    Every mutating call is appended to `calls` as (operation, namespace, name).
    """

    def __init__(self, namespaces=("default",)):
        self._lock = threading.Lock()
        self._namespaces = set(namespaces)
        self._secrets = {}
        self.calls = []

    def add_namespace(self, namespace):
        with self._lock:
            self._namespaces.add(namespace)

    def put(self, secret):
        """Store a copy of secret as is, bypassing the call log."""
        with self._lock:
            self._namespaces.add(secret.namespace)
            self._secrets[(secret.namespace, secret.name)] = copy.deepcopy(secret)

    def writes(self):
        return [c for c in self.calls if c[0] in ("create", "update", "delete")]

    def namespace_exists(self, namespace):
        with self._lock:
            return namespace in self._namespaces

    def list_namespaces(self):
        with self._lock:
            return sorted(self._namespaces)

    def get_secret(self, namespace, name):
        with self._lock:
            secret = self._secrets.get((namespace, name))
            return copy.deepcopy(secret) if secret is not None else None

    def create_secret(self, namespace, name, data, annotations, labels):
        with self._lock:
            if namespace not in self._namespaces:
                raise TargetNotFound(namespace)
            self._secrets[(namespace, name)] = SinkSecret(namespace=namespace, name=name,
                                                          data=dict(data),
                                                          annotations=dict(annotations),
                                                          labels=dict(labels),
                                                          type=SECRET_TYPE)
            self.calls.append(("create", namespace, name))

    def update_secret(self, namespace, name, data, annotations, labels):
        with self._lock:
            existing = self._secrets.get((namespace, name))
            if existing is None:
                raise SecretNotFound(namespace, name)
            self._secrets[(namespace, name)] = SinkSecret(namespace=namespace, name=name,
                                                          data=dict(data),
                                                          annotations=dict(annotations),
                                                          labels=dict(labels),
                                                          type=existing.type)
            self.calls.append(("update", namespace, name))

    def delete_secret(self, namespace, name):
        with self._lock:
            if self._secrets.pop((namespace, name), None) is None:
                raise SecretNotFound(namespace, name)
            self.calls.append(("delete", namespace, name))

    def list_managed_secret_names(self, namespace):
        with self._lock:
            return sorted(name for (ns, name), secret in self._secrets.items()
                          if ns == namespace and secret.labels.get(CREATED_BY_LABEL) == CREATED_BY_VALUE)

    def list_secrets_with_managed_keys(self, namespace):
        with self._lock:
            secrets = [s for (ns, _), s in self._secrets.items() if ns == namespace]
        return sorted(s.name for s in secrets if s.ledger)
