# -*- coding: utf-8 -*-
"""
SecretSink backed by the Kubernetes API.

Each thread gets its own CoreV1Api object. Calls failing with a conflict,
throttling or server error status are retried with exponential backoff and
surface as TransientTransport once the attempts are used up.
"""

import base64
import binascii
import logging
import threading

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from vaultwarden_k8s_sync.collaborators import SecretSink, SinkSecret
from vaultwarden_k8s_sync.config import CREATED_BY_LABEL, CREATED_BY_VALUE, KubernetesSettings, \
    SECRET_TYPE
from vaultwarden_k8s_sync.exceptions import SecretNotFound, TargetNotFound, TransientTransport

RETRYABLE_STATUSES = frozenset([409, 429, 500, 502, 503, 504])


class RawValue(str):
    """A data value that is not UTF-8, kept as its base64 text."""


def encode_data(data):
    encoded = {}
    for key, value in (data or {}).items():
        if isinstance(value, RawValue):
            encoded[key] = str(value)
        else:
            encoded[key] = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return encoded


def decode_data(data):
    decoded = {}
    for key, value in (data or {}).items():
        try:
            decoded[key] = base64.b64decode(value).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            decoded[key] = RawValue(value)
    return decoded


def _status(error):
    return getattr(error, "status", None)


class KubernetesSecretSink(SecretSink):
    """
    :param settings: KubernetesSettings saying how to load credentials
    :param api_factory: optional callable returning a CoreV1Api, config loading is skipped when given
    :param wait: tenacity wait strategy between attempts
    :param attempts: attempts per call before giving up
    """

    def __init__(self, settings=None, api_factory=None, wait=None, attempts=3):
        self._settings = settings or KubernetesSettings()
        self._api_factory = api_factory
        self._configured = False
        self._config_lock = threading.Lock()
        self._retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait or wait_exponential(multiplier=1, min=1, max=5),
            retry=retry_if_exception(lambda e: _status(e) in RETRYABLE_STATUSES),
            reraise=True,
        )
        self.ns = threading.local()

    def _load_config(self):
        with self._config_lock:
            if self._configured:
                return
            if self._settings.in_cluster:
                logging.getLogger(__name__).info("Loading in-cluster Kubernetes configuration")
                config.load_incluster_config()
            else:
                logging.getLogger(__name__).info(
                    f"Loading kubeconfig {self._settings.kubeconfig_path or '(default)'}"
                    f" context {self._settings.context or '(current)'}")
                config.load_kube_config(config_file=self._settings.kubeconfig_path,
                                        context=self._settings.context)
            self._configured = True

    @property
    def api(self):
        api = getattr(self.ns, "api", None)
        if api is None:
            if self._api_factory is not None:
                api = self._api_factory()
            else:
                self._load_config()
                api = client.CoreV1Api()
            self.ns.api = api
        return api

    def _call(self, operation, fn, *args, **kwargs):
        try:
            return self._retrying.copy()(fn, *args, **kwargs)
        except ApiException as e:
            if e.status in RETRYABLE_STATUSES:
                raise TransientTransport(operation, e) from e
            raise

    @staticmethod
    def _to_sink_secret(secret):
        metadata = secret.metadata
        return SinkSecret(namespace=metadata.namespace,
                          name=metadata.name,
                          data=decode_data(secret.data),
                          annotations=dict(metadata.annotations or {}),
                          labels=dict(metadata.labels or {}),
                          type=secret.type or SECRET_TYPE)

    @staticmethod
    def _body(namespace, name, data, annotations, labels, secret_type=SECRET_TYPE,
              resource_version=None):
        return client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(name=name,
                                         namespace=namespace,
                                         annotations=dict(annotations or {}),
                                         labels=dict(labels or {}),
                                         resource_version=resource_version),
            data=encode_data(data),
            type=secret_type,
        )

    def namespace_exists(self, namespace):
        try:
            self._call("read_namespace", self.api.read_namespace, namespace)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise

    def list_namespaces(self):
        namespaces = self._call("list_namespace", self.api.list_namespace)
        return sorted(ns.metadata.name for ns in namespaces.items)

    def get_secret(self, namespace, name):
        try:
            secret = self._call("read_namespaced_secret", self.api.read_namespaced_secret,
                                name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._to_sink_secret(secret)

    def create_secret(self, namespace, name, data, annotations, labels):
        body = self._body(namespace, name, data, annotations, labels)
        try:
            self._call("create_namespaced_secret", self.api.create_namespaced_secret,
                       namespace, body)
        except ApiException as e:
            if e.status == 404:
                raise TargetNotFound(namespace) from e
            raise
        logging.getLogger(__name__).debug(f"Created secret {namespace}/{name}")

    def _replace(self, namespace, name, data, annotations, labels):
        api = self.api
        current = api.read_namespaced_secret(name, namespace)
        body = self._body(namespace, name, data, annotations, labels,
                          secret_type=current.type or SECRET_TYPE,
                          resource_version=current.metadata.resource_version)
        return api.replace_namespaced_secret(name, namespace, body)

    def update_secret(self, namespace, name, data, annotations, labels):
        try:
            self._call("replace_namespaced_secret", self._replace,
                       namespace, name, data, annotations, labels)
        except ApiException as e:
            if e.status == 404:
                raise SecretNotFound(namespace, name) from e
            raise
        logging.getLogger(__name__).debug(f"Replaced secret {namespace}/{name}")

    def delete_secret(self, namespace, name):
        try:
            self._call("delete_namespaced_secret", self.api.delete_namespaced_secret,
                       name, namespace)
        except ApiException as e:
            if e.status == 404:
                raise SecretNotFound(namespace, name) from e
            raise
        logging.getLogger(__name__).debug(f"Deleted secret {namespace}/{name}")

    def list_managed_secret_names(self, namespace):
        secrets = self._call("list_namespaced_secret", self.api.list_namespaced_secret, namespace,
                             label_selector=f"{CREATED_BY_LABEL}={CREATED_BY_VALUE}")
        return sorted(s.metadata.name for s in secrets.items)

    def list_secrets_with_managed_keys(self, namespace):
        secrets = self._call("list_namespaced_secret", self.api.list_namespaced_secret, namespace)
        return sorted(s.name for s in (self._to_sink_secret(item) for item in secrets.items)
                      if s.ledger)
