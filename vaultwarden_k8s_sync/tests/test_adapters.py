# -*- coding: utf-8 -*-
"""
Tests for the Kubernetes sink and the bw CLI source with their transports mocked.
"""

import base64
import json
import logging
import subprocess
import unittest
from unittest import mock

from kubernetes import client
from kubernetes.client.rest import ApiException
from tenacity import wait_none

from vaultwarden_k8s_sync import *
from vaultwarden_k8s_sync.bitwarden_source import BitwardenCliSource, needs_ssh_key_details
from vaultwarden_k8s_sync.config import CREATED_BY_LABEL, CREATED_BY_VALUE, MANAGED_KEYS_ANNOTATION
from vaultwarden_k8s_sync.kubernetes_sink import KubernetesSecretSink, RawValue, decode_data, encode_data


def setup_module():
    logging.basicConfig(level=logging.DEBUG)


def b64(value):
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def k8s_secret(name, data, annotations=None, labels=None, namespace="default", secret_type="Opaque"):
    return client.V1Secret(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, annotations=annotations,
                                     labels=labels, resource_version="42"),
        data={k: b64(v) for k, v in data.items()},
        type=secret_type,
    )


class TestKubernetesSecretSink(unittest.TestCase):
    def setUp(self):
        self.api = mock.MagicMock()
        self.sink = KubernetesSecretSink(api_factory=lambda: self.api, wait=wait_none())

    def test_encoding(self):
        encoded = encode_data({"a": "héllo"})
        assert decode_data(encoded) == {"a": "héllo"}, "utf-8 round trip"
        raw = base64.b64encode(b"\xff\xfe").decode("ascii")
        decoded = decode_data({"bin": raw})
        assert isinstance(decoded["bin"], RawValue), "binary kept raw"
        assert encode_data(decoded) == {"bin": raw}, "binary written back untouched"

    def test_get_secret(self):
        self.api.read_namespaced_secret.return_value = k8s_secret(
            "s", {"k": "v"}, annotations={MANAGED_KEYS_ANNOTATION: '["k"]'})
        secret = self.sink.get_secret("default", "s")
        assert secret.data == {"k": "v"}, "data decoded"
        assert secret.ledger == ["k"], "ledger read"
        self.api.read_namespaced_secret.assert_called_with("s", "default")

    def test_get_missing(self):
        self.api.read_namespaced_secret.side_effect = ApiException(status=404)
        assert self.sink.get_secret("default", "s") is None, "404 is None"

    def test_namespace_exists(self):
        assert self.sink.namespace_exists("default"), "found"
        self.api.read_namespace.side_effect = ApiException(status=404)
        assert not self.sink.namespace_exists("nope"), "404 is False"

    def test_create(self):
        self.sink.create_secret("default", "s", {"k": "v"}, {"a": "1"}, {"l": "2"})
        namespace, body = self.api.create_namespaced_secret.call_args[0]
        assert namespace == "default", "namespace"
        assert body.data == {"k": b64("v")}, "data encoded"
        assert body.type == "Opaque", "opaque"
        assert body.metadata.labels == {"l": "2"} and body.metadata.annotations == {"a": "1"}, "metadata"

    def test_create_in_missing_namespace(self):
        self.api.create_namespaced_secret.side_effect = ApiException(status=404)
        with self.assertRaises(TargetNotFound):
            self.sink.create_secret("gone", "s", {"k": "v"}, {}, {})

    def test_update_keeps_type_and_version(self):
        self.api.read_namespaced_secret.return_value = k8s_secret("s", {"k": "old"},
                                                                  secret_type="custom/type")
        self.sink.update_secret("default", "s", {"k": "new"}, {}, {})
        name, namespace, body = self.api.replace_namespaced_secret.call_args[0]
        assert (name, namespace) == ("s", "default"), "target"
        assert body.type == "custom/type", "existing type kept"
        assert body.metadata.resource_version == "42", "optimistic concurrency"
        assert body.data == {"k": b64("new")}, "new data"

    def test_update_conflict_retried(self):
        self.api.read_namespaced_secret.return_value = k8s_secret("s", {"k": "old"})
        self.api.replace_namespaced_secret.side_effect = [ApiException(status=409), None]
        self.sink.update_secret("default", "s", {"k": "new"}, {}, {})
        assert self.api.replace_namespaced_secret.call_count == 2, "retried after conflict"
        assert self.api.read_namespaced_secret.call_count == 2, "re-read before retry"

    def test_update_missing(self):
        self.api.read_namespaced_secret.side_effect = ApiException(status=404)
        with self.assertRaises(SecretNotFound):
            self.sink.update_secret("default", "s", {}, {}, {})

    def test_transient_exhausted(self):
        self.api.list_namespace.side_effect = ApiException(status=503)
        with self.assertRaises(TransientTransport):
            self.sink.list_namespaces()
        assert self.api.list_namespace.call_count == 3, "three attempts"

    def test_forbidden_not_retried(self):
        self.api.list_namespace.side_effect = ApiException(status=403)
        with self.assertRaises(ApiException):
            self.sink.list_namespaces()
        assert self.api.list_namespace.call_count == 1, "no retry"

    def test_delete_missing(self):
        self.api.delete_namespaced_secret.side_effect = ApiException(status=404)
        with self.assertRaises(SecretNotFound):
            self.sink.delete_secret("default", "s")

    def test_listing(self):
        self.api.list_namespaced_secret.side_effect = [
            client.V1SecretList(items=[k8s_secret("a", {})]),
            client.V1SecretList(items=[
                k8s_secret("a", {"x": "1"}, annotations={MANAGED_KEYS_ANNOTATION: '["x"]'}),
                k8s_secret("b", {"x": "1"}, annotations={MANAGED_KEYS_ANNOTATION: "[]"}),
                k8s_secret("c", {"x": "1"}),
            ]),
        ]
        assert self.sink.list_managed_secret_names("default") == ["a"], "managed names"
        _, kwargs = self.api.list_namespaced_secret.call_args_list[0]
        assert kwargs["label_selector"] == f"{CREATED_BY_LABEL}={CREATED_BY_VALUE}", "label selector"
        assert self.sink.list_secrets_with_managed_keys("default") == ["a"], "non-empty ledgers"

    def test_config_loading(self):
        with mock.patch("vaultwarden_k8s_sync.kubernetes_sink.config") as kube_config, \
                mock.patch("vaultwarden_k8s_sync.kubernetes_sink.client") as kube_client:
            sink = KubernetesSecretSink(KubernetesSettings(kubeconfig_path="/tmp/kc", context="ctx"))
            assert sink.api is sink.api, "api cached per thread"
            kube_config.load_kube_config.assert_called_once_with(config_file="/tmp/kc", context="ctx")
            kube_client.CoreV1Api.assert_called_once_with()
            in_cluster = KubernetesSecretSink(KubernetesSettings(in_cluster=True))
            in_cluster.api
            kube_config.load_incluster_config.assert_called_once_with()


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeBw:
    """Answers bw commands from a dict keyed by the first argument(s)."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append((command, kwargs))
        args = command[1:]
        for key in (" ".join(args[:2]), args[0]):
            if key in self.responses:
                response = self.responses[key]
                if isinstance(response, list):
                    response = response.pop(0)
                if isinstance(response, Exception):
                    raise response
                return response
        return completed(returncode=1, stderr=f"unexpected {args}")

    def commands(self):
        return [" ".join(c[0][1:3]) for c in self.calls]


ITEMS = [
    {"id": "1", "name": "Db", "type": 1, "login": {"username": "u", "password": "p"},
     "fields": [{"name": "namespaces", "value": "default", "type": 0}]},
    {"id": "2", "name": "Key", "type": 5,
     "fields": [{"name": "namespaces", "value": "default", "type": 0}]},
]


class TestBitwardenCliSource(unittest.TestCase):
    def settings(self, **kwargs):
        values = dict(server_url="https://vault.local", client_id="id", client_secret="secret",
                      master_password="pw", use_api_key=True)
        values.update(kwargs)
        return BitwardenSettings(**values)

    def test_authenticate_with_api_key(self):
        bw = FakeBw({"status": completed(json.dumps({"status": "unauthenticated"})),
                     "config server": completed(),
                     "login --apikey": completed(),
                     "unlock": completed("SESSION\n")})
        source = BitwardenCliSource(self.settings(), runner=bw, wait=wait_none())
        assert source.authenticate(), "authenticated"
        assert source.session == "SESSION", "session kept"
        login_call = [c for c in bw.calls if c[0][1] == "login"][0]
        assert login_call[1]["env"]["BW_CLIENTSECRET"] == "secret", "secret via env"
        assert "secret" not in login_call[0], "secret not on command line"
        unlock_call = [c for c in bw.calls if c[0][1] == "unlock"][0]
        assert unlock_call[1]["env"]["BW_PASSWORD"] == "pw", "password via env"

    def test_locked_vault_only_unlocks(self):
        bw = FakeBw({"status": completed(json.dumps({"status": "locked"})),
                     "unlock": completed("S")})
        source = BitwardenCliSource(self.settings(), runner=bw)
        assert source.authenticate(), "unlocked"
        assert bw.commands() == ["status", "unlock --passwordenv"], f"commands {bw.commands()}"

    def test_unlock_failure(self):
        bw = FakeBw({"status": completed(json.dumps({"status": "locked"})),
                     "unlock": completed(returncode=1, stderr="Invalid master password.")})
        source = BitwardenCliSource(self.settings(), runner=bw)
        assert not source.authenticate(), "failure reported"
        assert source.session is None, "no session"

    def test_login_failure(self):
        bw = FakeBw({"status": completed(json.dumps({"status": "unauthenticated"})),
                     "config server": completed(),
                     "login --apikey": completed(returncode=1, stderr="bad key")})
        assert not BitwardenCliSource(self.settings(), runner=bw).authenticate(), "login failed"

    def test_password_login_needs_email(self):
        bw = FakeBw({"status": completed(json.dumps({"status": "unauthenticated"})),
                     "config server": completed()})
        source = BitwardenCliSource(self.settings(use_api_key=False), runner=bw)
        assert not source.authenticate(), "email required"

    def test_fetch_items_hydrates_ssh_keys(self):
        full_key = dict(ITEMS[1], sshKey={"privateKey": "priv", "publicKey": "pub",
                                          "keyFingerprint": "fp"})
        bw = FakeBw({"sync": completed(),
                     "list items": completed(json.dumps(ITEMS)),
                     "get item": completed(json.dumps(full_key))})
        items = BitwardenCliSource(self.settings(), runner=bw, wait=wait_none()).fetch_items()
        assert [i.name for i in items] == ["Db", "Key"], "items parsed in order"
        assert items[1].ssh_key.private_key == "priv", "ssh payload loaded"

    def test_fetch_retries_then_fails(self):
        bw = FakeBw({"sync": completed(),
                     "list items": [completed(returncode=1, stderr="network"),
                                    subprocess.TimeoutExpired(cmd="bw", timeout=60),
                                    completed(returncode=1, stderr="network")]})
        source = BitwardenCliSource(self.settings(), runner=bw, wait=wait_none())
        with self.assertRaises(TransientTransport):
            source.fetch_items()
        assert bw.commands().count("list items") == 3, "three attempts"

    def test_fetch_recovers(self):
        bw = FakeBw({"sync": completed(),
                     "list items": [completed(returncode=1, stderr="network"),
                                    completed(json.dumps(ITEMS[:1]))]})
        items = BitwardenCliSource(self.settings(), runner=bw, wait=wait_none()).fetch_items()
        assert len(items) == 1, "second attempt used"

    def test_fetch_items_hydrates_partial_ssh_keys(self):
        partial = dict(ITEMS[1], sshKey={"privateKey": "", "publicKey": "pub", "keyFingerprint": ""})
        full_key = dict(ITEMS[1], sshKey={"privateKey": "priv", "publicKey": "pub",
                                          "keyFingerprint": "fp"})
        bw = FakeBw({"sync": completed(),
                     "list items": completed(json.dumps([ITEMS[0], partial])),
                     "get item": completed(json.dumps(full_key))})
        items = BitwardenCliSource(self.settings(), runner=bw, wait=wait_none()).fetch_items()
        assert bw.commands().count("get item") == 1, "blank key parts reloaded"
        assert items[1].ssh_key.private_key == "priv", "private key loaded"
        assert items[1].ssh_key.fingerprint == "fp", "fingerprint loaded"

    def test_complete_ssh_keys_not_reloaded(self):
        complete = dict(ITEMS[1], sshKey={"privateKey": "priv", "publicKey": "pub",
                                          "keyFingerprint": "fp"})
        assert not needs_ssh_key_details(complete), "complete key"
        assert not needs_ssh_key_details(ITEMS[0]), "not an ssh key"
        assert needs_ssh_key_details(dict(complete, sshKey={"privateKey": " ", "publicKey": "pub",
                                                            "keyFingerprint": "fp"})), "blank part"
        bw = FakeBw({"sync": completed(),
                     "list items": completed(json.dumps([complete]))})
        BitwardenCliSource(self.settings(), runner=bw, wait=wait_none()).fetch_items()
        assert "get item" not in bw.commands(), "no extra call"


class TestPackageExports(unittest.TestCase):
    def test_adapters_exported(self):
        import vaultwarden_k8s_sync
        for name in ("BitwardenCliSource", "KubernetesSecretSink"):
            assert name in vaultwarden_k8s_sync.__all__, f"{name} missing from __all__"
            assert hasattr(vaultwarden_k8s_sync, name), f"{name} not importable"
        assert vaultwarden_k8s_sync.BitwardenCliSource is BitwardenCliSource, "same class"
