# -*- coding: utf-8 -*-
"""
Settings for a sync run.

Everything is read from environment variables using the double underscore
section separator, e.g. SYNC__DRYRUN or KUBERNETES__CONTEXT. Each settings
class has a from_environment() constructor, an explicit environ mapping can be
passed for tests.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
CREATED_BY_LABEL = "app.kubernetes.io/created-by"
MANAGED_BY_VALUE = "vaultwarden-kubernetes-secrets"
CREATED_BY_VALUE = "vaultwarden-k8s-sync"
MANAGED_KEYS_ANNOTATION = "vaultwarden-kubernetes-secrets/managed-keys"
MANAGED_METADATA_ANNOTATION = "vaultwarden-kubernetes-secrets/managed-metadata"
SIGNATURE_ANNOTATION = "vaultwarden-sync-hash"
SECRET_TYPE = "Opaque"
DEFAULT_AUTH_TOKEN_SECRET = "vaultwarden-kubernetes-secrets-token"

SYNC_OWNED_ANNOTATIONS = (MANAGED_KEYS_ANNOTATION, MANAGED_METADATA_ANNOTATION, SIGNATURE_ANNOTATION)

_TRUE_VALUES = ("true", "1", "yes", "y", "on")
_FALSE_VALUES = ("false", "0", "no", "n", "off")


def _env_bool(environ, name, default):
    value = environ.get(name)
    if value is None or value.strip() == "":
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logging.getLogger(__name__).warning(
        f"Ignoring unparseable boolean {name}={value!r}, using {default}")
    return default


def _env_int(environ, name, default):
    value = environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Ignoring unparseable integer {name}={value!r}, using {default}")
        return default


def _env_str(environ, name, default=None):
    value = environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


@dataclass
class FieldNames:
    """Names of the custom fields on a vault item that steer the sync.

    The canonical names are always honoured as well, so renaming a field does
    not make old items leak their control fields into secrets.
    """
    namespaces: str = "namespaces"
    secret_name: str = "secret-name"
    secret_key_password: str = "secret-key-password"
    secret_key: str = "secret-key"
    secret_key_username: str = "secret-key-username"
    ignore_field: str = "ignore-field"
    secret_annotation: str = "secret-annotation"
    secret_label: str = "secret-label"

    @property
    def reserved(self):
        names = {value.lower() for value in vars(self).values() if value}
        names.update(value.lower() for value in vars(FieldNames()).values())
        return frozenset(names)

    @classmethod
    def from_environment(cls, environ=None):
        environ = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            namespaces=_env_str(environ, "SYNC__FIELD__NAMESPACES", defaults.namespaces),
            secret_name=_env_str(environ, "SYNC__FIELD__SECRETNAME", defaults.secret_name),
            secret_key_password=_env_str(environ, "SYNC__FIELD__SECRETKEYPASSWORD",
                                         defaults.secret_key_password),
            secret_key=_env_str(environ, "SYNC__FIELD__SECRETKEY", defaults.secret_key),
            secret_key_username=_env_str(environ, "SYNC__FIELD__SECRETKEYUSERNAME",
                                         defaults.secret_key_username),
            ignore_field=_env_str(environ, "SYNC__FIELD__IGNOREFIELD", defaults.ignore_field),
            secret_annotation=_env_str(environ, "SYNC__FIELD__SECRETANNOTATION",
                                       defaults.secret_annotation),
            secret_label=_env_str(environ, "SYNC__FIELD__SECRETLABEL", defaults.secret_label),
        )


@dataclass
class SyncSettings:
    dry_run: bool = False
    delete_orphans: bool = True
    max_workers: int = 4
    lock_path: str = field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(),
                                             "vaultwarden-sync-operation.lock"))
    auth_token_secret: str = DEFAULT_AUTH_TOKEN_SECRET
    field_names: FieldNames = field(default_factory=FieldNames)

    @classmethod
    def from_environment(cls, environ=None):
        environ = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            dry_run=_env_bool(environ, "SYNC__DRYRUN", defaults.dry_run),
            delete_orphans=_env_bool(environ, "SYNC__DELETEORPHANS", defaults.delete_orphans),
            max_workers=max(1, _env_int(environ, "SYNC__MAXWORKERS", defaults.max_workers)),
            lock_path=_env_str(environ, "SYNC__LOCKFILE", defaults.lock_path),
            auth_token_secret=_env_str(environ, "SYNC__AUTHTOKENSECRET",
                                       defaults.auth_token_secret),
            field_names=FieldNames.from_environment(environ),
        )


@dataclass
class KubernetesSettings:
    kubeconfig_path: str = None
    context: str = None
    in_cluster: bool = False

    @classmethod
    def from_environment(cls, environ=None):
        environ = os.environ if environ is None else environ
        return cls(
            kubeconfig_path=_env_str(environ, "KUBERNETES__KUBECONFIGPATH"),
            context=_env_str(environ, "KUBERNETES__CONTEXT"),
            in_cluster=_env_bool(environ, "KUBERNETES__INCLUSTER", False),
        )


@dataclass
class BitwardenSettings:
    server_url: str = None
    email: str = None
    client_id: str = None
    client_secret: str = None
    master_password: str = None
    use_api_key: bool = True
    cli_path: str = "bw"
    timeout_seconds: int = 60

    def __repr__(self):
        return (f"BitwardenSettings(server_url={self.server_url!r}, "
                f"email={self.email!r}, client_id={self.client_id!r}, use_api_key={self.use_api_key}, "
                f"cli_path={self.cli_path!r}, timeout_seconds={self.timeout_seconds})")

    @classmethod
    def from_environment(cls, environ=None):
        environ = os.environ if environ is None else environ
        return cls(
            server_url=_env_str(environ, "VAULTWARDEN__SERVERURL"),
            email=_env_str(environ, "VAULTWARDEN__EMAIL"),
            client_id=_env_str(environ, "BW_CLIENTID"),
            client_secret=_env_str(environ, "BW_CLIENTSECRET"),
            master_password=_env_str(environ, "VAULTWARDEN__MASTERPASSWORD"),
            use_api_key=_env_bool(environ, "VAULTWARDEN__USEAPIKEY", True),
            cli_path=_env_str(environ, "BW_CLI_PATH", "bw"),
            timeout_seconds=_env_int(environ, "BW_CLI_TIMEOUT", 60),
        )
