# -*- coding: utf-8 -*-
"""
SecretSource that drives the Bitwarden CLI (`bw`) against a Vaultwarden server.

Credentials travel through environment variables of the child process only,
never on the command line. The session key returned by `bw unlock --raw` is
kept in memory and passed with --session on every later call.
"""

import json
import logging
import os
import subprocess

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from vaultwarden_k8s_sync.collaborators import SecretSource
from vaultwarden_k8s_sync.config import BitwardenSettings
from vaultwarden_k8s_sync.exceptions import TransientTransport
from vaultwarden_k8s_sync.items import ItemType, SourceItem

STATUS_UNAUTHENTICATED = "unauthenticated"
STATUS_LOCKED = "locked"
STATUS_UNLOCKED = "unlocked"

SSH_KEY_PARTS = ("privateKey", "publicKey", "keyFingerprint")


def needs_ssh_key_details(raw):
    """True for an ssh-key item whose listing left any part of the key blank."""
    if raw.get("type") != ItemType.SSH_KEY:
        return False
    ssh_key = raw.get("sshKey") or {}
    return not all(str(ssh_key.get(part) or "").strip() for part in SSH_KEY_PARTS)


class BitwardenCliSource(SecretSource):
    """
    :param settings: BitwardenSettings with server and credentials
    :param runner: callable with the signature of subprocess.run
    :param wait: tenacity wait strategy between attempts of sync/list calls
    :param attempts: attempts for sync/list calls
    """

    def __init__(self, settings=None, runner=None, wait=None, attempts=3):
        self._settings = settings or BitwardenSettings()
        self._runner = runner or subprocess.run
        self._session = None
        self._retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait or wait_exponential(multiplier=1, min=1, max=5),
            retry=retry_if_exception_type(TransientTransport),
            reraise=True,
        )

    @property
    def session(self):
        return self._session

    def _run(self, *args, extra_env=None, session=False):
        command = [self._settings.cli_path] + list(args)
        if session and self._session:
            command += ["--session", self._session]
        env = dict(os.environ)
        env.update(extra_env or {})
        try:
            return self._runner(command, capture_output=True, text=True, env=env,
                                timeout=self._settings.timeout_seconds, check=False)
        except subprocess.TimeoutExpired as e:
            raise TransientTransport(f"bw {args[0]}", f"timed out after {e.timeout}s") from e

    def _run_checked(self, *args, session=True):
        completed = self._run(*args, session=session)
        if completed.returncode != 0:
            raise TransientTransport(f"bw {args[0]}", (completed.stderr or "").strip()
                                     or f"exit code {completed.returncode}")
        return completed.stdout

    def status(self):
        completed = self._run("status", session=True)
        if completed.returncode != 0:
            return {}
        try:
            return json.loads(completed.stdout or "{}")
        except ValueError:
            logging.getLogger(__name__).warning("bw status returned unreadable output")
            return {}

    def _login(self):
        settings = self._settings
        if settings.server_url:
            completed = self._run("config", "server", settings.server_url)
            if completed.returncode != 0:
                logging.getLogger(__name__).warning(
                    f"bw config server failed: {(completed.stderr or '').strip()}")
        if settings.use_api_key:
            if not settings.client_id or not settings.client_secret:
                logging.getLogger(__name__).error("API key login needs BW_CLIENTID and BW_CLIENTSECRET")
                return False
            completed = self._run("login", "--apikey",
                                  extra_env={"BW_CLIENTID": settings.client_id,
                                             "BW_CLIENTSECRET": settings.client_secret})
        else:
            if not settings.email:
                logging.getLogger(__name__).error("Password login needs VAULTWARDEN__EMAIL")
                return False
            completed = self._run("login", settings.email, "--passwordenv", "BW_PASSWORD",
                                  extra_env={"BW_PASSWORD": settings.master_password or ""})
        if completed.returncode != 0:
            logging.getLogger(__name__).error(f"bw login failed: {(completed.stderr or '').strip()}")
            return False
        return True

    def authenticate(self):
        state = self.status().get("status")
        if state == STATUS_UNLOCKED and self._session:
            return True
        if state in (None, STATUS_UNAUTHENTICATED):
            self._session = None
            if not self._login():
                return False
        if not self._settings.master_password:
            logging.getLogger(__name__).error("Unlocking the vault needs VAULTWARDEN__MASTERPASSWORD")
            return False
        completed = self._run("unlock", "--passwordenv", "BW_PASSWORD", "--raw",
                              extra_env={"BW_PASSWORD": self._settings.master_password})
        session = (completed.stdout or "").strip()
        if completed.returncode != 0 or not session:
            logging.getLogger(__name__).error(f"bw unlock failed: {(completed.stderr or '').strip()}")
            self._session = None
            return False
        self._session = session
        logging.getLogger(__name__).info("Vault unlocked")
        return True

    def _get_item(self, item_id):
        return json.loads(self._retrying.copy()(self._run_checked, "get", "item", item_id))

    def fetch_items(self):
        self._retrying.copy()(self._run_checked, "sync")
        output = self._retrying.copy()(self._run_checked, "list", "items")
        try:
            raw_items = json.loads(output or "[]")
        except ValueError as e:
            raise TransientTransport("bw list items", f"unreadable output: {e}") from e
        items = []
        for raw in raw_items:
            if needs_ssh_key_details(raw):
                try:
                    raw = self._get_item(raw["id"])
                except (TransientTransport, ValueError) as e:
                    logging.getLogger(__name__).debug(f"Could not load ssh key of item {raw.get('id')}: {e}")
            items.append(SourceItem.from_dict(raw))
        logging.getLogger(__name__).info(f"Fetched {len(items)} items from vault")
        return items
