# -*- coding: utf-8 -*-
"""
Projection of a single vault item into the secret document it contributes.

An item names its targets with custom fields (or `#tag: value` lines in its
notes as a fallback):

namespaces            comma separated list of namespaces, the item is ignored without one
secret-name           name of the secret, defaults to the item name
secret-key-password   data key for the password/content, defaults to the secret name
secret-key            older spelling of secret-key-password
secret-key-username   data key for the username, defaults to <secret name>_username
ignore-field          comma separated custom field names that must not be synced
secret-annotation     lines of key=value added as annotations on the secret
secret-label          lines of key=value added as labels on the secret

All other custom fields become data keys. The field names themselves are
configurable through FieldNames.
"""

import logging
import re
from dataclasses import dataclass, field

from vaultwarden_k8s_sync.config import FieldNames
from vaultwarden_k8s_sync.exceptions import InvalidArgument
from vaultwarden_k8s_sync.items import FieldType
from vaultwarden_k8s_sync.sanitizer import sanitize_key, sanitize_name

PEM_LINE_WIDTH = 64

_PEM_HEADER = re.compile(r"-+BEGIN ([A-Z ]*PRIVATE KEY)-+")
_PEM_FOOTER = re.compile(r"-+END ([A-Z ]*PRIVATE KEY)-+")
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "\\": "\\"}
_ESCAPE_SEQUENCE = re.compile(r"\\([nrt\\])")


@dataclass
class Projection:
    item_id: str
    item_name: str
    namespaces: list
    secret_name: str
    document: dict = field(default_factory=dict)
    annotations: dict = field(default_factory=dict)
    labels: dict = field(default_factory=dict)
    revision_date: object = None


def normalize_newlines(value):
    return value.replace("\r\n", "\n").replace("\r", "\n")


def format_multiline_value(value):
    """Turn literal \\n, \\r and \\t escapes into real characters.

    An escaped backslash stays a single literal backslash, line endings are
    normalised to \\n.
    """
    if not value:
        return ""
    converted = _ESCAPE_SEQUENCE.sub(lambda m: _ESCAPES[m.group(1)], value)
    return normalize_newlines(converted)


def format_private_key(value):
    """Rebuild a PEM private key with its body wrapped at 64 columns.

    Values that do not look like a single PEM private key are only passed
    through format_multiline_value.
    """
    formatted = format_multiline_value(value)
    header = _PEM_HEADER.search(formatted)
    footer = _PEM_FOOTER.search(formatted)
    if not header or not footer:
        return formatted
    key_type = header.group(1).strip()
    if key_type != footer.group(1).strip() or footer.start() <= header.end():
        return formatted
    body = re.sub(r"\s+", "", formatted[header.end():footer.start()])
    wrapped = [body[i:i + PEM_LINE_WIDTH] for i in range(0, len(body), PEM_LINE_WIDTH)]
    return "\n".join([f"-----BEGIN {key_type}-----"] + wrapped + [f"-----END {key_type}-----"])


def split_namespaces(value):
    """Comma separated namespaces, trimmed and de-duplicated in order."""
    namespaces = []
    for part in (value or "").split(","):
        namespace = part.strip()
        if namespace and namespace not in namespaces:
            namespaces.append(namespace)
    return namespaces


def parse_metadata_block(text):
    """Parse `key=value` or `key: value` lines into a dict.

    Blank lines and lines starting with # are skipped. The earliest of the two
    separators splits the line so values may contain either character.
    Lines without a separator or with an empty key are dropped.
    """
    result = {}
    for raw_line in normalize_newlines(text or "").split("\n"):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        positions = [p for p in (line.find("="), line.find(":")) if p >= 0]
        if not positions:
            logging.getLogger(__name__).warning(f"Ignoring metadata line without separator: {line!r}")
            continue
        position = min(positions)
        key = line[:position].strip()
        if not key:
            logging.getLogger(__name__).warning(f"Ignoring metadata line without key: {line!r}")
            continue
        result[key] = line[position + 1:].strip()
    return result


class ItemProjector:
    """Build Projection objects from vault items.

    Args:
        field_names (FieldNames, optional): names of the control fields.
    """

    def __init__(self, field_names=None):
        self._field_names = field_names or FieldNames()
        self._reserved = self._field_names.reserved
        defaults = FieldNames()
        self._tags = {
            "namespaces": (self._field_names.namespaces, defaults.namespaces),
            "secret_name": (self._field_names.secret_name, defaults.secret_name),
            "secret_key_password": (self._field_names.secret_key_password,
                                    defaults.secret_key_password,
                                    self._field_names.secret_key,
                                    defaults.secret_key),
            "secret_key_username": (self._field_names.secret_key_username,
                                    defaults.secret_key_username),
        }

    @property
    def field_names(self):
        return self._field_names

    def is_reserved(self, name):
        return bool(name) and name.lower() in self._reserved

    def _control_value(self, item, kind):
        names = self._tags[kind]
        value = item.field_value(*names)
        if value:
            return value
        for name in names:
            value = item.note_tag(name)
            if value:
                return value
        return None

    def namespaces_for(self, item):
        return split_namespaces(self._control_value(item, "namespaces"))

    def secret_name_for(self, item):
        override = self._control_value(item, "secret_name")
        return sanitize_name(override if override else item.name)

    def content_key_for(self, item, secret_name):
        override = self._control_value(item, "secret_key_password")
        return sanitize_key(override) if override else secret_name

    def username_key_for(self, item, secret_name):
        override = self._control_value(item, "secret_key_username")
        if override:
            return sanitize_key(override)
        return f"{sanitize_key(secret_name)}_username"

    def ignored_fields(self, item):
        ignored = set()
        names = {self._field_names.ignore_field, FieldNames().ignore_field}
        for name in names:
            for custom_field in item.find_fields(name):
                ignored.update(n.strip().lower() for n in custom_field.value.split(",") if n.strip())
        return ignored

    def note_body(self, item):
        """The notes with control tag lines and surrounding blank lines removed."""
        tags = {name.lower() for names in self._tags.values() for name in names if name}
        lines = []
        for line in normalize_newlines(item.notes or "").split("\n"):
            match = re.match(r"^\s*#([^:\s]+)\s*:", line)
            if match and match.group(1).lower() in tags:
                continue
            lines.append(line)
        while lines and not lines[0].strip():
            lines.pop(0)
        while lines and not lines[-1].strip():
            lines.pop()
        return "\n".join(lines)

    def _metadata(self, item, *names):
        result = {}
        for name in dict.fromkeys(n for n in names if n):
            for custom_field in item.find_fields(name):
                result.update(parse_metadata_block(custom_field.value))
        return result

    def project(self, item):
        """Project an item, None when it names no namespace.

        Raises:
            InvalidArgument: the item's secret name or one of its key
                overrides sanitizes to nothing.
        """
        if item.is_deleted:
            logging.getLogger(__name__).debug(f"Skipping deleted item {item.id}")
            return None
        namespaces = self.namespaces_for(item)
        if not namespaces:
            logging.getLogger(__name__).info(f"Item {item.id} ({item.name}) has no namespaces, skipping")
            return None

        secret_name = self.secret_name_for(item)
        content_key = self.content_key_for(item, secret_name)
        document = {}

        login = item.login
        ssh_key = item.ssh_key
        if login and login.username:
            document[self.username_key_for(item, secret_name)] = format_multiline_value(login.username)

        content = ""
        if login and login.password:
            content = format_private_key(login.password)
        elif ssh_key and ssh_key.private_key:
            content = format_private_key(ssh_key.private_key)
        if not content:
            body = self.note_body(item)
            content = format_multiline_value(body) if body.strip() else item.name
        document[content_key] = content

        if ssh_key:
            base = sanitize_key(secret_name)
            if ssh_key.public_key.strip():
                document[f"{base}_public_key"] = format_multiline_value(ssh_key.public_key)
            if ssh_key.fingerprint.strip():
                document[f"{base}_fingerprint"] = ssh_key.fingerprint.strip()

        ignored = self.ignored_fields(item)
        for custom_field in item.fields:
            if not custom_field.name or not custom_field.name.strip():
                continue
            if not custom_field.value or custom_field.type == FieldType.LINKED:
                continue
            if self.is_reserved(custom_field.name) or custom_field.name.lower() in ignored:
                continue
            try:
                key = sanitize_key(custom_field.name)
            except InvalidArgument as e:
                logging.getLogger(__name__).warning(f"Item {item.id}: skipping field, {e}")
                continue
            document[key] = format_multiline_value(custom_field.value)

        return Projection(
            item_id=item.id,
            item_name=item.name,
            namespaces=namespaces,
            secret_name=secret_name,
            document=document,
            annotations=self._metadata(item, self._field_names.secret_annotation,
                                       FieldNames().secret_annotation),
            labels=self._metadata(item, self._field_names.secret_label,
                                  FieldNames().secret_label),
            revision_date=item.revision_date,
        )
