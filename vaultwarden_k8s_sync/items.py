# -*- coding: utf-8 -*-
"""
Read-only view of vault items as returned by `bw list items`.
"""

import re
from dataclasses import dataclass, field
from enum import IntEnum

from dateutil import parser


class ItemType(IntEnum):
    LOGIN = 1
    SECURE_NOTE = 2
    CARD = 3
    IDENTITY = 4
    SSH_KEY = 5


class FieldType(IntEnum):
    TEXT = 0
    HIDDEN = 1
    BOOLEAN = 2
    LINKED = 3


def _parse_date(value):
    if not value:
        return None
    return parser.isoparse(value)


def _text(value):
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class CustomField:
    name: str
    value: str = ""
    type: int = FieldType.TEXT

    @classmethod
    def from_dict(cls, data):
        return cls(name=_text(data.get("name")),
                   value=_text(data.get("value")),
                   type=data.get("type", FieldType.TEXT))


@dataclass(frozen=True)
class LoginInfo:
    username: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, data):
        return cls(username=_text(data.get("username")),
                   password=_text(data.get("password")))


@dataclass(frozen=True)
class SshKeyInfo:
    private_key: str = ""
    public_key: str = ""
    fingerprint: str = ""

    @classmethod
    def from_dict(cls, data):
        return cls(private_key=_text(data.get("privateKey")),
                   public_key=_text(data.get("publicKey")),
                   fingerprint=_text(data.get("keyFingerprint")))


@dataclass(frozen=True)
class SourceItem:
    """One vault item.

    Only the parts the sync reads are kept. Custom fields stay in vault order
    because later fields win when two sanitize to the same key.
    """
    id: str
    name: str
    type: int = ItemType.LOGIN
    notes: str = ""
    login: LoginInfo = None
    ssh_key: SshKeyInfo = None
    fields: tuple = field(default_factory=tuple)
    revision_date: object = None
    deleted_date: object = None

    @property
    def is_deleted(self):
        return self.deleted_date is not None

    def find_fields(self, name):
        """All custom fields called name, compared case-insensitively."""
        wanted = name.lower()
        return [f for f in self.fields if f.name and f.name.lower() == wanted]

    def field_value(self, *names):
        """First non-blank value of a custom field with one of the given names."""
        for name in names:
            if not name:
                continue
            for custom_field in self.find_fields(name):
                if custom_field.value and custom_field.value.strip():
                    return custom_field.value.strip()
        return None

    def note_tag(self, tag):
        """Value of a `#tag: value` line in the notes, or None."""
        if not self.notes:
            return None
        pattern = re.compile(r"^\s*#" + re.escape(tag) + r"\s*:(.*)$", re.IGNORECASE)
        for line in self.notes.splitlines():
            match = pattern.match(line)
            if match and match.group(1).strip():
                return match.group(1).strip()
        return None

    @classmethod
    def from_dict(cls, data):
        login = data.get("login")
        ssh_key = data.get("sshKey")
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            type=data.get("type", ItemType.LOGIN),
            notes=_text(data.get("notes")),
            login=LoginInfo.from_dict(login) if login else None,
            ssh_key=SshKeyInfo.from_dict(ssh_key) if ssh_key else None,
            fields=tuple(CustomField.from_dict(f) for f in data.get("fields") or ()),
            revision_date=_parse_date(data.get("revisionDate")),
            deleted_date=_parse_date(data.get("deletedDate")),
        )
