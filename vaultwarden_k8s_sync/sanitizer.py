# -*- coding: utf-8 -*-
"""
Turn free text from vault items into names the cluster accepts.

sanitize_name produces DNS-1123 style object names, sanitize_key produces
secret data keys. Both are idempotent and reject input that has nothing
usable left after cleaning.
"""

import re

from vaultwarden_k8s_sync.exceptions import InvalidArgument

MAX_NAME_LENGTH = 253

_NAME_INVALID = re.compile(r"[^a-z0-9]+")
_KEY_INVALID = re.compile(r"[^A-Za-z0-9._-]+")
_KEY_EDGES = re.compile(r"^[^A-Za-z0-9._-]+|[^A-Za-z0-9._-]+$")
_ALNUM = re.compile(r"[A-Za-z0-9]")


def _require_text(kind, text):
    if text is None or not str(text).strip():
        raise InvalidArgument(kind, text, "cannot be null, empty, or whitespace")
    return str(text).strip()


def sanitize_name(text):
    """Return a lower-case object name made of [a-z0-9] runs joined by '-'."""
    value = _require_text("name", text)
    sanitized = _NAME_INVALID.sub("-", value.lower()).strip("-")
    if len(sanitized) > MAX_NAME_LENGTH:
        sanitized = sanitized[:MAX_NAME_LENGTH].rstrip("-")
    if not sanitized:
        raise InvalidArgument("name", text, "becomes empty after sanitization")
    return sanitized


def sanitize_key(text):
    """Return a data key keeping case, "-", "_" and ".", other runs become "_"."""
    value = _require_text("key", text)
    sanitized = _KEY_INVALID.sub("_", _KEY_EDGES.sub("", value))
    if not _ALNUM.search(sanitized):
        raise InvalidArgument("key", text, "becomes empty after sanitization")
    return sanitized
