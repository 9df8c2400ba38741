# -*- coding: utf-8 -*-
"""
Content signature and managed-keys ledger stored as annotations on a secret.
"""

import hashlib
import json
import logging

from vaultwarden_k8s_sync.config import SYNC_OWNED_ANNOTATIONS


def compute_signature(document, annotations=None, labels=None):
    """SHA-256 hex digest of the document plus its custom metadata.

    Sync owned annotations are left out so writing the signature does not
    change it. The encoding sorts keys so map ordering never matters.
    """
    payload = {
        "data": dict(document or {}),
        "annotations": {k: v for k, v in (annotations or {}).items()
                        if k not in SYNC_OWNED_ANNOTATIONS},
        "labels": dict(labels or {}),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def serialize_ledger(keys):
    return json.dumps(sorted(set(keys)), separators=(",", ":"))


def parse_ledger(value):
    """Keys listed in a ledger annotation, [] when missing or unreadable."""
    if value is None or not value.strip():
        return []
    try:
        keys = json.loads(value)
    except ValueError as e:
        logging.getLogger(__name__).warning(f"Ignoring malformed managed-keys annotation {value!r}: {e}")
        return []
    if not isinstance(keys, list):
        logging.getLogger(__name__).warning(f"Ignoring managed-keys annotation that is not a list: {value!r}")
        return []
    return [str(k) for k in keys if isinstance(k, str) and k]


def serialize_metadata_keys(annotation_keys, label_keys):
    return json.dumps({"annotations": sorted(set(annotation_keys)), "labels": sorted(set(label_keys))},
                      separators=(",", ":"))


def parse_metadata_keys(value):
    """(annotation keys, label keys) written by the sync, empty lists when unreadable."""
    if value is None or not value.strip():
        return [], []
    try:
        keys = json.loads(value)
    except ValueError as e:
        logging.getLogger(__name__).warning(f"Ignoring malformed managed-metadata annotation {value!r}: {e}")
        return [], []
    if not isinstance(keys, dict):
        logging.getLogger(__name__).warning(f"Ignoring managed-metadata annotation that is not a map: {value!r}")
        return [], []
    return _key_list(keys.get("annotations")), _key_list(keys.get("labels"))


def _key_list(value):
    if not isinstance(value, list):
        return []
    return [k for k in value if isinstance(k, str) and k]
