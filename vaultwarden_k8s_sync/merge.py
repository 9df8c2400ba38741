# -*- coding: utf-8 -*-
"""
Merging synced keys into secrets that other tools may also write to.

The ledger lists the keys this sync owns. Keys outside the ledger belong to
someone else and survive every merge.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MergeResult:
    data: dict
    ledger: list
    stale_keys: list = field(default_factory=list)
    preserved_keys: list = field(default_factory=list)

    @property
    def is_empty(self):
        return not self.data


def merge_managed_keys(existing, ledger, document):
    """Replace the keys owned last time with the new document.

    data = (existing - ledger) | document, ledger = keys(document)
    """
    existing = existing or {}
    owned = set(ledger or ())
    document = document or {}
    data = {k: v for k, v in existing.items() if k not in owned}
    preserved = sorted(k for k in data if k not in document)
    data.update(document)
    stale = sorted(k for k in owned if k not in document and k in existing)
    return MergeResult(data=data, ledger=sorted(document), stale_keys=stale,
                       preserved_keys=preserved)


def strip_managed_keys(existing, ledger):
    """Drop every owned key, the ledger becomes empty."""
    existing = existing or {}
    owned = set(ledger or ())
    data = {k: v for k, v in existing.items() if k not in owned}
    return MergeResult(data=data, ledger=[],
                       stale_keys=sorted(k for k in owned if k in existing),
                       preserved_keys=sorted(data))
