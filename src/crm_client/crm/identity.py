"""Identifier synthesis, timestamps, field diffs and result-set merging."""

from __future__ import annotations

import secrets
import string
import time
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from src.crm_client.crm.schemas import FieldChange

_BASE36 = string.digits + string.ascii_lowercase
_SUFFIX_LENGTH = 9

# Identifier prefixes per entity kind
LEAD_PREFIX = "lead"
OPPORTUNITY_PREFIX = "opp"
ACCOUNT_PREFIX = "account"
ACTIVITY_PREFIX = "activity"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat().replace("+00:00", "Z")


def random_suffix(length: int = _SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_id(prefix: str) -> str:
    """Build ``{prefix}_{epoch millis}_{9 random base36 chars}``."""
    return f"{prefix}_{time.time_ns() // 1_000_000}_{random_suffix()}"


def _differs(old: Any, new: Any) -> bool:
    # Containers never compare equal, matching reference inequality semantics.
    if isinstance(new, (dict, list)):
        return True
    return old != new


def compute_changes(old: dict[str, Any], changes: dict[str, Any]) -> dict[str, FieldChange]:
    """Field-level diff for every key present in changes."""
    return {
        key: FieldChange(old=old.get(key), new=value)
        for key, value in changes.items()
        if _differs(old.get(key), value)
    }


def merge_by_id(
    remote: Iterable[dict[str, Any]],
    local: Iterable[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Union of both record sets keyed by id; local records win conflicts.

    Records without an id are dropped.
    """
    merged: dict[str, dict[str, Any]] = {}
    for record in remote:
        if record.get("id"):
            merged[record["id"]] = record
    for record in local:
        if record.get("id"):
            merged[record["id"]] = record
    return list(merged.values())
