"""Versioned shape migrations for stored drafts.

A draft's version is its `metadata.totalSteps`. `MIGRATIONS[n]` upgrades a
version-n record to version n+1; `migrate` applies them in sequence. Each
migration only moves data around; new fields come from the default record in
`deep_merge`.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, List, Tuple


logger = logging.getLogger(__name__)

Migration = Callable[[Dict[str, Any]], Dict[str, Any]]


def insert_step(position: int) -> Migration:
    """Migration for a step inserted at `position`: positions at or after it shift by one."""

    def _migrate(record: Dict[str, Any]) -> Dict[str, Any]:
        out = copy.deepcopy(record)
        meta = out.setdefault("metadata", {})
        old_total = int(meta.get("totalSteps") or 0)
        current = int(meta.get("currentStep") or 1)
        if current >= position:
            current += 1
        meta["currentStep"] = current
        meta["completedSteps"] = [s + 1 if s >= position else s for s in meta.get("completedSteps") or []]
        meta["totalSteps"] = old_total + 1
        return out

    _migrate.__name__ = f"insert_step_{position}"
    return _migrate


# Program Information became step 3 when the form went from four to five steps
MIGRATIONS: Dict[int, Migration] = {
    4: insert_step(3),
}


def stored_version(record: Dict[str, Any], default: int) -> int:
    meta = record.get("metadata")
    if not isinstance(meta, dict):
        return default
    try:
        return int(meta.get("totalSteps") or default)
    except (TypeError, ValueError):
        return default


def migrate(
    record: Dict[str, Any],
    target_version: int,
    migrations: Dict[int, Migration] = MIGRATIONS,
) -> Tuple[Dict[str, Any], List[str]]:
    """Upgrade `record` towards `target_version`; returns (record, applied names).

    Records already at (or past) the target come back unchanged.
    """
    version = stored_version(record, target_version)
    applied: List[str] = []
    while version < target_version:
        step = migrations.get(version)
        if step is None:
            logger.warning("no migration from version %s; merging shape without remapping", version)
            break
        record = step(record)
        applied.append(step.__name__)
        version += 1
    return record, applied


def deep_merge(defaults: Any, stored: Any) -> Any:
    """Overlay `stored` on `defaults`. Stored values win; keys only in defaults are added.

    A stored null where the default is a container falls back to the default.
    """
    if isinstance(defaults, dict) and isinstance(stored, dict):
        out = copy.deepcopy(defaults)
        for key, value in stored.items():
            out[key] = deep_merge(defaults[key], value) if key in defaults else copy.deepcopy(value)
        return out
    if stored is None and isinstance(defaults, (dict, list)):
        return copy.deepcopy(defaults)
    return copy.deepcopy(stored)
