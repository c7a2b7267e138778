from __future__ import annotations

import copy
from typing import Any, Mapping


_MISSING = object()


def _step(node: Any, key: str) -> Any:
    if isinstance(node, Mapping):
        return node.get(key, _MISSING)
    if isinstance(node, (list, tuple)) and key.isdigit():
        idx = int(key)
        return node[idx] if idx < len(node) else _MISSING
    return _MISSING


def get(record: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted path ("education.institution") inside a nested record.

    Missing intermediate nodes resolve to `default` instead of raising.
    Numeric segments index into lists.
    """
    node = record
    for key in path.split("."):
        node = _step(node, key)
        if node is _MISSING:
            return default
    return node


def set_path(record: Mapping[str, Any], path: str, value: Any) -> dict:
    """Return a deep copy of `record` with the leaf at `path` replaced."""
    out = copy.deepcopy(dict(record))
    keys = path.split(".")
    node = out
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[keys[-1]] = value
    return out
