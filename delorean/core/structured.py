"""Helpers for reading dynamic (untyped) documents.

YAML manifests, TOML config and JSON API payloads all arrive as plain
``dict``/``list`` trees. These helpers narrow them at the boundary without
copying, so edits made through a narrowed view land in the original tree.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TypeGuard, cast

StrDict = dict[str, object]
ObjList = list[object]


def is_str_dict(obj: object) -> TypeGuard[StrDict]:
    """Return True if obj is a dict with string keys."""
    if not isinstance(obj, dict):
        return False
    d = cast(dict[object, object], obj)
    return all(isinstance(k, str) for k in d.keys())


def as_str_dict(obj: object) -> StrDict | None:
    if is_str_dict(obj):
        return obj
    return None


def as_obj_list(obj: object) -> ObjList | None:
    if isinstance(obj, list):
        return cast(ObjList, obj)
    return None


def get_str(table: Mapping[str, object], key: str) -> str | None:
    """Get a non-empty, stripped string value; None otherwise."""
    value = table.get(key)
    if not isinstance(value, str):
        return None
    s = value.strip()
    return s or None


def get_int(table: Mapping[str, object], key: str) -> int | None:
    value = table.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def get_bool(table: Mapping[str, object], key: str) -> bool | None:
    value = table.get(key)
    if not isinstance(value, bool):
        return None
    return value


def get_table(table: Mapping[str, object], key: str) -> StrDict | None:
    return as_str_dict(table.get(key))


def get_list(table: Mapping[str, object], key: str) -> ObjList | None:
    return as_obj_list(table.get(key))


def get_path(root: object, *keys: str) -> object | None:
    """Walk nested mappings; None as soon as a step is missing or not a mapping."""
    node: object = root
    for key in keys:
        table = as_str_dict(node)
        if table is None or key not in table:
            return None
        node = table[key]
    return node


def get_str_list(table: Mapping[str, object], key: str) -> list[str]:
    items = get_list(table, key) or []
    return [item.strip() for item in items if isinstance(item, str) and item.strip()]
