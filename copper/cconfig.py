"""Read app config files written in TOML.

A config file may extend other files with a top-level ``extends`` key, set to
a path or a list of paths relative to the file. Overrides are a ``;``
separated string of TOML snippets applied on top of the loaded tree.
"""

from __future__ import annotations

import builtins
import dataclasses
import os
import sys
import types
from enum import Enum
from typing import Any, Dict, List

from copper.cerrors import Error

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

Tree = Dict[str, Any]

_BUILTIN_HINTS = {"str": str, "int": int, "bool": bool, "float": float}


class Loader:
    """Loads tables from a config tree into dataclasses or dicts."""

    def __init__(self, tree: Tree) -> None:
        self._tree = tree

    def load(self, key: str, cls: Any = dict) -> Any:
        """Load the table at ``key`` into ``cls``.

        ``cls`` may be ``dict``, a dataclass type, or a dataclass instance whose
        unset fields are kept. A dataclass field is read from the TOML key named
        by its ``toml`` metadata, or by its own name. A missing key yields the
        empty target.
        """
        if key not in self._tree:
            return _unmarshal({}, cls)

        table = self._tree[key]
        if not isinstance(table, dict):
            raise Error("invalid key type", {"key": key})

        try:
            return _unmarshal(table, cls)
        except (TypeError, ValueError) as exc:
            raise Error("failed to unmarshal config into dest", {"key": key}, exc) from exc


def _is_class(hint: Any) -> bool:
    return isinstance(hint, type) and not isinstance(hint, types.GenericAlias)


def _field_hint(field: dataclasses.Field, current: Any) -> Any:
    """Work out the class a field's value should have."""
    if _is_class(field.type):
        return field.type
    if current is not None:
        return type(current)
    if field.default is not dataclasses.MISSING:
        default = field.default
    elif field.default_factory is not dataclasses.MISSING:
        default = field.default_factory()
    else:
        default = None
    if default is not None:
        return type(default)
    if isinstance(field.type, str):
        return _BUILTIN_HINTS.get(field.type.strip(), getattr(builtins, "object"))
    return None


def _convert(value: Any, hint: Any, current: Any) -> Any:
    if not _is_class(hint) or hint is object:
        return value
    if dataclasses.is_dataclass(hint):
        if not isinstance(value, dict):
            raise TypeError(f"expected a table for {hint.__name__}, got {type(value).__name__}")
        target = current if dataclasses.is_dataclass(current) and not isinstance(current, type) else hint
        return _unmarshal(value, target)
    if issubclass(hint, Enum):
        return hint(value)
    if hint is bool:
        if not isinstance(value, bool):
            raise TypeError(f"expected bool, got {type(value).__name__}")
    elif hint is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"expected int, got {type(value).__name__}")
    elif hint is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"expected float, got {type(value).__name__}")
        return float(value)
    elif hint is str and not isinstance(value, str):
        raise TypeError(f"expected str, got {type(value).__name__}")
    return value


def _unmarshal(table: Tree, target: Any) -> Any:
    if target is dict:
        return dict(table)
    if isinstance(target, dict):
        return {**target, **table}

    if dataclasses.is_dataclass(target) and isinstance(target, type):
        cls, base = target, None
    elif dataclasses.is_dataclass(target):
        cls, base = type(target), target
    else:
        raise TypeError(f"cannot load config into {target!r}")

    values = {}
    for field in dataclasses.fields(cls):
        if not field.init:
            continue
        name = field.metadata.get("toml", field.name)
        if name not in table:
            continue
        current = getattr(base, field.name) if base is not None else None
        values[field.name] = _convert(table[name], _field_hint(field, current), current)

    if base is not None:
        return dataclasses.replace(base, **values)
    return cls(**values)


def new_loader(path: str | os.PathLike, overrides: str = "") -> Loader:
    """Create a Loader that rejects keys set in more than one file."""
    return _new_loader(os.fspath(path), overrides, True)


def new_loader_with_key_overrides(path: str | os.PathLike, overrides: str = "") -> Loader:
    """Create a Loader where extending files may override keys of their parents."""
    return _new_loader(os.fspath(path), overrides, False)


def _new_loader(path: str, overrides: str, disable_key_overrides: bool) -> Loader:
    try:
        tree = _load_tree(path, overrides, disable_key_overrides)
    except Error as exc:
        raise Error("failed to load config tree", {"path": path}, exc) from exc
    return Loader(tree)


def _read_toml_file(path: str) -> Tree:
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise Error("failed to load config file", {"path": path}, exc) from exc


def _parent_paths(path: str, extends: Any) -> List[str]:
    if isinstance(extends, str):
        return [extends]
    if isinstance(extends, list):
        for value in extends:
            if not isinstance(value, str):
                raise Error("extends can only contain strings", {"path": path, "value": value})
        return list(extends)
    raise Error(
        "'extends' must be string or []string",
        {"path": path, "type": type(extends).__name__},
    )


def _load_tree(path: str, overrides: str, disable_key_overrides: bool) -> Tree:
    tree = _read_toml_file(path)

    if "extends" not in tree:
        return tree

    for parent in _parent_paths(path, tree["extends"]):
        parent_path = os.path.join(os.path.dirname(path), parent)
        try:
            parent_tree = _load_tree(parent_path, "", disable_key_overrides)
        except Error as exc:
            raise Error("failed to load parent tree", {"parentPath": parent_path}, exc) from exc
        try:
            tree = merge_trees(parent_tree, tree, disable_key_overrides)
        except Error as exc:
            raise Error("failed to merge with parent tree", {"parentPath": parent_path}, exc) from exc

    for override in overrides.split(";"):
        try:
            override_tree = tomllib.loads(override)
        except tomllib.TOMLDecodeError as exc:
            raise Error("failed to parse override as TOML", {"override": override}, exc) from exc
        try:
            tree = merge_trees(tree, override_tree, disable_key_overrides)
        except Error as exc:
            raise Error("failed to merge tree with overrides", {"override": override}, exc) from exc

    return tree


def merge_trees(base: Tree, override: Tree, disable_key_overrides: bool) -> Tree:
    """Apply ``override`` onto ``base`` in place, merging tables recursively."""
    for key, value in override.items():
        if isinstance(value, dict):
            if key not in base:
                base[key] = value
                continue
            base_table = base[key]
            if not isinstance(base_table, dict):
                raise Error("base and override key types don't match", {"key": key})
            try:
                base[key] = merge_trees(base_table, value, disable_key_overrides)
            except Error as exc:
                raise Error("failed to merge tree for key", {"key": key}, exc) from exc
            continue

        if key in base and disable_key_overrides:
            raise Error("key is being overridden when key overrides are disabled", {"key": key})
        base[key] = value

    return base