"""
Record flattening for logparsely.

Turns a parsed JSON value into a flat mapping of key paths to strings, so
that nested objects and arrays can be stored as plain text columns.
"""

from __future__ import annotations

import json
from typing import Any


def flatten_json(value: Any) -> dict[str, str]:
    """Flatten a parsed JSON value into ``{key_path: text}``.

    Object fields are joined with ``.`` and array positions are written as
    ``[index]``. Leaf values are rendered as their JSON text, except strings
    which are stored unquoted.

    Examples:
        >>> flatten_json({"a": {"b": 1}, "c": [10, 20]})
        {'a.b': '1', 'c[0]': '10', 'c[1]': '20'}
        >>> flatten_json({})
        {}
    """
    result: dict[str, str] = {}
    _flatten_into(value, "", result)
    return result


def _flatten_into(value: Any, prefix: str, result: dict[str, str]) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            key = _storable(str(key))
            path = f"{prefix}.{key}" if prefix else key
            _flatten_into(child, path, result)
    elif isinstance(value, list):
        for index, child in enumerate(value):
            _flatten_into(child, f"{prefix}[{index}]", result)
    else:
        result[prefix] = _leaf_text(value)


def _leaf_text(value: Any) -> str:
    if isinstance(value, str):
        return _storable(value)
    # numbers, booleans and null keep their JSON spelling (true, null, 1.5)
    return json.dumps(value)


def _storable(text: str) -> str:
    """Replace lone surrogates (e.g. from a "\\ud800" escape) with U+FFFD.

    Such strings are valid JSON but cannot be encoded as UTF-8, so the
    database driver refuses to bind them.
    """
    return text.encode("utf-8", "surrogatepass").decode("utf-8", "replace")
