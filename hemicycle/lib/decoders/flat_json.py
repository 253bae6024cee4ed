"""Flat-JSON decoder.

Some sources publish one large JSON document whose shape varies between
exports. Known shapes, tried in order:

1. a bare array: ``[{...}, {...}]``
2. a keyed list: ``{"items": [...]}`` / ``{"amendements": [...]}`` / ``{"votes": [...]}``
3. a singly-nested wrapper: ``{"export": {"amendements": {"amendement": {...} | [...]}}}``

The first matching shape wins. A document matching none of them yields an
empty list and a warning; the decoder never raises.
"""

import json
import logging
from typing import Any, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_LIST_KEYS = ("items", "amendements")
DEFAULT_NESTED_PATHS = (("export", "amendements", "amendement"),)


def _load(document: Union[str, bytes, Any]) -> Tuple[bool, Any]:
    if isinstance(document, (bytes, bytearray)):
        document = document.decode("utf-8", errors="replace")
    if isinstance(document, str):
        try:
            return True, json.loads(document)
        except ValueError as e:
            logger.warning(f"Flat JSON document is not valid JSON: {e}")
            return False, None
    return True, document


def _follow(document: Any, path: Sequence[str]) -> Optional[Any]:
    node = document
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def decode_flat_json(
    document: Union[str, bytes, Any],
    list_keys: Sequence[str] = DEFAULT_LIST_KEYS,
    nested_paths: Sequence[Sequence[str]] = DEFAULT_NESTED_PATHS,
    source: str = "",
) -> List[Any]:
    """Return the list of records carried by ``document``.

    Args:
        document: Raw JSON text/bytes or an already-parsed object
        list_keys: Keys checked for the keyed-list shape
        nested_paths: Key paths checked for the nested-wrapper shape; the leaf
            may be a single object or a list
        source: Label used in log messages

    Returns:
        List of records, empty when no known shape matches
    """
    ok, data = _load(document)
    if not ok:
        return []

    if isinstance(data, list):
        return data

    if isinstance(data, dict):
        for key in list_keys:
            value = data.get(key)
            if isinstance(value, list):
                return value

        for path in nested_paths:
            leaf = _follow(data, path)
            if isinstance(leaf, list):
                return leaf
            if isinstance(leaf, dict):
                return [leaf]

    shape = sorted(data.keys()) if isinstance(data, dict) else type(data).__name__
    logger.warning(f"Unknown flat JSON structure{' for ' + source if source else ''}: {shape}")
    return []
