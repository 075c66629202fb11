"""
Path Resolver

Walks a content tree along a dotted field path and replaces every leaf
it reaches with the value produced by an async transform.

Arrays are transparent: an array met before the path is used up is
expanded element by element without consuming a path segment, so
"seo.images" matches both {"seo": {"images": ...}} and
{"seo": [{"images": ...}, {"images": ...}]}.
"""

import logging
from collections.abc import Mapping, MutableMapping
from enum import Enum
from typing import Any, Awaitable, Callable, List, Sequence, Tuple, Union

from .exceptions import UnsupportedLeafTypeError

logger = logging.getLogger(__name__)

# transform(values, is_array) -> replacement values, one per input
LeafTransform = Callable[[List[Any], bool], Awaitable[Sequence[Any]]]

_MISSING = object()


class LeafKind(Enum):
    STRING = "string"
    SEQUENCE = "sequence"
    OTHER = "other"


def classify_leaf(value: Any) -> LeafKind:
    if isinstance(value, str):
        return LeafKind.STRING
    if isinstance(value, (list, tuple)):
        return LeafKind.SEQUENCE
    return LeafKind.OTHER


def split_field_path(source_field: str) -> Tuple[str, ...]:
    """'seo.images' -> ('seo', 'images')"""
    return tuple(source_field.split("."))


async def traverse_and_replace(
    root: Any,
    path: Union[str, Sequence[str]],
    transform: LeafTransform,
    strict: bool = False,
) -> Any:
    """
    Replace every leaf reachable by ``path`` in ``root``.

    Containers are updated in place; the (possibly new) root is returned.
    Missing keys stop the walk silently. A leaf that is neither a string
    nor an array is logged and left alone, or raises
    UnsupportedLeafTypeError when ``strict`` is set.

    Args:
        root: Content tree (dicts, lists, scalars)
        path: Dotted string or sequence of keys
        transform: Awaited with ``([leaf], False)`` for string leaves and
            ``(leaf, True)`` for array leaves
        strict: Raise instead of logging unsupported leaves
    """
    segments = split_field_path(path) if isinstance(path, str) else tuple(path)
    if not segments or any(not isinstance(s, str) or not s for s in segments):
        raise ValueError(f"Invalid field path: {path!r}")

    return await _visit(root, segments, 0, transform, strict)


async def _visit(node: Any, path: Tuple[str, ...], index: int, transform: LeafTransform, strict: bool) -> Any:
    """Return the replacement for ``node``; the caller stores it."""
    if index == len(path):
        return await _replace_leaf(node, path, transform, strict)

    if isinstance(node, list):
        for position, element in enumerate(node):
            node[position] = await _visit(element, path, index, transform, strict)
        return node

    if isinstance(node, tuple):
        return tuple([await _visit(element, path, index, transform, strict) for element in node])

    child = node.get(path[index], _MISSING) if isinstance(node, Mapping) else _MISSING
    if child is _MISSING:
        return node

    replacement = await _visit(child, path, index + 1, transform, strict)
    if isinstance(node, MutableMapping):
        node[path[index]] = replacement
    return node


async def _replace_leaf(leaf: Any, path: Tuple[str, ...], transform: LeafTransform, strict: bool) -> Any:
    kind = classify_leaf(leaf)

    if kind is LeafKind.STRING:
        values = await transform([leaf], False)
        return values[0]

    if kind is LeafKind.SEQUENCE:
        values = list(await transform(list(leaf), True))
        return tuple(values) if isinstance(leaf, tuple) else values

    message = f"Unrecognised field at {'.'.join(path)}: {type(leaf).__name__}"
    if strict:
        raise UnsupportedLeafTypeError(message)
    logger.warning(f"[PathResolver] {message}")
    return leaf
