"""Typed tree for JSON-like configuration documents.

A site configuration is an arbitrarily nested structure of objects,
arrays and scalars.  Instead of branching on ``type()`` at every level,
documents are converted once into a closed set of node classes:

* :class:`JsonNull`, :class:`JsonBool`, :class:`JsonNumber`,
  :class:`JsonString` -- leaves.
* :class:`JsonArray` -- ordered children.
* :class:`JsonObject` -- ordered ``(key, child)`` pairs.

Every walk in this package goes through :func:`walk_strings` or
:func:`map_strings`, which dispatch on these classes and nothing else.
Object key order and array order are preserved by every conversion.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Union

from siteassets.errors import InvalidInputError


# ---------------------------------------------------------------------------
# Node types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class JsonNull:
    pass


@dataclass(frozen=True)
class JsonBool:
    value: bool


@dataclass(frozen=True)
class JsonNumber:
    value: int | float


@dataclass(frozen=True)
class JsonString:
    value: str


@dataclass(frozen=True)
class JsonArray:
    items: tuple[JsonNode, ...] = ()


@dataclass(frozen=True)
class JsonObject:
    fields: tuple[tuple[str, JsonNode], ...] = ()

    def get(self, key: str) -> JsonNode | None:
        for name, node in self.fields:
            if name == key:
                return node
        return None


JsonNode = Union[JsonNull, JsonBool, JsonNumber, JsonString, JsonArray, JsonObject]


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------

def from_python(value: Any) -> JsonNode:
    """Convert decoded JSON (``dict``/``list``/scalars) into a node tree.

    Raises
    ------
    InvalidInputError
        If *value* contains a type that JSON cannot represent, or an
        object key that is not a string.
    """
    if value is None:
        return JsonNull()
    # bool before int: bool is an int subclass.
    if isinstance(value, bool):
        return JsonBool(value)
    if isinstance(value, (int, float)):
        return JsonNumber(value)
    if isinstance(value, str):
        return JsonString(value)
    if isinstance(value, (list, tuple)):
        return JsonArray(tuple(from_python(item) for item in value))
    if isinstance(value, dict):
        fields = []
        for key, child in value.items():
            if not isinstance(key, str):
                raise InvalidInputError(
                    message="Document object keys must be strings",
                    context={"field": "document", "value": repr(key)[:64]},
                )
            fields.append((key, from_python(child)))
        return JsonObject(tuple(fields))
    raise InvalidInputError(
        message=f"Unsupported document value of type {type(value).__name__}",
        context={"field": "document", "value": repr(value)[:64]},
    )


def to_python(node: JsonNode) -> Any:
    """Convert a node tree back into plain ``dict``/``list``/scalars."""
    if isinstance(node, JsonNull):
        return None
    if isinstance(node, (JsonBool, JsonNumber, JsonString)):
        return node.value
    if isinstance(node, JsonArray):
        return [to_python(item) for item in node.items]
    if isinstance(node, JsonObject):
        return {key: to_python(child) for key, child in node.fields}
    raise TypeError(f"Not a document node: {node!r}")


# ---------------------------------------------------------------------------
# Structural visitors
# ---------------------------------------------------------------------------

def walk_strings(node: JsonNode, key: str | None = None) -> Iterator[tuple[str | None, str]]:
    """Yield ``(key, value)`` for every string leaf, in document order.

    *key* is the name of the object field that directly holds the string,
    or ``None`` for strings inside arrays and at the root.
    """
    if isinstance(node, JsonString):
        yield key, node.value
    elif isinstance(node, JsonArray):
        for item in node.items:
            yield from walk_strings(item)
    elif isinstance(node, JsonObject):
        for name, child in node.fields:
            yield from walk_strings(child, name)


def map_strings(node: JsonNode, fn: Callable[[str], str]) -> JsonNode:
    """Return a copy of *node* with every string leaf replaced by
    ``fn(leaf)``.

    Keys, non-string scalars and ordering are untouched.  Subtrees in
    which nothing changed are returned as the same objects.
    """
    if isinstance(node, JsonString):
        replaced = fn(node.value)
        return node if replaced == node.value else JsonString(replaced)
    if isinstance(node, JsonArray):
        items = tuple(map_strings(item, fn) for item in node.items)
        if all(new is old for new, old in zip(items, node.items)):
            return node
        return JsonArray(items)
    if isinstance(node, JsonObject):
        fields = tuple((name, map_strings(child, fn)) for name, child in node.fields)
        if all(new[1] is old[1] for new, old in zip(fields, node.fields)):
            return node
        return JsonObject(fields)
    return node
