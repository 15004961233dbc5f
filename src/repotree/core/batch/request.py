"""Typed items of a batch save request.

The editor sends one JSON body per save:

    {nodeCreates, nodeUpdates, nodeDeletes,
     cardCreates, cardUpdates, cardDeletes,
     edgeCreates, edgeDeletes}

Items are parsed one at a time so that a malformed item fails alone.
"""

from dataclasses import dataclass, field
from typing import Any

from repotree.errors import ValidationError

# A reference to a document: a real did, or a tempId created in the same batch.
Ref = int | str


def real_id(value: Any) -> int | None:
    """Return value as a stored id if it is one (an int or a digit string)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _ref(value: Any, what: str) -> Ref:
    if isinstance(value, bool) or not isinstance(value, int | str) or value == "":
        msg = f"{what} must be an id or a tempId, got {value!r}"
        raise ValidationError(msg)
    return value


def _required_id(item: dict[str, Any], key: str, what: str) -> int:
    value = real_id(item.get(key))
    if value is None:
        msg = f"{what} needs a numeric {key!r}, got {item.get(key)!r}"
        raise ValidationError(msg)
    return value


def _optional_str(item: dict[str, Any], key: str) -> str | None:
    value = item.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        msg = f"{key!r} must be a string, got {value!r}"
        raise ValidationError(msg)
    return value


def _optional_int(item: dict[str, Any], key: str) -> int | None:
    value = item.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{key!r} must be an integer, got {value!r}"
        raise ValidationError(msg)
    return value


def _as_item(item: Any, what: str) -> dict[str, Any]:
    if not isinstance(item, dict):
        msg = f"{what} must be an object, got {item!r}"
        raise ValidationError(msg)
    return item


@dataclass(frozen=True)
class NodeCreate:
    temp_id: str
    title: str
    content: str
    parent: Ref | None
    sort_order: int

    @classmethod
    def parse(cls, raw: Any) -> "NodeCreate":
        item = _as_item(raw, "node create")
        temp_id = item.get("tempId")
        if not isinstance(temp_id, str) or not temp_id:
            msg = f"node create needs a tempId, got {temp_id!r}"
            raise ValidationError(msg)
        title = _optional_str(item, "text")
        if title is None:
            msg = f"node create {temp_id!r} has no text"
            raise ValidationError(msg)
        parent = item.get("parentId")
        return cls(
            temp_id=temp_id,
            title=title,
            content=_optional_str(item, "content") or "",
            parent=None if parent is None else _ref(parent, "parentId"),
            sort_order=_optional_int(item, "order") or 0,
        )


@dataclass(frozen=True)
class NodeUpdate:
    """An update of an existing document. `reparent` is set when parentId was sent."""

    did: int
    title: str | None
    content: str | None
    sort_order: int | None
    reparent: bool
    parent: Ref | None

    @classmethod
    def parse(cls, raw: Any) -> "NodeUpdate":
        item = _as_item(raw, "node update")
        parent = item.get("parentId")
        return cls(
            did=_required_id(item, "id", "node update"),
            title=_optional_str(item, "text"),
            content=_optional_str(item, "content"),
            sort_order=_optional_int(item, "order"),
            reparent="parentId" in item,
            parent=None if parent is None else _ref(parent, "parentId"),
        )


@dataclass(frozen=True)
class CardCreate:
    temp_id: str
    node: Ref
    title: str
    content: str
    sort_order: int

    @classmethod
    def parse(cls, raw: Any) -> "CardCreate":
        item = _as_item(raw, "card create")
        temp_id = item.get("tempId")
        if not isinstance(temp_id, str) or not temp_id:
            msg = f"card create needs a tempId, got {temp_id!r}"
            raise ValidationError(msg)
        title = _optional_str(item, "title")
        if title is None:
            msg = f"card create {temp_id!r} has no title"
            raise ValidationError(msg)
        return cls(
            temp_id=temp_id,
            node=_ref(item.get("nodeId"), f"card create {temp_id!r} nodeId"),
            title=title,
            content=_optional_str(item, "content") or "",
            sort_order=_optional_int(item, "order") or 0,
        )


@dataclass(frozen=True)
class CardUpdate:
    bid: int
    title: str | None
    content: str | None
    sort_order: int | None
    node: Ref | None

    @classmethod
    def parse(cls, raw: Any) -> "CardUpdate":
        item = _as_item(raw, "card update")
        node = item.get("nodeId")
        return cls(
            bid=_required_id(item, "id", "card update"),
            title=_optional_str(item, "title"),
            content=_optional_str(item, "content"),
            sort_order=_optional_int(item, "order"),
            node=None if node is None else _ref(node, "nodeId"),
        )


@dataclass(frozen=True)
class Edge:
    """A parent link: source is the parent, target the child."""

    source: Ref
    target: Ref

    @classmethod
    def parse(cls, raw: Any) -> "Edge":
        item = _as_item(raw, "edge")
        return cls(
            source=_ref(item.get("source"), "edge source"),
            target=_ref(item.get("target"), "edge target"),
        )


_LIST_KEYS = (
    "nodeCreates", "nodeUpdates", "nodeDeletes",
    "cardCreates", "cardUpdates", "cardDeletes",
    "edgeCreates", "edgeDeletes",
)


@dataclass(frozen=True)
class BatchRequest:
    """The raw item lists of one save; items are parsed when applied."""

    node_creates: list[Any] = field(default_factory=list)
    node_updates: list[Any] = field(default_factory=list)
    node_deletes: list[Any] = field(default_factory=list)
    card_creates: list[Any] = field(default_factory=list)
    card_updates: list[Any] = field(default_factory=list)
    card_deletes: list[Any] = field(default_factory=list)
    edge_creates: list[Any] = field(default_factory=list)
    edge_deletes: list[Any] = field(default_factory=list)

    @classmethod
    def from_body(cls, body: Any) -> "BatchRequest":
        """Split a request body into its item lists; a malformed envelope is fatal."""
        if not isinstance(body, dict):
            msg = "batch request must be a JSON object"
            raise ValidationError(msg)
        lists: list[list[Any]] = []
        for key in _LIST_KEYS:
            value = body.get(key) or []
            if not isinstance(value, list):
                msg = f"{key!r} must be a list"
                raise ValidationError(msg)
            lists.append(value)
        return cls(*lists)
