"""Tests for the document and block store."""

import sqlite3

import pytest

from repotree.core.tree.store import (
    add_child,
    add_root,
    clear_branch,
    create_block,
    delete_block,
    delete_blocks_of_documents,
    delete_subtree,
    edit_block,
    edit_document,
    get_block,
    get_children,
    get_document,
    get_subtree,
    increment_block_views,
    increment_document_views,
    list_blocks,
    list_blocks_of_doc,
    list_documents,
    move_document,
)
from repotree.errors import NotFoundError, ValidationError


def _root(db: sqlite3.Connection, rpid: int, title: str, **kw: object) -> int:
    return add_root(db, rpid=rpid, branch="main", owner=1, title=title, **kw)  # type: ignore[arg-type]


def _child(db: sqlite3.Connection, rpid: int, parent: int, title: str, **kw: object) -> int:
    return add_child(db, rpid=rpid, branch="main", parent_did=parent, owner=1, title=title, **kw)  # type: ignore[arg-type]


def test_add_root_and_child_build_paths(db: sqlite3.Connection, rpid: int) -> None:
    sorting = _root(db, rpid, "Sorting", content="Sorting algorithms")
    quicksort = _child(db, rpid, sorting, "Quicksort")

    root = get_document(db, rpid=rpid, branch="main", did=sorting)
    child = get_document(db, rpid=rpid, branch="main", did=quicksort)
    assert root.path == f"/{sorting}"
    assert root.parent_id is None
    assert root.depth == 0
    assert root.content == "Sorting algorithms"
    assert child.path == f"/{sorting}/{quicksort}"
    assert child.parent_id == sorting
    assert child.depth == 1


def test_add_child_rejects_missing_parent(db: sqlite3.Connection, rpid: int) -> None:
    with pytest.raises(NotFoundError, match="Document 42 not found"):
        _child(db, rpid, 42, "Orphan")


def test_parent_must_be_in_same_branch(db: sqlite3.Connection, rpid: int) -> None:
    did = add_root(db, rpid=rpid, branch="draft", owner=1, title="Draft only")

    with pytest.raises(NotFoundError):
        _child(db, rpid, did, "Child on main")


def test_get_children_orders_by_order_then_did(db: sqlite3.Connection, rpid: int) -> None:
    b = _root(db, rpid, "B", sort_order=1)
    a = _root(db, rpid, "A", sort_order=0)
    c = _root(db, rpid, "C", sort_order=1)

    roots = get_children(db, rpid=rpid, branch="main", parent_did=None)

    assert [d.did for d in roots] == [a, b, c]


def test_list_documents_is_shallowest_first(db: sqlite3.Connection, rpid: int) -> None:
    top = _root(db, rpid, "Top")
    deep = _child(db, rpid, top, "Deep")
    other = _root(db, rpid, "Other", sort_order=1)

    docs = list_documents(db, rpid=rpid, branch="main")

    assert [d.did for d in docs] == [top, other, deep]


def test_get_subtree_uses_path_prefix(db: sqlite3.Connection, rpid: int) -> None:
    """Subtree of /1 must not include /10 and friends."""
    first = _root(db, rpid, "First")
    child = _child(db, rpid, first, "Child")
    for i in range(8):
        _root(db, rpid, f"Filler {i}")
    tenth = _root(db, rpid, "Tenth")
    assert tenth >= 10

    subtree = get_subtree(db, rpid=rpid, branch="main", did=first)

    assert {d.did for d in subtree} == {first, child}


def test_edit_document_updates_given_fields_only(db: sqlite3.Connection, rpid: int) -> None:
    did = _root(db, rpid, "Title", content="Body")

    doc = edit_document(db, rpid=rpid, branch="main", did=did, title="New title", sort_order=3)

    assert doc.title == "New title"
    assert doc.content == "Body"
    assert doc.sort_order == 3


def test_edit_document_missing_raises(db: sqlite3.Connection, rpid: int) -> None:
    with pytest.raises(NotFoundError):
        edit_document(db, rpid=rpid, branch="main", did=99, title="x")


def test_move_document_rewrites_descendant_paths(db: sqlite3.Connection, rpid: int) -> None:
    a = _root(db, rpid, "A")
    b = _child(db, rpid, a, "B")
    c = _child(db, rpid, b, "C")
    target = _root(db, rpid, "Target")

    moved = move_document(db, rpid=rpid, branch="main", did=b, new_parent=target)

    assert moved.parent_id == target
    assert moved.path == f"/{target}/{b}"
    assert get_document(db, rpid=rpid, branch="main", did=c).path == f"/{target}/{b}/{c}"
    assert get_children(db, rpid=rpid, branch="main", parent_did=a) == ()


def test_move_document_to_root(db: sqlite3.Connection, rpid: int) -> None:
    a = _root(db, rpid, "A")
    b = _child(db, rpid, a, "B")
    c = _child(db, rpid, b, "C")

    move_document(db, rpid=rpid, branch="main", did=b, new_parent=None)

    assert get_document(db, rpid=rpid, branch="main", did=b).path == f"/{b}"
    assert get_document(db, rpid=rpid, branch="main", did=c).path == f"/{b}/{c}"


def test_move_document_rejects_cycles(db: sqlite3.Connection, rpid: int) -> None:
    a = _root(db, rpid, "A")
    b = _child(db, rpid, a, "B")
    c = _child(db, rpid, b, "C")

    with pytest.raises(ValidationError, match="own descendant"):
        move_document(db, rpid=rpid, branch="main", did=a, new_parent=c)
    with pytest.raises(ValidationError):
        move_document(db, rpid=rpid, branch="main", did=a, new_parent=a)

    assert get_document(db, rpid=rpid, branch="main", did=a).parent_id is None


def test_delete_subtree_returns_dids_and_keeps_blocks(db: sqlite3.Connection, rpid: int) -> None:
    a = _root(db, rpid, "A")
    b = _child(db, rpid, a, "B")
    keep = _root(db, rpid, "Keep")
    create_block(db, rpid=rpid, branch="main", did=b, owner=1, title="Card")

    dids = delete_subtree(db, rpid=rpid, branch="main", did=a)

    assert sorted(dids) == [a, b]
    assert [d.did for d in list_documents(db, rpid=rpid, branch="main")] == [keep]
    assert len(list_blocks(db, rpid=rpid, branch="main")) == 1
    assert delete_blocks_of_documents(db, rpid=rpid, branch="main", dids=dids) == 1
    assert list_blocks(db, rpid=rpid, branch="main") == ()


def test_delete_blocks_of_documents_with_no_dids(db: sqlite3.Connection, rpid: int) -> None:
    assert delete_blocks_of_documents(db, rpid=rpid, branch="main", dids=[]) == 0


def test_create_block_requires_document(db: sqlite3.Connection, rpid: int) -> None:
    with pytest.raises(NotFoundError):
        create_block(db, rpid=rpid, branch="main", did=5, owner=1, title="Card")


def test_blocks_are_listed_in_order(db: sqlite3.Connection, rpid: int) -> None:
    did = _root(db, rpid, "Doc")
    second = create_block(db, rpid=rpid, branch="main", did=did, owner=1, title="Second", sort_order=1)
    first = create_block(db, rpid=rpid, branch="main", did=did, owner=1, title="First", sort_order=0)

    blocks = list_blocks_of_doc(db, rpid=rpid, branch="main", did=did)

    assert [b.bid for b in blocks] == [first, second]


def test_edit_block_moves_to_other_document(db: sqlite3.Connection, rpid: int) -> None:
    one = _root(db, rpid, "One")
    two = _root(db, rpid, "Two")
    bid = create_block(db, rpid=rpid, branch="main", did=one, owner=1, title="Card", content="x")

    block = edit_block(db, rpid=rpid, branch="main", bid=bid, content="y", did=two)

    assert block.did == two
    assert block.content == "y"
    assert block.title == "Card"
    with pytest.raises(NotFoundError):
        edit_block(db, rpid=rpid, branch="main", bid=bid, did=77)


def test_delete_block(db: sqlite3.Connection, rpid: int) -> None:
    did = _root(db, rpid, "Doc")
    bid = create_block(db, rpid=rpid, branch="main", did=did, owner=1, title="Card")

    delete_block(db, rpid=rpid, branch="main", bid=bid)

    with pytest.raises(NotFoundError):
        get_block(db, rpid=rpid, branch="main", bid=bid)


def test_branches_are_isolated(db: sqlite3.Connection, rpid: int) -> None:
    """The same did can exist on two branches with different content."""
    main_did = _root(db, rpid, "On main")
    draft_did = add_root(db, rpid=rpid, branch="draft", owner=1, title="On draft")

    assert main_did == draft_did == 1
    assert get_document(db, rpid=rpid, branch="main", did=1).title == "On main"
    assert get_document(db, rpid=rpid, branch="draft", did=1).title == "On draft"


def test_clear_branch_removes_only_that_branch(db: sqlite3.Connection, rpid: int) -> None:
    did = _root(db, rpid, "Main doc")
    create_block(db, rpid=rpid, branch="main", did=did, owner=1, title="Card")
    add_root(db, rpid=rpid, branch="draft", owner=1, title="Draft doc")

    assert clear_branch(db, rpid=rpid, branch="main") == (1, 1)

    assert list_documents(db, rpid=rpid, branch="main") == ()
    assert len(list_documents(db, rpid=rpid, branch="draft")) == 1


def test_ids_are_not_reused_after_clear(db: sqlite3.Connection, rpid: int) -> None:
    _root(db, rpid, "One")
    _root(db, rpid, "Two")
    clear_branch(db, rpid=rpid, branch="main")

    assert _root(db, rpid, "Three") == 3


def test_increment_document_views(db: sqlite3.Connection, rpid: int) -> None:
    did = _root(db, rpid, "Doc")

    increment_document_views(db, rpid=rpid, branch="main", did=did)
    increment_document_views(db, rpid=rpid, branch="main", did=did)

    assert get_document(db, rpid=rpid, branch="main", did=did).views == 2


def test_increment_block_views(db: sqlite3.Connection, rpid: int) -> None:
    did = _root(db, rpid, "Doc")
    bid = create_block(db, rpid=rpid, branch="main", did=did, owner=1, title="Card")

    increment_block_views(db, rpid=rpid, branch="main", bid=bid)

    assert get_block(db, rpid=rpid, branch="main", bid=bid).views == 1
    with pytest.raises(NotFoundError):
        increment_block_views(db, rpid=rpid, branch="main", bid=99)
