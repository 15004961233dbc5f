"""Tests for branch create/switch and branch data copies."""

import sqlite3

import pytest

from repotree.core.tree import branches
from repotree.core.tree.branches import (
    clone_branch_data,
    create_branch,
    list_branches,
    normalize_branch_name,
    switch_branch,
)
from repotree.core.tree.repository import get_repository
from repotree.core.tree.store import (
    add_child,
    add_root,
    create_block,
    get_document,
    list_blocks,
    list_documents,
)
from repotree.errors import NotFoundError, ValidationError


def _seed_main(db: sqlite3.Connection, rpid: int) -> tuple[int, int]:
    sorting = add_root(db, rpid=rpid, branch="main", owner=1, title="Sorting", content="Sorting algorithms")
    quicksort = add_child(db, rpid=rpid, branch="main", parent_did=sorting, owner=1, title="Quicksort", sort_order=2)
    create_block(db, rpid=rpid, branch="main", did=quicksort, owner=1, title="Complexity", content="O(n log n)")
    return sorting, quicksort


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, "main"), ("", "main"), ("  draft ", "draft"), ("feature/x", "feature/x")],
)
def test_normalize_branch_name(raw: str | None, expected: str) -> None:
    assert normalize_branch_name(raw) == expected


@pytest.mark.parametrize(
    "name",
    ["has space", "a..b", "-flag", "/abs", "trailing/", "x.lock", "what?", "star*", "a~1", "a^", "x:y", "a@{1}"],
)
def test_normalize_branch_name_rejects_git_unsafe_names(name: str) -> None:
    with pytest.raises(ValidationError, match="Invalid branch name"):
        normalize_branch_name(name)


def test_create_branch_copies_current_branch(db: sqlite3.Connection, rpid: int) -> None:
    _seed_main(db, rpid)
    # Shift the draft id counter so copied ids differ from the source ids.
    add_root(db, rpid=rpid, branch="draft", owner=1, title="Stale")
    db.execute("DELETE FROM documents WHERE branch = 'draft'")

    repo = create_branch(db, rpid=rpid, name="draft", owner=2)

    assert repo.current_branch == "draft"
    assert repo.branches == ("main", "draft")
    docs = list_documents(db, rpid=rpid, branch="draft")
    assert [(d.title, d.depth, d.owner) for d in docs] == [("Sorting", 0, 2), ("Quicksort", 1, 2)]
    sorting, quicksort = docs
    assert sorting.did != 1
    assert quicksort.parent_id == sorting.did
    assert quicksort.path == f"/{sorting.did}/{quicksort.did}"
    assert quicksort.sort_order == 2
    [block] = list_blocks(db, rpid=rpid, branch="draft")
    assert (block.did, block.title, block.content) == (quicksort.did, "Complexity", "O(n log n)")
    # The source branch is untouched.
    assert len(list_documents(db, rpid=rpid, branch="main")) == 2


def test_create_branch_copy_failure_keeps_branch(
    db: sqlite3.Connection, rpid: int, monkeypatch: pytest.MonkeyPatch
) -> None:
    def failing_clone(*args: object, **kwargs: object) -> dict[int, int]:
        raise NotFoundError("source vanished")

    monkeypatch.setattr(branches, "clone_branch_data", failing_clone)

    repo = create_branch(db, rpid=rpid, name="draft", owner=1)

    assert repo.current_branch == "draft"
    assert "draft" in list_branches(db, rpid=rpid)


def test_create_existing_branch_is_not_listed_twice(db: sqlite3.Connection, rpid: int) -> None:
    add_root(db, rpid=rpid, branch="main", owner=1, title="Sorting")
    create_branch(db, rpid=rpid, name="draft", owner=1)
    add_root(db, rpid=rpid, branch="draft", owner=1, title="Draft only")
    switch_branch(db, rpid=rpid, name="main")

    repo = create_branch(db, rpid=rpid, name="draft", owner=1)

    assert repo.branches == ("main", "draft")
    assert [d.title for d in list_documents(db, rpid=rpid, branch="draft")] == ["Sorting"]


def test_switch_branch_accepts_unknown_branch(db: sqlite3.Connection, rpid: int) -> None:
    repo = switch_branch(db, rpid=rpid, name="elsewhere")

    assert repo.current_branch == "elsewhere"
    assert repo.branches == ("main",)
    assert list_documents(db, rpid=rpid, branch="elsewhere") == ()


def test_switch_branch_blank_goes_to_main(db: sqlite3.Connection, rpid: int) -> None:
    switch_branch(db, rpid=rpid, name="draft")

    assert switch_branch(db, rpid=rpid, name=" ").current_branch == "main"


def test_clone_branch_data_skips_orphans(db: sqlite3.Connection, rpid: int) -> None:
    sorting, _ = _seed_main(db, rpid)
    db.execute(
        "INSERT INTO documents (rpid, branch, did, parent_id, path, owner, title, sort_order, "
        "created_at, update_at) VALUES (?, 'main', 50, 99, '/99/50', 1, 'Orphan', 0, 0, 0)",
        (rpid,),
    )

    id_map = clone_branch_data(db, rpid=rpid, source="main", target="copy", owner=1)

    assert 50 not in id_map
    assert sorting in id_map
    titles = {d.title for d in list_documents(db, rpid=rpid, branch="copy")}
    assert titles == {"Sorting", "Quicksort"}


def test_clone_branch_data_same_branch_is_noop(db: sqlite3.Connection, rpid: int) -> None:
    _seed_main(db, rpid)

    assert clone_branch_data(db, rpid=rpid, source="main", target="main", owner=1) == {}
    assert len(list_documents(db, rpid=rpid, branch="main")) == 2


def test_create_branch_unknown_repository(db: sqlite3.Connection) -> None:
    with pytest.raises(NotFoundError):
        create_branch(db, rpid=404, name="draft", owner=1)


def test_created_branch_is_independent(db: sqlite3.Connection, rpid: int) -> None:
    sorting, _ = _seed_main(db, rpid)
    create_branch(db, rpid=rpid, name="draft", owner=1)
    draft_root = list_documents(db, rpid=rpid, branch="draft")[0]

    add_child(db, rpid=rpid, branch="draft", parent_did=draft_root.did, owner=1, title="Mergesort")

    assert len(list_documents(db, rpid=rpid, branch="main")) == 2
    assert get_document(db, rpid=rpid, branch="main", did=sorting).title == "Sorting"
    assert get_repository(db, rpid=rpid).current_branch == "draft"
