"""Apply one editor save (creates, updates, deletes) against the tree store.

Items fail independently: an item that cannot be applied is reported in
`errors` and the rest of the batch is still committed, so the editor can
reconcile its optimistic copy of the tree with whatever did land.
"""

import sqlite3
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from repotree.config import BATCH_ROUND_CAP
from repotree.core.batch.request import (
    BatchRequest,
    CardCreate,
    CardUpdate,
    Edge,
    NodeCreate,
    NodeUpdate,
    Ref,
    real_id,
)
from repotree.core.tree.store import (
    add_child,
    add_root,
    create_block,
    delete_block,
    delete_blocks_of_documents,
    delete_subtree,
    edit_block,
    edit_document,
    get_document,
    move_document,
)
from repotree.errors import PartialBatchError, RepoTreeError


@dataclass
class BatchResult:
    """Outcome of a batch save: tempId -> real id maps plus per-item errors."""

    node_id_map: dict[str, int] = field(default_factory=dict)
    card_id_map: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_response(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "nodeIdMap": dict(self.node_id_map),
            "cardIdMap": dict(self.card_id_map),
            "errors": list(self.errors),
        }

    def raise_for_errors(self) -> None:
        if self.errors:
            raise PartialBatchError(self.errors)


class _Unresolved(Exception):
    """A reference names a tempId that has no real id (yet)."""


class BatchMutator:
    """Apply batch requests to one (repository, branch) scope."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        rpid: int,
        branch: str,
        owner: int,
        ip: str | None = None,
        round_cap: int = BATCH_ROUND_CAP,
    ) -> None:
        self._conn = conn
        self.rpid = rpid
        self.branch = branch
        self.owner = owner
        self.ip = ip
        self.round_cap = round_cap

    def apply(self, request: BatchRequest) -> BatchResult:
        result = BatchResult()

        self._apply_node_deletes(request.node_deletes, result)
        self._apply_card_deletes(request.card_deletes, result)
        self._apply_edge_deletes(request.edge_deletes, result)

        self._resolve_node_creates(request.node_creates, result)
        self._resolve_card_creates(request.card_creates, result)
        self._apply_edge_creates(request.edge_creates, result)

        self._apply_node_updates(request.node_updates, result)
        self._apply_card_updates(request.card_updates, result)

        if result.errors:
            logger.warning(
                "Batch on repository {} branch {!r}: {} item(s) failed",
                self.rpid, self.branch, len(result.errors),
            )
            for error in result.errors:
                logger.debug("  {}", error)
        logger.info(
            "Batch on repository {} branch {!r}: {} node(s), {} card(s) created",
            self.rpid, self.branch, len(result.node_id_map), len(result.card_id_map),
        )
        return result

    # --- reference resolution ---

    def _document_ref(self, ref: Ref, node_id_map: dict[str, int]) -> int:
        """Resolve a document reference, tempIds of this batch first."""
        if isinstance(ref, str) and ref in node_id_map:
            return node_id_map[ref]
        did = real_id(ref)
        if did is None:
            raise _Unresolved(ref)
        return did

    # --- deletes ---

    def _apply_node_deletes(self, items: list[Any], result: BatchResult) -> None:
        deleted: set[int] = set()
        for raw in items:
            did = real_id(raw)
            if did is None:
                result.errors.append(f"node delete {raw!r}: not a document id")
                continue
            # Already gone with an ancestor deleted earlier in this batch.
            if did in deleted:
                continue
            try:
                dids = delete_subtree(self._conn, rpid=self.rpid, branch=self.branch, did=did)
            except RepoTreeError as e:
                result.errors.append(f"node delete {did}: {e}")
                continue
            deleted.update(dids)
            delete_blocks_of_documents(self._conn, rpid=self.rpid, branch=self.branch, dids=dids)

    def _apply_card_deletes(self, items: list[Any], result: BatchResult) -> None:
        for raw in items:
            bid = real_id(raw)
            if bid is None:
                result.errors.append(f"card delete {raw!r}: not a card id")
                continue
            try:
                delete_block(self._conn, rpid=self.rpid, branch=self.branch, bid=bid)
            except RepoTreeError as e:
                result.errors.append(f"card delete {bid}: {e}")

    def _apply_edge_deletes(self, items: list[Any], result: BatchResult) -> None:
        for raw in items:
            try:
                edge = Edge.parse(raw)
                source = self._document_ref(edge.source, {})
                target = self._document_ref(edge.target, {})
                child = get_document(self._conn, rpid=self.rpid, branch=self.branch, did=target)
                if child.parent_id != source:
                    result.errors.append(f"edge delete {source}->{target}: no such edge")
                    continue
                move_document(
                    self._conn, rpid=self.rpid, branch=self.branch, did=target, new_parent=None
                )
            except _Unresolved as e:
                result.errors.append(f"edge delete {raw!r}: unknown node {e.args[0]!r}")
            except RepoTreeError as e:
                result.errors.append(f"edge delete {raw!r}: {e}")

    # --- creates ---

    def _resolve_node_creates(self, items: list[Any], result: BatchResult) -> None:
        """Create nodes whose parents are ready, repeating for up to round_cap passes.

        A create is ready once its parent is a root marker, a real id, or a
        tempId already created in this batch. Anything left pending when a
        pass makes no progress or the cap is reached is reported.
        """
        pending: list[NodeCreate] = []
        seen: set[str] = set()
        for raw in items:
            try:
                create = NodeCreate.parse(raw)
            except RepoTreeError as e:
                result.errors.append(f"node create: {e}")
                continue
            if create.temp_id in seen:
                result.errors.append(f"node create {create.temp_id!r}: duplicate tempId")
                continue
            seen.add(create.temp_id)
            pending.append(create)

        for _ in range(self.round_cap):
            if not pending:
                break
            waiting = {c.temp_id for c in pending}
            deferred: list[NodeCreate] = []
            for create in pending:
                parent = create.parent
                if isinstance(parent, str) and parent in waiting and parent not in result.node_id_map:
                    deferred.append(create)
                    continue
                try:
                    parent_did = None if parent is None else self._document_ref(parent, result.node_id_map)
                except _Unresolved:
                    deferred.append(create)
                    continue
                try:
                    result.node_id_map[create.temp_id] = self._create_node(create, parent_did)
                except RepoTreeError as e:
                    result.errors.append(f"node create {create.temp_id!r}: {e}")
            if len(deferred) == len(pending):
                break
            pending = deferred

        for create in pending:
            result.errors.append(
                f"node create {create.temp_id!r}: unresolved parent {create.parent!r}"
            )

    def _create_node(self, create: NodeCreate, parent_did: int | None) -> int:
        if parent_did is None:
            return add_root(
                self._conn, rpid=self.rpid, branch=self.branch, owner=self.owner,
                title=create.title, content=create.content, sort_order=create.sort_order,
                ip=self.ip,
            )
        return add_child(
            self._conn, rpid=self.rpid, branch=self.branch, parent_did=parent_did,
            owner=self.owner, title=create.title, content=create.content,
            sort_order=create.sort_order, ip=self.ip,
        )

    def _resolve_card_creates(self, items: list[Any], result: BatchResult) -> None:
        # Cards only reference nodes, which are all resolved by now.
        for raw in items:
            try:
                create = CardCreate.parse(raw)
            except RepoTreeError as e:
                result.errors.append(f"card create: {e}")
                continue
            if create.temp_id in result.card_id_map:
                result.errors.append(f"card create {create.temp_id!r}: duplicate tempId")
                continue
            try:
                did = self._document_ref(create.node, result.node_id_map)
                result.card_id_map[create.temp_id] = create_block(
                    self._conn, rpid=self.rpid, branch=self.branch, did=did,
                    owner=self.owner, title=create.title, content=create.content,
                    sort_order=create.sort_order, ip=self.ip,
                )
            except _Unresolved:
                result.errors.append(
                    f"card create {create.temp_id!r}: unresolved node {create.node!r}"
                )
            except RepoTreeError as e:
                result.errors.append(f"card create {create.temp_id!r}: {e}")

    def _apply_edge_creates(self, items: list[Any], result: BatchResult) -> None:
        for raw in items:
            try:
                edge = Edge.parse(raw)
                source = self._document_ref(edge.source, result.node_id_map)
                target = self._document_ref(edge.target, result.node_id_map)
                move_document(
                    self._conn, rpid=self.rpid, branch=self.branch, did=target, new_parent=source
                )
            except _Unresolved as e:
                result.errors.append(f"edge create {raw!r}: unresolved node {e.args[0]!r}")
            except RepoTreeError as e:
                result.errors.append(f"edge create {raw!r}: {e}")

    # --- updates ---

    def _apply_node_updates(self, items: list[Any], result: BatchResult) -> None:
        for raw in items:
            try:
                update = NodeUpdate.parse(raw)
                if update.title is not None or update.content is not None or update.sort_order is not None:
                    edit_document(
                        self._conn, rpid=self.rpid, branch=self.branch, did=update.did,
                        title=update.title, content=update.content, sort_order=update.sort_order,
                    )
                if update.reparent:
                    parent = (
                        None
                        if update.parent is None
                        else self._document_ref(update.parent, result.node_id_map)
                    )
                    move_document(
                        self._conn, rpid=self.rpid, branch=self.branch, did=update.did,
                        new_parent=parent,
                    )
            except _Unresolved as e:
                result.errors.append(f"node update {raw!r}: unresolved parent {e.args[0]!r}")
            except RepoTreeError as e:
                result.errors.append(f"node update {raw!r}: {e}")

    def _apply_card_updates(self, items: list[Any], result: BatchResult) -> None:
        for raw in items:
            try:
                update = CardUpdate.parse(raw)
                did = (
                    None
                    if update.node is None
                    else self._document_ref(update.node, result.node_id_map)
                )
                edit_block(
                    self._conn, rpid=self.rpid, branch=self.branch, bid=update.bid,
                    title=update.title, content=update.content, sort_order=update.sort_order,
                    did=did,
                )
            except _Unresolved as e:
                result.errors.append(f"card update {raw!r}: unresolved node {e.args[0]!r}")
            except RepoTreeError as e:
                result.errors.append(f"card update {raw!r}: {e}")


def apply_batch(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    owner: int,
    body: Any,
    ip: str | None = None,
) -> BatchResult:
    """Apply a batch save request body to (rpid, branch).

    Raises ValidationError only when the envelope itself is malformed; item
    failures are collected in the result.
    """
    request = BatchRequest.from_body(body)
    return BatchMutator(conn, rpid=rpid, branch=branch, owner=owner, ip=ip).apply(request)
