"""Domain models for repotree."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Repository:
    """A project whose content tree may be split into branches."""

    rpid: int
    title: str
    content: str
    owner: int
    mode: str
    current_branch: str
    branches: tuple[str, ...]
    remote_url: str | None
    views: int
    created_at: int
    update_at: int


@dataclass(frozen=True)
class DocumentNode:
    """A titled container in the content tree of one (repository, branch)."""

    rpid: int
    branch: str
    did: int
    parent_id: int | None
    path: str
    owner: int
    title: str
    content: str
    sort_order: int | None
    views: int
    created_at: int
    update_at: int

    @property
    def depth(self) -> int:
        return self.path.count("/") - 1


@dataclass(frozen=True)
class BlockNode:
    """A leaf content unit owned by one document."""

    rpid: int
    branch: str
    bid: int
    did: int
    owner: int
    title: str
    content: str
    sort_order: int | None
    views: int
    created_at: int
    update_at: int
