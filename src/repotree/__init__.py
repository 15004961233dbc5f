"""Branchable document/block content trees with git push/pull sync."""

from repotree.core.batch.mutator import BatchMutator, BatchResult, apply_batch
from repotree.core.git.driver import GitRunner, GitSyncDriver
from repotree.core.git.sync import Actor, SyncResult, pull_branch, push_branch
from repotree.protocols import GitProtocol

__all__ = [
    "Actor",
    "BatchMutator",
    "BatchResult",
    "GitProtocol",
    "GitRunner",
    "GitSyncDriver",
    "SyncResult",
    "apply_batch",
    "pull_branch",
    "push_branch",
]
