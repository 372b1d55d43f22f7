"""Backend-neutral commit graph types.

The classifier and the reconstructor only talk to these protocols, never to
git command syntax directly. ``GitRepository`` in ``adapter`` is the git
implementation.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol

from .commands import CommandResult


@dataclass(frozen=True)
class CommitInfo:
    """Last-commit details of a branch."""

    hash: str
    author_name: str
    author_email: str
    subject: str
    date: str  # committer date, ISO 8601
    timestamp: int  # committer date, unix seconds

    @property
    def committed_at(self) -> datetime:
        return datetime.fromisoformat(self.date.replace("Z", "+00:00"))


@dataclass(frozen=True)
class CommitIdentity:
    """Rewrite-stable identity of a commit.

    A content rewrite changes commit ids but keeps the subject, the author
    email and the authored timestamp, so this tuple joins the same commit
    across the two versions of a history.
    """

    subject: str
    author_email: str
    author_timestamp: int

    def describe(self) -> str:
        return f"{self.subject!r} <{self.author_email}> @{self.author_timestamp}"


class IdentityIndex:
    """Lookup table from ``CommitIdentity`` to commit id.

    Built once per reconstruction run. When several commits share an
    identity the first one added wins and the identity is flagged ambiguous.
    """

    def __init__(self, entries: Iterable[tuple[CommitIdentity, str]] = ()):
        self._commits: dict[CommitIdentity, str] = {}
        self._duplicates: dict[CommitIdentity, int] = {}
        for identity, commit in entries:
            self.add(identity, commit)

    def add(self, identity: CommitIdentity, commit: str) -> None:
        existing = self._commits.get(identity)
        if existing is None:
            self._commits[identity] = commit
        elif existing != commit:
            self._duplicates[identity] = self._duplicates.get(identity, 1) + 1

    def lookup(self, identity: CommitIdentity) -> str | None:
        return self._commits.get(identity)

    def is_ambiguous(self, identity: CommitIdentity) -> bool:
        return identity in self._duplicates

    def match_count(self, identity: CommitIdentity) -> int:
        if identity not in self._commits:
            return 0
        return self._duplicates.get(identity, 1)

    def __len__(self) -> int:
        return len(self._commits)

    def __contains__(self, identity: object) -> bool:
        return identity in self._commits


class CommitGraph(Protocol):
    """Read-only queries over a version-controlled history."""

    def list_branches(self) -> set[str]: ...

    def last_commit_info(self, branch: str) -> CommitInfo: ...

    def is_ancestor(self, commit: str, of_branch: str) -> bool: ...

    def unique_commit_count(self, trunk: str, branch: str) -> int: ...

    def merge_base(self, trunk: str, branch_tip: str) -> str: ...

    def commits_between(self, base: str, tip: str) -> list[str]: ...

    def commit_identity(self, commit: str) -> CommitIdentity: ...

    def find_commit_by_identity(self, identity: CommitIdentity) -> str | None: ...

    def identity_index(self) -> IdentityIndex: ...

    def resolve(self, ref: str) -> str | None: ...

    def search_history(self, *pickaxe: str, revision_range: str | None = None) -> list[str]: ...


class WorkingCopy(CommitGraph, Protocol):
    """A commit graph that reconstruction may mutate."""

    def checkout_detached(self, ref: str) -> CommandResult: ...

    def delete_branch(self, name: str) -> CommandResult: ...

    def create_branch(self, name: str) -> CommandResult: ...

    def cherry_pick(self, commit: str) -> CommandResult: ...

    def abort_cherry_pick(self) -> CommandResult: ...

    def push_branch(self, remote: str, branch: str, force: bool = True) -> CommandResult: ...
