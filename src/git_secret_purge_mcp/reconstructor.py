"""Branch reconstruction - rebuild a saved branch on top of the rewritten trunk.

A branch's tip and its own commits exist only in the pre-rewrite backup. To
rebuild it, the divergence point (merge-base with trunk in the backup) is
located in the rewritten history by its rewrite-stable identity, a fresh
branch is created there, and the branch's own commits are cherry-picked
from the backup oldest first. Commits that no longer apply (typically
because their diff touched the removed secret) are skipped and reported.
A rebuilt branch is searched for the secrets file's rules before it is
published; a commit that adds a secret cleanly (a new file, say) keeps the
branch from being pushed.

Per branch: AnchorSearch -> AnchorMapped | AnchorFallback -> BranchCreated ->
Replaying -> Verified | SecretsFound -> Published | PublishFailed. Nothing
is rolled back; a failed branch is left in whatever state replay produced,
locally and unpushed when secrets were found.
"""

import logging
from dataclasses import dataclass, field

from .commands import CommandResult
from .errors import NoCommonAncestorError, PublishError, QueryError
from .graph import CommitGraph, CommitIdentity, WorkingCopy
from .models import BranchRecord
from .secrets import ReplacementRule

logger = logging.getLogger(__name__)


@dataclass
class AnchorMapping:
    """Where a branch's divergence point landed in the rewritten history."""

    merge_base: str
    identity: CommitIdentity
    commit: str | None
    found: bool
    ambiguous: bool = False

    @property
    def fallback(self) -> bool:
        return not self.found


@dataclass
class ReplayConflict:
    """A backup commit that could not be applied and was skipped."""

    commit: str
    detail: str


@dataclass
class ReconstructionResult:
    """Per-branch outcome."""

    branch: str
    source_ref: str
    success: bool = False
    replayed: int = 0
    conflicts: list[ReplayConflict] = field(default_factory=list)
    anchor: AnchorMapping | None = None
    published: bool = False
    leaked_secrets: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def skipped(self) -> int:
        return len(self.conflicts)

    @property
    def degraded(self) -> bool:
        """Rebuilt on the trunk tip because the divergence point was not found."""
        return self.anchor is not None and self.anchor.fallback


def target_branch_name(ref: str, remote: str) -> str:
    """Local name a branch is rebuilt under (origin/feature -> feature)."""
    prefix = f"{remote}/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref


class BranchReconstructor:
    """Rebuilds saved branches in a rewritten working copy.

    ``backup`` is the pre-rewrite history the branch records refer to and
    ``working_copy`` the rewritten repository. The working copy must be
    able to reach the backup's commits (the backup registered and fetched
    as a remote) before ``reconstruct`` is called.
    """

    def __init__(
        self,
        backup: CommitGraph,
        working_copy: WorkingCopy,
        trunk: str,
        remote: str = "origin",
        publish: bool = True,
        rules: list[ReplacementRule] | None = None,
    ):
        self.backup = backup
        self.working_copy = working_copy
        self.trunk = trunk
        self.remote = remote
        self.publish = publish
        self.rules = rules or []

    def reconstruct(self, branch: str, record: BranchRecord) -> ReconstructionResult:
        target = target_branch_name(branch, self.remote)
        result = ReconstructionResult(branch=target, source_ref=branch)

        try:
            merge_base = self.backup.merge_base(self.trunk, record.sha)
            result.anchor = self.map_anchor(merge_base)
            commits = self.backup.commits_between(merge_base, record.sha)
        except NoCommonAncestorError as e:
            logger.error(f"{target}: could not find merge base where branch diverged: {e}")
            result.error = str(e)
            return result
        except QueryError as e:
            logger.error(f"{target}: {e}")
            result.error = str(e)
            return result

        if result.anchor.commit is None:
            result.error = f"no anchor: {self.trunk} does not resolve in the rewritten working copy"
            logger.error(f"{target}: {result.error}")
            return result

        prepared = self.prepare_branch(target, result.anchor.commit)
        if not prepared.success:
            result.error = f"failed to create branch: {prepared.diagnostic}"
            logger.error(f"{target}: {result.error}")
            return result

        logger.info(f"{target}: {len(commits)} commits to cherry-pick")
        self.replay(target, commits, result)

        try:
            leaked = self.find_leaks(target, result.anchor.commit)
        except QueryError as e:
            result.error = f"cannot check rebuilt branch for secrets: {e}"
            logger.error(f"{target}: {result.error}")
            return result
        if leaked:
            result.leaked_secrets = [rule.redacted() for rule in leaked]
            names = ", ".join(result.leaked_secrets)
            result.error = f"replayed commits reintroduce secrets, not published: {names}"
            logger.error(f"{target}: {result.error}")
            return result

        if self.publish:
            try:
                self.publish_branch(target)
            except PublishError as e:
                logger.error(str(e))
                result.error = str(e)
                return result
            result.published = True

        result.success = True
        logger.info(
            f"reconstructed branch {target} from backup: {result.replayed} replayed, {result.skipped} skipped"
        )
        return result

    def map_anchor(self, merge_base: str) -> AnchorMapping:
        """Find the rewritten counterpart of ``merge_base``, else fall back to the trunk tip."""
        identity = self.backup.commit_identity(merge_base)
        index = self.working_copy.identity_index()
        commit = index.lookup(identity)

        if commit is not None:
            ambiguous = index.is_ambiguous(identity)
            if ambiguous:
                logger.warning(
                    f"{index.match_count(identity)} rewritten commits match {identity.describe()}; "
                    f"using the first, {commit[:8]}"
                )
            logger.info(f"branching from equivalent commit: {commit[:8]} (was {merge_base[:8]})")
            return AnchorMapping(merge_base, identity, commit, found=True, ambiguous=ambiguous)

        tip = self.working_copy.resolve(self.trunk)
        logger.warning(
            f"could not find equivalent of {merge_base[:8]} {identity.describe()} in rewritten history; "
            f"falling back to {self.trunk} tip {tip[:8] if tip else '?'}"
        )
        return AnchorMapping(merge_base, identity, tip, found=False)

    def prepare_branch(self, name: str, anchor: str) -> CommandResult:
        """Recreate local branch ``name`` at ``anchor`` and check it out."""
        detached = self.working_copy.checkout_detached(anchor)
        if not detached.success:
            return detached
        # Absent on a first run; re-runs replace the previous attempt
        self.working_copy.delete_branch(name)
        return self.working_copy.create_branch(name)

    def replay(self, name: str, commits: list[str], result: ReconstructionResult) -> None:
        """Cherry-pick ``commits`` in order, skipping the ones that do not apply."""
        for commit in commits:
            picked = self.working_copy.cherry_pick(commit)
            if picked.success:
                result.replayed += 1
                continue

            self.working_copy.abort_cherry_pick()
            detail = picked.diagnostic.splitlines()[0] if picked.diagnostic else ""
            result.conflicts.append(ReplayConflict(commit, detail))
            logger.warning(f"{name}: skipped {commit[:8]}, cherry-pick failed: {detail}")

    def find_leaks(self, name: str, base: str) -> list[ReplacementRule]:
        """Rules whose text occurs in a commit replayed onto ``name`` since ``base``."""
        leaked = []
        for rule in self.rules:
            pickaxe = rule.pickaxe()
            if pickaxe is None:
                continue
            commits = self.working_copy.search_history(pickaxe, revision_range=f"{base}..{name}")
            if commits:
                logger.warning(f"{name}: secret {rule.redacted()} in replayed commit {commits[0][:8]}")
                leaked.append(rule)
        return leaked

    def publish_branch(self, name: str) -> None:
        pushed = self.working_copy.push_branch(self.remote, name, force=True)
        if not pushed.success:
            raise PublishError(name, self.remote, pushed.diagnostic)
