"""git adapter - commit graph queries and working copy plumbing over the git CLI."""

import logging
import platform
import re
from pathlib import Path

from .commands import (
    TIMEOUT_DEFAULT,
    TIMEOUT_FAST,
    TIMEOUT_LONG,
    CommandResult,
    parse_lines,
    run_command,
)
from .errors import NoCommonAncestorError, QueryError
from .graph import CommitIdentity, CommitInfo, IdentityIndex

logger = logging.getLogger(__name__)

# Remote under which a backup is registered while branches are rebuilt
BACKUP_SOURCE = "secret-purge-backup"

# Unit separator; cannot appear in ref names, emails or single-line subjects
SEP = "\x1f"


def _safe_int(value: str, default: int = 0) -> int:
    """Safely parse int from string."""
    try:
        return int(value.strip())
    except (ValueError, AttributeError):
        return default


class GitRepository:
    """A git working copy.

    Read-only queries implement ``CommitGraph``; the mutating helpers
    (checkout, branch, cherry-pick, push, remotes) complete ``WorkingCopy``.
    Queries raise ``QueryError`` when git cannot answer; mutations return a
    ``CommandResult`` for the caller to inspect.
    """

    def __init__(self, repo_path: str | Path):
        self.repo_path = Path(self._normalize_path(str(repo_path))).resolve()
        self._validate_repo()
        self._identity_index: IdentityIndex | None = None

    def __repr__(self) -> str:
        return f"GitRepository({str(self.repo_path)!r})"

    @staticmethod
    def _normalize_path(path: str) -> str:
        """Convert Git Bash style paths (/c/Users/...) on Windows."""
        if platform.system() != "Windows":
            return path
        if match := re.match(r"^/([a-zA-Z])/(.*)$", path):
            drive, rest = match.group(1).upper(), match.group(2).replace("/", "\\")
            return f"{drive}:\\{rest}"
        if re.match(r"^[a-zA-Z]:/", path):
            return path.replace("/", "\\")
        return path

    def _validate_repo(self) -> None:
        """Validate that the path is a git repository."""
        if not (self.repo_path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.repo_path}")

    def _run_git(self, *args: str, timeout: float | None = TIMEOUT_DEFAULT) -> CommandResult:
        """Run a git command in the repository."""
        return run_command(["git", *args], cwd=self.repo_path, timeout=timeout)

    # -- queries -----------------------------------------------------------

    def list_branches(self) -> set[str]:
        """Local and remote-tracking branches, without symbolic refs."""
        result = self._run_git(
            "for-each-ref", "--format=%(refname:short)%09%(symref)", "refs/heads", "refs/remotes"
        )
        if not result.success:
            raise QueryError("refs", result.diagnostic)

        branches = set()
        for line in parse_lines(result.stdout):
            name, _, symref = line.partition("\t")
            if symref.strip() or name == "HEAD" or name.endswith("/HEAD"):
                continue
            if name.startswith(f"{BACKUP_SOURCE}/"):
                continue
            branches.add(name)
        return branches

    def last_commit_info(self, branch: str) -> CommitInfo:
        result = self._run_git(
            "log", "-1", f"--format=%H{SEP}%an{SEP}%ae{SEP}%s{SEP}%cI{SEP}%ct", branch, "--",
            timeout=TIMEOUT_FAST,
        )
        if not result.success:
            raise QueryError(branch, result.diagnostic)

        parts = result.output.split(SEP)
        if len(parts) != 6 or not parts[0]:
            raise QueryError(branch, f"unexpected log output: {result.output!r}")
        sha, author, email, subject, date, timestamp = parts
        return CommitInfo(sha, author, email, subject, date, _safe_int(timestamp))

    def is_ancestor(self, commit: str, of_branch: str) -> bool:
        result = self._run_git("merge-base", "--is-ancestor", commit, of_branch, timeout=TIMEOUT_FAST)
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise QueryError(commit, result.diagnostic)

    def unique_commit_count(self, trunk: str, branch: str) -> int:
        result = self._run_git("rev-list", "--count", f"{trunk}..{branch}")
        if not result.success:
            raise QueryError(branch, result.diagnostic)
        return _safe_int(result.output)

    def merge_base(self, trunk: str, branch_tip: str) -> str:
        result = self._run_git("merge-base", trunk, branch_tip)
        if result.success and result.output:
            return result.output.split("\n")[0]
        # merge-base exits 1 without output when histories are unrelated
        if result.returncode == 1 and not result.stderr.strip():
            raise NoCommonAncestorError(trunk, branch_tip)
        raise QueryError(branch_tip, result.diagnostic)

    def commits_between(self, base: str, tip: str) -> list[str]:
        """Commits after ``base`` up to and including ``tip``, oldest first."""
        result = self._run_git("rev-list", "--reverse", "--date-order", f"{base}..{tip}")
        if not result.success:
            raise QueryError(tip, result.diagnostic)
        return parse_lines(result.stdout)

    def commit_identity(self, commit: str) -> CommitIdentity:
        result = self._run_git("log", "-1", f"--format=%s{SEP}%ae{SEP}%at", commit, "--", timeout=TIMEOUT_FAST)
        if not result.success:
            raise QueryError(commit, result.diagnostic)
        parts = result.output.split(SEP)
        if len(parts) != 3:
            raise QueryError(commit, f"unexpected log output: {result.output!r}")
        subject, email, timestamp = parts
        return CommitIdentity(subject, email, _safe_int(timestamp))

    def identity_index(self) -> IdentityIndex:
        """Identity lookup table over all history, built once and cached.

        Refs fetched from a registered backup are excluded so that a lookup
        never lands on an un-rewritten commit.
        """
        if self._identity_index is not None:
            return self._identity_index

        result = self._run_git(
            "log", f"--exclude=refs/remotes/{BACKUP_SOURCE}/*", "--all",
            f"--format=%H{SEP}%s{SEP}%ae{SEP}%at",
            timeout=TIMEOUT_LONG,
        )
        if not result.success:
            raise QueryError("--all", result.diagnostic)

        index = IdentityIndex()
        for line in parse_lines(result.stdout):
            parts = line.split(SEP)
            if len(parts) != 4:
                continue
            sha, subject, email, timestamp = parts
            index.add(CommitIdentity(subject, email, _safe_int(timestamp)), sha)
        logger.debug(f"{self.repo_path.name}: indexed {len(index)} commit identities")
        self._identity_index = index
        return index

    def find_commit_by_identity(self, identity: CommitIdentity) -> str | None:
        return self.identity_index().lookup(identity)

    def resolve(self, ref: str) -> str | None:
        result = self._run_git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", timeout=TIMEOUT_FAST)
        if not result.success:
            return None
        return result.output or None

    def current_branch(self) -> str | None:
        result = self._run_git("symbolic-ref", "--quiet", "--short", "HEAD", timeout=TIMEOUT_FAST)
        if not result.success:
            return None
        return result.output or None

    def remotes(self) -> set[str]:
        return set(parse_lines(self._run_git("remote", timeout=TIMEOUT_FAST).stdout))

    def search_history(self, *pickaxe: str, revision_range: str | None = None) -> list[str]:
        """Commits whose diff matches a pickaxe (-S / -G) query.

        Searches every ref except the backup namespace, or only
        ``revision_range`` (``base..tip``) when given.
        """
        if revision_range is None:
            revisions = [f"--exclude=refs/remotes/{BACKUP_SOURCE}/*", "--all"]
        else:
            revisions = [revision_range]
        result = self._run_git("log", "--format=%H", *pickaxe, *revisions, "--", timeout=TIMEOUT_LONG)
        if not result.success:
            raise QueryError(revision_range or "--all", result.diagnostic)
        return parse_lines(result.stdout)

    # -- working copy ------------------------------------------------------

    def checkout(self, ref: str) -> CommandResult:
        return self._run_git("checkout", "-q", ref)

    def checkout_detached(self, ref: str) -> CommandResult:
        return self._run_git("checkout", "-q", "--detach", ref)

    def delete_branch(self, name: str) -> CommandResult:
        return self._run_git("branch", "-D", name, timeout=TIMEOUT_FAST)

    def create_branch(self, name: str) -> CommandResult:
        """Create ``name`` at the current HEAD and switch to it."""
        return self._run_git("checkout", "-q", "-b", name)

    def cherry_pick(self, commit: str) -> CommandResult:
        return self._run_git("cherry-pick", commit)

    def abort_cherry_pick(self) -> CommandResult:
        result = self._run_git("cherry-pick", "--abort")
        if not result.success:
            # Nothing in progress (e.g. a merge commit refused up front); make sure the tree is clean
            result = self._run_git("reset", "-q", "--hard", "HEAD")
        return result

    def push_branch(self, remote: str, branch: str, force: bool = True) -> CommandResult:
        args = ["push", remote, f"refs/heads/{branch}:refs/heads/{branch}"]
        if force:
            args.insert(1, "--force")
        return self._run_git(*args, timeout=TIMEOUT_LONG)

    def add_remote(self, name: str, url: str, fetch_refspec: str | None = None) -> CommandResult:
        result = self._run_git("remote", "add", "--no-tags", name, url, timeout=TIMEOUT_FAST)
        if result.success and fetch_refspec:
            result = self._run_git("config", f"remote.{name}.fetch", fetch_refspec, timeout=TIMEOUT_FAST)
        return result

    def remove_remote(self, name: str) -> CommandResult:
        return self._run_git("remote", "remove", name, timeout=TIMEOUT_FAST)

    def fetch(self, remote: str) -> CommandResult:
        return self._run_git("fetch", "--quiet", "--no-tags", remote, timeout=TIMEOUT_LONG)

    def ensure_remote(self, name: str, url: str | None) -> CommandResult | None:
        """Re-add a remote (git-filter-repo drops origin) when it is missing."""
        if name in self.remotes():
            return None
        if not url:
            logger.warning(f"{self.repo_path.name}: remote {name} missing and no url configured")
            return None
        logger.info(f"{self.repo_path.name}: restoring remote {name} -> {url}")
        return self.add_remote(name, url)
