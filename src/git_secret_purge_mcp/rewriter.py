"""git-filter-repo wrapper - the destructive secret replacement."""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .adapter import GitRepository
from .commands import TIMEOUT_FAST, TIMEOUT_LONG, CommandResult, parse_lines, run_command
from .errors import QueryError
from .secrets import ReplacementRule

logger = logging.getLogger(__name__)

FILTER_REPO = "git-filter-repo"


@dataclass
class FilterResult:
    """Result of a git-filter-repo operation."""

    success: bool
    message: str
    commits_processed: int = 0
    commits_rewritten: int = 0
    dry_run: bool = False
    error: str | None = None


def read_commit_map(repo_path: str | Path) -> tuple[int, int]:
    """(processed, rewritten) counts from git-filter-repo's commit-map."""
    commit_map = Path(repo_path) / ".git" / "filter-repo" / "commit-map"
    if not commit_map.exists():
        return 0, 0

    processed = rewritten = 0
    for line in parse_lines(commit_map.read_text(encoding="utf-8")):
        parts = line.split()
        if len(parts) != 2 or parts == ["old", "new"]:
            continue
        processed += 1
        if parts[0] != parts[1]:
            rewritten += 1
    return processed, rewritten


class HistoryRewriter:
    """Replaces secret text across every commit of a working copy.

    All-or-nothing from the caller's point of view: a failed run leaves
    the working copy in an unspecified state and nothing is recovered.
    """

    def __init__(self, executable: str = FILTER_REPO):
        self.executable = executable

    def _run_filter_repo(self, repo_path: str | Path, *args: str) -> CommandResult:
        """Run git-filter-repo; --force because working copies are never fresh clones."""
        return run_command([self.executable, "--force", *args], cwd=repo_path, timeout=TIMEOUT_LONG)

    def check_installed(self) -> bool:
        return run_command([self.executable, "--version"], timeout=TIMEOUT_FAST).success

    def rewrite(self, repo_path: str | Path, secrets_file: str | Path) -> FilterResult:
        """Rewrite all history of ``repo_path`` with the rules in ``secrets_file``."""
        secrets_path = Path(secrets_file).resolve()
        result = self._run_filter_repo(repo_path, "--replace-text", str(secrets_path))

        if not result.success:
            return FilterResult(success=False, message="Failed to replace text", error=result.diagnostic)

        processed, rewritten = read_commit_map(repo_path)
        return FilterResult(
            success=True,
            message=f"Replaced secrets in history: {rewritten} of {processed} commits rewritten",
            commits_processed=processed,
            commits_rewritten=rewritten,
        )

    def preview(self, repo_path: str | Path, secrets_file: str | Path) -> FilterResult:
        """Run the rewrite on a throw-away copy and report what would change."""
        source = Path(repo_path).resolve()
        with tempfile.TemporaryDirectory(prefix="secret-purge-preview-") as tmpdir:
            copy = Path(tmpdir) / source.name
            try:
                shutil.copytree(source, copy, symlinks=True)
            except (OSError, shutil.Error) as e:
                return FilterResult(success=False, message="Failed to copy repository", dry_run=True, error=str(e))

            result = self.rewrite(copy, secrets_file)

        result.dry_run = True
        if result.success:
            result.message = (
                f"Dry run: {result.commits_rewritten} of {result.commits_processed} commits would be rewritten"
            )
        return result

    def find_remaining(self, repo: GitRepository, rules: list[ReplacementRule]) -> list[ReplacementRule]:
        """Rules whose text still occurs somewhere in history.

        Literal rules are checked with ``git log -S``, regex rules with
        ``git log -G``; glob rules have no pickaxe equivalent and are skipped.
        """
        remaining = []
        for rule in rules:
            pickaxe = rule.pickaxe()
            if pickaxe is None:
                continue

            try:
                commits = repo.search_history(pickaxe)
            except QueryError as e:
                logger.warning(f"cannot verify {rule.redacted()}: {e}")
                continue
            if commits:
                logger.warning(f"secret {rule.redacted()} still present in {len(commits)} commits")
                remaining.append(rule)
        return remaining
