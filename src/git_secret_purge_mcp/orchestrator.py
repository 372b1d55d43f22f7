"""Per-repository drivers for the destructive run and the reconstruction run.

The two runs are separate invocations: ``clean`` classifies, records,
backs up, rewrites and pushes the trunk; ``reconstruct`` later reads the
newest record and rebuilds every saved branch from the backup. Failures
are absorbed per repository so a batch always runs to the end.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from .adapter import BACKUP_SOURCE, GitRepository
from .backup import backup_path_for, create_backup
from .classifier import BranchClassifier, BranchDecision
from .config import Config, ResolvedRepository
from .errors import ConfigError, PersistenceError, PublishError, RewriteFailure, SecretPurgeError
from .metadata import RunMetadataStore, make_timestamp
from .models import BranchRecord, RunMetadata
from .reconstructor import BranchReconstructor, ReconstructionResult, target_branch_name
from .rewriter import HistoryRewriter
from .secrets import ReplacementRule, load_rules

logger = logging.getLogger(__name__)

BACKUP_REFSPEC = f"+refs/*:refs/remotes/{BACKUP_SOURCE}/*"


@dataclass
class CleanResult:
    """Outcome of one repository's destructive run."""

    repo_name: str
    success: bool = False
    dry_run: bool = False
    branches: dict[str, BranchRecord] = field(default_factory=dict)
    metadata_path: str | None = None
    backup_path: str | None = None
    commits_rewritten: int = 0
    remaining_secrets: list[str] = field(default_factory=list)
    pushed: bool = False
    error: str | None = None


@dataclass
class ReconstructionReport:
    """Outcome of one repository's reconstruction run."""

    repo_name: str
    results: list[ReconstructionResult] = field(default_factory=list)
    skipped: bool = False
    error: str | None = None

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def success(self) -> bool:
        return self.error is None and self.succeeded == self.attempted


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _commit_time(record: BranchRecord) -> datetime:
    try:
        return datetime.fromisoformat(record.last_commit_date)
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)


def dedupe_targets(branches: dict[str, BranchRecord], remote: str) -> dict[str, tuple[str, BranchRecord]]:
    """Map target branch name to (source ref, record), newest commit winning."""
    targets: dict[str, tuple[str, BranchRecord]] = {}
    for ref in sorted(branches):
        record = branches[ref]
        target = target_branch_name(ref, remote)
        current = targets.get(target)
        if current is None:
            targets[target] = (ref, record)
            continue
        if _commit_time(record) > _commit_time(current[1]):
            logger.info(f"{target}: using {ref} ({record.sha[:8]}) over {current[0]} ({current[1].sha[:8]})")
            targets[target] = (ref, record)
        else:
            logger.info(f"{target}: using {current[0]} ({current[1].sha[:8]}) over {ref} ({record.sha[:8]})")
    return targets


class Orchestrator:
    """Runs clean and reconstruct over the configured repositories."""

    def __init__(
        self,
        config: Config,
        rewriter: HistoryRewriter | None = None,
        clock: Callable[[], datetime] = _utcnow,
        repository_factory: Callable[[Path], GitRepository] = GitRepository,
    ):
        self.config = config
        self.rewriter = rewriter or HistoryRewriter()
        self.clock = clock
        self.repository_factory = repository_factory

    def find_repository(self, name: str) -> ResolvedRepository:
        return self.config.resolve(self.config.find_repository(name))

    def repositories(self, names: list[str] | None = None) -> list[ResolvedRepository]:
        if names:
            return [self.find_repository(name) for name in names]
        return [self.config.resolve(repo) for repo in self.config.repositories]

    def store_for(self, repo: ResolvedRepository) -> RunMetadataStore:
        return RunMetadataStore(repo.metadata_dir)

    # -- inspection -----------------------------------------------------

    def classify_repository(self, repo: ResolvedRepository) -> list[BranchDecision]:
        git = self.repository_factory(repo.path)
        classifier = BranchClassifier(git, repo.trunk_aliases, clock=self.clock)
        return classifier.survey(repo.main_branch, repo.branch_age_days)

    def list_metadata(self, repo: ResolvedRepository) -> list[tuple[str, Path]]:
        return self.store_for(repo).list_records(repo.name)

    # -- destructive run --------------------------------------------------

    def load_secret_rules(self, repo: ResolvedRepository) -> list[ReplacementRule]:
        if repo.secrets_file is None:
            raise ConfigError(f"{repo.name}: no secrets_file configured")
        try:
            rules = load_rules(repo.secrets_file)
        except OSError as e:
            raise ConfigError(f"{repo.name}: cannot read secrets file {repo.secrets_file}: {e}") from e
        if not rules:
            raise ConfigError(f"{repo.name}: secrets file {repo.secrets_file} contains no rules")
        return rules

    def clean_repository(
        self, repo: ResolvedRepository, dry_run: bool = False, push: bool | None = None
    ) -> CleanResult:
        """Classify, record, back up, rewrite and push one repository.

        Raises on a fatal step; everything before the failing step (the
        metadata record, the backup) is left in place.
        """
        result = CleanResult(repo_name=repo.name, dry_run=dry_run)
        logger.info(f"{repo.name}: processing {repo.path}{' (dry run)' if dry_run else ''}")

        git = self.repository_factory(repo.path)
        now = self.clock()
        timestamp = make_timestamp(now)

        classifier = BranchClassifier(git, repo.trunk_aliases, clock=lambda: now)
        result.branches = classifier.classify(repo.main_branch, repo.branch_age_days)

        backup_path = backup_path_for(repo.backup_dir, repo.name, timestamp)
        rules = [] if dry_run else self.load_secret_rules(repo)

        metadata = RunMetadata(
            trunk_branch=repo.main_branch,
            branches=result.branches,
            repo_path=str(repo.path),
            backup_path=str(backup_path),
            repo_name=repo.name,
            timestamp=timestamp,
            dry_run=dry_run,
        )
        result.metadata_path = str(self.store_for(repo).save(metadata))

        if dry_run:
            logger.info(f"{repo.name}: dry run, {len(result.branches)} branches recorded; no backup or rewrite")
            result.success = True
            return result

        result.backup_path = str(create_backup(repo.path, backup_path))

        rewritten = self.rewriter.rewrite(repo.path, repo.secrets_file)
        if not rewritten.success:
            raise RewriteFailure(f"{repo.name}: {rewritten.message}: {rewritten.error}")
        result.commits_rewritten = rewritten.commits_rewritten
        logger.info(f"{repo.name}: {rewritten.message}")

        result.remaining_secrets = [rule.redacted() for rule in self.rewriter.find_remaining(git, rules)]

        if (repo.push if push is None else push):
            git.ensure_remote(repo.remote, repo.url)
            pushed = git.push_branch(repo.remote, repo.main_branch, force=True)
            if not pushed.success:
                raise PublishError(repo.main_branch, repo.remote, pushed.diagnostic)
            result.pushed = True
            logger.info(f"{repo.name}: pushed rewritten {repo.main_branch} to {repo.remote}")

        result.success = True
        return result

    def clean_all(
        self, dry_run: bool = False, names: list[str] | None = None, push: bool | None = None
    ) -> list[CleanResult]:
        results = []
        for repo in self.repositories(names):
            try:
                results.append(self.clean_repository(repo, dry_run=dry_run, push=push))
            except (SecretPurgeError, ValueError) as e:
                logger.error(f"{repo.name}: clean failed: {e}")
                results.append(CleanResult(repo_name=repo.name, dry_run=dry_run, error=str(e)))
            except Exception as e:
                logger.exception(f"{repo.name}: unexpected error during clean")
                results.append(CleanResult(repo_name=repo.name, dry_run=dry_run, error=str(e)))
        return results

    # -- reconstruction run ----------------------------------------------

    def _register_backup(self, git: GitRepository, backup_path: Path) -> None:
        if BACKUP_SOURCE in git.remotes():
            # Left behind by an interrupted run
            git.remove_remote(BACKUP_SOURCE)

        added = git.add_remote(BACKUP_SOURCE, str(backup_path), BACKUP_REFSPEC)
        if not added.success:
            raise PersistenceError(f"cannot register backup {backup_path}: {added.diagnostic}")

        fetched = git.fetch(BACKUP_SOURCE)
        if not fetched.success:
            git.remove_remote(BACKUP_SOURCE)
            raise PersistenceError(f"cannot fetch from backup {backup_path}: {fetched.diagnostic}")

    def reconstruct_repository(self, repo: ResolvedRepository, push: bool | None = None) -> ReconstructionReport:
        report = ReconstructionReport(repo_name=repo.name)
        publish = repo.push if push is None else push

        metadata = self.store_for(repo).load_latest(repo.name)
        if metadata is None:
            logger.warning(f"{repo.name}: no metadata found, skipping")
            report.skipped = True
            return report

        backup_path = Path(metadata.backup_path)
        if not backup_path.is_dir():
            raise PersistenceError(f"{repo.name}: backup {backup_path} from run {metadata.timestamp} is missing")

        if Path(metadata.repo_path) != repo.path:
            logger.warning(f"{repo.name}: metadata was recorded for {metadata.repo_path}, rebuilding in {repo.path}")

        rules = self.load_secret_rules(repo)

        logger.info(f"{repo.name}: reconstructing {len(metadata.branches)} branches from run {metadata.timestamp}")
        git = self.repository_factory(repo.path)
        backup = self.repository_factory(backup_path)
        trunk = metadata.trunk_branch

        self._register_backup(git, backup_path)
        try:
            if publish:
                git.ensure_remote(repo.remote, repo.url)

            reconstructor = BranchReconstructor(
                backup, git, trunk, remote=repo.remote, publish=publish, rules=rules
            )
            for target, (ref, record) in dedupe_targets(metadata.branches, repo.remote).items():
                try:
                    report.results.append(reconstructor.reconstruct(ref, record))
                except SecretPurgeError as e:
                    logger.error(f"{target}: reconstruction failed: {e}")
                    report.results.append(ReconstructionResult(branch=target, source_ref=ref, error=str(e)))
        finally:
            git.remove_remote(BACKUP_SOURCE)
            checked_out = git.checkout(trunk)
            if not checked_out.success:
                logger.warning(f"{repo.name}: could not check out {trunk}: {checked_out.diagnostic}")

        logger.info(f"{repo.name}: reconstructed {report.succeeded}/{report.attempted} branches")
        return report

    def reconstruct_all(self, names: list[str] | None = None, push: bool | None = None) -> list[ReconstructionReport]:
        reports = []
        for repo in self.repositories(names):
            try:
                reports.append(self.reconstruct_repository(repo, push=push))
            except (SecretPurgeError, ValueError) as e:
                logger.error(f"{repo.name}: reconstruction failed: {e}")
                reports.append(ReconstructionReport(repo_name=repo.name, error=str(e)))
            except Exception as e:
                logger.exception(f"{repo.name}: unexpected error during reconstruction")
                reports.append(ReconstructionReport(repo_name=repo.name, error=str(e)))

        attempted = sum(r.attempted for r in reports)
        succeeded = sum(r.succeeded for r in reports)
        logger.info(f"reconstruction complete: {succeeded}/{attempted} branches across {len(reports)} repositories")
        return reports
