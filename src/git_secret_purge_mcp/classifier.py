"""Branch classification - which branches are worth rebuilding after a rewrite."""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable

from .errors import QueryError
from .graph import CommitGraph
from .models import BranchRecord

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class SkipReason(str, Enum):
    """Why a branch is left out of reconstruction."""

    TRUNK = "trunk"
    UNRESOLVABLE = "unresolvable"
    STALE = "stale"
    MERGED = "merged"
    NO_UNIQUE_COMMITS = "no_unique_commits"


@dataclass
class BranchDecision:
    """Classification outcome for one branch."""

    branch: str
    record: BranchRecord | None = None
    reason: SkipReason | None = None
    detail: str | None = None

    @property
    def needs_reconstruction(self) -> bool:
        return self.record is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BranchClassifier:
    """Decides per branch whether it needs reconstruction.

    A branch is kept when it is not a trunk alias, its last commit is no
    older than the age threshold, it is not already merged into trunk and
    it has commits trunk does not. Each branch is judged on its own and a
    branch that cannot be queried is left out, never fatal.
    """

    def __init__(
        self,
        graph: CommitGraph,
        trunk_aliases: Iterable[str] = (),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.graph = graph
        self.trunk_aliases = frozenset(trunk_aliases)
        self.clock = clock

    def classify(self, trunk: str, age_threshold_days: float) -> dict[str, BranchRecord]:
        """Map of branch name to record for every branch needing reconstruction."""
        decisions = self.survey(trunk, age_threshold_days)
        branches = {d.branch: d.record for d in decisions if d.record is not None}
        logger.info(f"{len(branches)} of {len(decisions)} branches need reconstruction")
        return branches

    def survey(self, trunk: str, age_threshold_days: float) -> list[BranchDecision]:
        """Decision for every branch, including the skipped ones."""
        try:
            branches = self.graph.list_branches()
        except QueryError as e:
            logger.warning(f"cannot list branches: {e}")
            return []

        now = self.clock()
        return [self.decide(branch, trunk, age_threshold_days, now) for branch in sorted(branches)]

    def decide(
        self, branch: str, trunk: str, age_threshold_days: float, now: datetime | None = None
    ) -> BranchDecision:
        if branch == trunk or branch in self.trunk_aliases:
            return BranchDecision(branch, reason=SkipReason.TRUNK)

        try:
            info = self.graph.last_commit_info(branch)
        except QueryError as e:
            logger.warning(f"skipping unresolvable branch {branch}: {e}")
            return BranchDecision(branch, reason=SkipReason.UNRESOLVABLE, detail=str(e))

        if now is None:
            now = self.clock()
        age_days = (now.timestamp() - info.timestamp) / SECONDS_PER_DAY
        if age_days > age_threshold_days:
            logger.info(f"skipping old branch: {branch} ({math.floor(age_days)} days old)")
            return BranchDecision(branch, reason=SkipReason.STALE, detail=f"{math.floor(age_days)} days old")

        try:
            if self.graph.is_ancestor(info.hash, trunk):
                logger.info(f"skipping merged branch: {branch}")
                return BranchDecision(branch, reason=SkipReason.MERGED)

            # Guards against the ancestor check and the count disagreeing on merge topologies
            if self.graph.unique_commit_count(trunk, branch) == 0:
                logger.info(f"skipping branch with no unique commits: {branch}")
                return BranchDecision(branch, reason=SkipReason.NO_UNIQUE_COMMITS)
        except QueryError as e:
            logger.warning(f"skipping branch {branch}: {e}")
            return BranchDecision(branch, reason=SkipReason.UNRESOLVABLE, detail=str(e))

        logger.info(f"branch needing reconstruction: {branch}")
        record = BranchRecord(
            sha=info.hash,
            author=info.author_name,
            email=info.author_email,
            subject=info.subject,
            last_commit_date=info.date,
            days_since_last_commit=math.floor(age_days),
        )
        return BranchDecision(branch, record=record)
