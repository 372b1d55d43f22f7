"""Run metadata store - one immutable JSON record per destructive run."""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .errors import PersistenceError
from .models import RunMetadata

logger = logging.getLogger(__name__)

# Fixed width down to milliseconds, no ':' or '.', so lexicographic order is
# chronological. Second-resolution names from older records still match.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"
TIMESTAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}(-\d{3})?")

RECORD_SUFFIX = ".json"


def make_timestamp(now: datetime | None = None) -> str:
    """Sortable run timestamp, UTC."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return f"{now.strftime(TIMESTAMP_FORMAT)}-{now.microsecond // 1000:03d}"


class RunMetadataStore:
    """Directory of ``<repoName>_<timestamp>.json`` records.

    Records are never overwritten; a later run supersedes an earlier one by
    having a greater timestamp.
    """

    def __init__(self, metadata_dir: str | Path):
        self.metadata_dir = Path(metadata_dir).resolve()

    def record_path(self, repo_name: str, timestamp: str) -> Path:
        return self.metadata_dir / f"{repo_name}_{timestamp}{RECORD_SUFFIX}"

    def save(self, metadata: RunMetadata) -> Path:
        """Write a new record; fails rather than replace an existing one."""
        path = self.record_path(metadata.repo_name, metadata.timestamp)
        try:
            self.metadata_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "x", encoding="utf-8") as f:
                f.write(metadata.to_json())
        except FileExistsError as e:
            raise PersistenceError(f"metadata record already exists: {path}") from e
        except OSError as e:
            raise PersistenceError(f"cannot write metadata {path}: {e}") from e

        logger.info(f"{metadata.repo_name}: saved metadata {path.name} ({len(metadata.branches)} branches)")
        return path

    def load(self, path: str | Path) -> RunMetadata:
        path = Path(path)
        try:
            return RunMetadata.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise PersistenceError(f"cannot read metadata {path}: {e}") from e
        except ValidationError as e:
            raise PersistenceError(f"invalid metadata {path}: {e}") from e

    def list_records(self, repo_name: str) -> list[tuple[str, Path]]:
        """(timestamp, path) of every record for ``repo_name``, oldest first."""
        if not self.metadata_dir.is_dir():
            return []

        prefix = f"{repo_name}_"
        records = []
        for path in self.metadata_dir.iterdir():
            name = path.name
            if not (name.startswith(prefix) and name.endswith(RECORD_SUFFIX)):
                continue
            timestamp = name[len(prefix):-len(RECORD_SUFFIX)]
            # Reject other repositories sharing the prefix (api_v2_<ts> for api)
            if TIMESTAMP_PATTERN.fullmatch(timestamp):
                records.append((timestamp, path))
        return sorted(records)

    def load_latest(self, repo_name: str, include_dry_runs: bool = False) -> RunMetadata | None:
        """Most recent record for ``repo_name``, or None.

        Dry-run records reference a backup that was never made and are
        skipped unless ``include_dry_runs`` is set.
        """
        for _, path in reversed(self.list_records(repo_name)):
            metadata = self.load(path)
            if include_dry_runs or not metadata.dry_run:
                return metadata
        return None
