"""Full working-copy backups taken before a destructive rewrite."""

import logging
import shutil
from pathlib import Path

from .errors import BackupError

logger = logging.getLogger(__name__)


def backup_path_for(backup_dir: str | Path, repo_name: str, timestamp: str) -> Path:
    return Path(backup_dir).resolve() / f"{repo_name}_{timestamp}"


def create_backup(repo_path: str | Path, backup_path: str | Path) -> Path:
    """Copy the whole working copy, ``.git`` included, to ``backup_path``.

    The copy is a complete repository in its own right; reconstruction
    later fetches the pre-rewrite commits from it.
    """
    source = Path(repo_path).resolve()
    target = Path(backup_path)
    if target.exists():
        raise BackupError(f"backup already exists: {target}")

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, target, symlinks=True)
    except (OSError, shutil.Error) as e:
        raise BackupError(f"cannot back up {source} to {target}: {e}") from e

    logger.info(f"backup created: {target}")
    return target
