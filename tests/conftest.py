"""Shared fixtures: throw-away git repositories with deterministic dates."""

import os
import shutil
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

BASE_DATE = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class GitHelper:
    """Builds small repositories commit by commit."""

    author_name = "Dev"
    author_email = "dev@example.com"

    def run(
        self, repo: Path, *args: str, when: datetime | None = None, committed: datetime | None = None
    ) -> str:
        env = dict(os.environ)
        if when is not None:
            env["GIT_AUTHOR_DATE"] = when.isoformat()
            env["GIT_COMMITTER_DATE"] = (committed or when).isoformat()
        completed = subprocess.run(
            ["git", *args], cwd=repo, capture_output=True, text=True, env=env, check=True
        )
        return completed.stdout.strip()

    def init(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        self.run(path, "init", "-q")
        self.run(path, "symbolic-ref", "HEAD", "refs/heads/main")
        self.configure(path)
        return path

    def configure(self, repo: Path) -> None:
        self.run(repo, "config", "user.email", self.author_email)
        self.run(repo, "config", "user.name", self.author_name)
        self.run(repo, "config", "commit.gpgsign", "false")

    def init_bare(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        self.run(path, "init", "-q", "--bare")
        return path

    def commit(
        self, repo: Path, name: str, content: str, message: str, when: datetime, committed: datetime | None = None
    ) -> str:
        (repo / name).write_text(content)
        self.run(repo, "add", name)
        self.run(repo, "commit", "-q", "-m", message, when=when, committed=committed)
        return self.rev(repo, "HEAD")

    def rev(self, repo: Path, ref: str) -> str:
        return self.run(repo, "rev-parse", ref)

    def checkout(self, repo: Path, *args: str) -> None:
        self.run(repo, "checkout", "-q", *args)


def day(n: int) -> datetime:
    return BASE_DATE + timedelta(days=n)


@pytest.fixture
def git() -> GitHelper:
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    return GitHelper()


@pytest.fixture
def day_of():
    return day


@pytest.fixture
def history_pair(tmp_path, git):
    """A pre-rewrite backup and its rewritten working copy.

    backup:  A - B - C (main), B - D - E (feature)
    work:    A' - B' - C' (main), same subjects, emails and author dates,
             config.txt with the secret replaced; pushes go to a bare origin.
    """
    backup = git.init(tmp_path / "backup")
    git.commit(backup, "README.md", "# app\n", "Initial commit", day(0))
    git.commit(backup, "config.txt", "token=SECRET123\n", "Add config", day(1))
    git.run(backup, "branch", "feature")
    git.commit(backup, "app.py", "print('app')\n", "Add app", day(2))
    git.checkout(backup, "feature")
    git.commit(backup, "feature.txt", "one\n", "Start feature", day(3))
    git.commit(backup, "feature.txt", "one\ntwo\n", "Extend feature", day(4))
    git.checkout(backup, "main")

    work = git.init(tmp_path / "work")
    git.commit(work, "README.md", "# app\n", "Initial commit", day(0))
    rewritten_base = git.commit(work, "config.txt", "token=***REMOVED***\n", "Add config", day(1))
    git.commit(work, "app.py", "print('app')\n", "Add app", day(2))

    origin = git.init_bare(tmp_path / "origin.git")
    git.run(work, "remote", "add", "origin", str(origin))
    git.run(work, "push", "-q", "origin", "main")

    return {
        "backup": backup,
        "work": work,
        "origin": origin,
        "rewritten_base": rewritten_base,
        "feature_tip": git.rev(backup, "feature"),
        "merge_base": git.rev(backup, "main~1"),
    }
