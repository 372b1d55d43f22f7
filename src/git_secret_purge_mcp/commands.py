"""External command execution.

Every git and git-filter-repo invocation goes through ``run_command``. A
non-zero exit, a timeout or a missing executable is reported as a failed
``CommandResult`` rather than an exception: a missing branch or a conflicting
cherry-pick is a routine outcome for callers to inspect.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Timeout constants (seconds); None blocks until the command exits
TIMEOUT_FAST = 30        # Single-object queries
TIMEOUT_DEFAULT = 120    # Log walks, checkout, cherry-pick
TIMEOUT_LONG = None      # filter-repo, fetch, push


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = field(default=False, repr=False)

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()

    @property
    def diagnostic(self) -> str:
        """Best available explanation of a failure."""
        return (self.stderr or self.stdout).strip() or f"exit code {self.returncode}"


def parse_lines(output: str) -> list[str]:
    """Parse stdout into non-empty lines."""
    return [line for line in output.strip().split("\n") if line]


def run_command(
    args: list[str],
    cwd: str | Path | None = None,
    timeout: float | None = TIMEOUT_DEFAULT,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run a command and capture its outcome."""
    logger.debug(f"run: {' '.join(args)}")
    try:
        completed = subprocess.run(
            args, cwd=cwd, capture_output=True, text=True, check=False, timeout=timeout, env=env
        )
    except subprocess.TimeoutExpired:
        logger.error(f"timeout {timeout}s: {' '.join(args[:2])}")
        return CommandResult(args, -1, stderr=f"timed out after {timeout}s", timed_out=True)
    except FileNotFoundError as e:
        return CommandResult(args, 127, stderr=str(e))
    return CommandResult(args, completed.returncode, completed.stdout, completed.stderr)


def is_tool_installed(name: str) -> bool:
    """Check whether an executable is on PATH."""
    return shutil.which(name) is not None
