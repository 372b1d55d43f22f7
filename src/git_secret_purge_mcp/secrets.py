"""Secrets file handling.

The secrets file uses git-filter-repo's ``--replace-text`` format: one rule
per line, optionally prefixed with ``literal:``, ``regex:`` or ``glob:``, and
optionally followed by ``==>replacement``. Lines without a prefix are
literals; the default replacement is ``***REMOVED***``.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

DEFAULT_REPLACEMENT = "***REMOVED***"
RULE_KINDS = ("literal", "regex", "glob")


@dataclass(frozen=True)
class ReplacementRule:
    """One line of the secrets file."""

    kind: Literal["literal", "regex", "glob"]
    pattern: str
    replacement: str = DEFAULT_REPLACEMENT

    def redacted(self) -> str:
        if self.kind == "literal":
            return redact_secret(self.pattern)
        return f"{self.kind}:{redact_secret(self.pattern)}"

    def pickaxe(self) -> str | None:
        """``git log`` option finding commits that add or remove this text.

        Glob rules have no pickaxe equivalent.
        """
        if self.kind == "literal":
            return f"-S{self.pattern}"
        if self.kind == "regex":
            return f"-G{self.pattern}"
        return None


def parse_rule(line: str) -> ReplacementRule | None:
    """Parse one secrets-file line; blank lines yield None."""
    line = line.rstrip("\r\n")
    if not line.strip():
        return None

    pattern, sep, replacement = line.partition("==>")
    if not sep:
        replacement = DEFAULT_REPLACEMENT

    kind = "literal"
    for candidate in RULE_KINDS:
        if pattern.startswith(f"{candidate}:"):
            kind = candidate
            pattern = pattern[len(candidate) + 1:]
            break

    if not pattern:
        return None
    return ReplacementRule(kind, pattern, replacement)


def parse_rules(text: str) -> list[ReplacementRule]:
    return [rule for line in text.splitlines() if (rule := parse_rule(line)) is not None]


def load_rules(path: str | Path) -> list[ReplacementRule]:
    """Read rules from a secrets file (raises OSError if unreadable)."""
    return parse_rules(Path(path).read_text(encoding="utf-8"))


def redact_secret(text: str, visible_chars: int = 2) -> str:
    """Redact a secret with a hash identifier for tracking in logs."""
    # Short hash identifies the secret across log lines without exposing it
    text_hash = hashlib.sha256(text.encode()).hexdigest()[:8]

    if len(text) <= 8:
        return f"[REDACTED:{text_hash}]"
    return f"{text[:visible_chars]}***[{text_hash}]"
