"""git-secret-purge MCP Server - secret removal from git history with branch reconstruction."""

__version__ = "0.1.0"

from .adapter import GitRepository
from .classifier import BranchClassifier, BranchDecision, SkipReason
from .config import Config, RepositoryConfig, ServerConfig, get_config, load_config, reload_config
from .errors import (
    BackupError,
    ConfigError,
    NoCommonAncestorError,
    PersistenceError,
    PublishError,
    QueryError,
    RewriteFailure,
    SecretPurgeError,
)
from .graph import CommitIdentity, CommitInfo
from .metadata import RunMetadataStore
from .models import BranchRecord, RunMetadata
from .orchestrator import CleanResult, Orchestrator, ReconstructionReport
from .reconstructor import BranchReconstructor, ReconstructionResult
from .rewriter import FilterResult, HistoryRewriter
from .secrets import ReplacementRule, load_rules, redact_secret

__all__ = [
    # Version
    "__version__",
    # Repository access
    "GitRepository",
    "CommitInfo",
    "CommitIdentity",
    # Classification
    "BranchClassifier",
    "BranchDecision",
    "SkipReason",
    # Metadata
    "RunMetadataStore",
    "RunMetadata",
    "BranchRecord",
    # Rewrite and reconstruction
    "HistoryRewriter",
    "FilterResult",
    "BranchReconstructor",
    "ReconstructionResult",
    "Orchestrator",
    "CleanResult",
    "ReconstructionReport",
    # Config
    "Config",
    "RepositoryConfig",
    "ServerConfig",
    "get_config",
    "load_config",
    "reload_config",
    # Secrets
    "ReplacementRule",
    "load_rules",
    "redact_secret",
    # Errors
    "SecretPurgeError",
    "ConfigError",
    "QueryError",
    "NoCommonAncestorError",
    "PublishError",
    "RewriteFailure",
    "PersistenceError",
    "BackupError",
]
