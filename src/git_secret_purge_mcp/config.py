"""Configuration management for git-secret-purge."""

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_TRUNK_ALIASES = ("master", "main", "origin/master", "origin/main")
USER_CONFIG_PATH = Path.home() / ".config" / "git-secret-purge" / "config.json"


@dataclass
class RepositoryConfig:
    """One repository to clean; unset values fall back to the global defaults."""

    name: str
    path: str
    url: str | None = None
    main_branch: str | None = None
    secrets_file: str | None = None
    branch_age_days: int | None = None


@dataclass
class ServerConfig:
    """Server configuration."""

    log_level: str = "INFO"
    default_dry_run: bool = True


@dataclass
class NotifyConfig:
    """Run summary notifications."""

    slack_webhook_url: str | None = None
    slack_channel: str | None = None


@dataclass(frozen=True)
class ResolvedRepository:
    """Repository settings with global defaults applied."""

    name: str
    path: Path
    url: str | None
    main_branch: str
    secrets_file: Path | None
    backup_dir: Path
    metadata_dir: Path
    branch_age_days: int
    remote: str
    trunk_aliases: frozenset[str]
    push: bool


@dataclass
class Config:
    """Main configuration."""

    backup_dir: str = "./backups"
    metadata_dir: str = "./metadata"
    main_branch: str = "main"
    branch_age_days: int = 30
    secrets_file: str | None = None
    remote: str = "origin"
    trunk_aliases: list[str] = field(default_factory=lambda: list(DEFAULT_TRUNK_ALIASES))
    push: bool = True
    repositories: list[RepositoryConfig] = field(default_factory=list)
    server: ServerConfig = field(default_factory=ServerConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)

    def find_repository(self, name: str) -> RepositoryConfig:
        for repo in self.repositories:
            if repo.name == name:
                return repo
        raise ValueError(f"Unknown repository: {name}")

    def resolve(self, repo: RepositoryConfig) -> ResolvedRepository:
        main_branch = repo.main_branch or self.main_branch
        secrets_file = repo.secrets_file or self.secrets_file
        aliases = set(self.trunk_aliases) | {main_branch, f"{self.remote}/{main_branch}"}
        return ResolvedRepository(
            name=repo.name,
            path=Path(repo.path).expanduser().resolve(),
            url=repo.url,
            main_branch=main_branch,
            secrets_file=Path(secrets_file).expanduser().resolve() if secrets_file else None,
            backup_dir=Path(self.backup_dir).expanduser().resolve(),
            metadata_dir=Path(self.metadata_dir).expanduser().resolve(),
            branch_age_days=repo.branch_age_days if repo.branch_age_days is not None else self.branch_age_days,
            remote=self.remote,
            trunk_aliases=frozenset(aliases),
            push=self.push,
        )


def load_config(path: str | Path | None = None) -> Config:
    """
    Load configuration from multiple sources (in priority order):
    1. Environment variables (highest priority)
    2. Explicit config file (argument or SECRET_PURGE_CONFIG)
    3. Local config file (./config.json)
    4. User config file (~/.config/git-secret-purge/config.json)
    5. Default values (lowest priority)
    """
    config = Config()

    for config_path in (USER_CONFIG_PATH, Path("./config.json")):  # Lower priority first
        if config_path.exists():
            try:
                _apply_config_dict(config, _read_json(config_path))
            except ConfigError as e:
                logger.warning(str(e))

    explicit = path or os.getenv("SECRET_PURGE_CONFIG")
    if explicit:
        explicit_path = Path(explicit).expanduser()
        if not explicit_path.exists():
            raise ConfigError(f"Config file not found: {explicit_path}")
        _apply_config_dict(config, _read_json(explicit_path))

    # Override with environment variables (highest priority)
    _apply_env_vars(config)

    return config


def _read_json(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e
    except IOError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def _parse_repository(data: dict) -> RepositoryConfig:
    if not isinstance(data, dict) or not data.get("name") or not data.get("path"):
        raise ConfigError(f"Repository entry needs 'name' and 'path': {data!r}")
    return RepositoryConfig(
        name=data["name"],
        path=data["path"],
        url=data.get("url"),
        main_branch=data.get("main_branch"),
        secrets_file=data.get("secrets_file"),
        branch_age_days=data.get("branch_age_days"),
    )


def _apply_config_dict(config: Config, data: dict) -> None:
    """Apply configuration from a dictionary."""
    for key in ("backup_dir", "metadata_dir", "main_branch", "secrets_file", "remote"):
        if key in data:
            setattr(config, key, data[key])

    if "branch_age_days" in data:
        config.branch_age_days = int(data["branch_age_days"])
    if "trunk_aliases" in data:
        config.trunk_aliases = list(data["trunk_aliases"])
    if "push" in data:
        config.push = bool(data["push"])

    if "repositories" in data:
        config.repositories = [_parse_repository(repo) for repo in data["repositories"]]

    if "server" in data:
        server_data = data["server"]
        if "log_level" in server_data:
            config.server.log_level = server_data["log_level"]
        if "default_dry_run" in server_data:
            config.server.default_dry_run = server_data["default_dry_run"]

    if "notify" in data:
        notify_data = data["notify"]
        if "slack_webhook_url" in notify_data:
            config.notify.slack_webhook_url = notify_data["slack_webhook_url"]
        if "slack_channel" in notify_data:
            config.notify.slack_channel = notify_data["slack_channel"]


def _apply_env_vars(config: Config) -> None:
    """Apply environment variables to config."""
    if log_level := os.getenv("SECRET_PURGE_LOG_LEVEL"):
        config.server.log_level = log_level.upper()

    if backup_dir := os.getenv("SECRET_PURGE_BACKUP_DIR"):
        config.backup_dir = backup_dir

    if metadata_dir := os.getenv("SECRET_PURGE_METADATA_DIR"):
        config.metadata_dir = metadata_dir

    if age := os.getenv("SECRET_PURGE_BRANCH_AGE_DAYS"):
        try:
            config.branch_age_days = int(age)
        except ValueError:
            logger.warning(f"Ignoring invalid SECRET_PURGE_BRANCH_AGE_DAYS: {age!r}")

    if webhook := os.getenv("SECRET_PURGE_SLACK_WEBHOOK_URL"):
        config.notify.slack_webhook_url = webhook


def create_default_config_file(path: Path | None = None) -> Path:
    """Create a default configuration file."""
    if path is None:
        path = USER_CONFIG_PATH

    path.parent.mkdir(parents=True, exist_ok=True)

    default_config = {
        "backup_dir": "./backups",
        "metadata_dir": "./metadata",
        "main_branch": "main",
        "branch_age_days": 30,
        "secrets_file": "./secrets-to-remove.txt",
        "remote": "origin",
        "trunk_aliases": list(DEFAULT_TRUNK_ALIASES),
        "push": True,
        "repositories": [],
        "server": {"log_level": "INFO", "default_dry_run": True},
        "notify": {"slack_webhook_url": None, "slack_channel": None},
    }

    with open(path, "w") as f:
        json.dump(default_config, f, indent=2)

    return path


# Thread-safe global config instance
_config: Config | None = None
_config_lock = threading.Lock()


def get_config() -> Config:
    """Get the global configuration instance (thread-safe)."""
    global _config
    if _config is None:
        with _config_lock:
            # Double-check locking pattern
            if _config is None:
                _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from sources (thread-safe)."""
    global _config
    with _config_lock:
        _config = load_config()
        return _config
