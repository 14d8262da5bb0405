# Company OS: configuration
# Override the file location with COMPANYOS_CONFIG. Secrets never live in the
# file: it names the environment variables that hold them.

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional

import yaml

from .board.backend import Backend, RestBackend
from .board.local import SqliteBackend

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("companyos.yaml")
CONFIG_ENV = "COMPANYOS_CONFIG"
BACKENDS = ("rest", "sqlite")


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class BoardConfig:
    """Runtime configuration for the board and its bot."""

    # Backend
    backend: str = "sqlite"
    supabase_url: str = ""
    api_key_env: str = "SUPABASE_ANON_KEY"
    access_token_env: str = ""          # optional user JWT; falls back to the API key
    sqlite_path: str = "~/.local/share/companyos/board.db"
    request_timeout: Optional[float] = None  # seconds; None = wait indefinitely
    seed_defaults: bool = True

    # Task assist
    gemini_model: str = "gemini-2.5-flash"
    gemini_api_key_env: str = "GEMINI_API_KEY"

    # Telegram
    bot_token_env: str = "COMPANYOS_BOT_TOKEN"
    allowed_users: List[str] = field(default_factory=list)

    log_level: str = "INFO"

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ConfigError(
                f"Unknown backend '{self.backend}'. Allowed: {', '.join(BACKENDS)}"
            )
        if self.request_timeout is not None:
            try:
                self.request_timeout = float(self.request_timeout)
            except (TypeError, ValueError):
                raise ConfigError(
                    f"request_timeout must be a number of seconds, got: '{self.request_timeout}'"
                )
            if self.request_timeout <= 0:
                raise ConfigError("request_timeout must be positive")
        # Numeric Telegram user IDs as strings for comparison
        self.allowed_users = [str(uid) for uid in (self.allowed_users or [])]
        self.log_level = str(self.log_level).upper()

    def resolve_paths(self):
        """Expand ~ in file paths."""
        self.sqlite_path = str(Path(self.sqlite_path).expanduser())

    def secret(self, env_key: str) -> str:
        """
        Read the secret named by one of the *_env settings.

        Raises ConfigError with a how-to-fix message when the variable is unset.
        """
        var_name = getattr(self, env_key, "")
        if not var_name:
            raise ConfigError(f"{env_key} is not configured")
        value = os.environ.get(var_name)
        if not value:
            raise ConfigError(
                f"Environment variable {var_name} is not set.\n"
                f"Set it:  export {var_name}=..."
            )
        return value

    def optional_secret(self, env_key: str) -> Optional[str]:
        var_name = getattr(self, env_key, "")
        if not var_name:
            return None
        return os.environ.get(var_name) or None

    def is_authorized(self, user_id) -> bool:
        """Check if a Telegram user ID is in the allowlist."""
        return str(user_id) in self.allowed_users

    @classmethod
    def load(cls, path: Optional[str] = None) -> "BoardConfig":
        """
        Load config from YAML.

        Lookup order: explicit path, $COMPANYOS_CONFIG, ./companyos.yaml.
        A missing default file yields the defaults; a missing explicit file
        or unreadable YAML raises ConfigError.
        """
        explicit = path or os.environ.get(CONFIG_ENV)
        cfg_path = Path(explicit) if explicit else CONFIG_PATH

        if not cfg_path.exists():
            if explicit:
                raise ConfigError(f"Config file not found: {cfg_path}")
            cfg = cls()
            cfg.resolve_paths()
            return cfg

        try:
            with open(cfg_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {cfg_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{cfg_path} must contain a mapping at the top level")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {cfg_path}: {', '.join(unknown)}")
        cfg = cls(**{k: v for k, v in data.items() if k in known})
        cfg.resolve_paths()
        return cfg


def build_backend(cfg: BoardConfig) -> Backend:
    """Construct the backend the config selects."""
    if cfg.backend == "rest":
        if not cfg.supabase_url:
            raise ConfigError("backend 'rest' requires supabase_url")
        return RestBackend(
            cfg.supabase_url,
            api_key=cfg.secret("api_key_env"),
            access_token=cfg.optional_secret("access_token_env"),
            timeout=cfg.request_timeout,
        )
    logger.info(f"Using local board database {cfg.sqlite_path}")
    return SqliteBackend(cfg.sqlite_path)
