# Lifecycle board: configuration
# Override paths and endpoints via lifeboard.yaml, env vars or CLI args.

import logging
import os
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("lifeboard.yaml")  # relative to the working directory


@dataclass
class Config:
    """Runtime configuration for a board view."""

    # Storage
    db_path: str = "~/.local/share/lifeboard/board.db"
    watch_db: bool = True             # watch the db file for other processes' writes

    # Sync
    debounce_ms: int = 300

    # Billing collaborator (None = no payment annotations)
    billing_url: Optional[str] = None
    grace_days: int = 7

    # HTTP surface
    api_secret_env: str = "LIFEBOARD_API_SECRET"

    log_level: str = "INFO"

    def resolve_paths(self):
        """Apply env overrides and expand ~."""
        env_db = os.environ.get("LIFEBOARD_DB")
        if env_db:
            self.db_path = env_db
        self.db_path = str(Path(self.db_path).expanduser())

    @property
    def api_secret(self) -> str:
        return os.environ.get(self.api_secret_env, "")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        path = path or os.environ.get("LIFEBOARD_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        known = {f.name for f in fields(cls)}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except (OSError, yaml.YAMLError, TypeError, AttributeError) as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        return cfg
