"""Application settings.

Reads configuration from environment variables. A ``.env`` file at the repo
root is loaded first if present.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration."""
    platform_api_base_url: str = "http://localhost:8080/api"
    platform_api_timeout_seconds: int = 30
    platform_api_max_retries: int = 3

    # Sync monitoring
    sync_poll_interval_seconds: float = 3.0
    sync_task_queue: str = "erp-sync"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Session token encryption
    token_encryption_key: Optional[str] = None
    token_store_path: Optional[str] = None

    # Audit
    audit_log_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            platform_api_base_url=os.getenv("PLATFORM_API_BASE_URL", cls.platform_api_base_url),
            platform_api_timeout_seconds=int(os.getenv("PLATFORM_API_TIMEOUT_SECONDS", cls.platform_api_timeout_seconds)),
            platform_api_max_retries=int(os.getenv("PLATFORM_API_MAX_RETRIES", cls.platform_api_max_retries)),
            sync_poll_interval_seconds=float(os.getenv("SYNC_POLL_INTERVAL_SECONDS", cls.sync_poll_interval_seconds)),
            sync_task_queue=os.getenv("SYNC_TASK_QUEUE", cls.sync_task_queue),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            log_json=_env_bool("LOG_JSON", cls.log_json),
            token_encryption_key=os.getenv("TOKEN_ENCRYPTION_KEY") or None,
            token_store_path=os.getenv("TOKEN_STORE_PATH") or None,
            audit_log_dir=os.getenv("AUDIT_LOG_DIR") or None,
        )

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, read once."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
