"""Application settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "playbook-api"
    database_url: str = "sqlite:///data.db"
    data_dir: Path = Path("data")
    host: str = "0.0.0.0"
    port: int = Field(default=17000, ge=1, le=65535)
    worker_count: int = Field(default=2, ge=1)
    # 0 means a run trigger waits until a worker takes the task.
    queue_capacity: int = Field(default=0, ge=0)
    execution_timeout_s: float = Field(default=1800.0, gt=0)
    ansible_playbook_bin: str = "ansible-playbook"
    ssh_private_key_file: str = "/root/.ssh/id_rsa"
    ssh_user: str = "auser"
    ssh_port: int = Field(default=8513, ge=1, le=65535)
    default_user: str = "admin"
    recent_task_limit: int = Field(default=10, ge=1)
    shutdown_grace_s: float = Field(default=5.0, ge=0.0)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="PLAYBOOK_API_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
