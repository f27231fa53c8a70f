"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".task_engine" / "tasks.db")
    root_page: str = "/"
    concurrent: bool = True
    max_workers: int | None = None
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("TE_DB_PATH"):
            config.db_path = Path(db)

        if root := os.environ.get("TE_ROOT_PAGE"):
            config.root_page = root

        if concurrent := os.environ.get("TE_CONCURRENT"):
            config.concurrent = concurrent.strip().lower() not in _FALSE_VALUES

        if workers := os.environ.get("TE_MAX_WORKERS"):
            config.max_workers = int(workers)

        if level := os.environ.get("TE_LOG_LEVEL"):
            config.log_level = level.upper()

        return config


def get_config() -> Config:
    return Config.from_env()
