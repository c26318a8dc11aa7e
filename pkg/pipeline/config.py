# Pipeline board — configuration
# Override via pipeline.yaml or environment variables.

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

CONFIG_PATH = Path(__file__).parent / "pipeline.yaml"

ENV_OVERRIDES = {
    "PIPELINE_DB": "db_path",
    "PIPELINE_SERVER_URL": "server_url",
    "PIPELINE_API_SECRET": "api_key",
    "PIPELINE_LOG_LEVEL": "log_level",
}


@dataclass
class PipelineConfig:
    """Runtime configuration for a board session."""

    # Backend: "sqlite" talks to the DB file directly, "http" goes through pipeline_server.py
    backend: str = "sqlite"
    db_path: str = "~/.local/share/pipeline-board/pipeline.db"
    server_url: str = "http://127.0.0.1:3000"
    api_key: str = ""
    request_timeout: float = 5.0

    # Change feed
    poll_interval: float = 0.5
    feed_incremental: bool = True
    reconnect_initial: float = 0.5
    reconnect_max: float = 30.0

    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ in file paths."""
        self.db_path = str(Path(self.db_path).expanduser())

    def apply_env(self, environ=None):
        env = os.environ if environ is None else environ
        for var, attr in ENV_OVERRIDES.items():
            if env.get(var):
                setattr(self, attr, env[var])

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "PipelineConfig":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if hasattr(cls, k)})
            except (yaml.YAMLError, TypeError, AttributeError) as e:
                logging.getLogger(__name__).warning("Ignoring invalid config %s: %s", cfg_path, e)
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        return cfg


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
