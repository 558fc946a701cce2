"""Config file management for vtslink.

Files live under ~/.vtslink/:
  config.json  — endpoint, plugin identity, timings, HTTP bridge settings
  store/       — token files, one per scope (see token_store.py)
  logs/        — rotating log files
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from .models import EndpointConfig, Timings

APP_DIR = Path.home() / ".vtslink"
CONFIG_FILE = APP_DIR / "config.json"


class Config(BaseModel):
    endpoint: EndpointConfig = Field(default_factory=EndpointConfig)
    timings: Timings = Field(default_factory=Timings)
    http_host: str = "127.0.0.1"
    http_port: int = 18090
    log_dir: str = ""
    log_levels: dict[str, str] = Field(default_factory=dict)


def ensure_app_dir() -> Path:
    APP_DIR.mkdir(parents=True, exist_ok=True)
    return APP_DIR


def load_config(path: Path | None = None) -> Config:
    path = path or CONFIG_FILE
    if path.exists():
        return Config.model_validate_json(path.read_text(encoding="utf-8"))
    return Config()


def save_config(config: Config, path: Path | None = None) -> Path:
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    return path


def resolve_log_dir(config: Config) -> Path:
    return Path(config.log_dir) if config.log_dir else APP_DIR / "logs"
