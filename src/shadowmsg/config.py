"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class StorageConfig:
    shadow_dir: str = "~/.shadowmsg"
    db_name: str = "shadow.db"
    state_file: str = "state.json"

    @property
    def dir_path(self) -> Path:
        return Path(self.shadow_dir).expanduser()

    @property
    def db_path(self) -> Path:
        return self.dir_path / self.db_name

    @property
    def state_path(self) -> Path:
        return self.dir_path / self.state_file


@dataclass
class SourceConfig:
    messages_db: str = "~/Library/Messages/chat.db"
    address_book_dir: str = "~/Library/Application Support/AddressBook/Sources"
    busy_timeout_ms: int = 2500

    @property
    def messages_db_path(self) -> Path:
        return Path(self.messages_db).expanduser()

    @property
    def address_book_path(self) -> Path:
        return Path(self.address_book_dir).expanduser()


@dataclass
class SyncConfig:
    auto_sync_minutes: int = 5
    default_country_code: str = "82"


@dataclass
class PushConfig:
    url: str = ""
    api_key: str = ""
    host: str = ""
    batch_size: int = 500
    timeout_seconds: float = 30.0


@dataclass
class Config:
    storage: StorageConfig = field(default_factory=StorageConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    push: PushConfig = field(default_factory=PushConfig)


def _dict_to_config(data: dict) -> Config:
    from dacite import Config as DaciteConfig, from_dict

    # YAML reads `default_country_code: 82` as an int
    return from_dict(data_class=Config, data=data, config=DaciteConfig(cast=[float, str]))


def _candidate_paths() -> list[Path]:
    candidates = []
    env_path = os.environ.get("SHADOWMSG_CONFIG")
    if env_path:
        candidates.append(Path(env_path))
    candidates.append(Path("shadowmsg.yaml"))
    candidates.append(Path.home() / ".config" / "shadowmsg" / "config.yaml")
    return candidates


def _find_config_file() -> Path | None:
    """First existing config file: $SHADOWMSG_CONFIG, ./shadowmsg.yaml, then XDG."""
    return next((p for p in _candidate_paths() if p.exists()), None)


def _load_dotenv(env_path: Path = Path(".env")) -> None:
    """Export KEY=VALUE lines from a local .env without clobbering the real environment."""
    if not env_path.exists():
        return
    for raw in env_path.read_text().splitlines():
        key, sep, value = raw.strip().partition("=")
        if not sep or not key.strip() or key.startswith("#"):
            continue
        os.environ.setdefault(key.strip(), value.strip().strip("'\""))


# env var -> (section, field)
_ENV_OVERRIDES = {
    "SHADOWMSG_DIR": ("storage", "shadow_dir"),
    "SHADOWMSG_SOURCE_DB": ("source", "messages_db"),
    "SHADOWMSG_PUSH_URL": ("push", "url"),
    "SHADOWMSG_PUSH_API_KEY": ("push", "api_key"),
    "SHADOWMSG_PUSH_HOST": ("push", "host"),
}


def _apply_env_overrides(config: Config) -> Config:
    for var, (section, name) in _ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            setattr(getattr(config, section), name, value)
    return config


def load_config(path: str | Path | None = None) -> Config:
    """Build the effective configuration.

    Defaults, overlaid by the YAML file (explicit ``path`` or the first one
    found), overlaid by ``SHADOWMSG_*`` environment variables. A ``.env`` in
    the working directory is read first.
    """
    _load_dotenv()

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        config_path = _find_config_file()

    raw = {}
    if config_path is not None:
        raw = yaml.safe_load(config_path.read_text()) or {}
    return _apply_env_overrides(_dict_to_config(raw))
