"""Configuration loading.

Settings come from a YAML (or JSON) file in the user config directory,
overridden by environment variables. Secrets may live in a dotenv file that
is loaded into the environment first::

    # ~/.config/mailpail/mailpail.yaml
    maildir: ~/Maildir/bitbucket
    message_id_domain: bitbucket.example.com
    source: inbox
    api:
      endpoint: https://bitbucket.example.com/rest/api/1.0
      token_file: ~/.config/mailpail/token
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from mailpail.core.exceptions import ConfigError
from mailpail.core.formatter import DEFAULT_MESSAGE_ID_DOMAIN

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("mailpail.yaml", "mailpail.yml", "mailpail.json")
DEFAULT_MAILDIR = "~/Maildir/bitbucket"
STATE_DB_NAME = ".mailpail-state.db"


def config_dir() -> Path:
    base = os.getenv("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return Path(base) / "mailpail"


@dataclass
class ApiConfig:
    endpoint: str = ""
    token: str = ""
    token_file: str = ""

    def resolve_token(self) -> str:
        """Return the API token; ``token_file`` wins over ``token``."""
        if self.token_file:
            try:
                return Path(self.token_file).expanduser().read_text(encoding="utf-8").strip()
            except OSError as exc:
                raise ConfigError(f"cannot read api.token_file {self.token_file}: {exc}") from exc
        if self.token:
            return self.token.strip()
        raise ConfigError("api.token_file or api.token must be provided")


@dataclass
class MailpailConfig:
    maildir: str = DEFAULT_MAILDIR
    state_dsn: str = ""
    message_id_domain: str = DEFAULT_MESSAGE_ID_DOMAIN
    source: str = "dashboard"
    log_level: str = "INFO"
    api: ApiConfig = field(default_factory=ApiConfig)

    @property
    def maildir_path(self) -> Path:
        return Path(self.maildir).expanduser()

    @property
    def state_url(self) -> str:
        if self.state_dsn:
            return self.state_dsn
        return f"sqlite:///{self.maildir_path / STATE_DB_NAME}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MailpailConfig:
        api = data.get("api") or {}
        if not isinstance(api, dict):
            raise ConfigError("'api' must be a mapping")
        unknown = set(data) - {"maildir", "state_dsn", "message_id_domain", "source", "log_level", "api"}
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
        return cls(
            maildir=str(data.get("maildir") or DEFAULT_MAILDIR),
            state_dsn=str(data.get("state_dsn") or ""),
            message_id_domain=str(data.get("message_id_domain") or DEFAULT_MESSAGE_ID_DOMAIN),
            source=str(data.get("source") or "dashboard"),
            log_level=str(data.get("log_level") or "INFO").upper(),
            api=ApiConfig(
                endpoint=str(api.get("endpoint") or ""),
                token=str(api.get("token") or ""),
                token_file=str(api.get("tokenFile") or api.get("token_file") or ""),
            ),
        )

    def apply_env(self) -> None:
        """Let environment variables override file settings."""
        self.maildir = os.getenv("MAILPAIL_MAILDIR", self.maildir)
        self.state_dsn = os.getenv("MAILPAIL_STATE_DSN", self.state_dsn)
        self.log_level = os.getenv("MAILPAIL_LOG_LEVEL", self.log_level).upper()
        self.api.endpoint = os.getenv("BBAPI", self.api.endpoint)
        self.api.token = os.getenv("BBPAT", self.api.token)

    def validate(self) -> None:
        if self.source not in ("dashboard", "inbox"):
            raise ConfigError(f"source must be 'dashboard' or 'inbox', got {self.source!r}")
        if not self.api.endpoint:
            raise ConfigError("api.endpoint (or BBAPI) must be provided")


def _load_file(path: Path) -> dict[str, Any]:
    """Load a YAML/JSON mapping from *path*."""
    if not path.is_file():
        raise ConfigError(f"config file is not a regular file: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot load {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def find_config_file() -> Path | None:
    directory = config_dir()
    for name in CONFIG_FILENAMES:
        candidate = directory / name
        if candidate.exists():
            return candidate
    return None


def load_config(path: str | Path | None = None) -> MailpailConfig:
    """Load configuration from *path* (or the default location) and the environment.

    A missing default config file is not an error; settings may come entirely
    from the environment.
    """
    secret_file = Path(os.getenv("MAILPAIL_SECRET_FILE", str(config_dir() / "secrets.env")))
    if secret_file.exists():
        load_dotenv(secret_file)
        logger.debug("Loaded secrets from %s", secret_file)

    config_path = Path(path).expanduser() if path else find_config_file()
    if config_path is not None:
        config = MailpailConfig.from_dict(_load_file(config_path))
        logger.debug("Loaded configuration from %s", config_path)
    else:
        config = MailpailConfig()
    config.apply_env()
    return config
