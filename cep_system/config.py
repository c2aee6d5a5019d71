"""Runtime settings read from the environment and an optional ``.env`` file."""

from __future__ import annotations

import getpass
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from dotenv import dotenv_values, set_key

from .i18n import normalize_language

DEFAULT_ENV_FILE = Path(".env")

ENV_KEYS = {
    "database_path": "CEP_DATABASE",
    "language": "CEP_LANGUAGE",
    "log_level": "CEP_LOG_LEVEL",
    "log_file": "CEP_LOG_FILE",
    "user": "CEP_USER",
    "host": "CEP_HOST",
    "port": "CEP_PORT",
    "seed_demo_data": "CEP_SEED_DEMO_DATA",
}

_TRUTHY = {"1", "true", "yes", "on"}


def current_user_name() -> str:
    """Login name of the current OS user without a Windows domain prefix."""

    try:
        name = getpass.getuser()
    except (OSError, KeyError):
        return ""
    return name.rsplit("\\", 1)[-1]


def _canonical_level(name: str) -> str:
    # WARN and FATAL are stdlib aliases of WARNING and CRITICAL
    level = logging.getLevelName(name.strip().upper())
    return logging.getLevelName(level) if isinstance(level, int) else "INFO"


@dataclass(slots=True)
class Settings:
    database_path: str = "cep.sqlite3"
    language: str = "en"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    user: str = ""
    host: str = "127.0.0.1"
    port: int = 8000
    seed_demo_data: bool = True

    @property
    def logging_level(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO

    @property
    def server_log_level(self) -> str:
        """Level name in the lowercase spelling uvicorn accepts."""

        return logging.getLevelName(self.logging_level).lower()

    @classmethod
    def from_env(
        cls,
        env_file: Union[str, Path, None] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """Build settings from ``.env`` values overridden by the process environment."""

        path = Path(env_file) if env_file is not None else DEFAULT_ENV_FILE
        values: Dict[str, Optional[str]] = dict(dotenv_values(path)) if path.exists() else {}
        values.update(os.environ if environ is None else environ)

        def read(field_name: str) -> Optional[str]:
            raw = values.get(ENV_KEYS[field_name])
            if raw is None or not raw.strip():
                return None
            return raw.strip()

        defaults = cls()
        port = read("port")
        try:
            port_number = int(port) if port is not None else defaults.port
        except ValueError as exc:
            raise ValueError(f"{ENV_KEYS['port']} must be a number, got {port!r}") from exc
        seed = read("seed_demo_data")
        return cls(
            database_path=read("database_path") or defaults.database_path,
            language=normalize_language(read("language")),
            log_level=_canonical_level(read("log_level") or defaults.log_level),
            log_file=read("log_file"),
            user=(read("user") or current_user_name()).rsplit("\\", 1)[-1],
            host=read("host") or defaults.host,
            port=port_number,
            seed_demo_data=defaults.seed_demo_data if seed is None else seed.lower() in _TRUTHY,
        )


def save_env_file(path: Union[str, Path], **values: object) -> Path:
    """Write settings fields as ``CEP_*`` entries into a ``.env`` file."""

    unknown = sorted(name for name in values if name not in ENV_KEYS)
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
    target = Path(path)
    target.touch(exist_ok=True)
    for name, value in values.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        set_key(str(target), ENV_KEYS[name], str(value), quote_mode="never")
    return target


__all__ = ["Settings", "current_user_name", "save_env_file", "ENV_KEYS"]
