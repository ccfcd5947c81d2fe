# config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

STORE_BACKENDS = ("mysql", "memory")


def _maybe_load_env_file() -> None:
    """
    Load .env from the project root (same folder as this config.py).
    Never overwrites already-set environment variables.
    """
    dotenv_path = Path(__file__).resolve().parent / ".env"
    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path, override=False)


@dataclass(frozen=True)
class MySqlConfig:
    host: str
    port: int
    user: str
    password: str
    database: str
    minsize: int = 1
    maxsize: int = 5
    connect_timeout: int = 10


@dataclass(frozen=True)
class EngineConfig:
    store_backend: str
    round_window_days: int
    forfeit_poll_seconds: int
    playoff_best_of: int
    log_level: str
    discord_token: str | None
    dev_guild_id: int | None
    notify_webhook_url: str | None
    mysql: MySqlConfig


def _getenv(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _int_or_none(value: str | None, var_name: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{var_name} must be an integer, got: {value!r}") from e


def _int(value: str | None, var_name: str, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{var_name} must be an integer, got: {value!r}") from e


def load_config() -> EngineConfig:
    _maybe_load_env_file()

    backend = (_getenv("STORE_BACKEND", "mysql") or "mysql").lower()
    if backend not in STORE_BACKENDS:
        raise ValueError(f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got: {backend!r}")

    host = _getenv("DB_HOST", "127.0.0.1") or "127.0.0.1"
    port = _int(_getenv("DB_PORT"), "DB_PORT", 3306)
    user = _getenv("DB_USER", "root") or "root"
    password = _getenv("DB_PASSWORD", "") or ""
    database = _getenv("DB_NAME", "tournament_engine") or "tournament_engine"

    minsize = _int(_getenv("DB_POOL_MIN"), "DB_POOL_MIN", 1)
    maxsize = _int(_getenv("DB_POOL_MAX"), "DB_POOL_MAX", 5)
    connect_timeout = _int(_getenv("DB_CONNECT_TIMEOUT"), "DB_CONNECT_TIMEOUT", 10)

    if minsize < 1:
        raise ValueError("DB_POOL_MIN must be >= 1")
    if maxsize < minsize:
        raise ValueError("DB_POOL_MAX must be >= DB_POOL_MIN")

    window_days = _int(_getenv("ROUND_WINDOW_DAYS"), "ROUND_WINDOW_DAYS", 7)
    poll_seconds = _int(_getenv("FORFEIT_POLL_SECONDS"), "FORFEIT_POLL_SECONDS", 300)
    best_of = _int(_getenv("PLAYOFF_BEST_OF"), "PLAYOFF_BEST_OF", 3)

    if window_days < 1:
        raise ValueError("ROUND_WINDOW_DAYS must be >= 1")
    if poll_seconds < 1:
        raise ValueError("FORFEIT_POLL_SECONDS must be >= 1")
    if best_of < 1 or best_of % 2 == 0:
        raise ValueError("PLAYOFF_BEST_OF must be a positive odd number")

    return EngineConfig(
        store_backend=backend,
        round_window_days=window_days,
        forfeit_poll_seconds=poll_seconds,
        playoff_best_of=best_of,
        log_level=(_getenv("LOG_LEVEL", "INFO") or "INFO").upper(),
        discord_token=_getenv("DISCORD_TOKEN"),
        dev_guild_id=_int_or_none(_getenv("DEV_GUILD_ID"), "DEV_GUILD_ID"),
        notify_webhook_url=_getenv("NOTIFY_WEBHOOK_URL"),
        mysql=MySqlConfig(
            host=host,
            port=port,
            user=user,
            password=password,
            database=database,
            minsize=minsize,
            maxsize=maxsize,
            connect_timeout=connect_timeout,
        ),
    )
