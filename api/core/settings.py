"""
Environment-driven settings.

Each setting is a small function so tests can change the environment with
`monkeypatch.setenv` without reloading modules.
"""

from __future__ import annotations

import logging
import os


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name, default).strip() or default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def db_pool_min_size() -> int:
    return max(_env_int("DB_POOL_MIN_SIZE", 1), 0)


def db_pool_max_size() -> int:
    return max(_env_int("DB_POOL_MAX_SIZE", 10), 1)


def db_command_timeout_s() -> float:
    return _env_float("DB_COMMAND_TIMEOUT_S", 30.0)


def vinted_base_url() -> str:
    return _env_str("VINTED_BASE_URL", "https://www.vinted.co.uk")


def vinted_cookie() -> str:
    # Optional: some regions only hand out a session cookie to a returning browser.
    return os.environ.get("VINTED_COOKIE", "").strip()


def vinted_session_cookie_name() -> str:
    return _env_str("VINTED_SESSION_COOKIE", "_vinted_fr_session")


def vinted_user_agent() -> str:
    return _env_str("VINTED_USER_AGENT", "Mozilla/5.0")


def vinted_currency() -> str:
    return _env_str("VINTED_CURRENCY", "GBP").upper()


def vinted_timeout_s() -> float:
    return _env_float("VINTED_TIMEOUT_S", 20.0)


def topic_request_timeout_s() -> float:
    return _env_float("TOPIC_REQUEST_TIMEOUT_S", 30.0)


def topic_refresh_timeout_s() -> float:
    return _env_float("TOPIC_REFRESH_TIMEOUT_S", 60.0)


def topic_refresh_max_pending() -> int:
    return max(_env_int("TOPIC_REFRESH_MAX_PENDING", 32), 1)


def topic_refresh_min_interval_s() -> float:
    return max(_env_float("TOPIC_REFRESH_MIN_INTERVAL_S", 0.0), 0.0)


def log_level() -> str:
    return _env_str("LOG_LEVEL", "INFO").upper()


def configure_logging() -> None:
    """
    Configure the root logger once per process (uvicorn keeps its own handlers).
    """
    logging.basicConfig(
        level=log_level(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
