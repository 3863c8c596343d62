"""Process-wide configuration and engine, each resolved once and cached."""

from __future__ import annotations

from functools import lru_cache

from dbproxy_common import DbProxyConfig

from dbproxy.engine import RoutingEngine


@lru_cache(maxsize=1)
def get_config() -> DbProxyConfig:
    """Return the global DbProxyConfig (``DBPROXY_*`` env vars, read once)."""
    return DbProxyConfig()


@lru_cache(maxsize=1)
def get_engine() -> RoutingEngine:
    """Return the engine shared by every command in this process."""
    return RoutingEngine.from_config(get_config())
