"""Central configuration for dbproxy tools."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from dbproxy_common.constants import (
    ACME_STORE_PATH,
    BACKENDS_FILENAME,
    CERT_DIR,
    CERT_SYNC_DEBOUNCE_SECONDS,
    CERT_SYNC_INTERVAL_MINUTES,
    CERT_SYNC_WARMUP_SECONDS,
    COMMAND_TIMEOUT,
    CONTAINER_RESTART_TIMEOUT,
    DOCKER_TIMEOUT,
    HAPROXY_ADMIN_SOCKET,
    HAPROXY_BINARY,
    HAPROXY_GROUP,
    HAPROXY_SERVICE,
    HAPROXY_USER,
    LIVE_CONFIG_FILENAME,
    STAGING_CONFIG_FILENAME,
    STATE_DIR,
    STATS_PORT,
)


class DbProxyConfig(BaseSettings):
    """Runtime configuration resolved once at startup (``DBPROXY_*`` env vars)."""

    model_config = SettingsConfigDict(env_prefix="DBPROXY_")

    state_dir: Path = Field(default=STATE_DIR)
    cert_dir: Path = Field(default=CERT_DIR)
    acme_store_path: Path = Field(default=ACME_STORE_PATH)

    haproxy_binary: str = HAPROXY_BINARY
    haproxy_service: str = HAPROXY_SERVICE
    haproxy_user: str = HAPROXY_USER
    haproxy_group: str = HAPROXY_GROUP
    haproxy_admin_socket: Path = Field(default=HAPROXY_ADMIN_SOCKET)
    # e.g. ["sudo"] when the daemon does not run as root
    command_prefix: list[str] = Field(default_factory=list)
    command_timeout: float = COMMAND_TIMEOUT
    stats_port: int = STATS_PORT

    docker_timeout: int = DOCKER_TIMEOUT
    container_restart_timeout: int = CONTAINER_RESTART_TIMEOUT

    cert_auto_sync: bool = True
    cert_sync_interval_minutes: float = Field(default=CERT_SYNC_INTERVAL_MINUTES, gt=0)
    cert_sync_warmup_seconds: float = Field(default=CERT_SYNC_WARMUP_SECONDS, ge=0)
    cert_sync_debounce_seconds: float = Field(default=CERT_SYNC_DEBOUNCE_SECONDS, ge=0)

    fallback_ports: bool = True
    log_level: str = "INFO"

    @property
    def backends_file(self) -> Path:
        return self.state_dir / BACKENDS_FILENAME

    @property
    def live_config_path(self) -> Path:
        return self.state_dir / LIVE_CONFIG_FILENAME

    @property
    def staging_config_path(self) -> Path:
        return self.state_dir / STAGING_CONFIG_FILENAME

    @property
    def cert_sync_interval_seconds(self) -> float:
        return self.cert_sync_interval_minutes * 60
