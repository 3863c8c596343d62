"""Shared constants for the dbproxy ecosystem."""

from pathlib import Path

# Default paths (overridable via DbProxyConfig / env vars)
STATE_DIR = Path("/opt/dbproxy/haproxy")
CERT_DIR = STATE_DIR / "certs"
ACME_STORE_PATH = Path("/opt/traefik/letsencrypt/acme.json")

# Files inside STATE_DIR
BACKENDS_FILENAME = "backends.json"
LIVE_CONFIG_FILENAME = "haproxy.cfg"
STAGING_CONFIG_FILENAME = "haproxy.cfg.staged"

# Per-instance certificate bundle (inside CERT_DIR/<instance>/)
CERT_FILENAME = "server.crt"
KEY_FILENAME = "server.key"
BUNDLE_FILENAME = "haproxy.pem"

# HAProxy
HAPROXY_BINARY = "haproxy"
HAPROXY_SERVICE = "haproxy"
HAPROXY_USER = "haproxy"
HAPROXY_GROUP = "haproxy"
HAPROXY_ADMIN_SOCKET = Path("/run/haproxy/admin.sock")
STATS_PORT = 8404
LOOPBACK = "127.0.0.1"

# Certificate sync scheduling
CERT_SYNC_INTERVAL_MINUTES = 60
CERT_SYNC_WARMUP_SECONDS = 30.0
CERT_SYNC_DEBOUNCE_SECONDS = 5.0

# External process / Docker timeouts (seconds)
COMMAND_TIMEOUT = 30.0
DOCKER_TIMEOUT = 30
CONTAINER_RESTART_TIMEOUT = 30
