"""Shared models, constants and configuration for the dbproxy daemon and CLI."""

from dbproxy_common.constants import (
    ACME_STORE_PATH,
    CERT_DIR,
    LOOPBACK,
    STATE_DIR,
    STATS_PORT,
)
from dbproxy_common.config import DbProxyConfig
from dbproxy_common.models.backend import BackendEntry, ProtocolFamily, backend_name
from dbproxy_common.models.container import ContainerInfo
from dbproxy_common.models.reconcile import MappingCheck, PortFix, ReconcileReport
from dbproxy_common.models.sync import CertificateMaterial, SyncStats

__all__ = [
    "ACME_STORE_PATH",
    "BackendEntry",
    "CERT_DIR",
    "CertificateMaterial",
    "ContainerInfo",
    "DbProxyConfig",
    "LOOPBACK",
    "MappingCheck",
    "PortFix",
    "ProtocolFamily",
    "ReconcileReport",
    "STATE_DIR",
    "STATS_PORT",
    "SyncStats",
    "backend_name",
]
