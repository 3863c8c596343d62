"""Shared Pydantic models."""

from dbproxy_common.models.backend import BackendEntry, ProtocolFamily, backend_name
from dbproxy_common.models.container import ContainerInfo
from dbproxy_common.models.reconcile import MappingCheck, PortFix, ReconcileReport
from dbproxy_common.models.sync import CertificateMaterial, SyncStats

__all__ = [
    "BackendEntry",
    "CertificateMaterial",
    "ContainerInfo",
    "MappingCheck",
    "PortFix",
    "ProtocolFamily",
    "ReconcileReport",
    "SyncStats",
    "backend_name",
]
