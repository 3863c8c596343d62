"""Backend routing entry model."""

from __future__ import annotations

import re
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from dbproxy_common.constants import LOOPBACK

_NAME_STRIP_RE = re.compile(r"[^a-z0-9]")
# Docker container name charset
_INSTANCE_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")
_LABEL_RE = re.compile(r"(?!-)[a-z0-9_-]{1,63}(?<!-)")


class ProtocolFamily(str, Enum):
    """Database wire protocol; decides the frontend bucket and public port."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    MONGODB = "mongodb"

    @property
    def standard_port(self) -> int:
        return _STANDARD_PORTS[self]

    @property
    def container_port(self) -> str:
        """Port key the database publishes inside its container, e.g. ``5432/tcp``."""
        return f"{_STANDARD_PORTS[self]}/tcp"

    @property
    def fallback_port_base(self) -> int:
        return _STANDARD_PORTS[self] + 1

    @property
    def label(self) -> str:
        return _LABELS[self]


_STANDARD_PORTS = {
    ProtocolFamily.POSTGRES: 5432,
    ProtocolFamily.MYSQL: 3306,
    ProtocolFamily.MONGODB: 27017,
}

_LABELS = {
    ProtocolFamily.POSTGRES: "PostgreSQL",
    ProtocolFamily.MYSQL: "MySQL",
    ProtocolFamily.MONGODB: "MongoDB",
}


def backend_name(family: ProtocolFamily, instance_name: str) -> str:
    """Return the HAProxy backend identifier for an instance."""
    return f"{family.value}_{_NAME_STRIP_RE.sub('', instance_name.lower())}"


class BackendEntry(BaseModel):
    """One tenant's domain-to-loopback-port routing rule."""

    model_config = ConfigDict(populate_by_name=True)

    instance_name: str = Field(validation_alias=AliasChoices("instance_name", "instanceName"))
    domain: str
    internal_port: int = Field(
        ge=1,
        le=65535,
        validation_alias=AliasChoices("internal_port", "port"),
    )
    family: ProtocolFamily = Field(
        default=ProtocolFamily.POSTGRES,
        validation_alias=AliasChoices("family", "dbType"),
    )
    external_port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("external_port", "haproxyPort"),
    )

    @field_validator("instance_name")
    @classmethod
    def validate_instance_name(cls, v: str) -> str:
        if not _INSTANCE_RE.fullmatch(v):
            raise ValueError(f"Invalid instance name {v!r}: expected a container name ([A-Za-z0-9][A-Za-z0-9_.-]*)")
        return v

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = v.lower()
        if len(v) > 253 or not all(_LABEL_RE.fullmatch(label) for label in v.split(".")):
            raise ValueError(f"Invalid domain {v!r}: expected a hostname")
        return v

    @property
    def backend_name(self) -> str:
        return backend_name(self.family, self.instance_name)

    @property
    def public_port(self) -> int:
        """Port clients connect to: the dedicated fallback port or the family's standard port."""
        return self.external_port or self.family.standard_port

    @property
    def routing(self) -> str:
        return f"{self.domain}:{self.public_port} -> {LOOPBACK}:{self.internal_port}"
