"""Port reconciliation models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class PortFix(BaseModel):
    """A stored port overwritten with the live container port."""

    instance_name: str
    domain: str
    old_port: int
    new_port: int


class ReconcileReport(BaseModel):
    fixed_count: int = 0
    error_count: int = 0
    fixes: list[PortFix] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)

    @property
    def needs_regeneration(self) -> bool:
        return bool(self.fixes)


class MappingCheck(BaseModel):
    """Read-only comparison of one stored mapping against the live container."""

    instance_name: str
    domain: str
    expected_port: int
    actual_port: int | None = None
    status: Literal["valid", "invalid", "missing"] = "missing"
    routing: str = ""
