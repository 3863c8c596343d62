"""Container runtime models."""

from __future__ import annotations

from pydantic import BaseModel


class ContainerInfo(BaseModel):
    id: str
    name: str
    state: str = ""
