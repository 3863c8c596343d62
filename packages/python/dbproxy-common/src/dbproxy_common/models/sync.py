"""Certificate sync models."""

from __future__ import annotations

from pydantic import BaseModel


class CertificateMaterial(BaseModel):
    """Certificate bytes handed over by a certificate source."""

    cert: bytes = b""
    key: bytes = b""
    issued_externally: bool = False
    changed: bool = False


class SyncStats(BaseModel):
    """Outcome of one certificate sync pass."""

    domains_processed: int = 0
    updated_domains: int = 0
    failures: int = 0
    restarted: int = 0
    restart_failures: int = 0
    reloaded: bool = False

    @property
    def noteworthy(self) -> bool:
        return bool(self.updated_domains or self.failures or self.restart_failures)
