"""Certificate source backed by Traefik's ACME store (acme.json)."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Iterator

from dbproxy_common import CertificateMaterial

from dbproxy.errors import CertificateSourceError
from dbproxy.services.certificates import CertificateStore

log = logging.getLogger(__name__)


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def iter_certificates(doc: Any) -> Iterator[dict[str, Any]]:
    """Yield certificate records from every resolver (Traefik v2) or the v1 top level."""
    if not isinstance(doc, dict):
        return
    if "Certificates" in doc:
        resolvers = [doc]
    else:
        resolvers = [v for v in doc.values() if isinstance(v, dict)]
    for resolver in resolvers:
        for record in resolver.get("Certificates") or []:
            if isinstance(record, dict):
                yield record


def domain_matches(pattern: str, domain: str) -> bool:
    pattern = pattern.lower()
    domain = domain.lower()
    if pattern.startswith("*."):
        head, _, rest = domain.partition(".")
        return bool(head) and rest == pattern[2:]
    return pattern == domain


def record_domains(record: dict[str, Any]) -> list[str]:
    info = _first(record, "domain", "Domain") or {}
    main = _first(info, "main", "Main")
    sans = _first(info, "sans", "SANs") or []
    return [d for d in [main, *sans] if d]


class TraefikAcmeSource:
    """Hands out CA-issued certificates Traefik already obtained.

    Domains Traefik holds no certificate for come back with
    ``issued_externally=False`` and are left alone by the sync pass.
    """

    def __init__(self, acme_path: Path, store: CertificateStore):
        self.acme_path = acme_path
        self.store = store

    def _load(self) -> Any:
        try:
            return json.loads(self.acme_path.read_text())
        except (OSError, ValueError) as exc:
            raise CertificateSourceError(f"Cannot read ACME store {self.acme_path}: {exc}") from exc

    def find(self, domain: str) -> dict[str, Any] | None:
        records = list(iter_certificates(self._load()))
        # exact names win over wildcards
        for wildcard in (False, True):
            for record in records:
                for pattern in record_domains(record):
                    if pattern.startswith("*.") == wildcard and domain_matches(pattern, domain):
                        return record
        return None

    def get_certificate(self, instance_name: str, domain: str) -> CertificateMaterial:
        record = self.find(domain)
        if record is None:
            log.debug("No ACME certificate for %s (instance=%s)", domain, instance_name)
            return CertificateMaterial()
        try:
            cert = base64.b64decode(_first(record, "certificate", "Certificate") or "", validate=True)
            key = base64.b64decode(_first(record, "key", "Key") or "", validate=True)
        except (binascii.Error, TypeError) as exc:
            raise CertificateSourceError(f"Malformed ACME record for {domain}: {exc}") from exc
        if not cert or not key:
            raise CertificateSourceError(f"ACME record for {domain} has no certificate or key")
        return CertificateMaterial(
            cert=cert,
            key=key,
            issued_externally=True,
            changed=self.store.differs(instance_name, cert, key),
        )
