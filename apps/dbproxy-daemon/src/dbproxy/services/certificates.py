"""On-disk certificate bundles, one directory per instance."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from cryptography import x509

from dbproxy_common import CertificateMaterial
from dbproxy_common.constants import BUNDLE_FILENAME, CERT_FILENAME, KEY_FILENAME

from dbproxy.services.files import atomic_write

log = logging.getLogger(__name__)


def read_expiry(cert_path: Path) -> datetime | None:
    """Read the expiry date from a PEM certificate on disk."""
    if not cert_path.exists():
        return None
    try:
        cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
    except (OSError, ValueError) as exc:
        log.warning("Failed to read cert %s: %s", cert_path, exc)
        return None
    return cert.not_valid_after_utc


def cert_status(expiry: datetime | None, *, now: datetime | None = None) -> str:
    if expiry is None:
        return "unknown"
    now = now or datetime.now(timezone.utc)
    days = (expiry - now).days
    if days < 0:
        return "expired"
    if days <= 14:
        return "critical"
    if days <= 30:
        return "warning"
    return "valid"


class CertificateStore:
    """Certificate material for tenant containers and the HAProxy TLS frontend.

    ``<root>/<instance>/server.crt`` and ``server.key`` are mounted by the
    database container; ``haproxy.pem`` (cert + key) is loaded by HAProxy.
    """

    def __init__(self, root: Path):
        self.root = root

    def instance_dir(self, instance_name: str) -> Path:
        path = self.root / instance_name
        # must be a direct child of root; remove() rmtrees it
        if instance_name in ("", ".", "..") or path.parent != self.root:
            raise ValueError(f"Invalid instance name for certificate storage: {instance_name!r}")
        return path

    def cert_path(self, instance_name: str) -> Path:
        return self.instance_dir(instance_name) / CERT_FILENAME

    def key_path(self, instance_name: str) -> Path:
        return self.instance_dir(instance_name) / KEY_FILENAME

    def bundle_path(self, instance_name: str) -> Path:
        return self.instance_dir(instance_name) / BUNDLE_FILENAME

    def has_bundle(self, instance_name: str) -> bool:
        return self.bundle_path(instance_name).is_file()

    def differs(self, instance_name: str, cert: bytes, key: bytes) -> bool:
        """True when the given material is new or differs from what is on disk."""
        try:
            return (
                self.cert_path(instance_name).read_bytes() != cert
                or self.key_path(instance_name).read_bytes() != key
            )
        except FileNotFoundError:
            return True

    def write(self, instance_name: str, material: CertificateMaterial) -> None:
        bundle = material.cert.rstrip(b"\n") + b"\n" + material.key
        atomic_write(self.cert_path(instance_name), material.cert, mode=0o644)
        atomic_write(self.key_path(instance_name), material.key, mode=0o640)
        atomic_write(self.bundle_path(instance_name), bundle, mode=0o640)
        log.info("Wrote certificate bundle for %s to %s", instance_name, self.instance_dir(instance_name))

    def remove(self, instance_name: str) -> bool:
        path = self.instance_dir(instance_name)
        if not path.exists():
            return False
        shutil.rmtree(path)
        log.info("Removed certificate bundle for %s", instance_name)
        return True

    def instances(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())
