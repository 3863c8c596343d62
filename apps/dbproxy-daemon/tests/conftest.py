"""Shared test fixtures and in-memory collaborators."""

from __future__ import annotations

from pathlib import Path

import pytest

from dbproxy_common import CertificateMaterial, ContainerInfo, DbProxyConfig, ProtocolFamily

from dbproxy.engine import RoutingEngine
from dbproxy.errors import (
    CertificateSourceError,
    ContainerRestartError,
    ContainerRuntimeError,
    ProxyConfigInvalid,
    ProxyReloadFailed,
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def monotonic(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRuntime:
    """Containers keyed by name; the value is the published host port (or None)."""

    def __init__(self, ports: dict[str, int | None] | None = None):
        self.ports: dict[str, int | None] = dict(ports or {})
        self.unreachable = False
        self.failing_restarts: set[str] = set()
        self.restarted: list[str] = []

    def list_containers(self) -> list[ContainerInfo]:
        if self.unreachable:
            raise ContainerRuntimeError("Docker unavailable: connection refused")
        return [ContainerInfo(id=name, name=name, state="running") for name in self.ports]

    def inspect_port_bindings(self, container_id: str, family: ProtocolFamily) -> int | None:
        return self.ports.get(container_id)

    def restart_container(self, instance_name: str) -> None:
        if instance_name in self.failing_restarts:
            raise ContainerRestartError(f"Failed to restart {instance_name}")
        self.restarted.append(instance_name)


class FakeProxy:
    def __init__(self):
        self.invalid = False
        self.reload_fails = False
        self.restart_fails = False
        self.checked: list[str] = []
        self.reloads = 0
        self.restarts = 0

    def check_syntax(self, path: Path) -> None:
        self.checked.append(path.read_text())
        if self.invalid:
            raise ProxyConfigInvalid("[ALERT] config : parsing error")

    def reload(self) -> None:
        if self.reload_fails:
            raise ProxyReloadFailed("reload failed")
        self.reloads += 1

    def restart(self) -> None:
        if self.restart_fails:
            raise ProxyReloadFailed("restart failed")
        self.restarts += 1


class FakeCertificateSource:
    """Serves material per domain; domains in ``broken`` raise CertificateSourceError."""

    def __init__(self):
        self.material: dict[str, CertificateMaterial] = {}
        self.broken: set[str] = set()
        self.requests: list[tuple[str, str]] = []

    def issue(self, domain: str, cert: bytes = b"CERT\n", key: bytes = b"KEY\n") -> None:
        self.material[domain] = CertificateMaterial(
            cert=cert, key=key, issued_externally=True, changed=True
        )

    def get_certificate(self, instance_name: str, domain: str) -> CertificateMaterial:
        self.requests.append((instance_name, domain))
        if domain in self.broken:
            raise CertificateSourceError(f"Cannot read ACME store for {domain}")
        return self.material.get(domain, CertificateMaterial())


@pytest.fixture
def tmp_config(tmp_path: Path) -> DbProxyConfig:
    """Return a DbProxyConfig pointing at temp directories."""
    return DbProxyConfig(
        state_dir=tmp_path / "state",
        cert_dir=tmp_path / "certs",
        acme_store_path=tmp_path / "acme.json",
        cert_sync_interval_minutes=60,
        cert_sync_warmup_seconds=30,
        cert_sync_debounce_seconds=5,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def proxy() -> FakeProxy:
    return FakeProxy()


@pytest.fixture
def cert_source() -> FakeCertificateSource:
    return FakeCertificateSource()


@pytest.fixture
def engine(tmp_config, runtime, proxy, cert_source, clock) -> RoutingEngine:
    return RoutingEngine(
        tmp_config,
        runtime=runtime,
        certificate_source=cert_source,
        proxy=proxy,
        clock=clock,
    )
