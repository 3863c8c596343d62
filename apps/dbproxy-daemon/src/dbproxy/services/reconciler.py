"""Compare stored ports with live container ports and correct drift."""

from __future__ import annotations

import logging
from collections import Counter

from dbproxy_common import LOOPBACK, MappingCheck, PortFix, ProtocolFamily, ReconcileReport

from dbproxy.errors import ContainerRuntimeError, PortResolutionUnknown
from dbproxy.services.oracle import ContainerPortOracle
from dbproxy.services.store import BackendStore

log = logging.getLogger(__name__)


class PortReconciler:
    """Best-effort sweep: the live container is authoritative, the store is its cache."""

    def __init__(self, oracle: ContainerPortOracle):
        self.oracle = oracle

    def reconcile(self, store: BackendStore) -> ReconcileReport:
        """Adopt live ports, except where two same-family backends would then share one."""
        report = ReconcileReport()
        entries = store.all()
        proposed: dict[str, int] = {}
        for entry in entries:
            proposed[entry.instance_name] = entry.internal_port
            try:
                proposed[entry.instance_name] = self._resolve(entry.instance_name, entry.family)
            except PortResolutionUnknown as exc:
                report.error_count += 1
                report.missing.append(entry.instance_name)
                log.warning("%s (domain=%s)", exc, entry.domain)
            except ContainerRuntimeError as exc:
                report.error_count += 1
                log.error("Failed to verify port for %s (domain=%s): %s", entry.instance_name, entry.domain, exc)

        # reverting one fix can expose another collision, so repeat until stable
        reverted = True
        while reverted:
            reverted = False
            claims = Counter((e.family, proposed[e.instance_name]) for e in entries)
            for entry in entries:
                port = proposed[entry.instance_name]
                if port == entry.internal_port or claims[(entry.family, port)] == 1:
                    continue
                report.error_count += 1
                log.error(
                    "Live port %d of %s (domain=%s) is claimed by another %s backend, keeping stored port %d",
                    port, entry.instance_name, entry.domain, entry.family.value, entry.internal_port,
                )
                proposed[entry.instance_name] = entry.internal_port
                reverted = True
                break

        for entry in entries:
            actual = proposed[entry.instance_name]
            if actual == entry.internal_port:
                continue
            log.warning(
                "Port drift for %s (domain=%s): stored=%d live=%d, updating store",
                entry.instance_name, entry.domain, entry.internal_port, actual,
            )
            store.upsert(entry.model_copy(update={"internal_port": actual}))
            report.fixes.append(
                PortFix(
                    instance_name=entry.instance_name,
                    domain=entry.domain,
                    old_port=entry.internal_port,
                    new_port=actual,
                )
            )

        report.fixed_count = len(report.fixes)
        return report

    def check(self, store: BackendStore) -> list[MappingCheck]:
        """Read-only report of every mapping against its live container."""
        results: list[MappingCheck] = []
        for entry in store.all():
            try:
                actual = self._resolve(entry.instance_name, entry.family)
            except (PortResolutionUnknown, ContainerRuntimeError) as exc:
                log.warning("Could not check %s: %s", entry.instance_name, exc)
                results.append(
                    MappingCheck(
                        instance_name=entry.instance_name,
                        domain=entry.domain,
                        expected_port=entry.internal_port,
                        status="missing",
                        routing=f"{entry.routing} (unresolved)",
                    )
                )
                continue
            results.append(
                MappingCheck(
                    instance_name=entry.instance_name,
                    domain=entry.domain,
                    expected_port=entry.internal_port,
                    actual_port=actual,
                    status="valid" if actual == entry.internal_port else "invalid",
                    routing=f"{entry.domain}:{entry.public_port} -> {LOOPBACK}:{actual}",
                )
            )
        return results

    def _resolve(self, instance_name: str, family: ProtocolFamily) -> int:
        actual = self.oracle.resolve_actual_port(instance_name, family)
        if actual is None:
            raise PortResolutionUnknown(f"Live port unknown for {instance_name}: no container or binding")
        return actual
