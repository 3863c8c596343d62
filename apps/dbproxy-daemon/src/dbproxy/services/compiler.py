"""Jinja2-based HAProxy config compiler.

``compile_config`` is pure: the same entries and certificate bundles always
produce byte-identical text. Per protocol family it picks one routing
strategy:

* ``single``   one entry, plain TCP frontend with an unconditional default backend
* ``sni``      two or more entries, all with a TLS bundle: TLS-terminating
               frontend with one SNI rule per entry and no default backend
* ``fallback`` two or more entries, TLS missing for at least one: plain TCP
               frontend defaulting to the first entry, plus dedicated frontends
               for entries that carry an ``external_port``
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping

from jinja2 import Environment, FileSystemLoader, select_autoescape

from dbproxy_common import BackendEntry, ProtocolFamily
from dbproxy_common.constants import HAPROXY_GROUP, HAPROXY_USER, LOOPBACK, STATS_PORT

_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

FAMILY_ORDER = (ProtocolFamily.POSTGRES, ProtocolFamily.MYSQL, ProtocolFamily.MONGODB)


@dataclass
class FrontendPlan:
    family: ProtocolFamily
    strategy: str
    entries: list[BackendEntry]
    bundles: list[Path] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f"{self.family.value}_frontend"

    @property
    def port(self) -> int:
        return self.family.standard_port

    @property
    def default(self) -> BackendEntry:
        return self.entries[0]

    @property
    def bind(self) -> str:
        if self.strategy == "sni":
            crts = " ".join(f"crt {bundle}" for bundle in self.bundles)
            return f"*:{self.port} ssl {crts}"
        return f"*:{self.port}"

    @property
    def dedicated(self) -> list[BackendEntry]:
        if self.strategy != "fallback":
            return []
        return [e for e in self.entries[1:] if e.external_port]


def _get_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=select_autoescape([]),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def group_by_family(entries: Iterable[BackendEntry]) -> dict[ProtocolFamily, list[BackendEntry]]:
    """Split entries per family, keeping iteration order inside each family."""
    groups: dict[ProtocolFamily, list[BackendEntry]] = {family: [] for family in FAMILY_ORDER}
    for entry in entries:
        groups[entry.family].append(entry)
    return groups


def tls_ready(entries: Iterable[BackendEntry], tls_bundles: Mapping[str, Path]) -> bool:
    return all(e.instance_name in tls_bundles for e in entries)


def plan_frontends(
    entries: Iterable[BackendEntry], tls_bundles: Mapping[str, Path] | None = None
) -> list[FrontendPlan]:
    tls_bundles = tls_bundles or {}
    plans: list[FrontendPlan] = []
    for family, group in group_by_family(entries).items():
        if not group:
            continue
        if len(group) == 1:
            plans.append(FrontendPlan(family, "single", group))
        elif tls_ready(group, tls_bundles):
            bundles = [tls_bundles[e.instance_name] for e in group]
            plans.append(FrontendPlan(family, "sni", group, bundles))
        else:
            plans.append(FrontendPlan(family, "fallback", group))
    return plans


def compile_config(
    entries: Iterable[BackendEntry],
    *,
    tls_bundles: Mapping[str, Path] | None = None,
    stats_port: int = STATS_PORT,
    proxy_user: str = HAPROXY_USER,
    proxy_group: str = HAPROXY_GROUP,
) -> str:
    """Render the full HAProxy configuration for a store snapshot."""
    entries = list(entries)
    duplicates = [
        name for name, count in Counter(e.backend_name for e in entries).items() if count > 1
    ]
    if duplicates:
        raise ValueError(f"Instance names collide after sanitising: {', '.join(sorted(duplicates))}")

    template = _get_env().get_template("haproxy.cfg.j2")
    return template.render(
        plans=plan_frontends(entries, tls_bundles),
        stats_port=stats_port,
        loopback=LOOPBACK,
        user=proxy_user,
        group=proxy_group,
    )


def plan_fallback_ports(
    entries: Iterable[BackendEntry],
    tls_bundles: Mapping[str, Path] | None = None,
    *,
    enabled: bool = True,
    reserved: Iterable[int] = (),
) -> list[BackendEntry]:
    """Assign or clear dedicated fallback ports; returns entries in input order.

    Only families with two or more entries and incomplete TLS need them. The
    first entry of such a family is the shared port's default backend and
    never gets one. Existing assignments are kept while still free.
    """
    entries = list(entries)
    tls_bundles = tls_bundles or {}
    taken = {e.internal_port for e in entries} | {f.standard_port for f in FAMILY_ORDER} | set(reserved)

    needing: list[BackendEntry] = []
    for family, group in group_by_family(entries).items():
        if enabled and len(group) > 1 and not tls_ready(group, tls_bundles):
            needing.extend(group[1:])

    assigned: dict[str, int] = {}
    for entry in needing:
        if entry.external_port and entry.external_port not in taken:
            assigned[entry.instance_name] = entry.external_port
            taken.add(entry.external_port)
    for entry in needing:
        if entry.instance_name in assigned:
            continue
        port = entry.family.fallback_port_base
        while port in taken:
            port += 1
        assigned[entry.instance_name] = port
        taken.add(port)

    result = []
    for entry in entries:
        external_port = assigned.get(entry.instance_name)
        if external_port != entry.external_port:
            entry = entry.model_copy(update={"external_port": external_port})
        result.append(entry)
    return result
