"""Persistent registry of backend entries, keyed by instance name."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from pydantic import ValidationError

from dbproxy_common import LOOPBACK, BackendEntry, ProtocolFamily

from dbproxy.services.files import atomic_write_text

log = logging.getLogger(__name__)

_BACKEND_BLOCK_RE = re.compile(
    r"^backend[ \t]+(?P<name>(?P<family>postgres|mysql|mongodb)_\S+)[ \t]*\n"
    r"(?P<body>(?:[ \t]+\S.*(?:\n|$))*)",
    re.MULTILINE,
)
_SERVER_RE = re.compile(
    r"^[ \t]+server[ \t]+(?P<instance>\S+)[ \t]+" + re.escape(LOOPBACK) + r":(?P<port>\d+)", re.MULTILINE
)
_HEADER_RE = re.compile(
    r"^#[ \t]*(?:PostgreSQL|MySQL|MongoDB):[ \t]+(?P<instance>\S+)[ \t]+\((?P<domain>[^)\s]+)\)[ \t]*$",
    re.MULTILINE,
)
# Matches both the TLS-terminating rule and the passthrough forms the first daemon generation wrote.
_SNI_RULE_RE = re.compile(
    r"use_backend[ \t]+(?P<name>\S+)[ \t]+if[ \t]+\{[ \t]*(?:ssl_fc_sni|req\.ssl_sni|req_ssl_sni)"
    r"(?:[ \t]+-m[ \t]+\w+)?[ \t]+-i[ \t]+\^?(?P<domain>[^\s}]+?)\$?[ \t]*\}"
)


def rebuild_from_config(text: str) -> list[BackendEntry]:
    """Reverse-engineer backend entries from a generated HAProxy configuration."""
    domains_by_instance = {m.group("instance"): m.group("domain") for m in _HEADER_RE.finditer(text)}
    domains_by_backend = {
        m.group("name"): m.group("domain").replace("\\", "") for m in _SNI_RULE_RE.finditer(text)
    }

    entries: dict[str, BackendEntry] = {}
    for block in _BACKEND_BLOCK_RE.finditer(text):
        server = _SERVER_RE.search(block.group("body"))
        if not server:
            continue
        instance = server.group("instance")
        if instance in entries:
            continue
        domain = (
            domains_by_instance.get(instance)
            or domains_by_backend.get(block.group("name"))
            or f"unknown-{instance}"
        )
        try:
            entries[instance] = BackendEntry(
                instance_name=instance,
                domain=domain,
                internal_port=int(server.group("port")),
                family=ProtocolFamily(block.group("family")),
            )
        except ValidationError as exc:
            log.warning("Skipping unrecoverable backend %s in %s: %s", instance, block.group("name"), exc)
    return list(entries.values())


class BackendStore:
    """JSON-backed store; every mutation is persisted atomically.

    When the JSON document is missing or unreadable the store is rebuilt from
    ``recovery_config`` (the last deployed HAProxy configuration).
    """

    def __init__(self, path: Path, *, recovery_config: Path | None = None):
        self.path = path
        self.recovery_config = recovery_config
        self._entries: dict[str, BackendEntry] = self._load()

    def get(self, instance_name: str) -> BackendEntry | None:
        return self._entries.get(instance_name)

    def all(self) -> list[BackendEntry]:
        return list(self._entries.values())

    def upsert(self, entry: BackendEntry) -> None:
        self._entries[entry.instance_name] = entry
        self._save()

    def remove(self, instance_name: str) -> bool:
        if self._entries.pop(instance_name, None) is None:
            return False
        self._save()
        return True

    def replace_all(self, entries: list[BackendEntry]) -> None:
        """Swap the whole snapshot (used to roll back a failed mutation)."""
        self._entries = {e.instance_name: e for e in entries}
        self._save()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, instance_name: object) -> bool:
        return instance_name in self._entries

    def _load(self) -> dict[str, BackendEntry]:
        if not self.path.exists():
            log.warning("Backend store %s not found, attempting rebuild from proxy config", self.path)
            return self._rebuild()
        try:
            raw = json.loads(self.path.read_text())
            if not isinstance(raw, dict):
                raise ValueError("top-level JSON value is not an object")
            entries = [BackendEntry.model_validate(data) for data in raw.values()]
        except (OSError, ValueError) as exc:
            log.warning("Backend store %s unreadable (%s), attempting rebuild from proxy config", self.path, exc)
            return self._rebuild()
        return {e.instance_name: e for e in entries}

    def _rebuild(self) -> dict[str, BackendEntry]:
        if self.recovery_config is None or not self.recovery_config.exists():
            log.warning("No proxy config to rebuild backends from, starting with an empty store")
            return {}
        try:
            entries = rebuild_from_config(self.recovery_config.read_text())
        except OSError as exc:
            log.warning("Could not read %s for backend rebuild: %s", self.recovery_config, exc)
            return {}
        rebuilt = {e.instance_name: e for e in entries}
        if rebuilt:
            log.warning("Rebuilt %d backend(s) from %s", len(rebuilt), self.recovery_config)
            self._entries = rebuilt
            self._save()
        return rebuilt

    def _save(self) -> None:
        doc = {name: entry.model_dump(mode="json") for name, entry in self._entries.items()}
        atomic_write_text(self.path, json.dumps(doc, indent=2) + "\n", mode=0o664)
        log.debug("Saved %d backend(s) to %s", len(doc), self.path)
