"""Pre-commit invariant checks for backend mutations."""

from __future__ import annotations

import logging
from typing import Iterable

from dbproxy_common import BackendEntry

from dbproxy.errors import ConflictError, DomainConflict, PortConflict

log = logging.getLogger(__name__)


def validate(candidate: BackendEntry, existing: Iterable[BackendEntry]) -> None:
    """Raise a ConflictError if ``candidate`` collides with another instance.

    Entries with the candidate's own instance name are updates, not conflicts.
    """
    others = [e for e in existing if e.instance_name != candidate.instance_name]

    domain = candidate.domain.lower()
    for entry in others:
        if entry.domain.lower() == domain:
            log.error(
                "Domain %s already mapped: owner=%s port=%d, rejected instance=%s port=%d",
                candidate.domain, entry.instance_name, entry.internal_port,
                candidate.instance_name, candidate.internal_port,
            )
            raise DomainConflict(candidate.domain, entry.instance_name, entry.internal_port)

    for entry in others:
        if entry.family == candidate.family and entry.internal_port == candidate.internal_port:
            log.error(
                "Port %d already in use: owner=%s domain=%s, rejected instance=%s domain=%s",
                candidate.internal_port, entry.instance_name, entry.domain,
                candidate.instance_name, candidate.domain,
            )
            raise PortConflict(
                candidate.internal_port, candidate.family.value, entry.instance_name, entry.domain
            )

    for entry in others:
        if entry.backend_name == candidate.backend_name:
            log.error(
                "Backend name %s already used by instance=%s, rejected instance=%s",
                candidate.backend_name, entry.instance_name, candidate.instance_name,
            )
            raise ConflictError(
                f"Backend name conflict: {candidate.instance_name} and {entry.instance_name} "
                f"both map to {candidate.backend_name}",
                exit_code=2,
            )
