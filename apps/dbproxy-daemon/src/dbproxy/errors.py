"""Custom exceptions for the dbproxy daemon and CLI."""

from __future__ import annotations


class DbProxyError(Exception):
    """Base exception for all dbproxy operations."""

    def __init__(self, message: str, *, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


class ConflictError(DbProxyError):
    """A backend mutation would break a store invariant."""


class DomainConflict(ConflictError):
    """The domain is already routed to another instance."""

    def __init__(self, domain: str, owner_instance: str, owner_port: int):
        super().__init__(
            f"Domain conflict: {domain} is already mapped to instance {owner_instance} "
            f"on port {owner_port}",
            exit_code=2,
        )
        self.domain = domain
        self.owner_instance = owner_instance
        self.owner_port = owner_port


class PortConflict(ConflictError):
    """The internal port is already used by another instance of the same family."""

    def __init__(self, port: int, family: str, owner_instance: str, owner_domain: str):
        super().__init__(
            f"Port conflict: {family} port {port} is already used by instance "
            f"{owner_instance} ({owner_domain})",
            exit_code=2,
        )
        self.port = port
        self.family = family
        self.owner_instance = owner_instance
        self.owner_domain = owner_domain


class InvalidBackendError(DbProxyError):
    """Instance name, domain or port rejected by the backend model."""


class BackendNotFoundError(DbProxyError):
    """Requested backend entry does not exist."""


class CertificateSourceError(DbProxyError):
    """Certificate could not be obtained from the certificate source."""


class ContainerRuntimeError(DbProxyError):
    """Container runtime is unreachable or returned an error."""


class ContainerRestartError(DbProxyError):
    """Tenant container could not be restarted."""


class PortResolutionUnknown(DbProxyError):
    """The live port of an instance could not be determined."""


class ProxyConfigInvalid(DbProxyError):
    """Generated HAProxy configuration failed the syntax check."""


class ProxyReloadFailed(DbProxyError):
    """HAProxy could not be reloaded (or restarted)."""
