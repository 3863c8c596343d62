"""Resolve an instance to the host port its live container is actually bound to."""

from __future__ import annotations

from typing import Protocol

from dbproxy_common import ContainerInfo, ProtocolFamily

from dbproxy.services.docker import find_container


class ContainerRuntime(Protocol):
    def list_containers(self) -> list[ContainerInfo]: ...

    def inspect_port_bindings(self, container_id: str, family: ProtocolFamily) -> int | None: ...

    def restart_container(self, instance_name: str) -> None: ...


class ContainerPortOracle(Protocol):
    def resolve_actual_port(self, instance_name: str, family: ProtocolFamily) -> int | None: ...


class RuntimePortOracle:
    """ContainerPortOracle over a container runtime.

    ``None`` means unknown (no container or no binding), never port zero.
    Runtime failures propagate as ContainerRuntimeError.
    """

    def __init__(self, runtime: ContainerRuntime):
        self.runtime = runtime

    def resolve_actual_port(self, instance_name: str, family: ProtocolFamily) -> int | None:
        container = find_container(self.runtime.list_containers(), instance_name)
        if container is None:
            return None
        return self.runtime.inspect_port_bindings(container.id, family)
