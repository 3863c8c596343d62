"""Docker SDK adapter: container listing, published ports and restarts."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import docker
from docker.errors import DockerException, NotFound

from dbproxy_common import ContainerInfo, ProtocolFamily
from dbproxy_common.constants import CONTAINER_RESTART_TIMEOUT, DOCKER_TIMEOUT

from dbproxy.errors import ContainerRestartError, ContainerRuntimeError

log = logging.getLogger(__name__)


def find_container(containers: Iterable[ContainerInfo], instance_name: str) -> ContainerInfo | None:
    """Pick the container for an instance: exact name, then ``*_<instance>``, then substring."""
    candidates = list(containers)
    for match in (
        lambda c: c.name == instance_name,
        lambda c: c.name.endswith(f"_{instance_name}"),
        lambda c: instance_name in c.name,
    ):
        for container in candidates:
            if match(container):
                return container
    return None


def parse_host_port(bindings: Any) -> int | None:
    """Return the first usable HostPort from a Docker port-binding list."""
    if not bindings:
        return None
    for binding in bindings:
        try:
            port = int(binding.get("HostPort") or "")
        except (AttributeError, TypeError, ValueError):
            continue
        if 0 < port <= 65535:
            return port
    return None


class DockerRuntime:
    """Container runtime collaborator backed by the Docker Engine API."""

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        *,
        timeout: int = DOCKER_TIMEOUT,
        restart_timeout: int = CONTAINER_RESTART_TIMEOUT,
    ):
        self._client = client
        self.timeout = timeout
        self.restart_timeout = restart_timeout

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self.timeout)
            except DockerException as exc:
                raise ContainerRuntimeError(f"Docker unavailable: {exc}") from exc
        return self._client

    def list_containers(self) -> list[ContainerInfo]:
        try:
            containers = self.client.containers.list(all=True)
        except (DockerException, OSError) as exc:
            raise ContainerRuntimeError(f"Failed to list containers: {exc}") from exc
        return [ContainerInfo(id=c.id, name=c.name, state=c.status) for c in containers]

    def inspect_port_bindings(self, container_id: str, family: ProtocolFamily) -> int | None:
        try:
            container = self.client.containers.get(container_id)
        except NotFound:
            return None
        except (DockerException, OSError) as exc:
            raise ContainerRuntimeError(f"Failed to inspect container {container_id}: {exc}") from exc
        ports = (container.attrs.get("NetworkSettings") or {}).get("Ports") or {}
        return parse_host_port(ports.get(family.container_port))

    def restart_container(self, instance_name: str) -> None:
        try:
            info = find_container(self.list_containers(), instance_name)
        except ContainerRuntimeError as exc:
            raise ContainerRestartError(str(exc)) from exc
        if info is None:
            raise ContainerRestartError(f"No container found for instance {instance_name}")
        try:
            self.client.containers.get(info.id).restart(timeout=self.restart_timeout)
        except (DockerException, OSError) as exc:
            raise ContainerRestartError(f"Failed to restart {info.name}: {exc}") from exc
        log.info("Restarted container %s for instance %s", info.name, instance_name)
