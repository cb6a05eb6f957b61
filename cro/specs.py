from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import InvalidPropertyError


@dataclass(frozen=True)
class LoadBalancerBinding:
    name: str
    container: str
    port: int

    def to_api(self) -> dict[str, Any]:
        return {"loadBalancerName": self.name, "containerName": self.container, "containerPort": self.port}


@dataclass(frozen=True)
class ServiceSpec:
    cluster: str
    name: str
    desired_count: int
    task_definition: str
    # At most one balancer can be bound to a service.
    load_balancer: LoadBalancerBinding | None = None
    role: str | None = None


@dataclass(frozen=True)
class PortMapping:
    host: int
    container: int

    def to_api(self) -> dict[str, Any]:
        return {"hostPort": self.host, "containerPort": self.container}


@dataclass(frozen=True)
class ContainerSpec:
    name: str
    image: str
    cpu: int
    memory: int
    port_mappings: list[PortMapping]
    command: list[str] | None = None
    links: list[str] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)

    def to_api(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "image": self.image,
            "essential": True,
            "cpu": self.cpu,
            "memory": self.memory,
            "portMappings": [p.to_api() for p in self.port_mappings],
            "environment": [{"name": k, "value": v} for k, v in sorted(self.environment.items())],
        }
        if self.command:
            out["command"] = list(self.command)
        if self.links:
            out["links"] = list(self.links)
        return out


@dataclass(frozen=True)
class TaskSpec:
    family: str
    containers: list[ContainerSpec]

    def to_api(self) -> dict[str, Any]:
        return {"family": self.family, "containerDefinitions": [c.to_api() for c in self.containers]}


@dataclass(frozen=True)
class TaskDefinitionRevision:
    """A registered, immutable task definition version."""

    family: str
    revision: int
    arn: str


def _parse_int(raw: str, field_name: str, what: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise InvalidPropertyError(field_name, f"{what} is not an integer: {raw!r}") from None


def parse_load_balancer(raw: str, field_name: str = "LoadBalancers") -> LoadBalancerBinding:
    """Parse ``name:containerName:port``."""
    parts = raw.split(":", 2)
    if len(parts) != 3 or not all(parts):
        raise InvalidPropertyError(field_name, f"invalid load balancer specification: {raw!r}")
    name, container, port = parts
    return LoadBalancerBinding(name=name, container=container, port=_parse_int(port, field_name, "port"))


def parse_port_mapping(raw: str, field_name: str = "PortMappings") -> PortMapping:
    """Parse ``host:container``."""
    parts = raw.split(":")
    if len(parts) != 2:
        raise InvalidPropertyError(field_name, f"invalid port mapping: {raw!r}")
    return PortMapping(
        host=_parse_int(parts[0], field_name, "host port"),
        container=_parse_int(parts[1], field_name, "container port"),
    )


def shell_command(command: str) -> list[str] | None:
    if not command:
        return None
    return ["sh", "-c", command]
