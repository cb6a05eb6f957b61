from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from . import db
from .api_models import (
    ResourceEvent,
    ServiceProperties,
    ServiceRef,
    TaskDefinitionProperties,
    decode_properties,
)
from .envfetch import fetch_environment
from .errors import InvalidPropertyError, UnsupportedResourceError, UpstreamError, UpstreamNotFoundError
from .specs import ContainerSpec, ServiceSpec, TaskSpec, parse_load_balancer, parse_port_mapping, shell_command
from .upstream import Orchestrator

SERVICE_KIND = "Custom::ECSService"
TASK_DEFINITION_KIND = "Custom::ECSTaskDefinition"


class Outcome(str, Enum):
    APPLIED = "applied"
    DELETED = "deleted"
    # Target was already gone.
    ALREADY_DELETED = "already_deleted"
    # Delete failed upstream but is reported as done so teardown can proceed.
    SOFT_FAILED = "soft_failed"
    # Nothing to remove upstream for this kind.
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ReconcileResult:
    physical_id: str
    outcome: Outcome = Outcome.APPLIED
    reason: str = ""


class ServiceReconciler:
    """Create/update/delete a compute service."""

    def __init__(self, orchestrator: Orchestrator):
        self.orchestrator = orchestrator

    def create(self, event: ResourceEvent) -> ReconcileResult:
        props = decode_properties(ServiceProperties, event.properties)

        binding = None
        if props.load_balancers:
            # A service binds at most one balancer; extra entries are ignored.
            binding = parse_load_balancer(props.load_balancers[0])
            if not props.role:
                raise InvalidPropertyError("Role", "required when a load balancer is attached")
            if len(props.load_balancers) > 1:
                db.log_event(
                    "WARN",
                    f"ignoring {len(props.load_balancers) - 1} extra load balancer(s): {props.load_balancers[1:]}",
                    kind=event.kind,
                    resource=event.logical_id,
                )

        spec = ServiceSpec(
            cluster=props.cluster,
            name=props.name,
            desired_count=props.desired_count,
            task_definition=props.task_definition,
            load_balancer=binding,
            role=props.role if binding else None,
        )
        arn = self.orchestrator.create_service(spec)
        db.log_event("INFO", f"Created service {spec.name} count={spec.desired_count}", kind=event.kind, resource=event.logical_id)
        return ReconcileResult(physical_id=arn)

    def update(self, event: ResourceEvent) -> ReconcileResult:
        props = decode_properties(ServiceProperties, event.properties)
        arn = self.orchestrator.update_service(
            props.cluster, props.name, desired_count=props.desired_count, task_definition=props.task_definition
        )
        db.log_event("INFO", f"Updated service {props.name} count={props.desired_count}", kind=event.kind, resource=event.logical_id)
        return ReconcileResult(physical_id=arn)

    def delete(self, event: ResourceEvent) -> ReconcileResult:
        """Scale to zero, then delete. Never fails on upstream errors."""
        try:
            ref = decode_properties(ServiceRef, event.properties)
        except InvalidPropertyError as e:
            # Create needs the same fields, so no service can exist for this bag.
            db.log_event("WARN", f"Delete with unusable properties treated as already deleted: {e}", kind=event.kind, resource=event.logical_id)
            return ReconcileResult(event.physical_id, Outcome.ALREADY_DELETED, str(e))
        try:
            self.orchestrator.update_service(ref.cluster, ref.name, desired_count=0)
            self.orchestrator.delete_service(ref.cluster, ref.name)
        except UpstreamNotFoundError as e:
            db.log_event("WARN", f"Service {ref.name} already deleted: {e}", kind=event.kind, resource=event.logical_id)
            return ReconcileResult(event.physical_id, Outcome.ALREADY_DELETED, str(e))
        except UpstreamError as e:
            db.log_event(
                "WARN",
                f"Delete of service {ref.name} failed, reporting it as deleted: {e}",
                kind=event.kind,
                resource=event.logical_id,
            )
            return ReconcileResult(event.physical_id, Outcome.SOFT_FAILED, str(e))
        db.log_event("INFO", f"Deleted service {ref.name}", kind=event.kind, resource=event.logical_id)
        return ReconcileResult(event.physical_id, Outcome.DELETED)


class TaskDefinitionReconciler:
    """Registers a new task definition revision on every create or update."""

    def __init__(self, orchestrator: Orchestrator, env_fetcher: Callable[[str | None], dict[str, str]] = fetch_environment):
        self.orchestrator = orchestrator
        self.env_fetcher = env_fetcher

    def build_spec(self, event: ResourceEvent) -> TaskSpec:
        props = decode_properties(TaskDefinitionProperties, event.properties)
        env = self.env_fetcher(props.environment_url)

        containers: list[ContainerSpec] = []
        for i, task in enumerate(props.tasks):
            field = f"Tasks[{i}].PortMappings"
            containers.append(
                ContainerSpec(
                    name=task.name,
                    image=task.image,
                    cpu=task.cpu,
                    memory=task.memory,
                    command=shell_command(task.command),
                    links=list(task.links),
                    environment=dict(env),
                    port_mappings=[parse_port_mapping(p, field) for p in task.port_mappings],
                )
            )
        return TaskSpec(family=props.family, containers=containers)

    def create(self, event: ResourceEvent) -> ReconcileResult:
        spec = self.build_spec(event)
        rev = self.orchestrator.register_task_definition(spec)
        db.log_event(
            "INFO",
            f"Registered task definition {rev.family}:{rev.revision} ({len(spec.containers)} containers)",
            kind=event.kind,
            resource=event.logical_id,
        )
        return ReconcileResult(physical_id=rev.arn)

    # Definitions are immutable; an update is a new revision and a new physical id.
    update = create

    def delete(self, event: ResourceEvent) -> ReconcileResult:
        # Deregistration is not supported for this kind.
        db.log_event("INFO", f"Delete of task definition {event.physical_id} is a no-op", kind=event.kind, resource=event.logical_id)
        return ReconcileResult(event.physical_id, Outcome.SKIPPED, "deregistration not supported")


class ResourceRouter:
    """Dispatches lifecycle events by (kind, action)."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        env_fetcher: Callable[[str | None], dict[str, str]] = fetch_environment,
    ):
        self.reconcilers = {
            SERVICE_KIND: ServiceReconciler(orchestrator),
            TASK_DEFINITION_KIND: TaskDefinitionReconciler(orchestrator, env_fetcher),
        }

    def handle(self, event: ResourceEvent) -> ReconcileResult:
        reconciler = self.reconcilers.get(event.kind)
        if reconciler is None:
            raise UnsupportedResourceError(event.kind, event.action)
        handler = {
            "Create": reconciler.create,
            "Update": reconciler.update,
            "Delete": reconciler.delete,
        }.get(event.action)
        if handler is None:
            raise UnsupportedResourceError(event.kind, event.action)

        db.log_event("INFO", f"{event.action} {event.kind}", kind=event.kind, resource=event.logical_id)
        return handler(event)
