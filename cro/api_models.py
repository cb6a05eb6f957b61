from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidPropertyError

M = TypeVar("M", bound=BaseModel)


class ResourceEvent(BaseModel):
    """One lifecycle notification as delivered by the template engine."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str = Field(..., alias="RequestType", description="Create|Update|Delete")
    kind: str = Field(..., alias="ResourceType", description="e.g. Custom::ECSService")
    properties: dict[str, Any] = Field(default_factory=dict, alias="ResourceProperties")
    physical_id: str = Field("", alias="PhysicalResourceId")
    logical_id: str = Field("", alias="LogicalResourceId")
    stack_id: str = Field("", alias="StackId")
    request_id: str = Field("", alias="RequestId")
    response_url: str | None = Field(None, alias="ResponseURL")


class _Properties(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ServiceRef(_Properties):
    cluster: str = Field(..., alias="Cluster", min_length=1)
    name: str = Field(..., alias="Name", min_length=1)


class ServiceProperties(ServiceRef):
    desired_count: int = Field(..., alias="DesiredCount", ge=0)
    task_definition: str = Field(..., alias="TaskDefinition", min_length=1)
    load_balancers: list[str] = Field(default_factory=list, alias="LoadBalancers")
    role: str | None = Field(None, alias="Role")

    @field_validator("load_balancers", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class ContainerProperties(_Properties):
    name: str = Field(..., alias="Name", min_length=1)
    image: str = Field(..., alias="Image", min_length=1)
    cpu: int = Field(0, alias="CPU")
    memory: int = Field(0, alias="Memory")
    command: str = Field("", alias="Command")
    links: list[str] = Field(default_factory=list, alias="Links")
    port_mappings: list[str] = Field(..., alias="PortMappings", min_length=1)

    @field_validator("cpu", "memory", mode="before")
    @classmethod
    def _int_or_zero(cls, v: Any) -> int:
        # Unparseable resource sizes fall back to 0 and let the API default them.
        try:
            return int(v)
        except (TypeError, ValueError):
            return 0

    @field_validator("command", mode="before")
    @classmethod
    def _none_is_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("links", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class TaskDefinitionProperties(_Properties):
    family: str = Field(..., alias="Name", min_length=1)
    environment_url: str | None = Field(None, alias="Environment")
    tasks: list[ContainerProperties] = Field(..., alias="Tasks", min_length=1)


class RackScaleRequest(BaseModel):
    count: int = Field(..., ge=0, description="Requested instance count")
    type: str = Field(..., min_length=1, description="Instance class, e.g. t3.small")
    version: str = Field(..., min_length=1, description="Rack release version")


class SystemInfo(BaseModel):
    name: str
    count: int
    type: str
    status: str
    version: str


def _field_name(loc: tuple[Any, ...]) -> str:
    out = ""
    for part in loc:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out or "<properties>"


def decode_properties(model: type[M], properties: dict[str, Any]) -> M:
    """Validate a raw property bag against a schema.

    Raises InvalidPropertyError naming the first failing field.
    """
    try:
        return model.model_validate(properties or {})
    except ValidationError as e:
        first = e.errors()[0]
        raise InvalidPropertyError(_field_name(tuple(first.get("loc", ()))), first.get("msg", "invalid")) from e
