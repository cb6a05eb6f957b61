from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol

import boto3
import yaml

from .cache import StackCache
from .db import utc_now
from .errors import UpstreamError, UpstreamNotFoundError
from .settings import settings
from .upstream import stack_parameters, stack_tags, translate_errors


@dataclass(frozen=True)
class App:
    name: str
    stack_name: str
    status: str = ""
    release: str = ""


@dataclass(frozen=True)
class Release:
    id: str
    app: str
    manifest: str = ""
    created: str = ""


@dataclass(frozen=True)
class ManifestEntry:
    name: str
    image: str = ""
    ports: list[str] = field(default_factory=list)

    def external_ports(self) -> list[str]:
        # "80:5000" is published on the balancer; a bare "5000" is internal.
        return [p for p in self.ports if ":" in p]


@dataclass(frozen=True)
class FormationEntry:
    name: str
    count: int
    memory: int = 0


@dataclass(frozen=True)
class Formation:
    entries: dict[str, FormationEntry]

    def entry(self, process: str) -> FormationEntry | None:
        return self.entries.get(upper_name(process))


def upper_name(name: str) -> str:
    """web-worker -> WebWorker"""
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[-_]", name) if part)


def load_manifest(data: str) -> list[ManifestEntry]:
    """Parse a release manifest: a YAML mapping of process name to settings."""
    try:
        doc = yaml.safe_load(data) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"invalid manifest: {e}") from e
    if not isinstance(doc, dict):
        raise ValueError("invalid manifest: expected a mapping of processes")

    entries: list[ManifestEntry] = []
    for name, body in sorted(doc.items()):
        body = body or {}
        if not isinstance(body, dict):
            raise ValueError(f"invalid manifest entry {name!r}")
        ports = [str(p) for p in body.get("ports") or []]
        entries.append(ManifestEntry(name=str(name), image=str(body.get("image", "")), ports=ports))
    return entries


def formation_from_parameters(params: dict[str, str]) -> Formation:
    entries: dict[str, FormationEntry] = {}
    for key, value in params.items():
        if not key.endswith("DesiredCount") or key == "DesiredCount":
            continue
        process = key[: -len("DesiredCount")]
        try:
            count = int(value)
        except ValueError:
            raise UpstreamError(f"invalid formation parameter {key}={value!r}") from None
        try:
            memory = int(params.get(f"{process}Memory", "0") or 0)
        except ValueError:
            memory = 0
        entries[process] = FormationEntry(name=process, count=count, memory=memory)
    return Formation(entries=entries)


class Registry(Protocol):
    def list_apps(self) -> list[App]: ...

    def latest_release(self, app: str) -> Release | None: ...

    def formation(self, app: str) -> Formation: ...


class StackRegistry:
    """Applications are tagged stacks; releases live in a DynamoDB table."""

    def __init__(
        self,
        cache: StackCache,
        table: str | None = None,
        system_tag: str | None = None,
        session: boto3.session.Session | None = None,
    ):
        self.cache = cache
        self.table = table or settings.releases_table
        self.system_tag = system_tag or settings.system_tag
        session = session or boto3.session.Session(region_name=settings.aws_region)
        self._dynamo = session.client("dynamodb")
        self._stack_names: dict[str, str] = {}

    def list_apps(self) -> list[App]:
        apps: list[App] = []
        for stack in self.cache.describe_stacks():
            tags = stack_tags(stack)
            if tags.get("System") != self.system_tag or tags.get("Type") != "app":
                continue
            params = stack_parameters(stack)
            name = tags.get("Name") or stack["StackName"]
            self._stack_names[name] = stack["StackName"]
            apps.append(
                App(name=name, stack_name=stack["StackName"], status=stack.get("StackStatus", ""), release=params.get("Release", ""))
            )
        return apps

    def latest_release(self, app: str) -> Release | None:
        with translate_errors("Query"):
            res = self._dynamo.query(
                TableName=self.table,
                IndexName="app.created",
                KeyConditionExpression="app = :app",
                ExpressionAttributeValues={":app": {"S": app}},
                ScanIndexForward=False,
                Limit=1,
            )
        items = res.get("Items", [])
        if not items:
            return None
        item = items[0]
        return Release(
            id=item["id"]["S"],
            app=item.get("app", {}).get("S", app),
            manifest=item.get("manifest", {}).get("S", ""),
            created=item.get("created", {}).get("S", ""),
        )

    def formation(self, app: str) -> Formation:
        stacks = self.cache.describe_stack(self._stack_names.get(app, app))
        if len(stacks) != 1:
            raise UpstreamNotFoundError(f"could not load stack for app: {app}")
        return formation_from_parameters(stack_parameters(stacks[0]))

    def record_release(self, app: str, release_id: str) -> None:
        with translate_errors("PutItem"):
            self._dynamo.put_item(
                TableName=self.table,
                Item={"id": {"S": release_id}, "app": {"S": app}, "created": {"S": utc_now()}},
            )
