from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import UpstreamError, UpstreamNotFoundError
from .settings import settings
from .specs import ServiceSpec, TaskDefinitionRevision, TaskSpec

NOT_FOUND_CODES = {"ServiceNotFoundException", "ServiceNotActiveException"}


class Orchestrator(Protocol):
    """Calls the orchestration API makes available to the reconcilers and the cache."""

    def create_service(self, spec: ServiceSpec) -> str: ...

    def update_service(
        self, cluster: str, name: str, desired_count: int, task_definition: str | None = None
    ) -> str: ...

    def delete_service(self, cluster: str, name: str) -> None: ...

    def register_task_definition(self, spec: TaskSpec) -> TaskDefinitionRevision: ...

    def describe_stacks(self, name: str | None = None) -> list[dict[str, Any]]: ...

    def update_stack(
        self, name: str, template_url: str, parameters: dict[str, str], capabilities: list[str]
    ) -> None: ...


@contextmanager
def translate_errors(action: str) -> Iterator[None]:
    """Classify boto errors into not-found vs. everything else."""
    try:
        yield
    except ClientError as e:
        err = e.response.get("Error", {})
        code = err.get("Code", "ClientError")
        message = err.get("Message", str(e))
        if code in NOT_FOUND_CODES or (code == "ValidationError" and "does not exist" in message):
            raise UpstreamNotFoundError(f"{action}: {message}", code=code) from e
        raise UpstreamError(f"{action}: {code}: {message}", code=code) from e
    except BotoCoreError as e:
        raise UpstreamError(f"{action}: {type(e).__name__}: {e}") from e


class AwsOrchestrator:
    """ECS services/task definitions and CloudFormation stacks via boto3."""

    def __init__(self, region: str | None = None, session: boto3.session.Session | None = None):
        session = session or boto3.session.Session(region_name=region or settings.aws_region)
        self._ecs = session.client("ecs")
        self._cfn = session.client("cloudformation")

    def create_service(self, spec: ServiceSpec) -> str:
        kwargs: dict[str, Any] = {
            "cluster": spec.cluster,
            "serviceName": spec.name,
            "taskDefinition": spec.task_definition,
            "desiredCount": spec.desired_count,
        }
        if spec.load_balancer is not None:
            kwargs["loadBalancers"] = [spec.load_balancer.to_api()]
            kwargs["role"] = spec.role
        with translate_errors("CreateService"):
            res = self._ecs.create_service(**kwargs)
        return res["service"]["serviceArn"]

    def update_service(
        self, cluster: str, name: str, desired_count: int, task_definition: str | None = None
    ) -> str:
        kwargs: dict[str, Any] = {"cluster": cluster, "service": name, "desiredCount": desired_count}
        if task_definition:
            kwargs["taskDefinition"] = task_definition
        with translate_errors("UpdateService"):
            res = self._ecs.update_service(**kwargs)
        return res["service"]["serviceArn"]

    def delete_service(self, cluster: str, name: str) -> None:
        with translate_errors("DeleteService"):
            self._ecs.delete_service(cluster=cluster, service=name)

    def register_task_definition(self, spec: TaskSpec) -> TaskDefinitionRevision:
        with translate_errors("RegisterTaskDefinition"):
            res = self._ecs.register_task_definition(**spec.to_api())
        td = res["taskDefinition"]
        return TaskDefinitionRevision(family=td["family"], revision=int(td["revision"]), arn=td["taskDefinitionArn"])

    def describe_stacks(self, name: str | None = None) -> list[dict[str, Any]]:
        kwargs: dict[str, Any] = {"StackName": name} if name else {}
        stacks: list[dict[str, Any]] = []
        with translate_errors("DescribeStacks"):
            for page in self._cfn.get_paginator("describe_stacks").paginate(**kwargs):
                stacks.extend(page.get("Stacks", []))
        return stacks

    def update_stack(
        self, name: str, template_url: str, parameters: dict[str, str], capabilities: list[str]
    ) -> None:
        with translate_errors("UpdateStack"):
            self._cfn.update_stack(
                StackName=name,
                TemplateURL=template_url,
                Capabilities=capabilities,
                Parameters=[{"ParameterKey": k, "ParameterValue": v} for k, v in sorted(parameters.items())],
            )


def stack_parameters(stack: dict[str, Any]) -> dict[str, str]:
    return {p["ParameterKey"]: p.get("ParameterValue", "") for p in stack.get("Parameters", [])}


def stack_tags(stack: dict[str, Any]) -> dict[str, str]:
    return {t["Key"]: t.get("Value", "") for t in stack.get("Tags", [])}
