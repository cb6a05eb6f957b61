from __future__ import annotations

from typing import Any, Callable, Protocol

import httpx

from . import db
from .api_models import RackScaleRequest, SystemInfo
from .cache import StackCache
from .errors import DependencyFetchError, ScaleViolationError, UpstreamError, UpstreamNotFoundError
from .registry import Registry, load_manifest
from .settings import settings
from .upstream import stack_parameters


class ScaleValidator:
    """Keeps rack capacity at least one instance above the largest public process."""

    def __init__(self, registry: Registry):
        self.registry = registry

    def max_required_concurrency(self) -> int:
        """Max instance count over every process that exposes an external port.

        Any registry failure propagates; a partial view would make the gate unsound.
        """
        highest = 0
        for app in self.registry.list_apps():
            release = self.registry.latest_release(app.name)
            if release is None:
                continue
            try:
                manifest = load_manifest(release.manifest)
            except ValueError as e:
                raise UpstreamError(f"app {app.name} release {release.id}: {e}") from e
            formation = self.registry.formation(app.name)
            for entry in manifest:
                if not entry.external_ports():
                    continue
                fe = formation.entry(entry.name)
                if fe is not None and fe.count > highest:
                    highest = fe.count
        return highest

    def validate(self, request: RackScaleRequest) -> int:
        mac = self.max_required_concurrency()
        if request.count < mac + 1:
            raise ScaleViolationError(mac, request.count)
        return mac


class ReleaseRecorder(Protocol):
    def record_release(self, app: str, release_id: str) -> None: ...


def fetch_template_parameters(url: str, timeout_s: float | None = None) -> set[str]:
    """Names of the parameters a stack template declares."""
    timeout = settings.http_timeout_s if timeout_s is None else timeout_s
    try:
        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            resp = client.get(url)
        resp.raise_for_status()
        template = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise DependencyFetchError(f"template fetch failed: {type(e).__name__}: {e}") from e
    if not isinstance(template, dict):
        raise DependencyFetchError("template fetch failed: not a JSON object")
    return set((template.get("Parameters") or {}).keys())


class SystemManager:
    """Reads and resizes the rack's own stack."""

    def __init__(
        self,
        cache: StackCache,
        validator: ScaleValidator,
        releases: ReleaseRecorder,
        rack: str | None = None,
        template_fetcher: Callable[[str], set[str]] = fetch_template_parameters,
    ):
        self.cache = cache
        self.validator = validator
        self.releases = releases
        self.rack = rack if rack is not None else settings.rack
        self.template_fetcher = template_fetcher

    def _stack(self) -> dict[str, Any]:
        stacks = self.cache.describe_stack(self.rack)
        if len(stacks) != 1:
            raise UpstreamNotFoundError(f"could not load stack for rack: {self.rack}")
        return stacks[0]

    def get(self) -> SystemInfo:
        stack = self._stack()
        params = stack_parameters(stack)
        try:
            count = int(params.get("InstanceCount", ""))
        except ValueError:
            raise UpstreamError(f"invalid InstanceCount on rack stack: {params.get('InstanceCount')!r}") from None
        return SystemInfo(
            name=self.rack,
            count=count,
            type=params.get("InstanceType", ""),
            status=stack.get("StackStatus", ""),
            version=params.get("Version", ""),
        )

    def save(self, request: RackScaleRequest) -> None:
        mac = self.validator.validate(request)

        params = stack_parameters(self._stack())
        new_version = request.version != params.get("Version")

        url = settings.template_url.format(version=request.version)
        declared = self.template_fetcher(url)

        params["InstanceCount"] = str(request.count)
        params["InstanceType"] = request.type
        params["Version"] = request.version
        # Parameters the new template dropped must not be sent.
        params = {k: v for k, v in params.items() if k in declared}

        self.cache.update_stack(self.rack, url, params, ["CAPABILITY_IAM"])
        db.log_event(
            "INFO",
            f"Rack update count={request.count} type={request.type} version={request.version} (max concurrency {mac})",
            resource=self.rack,
        )

        if new_version:
            self.releases.record_release(self.rack, request.version)
