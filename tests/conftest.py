import os
import sys
import threading
import time

import pytest

# Ensure project root is importable (so `import main` works reliably across environments)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from cro import db  # noqa: E402
from cro.errors import UpstreamNotFoundError  # noqa: E402
from cro.registry import App, Formation, FormationEntry, Release, upper_name  # noqa: E402
from cro.settings import Settings  # noqa: E402
from cro.specs import TaskDefinitionRevision  # noqa: E402


@pytest.fixture(autouse=True)
def journal(tmp_path, monkeypatch):
    """Point the event journal at an isolated sqlite file."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "journal.db")))
    db.init_db()
    return db


class FakeOrchestrator:
    """In-memory orchestration API that records every call."""

    def __init__(self):
        self.calls = []
        self.services = {}
        self.revisions = {}
        self.stacks = {}
        self.fail = {}  # method name -> exception to raise
        self.describe_delay_s = 0.0
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    def _maybe_fail(self, method):
        exc = self.fail.get(method)
        if exc is not None:
            raise exc

    def create_service(self, spec):
        self.calls.append(("create_service", spec))
        self._maybe_fail("create_service")
        arn = f"arn:aws:ecs:us-east-1:123456789012:service/{spec.cluster}/{spec.name}"
        self.services[(spec.cluster, spec.name)] = {"arn": arn, "count": spec.desired_count, "td": spec.task_definition}
        return arn

    def update_service(self, cluster, name, desired_count, task_definition=None):
        self.calls.append(("update_service", cluster, name, desired_count, task_definition))
        self._maybe_fail("update_service")
        svc = self.services.get((cluster, name))
        if svc is None:
            raise UpstreamNotFoundError("UpdateService: Service not found.", code="ServiceNotFoundException")
        svc["count"] = desired_count
        if task_definition:
            svc["td"] = task_definition
        return svc["arn"]

    def delete_service(self, cluster, name):
        self.calls.append(("delete_service", cluster, name))
        self._maybe_fail("delete_service")
        if self.services.pop((cluster, name), None) is None:
            raise UpstreamNotFoundError("DeleteService: Service not found.", code="ServiceNotFoundException")

    def register_task_definition(self, spec):
        self.calls.append(("register_task_definition", spec))
        self._maybe_fail("register_task_definition")
        rev = self.revisions.get(spec.family, 0) + 1
        self.revisions[spec.family] = rev
        arn = f"arn:aws:ecs:us-east-1:123456789012:task-definition/{spec.family}:{rev}"
        return TaskDefinitionRevision(family=spec.family, revision=rev, arn=arn)

    def describe_stacks(self, name=None):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.calls.append(("describe_stacks", name))
            if self.describe_delay_s:
                time.sleep(self.describe_delay_s)
            self._maybe_fail("describe_stacks")
            if name is None:
                return list(self.stacks.values())
            if name not in self.stacks:
                raise UpstreamNotFoundError(f"DescribeStacks: Stack with id {name} does not exist", code="ValidationError")
            return [self.stacks[name]]
        finally:
            with self._lock:
                self.in_flight -= 1

    def update_stack(self, name, template_url, parameters, capabilities):
        self.calls.append(("update_stack", name, template_url, dict(parameters), list(capabilities)))
        self._maybe_fail("update_stack")
        stack = self.stacks[name]
        stack["Parameters"] = [{"ParameterKey": k, "ParameterValue": v} for k, v in sorted(parameters.items())]

    def count(self, method):
        return sum(1 for c in self.calls if c[0] == method)


def make_stack(name, params=None, tags=None, status="UPDATE_COMPLETE"):
    return {
        "StackName": name,
        "StackStatus": status,
        "Parameters": [{"ParameterKey": k, "ParameterValue": v} for k, v in (params or {}).items()],
        "Tags": [{"Key": k, "Value": v} for k, v in (tags or {}).items()],
    }


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def orchestrator():
    return FakeOrchestrator()


@pytest.fixture
def clock():
    return FakeClock()


WEB_MANIFEST = """
web:
  image: myapp/web
  ports:
    - "80:5000"
worker:
  image: myapp/worker
"""


class FakeRegistry:
    def __init__(self):
        self.apps = {}
        self.releases = {}
        self.formations = {}
        self.recorded = []
        self.fail_formation = None

    def add(self, name, manifest, counts):
        self.apps[name] = App(name=name, stack_name=name)
        self.releases[name] = Release(id="R1", app=name, manifest=manifest) if manifest is not None else None
        self.formations[name] = Formation(
            entries={upper_name(p): FormationEntry(name=upper_name(p), count=c) for p, c in counts.items()}
        )

    def list_apps(self):
        return list(self.apps.values())

    def latest_release(self, app):
        return self.releases[app]

    def formation(self, app):
        if self.fail_formation:
            raise self.fail_formation
        return self.formations[app]

    def record_release(self, app, release_id):
        self.recorded.append((app, release_id))


@pytest.fixture
def registry():
    return FakeRegistry()
