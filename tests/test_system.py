import boto3
import pytest
from botocore.stub import Stubber

from cro.api_models import RackScaleRequest
from cro.cache import StackCache
from cro.errors import DependencyFetchError, ScaleViolationError, UpstreamError
from cro.registry import StackRegistry, formation_from_parameters, load_manifest
from cro.system import ScaleValidator, SystemManager

from conftest import WEB_MANIFEST, make_stack


def test_max_required_concurrency_counts_only_public_processes(registry):
    registry.add("myapp", WEB_MANIFEST, {"web": 5, "worker": 12})
    registry.add("other", 'api:\n  ports: ["443:8443"]\n', {"api": 3})
    registry.add("unreleased", None, {})
    assert ScaleValidator(registry).max_required_concurrency() == 5


def test_max_required_concurrency_empty_rack(registry):
    assert ScaleValidator(registry).max_required_concurrency() == 0


def test_scale_gate(registry):
    registry.add("myapp", WEB_MANIFEST, {"web": 5})
    validator = ScaleValidator(registry)

    with pytest.raises(ScaleViolationError) as ei:
        validator.validate(RackScaleRequest(count=5, type="t3.small", version="20260101"))
    assert ei.value.max_concurrency == 5
    assert "below 6 instances" in str(ei.value)

    assert validator.validate(RackScaleRequest(count=6, type="t3.small", version="20260101")) == 5


def test_registry_failure_is_fatal(registry):
    registry.add("myapp", WEB_MANIFEST, {"web": 5})
    registry.fail_formation = UpstreamError("DescribeStacks: Throttling")
    with pytest.raises(UpstreamError):
        ScaleValidator(registry).max_required_concurrency()


def test_bad_manifest_is_fatal(registry):
    registry.add("myapp", "- just\n- a list\n", {"web": 5})
    with pytest.raises(UpstreamError):
        ScaleValidator(registry).max_required_concurrency()


def test_load_manifest_external_ports():
    entries = {e.name: e for e in load_manifest(WEB_MANIFEST)}
    assert entries["web"].external_ports() == ["80:5000"]
    assert entries["worker"].external_ports() == []


def test_formation_from_parameters():
    f = formation_from_parameters({"WebDesiredCount": "2", "WebMemory": "512", "WebWorkerDesiredCount": "1", "Release": "R1"})
    assert f.entry("web").count == 2
    assert f.entry("web").memory == 512
    assert f.entry("web-worker").count == 1
    assert f.entry("missing") is None


@pytest.fixture
def rack(orchestrator, clock, registry):
    orchestrator.stacks["myrack"] = make_stack(
        "myrack",
        {"InstanceCount": "3", "InstanceType": "t3.small", "Version": "20260101", "Obsolete": "x"},
    )
    cache = StackCache(orchestrator, ttl_s=60, always_fresh=False, clock=clock)
    templates = []

    def fetch(url):
        templates.append(url)
        return {"InstanceCount", "InstanceType", "Version", "Key"}

    manager = SystemManager(cache, ScaleValidator(registry), registry, rack="myrack", template_fetcher=fetch)
    manager.templates = templates
    return manager


def test_system_get(rack):
    info = rack.get()
    assert (info.name, info.count, info.type, info.version, info.status) == (
        "myrack",
        3,
        "t3.small",
        "20260101",
        "UPDATE_COMPLETE",
    )


def test_system_save_updates_stack_and_records_release(rack, orchestrator, registry):
    registry.add("myapp", WEB_MANIFEST, {"web": 2})
    rack.get()

    rack.save(RackScaleRequest(count=4, type="t3.medium", version="20260202"))

    _, name, url, params, caps = [c for c in orchestrator.calls if c[0] == "update_stack"][0]
    assert name == "myrack"
    assert url.endswith("/release/20260202/formation.json")
    assert params == {"InstanceCount": "4", "InstanceType": "t3.medium", "Version": "20260202"}
    assert caps == ["CAPABILITY_IAM"]
    assert registry.recorded == [("myrack", "20260202")]

    # The write dropped the cached description.
    assert rack.get().count == 4


def test_system_save_same_version_records_nothing(rack, registry):
    rack.save(RackScaleRequest(count=4, type="t3.small", version="20260101"))
    assert registry.recorded == []


def test_system_save_rejected_by_scale_gate(rack, orchestrator, registry):
    registry.add("myapp", WEB_MANIFEST, {"web": 5})
    with pytest.raises(ScaleViolationError):
        rack.save(RackScaleRequest(count=5, type="t3.small", version="20260101"))
    assert orchestrator.count("update_stack") == 0
    assert rack.templates == []


def test_system_save_template_failure(rack, orchestrator):
    def fail(url):
        raise DependencyFetchError("template fetch failed: HTTP 404")

    rack.template_fetcher = fail
    with pytest.raises(DependencyFetchError):
        rack.save(RackScaleRequest(count=4, type="t3.small", version="nope"))
    assert orchestrator.count("update_stack") == 0


def test_stack_registry(orchestrator, clock):
    orchestrator.stacks["myrack-myapp"] = make_stack(
        "myrack-myapp",
        {"WebDesiredCount": "4", "Release": "R2"},
        tags={"System": "rack", "Type": "app", "Name": "myapp"},
    )
    orchestrator.stacks["myrack"] = make_stack("myrack", tags={"System": "rack", "Type": "rack"})
    cache = StackCache(orchestrator, ttl_s=60, always_fresh=False, clock=clock)
    session = boto3.session.Session(
        region_name="us-east-1", aws_access_key_id="testing", aws_secret_access_key="testing"
    )
    registry = StackRegistry(cache, table="myrack-releases", system_tag="rack", session=session)

    apps = registry.list_apps()
    assert [(a.name, a.stack_name, a.release) for a in apps] == [("myapp", "myrack-myapp", "R2")]
    assert registry.formation("myapp").entry("web").count == 4

    with Stubber(registry._dynamo) as stub:
        stub.add_response(
            "query",
            {"Items": [{"id": {"S": "R2"}, "app": {"S": "myapp"}, "manifest": {"S": WEB_MANIFEST}, "created": {"S": "20260101.000000.000000000"}}]},
            {
                "TableName": "myrack-releases",
                "IndexName": "app.created",
                "KeyConditionExpression": "app = :app",
                "ExpressionAttributeValues": {":app": {"S": "myapp"}},
                "ScanIndexForward": False,
                "Limit": 1,
            },
        )
        stub.add_client_error("query", service_error_code="ResourceNotFoundException", http_status_code=400)

        rel = registry.latest_release("myapp")
        assert rel.id == "R2"
        assert {e.name for e in load_manifest(rel.manifest)} == {"web", "worker"}

        with pytest.raises(UpstreamError):
            registry.latest_release("myapp")
