"""Tests for engine module."""

import pytest

from pvecluster.engine import ReconciliationEngine, RecordingEngine
from pvecluster.errors import PlanValidationError, ResourceDeclarationError
from pvecluster.models import ResolvedResource, ResourceKind
from pvecluster.plan import ResourceSpec


def _declare_vm(engine, name="vm"):
    image = engine.declare(
        ResourceSpec(
            "image",
            ResourceKind.IMAGE,
            args={"datastore_id": "local", "content_type": "iso", "file_name": "noble.img"},
        )
    )
    snippet = engine.declare(
        ResourceSpec(
            f"{name}-cloud-init",
            ResourceKind.SNIPPET,
            args={"datastore_id": "local", "content_type": "snippets", "file_name": f"{name}.yml"},
        )
    )
    return engine.declare(
        ResourceSpec(
            name,
            ResourceKind.VM,
            node_name=name,
            args={"disks": [{"source_file_id": image}], "initialization": {"user_data_file_id": snippet}},
        ),
        dependencies=(image, snippet),
    )


def test_recording_engine_resolves_in_dependency_order(engine):
    """Test resources are realised after their dependencies with ids filled in."""
    _declare_vm(engine)

    resolved = engine.resolve()

    assert [entry["name"] for entry in engine.realized] == ["image", "vm-cloud-init", "vm"]
    assert resolved["image"].resource_id == "local:iso/noble.img"
    assert resolved["vm-cloud-init"].resource_id == "local:snippets/vm.yml"
    assert resolved["vm"].resource_id == "100"
    vm_args = engine.realized[-1]["args"]
    assert vm_args["disks"][0]["source_file_id"] == "local:iso/noble.img"
    assert vm_args["initialization"]["user_data_file_id"] == "local:snippets/vm.yml"


def test_recording_engine_assigns_increasing_vmids():
    """Test each compute resource gets its own vmid."""
    engine = RecordingEngine(first_vmid=200)
    image = engine.declare(
        ResourceSpec("image", ResourceKind.IMAGE, args={"datastore_id": "local", "content_type": "iso", "file_name": "a.img"})
    )
    engine.declare(ResourceSpec("a", ResourceKind.VM), (image,))
    engine.declare(ResourceSpec("b", ResourceKind.VM), (image,))

    resolved = engine.resolve()

    assert resolved["a"].resource_id == "200"
    assert resolved["b"].resource_id == "201"


def test_recording_engine_reports_addresses():
    """Test configured addresses are reported for compute resources."""
    engine = RecordingEngine(addresses={"vm": ["192.168.1.50"]})
    _declare_vm(engine)

    resolved = engine.resolve()

    assert resolved["vm"].attributes == {"ipv4_addresses": ["192.168.1.50"]}
    assert resolved["image"].attributes == {}


def test_resolve_validates_plan_first(engine):
    """Test an invalid plan is rejected before anything is realised."""
    engine.declare(ResourceSpec("vm", ResourceKind.VM))

    with pytest.raises(PlanValidationError):
        engine.resolve()
    assert engine.realized == []


class _FailingEngine(ReconciliationEngine):
    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = fail_on
        self.calls = []

    def realize(self, declaration, args):
        self.calls.append(declaration.name)
        if declaration.name == self.fail_on:
            raise RuntimeError("remote API rejected request")
        return ResolvedResource(declaration.name, declaration.name)


def test_resolve_wraps_engine_errors_and_stops():
    """Test unexpected failures become ResourceDeclarationError and stop the run."""
    engine = _FailingEngine(fail_on="vm-cloud-init")
    _declare_vm(engine)

    with pytest.raises(ResourceDeclarationError) as exc_info:
        engine.resolve()

    assert "remote API rejected request" in str(exc_info.value)
    assert engine.calls == ["image", "vm-cloud-init"]


class _RejectingEngine(ReconciliationEngine):
    def realize(self, declaration, args):
        if declaration.kind.is_compute:
            raise ResourceDeclarationError("task UPID:x failed: boom")
        return ResolvedResource(declaration.name, declaration.name)


def test_resolve_adds_node_name_to_engine_errors():
    """Test provisioning errors raised without node context get the declaring node."""
    engine = _RejectingEngine()
    _declare_vm(engine, name="ctrl")

    with pytest.raises(ResourceDeclarationError) as exc_info:
        engine.resolve()

    assert exc_info.value.node_name == "ctrl"
    assert str(exc_info.value).startswith("[ctrl/declare]")
