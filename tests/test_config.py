"""Tests for config and models modules."""

import pytest

from pvecluster.config import PRESETS, ClusterConfig, load_preset
from pvecluster.errors import ConfigurationError
from pvecluster.models import NodeKind, NodeRole, NodeSpec


def test_node_spec_rejects_non_positive_sizing():
    """Test sizing must be positive integers."""
    with pytest.raises(ValueError, match="cpu_cores"):
        NodeSpec("n", NodeRole.WORKER, 0, 1024, 10)
    with pytest.raises(ValueError, match="memory_mib"):
        NodeSpec("n", NodeRole.WORKER, 1, -1, 10)
    with pytest.raises(ValueError, match="disk_size_gib"):
        NodeSpec("n", NodeRole.WORKER, 1, 1024, True)


def test_node_spec_is_immutable():
    """Test nodes cannot be changed once declared."""
    node = NodeSpec("n", NodeRole.WORKER, 1, 1024, 10)
    with pytest.raises(AttributeError):
        node.cpu_cores = 4  # type: ignore[misc]


def test_node_spec_names():
    """Test display name and hostname default to the node name."""
    node = NodeSpec("worker1", NodeRole.WORKER, 1, 1024, 10)
    assert node.vm_name == "worker1"
    assert node.guest_hostname == "worker1"

    named = NodeSpec("worker1", NodeRole.WORKER, 1, 1024, 10, display_name="k8s-worker-1", hostname="w1")
    assert named.vm_name == "k8s-worker-1"
    assert named.guest_hostname == "w1"


@pytest.mark.parametrize("preset", sorted(PRESETS))
def test_presets_are_valid(preset):
    """Test every built-in preset validates."""
    config = load_preset(preset)
    config.validate()
    assert config.nodes


def test_k8s_preset_topology():
    """Test the k8s preset has one control plane and two workers."""
    config = load_preset("k8s")

    roles = [node.role for node in config.nodes]
    assert roles == [NodeRole.CONTROL, NodeRole.WORKER, NodeRole.WORKER]
    assert config.nodes[0].cpu_cores == 4
    assert config.nodes[0].memory_mib == 8192
    assert config.image_name == "download-image"
    assert config.image_file == "noble-server-cloudimg-amd64.img"


def test_presets_are_independent_copies():
    """Test loading a preset twice gives separate values."""
    assert load_preset("k8s") is not load_preset("k8s")
    assert load_preset("k8s").nodes is not load_preset("k8s").nodes


def test_unknown_preset():
    with pytest.raises(ConfigurationError, match="Unknown preset"):
        load_preset("nope")


def test_validate_rejects_duplicate_nodes():
    """Test node names must be unique."""
    node = NodeSpec("n", NodeRole.WORKER, 1, 1024, 10)
    with pytest.raises(ConfigurationError, match="Duplicate node name"):
        ClusterConfig(name="c", nodes=[node, node]).validate()


def test_validate_rejects_empty_cluster():
    with pytest.raises(ConfigurationError, match="no nodes"):
        ClusterConfig(name="c").validate()


def test_validate_rejects_unknown_mac_strategy():
    node = NodeSpec("n", NodeRole.WORKER, 1, 1024, 10)
    with pytest.raises(ConfigurationError, match="MAC strategy"):
        ClusterConfig(name="c", nodes=[node], mac_strategy="sequential").validate()


def test_validate_rejects_container_with_iso_image():
    """Test container nodes need a container template."""
    node = NodeSpec("ct", NodeRole.WORKER, 1, 1024, 10, kind=NodeKind.CONTAINER)
    with pytest.raises(ConfigurationError, match="vztmpl"):
        ClusterConfig(name="c", nodes=[node]).validate()


def test_image_file_adds_img_suffix():
    """Test iso content gets an accepted file extension."""
    node = NodeSpec("n", NodeRole.WORKER, 1, 1024, 10)
    config = ClusterConfig(name="c", nodes=[node], image_url="https://example.com/images/disk.qcow2?x=1")
    assert config.image_file == "disk.qcow2.img"


def test_from_yaml(tmp_path):
    """Test loading a cluster from a YAML file."""
    path = tmp_path / "cluster.yaml"
    path.write_text(
        """
name: lab
bridge: vmbr1
mac_strategy: random
image:
  url: https://example.com/noble.img
substitutions:
  ssh_key: ssh-ed25519 AAAA
nodes:
  - name: ctrl
    role: control
    cores: 2
    memory: 4096
    disk: 15
  - name: w1
    cores: 1
    memory: 2048
    disk: 10
    pin_mac: false
""".strip()
    )

    config = ClusterConfig.from_yaml(path)

    assert config.name == "lab"
    assert config.bridge == "vmbr1"
    assert config.mac_strategy == "random"
    assert config.image_name == "lab-image"
    assert config.extra_substitutions == {"ssh_key": "ssh-ed25519 AAAA"}
    assert [n.name for n in config.nodes] == ["ctrl", "w1"]
    assert config.nodes[0].role == NodeRole.CONTROL
    assert config.nodes[1].role == NodeRole.WORKER
    assert config.nodes[1].pin_mac is False
    assert config.to_dict()["nodes"][0]["cores"] == 2


def test_from_yaml_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        ClusterConfig.from_yaml(tmp_path / "missing.yaml")


def test_from_yaml_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    with pytest.raises(ConfigurationError, match="empty"):
        ClusterConfig.from_yaml(path)


def test_from_yaml_missing_node_key(tmp_path):
    """Test incomplete node entries are configuration errors."""
    path = tmp_path / "bad.yaml"
    path.write_text("name: c\nnodes:\n  - name: a\n    cores: 1\n    memory: 512\n")
    with pytest.raises(ConfigurationError, match="'disk'"):
        ClusterConfig.from_yaml(path)


def test_shipped_config_matches_preset():
    """Test config/k8s.yaml describes the same cluster as the k8s preset."""
    from pathlib import Path

    path = Path(__file__).resolve().parent.parent / "config" / "k8s.yaml"
    assert ClusterConfig.from_yaml(path).to_dict() == load_preset("k8s").to_dict()


@pytest.mark.parametrize(
    "body, message",
    [
        ("name: c\nnodes:\n", "no nodes"),
        ("name: c\nnodes: ctrl\n", "'nodes' must be a list"),
        ("name: c\nnodes:\n  - ctrl\n", "Node entry 0 must be a mapping"),
        ("name: c\nimage: foo\nnodes:\n  - {name: a, cores: 1, memory: 512, disk: 4}\n", "'image' must be a mapping"),
        (
            "name: c\nsubstitutions: [a]\nnodes:\n  - {name: a, cores: 1, memory: 512, disk: 4}\n",
            "'substitutions' must be a mapping",
        ),
        ("name: c\nnodes:\n  - {name: a, cores: [1], memory: 512, disk: 4}\n", "Invalid node entry"),
    ],
)
def test_from_yaml_rejects_badly_shaped_documents(tmp_path, body, message):
    """Test structurally wrong YAML is reported as a configuration error."""
    path = tmp_path / "bad.yaml"
    path.write_text(body)
    with pytest.raises(ConfigurationError, match=message):
        ClusterConfig.from_yaml(path)
