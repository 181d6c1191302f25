"""
Cluster configuration.

A ClusterConfig is an explicit value handed to the orchestrator; nothing is
read from module-level state, so several plans can be built side by side.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from pvecluster.errors import ConfigurationError
from pvecluster.models import NodeKind, NodeRole, NodeSpec

NOBLE_IMAGE_URL = "https://cloud-images.ubuntu.com/noble/current/noble-server-cloudimg-amd64.img"
JAMMY_IMAGE_URL = "https://cloud-images.ubuntu.com/jammy/current/jammy-server-cloudimg-amd64.img"
JAMMY_LXC_URL = (
    "https://images.linuxcontainers.org/images/ubuntu/jammy/amd64/default/20241101_07%3A42/rootfs.tar.xz"
)

MAC_STRATEGIES = ("stable", "random")
CONTENT_TYPES = ("iso", "vztmpl")


@dataclass(frozen=True)
class ClusterConfig:
    """Everything needed to build one provisioning plan."""

    name: str
    nodes: List[NodeSpec] = field(default_factory=list)
    node_name: str = "pve"
    datastore_id: str = "local"
    disk_datastore_id: str = "local-lvm"
    snippet_datastore_id: str = "local"
    bridge: str = "vmbr0"
    image_url: str = NOBLE_IMAGE_URL
    image_content_type: str = "iso"
    image_resource_name: Optional[str] = None
    image_file_name: Optional[str] = None
    mac_strategy: str = "stable"
    strict_templates: bool = True
    extra_substitutions: Dict[str, str] = field(default_factory=dict)

    @property
    def image_name(self) -> str:
        """Logical name of the shared image declaration."""
        return self.image_resource_name or f"{self.name}-image"

    @property
    def image_file(self) -> str:
        """File name the image is stored under on the datastore."""
        if self.image_file_name:
            return self.image_file_name
        base = os.path.basename(self.image_url.split("?", 1)[0])
        # Proxmox only accepts .img/.iso for the iso content type
        if self.image_content_type == "iso" and not base.endswith((".img", ".iso")):
            base = f"{base}.img"
        return base

    def validate(self) -> None:
        """Validate configuration settings."""
        if not self.name:
            raise ConfigurationError("Cluster name must not be empty")
        if not self.nodes:
            raise ConfigurationError(f"Cluster {self.name!r} has no nodes")
        if self.mac_strategy not in MAC_STRATEGIES:
            raise ConfigurationError(f"Invalid MAC strategy {self.mac_strategy!r}, must be one of {MAC_STRATEGIES}")
        if self.image_content_type not in CONTENT_TYPES:
            raise ConfigurationError(
                f"Invalid image content type {self.image_content_type!r}, must be one of {CONTENT_TYPES}"
            )

        seen = set()
        for node in self.nodes:
            if node.name in seen:
                raise ConfigurationError(f"Duplicate node name {node.name!r}")
            seen.add(node.name)
            if node.is_container and self.image_content_type != "vztmpl":
                raise ConfigurationError(f"Container node {node.name!r} needs a vztmpl image", node_name=node.name)
            if not node.is_container and self.image_content_type != "iso":
                raise ConfigurationError(f"VM node {node.name!r} needs an iso disk image", node_name=node.name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterConfig":
        """Build a configuration from a parsed YAML document."""
        if not isinstance(data, dict):
            raise ConfigurationError("Cluster config must be a mapping")

        entries = data.get("nodes") or []
        if not isinstance(entries, list):
            raise ConfigurationError(f"'nodes' must be a list of node mappings, got {type(entries).__name__}")
        nodes = []
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Node entry {idx} must be a mapping, got {entry!r}")
            try:
                nodes.append(NodeSpec.from_dict(entry))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(str(e))

        image = data.get("image") or {}
        if not isinstance(image, dict):
            raise ConfigurationError(f"'image' must be a mapping, got {image!r}")
        substitutions = data.get("substitutions") or {}
        if not isinstance(substitutions, dict):
            raise ConfigurationError(f"'substitutions' must be a mapping, got {substitutions!r}")

        config = cls(
            name=data.get("name", "cluster"),
            nodes=nodes,
            node_name=data.get("node_name", "pve"),
            datastore_id=data.get("datastore_id", "local"),
            disk_datastore_id=data.get("disk_datastore_id", "local-lvm"),
            snippet_datastore_id=data.get("snippet_datastore_id", "local"),
            bridge=data.get("bridge", "vmbr0"),
            image_url=image.get("url", NOBLE_IMAGE_URL),
            image_content_type=image.get("content_type", "iso"),
            image_resource_name=image.get("name"),
            image_file_name=image.get("file_name"),
            mac_strategy=data.get("mac_strategy", "stable"),
            strict_templates=bool(data.get("strict_templates", True)),
            extra_substitutions={str(k): str(v) for k, v in substitutions.items()},
        )
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ClusterConfig":
        """Load a cluster configuration file.

        Raises:
            ConfigurationError: If the file is missing, empty or invalid
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")
        if not data:
            raise ConfigurationError(f"Config file is empty: {path}")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "node_name": self.node_name,
            "datastore_id": self.datastore_id,
            "disk_datastore_id": self.disk_datastore_id,
            "snippet_datastore_id": self.snippet_datastore_id,
            "bridge": self.bridge,
            "image": {
                "name": self.image_name,
                "url": self.image_url,
                "content_type": self.image_content_type,
                "file_name": self.image_file,
            },
            "mac_strategy": self.mac_strategy,
            "strict_templates": self.strict_templates,
            "substitutions": dict(self.extra_substitutions),
            "nodes": [node.to_dict() for node in self.nodes],
        }


def k8s_cluster() -> ClusterConfig:
    """One control plane and two workers on the Ubuntu noble cloud image."""
    return ClusterConfig(
        name="k8s",
        nodes=[
            NodeSpec("controller", NodeRole.CONTROL, 4, 8192, 50, display_name="k8s-control-plane"),
            NodeSpec("worker1", NodeRole.WORKER, 2, 4096, 40, display_name="k8s-worker-1"),
            NodeSpec("worker2", NodeRole.WORKER, 2, 4096, 40, display_name="k8s-worker-2"),
        ],
        image_url=NOBLE_IMAGE_URL,
        image_resource_name="download-image",
    )


def single_vm() -> ClusterConfig:
    """A single VM on the Ubuntu jammy cloud image."""
    return ClusterConfig(
        name="vm",
        nodes=[NodeSpec("example-vm", NodeRole.WORKER, 2, 3200, 30)],
        image_url=JAMMY_IMAGE_URL,
        image_resource_name="latest-Ubuntu22-Jammy-Img",
    )


def single_container() -> ClusterConfig:
    """A single LXC container on the Ubuntu jammy rootfs template."""
    return ClusterConfig(
        name="container",
        nodes=[NodeSpec("container", NodeRole.WORKER, 2, 4096, 10, kind=NodeKind.CONTAINER, pin_mac=False)],
        image_url=JAMMY_LXC_URL,
        image_content_type="vztmpl",
        image_resource_name="latest-ubuntu22-jammy-lxc",
        image_file_name="ubuntu-22.04-jammy-rootfs.tar.xz",
    )


PRESETS = {
    "k8s": k8s_cluster,
    "vm": single_vm,
    "container": single_container,
}


def load_preset(name: str) -> ClusterConfig:
    """Return a fresh copy of a built-in cluster configuration."""
    try:
        return PRESETS[name]()
    except KeyError:
        raise ConfigurationError(f"Unknown preset {name!r}, choose one of {sorted(PRESETS)}")
