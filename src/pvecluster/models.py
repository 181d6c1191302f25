"""Data models for cluster provisioning."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class NodeRole(Enum):
    """Role a node plays in the cluster topology."""

    CONTROL = "control"
    WORKER = "worker"


class NodeKind(Enum):
    """Compute resource backing a node."""

    VM = "vm"
    CONTAINER = "container"


class ResourceKind(Enum):
    """Kinds of resources a plan can declare."""

    IMAGE = "image"
    SNIPPET = "snippet"
    VM = "vm"
    CONTAINER = "container"

    @property
    def is_compute(self) -> bool:
        """Check if the resource is a VM or a container."""
        return self in (ResourceKind.VM, ResourceKind.CONTAINER)


@dataclass(frozen=True)
class NodeSpec:
    """One node of the cluster with its sizing."""

    name: str
    role: NodeRole
    cpu_cores: int
    memory_mib: int
    disk_size_gib: int
    kind: NodeKind = NodeKind.VM
    pin_mac: bool = True
    display_name: Optional[str] = None
    hostname: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Node name must not be empty")
        for attr in ("cpu_cores", "memory_mib", "disk_size_gib"):
            value = getattr(self, attr)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"Node {self.name!r}: {attr} must be a positive integer, got {value!r}")

    @property
    def vm_name(self) -> str:
        """Name shown in the Proxmox UI."""
        return self.display_name or self.name

    @property
    def guest_hostname(self) -> str:
        """Hostname written into the node's cloud-init document."""
        return self.hostname or self.name

    @property
    def is_container(self) -> bool:
        return self.kind == NodeKind.CONTAINER

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeSpec":
        """Build a node from a YAML/dict entry."""
        try:
            return cls(
                name=str(data["name"]),
                role=NodeRole(data.get("role", "worker")),
                cpu_cores=int(data["cores"]),
                memory_mib=int(data["memory"]),
                disk_size_gib=int(data["disk"]),
                kind=NodeKind(data.get("kind", "vm")),
                pin_mac=bool(data.get("pin_mac", True)),
                display_name=data.get("display_name"),
                hostname=data.get("hostname"),
            )
        except KeyError as e:
            raise ValueError(f"Node entry is missing required key {e.args[0]!r}: {data!r}")
        except TypeError as e:
            raise ValueError(f"Invalid node entry {data!r}: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "role": self.role.value,
            "cores": self.cpu_cores,
            "memory": self.memory_mib,
            "disk": self.disk_size_gib,
            "kind": self.kind.value,
            "pin_mac": self.pin_mac,
            "display_name": self.display_name,
            "hostname": self.hostname,
        }


@dataclass(frozen=True)
class NetworkIdentity:
    """Network identity generated for one node."""

    mac_address: str


@dataclass(frozen=True)
class CloudInitDocument:
    """A rendered cloud-init document.

    ``validated`` is only true once ``rendered_content`` has parsed as YAML.
    """

    template_source: bytes
    substitutions: Tuple[Tuple[str, str], ...]
    rendered_content: str
    validated: bool = False

    @property
    def substitution_map(self) -> Dict[str, str]:
        return dict(self.substitutions)


@dataclass(frozen=True)
class ExportedResult:
    """Identifiers reported back for a provisioned node."""

    node_name: str
    resource_id: str
    ipv4_addresses: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.resource_id}
        if self.ipv4_addresses is not None:
            result["ip"] = list(self.ipv4_addresses)
        return result


@dataclass
class ResolvedResource:
    """What an engine reports after realising one declaration."""

    name: str
    resource_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)
