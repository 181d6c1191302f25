"""Shared test fixtures for pvecluster tests."""

from unittest import mock

import pytest

from pvecluster.config import ClusterConfig, k8s_cluster
from pvecluster.engine import RecordingEngine
from pvecluster.models import NodeRole, NodeSpec
from pvecluster.session import ProxmoxSession

TEMPLATE = """#cloud-config
hostname: ${hostname}
network:
  version: 2
  ethernets:
    eth0:
      match:
        macaddress: "${mac_address}"
      dhcp4: true
write_files:
  - path: /etc/cluster-role
    content: "${role}"
"""


@pytest.fixture
def template_file(tmp_path):
    """Cloud-init template using hostname, mac_address and role placeholders."""
    path = tmp_path / "cloud-init.yml"
    path.write_text(TEMPLATE)
    return path


@pytest.fixture
def k8s_config() -> ClusterConfig:
    return k8s_cluster()


@pytest.fixture
def ctrl_config() -> ClusterConfig:
    """Single control-plane node cluster."""
    return ClusterConfig(name="single", nodes=[NodeSpec("ctrl", NodeRole.CONTROL, 2, 4096, 15)])


@pytest.fixture
def engine() -> RecordingEngine:
    return RecordingEngine()


@pytest.fixture
def proxmox_env(monkeypatch):
    """Set up Proxmox credential environment variables."""
    for var in ["PROXMOX_USERNAME", "PROXMOX_PASSWORD", "PROXMOX_ENDPOINT", "PROXMOX_INSECURE", "CONTAINER_PASSWORD"]:
        monkeypatch.delenv(var, raising=False)
    env_vars = {
        "PROXMOX_USERNAME": "root@pam",
        "PROXMOX_PASSWORD": "secret",
        "PROXMOX_ENDPOINT": "https://pve.example:8006/",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    with mock.patch("pvecluster.session.load_dotenv"):
        yield env_vars


@pytest.fixture
def session() -> ProxmoxSession:
    return ProxmoxSession(
        endpoint="https://pve.example:8006/",
        username="root@pam",
        password="secret",
        container_password="ctpass",
    )


@pytest.fixture
def mock_proxmox():
    """MagicMock standing in for a proxmoxer ProxmoxAPI handle."""
    proxmox = mock.MagicMock()
    node = proxmox.nodes.return_value
    node.storage.return_value.content.get.return_value = []
    node.qemu.get.return_value = []
    node.lxc.get.return_value = []
    node.tasks.return_value.status.get.return_value = {"status": "stopped", "exitstatus": "OK"}
    proxmox.cluster.resources.get.return_value = [{"vmid": 100}, {"vmid": 101}]
    proxmox.storage.return_value.get.return_value = {"path": "/var/lib/vz", "content": "iso,vztmpl,snippets"}
    yield proxmox


@pytest.fixture
def mock_ssh_client():
    """Mock paramiko SSH client with an SFTP session."""
    with mock.patch("pvecluster.proxmox_engine.paramiko.SSHClient") as mock_ssh:
        client = mock.MagicMock()
        mock_ssh.return_value = client
        yield client
