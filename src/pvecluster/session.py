"""Proxmox credentials and API session."""

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from proxmoxer import ProxmoxAPI

from pvecluster.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://192.168.1.198:8006/"
TRUTHY = ("1", "true", "yes", "on")
FALSY = ("0", "false", "no", "off")


@dataclass(frozen=True)
class ProxmoxSession:
    """Connection settings for one Proxmox VE endpoint."""

    endpoint: str
    username: str
    password: str
    insecure: bool = True
    container_password: Optional[str] = None
    ssh_user: str = "root"
    ssh_key_path: str = "~/.ssh/id_rsa"

    @classmethod
    def from_environment(cls, require_container_password: bool = False) -> "ProxmoxSession":
        """Load the session from the environment (and ``.env`` if present).

        Raises:
            ConfigurationError: If username or password is not set, or the
                container password is required and missing, or the endpoint
                or PROXMOX_INSECURE value is invalid
        """
        load_dotenv()

        username = os.getenv("PROXMOX_USERNAME", "")
        password = os.getenv("PROXMOX_PASSWORD", "")
        endpoint = os.getenv("PROXMOX_ENDPOINT") or DEFAULT_ENDPOINT
        container_password = os.getenv("CONTAINER_PASSWORD") or None

        if not username or not password:
            raise ConfigurationError("PROXMOX_USERNAME and PROXMOX_PASSWORD must be set in the environment or .env file")
        if require_container_password and not container_password:
            raise ConfigurationError("CONTAINER_PASSWORD must be set to provision containers")

        # proxmoxer's https backend always speaks TLS
        parsed = urlparse(endpoint)
        if parsed.scheme != "https" or not parsed.hostname:
            raise ConfigurationError(f"Invalid PROXMOX_ENDPOINT {endpoint!r}, expected https://host:port/")

        insecure = (os.getenv("PROXMOX_INSECURE") or "true").strip().lower()
        if insecure not in TRUTHY + FALSY:
            raise ConfigurationError(f"Invalid PROXMOX_INSECURE {insecure!r}, use true or false")

        return cls(
            endpoint=endpoint,
            username=username,
            password=password,
            insecure=insecure in TRUTHY,
            container_password=container_password,
            ssh_user=os.getenv("SSH_USER", "root"),
            ssh_key_path=os.getenv("SSH_KEY_PATH", "~/.ssh/id_rsa"),
        )

    @property
    def host(self) -> str:
        return urlparse(self.endpoint).hostname or ""

    @property
    def port(self) -> int:
        return urlparse(self.endpoint).port or 8006

    def connect(self) -> Any:
        """Open a proxmoxer API handle scoped to this endpoint."""
        logger.info(f"🔌 Connecting to Proxmox at {self.host}:{self.port} as {self.username}")
        return ProxmoxAPI(
            self.host,
            port=self.port,
            user=self.username,
            password=self.password,
            verify_ssl=not self.insecure,
        )

    def __repr__(self) -> str:
        return f"ProxmoxSession(endpoint={self.endpoint!r}, username={self.username!r}, insecure={self.insecure})"
