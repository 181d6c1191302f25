"""Locally-administered MAC address generation."""

import hashlib
import logging
import re
import secrets

from pvecluster.errors import RandomSourceError

logger = logging.getLogger(__name__)

LOCALLY_ADMINISTERED_BIT = 0x02
MULTICAST_BIT = 0x01

_MAC_RE = re.compile(r"^[0-9a-fA-F]{2}(:[0-9a-fA-F]{2}){5}$")


def _format(octets: bytes) -> str:
    first = (octets[0] | LOCALLY_ADMINISTERED_BIT) & ~MULTICAST_BIT & 0xFF
    return ":".join(f"{octet:02x}" for octet in bytes([first]) + octets[1:6])


def generate_mac() -> str:
    """Return a random locally-administered unicast MAC address.

    Raises:
        RandomSourceError: If the system entropy source is unavailable
    """
    try:
        octets = secrets.token_bytes(6)
    except (OSError, NotImplementedError) as e:
        raise RandomSourceError(f"entropy source unavailable: {e}")
    return _format(octets)


def derive_mac(seed: str) -> str:
    """Return a stable locally-administered unicast MAC for *seed*.

    The same seed always yields the same address, so re-running a plan keeps
    the MAC of a logically identical node.
    """
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    return _format(digest[:6])


def is_locally_administered(mac: str) -> bool:
    """Check that *mac* is well-formed, locally administered and unicast."""
    if not _MAC_RE.match(mac):
        return False
    first = int(mac[:2], 16)
    return bool(first & LOCALLY_ADMINISTERED_BIT) and not first & MULTICAST_BIT
