"""Tests for mac module."""

from unittest import mock

import pytest

from pvecluster.errors import RandomSourceError
from pvecluster.mac import derive_mac, generate_mac, is_locally_administered


def _first_octet(mac: str) -> int:
    return int(mac.split(":")[0], 16)


def test_generate_mac_format():
    """Test generated MAC is six lowercase hex octets."""
    mac = generate_mac()
    parts = mac.split(":")
    assert len(parts) == 6
    assert all(len(p) == 2 and p == p.lower() for p in parts)


def test_generate_mac_bits_over_many_draws():
    """Test every generated MAC is locally administered and unicast."""
    for _ in range(1000):
        first = _first_octet(generate_mac())
        assert first & 0x02
        assert not first & 0x01


def test_generate_mac_no_duplicates():
    """Test 10,000 draws produce no duplicate address."""
    macs = {generate_mac() for _ in range(10000)}
    assert len(macs) == 10000


def test_generate_mac_sets_bits_on_all_zero_and_all_one_bytes():
    """Test bit rules hold at the byte extremes."""
    with mock.patch("pvecluster.mac.secrets.token_bytes", return_value=b"\x00" * 6):
        assert generate_mac() == "02:00:00:00:00:00"
    with mock.patch("pvecluster.mac.secrets.token_bytes", return_value=b"\xff" * 6):
        assert generate_mac() == "fe:ff:ff:ff:ff:ff"


def test_generate_mac_entropy_failure():
    """Test entropy failures surface as RandomSourceError."""
    with mock.patch("pvecluster.mac.secrets.token_bytes", side_effect=OSError("no entropy")):
        with pytest.raises(RandomSourceError, match="no entropy"):
            generate_mac()


def test_derive_mac_is_stable():
    """Test the same seed always yields the same address."""
    assert derive_mac("k8s/worker1") == derive_mac("k8s/worker1")
    assert derive_mac("k8s/worker1") != derive_mac("k8s/worker2")


def test_derive_mac_bits():
    """Test derived MACs follow the same bit rules."""
    for i in range(200):
        assert is_locally_administered(derive_mac(f"node-{i}"))


@pytest.mark.parametrize(
    "mac,expected",
    [
        ("02:aa:bb:cc:dd:ee", True),
        ("06:AA:BB:CC:DD:EE", True),
        ("00:aa:bb:cc:dd:ee", False),  # universally administered
        ("03:aa:bb:cc:dd:ee", False),  # multicast
        ("02:aa:bb:cc:dd", False),
        ("not-a-mac", False),
    ],
)
def test_is_locally_administered(mac, expected):
    """Test MAC validation."""
    assert is_locally_administered(mac) is expected
