"""
Pytest configuration and shared fixtures for the health-check plugins.
"""

import sys
from pathlib import Path

import pytest

# The plugins are flat modules at the repository root
sys.path.insert(0, str(Path(__file__).parent.parent))

from hysteresis import ExceedanceState  # noqa: E402
from state_store import MemoryStateStore  # noqa: E402
from trend import UsageSeries  # noqa: E402

@pytest.fixture
def exceedance_store():
    """In-memory store for CPU exceedance state."""
    return MemoryStateStore(ExceedanceState)

@pytest.fixture
def series_store():
    """In-memory store for disk usage series."""
    return MemoryStateStore(UsageSeries)

@pytest.fixture
def mounts_file(tmp_path):
    """A fake /proc/mounts with a mix of real and pseudo filesystems."""
    path = tmp_path / "mounts"
    path.write_text(
        "/dev/sda1 / ext4 rw,relatime 0 0\n"
        "proc /proc proc rw,nosuid,nodev,noexec 0 0\n"
        "sysfs /sys sysfs rw 0 0\n"
        "tmpfs /run tmpfs rw,nosuid 0 0\n"
        "/dev/sda2 /var xfs rw 0 0\n"
        "/dev/sdb1 /mnt/my\\040data ext4 rw 0 0\n"
        "server:/export /srv/nfs nfs4 rw 0 0\n"
        "/dev/loop0 /snap/core/1 squashfs ro 0 0\n"
        "garbage\n"
    )
    return str(path)
