#!/usr/bin/env python3
"""
Disk Health Check — Linux disk-fill forecasting

Purpose
-------
Forecasts when each mounted filesystem will run out of space from its own
usage history, independent of how full it currently is. Every run records
one (timestamp, used, total) sample per mount in a small JSON file, keeps a
7 day window and projects hours until full from the oldest and newest
sample. A mount projected to fill within --hours is CRITICAL.

New mounts start a fresh history; mounts that disappear simply stop being
updated, their history files are left in place.

Output
------
    CRITICAL: /var 0.027 MB/s, full in 8.0h, / 0.000 MB/s, not filling | var_rate=0.0271MB/s ...

Exit codes: 0 OK, 2 CRITICAL, 3 UNKNOWN. There is no WARNING level.

Version: 2.0.0
License: MIT
"""

import argparse
import logging
import os
import re
import sys
import time
from fnmatch import fnmatch
from typing import Dict, List, Optional, Tuple

from plugin import (EXIT_OK, ConfigurationError, MeasurementError, ProbeResult,
                    aggregate, emit, perfdata, run_plugin, setup_logging)
from state_store import DirectoryStateStore, sanitize_key
from trend import RETENTION_DEFAULT, UsageSeries, evaluate_trend, format_hours

__version__ = "2.0.0"

# Default history location (must survive reboots, so not tmpfs)
STATE_DIR_DEFAULT = "/var/tmp/disk_health_check.d"

MOUNTS_FILE = "/proc/mounts"

# Default exclude patterns for dynamic/virtual filesystems (glob-aware)
DEFAULT_EXCLUDES = [
    '/proc*', '/sys*', '/dev/pts*', '/run*', '/dev/shm*',
    '/var/lib/docker/overlay2/*/merged',
    '/var/lib/containers/storage/overlay/*/merged',
    '/snap*', '/tmp/.mount_*'
]

# Filesystem types to skip by default (virtual/pseudo filesystems)
SKIP_FS_TYPES = [
    'tmpfs', 'devtmpfs', 'devpts', 'proc', 'sysfs', 'securityfs', 'selinuxfs', 'cgroup',
    'cgroup2', 'debugfs', 'tracefs', 'fusectl', 'hugetlbfs', 'mqueue',
    'binfmt_misc', 'configfs', 'pstore', 'autofs', 'squashfs',
    'efivarfs', 'bpf', 'nsfs', 'ramfs', 'rpc_pipefs'
]

REMOTE_FS_TYPES = ['nfs', 'nfs4', 'cifs', 'smbfs']

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# UTILITY FUNCTIONS
# ---------------------------------------------------------------------------

def bytes_to_human(size: int, binary: bool = True) -> str:
    """Convert bytes to human-readable format."""
    if binary:
        divisor = 1024.0
        units = ['B', 'KiB', 'MiB', 'GiB', 'TiB', 'PiB', 'EiB']
    else:
        divisor = 1000.0
        units = ['B', 'KB', 'MB', 'GB', 'TB', 'PB', 'EB']
    value = float(size)
    for unit in units:
        if value < divisor:
            return f"{value:.1f}{unit}"
        value /= divisor
    return f"{value:.1f}{units[-1]}"

def _unescape_mount(field: str) -> str:
    # /proc/mounts encodes space, tab, newline and backslash as octal
    return re.sub(r'\\([0-7]{3})', lambda m: chr(int(m.group(1), 8)), field)

# ---------------------------------------------------------------------------
# FILESYSTEM ENUMERATION
# ---------------------------------------------------------------------------

def list_mounts(exclude_patterns: List[str], skip_types: List[str],
                include_remote: bool = False, mounts_file: str = MOUNTS_FILE) -> Dict[str, Dict[str, str]]:
    """
    Read the mount table, dropping pseudo filesystems and excluded paths.

    Raises:
        MeasurementError: the mount table cannot be read
    """
    mounts: Dict[str, Dict[str, str]] = {}
    try:
        with open(mounts_file, 'r') as f:
            lines = f.readlines()
    except OSError as e:
        raise MeasurementError(f"cannot read {mounts_file}: {e}")
    for line in lines:
        parts = line.split()
        if len(parts) < 3:
            continue
        device, mountpoint, fstype = parts[0], _unescape_mount(parts[1]), parts[2]
        if fstype in skip_types:
            continue
        if not include_remote and fstype in REMOTE_FS_TYPES:
            continue
        if any(fnmatch(mountpoint, pattern) for pattern in exclude_patterns):
            continue
        mounts[mountpoint] = {'device': device, 'fstype': fstype}
    return mounts

def sample_usage(mountpoint: str) -> Optional[Tuple[int, int]]:
    """Return (used_bytes, total_bytes) for a mount, None if it cannot be sampled."""
    try:
        stat = os.statvfs(mountpoint)
    except OSError as e:
        log.debug("statvfs(%s) failed: %s", mountpoint, e)
        return None
    total = stat.f_blocks * stat.f_frsize
    if total <= 0:
        return None
    used = (stat.f_blocks - stat.f_bfree) * stat.f_frsize
    return used, total

# ---------------------------------------------------------------------------
# EVALUATION
# ---------------------------------------------------------------------------

def check_mount(mountpoint: str, used: int, total: int, now: int, store,
                alert_hours: float, retention: int = RETENTION_DEFAULT) -> ProbeResult:
    """Run the fill forecast for one mount and persist its updated history."""
    series = store.load(mountpoint)
    trend = evaluate_trend(used, total, now, series, alert_hours, retention)
    store.save(mountpoint, trend.series)
    rate, hours = trend.projection
    log.debug("%s: %d samples, rate %.6f MB/s, %s",
              mountpoint, len(trend.series), rate, format_hours(hours))

    label = sanitize_key(mountpoint)
    msg = f"{mountpoint} {rate:.3f} MB/s, {format_hours(hours)}"
    perf = [perfdata(f"{label}_rate", round(rate, 4), 'MB/s')]
    if hours is not None:
        perf.append(perfdata(f"{label}_hours", round(hours, 2), 'h', None, alert_hours))
    return ProbeResult(trend.state, msg, perf)

def check_disks(samples: Dict[str, Tuple[int, int]], now: int, store,
                alert_hours: float, retention: int = RETENTION_DEFAULT) -> ProbeResult:
    """Forecast every sampled mount and combine the results worst-of."""
    if not samples:
        raise MeasurementError("No filesystems detected")
    results = [check_mount(mp, used, total, now, store, alert_hours, retention)
               for mp, (used, total) in sorted(samples.items())]
    return aggregate(results)

# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    ap = argparse.ArgumentParser(
        description="Disk fill forecast check",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Critical when any filesystem is projected to fill within 12 hours\n"
            "  %(prog)s --hours 12\n\n"
            "  # Ignore ISO images and anything mounted under /mnt\n"
            "  %(prog)s --exclude-type iso9660 -x '/mnt*'\n"
        ),
    )
    thr = ap.add_argument_group('Thresholds')
    thr.add_argument("--hours", type=float, default=24.0,
                     help="Critical when projected to fill within this many hours (default: 24)")
    thr.add_argument("--retention", type=int, default=RETENTION_DEFAULT,
                     help=f"History window in seconds (default: {RETENTION_DEFAULT})")
    sel = ap.add_argument_group('Selection/Exclusions')
    sel.add_argument("-x", "--exclude", action="append", help="Exclude path pattern (glob)")
    sel.add_argument("--exclude-type", action="append", help="Exclude filesystem type")
    sel.add_argument("--include-remote", action="store_true", help="Include remote filesystems")
    paths = ap.add_argument_group('Files')
    paths.add_argument("--state-dir", default=STATE_DIR_DEFAULT, help="History directory")
    util = ap.add_argument_group('Utility')
    util.add_argument("--list", action="store_true", help="List filesystems and exit")
    util.add_argument("--debug", action="store_true", help="Debug output on stderr")
    util.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap.parse_args(argv)

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)
    if args.hours <= 0:
        raise ConfigurationError("--hours must be positive")
    if args.retention <= 0:
        raise ConfigurationError("--retention must be positive")

    exclude_patterns = list(DEFAULT_EXCLUDES) + (args.exclude or [])
    skip_types = list(SKIP_FS_TYPES) + (args.exclude_type or [])
    mounts = list_mounts(exclude_patterns, skip_types, args.include_remote)

    samples: Dict[str, Tuple[int, int]] = {}
    for mp in mounts:
        usage = sample_usage(mp)
        if usage is not None:
            samples[mp] = usage

    if args.list:
        for mp, (used, total) in sorted(samples.items()):
            print(f"{mp}\t{mounts[mp]['fstype']}\t{bytes_to_human(used)}/{bytes_to_human(total)}")
        return EXIT_OK

    store = DirectoryStateStore(args.state_dir, UsageSeries)
    return emit(check_disks(samples, int(time.time()), store, args.hours, args.retention))

def cli():
    sys.exit(run_plugin(main))

if __name__ == "__main__":
    cli()
