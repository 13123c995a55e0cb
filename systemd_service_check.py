#!/usr/bin/env python3
"""
systemd_service_check.py — systemd unit health check

Modes
-----
* status        - is the unit active?
* memory_usage  - memory used by the unit's cgroup, against thresholds in MB
                  or, when none are given, 75%/90% of the unit's MemoryMax
* uptime        - warn when the unit (re)started less than --min-uptime
                  minutes ago

Version: 2.0.0
License: MIT
"""

import argparse
import logging
import sys
import time
from typing import Dict, List, Optional

from plugin import (EXIT_OK, EXIT_WARN, EXIT_CRIT, MeasurementError, ProbeResult,
                    emit, perfdata, run_command, run_plugin, setup_logging)

__version__ = "2.0.0"

MODES = ['status', 'memory_usage', 'uptime']

MB = 1024 * 1024

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# SYSTEMCTL HELPERS
# ---------------------------------------------------------------------------

def systemctl_show(service: str, properties: List[str]) -> Dict[str, str]:
    """Return the requested unit properties as raw strings."""
    cmd = ['systemctl', 'show', service]
    for p in properties:
        cmd += ['-p', p]
    rc, out, err = run_command(cmd, timeout=10)
    if rc != 0:
        raise MeasurementError(f"systemctl show {service} failed: {err.strip() or f'exit code {rc}'}")
    values = {}
    for line in out.splitlines():
        if '=' in line:
            k, v = line.split('=', 1)
            values[k.strip()] = v.strip()
    return values

def _parse_bytes(value: Optional[str]) -> Optional[int]:
    """MemoryCurrent/MemoryMax value in bytes; None for infinity or unset."""
    if not value or value in ('infinity', '[not set]'):
        return None
    digits = ''.join(c for c in value if c.isdigit())
    if not digits:
        return None
    n = int(digits)
    # systemd reports an unset limit as UINT64_MAX
    if n >= 2 ** 64 - 1:
        return None
    return n

def format_uptime(minutes: int) -> str:
    days, rest = divmod(minutes, 1440)
    hours, mins = divmod(rest, 60)
    return f"{days} days {hours} hours {mins} minutes"

# ---------------------------------------------------------------------------
# MODES
# ---------------------------------------------------------------------------

def check_status(service: str) -> ProbeResult:
    rc, _, _ = run_command(['systemctl', 'is-active', '--quiet', service], timeout=10)
    if rc == 0:
        return ProbeResult(EXIT_OK, f"{service} is running", [perfdata('service_status', 1)])
    return ProbeResult(EXIT_CRIT, f"{service} is not running", [perfdata('service_status', 0)])

def check_memory_usage(service: str, warn_mb: Optional[float], crit_mb: Optional[float]) -> ProbeResult:
    props = systemctl_show(service, ['MemoryCurrent', 'MemoryMax'])
    used = _parse_bytes(props.get('MemoryCurrent'))
    if used is None:
        raise MeasurementError(f"Could not determine memory usage for {service}")
    limit = _parse_bytes(props.get('MemoryMax'))

    warn = warn_mb * MB if warn_mb is not None else None
    crit = crit_mb * MB if crit_mb is not None else None
    if warn is None and crit is None and limit is not None:
        warn = limit * 75 // 100
        crit = limit * 90 // 100

    used_mb = used // MB
    perf = [perfdata(f"{service}_memory_usage", used_mb, 'MB',
                     int(warn // MB) if warn is not None else None,
                     int(crit // MB) if crit is not None else None)]
    msg = f"Memory used by {service}: {used_mb} MB"
    if warn is None and crit is None:
        return ProbeResult(EXIT_OK, msg + " (No MemoryMax set)", perf)
    if crit is not None and used >= crit:
        return ProbeResult(EXIT_CRIT, msg, perf)
    if warn is not None and used >= warn:
        return ProbeResult(EXIT_WARN, msg, perf)
    return ProbeResult(EXIT_OK, msg, perf)

def parse_timestamp(value: str) -> int:
    """Convert a systemd timestamp to epoch seconds using date(1)."""
    rc, out, err = run_command(['date', '-d', value, '+%s'], timeout=5)
    try:
        if rc == 0:
            return int(out.strip())
    except ValueError:
        pass
    raise MeasurementError(f"cannot parse timestamp {value!r}: {err.strip()}")

def check_uptime(service: str, min_uptime: int, now: Optional[int] = None) -> ProbeResult:
    props = systemctl_show(service, ['ActiveEnterTimestamp'])
    stamp = props.get('ActiveEnterTimestamp', '')
    if not stamp or stamp in ('undefined', 'n/a'):
        raise MeasurementError(f"Could not determine uptime for {service}")
    started = parse_timestamp(stamp)
    now = int(time.time()) if now is None else now
    minutes = max(0, (now - started) // 60)
    perf = [perfdata('uptime_minutes', minutes)]
    if minutes < min_uptime:
        return ProbeResult(EXIT_WARN,
                           f"{service} uptime is less than {min_uptime} minutes ({format_uptime(minutes)})", perf)
    return ProbeResult(EXIT_OK, f"{service} uptime is {format_uptime(minutes)}", perf)

# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    ap = argparse.ArgumentParser(
        description="systemd service check",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Modes:\n"
            "  status        - Check if the service is active/running.\n"
            "  memory_usage  - Monitor the memory usage of the service.\n"
            "  uptime        - Check how long the service has been running since its last start.\n"
        ),
    )
    ap.add_argument("-s", "--service", required=True, help="Unit name")
    ap.add_argument("-m", "--mode", required=True, choices=MODES, help="Check mode")
    ap.add_argument("-w", "--warning", type=float, help="Memory warning threshold in MB")
    ap.add_argument("-c", "--critical", type=float, help="Memory critical threshold in MB")
    ap.add_argument("--min-uptime", type=int, default=10, help="Minimum uptime in minutes (default: 10)")
    ap.add_argument("--debug", action="store_true", help="Debug output on stderr")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap.parse_args(argv)

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)
    if args.mode == 'status':
        result = check_status(args.service)
    elif args.mode == 'memory_usage':
        result = check_memory_usage(args.service, args.warning, args.critical)
    else:
        result = check_uptime(args.service, args.min_uptime)
    return emit(result)

def cli():
    sys.exit(run_plugin(main))

if __name__ == "__main__":
    cli()
