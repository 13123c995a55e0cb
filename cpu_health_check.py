#!/usr/bin/env python3
"""
cpu_health_check.py — sustained CPU overload check for Linux

Purpose
-------
Alerts when the CPU has been busy above a threshold for a minimum amount of
time, not on every short spike. Each run samples CPU idle time with vmstat
over a short window, then compares the busy percentage against warning and
critical levels. The moment each level was first exceeded is kept in a
small JSON state file; a single sample below the warning level resets it.

Output
------
    WARNING: CPU busy 92% (>= 90% for 315s) | cpu_busy=92%;90;95;0;100 ...

Exit codes: 0 OK, 1 WARNING, 2 CRITICAL, 3 UNKNOWN.

Version: 2.0.0
License: MIT
"""

import argparse
import logging
import sys
import time
from typing import List, Optional

from hysteresis import (ExceedanceState, HysteresisThresholds,
                        evaluate_exceedance, validate_thresholds)
from plugin import (STATE_TEXT, ConfigurationError, MeasurementError, ProbeResult,
                    emit, perfdata, run_command, run_plugin, setup_logging)
from state_store import FileStateStore

__version__ = "2.0.0"

# Default file paths (tmpfs, state is small and rewritten every run)
STATE_DEFAULT = "/dev/shm/cpu_health_check.state"

STATE_KEY = "cpu"

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# SAMPLING
# ---------------------------------------------------------------------------

def parse_vmstat_idle(output: str) -> float:
    """
    Average the idle column of vmstat output.

    The first data row holds averages since boot and is ignored when
    later rows exist.

    Raises:
        MeasurementError: header without an 'id' column, no data rows or
            non-numeric values
    """
    lines = [line.split() for line in output.splitlines() if line.strip()]
    if len(lines) < 3:
        raise MeasurementError(f"vmstat returned too few lines ({len(lines)})")
    header_idx = None
    for i, fields in enumerate(lines):
        if 'id' in fields:
            header_idx = i
            break
    if header_idx is None:
        raise MeasurementError("vmstat output has no 'id' column")
    col = lines[header_idx].index('id')
    rows = lines[header_idx + 1:]
    if len(rows) > 1:
        rows = rows[1:]
    if not rows:
        raise MeasurementError("vmstat returned no samples")
    idle = []
    for fields in rows:
        try:
            idle.append(float(fields[col]))
        except (IndexError, ValueError):
            raise MeasurementError(f"cannot parse vmstat line: {' '.join(fields)}")
    return sum(idle) / len(idle)

def sample_cpu_busy(interval: int) -> int:
    """Return the busy percentage averaged over interval seconds."""
    rc, out, err = run_command(['vmstat', '1', str(interval + 1)], timeout=interval + 30)
    if rc != 0:
        raise MeasurementError(f"vmstat failed: {err.strip() or f'exit code {rc}'}")
    idle = parse_vmstat_idle(out)
    busy = 100 - int(round(idle))
    log.debug("vmstat average idle %.2f%%, busy %d%%", idle, busy)
    return max(0, min(100, busy))

# ---------------------------------------------------------------------------
# EVALUATION
# ---------------------------------------------------------------------------

def check_cpu(busy: int, thresholds: HysteresisThresholds,
              store, now: int) -> ProbeResult:
    """Evaluate one CPU sample and persist the updated exceedance state."""
    previous = store.load(STATE_KEY)
    outcome = evaluate_exceedance(busy, thresholds, previous, now)
    store.save(STATE_KEY, outcome.exceedance)
    log.debug("exceedance %s -> %s, %s", previous, outcome.exceedance, STATE_TEXT[outcome.state])

    msg = f"CPU busy {busy}%"
    if outcome.exceedance.critical_start_time is not None:
        msg += f" (>= {thresholds.critical:g}% for {outcome.critical_elapsed}s)"
    elif outcome.exceedance.warning_start_time is not None:
        msg += f" (>= {thresholds.warning:g}% for {outcome.warning_elapsed}s)"
    perf = [
        perfdata('cpu_busy', busy, '%', thresholds.warning, thresholds.critical, 0, 100),
        perfdata('cpu_warning_elapsed', outcome.warning_elapsed, 's', thresholds.warning_duration),
        perfdata('cpu_critical_elapsed', outcome.critical_elapsed, 's', None, thresholds.critical_duration),
    ]
    return ProbeResult(outcome.state, msg, perf)

# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    ap = argparse.ArgumentParser(
        description="Duration-gated CPU usage check",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Warn after 5 minutes above 90%%, critical after 2 minutes above 95%%\n"
            "  %(prog)s -w 90 -c 95 --warning-duration 300 --critical-duration 120\n"
        ),
    )
    thr = ap.add_argument_group('Thresholds')
    thr.add_argument("-w", "--warning", type=float, default=90.0,
                     help="CPU busy warning threshold %% (default: 90)")
    thr.add_argument("-c", "--critical", type=float, default=95.0,
                     help="CPU busy critical threshold %% (default: 95)")
    thr.add_argument("--warning-duration", type=int, default=300,
                     help="Seconds above warning before alerting (default: 300)")
    thr.add_argument("--critical-duration", type=int, default=300,
                     help="Seconds above critical before alerting (default: 300)")
    smp = ap.add_argument_group('Sampling')
    smp.add_argument("-i", "--interval", type=int, default=5, help="Sampling window in seconds")
    paths = ap.add_argument_group('Files')
    paths.add_argument("--state-file", default=STATE_DEFAULT, help="State file path")
    util = ap.add_argument_group('Utility')
    util.add_argument("--debug", action="store_true", help="Debug output on stderr")
    util.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap.parse_args(argv)

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)
    thresholds = HysteresisThresholds(args.warning, args.critical,
                                      args.warning_duration, args.critical_duration)
    validate_thresholds(thresholds)
    if args.interval < 1:
        raise ConfigurationError("sampling interval must be at least 1 second")

    busy = sample_cpu_busy(args.interval)
    store = FileStateStore(args.state_file, ExceedanceState)
    return emit(check_cpu(busy, thresholds, store, int(time.time())))

def cli():
    sys.exit(run_plugin(main))

if __name__ == "__main__":
    cli()
