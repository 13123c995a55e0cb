"""
plugin.py — shared plumbing for the health-check plugins

Every probe in this repository is a standalone executable following the
Nagios/Icinga plugin contract: exactly one line on stdout of the form

    <STATE>: <message> | <perfdata> ...

and an exit code of 0 (OK), 1 (WARNING), 2 (CRITICAL) or 3 (UNKNOWN).
This module holds the pieces every probe shares: exit codes, the result
type, perfdata formatting, worst-of aggregation, subprocess execution and
the top-level error wrapper.
"""

import logging
import os
import subprocess
import sys
import traceback
from collections import namedtuple
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

# Exit codes following Nagios/Icinga plugin standards
EXIT_OK, EXIT_WARN, EXIT_CRIT, EXIT_UNK = 0, 1, 2, 3

STATE_TEXT = ["OK", "WARNING", "CRITICAL", "UNKNOWN"]

log = logging.getLogger(__name__)

ProbeResult = namedtuple('ProbeResult', ['state', 'message', 'perfdata'])

# ---------------------------------------------------------------------------
# ERRORS
# ---------------------------------------------------------------------------

class PluginError(Exception):
    """An anticipated failure that maps to a fixed plugin state."""
    state = EXIT_UNK

    def __init__(self, message: str, state: Optional[int] = None):
        super().__init__(message)
        if state is not None:
            self.state = state

class MeasurementError(PluginError):
    """The underlying tool was unavailable or its output could not be parsed."""

class ConfigurationError(PluginError):
    """Invalid or missing options; raised before any measurement."""

# ---------------------------------------------------------------------------
# FORMATTING
# ---------------------------------------------------------------------------

def _fmt_num(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.4f}".rstrip('0').rstrip('.')
    return str(value)

def perfdata(label: str, value, uom: str = '', warn=None, crit=None,
             minimum=None, maximum=None) -> str:
    """
    Build one perfdata item: label=value[uom];warn;crit;min;max

    Trailing empty fields are dropped, labels containing spaces or
    quotes are single-quoted.
    """
    if any(c in label for c in " '="):
        label = "'" + label.replace("'", "''") + "'"
    fields = [_fmt_num(warn), _fmt_num(crit), _fmt_num(minimum), _fmt_num(maximum)]
    while fields and fields[-1] == '':
        fields.pop()
    item = f"{label}={_fmt_num(value)}{uom}"
    if fields:
        item += ';' + ';'.join(fields)
    return item

def format_status_line(result: ProbeResult) -> str:
    line = f"{STATE_TEXT[result.state]}: {result.message}"
    if result.perfdata:
        line += " | " + " ".join(result.perfdata)
    return line

def emit(result: ProbeResult) -> int:
    """Print the status line for result and return its exit code."""
    print(format_status_line(result))
    return result.state

# ---------------------------------------------------------------------------
# AGGREGATION
# ---------------------------------------------------------------------------

# UNKNOWN is the fatal path, it never wins a worst-of comparison
_SEVERITY_RANK = {EXIT_OK: 0, EXIT_WARN: 1, EXIT_CRIT: 2}

def worst_state(states: Iterable[int]) -> int:
    """Worst-of OK < WARNING < CRITICAL; an empty input is OK."""
    worst = EXIT_OK
    for state in states:
        if state not in _SEVERITY_RANK:
            raise ValueError(f"cannot aggregate plugin state {state!r}")
        if _SEVERITY_RANK[state] > _SEVERITY_RANK[worst]:
            worst = state
    return worst

def aggregate(results: Sequence[ProbeResult], empty_message: str = "no resources checked") -> ProbeResult:
    """
    Combine per-resource results into one overall result.

    The state is the worst of the individual states, the message joins
    the per-resource clauses and the perfdata are concatenated in order.
    """
    if not results:
        return ProbeResult(EXIT_OK, empty_message, [])
    state = worst_state(r.state for r in results)
    message = ", ".join(r.message for r in results if r.message)
    perf: List[str] = []
    for r in results:
        perf.extend(r.perfdata)
    return ProbeResult(state, message, perf)

# ---------------------------------------------------------------------------
# EXECUTION HELPERS
# ---------------------------------------------------------------------------

def run_command(cmd: List[str], timeout: float = 30) -> Tuple[int, str, str]:
    """Run command with timeout in the C locale."""
    log.debug("running %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env={**os.environ, 'LANG': 'C', 'LC_ALL': 'C'}
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, "", "Command timed out"
    except OSError as e:
        return -1, "", str(e)

def setup_logging(debug: bool):
    """Debug logging goes to stderr so stdout keeps a single status line."""
    if debug:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr,
                            format='%(asctime)s - %(levelname)s - %(message)s')
        log.debug("Debug mode enabled")

def run_plugin(main: Callable[[Optional[List[str]]], int],
               argv: Optional[List[str]] = None) -> int:
    """
    Run a plugin main function and guarantee the plugin contract.

    Anticipated failures (PluginError) print their own state line; argparse
    usage errors and any unexpected exception become UNKNOWN.
    """
    args = sys.argv[1:] if argv is None else argv
    try:
        return main(argv)
    except PluginError as e:
        return emit(ProbeResult(e.state, str(e), []))
    except SystemExit as e:
        # argparse exits 2 on usage errors, which would read as CRITICAL
        if e.code in (0, None):
            return EXIT_OK
        print("UNKNOWN: invalid command line arguments")
        return EXIT_UNK
    except KeyboardInterrupt:
        print("UNKNOWN: Interrupted by user")
        return EXIT_UNK
    except Exception as e:
        if '--debug' in args:
            traceback.print_exc()
        print(f"UNKNOWN: Unexpected error: {e}")
        return EXIT_UNK
