#!/usr/bin/env python3
"""
http_health_check.py — HTTP health endpoint check

Sends one GET to http://<host>:<port><path> and reports OK only for an
HTTP 200 answer. Any other status, and any transport failure (refused,
timeout, DNS), is CRITICAL: an unreachable health endpoint means the
service is unhealthy, not that the check is broken.

The defaults match the Fluent Bit monitoring endpoint.

Version: 2.0.0
License: MIT
"""

import argparse
import logging
import sys
import time
from typing import List, Optional

import requests

from plugin import (EXIT_OK, EXIT_CRIT, ConfigurationError, ProbeResult,
                    emit, perfdata, run_plugin, setup_logging)

__version__ = "2.0.0"

log = logging.getLogger(__name__)

def build_url(host: str, port: int, path: str) -> str:
    if not path.startswith('/'):
        path = '/' + path
    return f"http://{host}:{port}{path}"

def check_http(url: str, name: str, timeout: float) -> ProbeResult:
    """Probe url once and map the answer to a plugin result."""
    t0 = time.time()
    try:
        response = requests.get(url, timeout=timeout)
    except requests.exceptions.Timeout:
        log.debug("GET %s timed out after %ss", url, timeout)
        return ProbeResult(EXIT_CRIT, f"{name} is not healthy. Timeout after {timeout:g}s ({url})", [])
    except requests.exceptions.RequestException as e:
        log.debug("GET %s failed: %s", url, e)
        return ProbeResult(EXIT_CRIT, f"{name} is not healthy. Connection failed ({url}): {e}", [])
    elapsed = time.time() - t0
    log.debug("GET %s -> %s in %.3fs", url, response.status_code, elapsed)

    perf = [
        perfdata('http_status', response.status_code),
        perfdata('response_time', round(elapsed, 3), 's', None, None, 0, timeout),
    ]
    if response.status_code == 200:
        return ProbeResult(EXIT_OK, f"{name} is healthy.", perf)
    return ProbeResult(EXIT_CRIT, f"{name} is not healthy. HTTP Status: {response.status_code}", perf)

def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    ap = argparse.ArgumentParser(description="HTTP health endpoint check")
    ap.add_argument("-H", "--host", default="localhost", help="Host name (default: localhost)")
    ap.add_argument("-p", "--port", type=int, default=2020, help="TCP port (default: 2020)")
    ap.add_argument("-u", "--path", default="/api/v1/health", help="URL path (default: /api/v1/health)")
    ap.add_argument("-t", "--timeout", type=float, default=10.0, help="Request timeout in seconds")
    ap.add_argument("--name", default="Fluent Bit", help="Service name used in the message")
    ap.add_argument("--debug", action="store_true", help="Debug output on stderr")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap.parse_args(argv)

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)
    if not 0 < args.port < 65536:
        raise ConfigurationError(f"invalid port {args.port}")
    if args.timeout <= 0:
        raise ConfigurationError("--timeout must be positive")
    return emit(check_http(build_url(args.host, args.port, args.path), args.name, args.timeout))

def cli():
    sys.exit(run_plugin(main))

if __name__ == "__main__":
    cli()
