"""
trend.py — disk-fill forecasting from a bounded usage history

Every run appends one (timestamp, used, total) sample to the resource's
series, evicts samples older than the retention window and projects the
time until the resource is full from the first and last remaining sample.

A two-point slope is used rather than a regression over all samples: it
is deterministic and insensitive to noisy intermediate samples. Samples in
between are still kept so the window can be inspected.

"Never fills" (too little history, flat or shrinking usage) is represented
as hours_until_full = None, never as a large number.
"""

from collections import namedtuple
from typing import Iterable, List, Optional

from plugin import EXIT_OK, EXIT_CRIT

RETENTION_DEFAULT = 7 * 24 * 3600
MB = 1024 * 1024

UsageSample = namedtuple('UsageSample', ['timestamp', 'used_bytes', 'total_bytes'])

Projection = namedtuple('Projection', ['rate_mbps', 'hours_until_full'])

TrendResult = namedtuple('TrendResult', ['state', 'projection', 'series'])

def _int_field(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"bad sample field {value!r}")
    return int(value)

class UsageSeries:
    """Time-ordered usage samples of one resource."""

    def __init__(self, samples: Iterable[UsageSample] = ()):
        self.samples: List[UsageSample] = list(samples)

    @classmethod
    def empty(cls) -> 'UsageSeries':
        return cls()

    @classmethod
    def from_json(cls, data) -> 'UsageSeries':
        if not isinstance(data, dict) or not isinstance(data.get('samples'), list):
            raise TypeError("usage series must be an object with a samples list")
        samples = []
        for row in data['samples']:
            if not isinstance(row, list) or len(row) != 3:
                raise ValueError(f"bad sample {row!r}")
            samples.append(UsageSample(*(_int_field(v) for v in row)))
        # insertion order is time order; a hand-edited file may not respect that
        samples.sort(key=lambda s: s.timestamp)
        return cls(samples)

    def to_json(self):
        return {'samples': [list(s) for s in self.samples]}

    def append(self, sample: UsageSample) -> 'UsageSeries':
        """Return a new series with sample inserted in time order (after equal timestamps)."""
        pos = len(self.samples)
        while pos and self.samples[pos - 1].timestamp > sample.timestamp:
            pos -= 1
        return UsageSeries(self.samples[:pos] + [sample] + self.samples[pos:])

    def __len__(self):
        return len(self.samples)

    def __eq__(self, other):
        return isinstance(other, UsageSeries) and self.samples == other.samples

    def __repr__(self):
        return f"UsageSeries({self.samples!r})"

def prune_series(series: UsageSeries, now: int, retention: int = RETENTION_DEFAULT) -> UsageSeries:
    """Keep only samples no older than retention seconds."""
    return UsageSeries(s for s in series.samples if now - s.timestamp <= retention)

def project_exhaustion(series: UsageSeries) -> Projection:
    """
    Project hours until full from the first and last sample.

    Returns Projection(rate_mbps, hours_until_full). The rate is 0 and
    hours_until_full is None when there are fewer than two samples or they
    share a timestamp; hours_until_full is also None when usage is flat or
    shrinking.
    """
    if len(series) < 2:
        return Projection(0.0, None)
    first, last = series.samples[0], series.samples[-1]
    dt = last.timestamp - first.timestamp
    if dt <= 0:
        return Projection(0.0, None)
    rate = (last.used_bytes - first.used_bytes) / dt
    if rate <= 0:
        return Projection(rate / MB, None)
    remaining = max(0, last.total_bytes - last.used_bytes)
    return Projection(rate / MB, remaining / rate / 3600.0)

def evaluate_trend(used: int, total: int, now: int, series: UsageSeries,
                   alert_hours: float, retention: int = RETENTION_DEFAULT) -> TrendResult:
    """
    Record one sample and evaluate the fill forecast.

    The returned series (appended and pruned) must be persisted by the
    caller whatever the outcome. The state is CRITICAL when the resource
    is projected to fill in under alert_hours, OK otherwise.
    """
    pruned = prune_series(series.append(UsageSample(int(now), int(used), int(total))), now, retention)
    projection = project_exhaustion(pruned)
    hours = projection.hours_until_full
    state = EXIT_CRIT if hours is not None and hours < alert_hours else EXIT_OK
    return TrendResult(state, projection, pruned)

def format_hours(hours: Optional[float]) -> str:
    if hours is None:
        return "not filling"
    return f"full in {hours:.1f}h"
