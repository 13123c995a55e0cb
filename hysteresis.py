"""
hysteresis.py — duration-gated threshold evaluation

A plain threshold check alerts on every short spike. Here a threshold only
fires once the measured value has stayed at or above it for a minimum
duration. The start of each exceedance is remembered in an ExceedanceState
that the caller persists between runs.

Any sample below the warning threshold resets both timers; there is no
partial credit for a series that dips and comes back.
"""

from collections import namedtuple
from typing import Optional

from plugin import EXIT_OK, EXIT_WARN, EXIT_CRIT, ConfigurationError

HysteresisThresholds = namedtuple(
    'HysteresisThresholds',
    ['warning', 'critical', 'warning_duration', 'critical_duration'])

HysteresisResult = namedtuple(
    'HysteresisResult',
    ['state', 'exceedance', 'warning_elapsed', 'critical_elapsed'])

def _timestamp(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"bad timestamp {value!r}")
    return int(value)

class ExceedanceState(namedtuple('ExceedanceState', ['warning_start_time', 'critical_start_time'])):
    """When the value first reached warning / critical level, or None."""
    __slots__ = ()

    @classmethod
    def empty(cls) -> 'ExceedanceState':
        return cls(None, None)

    @classmethod
    def from_json(cls, data) -> 'ExceedanceState':
        if not isinstance(data, dict):
            raise TypeError("exceedance state must be an object")
        warning = _timestamp(data.get('warning_start_time'))
        critical = _timestamp(data.get('critical_start_time'))
        if critical is not None and warning is None:
            raise ValueError("critical exceedance without warning exceedance")
        return cls(warning, critical)

    def to_json(self):
        return {
            'warning_start_time': self.warning_start_time,
            'critical_start_time': self.critical_start_time,
        }

def validate_thresholds(thresholds: HysteresisThresholds):
    if thresholds.warning > thresholds.critical:
        raise ConfigurationError(
            f"warning threshold {thresholds.warning} is above critical threshold {thresholds.critical}")
    if thresholds.warning_duration < 0 or thresholds.critical_duration < 0:
        raise ConfigurationError("durations must not be negative")

def update_exceedance(value: float, thresholds: HysteresisThresholds,
                      state: ExceedanceState, now: int) -> ExceedanceState:
    """Advance the exceedance timers for one sample."""
    warning_start, critical_start = state
    if value >= thresholds.critical:
        if critical_start is None:
            critical_start = now
        if warning_start is None:
            warning_start = now
    elif value >= thresholds.warning:
        if warning_start is None:
            warning_start = now
        critical_start = None
    else:
        warning_start = critical_start = None
    return ExceedanceState(warning_start, critical_start)

def evaluate_exceedance(value: float, thresholds: HysteresisThresholds,
                        state: ExceedanceState, now: int) -> HysteresisResult:
    """
    Evaluate one sample against duration-gated thresholds.

    Args:
        value: Current measurement (e.g. CPU busy percentage)
        thresholds: Levels and minimum durations in seconds
        state: Exceedance start times from the previous run
        now: Current timestamp in seconds

    Returns:
        HysteresisResult with the plugin state, the updated exceedance
        state to persist and the elapsed exceedance times. The state is
        OK while a threshold is exceeded but its duration is not yet met.
    """
    new_state = update_exceedance(value, thresholds, state, now)
    warning_elapsed = 0 if new_state.warning_start_time is None else now - new_state.warning_start_time
    critical_elapsed = 0 if new_state.critical_start_time is None else now - new_state.critical_start_time

    # Elapsed is 0 while unset, so a zero duration must not fire on its own
    if new_state.critical_start_time is not None and critical_elapsed >= thresholds.critical_duration:
        result = EXIT_CRIT
    elif new_state.warning_start_time is not None and warning_elapsed >= thresholds.warning_duration:
        result = EXIT_WARN
    else:
        result = EXIT_OK
    return HysteresisResult(result, new_state, warning_elapsed, critical_elapsed)
