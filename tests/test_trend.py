"""
Tests for the disk-fill trend projector.
"""

import pytest

from plugin import EXIT_OK, EXIT_CRIT
from trend import (MB, RETENTION_DEFAULT, Projection, UsageSample, UsageSeries,
                   evaluate_trend, format_hours, project_exhaustion, prune_series)

KB = 1024
DAY = 86400

def series(*rows):
    return UsageSeries(UsageSample(*r) for r in rows)

class TestPruneSeries:

    def test_drops_samples_older_than_retention(self):
        s = series((0, 1, 10), (100, 2, 10), (200, 3, 10))
        assert prune_series(s, now=250, retention=150).samples == [
            UsageSample(100, 2, 10), UsageSample(200, 3, 10)]

    def test_sample_exactly_at_retention_age_is_kept(self):
        s = series((0, 1, 10), (7 * DAY, 2, 10))
        assert len(prune_series(s, now=7 * DAY)) == 2

    def test_pruning_is_idempotent(self):
        s = series((0, 1, 10), (3 * DAY, 2, 10), (9 * DAY, 3, 10))
        once = prune_series(s, now=9 * DAY)
        assert prune_series(once, now=9 * DAY) == once

class TestProjectExhaustion:

    def test_scenario_eight_hours_left(self):
        s = series((0, 100000 * KB, 1000000 * KB), (3600, 200000 * KB, 1000000 * KB))
        rate, hours = project_exhaustion(s)
        assert rate == pytest.approx(100000 / 3600 / 1024, rel=1e-9)
        assert rate == pytest.approx(0.027, abs=0.001)
        assert hours == pytest.approx(8.0)

    def test_uses_first_and_last_sample_only(self):
        noisy = series((0, 100, 1000), (10, 900, 1000), (20, 50, 1000), (100, 200, 1000))
        rate, hours = project_exhaustion(noisy)
        assert rate == pytest.approx(1.0 / MB)
        assert hours == pytest.approx(800 / 3600)

    def test_single_sample_never_fills(self):
        assert project_exhaustion(series((0, 500, 1000))) == Projection(0.0, None)

    def test_empty_series_never_fills(self):
        assert project_exhaustion(UsageSeries()) == Projection(0.0, None)

    def test_identical_timestamps_never_fill(self):
        assert project_exhaustion(series((5, 100, 1000), (5, 900, 1000))) == Projection(0.0, None)

    @pytest.mark.parametrize("last_used", [100, 99, 0])
    def test_flat_or_shrinking_usage_never_fills(self, last_used):
        _, hours = project_exhaustion(series((0, 100, 1000), (60, last_used, 1000)))
        assert hours is None

    def test_already_full_projects_zero_hours(self):
        _, hours = project_exhaustion(series((0, 900, 1000), (60, 1000, 1000)))
        assert hours == 0.0

class TestEvaluateTrend:

    def test_scenario_critical_under_twelve_hours(self):
        history = series((0, 100000 * KB, 1000000 * KB))
        result = evaluate_trend(200000 * KB, 1000000 * KB, 3600, history, alert_hours=12)
        assert result.state == EXIT_CRIT
        assert result.projection.hours_until_full == pytest.approx(8.0)
        assert len(result.series) == 2

    def test_ok_when_far_from_full(self):
        history = series((0, 100000 * KB, 1000000 * KB))
        result = evaluate_trend(200000 * KB, 1000000 * KB, 3600, history, alert_hours=4)
        assert result.state == EXIT_OK

    def test_first_observation_is_ok(self):
        result = evaluate_trend(999, 1000, 100, UsageSeries(), alert_hours=10 ** 6)
        assert result.state == EXIT_OK
        assert result.projection == Projection(0.0, None)
        assert result.series.samples == [UsageSample(100, 999, 1000)]

    @pytest.mark.parametrize("alert_hours", [1, 1000, float('inf')])
    def test_non_growing_usage_is_never_critical(self, alert_hours):
        history = series((0, 990, 1000), (60, 995, 1000))
        result = evaluate_trend(990, 1000, 120, history, alert_hours=alert_hours)
        assert result.state == EXIT_OK
        assert result.projection.hours_until_full is None

    def test_old_samples_are_evicted_before_projection(self):
        # the growth happened more than a week ago, usage is flat since
        history = series((0, 100, 1000), (2 * DAY, 800, 1000))
        now = 2 * DAY + RETENTION_DEFAULT - 1
        result = evaluate_trend(800, 1000, now, history, alert_hours=10 ** 6)
        assert [s.timestamp for s in result.series.samples] == [2 * DAY, now]
        assert result.state == EXIT_OK

    def test_clock_stepping_back_keeps_time_order(self):
        history = series((100, 10, 1000), (200, 20, 1000))
        result = evaluate_trend(15, 1000, 150, history, alert_hours=1)
        assert [s.timestamp for s in result.series.samples] == [100, 150, 200]
        assert UsageSeries.from_json(result.series.to_json()) == result.series
        assert result.projection.rate_mbps == pytest.approx(10 / 100 / MB)

    def test_input_series_is_not_modified(self):
        history = series((0, 1, 10))
        evaluate_trend(2, 10, 10, history, alert_hours=1)
        assert history.samples == [UsageSample(0, 1, 10)]

class TestUsageSeriesJson:

    def test_round_trip(self):
        s = series((1, 2, 3), (4, 5, 6))
        assert UsageSeries.from_json(s.to_json()) == s

    def test_samples_are_sorted_by_time(self):
        s = UsageSeries.from_json({'samples': [[5, 1, 2], [1, 1, 2]]})
        assert [x.timestamp for x in s.samples] == [1, 5]

    @pytest.mark.parametrize("data", [
        [],
        {'samples': 'x'},
        {'samples': [[1, 2]]},
        {'samples': [[1, 2, 'full']]},
        {},
    ])
    def test_malformed(self, data):
        with pytest.raises((TypeError, ValueError)):
            UsageSeries.from_json(data)

def test_format_hours():
    assert format_hours(None) == "not filling"
    assert format_hours(8.04) == "full in 8.0h"
