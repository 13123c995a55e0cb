"""
Tests for the CPU check: vmstat parsing and end-to-end runs with a fake sampler.
"""

import pytest

import cpu_health_check
from cpu_health_check import (STATE_DEFAULT, check_cpu, main, parse_args, parse_vmstat_idle,
                              sample_cpu_busy)
from hysteresis import ExceedanceState, HysteresisThresholds
from plugin import EXIT_OK, EXIT_WARN, EXIT_CRIT, EXIT_UNK, MeasurementError, run_plugin

VMSTAT_OUTPUT = """\
procs -----------memory---------- ---swap-- -----io---- -system-- ------cpu-----
 r  b   swpd   free   buff  cache   si   so    bi    bo   in   cs us sy id wa st
 1  0      0 812344  10240 402112    0    0     3     7   55   90  2  1 97  0  0
 4  0      0 812100  10240 402112    0    0     0     0  900 1500 80 10 10  0  0
 4  0      0 812100  10240 402112    0    0     0     0  900 1500 82 10  8  0  0
 4  0      0 812100  10240 402112    0    0     0     0  900 1500 81  9  9  0  0
"""

THRESHOLDS = HysteresisThresholds(90, 95, 15, 30)

class TestParseVmstat:

    def test_ignores_since_boot_row(self):
        assert parse_vmstat_idle(VMSTAT_OUTPUT) == pytest.approx(9.0)

    def test_single_data_row_is_used(self):
        out = "\n".join(VMSTAT_OUTPUT.splitlines()[:3])
        assert parse_vmstat_idle(out) == pytest.approx(97.0)

    def test_too_few_lines(self):
        with pytest.raises(MeasurementError, match="too few lines"):
            parse_vmstat_idle(VMSTAT_OUTPUT.splitlines()[1])

    def test_missing_idle_column(self):
        out = VMSTAT_OUTPUT.replace(" id ", " xx ")
        with pytest.raises(MeasurementError, match="'id' column"):
            parse_vmstat_idle(out)

    def test_short_data_row(self):
        out = VMSTAT_OUTPUT + " 1 0 0\n"
        with pytest.raises(MeasurementError, match="cannot parse"):
            parse_vmstat_idle(out)

class TestSampleCpuBusy:

    def test_busy_is_complement_of_idle(self, monkeypatch):
        calls = []

        def fake_run(cmd, timeout=30):
            calls.append(cmd)
            return 0, VMSTAT_OUTPUT, ""
        monkeypatch.setattr(cpu_health_check, 'run_command', fake_run)
        assert sample_cpu_busy(3) == 91
        assert calls == [['vmstat', '1', '4']]

    def test_vmstat_failure(self, monkeypatch):
        monkeypatch.setattr(cpu_health_check, 'run_command',
                            lambda cmd, timeout=30: (-1, "", "No such file or directory"))
        with pytest.raises(MeasurementError, match="vmstat failed"):
            sample_cpu_busy(5)

class TestCheckCpu:

    def test_scenario_warning_after_fifteen_seconds(self, exceedance_store):
        states = [check_cpu(v, THRESHOLDS, exceedance_store, 1000 + 5 * i).state
                  for i, v in enumerate([92, 93, 91, 94])]
        assert states == [EXIT_OK, EXIT_OK, EXIT_OK, EXIT_WARN]

    def test_state_is_persisted_every_run(self, exceedance_store):
        check_cpu(50, THRESHOLDS, exceedance_store, 10)
        assert exceedance_store.load("cpu") == ExceedanceState.empty()
        check_cpu(97, THRESHOLDS, exceedance_store, 20)
        assert exceedance_store.load("cpu") == ExceedanceState(20, 20)

    def test_critical_after_duration(self, exceedance_store):
        exceedance_store.save("cpu", ExceedanceState(100, 100))
        result = check_cpu(99, THRESHOLDS, exceedance_store, 130)
        assert result.state == EXIT_CRIT
        assert result.message == "CPU busy 99% (>= 95% for 30s)"
        assert result.perfdata[0] == "cpu_busy=99%;90;95;0;100"
        assert "cpu_critical_elapsed=30s;;30" in result.perfdata

class TestMain:

    @pytest.fixture
    def busy(self, monkeypatch):
        value = {'busy': 0}
        monkeypatch.setattr(cpu_health_check, 'sample_cpu_busy', lambda interval: value['busy'])
        return value

    def test_corrupt_state_file_is_ignored(self, tmp_path, busy, capsys):
        state_file = tmp_path / "cpu.state"
        state_file.write_text("this is not json")
        busy['busy'] = 97
        rc = main(['--state-file', str(state_file), '--critical-duration', '0'])
        assert rc == EXIT_CRIT
        assert capsys.readouterr().out.startswith("CRITICAL: CPU busy 97%")

    def test_ok_run_writes_cleared_state(self, tmp_path, busy, capsys):
        state_file = tmp_path / "cpu.state"
        busy['busy'] = 10
        assert main(['--state-file', str(state_file)]) == EXIT_OK
        assert state_file.exists()
        out = capsys.readouterr().out
        assert out.startswith("OK: CPU busy 10% | cpu_busy=10%;90;95;0;100")
        assert out.count("\n") == 1

    def test_invalid_thresholds_are_unknown_before_sampling(self, tmp_path, monkeypatch, capsys):
        def explode(interval):
            raise AssertionError("sampled despite bad configuration")
        monkeypatch.setattr(cpu_health_check, 'sample_cpu_busy', explode)
        rc = run_plugin(main, ['-w', '99', '-c', '90', '--state-file', str(tmp_path / 's')])
        assert rc == EXIT_UNK
        assert capsys.readouterr().out.startswith("UNKNOWN: warning threshold")

    def test_measurement_failure_is_unknown(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(cpu_health_check, 'run_command', lambda cmd, timeout=30: (0, "garbage\n", ""))
        rc = run_plugin(main, ['--state-file', str(tmp_path / 's')])
        assert rc == EXIT_UNK
        assert capsys.readouterr().out.startswith("UNKNOWN: vmstat returned too few lines")

    def test_bad_option_is_unknown(self, capsys):
        assert run_plugin(main, ['--warning', 'lots']) == EXIT_UNK

def test_default_options():
    args = parse_args([])
    assert (args.warning, args.critical) == (90.0, 95.0)
    assert (args.warning_duration, args.critical_duration) == (300, 300)
    assert args.interval == 5
    assert args.state_file == STATE_DEFAULT
