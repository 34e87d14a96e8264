"""Tests for device parsing and resolution."""

import pytest

from netbrew.cli.core.config import Phase, SolverParameter
from netbrew.cli.core.devices import (
    DeviceResolver, DeviceSet, parse_device_ids, parse_phase, parse_stages
)
from netbrew.cli.core.engine import ComputeMode
from netbrew.cli.core.errors import ConfigurationError

from conftest import FakeEngine


class TestParseDeviceIds:
    def test_keeps_order(self):
        assert parse_device_ids("2,0,5") == [2, 0, 5]

    def test_strips_whitespace(self):
        assert parse_device_ids(" 1, 3 ") == [1, 3]

    @pytest.mark.parametrize("spec", ["a", "1,,2", "-1", "1.5", "0,x"])
    def test_rejects_invalid_tokens(self, spec):
        with pytest.raises(ConfigurationError):
            parse_device_ids(spec)


class TestDeviceSet:
    def test_cpu(self):
        devices = DeviceSet()
        assert devices.is_cpu
        assert devices.primary is None
        assert devices.describe() == "CPU"
        assert len(devices) == 0

    def test_gpus(self):
        devices = DeviceSet((3, 1))
        assert not devices.is_cpu
        assert devices.primary == 3
        assert devices.describe() == "3, 1"
        assert list(devices) == [3, 1]


class TestDeviceResolver:
    def test_empty_means_cpu(self, logger, caplog):
        engine = FakeEngine(device_count=2)
        devices = DeviceResolver(engine, logger).resolve("")
        assert devices.is_cpu
        assert engine.mode == ComputeMode.CPU
        assert "Use CPU." in caplog.text

    def test_all_enumerates_devices(self, logger):
        engine = FakeEngine(device_count=3)
        devices = DeviceResolver(engine, logger).resolve("all")
        assert devices.ids == (0, 1, 2)
        assert ("enumerate_devices", True) in engine.calls
        assert engine.devices == [0, 1, 2]

    def test_all_without_accelerator(self, logger):
        with pytest.raises(ConfigurationError):
            DeviceResolver(FakeEngine(device_count=0), logger).resolve("all")

    def test_registers_all_before_selecting_first(self, logger, caplog):
        engine = FakeEngine(device_count=4)
        devices = DeviceResolver(engine, logger).resolve("2,1")

        assert devices.ids == (2, 1)
        assert engine.calls[:3] == [
            ("set_devices", [2, 1]),
            ("set_device", 2),
            ("set_mode", ComputeMode.GPU),
        ]
        assert engine.current_device == 2
        assert "Using GPUs 2, 1" in caplog.text

    def test_solver_count_only_when_parallel(self, logger):
        engine = FakeEngine(device_count=2)
        DeviceResolver(engine, logger).resolve("0,1")
        assert "set_solver_count" not in engine.call_names()

        DeviceResolver(engine, logger).resolve("0,1", allow_parallel=True)
        assert ("set_solver_count", 2) in engine.calls

    def test_solver_description_fallback(self, logger):
        engine = FakeEngine(device_count=2)
        param = SolverParameter(solver_mode="GPU")
        devices = DeviceResolver(engine, logger).resolve("", solver_param=param)
        assert devices.ids == (0,)

    def test_cpu_solver_description(self, logger):
        engine = FakeEngine(device_count=2)
        param = SolverParameter(solver_mode="CPU", device_id=1)
        assert DeviceResolver(engine, logger).resolve("", solver_param=param).is_cpu


def test_parse_phase():
    assert parse_phase("", Phase.TRAIN) == Phase.TRAIN
    assert parse_phase("TEST", Phase.TRAIN) == Phase.TEST
    with pytest.raises(ConfigurationError, match='phase must be "TRAIN" or "TEST"'):
        parse_phase("VALIDATE", Phase.TRAIN)


def test_parse_stages():
    assert parse_stages("") == []
    assert parse_stages("deploy, quantized") == ["deploy", "quantized"]
