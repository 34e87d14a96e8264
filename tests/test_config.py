"""Tests for flag layering and solver descriptions."""

from pathlib import Path

import pytest

from netbrew.cli.core.config import (
    DEFAULT_ENGINE, BrewFlags, SolverMode, build_flags, load_solver_parameter
)
from netbrew.cli.core.errors import ConfigurationError


class TestBrewFlags:
    def test_defaults(self):
        flags = BrewFlags()
        assert flags.gpu == ""
        assert flags.iterations == 50
        assert flags.sigint_effect == "stop"
        assert flags.sighup_effect == "snapshot"
        assert flags.ap == "11point"
        assert flags.engine == DEFAULT_ENGINE
        assert not flags.lt and not flags.detection

    def test_none_means_unset(self):
        assert BrewFlags(weights=None).weights == ""

    def test_policy_values_are_checked_by_their_command(self):
        flags = build_flags({"sigint_effect": "reboot", "phase": "VALIDATE"})
        assert flags.sigint_effect == "reboot"
        assert flags.phase == "VALIDATE"


class TestBuildFlags:
    def test_overrides_win_over_file(self, tmp_path):
        config = tmp_path / "flags.yaml"
        config.write_text("model: file.yaml\niterations: 10\nsigint-effect: none\n")

        flags = build_flags({"iterations": 3}, config)

        assert flags.model == "file.yaml"
        assert flags.iterations == 3
        assert flags.sigint_effect == "none"

    def test_file_wins_over_environment(self, tmp_path):
        config = tmp_path / "flags.yaml"
        config.write_text("engine: file.module:Engine\n")
        flags = build_flags({}, config, {"engine": "env.module:Engine"})
        assert flags.engine == "file.module:Engine"

    def test_environment_over_defaults(self):
        flags = build_flags({}, None, {"engine": "env.module:Engine"})
        assert flags.engine == "env.module:Engine"

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            build_flags({}, tmp_path / "missing.yaml")

    def test_config_must_be_mapping(self, tmp_path):
        config = tmp_path / "flags.yaml"
        config.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            build_flags({}, config)

    @pytest.mark.parametrize("overrides", [
        {"ap": "VOC"},
        {"iterations": 0},
        {"engine": "no_colon"},
        {"unknown_flag": 1},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            build_flags(overrides)


class TestSolverParameter:
    def test_load(self, solver_file):
        param = load_solver_parameter(solver_file(
            "net: train.yaml\nmax_iter: 100\nsolver_mode: GPU\ndevice_id: 2\nbase_lr: 0.01\n"
        ))
        assert param.net == "train.yaml"
        assert param.max_iter == 100
        assert param.solver_mode == SolverMode.GPU
        assert param.requests_gpu()
        assert param.device_id == 2
        # Engine-specific keys are kept
        assert param.model_dump()["base_lr"] == 0.01

    def test_defaults(self, solver_file):
        param = load_solver_parameter(solver_file(""))
        assert not param.requests_gpu()
        assert param.train_state.level == 0
        assert param.train_state.stages == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_solver_parameter(str(tmp_path / "solver.yaml"))

    def test_invalid_yaml(self, solver_file):
        with pytest.raises(ConfigurationError):
            load_solver_parameter(solver_file("net: [unclosed\n"))

    def test_invalid_value(self, solver_file):
        with pytest.raises(ConfigurationError, match="solver_mode"):
            load_solver_parameter(solver_file("solver_mode: TPU\n"))


def test_shipped_configs():
    configs = Path(__file__).resolve().parent.parent / "configs"

    param = load_solver_parameter(str(configs / "solver.yaml"))
    assert param.requests_gpu()
    assert param.snapshot == 1000

    flags = build_flags({"iterations": 5}, configs / "flags.yaml")
    assert flags.gpu == "0"
    assert flags.iterations == 5
