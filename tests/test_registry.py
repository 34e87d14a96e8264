"""Tests for the command registry."""

from netbrew.cli.core.registry import CommandRegistry, exit_status


def test_dispatch_runs_handler(logger):
    registry = CommandRegistry(logger)
    registry.register("train", lambda: 0)
    registry.register("broken", lambda: 3)
    assert registry.dispatch("train") == 0
    assert registry.dispatch("broken") == 3


def test_last_registration_wins(logger):
    registry = CommandRegistry(logger)
    registry.register("train", lambda: 1)
    registry.register("train", lambda: 0)
    assert registry.dispatch("train") == 0
    assert len(registry) == 1


def test_names_sorted(logger):
    registry = CommandRegistry(logger)
    for name in ("time", "actions", "train"):
        registry.register(name, lambda: 0)
    assert registry.names() == ["actions", "time", "train"]
    assert "time" in registry
    assert "test" not in registry


def test_unknown_command_lists_actions(logger, caplog):
    registry = CommandRegistry(logger)
    registry.register("train", lambda: 0)
    registry.register("actions", registry.list_actions)

    assert registry.dispatch("trian") == 0
    assert "Unknown action: trian" in caplog.text
    assert "Available actions:" in caplog.text
    assert "\ttrain" in caplog.text


def test_unknown_command_without_actions_handler(logger, caplog):
    registry = CommandRegistry(logger)
    registry.register("train", lambda: 0)
    assert registry.dispatch("nope") == 0
    assert "\ttrain" in caplog.text


def test_exit_status():
    assert exit_status(0) == 0
    assert exit_status(1) == 1
    assert exit_status(-4) == 1
