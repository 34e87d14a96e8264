#!/usr/bin/env python3
"""
Main entry point for the netbrew command harness.

Usage:
    netbrew <command> [flags]

Commands:
    train           train or finetune a model
    test            score a model
    device_query    show GPU diagnostic information
    time            benchmark model execution time
    autotune        autotune a model
    actions         list available commands
"""

import sys
import os
import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from rich.console import Console
from rich.traceback import install

from netbrew import __version__
from netbrew.cli.commands import register_commands
from netbrew.cli.core.config import build_flags
from netbrew.cli.core.errors import FatalError
from netbrew.cli.core.logger import setup_logger
from netbrew.cli.core.registry import CommandRegistry, exit_status

# Install rich tracebacks for better error messages
install(show_locals=False)


ENGINE_ENV = "NETBREW_ENGINE"

# Keys of the parsed namespace that are not BrewFlags fields
_META_ARGS = {"command", "config", "log_dir", "verbose"}


def _add_flag(parser: argparse.ArgumentParser, name: str, **kwargs: Any) -> None:
    """Register ``--name`` plus its underscore spelling, e.g. --sigint_effect."""
    spellings = [f"--{name.replace('_', '-')}"]
    if "_" in name:
        spellings.append(f"--{name}")
    parser.add_argument(*spellings, dest=name, default=argparse.SUPPRESS, **kwargs)


def build_parser() -> argparse.ArgumentParser:
    """
    Build the command-line parser.

    Flags default to ``SUPPRESS`` so that only flags given explicitly
    override the config file.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="netbrew",
        description="command line brew",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
commands:
  train           train or finetune a model
  test            score a model
  device_query    show GPU diagnostic information
  time            benchmark model execution time
  autotune        autotune a model
  actions         list available commands

Examples:
  netbrew train --solver solver.yaml --gpu 0,1
  netbrew test --model net.yaml --weights net.bin --detection --ap MaxIntegral
  netbrew time --model net.yaml --gpu 0 --lt
        """
    )

    parser.add_argument("command", nargs="?", help="Command to run")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    _add_flag(parser, "gpu", type=str,
              help="Run in GPU mode on the given device ids separated by ','. "
                   "Use 'all' to run on all available GPUs.")
    _add_flag(parser, "solver", type=str, help="The solver definition file.")
    _add_flag(parser, "model", type=str, help="The model definition file.")
    _add_flag(parser, "phase", type=str,
              help="Network phase (TRAIN or TEST). Only used for 'time'.")
    _add_flag(parser, "level", type=int, help="Network level.")
    _add_flag(parser, "stage", type=str, help="Network stages, separated by ','.")
    _add_flag(parser, "snapshot", type=str, help="The snapshot solver state to resume training.")
    _add_flag(parser, "weights", type=str,
              help="Pretrained weights to initialize finetuning, separated by ','. "
                   "Cannot be set together with --snapshot.")
    _add_flag(parser, "iterations", type=int, help="The number of iterations to run (default: 50).")
    _add_flag(parser, "sigint_effect", type=str,
              help="Action on SIGINT: snapshot, stop or none (default: stop).")
    _add_flag(parser, "sighup_effect", type=str,
              help="Action on SIGHUP: snapshot, stop or none (default: snapshot).")
    _add_flag(parser, "lt", action="store_true", help="Enable per layer timings.")
    _add_flag(parser, "detection", action="store_true",
              help="Score detection mAP instead of plain outputs.")
    _add_flag(parser, "ap", type=str,
              help="mAP method: 11point (default), MaxIntegral or Integral.")
    _add_flag(parser, "engine", type=str,
              help=f"Engine factory as module:attribute (env: {ENGINE_ENV}).")

    parser.add_argument("--config", type=Path, default=None,
                        help="YAML file with flag values")
    parser.add_argument("--log-dir", dest="log_dir", type=Path, default=None,
                        help="Directory for log files")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    return parser


def flag_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Flags given explicitly on the command line."""
    return {k: v for k, v in vars(args).items() if k not in _META_ARGS}


def environment_defaults() -> Dict[str, Any]:
    engine = os.environ.get(ENGINE_ENV)
    return {"engine": engine} if engine else {}


def main(argv: Optional[List[str]] = None, console: Optional[Console] = None) -> int:
    """
    Main entry point.

    Returns:
        Process exit status: 0 on success, 1 if the command failed,
        2 on a fatal error
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    console = console or Console(stderr=True)
    logger = setup_logger(
        log_dir=args.log_dir,
        console=console,
        level=logging.DEBUG if args.verbose else logging.INFO
    )

    if not args.command:
        parser.print_help()
        return 0

    logger.section(f"netbrew {args.command}")

    try:
        flags = build_flags(flag_overrides(args), args.config, environment_defaults())

        registry = CommandRegistry(logger)
        register_commands(registry, flags, logger=logger)

        status = registry.dispatch(args.command)

    except FatalError as e:
        logger.critical(str(e))
        return e.exit_code

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130

    return exit_status(status)


if __name__ == "__main__":
    sys.exit(main())
