#!/usr/bin/env python3
import argparse
import logging
import os
import sys
from argparse import Namespace
from functools import partial
from textwrap import dedent
from typing import override

from rich.console import Console

from kwimy import __version__
from kwimy.engine import STEP_NAMES, run_installer
from kwimy.progress import InstallProgress, perform_final_action
from kwimy.tui import TUI
from kwimy.types import RuntimeConfig
from kwimy.utils import env_flag
from kwimy.wizard import run_setup_wizard

console = Console()

ENV_ALLOW_NONROOT = "KWIMY_DEV_ALLOW_NONROOT"
ENV_SKIP_NETWORK = "KWIMY_SKIP_NETWORK"
ENV_OFFLINE_ONLY = "KWIMY_OFFLINE_ONLY"


class IndentedHelpFormatter(argparse.RawDescriptionHelpFormatter):
  def __init__(self, prog: str, **kwargs) -> None:
    super().__init__(prog, max_help_position=30, width=80, **kwargs)

  @override
  def _format_action_invocation(self, action: argparse.Action) -> str:
    options = action.option_strings
    if not options:
      return super()._format_action_invocation(action)

    if len(options) == 1:
      invocation = f"{'':4}{options[0]}"
    else:
      invocation = ", ".join(options)

    if action.nargs != 0:
      default_metavar = self._get_default_metavar_for_optional(action)
      invocation += f" {self._format_args(action, default_metavar)}"

    return invocation


def _check_system_requirements(runtime: RuntimeConfig) -> None:
  """Exit with status 2 when the installer cannot safely run here."""
  if os.geteuid() != 0 and not runtime.allow_nonroot:
    console.print("\n[prompt.invalid]Root privileges are required. Please re-run the installer as root.[/]")
    console.print(f"Set {ENV_ALLOW_NONROOT}=1 to bypass this check during development.")
    sys.exit(2)

  if runtime.dry:
    return

  try:
    with open("/proc/mounts", "r") as f:
      if any(len(line.split()) > 1 and line.split()[1].startswith("/mnt") for line in f):
        console.print("\n[prompt.invalid]/mnt is currently mounted or has mounted subdirectories.[/]")
        console.print("Please unmount before running the installer.")
        sys.exit(2)

  except OSError:
    pass


def _create_argument_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(
    prog="kwimy",
    formatter_class=IndentedHelpFormatter,
    description=dedent("""
      A full-screen installer for Arch Linux. It walks through network,
      disk, locale, user and application choices, then installs a Btrfs
      system with optional LUKS encryption and zram swap.
    """),
    epilog=dedent(f"""
      Environment:
        {ENV_ALLOW_NONROOT}=1   allow running without root
        {ENV_SKIP_NETWORK}=1        skip the network step
        {ENV_OFFLINE_ONLY}=1        never use the network for detection

      Examples:
        %(prog)s --dry                          # Walk through without touching the disk
        %(prog)s --debug-log /tmp/kwimy.debug   # Write diagnostic logs
    """),
  )

  _ = parser.add_argument(
    "-d",
    "--dry",
    action="store_true",
    help="log installation commands instead of executing them",
    dest="dry",
  )

  _ = parser.add_argument(
    "--debug-log",
    metavar="PATH",
    type=str,
    default=None,
    help="write diagnostic logs to PATH",
    dest="debug_log",
  )

  _ = parser.add_argument("--version", action="version", version=f"kwimy {__version__}")

  return parser


def _create_runtime_config(args: Namespace) -> RuntimeConfig:
  return RuntimeConfig(
    dry=bool(getattr(args, "dry", False)),
    allow_nonroot=env_flag(ENV_ALLOW_NONROOT),
    skip_network=env_flag(ENV_SKIP_NETWORK),
    offline_only=env_flag(ENV_OFFLINE_ONLY),
    debug_log=getattr(args, "debug_log", None),
  )


def _configure_logging(path: str | None) -> None:
  """Diagnostics only go to a file; the terminal belongs to the UI."""
  if path is None:
    return

  handler = logging.FileHandler(path, mode="w", encoding="utf-8")
  handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
  root = logging.getLogger("kwimy")
  root.addHandler(handler)
  root.setLevel(logging.DEBUG)


def _run() -> None:
  parser = _create_argument_parser()
  runtime = _create_runtime_config(parser.parse_args())

  _check_system_requirements(runtime)
  _configure_logging(runtime.debug_log)

  with TUI() as ui:
    config = run_setup_wizard(ui, runtime)
    if config is None:
      return

    progress = InstallProgress(config, partial(run_installer, dry=runtime.dry), STEP_NAMES)
    action = progress.run(ui)

  if progress.quit_requested and not progress.session.done:
    console.print("[bold yellow]The installation continues in the background. Do not power off.[/]")

  perform_final_action(action, runtime.dry)


def main() -> None:
  """Main entry point for the installer."""
  try:
    _run()

  except KeyboardInterrupt:
    console.print("\n[prompt.invalid]Installation interrupted. Exiting...[/]")
    sys.exit(130)

  except Exception as e:
    console.print(f"\n[prompt.invalid]Fatal error: {e}[/]")
    sys.exit(1)


if __name__ == "__main__":
  main()
