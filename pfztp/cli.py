"""CLI entry points for pfSense zero-touch provisioning."""

from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
from typing import Dict, List, NoReturn, Optional

from pfztp.config import load_environment
from pfztp.constants import EX_OK, EX_SOFTWARE, KNOWN_KEYS, REQUIRED_COMMANDS
from pfztp.exceptions import ManagerError, UsageError
from pfztp.executor import Executor
from pfztp.models import ReconcileReport, ZTPConfig
from pfztp.reconciler import Reconciler
from pfztp.utils import log, require_commands, set_verbose
from pfztp.virt import open_manager


class ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="pfztp", description="Reconcile a libvirt-hosted pfSense VM into place")
    parser.add_argument("--env-file", type=Path, help="Environment file (KEY=VALUE or YAML) to load")
    parser.add_argument(
        "--installation-path",
        metavar="PATH",
        help="Installer image to use (.img, .iso, optionally .gz); overrides discovery",
    )
    headless = parser.add_mutually_exclusive_group()
    headless.add_argument("--headless", dest="headless", action="store_const", const=True, help="Serial console only")
    headless.add_argument("--no-headless", dest="headless", action="store_const", const=False, help="Enable VNC graphics")
    parser.add_argument("--dry-run", action="store_true", help="Print the actions that would be taken, change nothing")
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a configuration key (repeatable)",
    )
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    parser.add_argument("--finalize", action="store_true", help="Detach the installer after the guest install")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def parse_overrides(pairs: List[str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise UsageError(f"Invalid --set value '{pair}'; expected KEY=VALUE")
        if key not in KNOWN_KEYS:
            log("WARN", f"Ignoring unknown configuration key '{key}'")
            continue
        overrides[key] = value
    return overrides


def show_config(cfg: ZTPConfig) -> None:
    """Print the resolved configuration."""
    for field in dataclasses.fields(cfg):
        value = getattr(cfg, field.name)
        if field.name == "installer_sources":
            print(f"  {field.name}:")
            for key, path in value:
                print(f"    {key}: {path}")
        else:
            print(f"  {field.name}: {value}")


def print_summary(cfg: ZTPConfig, report: ReconcileReport, dry_run: bool) -> None:
    lines: List[str] = [f"  Domain: {report.domain}" + (" (defined this run)" if report.defined else "")]
    if report.installer:
        lines.append(f"  Installer: {report.installer}")
    if report.config_iso:
        lines.append(f"  Config ISO: {report.config_iso}")
    for label, outcome in report.attachments:
        lines.append(f"  {label}: {outcome}")
    if dry_run:
        lines.append(f"  Planned actions: {len(report.actions)}")
    lines.append("")
    lines.append("  Next steps:")
    lines.append(f"    virsh -c {cfg.libvirt_uri} start {cfg.vm_name}")
    lines.append(f"    virsh -c {cfg.libvirt_uri} console {cfg.vm_name}")

    max_len = max(len(line) for line in lines)
    border_len = max_len + 2
    banner_colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
    for line in lines:
        print(f"{banner_colour}{line}{reset}", flush=True)
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        if args.verbose:
            set_verbose(True)
        overrides = parse_overrides(args.overrides)
        if args.headless is not None:
            overrides["PF_HEADLESS"] = "true" if args.headless else "false"

        cfg = load_environment(env_file=args.env_file, overrides=overrides)
        if args.show_config:
            show_config(cfg)
            return EX_OK

        require_commands(REQUIRED_COMMANDS)
        executor = Executor(dry_run=args.dry_run)
        if args.dry_run:
            log("INFO", "Plan mode: no changes will be made")

        virt = open_manager(cfg.libvirt_uri, executor)
        try:
            reconciler = Reconciler(cfg, virt, executor, installer_override=args.installation_path)
            if args.finalize:
                outcome = reconciler.finalize()
                log("SUCCESS", f"Installer on {cfg.vm_name}: {outcome}")
                return EX_OK
            report = reconciler.run()
        finally:
            virt.close()

        log("SUCCESS", f"pfSense domain {cfg.vm_name} reconciled")
        print_summary(cfg, report, args.dry_run)
        return EX_OK
    except ManagerError as exc:
        log("ERROR", str(exc))
        return exc.exit_code
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return EX_SOFTWARE
