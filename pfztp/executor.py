"""Execution driver: the single seam between the reconciler and side effects.

Every mutating call (virsh, virt-install, qemu-img, renderer scripts and
in-process filesystem writes) goes through an :class:`Executor`.  In plan
mode the fully formed command is logged and recorded instead of run, so a
whole reconciliation can be previewed without touching the host.
"""

from __future__ import annotations

import subprocess
from typing import Any, Callable, List, Optional, Sequence, Type

from pfztp.exceptions import ManagerError, MissingDependency, RuntimeFailure
from pfztp.utils import format_command, log


class Executor:
    def __init__(self, dry_run: bool = False) -> None:
        self.dry_run = dry_run
        self.actions: List[str] = []

    def run(
        self,
        cmd: Sequence[str],
        description: str,
        error: Type[ManagerError] = RuntimeFailure,
    ) -> Optional[subprocess.CompletedProcess]:
        """Run a mutating command, or log it in plan mode.

        Non-zero exit raises ``error`` with the command and its stderr so the
        invoker can diagnose without re-running verbosely.
        """
        rendered = format_command(cmd)
        self.actions.append(rendered)
        if self.dry_run:
            log("INFO", f"[PLAN] {rendered}")
            return None
        log("DEBUG", f"Running: {rendered}")
        try:
            result = subprocess.run(list(cmd), capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise MissingDependency(f"{description}: command not found: {cmd[0]}") from exc
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            message = f"{description} failed (exit {result.returncode}): {rendered}"
            if detail:
                message += f"\n  {detail}"
            raise error(message)
        return result

    def call(self, description: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Invoke an in-process mutation, or log ``description`` in plan mode."""
        self.actions.append(description)
        if self.dry_run:
            log("INFO", f"[PLAN] {description}")
            return None
        log("DEBUG", description)
        try:
            return func(*args, **kwargs)
        except OSError as exc:
            raise RuntimeFailure(f"{description} failed: {exc}") from exc
