"""Utility functions for the pfSense ZTP reconciler."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional

from pfztp.constants import _LOG_VERBOSE, FALSY, TRUTHY
from pfztp.exceptions import ConfigurationError, MissingDependency

_verbose = _LOG_VERBOSE


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def log(level: str, message: str) -> None:
    """Lightweight structured logging compatible with existing colour expectation."""
    if level == "DEBUG" and not _verbose:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def parse_int(name: str, raw: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ConfigurationError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"{name} must be <= {max_val} (got {value})")
    return value


def parse_bool(name: str, raw: str) -> bool:
    lowered = str(raw).strip().lower()
    if lowered in TRUTHY:
        return True
    if lowered in FALSY:
        return False
    raise ConfigurationError(f"{name} must be 'true' or 'false' (got '{raw}')")


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def format_command(cmd: Iterable[str]) -> str:
    """Render a command the way a shell user would retype it."""
    return " ".join(shlex.quote(str(part)) for part in cmd)


def gzip_sibling(path: Path) -> Path:
    """Return the compressed/decompressed counterpart of ``path``."""
    if path.suffix == ".gz":
        return path.with_suffix("")
    return path.with_name(path.name + ".gz")


def kvm_available() -> bool:
    """Return True if /dev/kvm exists and can be opened."""
    kvm_path = Path("/dev/kvm")
    if not kvm_path.exists():
        return False
    try:
        fd = os.open(kvm_path, os.O_RDONLY)
    except OSError:
        return False
    else:
        os.close(fd)
        return True


def require_commands(commands: Iterable[str]) -> None:
    missing = [cmd for cmd in commands if shutil.which(cmd) is None]
    if missing:
        raise MissingDependency(
            f"Missing required commands: {', '.join(missing)}. "
            "Install libvirt-clients, virtinst and qemu-utils (or your distribution's equivalents)."
        )


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {format_command(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
