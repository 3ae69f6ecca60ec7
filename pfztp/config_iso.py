"""Configuration ISO discovery and regeneration."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pfztp.constants import CONFIG_ISO_LATEST, CONFIG_ISO_LEGACY
from pfztp.exceptions import ConfigurationError
from pfztp.executor import Executor
from pfztp.models import ZTPConfig
from pfztp.utils import log


def canonical_iso(config: ZTPConfig) -> Path:
    return config.config_dir / CONFIG_ISO_LATEST


def legacy_iso(config: ZTPConfig) -> Path:
    return config.config_dir / CONFIG_ISO_LEGACY


def find_config_iso(config: ZTPConfig) -> Optional[Path]:
    if config.config_iso_path is not None and config.config_iso_path.is_file():
        log("INFO", f"Using pfSense config ISO at {config.config_iso_path}")
        return config.config_iso_path
    latest = canonical_iso(config)
    if latest.is_file():
        log("INFO", f"Using pfSense config ISO at {latest}")
        return latest
    legacy = legacy_iso(config)
    if legacy.is_file():
        log("WARN", f"Using legacy config ISO name {legacy}; regenerate to produce {latest.name}")
        return legacy
    return None


def renderer_command(config: ZTPConfig) -> Optional[List[str]]:
    renderer = config.config_renderer
    if renderer is None:
        return None
    if not (renderer.is_file() and os.access(renderer, os.X_OK)):
        log("WARN", f"pfSense config generator not executable at {renderer}")
        return None
    cmd = [str(renderer)]
    if config.env_file is not None:
        cmd.extend(["--env-file", str(config.env_file)])
    return cmd


def ensure_config_iso(config: ZTPConfig, executor: Executor) -> Path:
    """Return the configuration ISO path, rendering it first when absent."""
    found = find_config_iso(config)
    if found is not None:
        return found

    cmd = renderer_command(config)
    if cmd is not None:
        log("INFO", f"pfSense config ISO not found; invoking {cmd[0]}")
        executor.run(cmd, description="Rendering pfSense configuration")
    if executor.dry_run:
        latest = canonical_iso(config)
        log("INFO", f"[PLAN] Would use pfSense config ISO at {latest}")
        return latest

    found = find_config_iso(config)
    if found is not None:
        return found

    raise ConfigurationError(
        f"pfSense config ISO missing (looked for {canonical_iso(config)} and {legacy_iso(config)}). "
        "Run pf-config-gen.sh before bootstrapping."
    )
