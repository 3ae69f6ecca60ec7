"""Installer media discovery for the pfSense ZTP reconciler."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from pfztp.constants import INSTALLER_PATTERNS, LIBVIRT_IMAGES_DIR
from pfztp.exceptions import ConfigurationError
from pfztp.models import InstallerCandidate, ZTPConfig
from pfztp.utils import gzip_sibling, log


def resolve_existing(raw: str) -> Optional[Path]:
    """Return ``raw`` or its gzip sibling, whichever exists first."""
    raw = raw.strip()
    if not raw:
        return None
    path = Path(raw).expanduser()
    for candidate in (path, gzip_sibling(path)):
        if candidate.is_file():
            return candidate
    return None


def search_directories(config: ZTPConfig) -> List[Path]:
    dirs = [
        config.installer_dir,
        config.pf_work / "installers",
        config.pf_work,
        Path.home() / "Downloads",
        LIBVIRT_IMAGES_DIR,
    ]
    seen = set()
    ordered: List[Path] = []
    for directory in dirs:
        key = str(directory)
        if key in seen:
            continue
        seen.add(key)
        ordered.append(directory)
    return ordered


def search_plan(config: ZTPConfig) -> Iterator[Tuple[Path, str]]:
    """Yield (directory, pattern) pairs in evaluation order."""
    for directory in search_directories(config):
        for pattern in INSTALLER_PATTERNS:
            yield directory, pattern


def _newest(directory: Path, pattern: str) -> Optional[Path]:
    matches = [path for path in directory.glob(pattern) if path.is_file()]
    if not matches:
        return None
    # Newest wins; ties fall back to name so the choice is stable.
    return max(matches, key=lambda path: (path.stat().st_mtime, path.name))


def discover_in_directories(config: ZTPConfig) -> Optional[Path]:
    current_dir: Optional[Path] = None
    for directory, pattern in search_plan(config):
        if directory != current_dir:
            current_dir = directory
            if not directory.is_dir():
                log("DEBUG", f"Installer search: {directory} does not exist")
        if not directory.is_dir():
            continue
        found = _newest(directory, pattern)
        if found is not None:
            log("DEBUG", f"Installer search: {pattern} matched {found}")
            return found
    return None


def locate_installer(config: ZTPConfig, override: Optional[str] = None) -> Optional[InstallerCandidate]:
    """Pick the run's installer: explicit override, then named keys, then directory search."""
    if override:
        found = resolve_existing(override)
        if found is None:
            raise ConfigurationError(f"Installer not found or invalid: {override}")
        log("INFO", f"Using installer override {found}")
        return InstallerCandidate.from_path(found)

    for key, raw in config.installer_sources:
        found = resolve_existing(raw)
        if found is not None:
            log("INFO", f"Using installer from {key}: {found}")
            return InstallerCandidate.from_path(found)
        log("WARN", f"{key}={raw} does not exist; trying next source")

    found = discover_in_directories(config)
    if found is not None:
        log("INFO", f"Discovered installer {found}")
        return InstallerCandidate.from_path(found)
    return None
