"""Installer staging and persistent disk preparation."""

from __future__ import annotations

import filecmp
import gzip
import os
import shutil
import tempfile
import zlib
from pathlib import Path
from typing import Callable, Optional

from pfztp.exceptions import RuntimeFailure
from pfztp.executor import Executor
from pfztp.models import InstallerCandidate, StagedMedia, ZTPConfig
from pfztp.utils import ensure_directory, log

STAGED_MODE = 0o644


def staged_destination(candidate: InstallerCandidate, config: ZTPConfig) -> Optional[Path]:
    """Where ``candidate`` should live once staged; None means use it in place."""
    if config.installer_dest is not None:
        return config.installer_dest.with_suffix(candidate.payload_suffix)
    if candidate.compressed:
        return config.installer_dir / candidate.path.with_suffix("").name
    return None


def _write_atomically(destination: Path, fill: Callable[[object], None]) -> None:
    """Write via a temp file in the destination directory, then rename over it.

    Readers only ever see the previous file or the complete new one.
    """
    ensure_directory(destination.parent)
    fd, tmp_name = tempfile.mkstemp(prefix=f"{destination.name}.", dir=destination.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as out:
            fill(out)
        if tmp_path.stat().st_size == 0:
            raise RuntimeFailure(f"Staged installer for {destination} is empty")
        os.chmod(tmp_path, STAGED_MODE)
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def decompress(source: Path, destination: Path) -> None:
    def _fill(out) -> None:
        with gzip.open(source, "rb") as src:
            shutil.copyfileobj(src, out, length=1024 * 1024)

    try:
        _write_atomically(destination, _fill)
    except (OSError, EOFError, zlib.error) as exc:
        raise RuntimeFailure(f"Failed to extract installer from {source}: {exc}") from exc


def copy_install(source: Path, destination: Path) -> None:
    def _fill(out) -> None:
        with open(source, "rb") as src:
            shutil.copyfileobj(src, out, length=1024 * 1024)

    try:
        _write_atomically(destination, _fill)
    except OSError as exc:
        raise RuntimeFailure(f"Failed to copy installer {source} -> {destination}: {exc}") from exc


def stage_installer(
    candidate: InstallerCandidate,
    config: ZTPConfig,
    executor: Executor,
    force: bool = False,
) -> StagedMedia:
    """Materialize ``candidate`` as directly attachable media.

    An existing destination is reused as-is; ``force`` only re-copies a raw
    source whose content differs from what is already staged.
    """
    destination = staged_destination(candidate, config)
    if destination is None:
        log("INFO", f"Using installer in place: {candidate.path}")
        return StagedMedia(path=candidate.path, media=candidate.media)

    if candidate.compressed:
        if destination.exists():
            log("INFO", f"Installer archive already expanded at {destination}")
        else:
            log("INFO", f"Expanding installer archive {candidate.path} -> {destination}")
            executor.call(
                f"Expand {candidate.path} to {destination}",
                decompress,
                candidate.path,
                destination,
            )
        return StagedMedia(path=destination, media=candidate.media)

    if destination == candidate.path:
        return StagedMedia(path=destination, media=candidate.media)

    if destination.exists():
        if not force or filecmp.cmp(candidate.path, destination, shallow=False):
            log("INFO", f"Installer already staged at {destination}")
            return StagedMedia(path=destination, media=candidate.media)
        log("INFO", f"Staged installer at {destination} differs from {candidate.path}; re-staging")

    log("INFO", f"Copying installer {candidate.path} -> {destination}")
    executor.call(
        f"Install {candidate.path} to {destination} (mode 0644)",
        copy_install,
        candidate.path,
        destination,
    )
    return StagedMedia(path=destination, media=candidate.media)


def ensure_disk_image(config: ZTPConfig, executor: Executor) -> None:
    """Create the persistent qcow2 disk when it does not exist yet."""
    path = config.disk_path
    if path.exists():
        log("INFO", f"Reusing existing disk {path}")
        return
    log("INFO", f"Creating qcow2 disk {path} ({config.disk_size_gb}G)")
    executor.call(f"Create directory {path.parent}", ensure_directory, path.parent)
    executor.run(
        ["qemu-img", "create", "-f", "qcow2", str(path), f"{config.disk_size_gb}G"],
        description=f"Creating disk {path}",
    )
