"""Data models for the pfSense ZTP reconciler."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from pfztp.constants import (
    COMPRESSION_GZIP,
    COMPRESSION_NONE,
    MEDIA_OPTICAL,
    MEDIA_RAW_DISK,
)


@dataclass(frozen=True)
class ZTPConfig:
    work_root: Path
    vm_name: str
    vcpus: int
    ram_mb: int
    disk_path: Path
    disk_size_gb: int
    installer_dest: Optional[Path]
    installer_dir: Path
    installer_sources: Tuple[Tuple[str, str], ...]  # (key, path) in priority order
    os_variant: str
    headless: bool
    wan_mode: str  # "bridge" or "macvtap"
    wan_bridge: str
    wan_device: Optional[str]
    lan_network: str
    lan_bridge: str
    config_iso_path: Optional[Path]
    config_renderer: Optional[Path]
    libvirt_uri: str
    env_file: Optional[Path] = None

    @property
    def pf_work(self) -> Path:
        return self.work_root / "pfsense"

    @property
    def config_dir(self) -> Path:
        return self.pf_work / "config"


@dataclass(frozen=True)
class InstallerCandidate:
    path: Path
    media: str  # MEDIA_RAW_DISK or MEDIA_OPTICAL
    compression: str  # COMPRESSION_GZIP or COMPRESSION_NONE

    @property
    def compressed(self) -> bool:
        return self.compression == COMPRESSION_GZIP

    @property
    def payload_suffix(self) -> str:
        return ".iso" if self.media == MEDIA_OPTICAL else ".img"

    @classmethod
    def from_path(cls, path: Path) -> "InstallerCandidate":
        name = path.name.lower()
        compression = COMPRESSION_GZIP if name.endswith(".gz") else COMPRESSION_NONE
        payload = name[: -len(".gz")] if compression == COMPRESSION_GZIP else name
        media = MEDIA_OPTICAL if payload.endswith(".iso") else MEDIA_RAW_DISK
        return cls(path=path.absolute(), media=media, compression=compression)


@dataclass(frozen=True)
class StagedMedia:
    path: Path
    media: str

    @property
    def optical(self) -> bool:
        return self.media == MEDIA_OPTICAL


@dataclass(frozen=True)
class BlockDevice:
    kind: str  # "cdrom", "disk", "floppy", ...
    target: str
    source: Optional[str]  # None for an empty removable slot


@dataclass
class ReconcileReport:
    domain: str
    defined: bool = False
    installer: Optional[Path] = None
    config_iso: Optional[Path] = None
    attachments: List[Tuple[str, str]] = field(default_factory=list)  # (label, outcome)
    actions: List[str] = field(default_factory=list)
