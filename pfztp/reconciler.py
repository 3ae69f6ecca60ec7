"""End-to-end reconciliation of the pfSense domain.

The steps run strictly in sequence and each one checks before it acts, so
a run interrupted at any point can simply be repeated.
"""

from __future__ import annotations

from typing import Optional, Set

from pfztp.attach import ABSENT, AttachmentReconciler
from pfztp.config_iso import ensure_config_iso
from pfztp.constants import DEVICE_CDROM, DEVICE_DISK
from pfztp.domain import define_domain
from pfztp.exceptions import ConfigurationError, NotReady
from pfztp.executor import Executor
from pfztp.installer import locate_installer
from pfztp.media import ensure_disk_image, stage_installer, staged_destination
from pfztp.models import InstallerCandidate, ReconcileReport, StagedMedia, ZTPConfig
from pfztp.network import ensure_network
from pfztp.utils import ensure_directory, log
from pfztp.virt import VirtManager

CONFIG_ISO_LABEL = "pfSense config ISO"
INSTALLER_LABEL = "pfSense installer"


class Reconciler:
    def __init__(
        self,
        config: ZTPConfig,
        virt: VirtManager,
        executor: Executor,
        installer_override: Optional[str] = None,
    ) -> None:
        self.cfg = config
        self.virt = virt
        self.executor = executor
        self.installer_override = installer_override
        self.attachments = AttachmentReconciler(virt)

    def _ensure_work_directories(self) -> None:
        for directory in (self.cfg.pf_work, self.cfg.config_dir, self.cfg.installer_dir):
            if not directory.is_dir():
                self.executor.call(f"Create directory {directory}", ensure_directory, directory)

    def _installer_paths(self, candidate: Optional[InstallerCandidate], staged: Optional[StagedMedia]) -> Set[str]:
        """Every path the installer may be attached from."""
        paths: Set[str] = set()
        if staged is not None:
            paths.add(str(staged.path))
        if candidate is not None:
            paths.add(str(candidate.path))
            destination = staged_destination(candidate, self.cfg)
            if destination is not None:
                paths.add(str(destination))
        if self.cfg.installer_dest is not None:
            paths.add(str(self.cfg.installer_dest.with_suffix(".img")))
            paths.add(str(self.cfg.installer_dest.with_suffix(".iso")))
        return paths

    def run(self) -> ReconcileReport:
        name = self.cfg.vm_name
        report = ReconcileReport(domain=name)
        self._ensure_work_directories()

        domain_exists = self.virt.domain_exists(name)
        candidate = locate_installer(self.cfg, self.installer_override)
        staged: Optional[StagedMedia] = None
        if domain_exists:
            log("INFO", f"Libvirt domain '{name}' already exists; installer media is not needed.")
            if candidate is None:
                log("WARN", "No pfSense installer detected (not required for an existing domain).")
        else:
            if candidate is None:
                log(
                    "WARN",
                    "No pfSense installer detected. Provide --installation-path or set PF_INSTALLER_SRC "
                    "(PF_SERIAL_INSTALLER_PATH/PF_ISO_PATH remain supported).",
                )
                raise ConfigurationError("Unable to locate pfSense installer.")
            staged = stage_installer(
                candidate,
                self.cfg,
                self.executor,
                force=bool(self.installer_override),
            )
            report.installer = staged.path

        config_iso = ensure_config_iso(self.cfg, self.executor)
        report.config_iso = config_iso

        ensure_network(self.virt, self.cfg.lan_network, self.cfg.lan_bridge)

        # Re-query: the domain may have appeared since the first check.
        if not self.virt.domain_exists(name):
            if staged is None:
                raise NotReady(f"Domain {name} disappeared during reconciliation; re-run")
            ensure_disk_image(self.cfg, self.executor)
            define_domain(self.virt, self.cfg, staged, config_iso)
            report.defined = True

        if self.executor.dry_run and not self.virt.domain_exists(name):
            log("INFO", f"[PLAN] Would ensure {CONFIG_ISO_LABEL} attached to {name} ({config_iso})")
        else:
            reserved = self._installer_paths(candidate, staged) | {str(self.cfg.disk_path)}
            outcome = self.attachments.ensure_attached(
                name, str(config_iso), DEVICE_CDROM, CONFIG_ISO_LABEL, reserved=reserved
            )
            report.attachments.append((CONFIG_ISO_LABEL, outcome))
            if staged is not None:
                kind = DEVICE_CDROM if staged.optical else DEVICE_DISK
                outcome = self.attachments.ensure_attached(
                    name,
                    str(staged.path),
                    kind,
                    INSTALLER_LABEL,
                    reserved={str(config_iso), str(self.cfg.disk_path)},
                )
                report.attachments.append((INSTALLER_LABEL, outcome))

        report.actions = list(self.executor.actions)
        return report

    def finalize(self) -> str:
        """Detach the staged installer once pfSense is installed to disk."""
        name = self.cfg.vm_name
        if not self.virt.domain_exists(name):
            raise ConfigurationError(f"Domain {name} not found; nothing to finalize")
        candidate = locate_installer(self.cfg, self.installer_override)
        sources = self._installer_paths(candidate, None)
        outcome = ABSENT
        for device in self.virt.list_block_devices(name):
            if device.source and device.source in sources:
                outcome = self.attachments.detach(name, device.source, INSTALLER_LABEL)
        if outcome == ABSENT:
            log("INFO", f"No installer attached to {name}.")
        return outcome
