"""virt-install invocation for the pfSense domain."""

from __future__ import annotations

from pathlib import Path
from typing import List

from pfztp.exceptions import ConfigurationError, RuntimeFailure
from pfztp.models import StagedMedia, ZTPConfig
from pfztp.utils import kvm_available, log
from pfztp.virt import VirtManager

OSINFO_FALLBACK = "detect=on,require=off"


def installer_disk_arg(staged: StagedMedia) -> str:
    if staged.optical:
        return f"path={staged.path},device=cdrom,bus=sata,readonly=on,boot.order=1"
    # Netgate memstick images boot as USB sticks, not as cdroms.
    return f"path={staged.path},device=disk,bus=usb,format=raw,readonly=on,boot.order=1"


def config_iso_disk_arg(config_iso: Path) -> str:
    return f"path={config_iso},device=cdrom,bus=sata,readonly=on"


def wan_network_arg(config: ZTPConfig) -> str:
    if config.wan_mode == "bridge":
        if not config.wan_bridge:
            raise ConfigurationError("PF_WAN_BRIDGE must be set when WAN_MODE=bridge")
        return f"bridge={config.wan_bridge},model=virtio"
    if config.wan_mode == "macvtap":
        if not config.wan_device:
            raise ConfigurationError("PF_WAN_DEV must be set when WAN_MODE=macvtap")
        return f"type=direct,source={config.wan_device},source.mode=bridge,model=virtio"
    raise ConfigurationError(f"Unsupported WAN mode: {config.wan_mode}")


def build_define_args(
    config: ZTPConfig,
    staged: StagedMedia,
    config_iso: Path,
    os_known: bool,
    accelerated: bool,
) -> List[str]:
    """Compose the virt-install argument list (program name excluded)."""
    args = [
        "--connect", config.libvirt_uri,
        "--name", config.vm_name,
        "--memory", str(config.ram_mb),
        "--vcpus", str(config.vcpus),
        "--cpu", "host-passthrough" if accelerated else "qemu64",
        "--virt-type", "kvm" if accelerated else "qemu",
        "--import",
        "--boot", "hd,menu=on,useserial=on",
        "--disk", installer_disk_arg(staged),
        "--disk", f"path={config.disk_path},format=qcow2,boot.order=2",
        "--disk", config_iso_disk_arg(config_iso),
        "--network", wan_network_arg(config),
        "--network", f"network={config.lan_network},model=virtio",
        "--graphics", "none" if config.headless else "vnc",
        "--console", "pty,target_type=serial",
        "--noautoconsole",
    ]
    if os_known:
        args.extend(["--osinfo", config.os_variant])
    else:
        args.extend(["--osinfo", OSINFO_FALLBACK])
    return args


def define_domain(virt: VirtManager, config: ZTPConfig, staged: StagedMedia, config_iso: Path) -> None:
    """Define the domain once; an existing domain is never redefined."""
    if virt.domain_exists(config.vm_name):
        raise RuntimeFailure(f"Refusing to redefine existing domain {config.vm_name}")
    os_known = virt.os_variant_known(config.os_variant)
    if not os_known:
        log("WARN", f"Requested OSINFO '{config.os_variant}' not present; falling back to {OSINFO_FALLBACK}")
    accelerated = kvm_available()
    if not accelerated:
        log("WARN", "/dev/kvm not available; defining the domain for software emulation (TCG)")
    log("INFO", f"Defining pfSense VM '{config.vm_name}'")
    virt.define_domain(build_define_args(config, staged, config_iso, os_known, accelerated))
