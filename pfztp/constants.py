"""Global constants and defaults for the pfSense ZTP reconciler."""

from __future__ import annotations

import os
import re
from pathlib import Path

# sysexits(3) codes shared with the invoking Makefile/CLI layer.
EX_OK = 0
EX_USAGE = 64
EX_UNAVAILABLE = 69
EX_SOFTWARE = 70
EX_TEMPFAIL = 75
EX_CONFIG = 78

LIBVIRT_IMAGES_DIR = Path("/var/lib/libvirt/images")

DEFAULTS = {
    "WORK_ROOT": "/opt/homelab",
    "PF_VM_NAME": "pfsense-uranus",
    "PF_VCPUS": "2",
    "PF_RAM_MB": "4096",
    "PF_QCOW2_SIZE_GB": "20",
    "PF_INSTALLER_DEST": str(LIBVIRT_IMAGES_DIR / "netgate-installer-amd64.img"),
    "PF_OSINFO": "freebsd14.2",
    "PF_HEADLESS": "true",
    "WAN_MODE": "bridge",
    "PF_WAN_BRIDGE": "br0",
    "PF_LAN_NETWORK": "pfsense-lan",
    "PF_LAN_BRIDGE": "pfsense-lan",
    "LIBVIRT_URI": "qemu:///system",
}

# Every key the resolver reads; anything else in a source file is ignored.
KNOWN_KEYS = (
    "WORK_ROOT",
    "PF_VM_NAME",
    "PF_VCPUS",
    "PF_RAM_MB",
    "PF_QCOW2_PATH",
    "PF_QCOW2_SIZE_GB",
    "PF_INSTALLER_DEST",
    "PF_INSTALLER_DIR",
    "PF_INSTALLER_SRC",
    "PF_SERIAL_INSTALLER_PATH",
    "PF_ISO_PATH",
    "PF_OSINFO",
    "PF_HEADLESS",
    "WAN_MODE",
    "PF_WAN_BRIDGE",
    "PF_WAN_DEV",
    "WAN_NIC",
    "PF_LAN_NETWORK",
    "PF_LAN_BRIDGE",
    "PF_CONFIG_ISO_PATH",
    "PF_CONFIG_RENDERER",
    "LIBVIRT_URI",
)

ENV_FILE_CANDIDATES = (".env", ".env.example")
YAML_SUFFIXES = {".yaml", ".yml"}

# Named installer keys, highest priority first.
INSTALLER_ENV_KEYS = ("PF_INSTALLER_SRC", "PF_SERIAL_INSTALLER_PATH", "PF_ISO_PATH")

# Most specific first: serial console media, then compressed before raw.
INSTALLER_PATTERNS = (
    "*serial*.img.gz",
    "*serial*.iso.gz",
    "*serial*.img",
    "*serial*.iso",
    "*.img.gz",
    "*.iso.gz",
    "*.img",
    "*.iso",
)

MEDIA_RAW_DISK = "raw-disk"
MEDIA_OPTICAL = "optical-image"
COMPRESSION_GZIP = "gzip"
COMPRESSION_NONE = "none"

CONFIG_ISO_LATEST = "pfSense-config-latest.iso"
CONFIG_ISO_LEGACY = "pfSense-config.iso"
CONFIG_RENDERER_RELPATH = Path("pfsense") / "pf-config-gen.sh"

WAN_MODE_ALIASES = {
    "bridge": "bridge",
    "br0": "bridge",
    "macvtap": "macvtap",
    "direct": "macvtap",
}

DEVICE_CDROM = "cdrom"
DEVICE_DISK = "disk"
DEVICE_FLOPPY = "floppy"

# Only removable-media slots can take new media via change-media.
REMOVABLE_KINDS = {DEVICE_CDROM, DEVICE_FLOPPY}

# Fixed search order for free device targets, per device kind.
CANDIDATE_TARGETS = {
    DEVICE_CDROM: ("sdb", "sdc", "sdd", "hdb", "hdc"),
    DEVICE_DISK: ("vdb", "vdc", "vdd", "sdc", "sdd"),
}

# Domain states in which libvirt accepts --live device changes.
LIVE_STATES = {"running", "paused"}

REQUIRED_COMMANDS = ("virsh", "virt-install", "qemu-img")

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off"}

ENV_LINE_RE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")
ENV_REF_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::?-([^}]*))?\}|\$([A-Za-z_][A-Za-z0-9_]*)")

_LOG_VERBOSE = os.environ.get("PF_LOG_VERBOSE", "").lower() in TRUTHY
