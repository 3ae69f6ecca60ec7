"""pfSense zero-touch provisioning for libvirt hosts."""

__all__ = [
    "attach",
    "cli",
    "config",
    "config_iso",
    "constants",
    "domain",
    "exceptions",
    "executor",
    "installer",
    "media",
    "models",
    "network",
    "reconciler",
    "utils",
    "virt",
]
