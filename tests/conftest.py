"""Shared test fixtures: an in-memory virtualization manager and config builders."""

from __future__ import annotations

import dataclasses
import types
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from unittest.mock import MagicMock

import pytest

from pfztp.exceptions import NotReady, RuntimeFailure
from pfztp.models import BlockDevice, ZTPConfig
from pfztp.virt import UNDEFINED, VirtManager


class FakeDomain:
    def __init__(self, state: str = "shut off", devices: Optional[List[BlockDevice]] = None) -> None:
        self.state = state
        self.devices: List[BlockDevice] = list(devices or [])


class FakeNetwork:
    def __init__(self, active: bool = True, autostart: bool = True) -> None:
        self.active = active
        self.autostart = autostart


def _disk_options(disk: str) -> Dict[str, str]:
    options: Dict[str, str] = {}
    for part in disk.split(","):
        key, _, value = part.partition("=")
        options[key] = value
    return options


class FakeVirtManager(VirtManager):
    """In-memory hypervisor; every mutating call is appended to ``mutations``."""

    def __init__(self) -> None:
        self.domains: Dict[str, FakeDomain] = {}
        self.networks: Dict[str, FakeNetwork] = {}
        self.known_variants = {"freebsd14.2", "freebsd14.0"}
        self.mutations: List[tuple] = []
        self.reject_live = False
        self.fail_config = False

    def add_domain(self, name: str, state: str = "shut off", devices: Optional[List[BlockDevice]] = None) -> None:
        self.domains[name] = FakeDomain(state=state, devices=devices)

    # -- queries -------------------------------------------------------

    def domain_exists(self, name: str) -> bool:
        return name in self.domains

    def domain_state(self, name: str) -> str:
        domain = self.domains.get(name)
        return domain.state if domain else UNDEFINED

    def list_block_devices(self, name: str) -> List[BlockDevice]:
        if name not in self.domains:
            raise NotReady(f"Domain {name} is not defined")
        return list(self.domains[name].devices)

    def os_variant_known(self, variant: str) -> bool:
        return variant in self.known_variants

    def network_exists(self, name: str) -> bool:
        return name in self.networks

    def network_active(self, name: str) -> bool:
        return name in self.networks and self.networks[name].active

    def network_autostart(self, name: str) -> bool:
        return name in self.networks and self.networks[name].autostart

    # -- mutations -----------------------------------------------------

    def _check(self, live: bool) -> None:
        if live and self.reject_live:
            raise NotReady("Requested operation is not valid: domain is not running")
        if not live and self.fail_config:
            raise RuntimeFailure("virsh exited 1")

    def define_domain(self, args: Sequence[str]) -> None:
        args = list(args)
        name = args[args.index("--name") + 1]
        self.mutations.append(("define_domain", name))
        devices: List[BlockDevice] = []
        counters = {"vd": 0, "sd": 0}
        for idx, arg in enumerate(args):
            if arg != "--disk":
                continue
            options = _disk_options(args[idx + 1])
            prefix = "sd" if options.get("bus") in {"sata", "usb", "scsi"} else "vd"
            target = prefix + "abcdefgh"[counters[prefix]]
            counters[prefix] += 1
            devices.append(BlockDevice(kind=options.get("device", "disk"), target=target, source=options["path"]))
        self.domains[name] = FakeDomain(devices=devices)

    def attach_disk(self, name: str, source: str, target: str, kind: str, live: bool) -> None:
        self.mutations.append(("attach_disk", name, source, target, kind, live))
        self._check(live)
        self.domains[name].devices.append(BlockDevice(kind=kind, target=target, source=source))

    def change_media(self, name: str, target: str, source: str, live: bool) -> None:
        self.mutations.append(("change_media", name, target, source, live))
        self._check(live)
        devices = self.domains[name].devices
        for idx, device in enumerate(devices):
            if device.target == target:
                devices[idx] = dataclasses.replace(device, source=source)

    def detach_disk(self, name: str, target: str, live: bool) -> None:
        self.mutations.append(("detach_disk", name, target, live))
        self._check(live)
        domain = self.domains[name]
        domain.devices = [device for device in domain.devices if device.target != target]

    def define_network(self, xml: str) -> None:
        self.mutations.append(("define_network", xml))
        start = xml.index("<name>") + len("<name>")
        name = xml[start : xml.index("</name>")]
        self.networks[name] = FakeNetwork(active=False, autostart=False)

    def autostart_network(self, name: str) -> None:
        self.mutations.append(("autostart_network", name))
        self.networks[name].autostart = True

    def start_network(self, name: str) -> None:
        self.mutations.append(("start_network", name))
        self.networks[name].active = True


class FakeLibvirtError(Exception):
    pass


@pytest.fixture
def fake_virt() -> FakeVirtManager:
    return FakeVirtManager()


@pytest.fixture
def fake_libvirt(monkeypatch):
    """Replace the libvirt bindings referenced by pfztp.virt with a mock namespace."""
    namespace = types.SimpleNamespace(
        libvirtError=FakeLibvirtError,
        open=MagicMock(),
        VIR_DOMAIN_NOSTATE=0,
        VIR_DOMAIN_RUNNING=1,
        VIR_DOMAIN_BLOCKED=2,
        VIR_DOMAIN_PAUSED=3,
        VIR_DOMAIN_SHUTDOWN=4,
        VIR_DOMAIN_SHUTOFF=5,
        VIR_DOMAIN_CRASHED=6,
        VIR_DOMAIN_PMSUSPENDED=7,
    )
    monkeypatch.setattr("pfztp.virt.libvirt", namespace)
    return namespace


def make_config(root: Path, **changes) -> ZTPConfig:
    """Return a ZTPConfig whose every path lives under ``root``."""
    work_root = root / "homelab"
    cfg = ZTPConfig(
        work_root=work_root,
        vm_name="pfsense-test",
        vcpus=2,
        ram_mb=4096,
        disk_path=root / "images" / "pfsense-test.qcow2",
        disk_size_gb=20,
        installer_dest=root / "images" / "netgate-installer-amd64.img",
        installer_dir=work_root / "pfsense" / "installers",
        installer_sources=(),
        os_variant="freebsd14.2",
        headless=True,
        wan_mode="bridge",
        wan_bridge="br0",
        wan_device=None,
        lan_network="pfsense-lan",
        lan_bridge="pfsense-lan",
        config_iso_path=None,
        config_renderer=None,
        libvirt_uri="qemu:///system",
    )
    return dataclasses.replace(cfg, **changes)


@pytest.fixture
def ztp_config(tmp_path) -> ZTPConfig:
    return make_config(tmp_path)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every recognised key from the process environment."""
    from pfztp.constants import KNOWN_KEYS

    for key in KNOWN_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def config_factory(tmp_path):
    """Build configs rooted at tmp_path with selected fields replaced."""

    def _factory(**changes) -> ZTPConfig:
        return make_config(tmp_path, **changes)

    return _factory
