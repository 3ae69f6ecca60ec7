"""Virtualization manager capability interface and its libvirt implementation.

Reads (existence, state, block-device inventory, network status) go through
the libvirt Python bindings; every mutation is issued as a ``virsh`` /
``virt-install`` command through the :class:`~pfztp.executor.Executor` so
plan mode can print exactly what would run.
"""

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from typing import List, Sequence
from xml.etree.ElementTree import ParseError, fromstring

try:
    import libvirt  # type: ignore
except ImportError:  # pragma: no cover
    libvirt = None

from pfztp.constants import DEVICE_CDROM
from pfztp.exceptions import ManagerError, MissingDependency, NotReady, RuntimeFailure
from pfztp.executor import Executor
from pfztp.models import BlockDevice
from pfztp.utils import log, run

UNDEFINED = "undefined"


class VirtManager(ABC):
    """Narrow view of the hypervisor the reconciler depends on."""

    @abstractmethod
    def domain_exists(self, name: str) -> bool: ...

    @abstractmethod
    def domain_state(self, name: str) -> str:
        """Return a virsh-style state name, or ``"undefined"``."""

    @abstractmethod
    def list_block_devices(self, name: str) -> List[BlockDevice]: ...

    @abstractmethod
    def os_variant_known(self, variant: str) -> bool: ...

    @abstractmethod
    def define_domain(self, args: Sequence[str]) -> None: ...

    @abstractmethod
    def attach_disk(self, name: str, source: str, target: str, kind: str, live: bool) -> None: ...

    @abstractmethod
    def change_media(self, name: str, target: str, source: str, live: bool) -> None: ...

    @abstractmethod
    def detach_disk(self, name: str, target: str, live: bool) -> None: ...

    @abstractmethod
    def network_exists(self, name: str) -> bool: ...

    @abstractmethod
    def network_active(self, name: str) -> bool: ...

    @abstractmethod
    def network_autostart(self, name: str) -> bool: ...

    @abstractmethod
    def define_network(self, xml: str) -> None: ...

    @abstractmethod
    def autostart_network(self, name: str) -> None: ...

    @abstractmethod
    def start_network(self, name: str) -> None: ...


def parse_block_devices(xml: str) -> List[BlockDevice]:
    """Inventory ``<disk>`` elements of a domain definition."""
    try:
        root = fromstring(xml)
    except ParseError as exc:
        raise RuntimeFailure(f"Unable to parse domain XML: {exc}") from exc
    devices: List[BlockDevice] = []
    for disk in root.findall("./devices/disk"):
        target = disk.find("target")
        if target is None or not target.get("dev"):
            continue
        source_el = disk.find("source")
        source = None
        if source_el is not None:
            source = source_el.get("file") or source_el.get("dev") or source_el.get("name")
        devices.append(BlockDevice(kind=disk.get("device", "disk"), target=target.get("dev"), source=source))
    return devices


class LibvirtManager(VirtManager):
    def __init__(self, uri: str, executor: Executor) -> None:
        self.uri = uri
        self.executor = executor
        self.conn = None

    def connect(self) -> None:
        if libvirt is None:
            raise MissingDependency("libvirt python bindings not available; install libvirt-python")
        try:
            self.conn = libvirt.open(self.uri)
        except libvirt.libvirtError as exc:
            raise RuntimeFailure(f"Failed to open libvirt connection to {self.uri}: {exc}") from exc
        if self.conn is None:
            raise RuntimeFailure(f"Failed to open libvirt connection to {self.uri}")

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _require_conn(self):
        if self.conn is None:
            raise ManagerError("libvirt connection not established")
        return self.conn

    def _virsh(self, *args: str) -> List[str]:
        return ["virsh", "-c", self.uri, *args]

    def _lookup(self, name: str):
        conn = self._require_conn()
        try:
            return conn.lookupByName(name)
        except libvirt.libvirtError:
            return None

    def _lookup_network(self, name: str):
        conn = self._require_conn()
        try:
            return conn.networkLookupByName(name)
        except libvirt.libvirtError:
            return None

    # -- queries -------------------------------------------------------

    def domain_exists(self, name: str) -> bool:
        return self._lookup(name) is not None

    def domain_state(self, name: str) -> str:
        domain = self._lookup(name)
        if domain is None:
            return UNDEFINED
        state_names = {
            libvirt.VIR_DOMAIN_NOSTATE: "no state",
            libvirt.VIR_DOMAIN_RUNNING: "running",
            libvirt.VIR_DOMAIN_BLOCKED: "idle",
            libvirt.VIR_DOMAIN_PAUSED: "paused",
            libvirt.VIR_DOMAIN_SHUTDOWN: "in shutdown",
            libvirt.VIR_DOMAIN_SHUTOFF: "shut off",
            libvirt.VIR_DOMAIN_CRASHED: "crashed",
            libvirt.VIR_DOMAIN_PMSUSPENDED: "pmsuspended",
        }
        try:
            state, _reason = domain.state()
        except libvirt.libvirtError as exc:
            raise RuntimeFailure(f"Unable to query state of {name}: {exc}") from exc
        return state_names.get(state, "unknown")

    def list_block_devices(self, name: str) -> List[BlockDevice]:
        domain = self._lookup(name)
        if domain is None:
            raise NotReady(f"Domain {name} is not defined")
        try:
            xml = domain.XMLDesc(0)
        except libvirt.libvirtError as exc:
            raise RuntimeFailure(f"Unable to read definition of {name}: {exc}") from exc
        return parse_block_devices(xml)

    def os_variant_known(self, variant: str) -> bool:
        if not variant:
            return False
        try:
            result = run(["virt-install", "--osinfo", "list"], check=False, capture_output=True)
        except FileNotFoundError as exc:
            raise MissingDependency("virt-install is not installed") from exc
        if result.returncode != 0:
            log("WARN", "virt-install --osinfo list failed; treating OS hint as unknown")
            return False
        # Output lines look like "freebsd14.2, freebsd14" or "freebsd14.2".
        for line in result.stdout.splitlines():
            names = [part.strip() for part in line.split(",")]
            if variant in names:
                return True
        return False

    def network_exists(self, name: str) -> bool:
        return self._lookup_network(name) is not None

    def network_active(self, name: str) -> bool:
        network = self._lookup_network(name)
        return bool(network is not None and network.isActive())

    def network_autostart(self, name: str) -> bool:
        network = self._lookup_network(name)
        return bool(network is not None and network.autostart())

    # -- mutations -----------------------------------------------------

    def define_domain(self, args: Sequence[str]) -> None:
        self.executor.run(["virt-install", *args], description="Defining domain")

    def attach_disk(self, name: str, source: str, target: str, kind: str, live: bool) -> None:
        cmd = self._virsh("attach-disk", name, source, target, "--type", kind)
        if kind == DEVICE_CDROM:
            cmd.extend(["--mode", "readonly"])
        cmd.append("--config")
        if live:
            cmd.append("--live")
        self.executor.run(
            cmd,
            description=f"Attaching {source} to {name} at {target}",
            error=NotReady if live else RuntimeFailure,
        )

    def change_media(self, name: str, target: str, source: str, live: bool) -> None:
        cmd = self._virsh("change-media", name, target, source, "--insert", "--force", "--config")
        if live:
            cmd.append("--live")
        self.executor.run(
            cmd,
            description=f"Changing media on {name} {target} to {source}",
            error=NotReady if live else RuntimeFailure,
        )

    def detach_disk(self, name: str, target: str, live: bool) -> None:
        cmd = self._virsh("detach-disk", name, target, "--config")
        if live:
            cmd.append("--live")
        self.executor.run(
            cmd,
            description=f"Detaching {target} from {name}",
            error=NotReady if live else RuntimeFailure,
        )

    def define_network(self, xml: str) -> None:
        fd, xml_path = tempfile.mkstemp(prefix="pfztp-net-", suffix=".xml")
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(xml)
            self.executor.run(self._virsh("net-define", xml_path), description="Defining network")
        finally:
            os.unlink(xml_path)

    def autostart_network(self, name: str) -> None:
        self.executor.run(self._virsh("net-autostart", name), description=f"Enabling autostart for network {name}")

    def start_network(self, name: str) -> None:
        self.executor.run(self._virsh("net-start", name), description=f"Starting network {name}")


def open_manager(uri: str, executor: Executor) -> LibvirtManager:
    manager = LibvirtManager(uri, executor)
    manager.connect()
    return manager
