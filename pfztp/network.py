"""Isolated LAN network definition for the pfSense domain."""

from __future__ import annotations

from xml.etree.ElementTree import Element, SubElement, tostring

from pfztp.exceptions import ConfigurationError
from pfztp.utils import log
from pfztp.virt import VirtManager


def _element_to_str(root: Element) -> str:
    """Serialize an ElementTree element to a pretty-printed XML string without declaration."""
    from xml.dom.minidom import parseString

    raw = tostring(root, encoding="unicode")
    return parseString(raw).documentElement.toprettyxml(indent="  ").strip()


def render_network_xml(name: str, bridge: str) -> str:
    """Render a libvirt network with no forwarding: pure L2 on ``bridge``."""
    if not name:
        raise ConfigurationError("Network name must not be empty")
    if not bridge:
        raise ConfigurationError(f"Bridge name for network {name} must not be empty")
    network = Element("network")
    SubElement(network, "name").text = name
    SubElement(network, "bridge", name=bridge, stp="on", delay="0")
    return _element_to_str(network)


def ensure_network(virt: VirtManager, name: str, bridge: str) -> None:
    """Define, autostart and start ``name``; each step is skipped when already satisfied."""
    if virt.network_exists(name):
        log("INFO", f"Network {name} already defined")
    else:
        log("INFO", f"Defining isolated network {name} on bridge {bridge}")
        virt.define_network(render_network_xml(name, bridge))

    if not virt.network_autostart(name):
        virt.autostart_network(name)
    if not virt.network_active(name):
        virt.start_network(name)
