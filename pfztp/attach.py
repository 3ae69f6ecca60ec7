"""Removable media reconciliation for an existing domain.

Each call re-reads the domain's block-device inventory and state right
before acting; nothing is cached between steps, so an attachment made by a
previous (possibly interrupted) run is recognised and left alone.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional

from pfztp.constants import CANDIDATE_TARGETS, LIVE_STATES, REMOVABLE_KINDS
from pfztp.exceptions import NotReady, RuntimeFailure
from pfztp.models import BlockDevice
from pfztp.utils import log
from pfztp.virt import UNDEFINED, VirtManager

PRESENT = "present"
CHANGED = "changed"
ATTACHED = "attached"
DETACHED = "detached"
ABSENT = "absent"


def find_by_source(devices: Iterable[BlockDevice], source: str) -> Optional[BlockDevice]:
    for device in devices:
        if device.source == source:
            return device
    return None


def reusable_slot(devices: List[BlockDevice], kind: str, reserved: Iterable[str]) -> Optional[BlockDevice]:
    """Pick a removable slot of ``kind`` to swap media into: empty slots first, then any not in ``reserved``."""
    if kind not in REMOVABLE_KINDS:
        return None
    reserved = set(reserved)
    slots = [device for device in devices if device.kind == kind]
    for device in slots:
        if not device.source:
            return device
    for device in slots:
        if device.source not in reserved:
            return device
    return None


def free_target(devices: Iterable[BlockDevice], kind: str) -> Optional[str]:
    used = {device.target for device in devices}
    for target in CANDIDATE_TARGETS.get(kind, ()):
        if target not in used:
            return target
    return None


class AttachmentReconciler:
    def __init__(self, virt: VirtManager) -> None:
        self.virt = virt

    def _is_live(self, domain: str) -> bool:
        state = self.virt.domain_state(domain)
        if state == UNDEFINED:
            raise NotReady(f"Domain {domain} is not defined")
        return state in LIVE_STATES

    def _apply(self, verb: str, domain: str, source: str, live: bool, action: Callable[[bool], None]) -> None:
        """Run ``action`` live+config when possible, falling back to config-only once."""
        if live:
            try:
                action(True)
                return
            except NotReady as exc:
                log("WARN", f"Live update of {source} on {domain} rejected; retrying config-only ({exc})")
        try:
            action(False)
        except RuntimeFailure as exc:
            raise RuntimeFailure(f"Unable to {verb} {source} on domain {domain}: {exc}") from exc

    def ensure_attached(
        self,
        domain: str,
        source: str,
        kind: str,
        label: str,
        reserved: Iterable[str] = (),
    ) -> str:
        """Make sure ``source`` is attached to ``domain``; return the outcome."""
        devices = self.virt.list_block_devices(domain)
        existing = find_by_source(devices, source)
        if existing is not None:
            log("INFO", f"{label} already attached to {domain} ({existing.target}).")
            return PRESENT

        live = self._is_live(domain)
        slot = reusable_slot(devices, kind, reserved)
        if slot is not None:
            log("INFO", f"Updating {label} on {domain} target {slot.target} ({slot.source or 'empty'} -> {source})")
            self._apply(
                "insert",
                domain,
                source,
                live,
                lambda use_live: self.virt.change_media(domain, slot.target, source, live=use_live),
            )
            return CHANGED

        target = free_target(devices, kind)
        if target is None:
            raise RuntimeFailure(f"No free {kind} target left on {domain} for {label} ({source})")
        log("INFO", f"Attaching {label} to {domain} at {target}")
        self._apply(
            "attach",
            domain,
            source,
            live,
            lambda use_live: self.virt.attach_disk(domain, source, target, kind, live=use_live),
        )
        return ATTACHED

    def detach(self, domain: str, source: str, label: str) -> str:
        devices = self.virt.list_block_devices(domain)
        existing = find_by_source(devices, source)
        if existing is None:
            log("INFO", f"{label} not attached to {domain}.")
            return ABSENT
        live = self._is_live(domain)
        log("INFO", f"Detaching {label} ({existing.target}) from {domain}")
        self._apply(
            "detach",
            domain,
            source,
            live,
            lambda use_live: self.virt.detach_disk(domain, existing.target, live=use_live),
        )
        return DETACHED
