"""Configuration loading and environment resolution for the pfSense ZTP reconciler."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from pfztp.constants import (
    CONFIG_RENDERER_RELPATH,
    DEFAULTS,
    ENV_FILE_CANDIDATES,
    ENV_LINE_RE,
    ENV_REF_RE,
    INSTALLER_ENV_KEYS,
    KNOWN_KEYS,
    LIBVIRT_IMAGES_DIR,
    WAN_MODE_ALIASES,
    YAML_SUFFIXES,
)
from pfztp.exceptions import ConfigurationError
from pfztp.models import ZTPConfig
from pfztp.utils import log, parse_bool, parse_int


def _strip_comment(raw: str) -> str:
    # A "#" starts a comment only outside quotes and after whitespace.
    quote = None
    for idx, char in enumerate(raw):
        if quote:
            if char == quote:
                quote = None
        elif char in {"'", '"'}:
            quote = char
        elif char == "#" and idx > 0 and raw[idx - 1].isspace():
            return raw[:idx]
    return raw


def _unquote(raw: str) -> str:
    value = _strip_comment(raw.strip()).strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _expand(value: str, scope: Mapping[str, str]) -> str:
    def _sub(match) -> str:
        name = match.group(1) or match.group(3)
        fallback = match.group(2)
        resolved = scope.get(name)
        if resolved:
            return resolved
        return fallback if fallback is not None else ""

    return ENV_REF_RE.sub(_sub, value)


def parse_env_file(path: Path, scope: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Parse KEY=VALUE lines; ``${VAR}`` references resolve against earlier keys, then ``scope``."""
    values: Dict[str, str] = {}
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigurationError(f"Failed to read environment from {path}: {exc}")
    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip().rstrip("\r")
        if not line or line.startswith("#"):
            continue
        match = ENV_LINE_RE.match(line)
        if not match:
            log("WARN", f"{path}:{lineno}: ignoring malformed line")
            continue
        key, raw_value = match.group(1), match.group(2)
        quoted_single = raw_value.strip().startswith("'")
        value = _unquote(raw_value)
        if not quoted_single:
            value = _expand(value, {**(scope or {}), **values})
        values[key] = value
    return values


def parse_yaml_file(path: Path) -> Dict[str, str]:
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as exc:
        raise ConfigurationError(f"Failed to read environment from {path}: {exc}")
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{path} contains invalid YAML: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a YAML mapping, got {type(data).__name__}")
    values: Dict[str, str] = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        values[str(key)] = str(value)
    return values


def load_source(path: Path, scope: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    if path.suffix.lower() in YAML_SUFFIXES:
        return parse_yaml_file(path)
    return parse_env_file(path, scope)


def candidate_sources(env_file: Optional[Path], search_root: Optional[Path] = None) -> List[Path]:
    if env_file is not None:
        return [env_file]
    root = search_root or Path.cwd()
    return [root / name for name in ENV_FILE_CANDIDATES]


def _known(values: Mapping[str, str], keep_empty: bool = False) -> Dict[str, str]:
    return {key: values[key] for key in KNOWN_KEYS if key in values and (keep_empty or values[key] != "")}


def _optional_path(raw: Optional[str]) -> Optional[Path]:
    if raw is None:
        return None
    raw = raw.strip()
    return Path(raw).expanduser() if raw else None


def load_environment(
    env_file: Optional[Path] = None,
    overrides: Optional[Mapping[str, str]] = None,
    search_root: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ZTPConfig:
    """Resolve the run's configuration: defaults < environment < first source file < overrides."""
    if environ is None:
        environ = os.environ
    overrides = dict(overrides or {})

    source: Optional[Path] = None
    file_values: Dict[str, str] = {}
    for candidate in candidate_sources(env_file, search_root):
        if candidate.is_file():
            log("INFO", f"Loading environment from {candidate}")
            file_values = load_source(candidate, scope=environ)
            source = candidate
            break
    else:
        if env_file is not None:
            raise ConfigurationError(f"Environment file '{env_file}' not found")

    env_values = _known(environ)
    override_values = _known(overrides, keep_empty=True)
    if source is None:
        if not env_values and not override_values:
            checked = "; ".join(str(p) for p in candidate_sources(env_file, search_root))
            raise ConfigurationError(
                f"Unable to locate environment file (checked: {checked}) and no settings were supplied"
            )
        log("WARN", "No environment file found; relying on existing shell variables.")

    merged: Dict[str, str] = dict(DEFAULTS)
    merged.update(env_values)
    merged.update(_known(file_values, keep_empty=True))
    merged.update(override_values)
    return _build_config(merged, source)


def _build_config(values: Mapping[str, str], source: Optional[Path]) -> ZTPConfig:
    vm_name = values["PF_VM_NAME"].strip()
    if not vm_name:
        raise ConfigurationError("PF_VM_NAME is empty")

    work_root = Path(values["WORK_ROOT"]).expanduser()
    vcpus = parse_int("PF_VCPUS", values["PF_VCPUS"], min_val=1)
    ram_mb = parse_int("PF_RAM_MB", values["PF_RAM_MB"], min_val=256)
    disk_size_gb = parse_int("PF_QCOW2_SIZE_GB", values["PF_QCOW2_SIZE_GB"], min_val=1)
    headless = parse_bool("PF_HEADLESS", values["PF_HEADLESS"])

    disk_path = _optional_path(values.get("PF_QCOW2_PATH")) or LIBVIRT_IMAGES_DIR / f"{vm_name}.qcow2"
    installer_dir = _optional_path(values.get("PF_INSTALLER_DIR")) or work_root / "pfsense" / "installers"

    wan_mode_raw = values["WAN_MODE"].strip().lower()
    wan_mode = WAN_MODE_ALIASES.get(wan_mode_raw)
    if wan_mode is None:
        supported = ", ".join(sorted(WAN_MODE_ALIASES))
        raise ConfigurationError(f"Unsupported WAN_MODE '{values['WAN_MODE']}'. Supported: {supported}")
    wan_device = (values.get("PF_WAN_DEV") or values.get("WAN_NIC") or "").strip() or None
    if wan_mode == "macvtap" and not wan_device:
        raise ConfigurationError("PF_WAN_DEV (or WAN_NIC) must be set when WAN_MODE=macvtap")

    lan_network = values["PF_LAN_NETWORK"].strip()
    lan_bridge = values["PF_LAN_BRIDGE"].strip()
    if not lan_network or not lan_bridge:
        raise ConfigurationError("PF_LAN_NETWORK and PF_LAN_BRIDGE must not be empty")

    renderer = _optional_path(values.get("PF_CONFIG_RENDERER"))
    if renderer is None and source is not None:
        renderer = source.parent.absolute() / CONFIG_RENDERER_RELPATH

    return ZTPConfig(
        work_root=work_root,
        vm_name=vm_name,
        vcpus=vcpus,
        ram_mb=ram_mb,
        disk_path=disk_path,
        disk_size_gb=disk_size_gb,
        installer_dest=_optional_path(values.get("PF_INSTALLER_DEST")),
        installer_dir=installer_dir,
        installer_sources=tuple(
            (key, values[key]) for key in INSTALLER_ENV_KEYS if values.get(key, "").strip()
        ),
        os_variant=values["PF_OSINFO"].strip(),
        headless=headless,
        wan_mode=wan_mode,
        wan_bridge=values["PF_WAN_BRIDGE"].strip(),
        wan_device=wan_device,
        lan_network=lan_network,
        lan_bridge=lan_bridge,
        config_iso_path=_optional_path(values.get("PF_CONFIG_ISO_PATH")),
        config_renderer=renderer,
        libvirt_uri=values["LIBVIRT_URI"].strip(),
        env_file=source,
    )
