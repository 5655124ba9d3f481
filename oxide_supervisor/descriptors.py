"""
Application Descriptors
=======================

Scans the descriptor directory: one file per system application, named
``<application name><suffix>`` (``codes.eeems.erode.oxide``).

Descriptors are YAML documents; plain JSON descriptors parse unchanged.

    type: backgroundable          # foreground | background | backgroundable
    bin: /opt/bin/erode
    displayName: Process Manager
    flags: [exclusive]
    events:
      stop: /opt/bin/erode --save
    environment:
      QT_QUICK_BACKEND: epaper
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Set, Tuple

import yaml

from oxide_supervisor.models.application import ApplicationType, SYSTEM_FLAG

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTOR_DIR = Path("/opt/usr/share/applications")
DEFAULT_DESCRIPTOR_SUFFIX = ".oxide"

_TYPE_NAMES = {
    "foreground": ApplicationType.FOREGROUND,
    "background": ApplicationType.BACKGROUND,
    "backgroundable": ApplicationType.BACKGROUNDABLE,
}

_EVENT_KEYS = {
    "stop": "onStop",
    "pause": "onPause",
    "resume": "onResume",
}

_OPTIONAL_STRINGS = ("displayName", "description", "icon", "user", "group", "workingDirectory")


class DescriptorError(ValueError):
    """Raised when a descriptor file cannot be turned into a candidate."""


@dataclass
class DescriptorScan:
    """Result of scanning the descriptor directory."""
    records: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    present: Set[str] = field(default_factory=set)
    errors: List[Tuple[Path, Exception]] = field(default_factory=list)


def _descriptor_name(path: Path, suffix: str) -> str:
    if suffix and path.name.endswith(suffix):
        return path.name[: -len(suffix)]
    return path.stem


def parse_type(value: Any, source: str = "") -> ApplicationType:
    """Parse a descriptor type string, falling back to FOREGROUND."""
    if value is None:
        return ApplicationType.FOREGROUND
    if isinstance(value, str):
        parsed = _TYPE_NAMES.get(value.strip().lower())
        if parsed is not None:
            return parsed
        if not value.strip():
            return ApplicationType.FOREGROUND
    logger.warning(f"Invalid type string {value!r} in {source or 'descriptor'}, using foreground")
    return ApplicationType.FOREGROUND


def load_descriptor(path: Path, suffix: str = DEFAULT_DESCRIPTOR_SUFFIX) -> Dict[str, Any]:
    """
    Load one descriptor and convert it to a settings record.

    The system flag is always first in the returned flags. Binary existence
    is not checked here.
    """
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DescriptorError(f"Unable to read descriptor: {path}") from exc

    try:
        raw = yaml.safe_load(contents)
    except yaml.YAMLError as exc:
        raise DescriptorError(f"Descriptor is not valid YAML/JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise DescriptorError("Descriptor root must be a mapping.")

    name = _descriptor_name(path, suffix)
    bin_path = raw.get("bin")
    if not isinstance(bin_path, str) or not bin_path.strip():
        raise DescriptorError(f"Descriptor {name} has no bin.")

    flags = [SYSTEM_FLAG]
    declared_flags = raw.get("flags") or []
    if isinstance(declared_flags, list):
        for flag in declared_flags:
            value = str(flag).strip() if flag is not None else ""
            if value and value not in flags:
                flags.append(value)
    else:
        logger.warning(f"Ignoring non-list flags in descriptor {name}")

    record: Dict[str, Any] = {
        "name": name,
        "bin": bin_path.strip(),
        "type": int(parse_type(raw.get("type"), source=str(path))),
        "flags": flags,
    }

    for key in _OPTIONAL_STRINGS:
        value = raw.get(key)
        if value is not None:
            record[key] = str(value)

    events = raw.get("events") or {}
    if isinstance(events, dict):
        for event, command in events.items():
            key = _EVENT_KEYS.get(str(event))
            if key is None:
                logger.warning(f"Unknown event {event!r} in descriptor {name}")
                continue
            record[key] = "" if command is None else str(command)
    else:
        logger.warning(f"Ignoring non-mapping events in descriptor {name}")

    environment = raw.get("environment") or {}
    if isinstance(environment, dict):
        record["environment"] = {str(k): "" if v is None else str(v) for k, v in environment.items()}
    else:
        logger.warning(f"Ignoring non-mapping environment in descriptor {name}")

    return record


def scan_descriptors(
    directory: Path,
    suffix: str = DEFAULT_DESCRIPTOR_SUFFIX,
) -> DescriptorScan:
    """
    Load every descriptor in directory.

    Every descriptor file found counts as present, even when it is invalid
    or its binary is missing, so the application it describes is not
    retired; only valid descriptors with an existing binary become records.
    """
    scan = DescriptorScan()
    try:
        entries = sorted(p for p in Path(directory).iterdir() if p.is_file() and p.name.endswith(suffix))
    except FileNotFoundError:
        logger.debug(f"Descriptor directory {directory} does not exist")
        return scan
    except OSError as exc:
        logger.warning(f"Unable to list descriptor directory {directory}: {exc}")
        scan.errors.append((Path(directory), exc))
        return scan

    for path in entries:
        name = _descriptor_name(path, suffix)
        scan.present.add(name)
        try:
            record = load_descriptor(path, suffix)
        except DescriptorError as exc:
            logger.warning(f"Skipping descriptor {path}: {exc}")
            scan.errors.append((path, exc))
            continue

        if not Path(record["bin"]).exists():
            logger.warning(f"Can't find application binary: {record['bin']} ({name})")
            scan.errors.append((path, FileNotFoundError(record["bin"])))
            continue

        scan.records[name] = record

    return scan
