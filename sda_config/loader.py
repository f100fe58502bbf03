"""
Configuration Loader (``sda_config.loader``).

Responsibility
--------------
Loads the automation YAML file and parses it into typed
``sda_config.schema`` dataclasses.  Runtime code obtains configuration
through ``sda_config.get_active_config()``; tests call the loader
directly.

Invariants enforced
-------------------
* Parse and validation errors raise ``ValueError`` or ``KeyError`` with
  descriptive messages; required fields have no silent defaults.
* Timezones are resolved through ``zoneinfo`` at load time, so an unknown
  zone fails here rather than at the first scheduled run.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  content for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``organization_id``  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from sda_config.schema import (
    DEFAULT_RUN_TIME,
    DEFAULT_TIMEZONE,
    AutomationSettings,
    EngineSettings,
    SdaConfiguration,
)

_RUN_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of the raw configuration."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def validate_run_time(value: Any) -> str:
    """
    Check a run time is a zero-padded 24-hour ``HH:MM`` string.

    Unquoted ``12:30`` in YAML 1.1 is read as the integer 750, so
    non-strings are rejected with a hint to quote the value.
    """
    if not isinstance(value, str):
        raise ValueError(f"run_time must be a quoted HH:MM string, got {value!r}")
    if not _RUN_TIME_RE.match(value):
        raise ValueError(f"run_time must be HH:MM (24-hour), got {value!r}")
    return value


def validate_timezone(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"timezone must be an IANA zone name, got {value!r}")
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {value!r}") from exc
    return value


def parse_automation_settings(data: dict[str, Any]) -> AutomationSettings:
    """
    Parse one organization's settings.

    Raises:
        KeyError: ``organization_id`` missing.
        ValueError: invalid run time, timezone or recipients, or an
            enabled organization with no admin email.
    """
    organization_id = UUID(str(data["organization_id"]))
    enabled = bool(data.get("enabled", True))

    emails = tuple(str(e).strip() for e in data.get("admin_emails") or ())
    invalid = [e for e in emails if not _EMAIL_RE.match(e)]
    if invalid:
        raise ValueError(
            f"Invalid admin email(s) for organization {organization_id}: {', '.join(invalid)}"
        )
    if enabled and not emails:
        raise ValueError(
            f"Organization {organization_id} has automation enabled "
            f"but no admin_emails"
        )

    notify = data.get("notifications") or {}
    return AutomationSettings(
        organization_id=organization_id,
        organization_name=str(data.get("organization_name", "")),
        enabled=enabled,
        run_time=validate_run_time(data.get("run_time", DEFAULT_RUN_TIME)),
        timezone=validate_timezone(data.get("timezone", DEFAULT_TIMEZONE)),
        admin_emails=emails,
        notify_on_success=bool(notify.get("on_success", True)),
        notify_on_partial=bool(notify.get("on_partial", True)),
        notify_on_failure=bool(notify.get("on_failure", True)),
    )


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    max_attempts = int(data.get("id_max_attempts", 5))
    if max_attempts < 1:
        raise ValueError(f"id_max_attempts must be at least 1, got {max_attempts}")
    backoff = float(data.get("id_backoff_seconds", 0.1))
    if backoff < 0:
        raise ValueError(f"id_backoff_seconds must not be negative, got {backoff}")
    return EngineSettings(
        id_max_attempts=max_attempts,
        id_backoff_seconds=backoff,
        sendgrid_from_email=data.get("sendgrid_from_email"),
    )


def parse_configuration(data: dict[str, Any]) -> SdaConfiguration:
    """Parse a whole configuration document."""
    organizations = tuple(
        parse_automation_settings(entry) for entry in data.get("organizations") or ()
    )
    seen: set[UUID] = set()
    for settings in organizations:
        if settings.organization_id in seen:
            raise ValueError(f"Duplicate organization_id: {settings.organization_id}")
        seen.add(settings.organization_id)

    return SdaConfiguration(
        engine=parse_engine_settings(data.get("engine") or {}),
        organizations=organizations,
        checksum=compute_checksum(data),
    )


def load_automation_config(path: Path | str) -> SdaConfiguration:
    """Load and validate a configuration file."""
    return parse_configuration(load_yaml_file(Path(path)))
