"""
Automation configuration schema.

Human-authored YAML is parsed by the loader into these frozen types.
``AutomationSettings`` holds one organization's billing-cycle settings;
``EngineSettings`` holds process-wide knobs shared by every organization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

DEFAULT_RUN_TIME = "02:00"
DEFAULT_TIMEZONE = "Australia/Sydney"


# ---------------------------------------------------------------------------
# Per-organization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AutomationSettings:
    """Billing-cycle settings for one organization."""

    organization_id: UUID
    organization_name: str
    enabled: bool = True
    run_time: str = DEFAULT_RUN_TIME  # HH:MM, local to ``timezone``
    timezone: str = DEFAULT_TIMEZONE
    admin_emails: tuple[str, ...] = ()
    notify_on_success: bool = True
    notify_on_partial: bool = True
    notify_on_failure: bool = True


# ---------------------------------------------------------------------------
# Engine-wide
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Identifier allocation and notification delivery settings."""

    id_max_attempts: int = 5
    id_backoff_seconds: float = 0.1
    sendgrid_from_email: str | None = None
    sendgrid_api_key: str | None = None


@dataclass(frozen=True)
class SdaConfiguration:
    """Everything loaded from one configuration file."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    organizations: tuple[AutomationSettings, ...] = ()
    checksum: str = ""

    def for_organization(self, organization_id: UUID) -> AutomationSettings:
        for settings in self.organizations:
            if settings.organization_id == organization_id:
                return settings
        raise KeyError(f"No automation settings for organization {organization_id}")
