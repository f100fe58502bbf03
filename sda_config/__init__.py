"""
sda_config -- single public entrypoint for automation configuration.

Responsibility:
    Provides the runtime way to obtain billing-cycle settings through
    ``get_active_config()``.  Other components do not read configuration
    files or environment variables directly.

Architecture position:
    Configuration.  Sits beside ``sda_kernel``; the kernel never imports
    from ``sda_config``.  ``sda_automation`` passes the parsed settings
    into kernel services as plain arguments.

Failure modes:
    - ``FileNotFoundError`` -- the configured file does not exist.
    - ``ValueError`` / ``KeyError`` -- validation failures from the loader.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from sda_config.loader import load_automation_config
from sda_config.schema import AutomationSettings, EngineSettings, SdaConfiguration

_logger = logging.getLogger("sda_kernel.config")

CONFIG_PATH_ENV = "SDA_CONFIG_PATH"
SENDGRID_API_KEY_ENV = "SENDGRID_API_KEY"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "automation.yaml"


def get_active_config(config_path: Path | str | None = None) -> SdaConfiguration:
    """The public configuration entrypoint.

    The file is ``config_path`` if given, else the path in
    ``SDA_CONFIG_PATH``, else the bundled ``sets/automation.yaml``.  The
    SendGrid API key is taken from ``SENDGRID_API_KEY`` and never from the
    file.
    """
    path = Path(config_path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_PATH)
    config = load_automation_config(path)

    api_key = os.environ.get(SENDGRID_API_KEY_ENV)
    if api_key:
        config = replace(config, engine=replace(config.engine, sendgrid_api_key=api_key))

    _logger.info(
        "SDA_CONFIG_TRACE",
        extra={
            "trace_type": "SDA_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": config.checksum,
            "organization_count": len(config.organizations),
        },
    )
    return config


__all__ = [
    "AutomationSettings",
    "EngineSettings",
    "SdaConfiguration",
    "get_active_config",
    "load_automation_config",
]
