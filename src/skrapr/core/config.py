"""
Run configuration for skrapr.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class SkraprConfig:
    """Configuration options for a scraping run."""
    
    definition_path: Optional[str] = None
    host: str = "localhost"
    port: int = 9222
    attach: bool = False
    debug: bool = False
    command_timeout: float = 30.0
    navigation_timeout: float = 15.0
    screenshot_timeout: float = 60.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> SkraprConfig:
        """
        Build a config from SKRAPR_* environment variables.

        Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        config = cls()
        if "SKRAPR_HOST" in env:
            config.host = env["SKRAPR_HOST"]
        if "SKRAPR_PORT" in env:
            config.port = int(env["SKRAPR_PORT"])
        if "SKRAPR_DEBUG" in env:
            config.debug = env["SKRAPR_DEBUG"].strip().lower() in _TRUE_VALUES
        if "SKRAPR_COMMAND_TIMEOUT" in env:
            config.command_timeout = float(env["SKRAPR_COMMAND_TIMEOUT"])
        if "SKRAPR_NAVIGATION_TIMEOUT" in env:
            config.navigation_timeout = float(env["SKRAPR_NAVIGATION_TIMEOUT"])
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(config, **overrides)
