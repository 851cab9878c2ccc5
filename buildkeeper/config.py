"""
Configuration Management
========================

Handles loading configuration from environment variables and config files.
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Default configuration values
CONFIG_FILENAME = "buildkeeper.json"
DEFAULT_STATE_DIRNAME = ".buildkeeper"
DEFAULT_PACKAGE_NAME = "com.company.CircleLink"
DEFAULT_CACHE_CLEAR_TIMEOUT = 10.0

# Environment variable -> config field
ENV_OVERRIDES = {
    "BUILDKEEPER_STATE_DIR": "state_dir",
    "BUILDKEEPER_PACKAGE_NAME": "package_name",
    "BUILDKEEPER_KEYSTORE_ALIAS": "keystore_alias",
    "BUILDKEEPER_KEYSTORE_PASSWORD": "keystore_password",
    "BUILDKEEPER_CACHE_TIMEOUT": "cache_clear_timeout",
    "BUILDKEEPER_IOS_SCHEME": "ios_scheme",
}


@dataclass
class BuildKeeperConfig:
    """buildkeeper configuration for one mobile project."""
    project_dir: Path
    state_dir: Path
    package_name: str = DEFAULT_PACKAGE_NAME
    keystore_alias: str = "androiddebugkey"
    keystore_password: str = "android"
    cache_clear_timeout: float = DEFAULT_CACHE_CLEAR_TIMEOUT
    ios_scheme: Optional[str] = None

    @property
    def android_dir(self) -> Path:
        return self.project_dir / "android"

    @property
    def ios_dir(self) -> Path:
        return self.project_dir / "ios"

    @property
    def keystore_path(self) -> Path:
        return self.android_dir / "app" / "debug.keystore"

    @classmethod
    def load(cls, project_dir: Optional[Path] = None) -> "BuildKeeperConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables
        2. Project config file (buildkeeper.json)
        3. Default values
        """
        project_dir = Path(project_dir or Path.cwd()).resolve()
        values: dict[str, Any] = {}

        config_path = project_dir / CONFIG_FILENAME
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    values.update(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", config_path, e)

        for env_name, field_name in ENV_OVERRIDES.items():
            env_value = os.environ.get(env_name)
            if env_value:
                values[field_name] = env_value

        return cls.from_dict(project_dir, values)

    @classmethod
    def from_dict(cls, project_dir: Path, values: dict) -> "BuildKeeperConfig":
        """Build a config from raw values, ignoring unknown keys."""
        known = {f.name for f in fields(cls)} - {"project_dir"}
        kwargs = {k: v for k, v in values.items() if k in known}

        state_dir = Path(kwargs.pop("state_dir", DEFAULT_STATE_DIRNAME))
        if not state_dir.is_absolute():
            state_dir = project_dir / state_dir

        if "cache_clear_timeout" in kwargs:
            kwargs["cache_clear_timeout"] = float(kwargs["cache_clear_timeout"])

        return cls(project_dir=Path(project_dir), state_dir=state_dir, **kwargs)
