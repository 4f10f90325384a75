"""Configuration system for the crony CLI with proper precedence handling.

Sources, highest precedence first:
CLI flags > environment variables > config files > defaults
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..scheduling.service import ServiceConfig


class ConfigurationError(Exception):
    """Exception raised when configuration cannot be loaded or validated."""
    pass


_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """Parse a duration such as ``5m``, ``90s`` or ``1h30m`` into seconds.

    Bare numbers are taken as seconds.

    Raises:
        ValueError: If the value is not a positive duration
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        text = str(value).strip()
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART_RE.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos != len(text) or not text:
                raise ValueError(f"invalid duration {value!r}")
    if seconds <= 0:
        raise ValueError(f"duration must be positive, got {value!r}")
    return seconds


class CronyConfig(BaseModel):
    """Complete CLI configuration."""

    pull_frequency: float = Field(
        default=300.0,
        description="Seconds between checks for upstream crontab changes"
    )
    crontab_path: str = Field(default="crontab", description="Crontab path inside the repository")
    shell: str = Field(default="/bin/bash", description="Shell used to run commands")
    command_timeout: Optional[float] = Field(
        default=None,
        description="Maximum seconds a single command may run"
    )
    workdir_root: Optional[Path] = Field(default=None, description="Directory for checkouts")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="%(asctime)s %(levelname)s %(name)s: %(message)s",
        description="Logging format string"
    )

    # Metadata
    config_file_path: Optional[Path] = Field(default=None, description="Source config file")
    loaded_from: List[str] = Field(default_factory=list, description="Configuration sources")

    @field_validator('pull_frequency', 'command_timeout', mode='before')
    @classmethod
    def validate_duration(cls, v):
        if v is None:
            return v
        return parse_duration(v)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = str(v).upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return level

    def service_config(self) -> ServiceConfig:
        """Build the per-repository service configuration."""
        return ServiceConfig(
            pull_frequency_seconds=self.pull_frequency,
            crontab_path=self.crontab_path,
            shell=self.shell,
            command_timeout_seconds=self.command_timeout,
            workdir_root=self.workdir_root,
        )


class ConfigurationLoader:
    """Loads and merges configuration from multiple sources with proper precedence."""

    ENV_PREFIX = "CRONY_"

    # Default configuration file names (searched in order)
    DEFAULT_CONFIG_FILES = [
        "crony.yaml",
        "crony.yml",
        ".crony.yaml",
        ".crony.yml",
        "crony.json",
        ".crony.json",
    ]

    ENV_MAPPING = {
        "PULL_FREQUENCY": "pull_frequency",
        "CRONTAB_PATH": "crontab_path",
        "SHELL": "shell",
        "COMMAND_TIMEOUT": "command_timeout",
        "WORKDIR_ROOT": "workdir_root",
        "LOG_LEVEL": "log_level",
        "LOG_FORMAT": "log_format",
    }

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self.loaded_sources: List[str] = []

    def load_configuration(
        self,
        config_file: Optional[Path] = None,
        cli_overrides: Optional[Dict[str, Any]] = None,
        search_paths: Optional[List[Path]] = None
    ) -> CronyConfig:
        """Load configuration with proper precedence.

        Args:
            config_file: Explicitly specified config file
            cli_overrides: CLI flag overrides; None values are ignored
            search_paths: Paths to search for config files

        Returns:
            Merged configuration

        Raises:
            ConfigurationError: If a source is unreadable or a value invalid
        """
        self.loaded_sources = ["defaults"]
        config_data: Dict[str, Any] = {}

        if config_file:
            if not config_file.exists():
                raise ConfigurationError(f"Configuration file not found: {config_file}")
            config_data.update(self._load_config_file(config_file))
            self.loaded_sources.append(f"config file: {config_file}")
        else:
            discovered = self._discover_config_file(search_paths or [Path.cwd()])
            if discovered:
                config_file = discovered
                config_data.update(self._load_config_file(discovered))
                self.loaded_sources.append(f"auto-discovered: {discovered}")

        env_config = self._load_environment_variables()
        if env_config:
            config_data.update(env_config)
            self.loaded_sources.append("environment variables")

        overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
        if overrides:
            config_data.update(overrides)
            self.loaded_sources.append("CLI flags")

        config_data["loaded_from"] = self.loaded_sources
        config_data["config_file_path"] = config_file

        try:
            return CronyConfig(**config_data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def _discover_config_file(self, search_paths: List[Path]) -> Optional[Path]:
        for search_path in search_paths:
            for config_filename in self.DEFAULT_CONFIG_FILES:
                config_path = search_path / config_filename
                if config_path.is_file():
                    return config_path
        return None

    def _load_config_file(self, config_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file."""
        suffix = config_path.suffix.lower()
        if suffix not in ('.yaml', '.yml', '.json'):
            raise ConfigurationError(f"Unsupported config file format: {config_path.suffix}")

        try:
            content = config_path.read_text(encoding='utf-8')
            data = json.loads(content) if suffix == '.json' else yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file {config_path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in config file {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Error loading config file {config_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        config = {}
        for suffix, key in self.ENV_MAPPING.items():
            value = self.environ.get(f"{self.ENV_PREFIX}{suffix}")
            if value is not None:
                config[key] = value
        return config


def load_configuration(
    config_file: Optional[Path] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
    search_paths: Optional[List[Path]] = None
) -> CronyConfig:
    """Convenience function to load configuration."""
    loader = ConfigurationLoader()
    return loader.load_configuration(config_file, cli_overrides, search_paths)


def print_configuration(config: CronyConfig, format: str = "yaml") -> str:
    """Render configuration in the given format (yaml or json)."""
    config_dict = config.model_dump(
        mode="json",
        exclude={'loaded_from', 'config_file_path'},
    )
    if format.lower() == "json":
        return json.dumps(config_dict, indent=2, default=str)
    return yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=True)
