"""
Configuration management for audiencerunner.

Loads config.yaml from the audiencerunner home directory
($AUDIENCERUNNER_HOME, default ~/.config/audiencerunner) and the optional
env file it points at.
"""

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from audiencerunner.errors import ConfigError
from audiencerunner.log_store import parse_cell


def get_audiencerunner_home() -> Path:
    """Home directory holding config.yaml and .env."""
    home = os.environ.get("AUDIENCERUNNER_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/audiencerunner").expanduser()


@dataclass
class AudienceRunnerConfig:
    """Runtime configuration.

    Attributes:
        log_sheet: Sheet receiving job log lines
        log_start_cell: First cell of the log range (A1 notation)
        invocation_budget_seconds: Time a batch operation may spend per invocation
        max_rounds: Upper bound on Runner rounds (0 = unlimited)
        clear_logs_on_start: Clear the log sheet before a run
        validate_on_reconstruct: Reject payloads missing required fields at decode time
        audience_service_factory: "module:function" building the AudienceService
        audience_service_factory_args: Keyword arguments for that factory
        sheets_service_factory: "module:function" building the SheetsService
            behind the log store (in-memory sheet when unset)
        sheets_service_factory_args: Keyword arguments for that factory
        log_level / log_format / log_file: Python logging setup
        env_file: dotenv file loaded with the config
    """

    log_sheet: str = "Logs"
    log_start_cell: str = "A2"
    invocation_budget_seconds: float = 300.0
    max_rounds: int = 0
    clear_logs_on_start: bool = True
    validate_on_reconstruct: bool = False
    audience_service_factory: Optional[str] = None
    audience_service_factory_args: Optional[dict[str, Any]] = None
    sheets_service_factory: Optional[str] = None
    sheets_service_factory_args: Optional[dict[str, Any]] = None
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: On the first invalid value
        """
        try:
            parse_cell(self.log_start_cell)
        except ValueError as e:
            raise ConfigError(f"log_start_cell: {e}")
        if not self.log_sheet:
            raise ConfigError("log_sheet is required")
        if self.invocation_budget_seconds <= 0:
            raise ConfigError("invocation_budget_seconds must be positive")
        if self.max_rounds < 0:
            raise ConfigError("max_rounds must be >= 0")
        if self.log_format not in ("pretty", "structured"):
            raise ConfigError(f"log_format must be 'pretty' or 'structured', got {self.log_format!r}")

    def get_log_file_path(self) -> Optional[Path]:
        return Path(self.log_file).expanduser() if self.log_file else None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AudienceRunnerConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        config = cls(**data)
        config.validate()
        return config


def load_config(config_path: Optional[Path] = None) -> AudienceRunnerConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to <home>/config.yaml

    Returns:
        AudienceRunnerConfig instance

    Raises:
        FileNotFoundError: If the config file is missing
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_audiencerunner_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"audiencerunner config.yaml not found at {config_path}. Run 'audiencerunner init'."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    config = AudienceRunnerConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    return config
