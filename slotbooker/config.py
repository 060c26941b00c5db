"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .domain.availability import resolve_timezone
from .domain.exceptions import ValidationError


class BookingConfig(BaseModel):
    """Retry settings for booking commits."""
    max_attempts: int = 3
    backoff_base_seconds: float = 0.05

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, value: int) -> int:
        """Ensure at least one commit attempt is made."""
        if value < 1:
            raise ValueError("max_attempts must be at least 1")
        return value

    @field_validator("backoff_base_seconds")
    @classmethod
    def validate_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("backoff_base_seconds must not be negative")
        return value


class NotificationConfig(BaseModel):
    """Outbound notification settings."""
    enabled: bool = True
    sender: str = "no-reply@slotbooker.local"


class TokenConfig(BaseModel):
    """Capability token signing settings."""
    secret: str = ""
    ttl_minutes: int = 7 * 24 * 60
    algorithm: str = "HS256"

    @field_validator("ttl_minutes")
    @classmethod
    def validate_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("ttl_minutes must be greater than zero")
        return value


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "UTC"
    slot_step_minutes: int = 15
    data_file: Optional[Path] = None
    booking: BookingConfig = Field(default_factory=BookingConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    tokens: TokenConfig = Field(default_factory=TokenConfig)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            resolve_timezone(value)
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @field_validator("slot_step_minutes")
    @classmethod
    def validate_step(cls, value: int) -> int:
        """Steps must tile an hour evenly."""
        if value <= 0 or 60 % value != 0:
            raise ValueError(f"slot_step_minutes must divide 60, got {value}")
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        config = cls(**data)
        if config.data_file is not None and not config.data_file.is_absolute():
            config = config.model_copy(update={"data_file": config_path.parent / config.data_file})
        return config


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
