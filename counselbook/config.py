"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import List

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import parse_wall_clock

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "profile",
    "email",
]


class GoogleOAuthConfig(BaseModel):
    """OAuth client registration for the calendar provider."""
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url: str = "https://oauth2.googleapis.com/token"
    timeout_seconds: float = 15.0

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, value: List[str]) -> List[str]:
        """At least one scope has to be requested."""
        if not value:
            raise ValueError("scopes must not be empty")
        return value


class CalendarApiConfig(BaseModel):
    """Calendar API endpoint and network policy."""
    base_url: str = "https://www.googleapis.com/calendar/v3"
    timeout_seconds: float = 15.0
    max_retries: int = 2
    backoff_seconds: float = 0.5

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, value: int) -> int:
        """Retries are bounded; negative values make no sense."""
        if not 0 <= value <= 5:
            raise ValueError(f"max_retries must be between 0 and 5, got {value}")
        return value


class StudentLookupConfig(BaseModel):
    """Third-party student identity service."""
    base_url: str = "https://studenttracking.in:5173/employee"
    timeout_seconds: float = 10.0


class SchedulingDefaults(BaseModel):
    """Defaults applied when a counselor record leaves a field unset."""
    timezone: str = "Asia/Kolkata"
    work_start_time: str = "09:00"
    work_end_time: str = "17:00"
    duration_minutes: int = 60
    lead_time_minutes: int = 15
    token_skew_seconds: int = 60
    oauth_state_ttl_seconds: int = 600

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Reject unknown IANA timezone names early."""
        try:
            pendulum.timezone(value)
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("work_start_time", "work_end_time")
    @classmethod
    def validate_wall_clock(cls, value: str) -> str:
        """Validate HH:MM strings."""
        if parse_wall_clock(value) is None:
            raise ValueError(f"Expected HH:MM, got {value!r}")
        return value

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Ensure session duration is positive."""
        if value <= 0:
            raise ValueError("duration_minutes must be greater than zero")
        return value

    @field_validator("lead_time_minutes", "token_skew_seconds", "oauth_state_ttl_seconds")
    @classmethod
    def validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must not be negative")
        return value

    @model_validator(mode="after")
    def validate_hours_order(self) -> "SchedulingDefaults":
        """Ensure the default window opens before it closes."""
        if parse_wall_clock(self.work_end_time) <= parse_wall_clock(self.work_start_time):
            raise ValueError("work_end_time must be later than work_start_time")
        return self


class StorageConfig(BaseModel):
    """Where counselor and session records are kept."""
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".counselbook")

    @field_validator("data_dir")
    @classmethod
    def expand_home(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def counselors_file(self) -> Path:
        return self.data_dir / "counselors.json"

    @property
    def sessions_file(self) -> Path:
        return self.data_dir / "sessions.json"


class AppConfig(BaseModel):
    """Application configuration."""
    google: GoogleOAuthConfig
    calendar: CalendarApiConfig = Field(default_factory=CalendarApiConfig)
    student_lookup: StudentLookupConfig = Field(default_factory=StudentLookupConfig)
    scheduling: SchedulingDefaults = Field(default_factory=SchedulingDefaults)
    storage: StorageConfig = Field(default_factory=StorageConfig)

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

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    config_path = Path.cwd() / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
