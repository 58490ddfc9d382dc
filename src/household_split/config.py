"""Configuration management for HouseholdSplit."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HOUSEHOLD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Signed-in party (identity provider)
    user_uid: str = ""
    user_email: str = ""
    user_display_name: str = ""

    # Used when no partner preference has been stored yet
    default_partner_email: str = ""

    # Expense form defaults
    default_category: str = "General"
    default_cost_center: str = "Shared"
    cost_centers: list[str] = Field(
        default_factory=lambda: ["Shared", "Juan", "Maruja", "Other"]
    )

    # Database path
    database_path: Path = Path.home() / ".household_split" / "household_split.db"

    @field_validator("database_path")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return value.expanduser()

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Make sure your environment or .env file "
            f"defines the HOUSEHOLD_* variables. See .env.example for reference.\n"
            f"Error: {e}"
        ) from e
