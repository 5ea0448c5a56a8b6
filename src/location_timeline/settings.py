"""Application settings and configuration management."""

from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import (
    AnchorConfig,
    BlockConfig,
    CalendarConfig,
    MovementConfig,
    PatternConfig,
    PlaceLookupConfig,
    StoreConfig,
    UploadConfig,
    VerificationConfig,
    WindowConfig,
)


class Settings(BaseSettings):
    """
    Application settings for Location Timeline.

    Settings are loaded in the following order of precedence (highest to lowest):
    1. Environment variables (e.g., LOCATION_TIMELINE_DATA_DIR)
    2. .env file (if found)
    3. Default values

    Nested threshold groups can be set from the environment with a double
    underscore, e.g. LOCATION_TIMELINE_MOVEMENT__SPEED_FLOOR_MPS=1.5.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCATION_TIMELINE_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # --- File Paths ---
    data_dir: Path = Path("data")  # Default relative path, overridden by config
    store_file: Path | None = None  # Will be set based on data_dir
    database_file: Path | None = None  # Will be set based on data_dir

    def __init__(self, **data):
        """Initialize the Settings object."""
        super().__init__(**data)
        # Set database paths based on data_dir
        if self.data_dir:
            if self.store_file is None:
                self.store_file = self.data_dir / "pending_samples.sqlite3"
            if self.database_file is None:
                self.database_file = self.data_dir / "timeline.sqlite3"

    # --- Locale ---
    timezone: str = "UTC"  # Local day boundaries and rest window use this zone

    # --- Pipeline thresholds ---
    movement: MovementConfig = MovementConfig()
    windows: WindowConfig = WindowConfig()
    anchors: AnchorConfig = AnchorConfig()
    blocks: BlockConfig = BlockConfig()
    verification: VerificationConfig = VerificationConfig()
    patterns: PatternConfig = PatternConfig()

    # --- Storage & collaborators ---
    store: StoreConfig = StoreConfig()
    place_lookup: PlaceLookupConfig = PlaceLookupConfig()
    calendar: CalendarConfig = CalendarConfig()
    upload: UploadConfig = UploadConfig()

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        """Validate that the timezone name is known."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tz(self) -> ZoneInfo:
        """The configured timezone."""
        return ZoneInfo(self.timezone)

    @property
    def calendar_dir(self) -> Path:
        """Directory holding planned-event files."""
        events_dir = Path(self.calendar.events_dir)
        return events_dir if events_dir.is_absolute() else self.data_dir / events_dir


def load_settings(config_file: Path | None = None) -> Settings:
    """Load settings from a YAML file, environment variables, and defaults."""
    if config_file:
        with open(config_file, encoding="utf-8") as f:
            yaml_settings = yaml.safe_load(f) or {}

        # Resolve data_dir relative to the config file
        data_dir = Path(yaml_settings.get("data_dir", "data")).expanduser()
        if not data_dir.is_absolute():
            data_dir = (config_file.parent / data_dir).resolve()
        yaml_settings["data_dir"] = str(data_dir)

        # Join relative database paths with data_dir
        for key in ("store_file", "database_file"):
            if key in yaml_settings and not Path(yaml_settings[key]).is_absolute():
                yaml_settings[key] = str(data_dir / yaml_settings[key])

        # Create a Settings object from YAML, then merge with env vars/defaults
        return Settings(**yaml_settings)

    return Settings()
