"""Configuration management for the 3CX WLED bridge."""

from typing import Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # WLED Connection
    wled_ip_address: str = Field(...)
    wled_brightness: int = Field(default=128, ge=0, le=255)
    wled_transition: int = Field(default=1000, ge=0)  # milliseconds
    wled_timeout: float = Field(default=5.0)
    # Per-status colour overrides, e.g. STATUS_COLORS='{"dnd": [255, 0, 255]}'
    status_colors: Dict[str, List[int]] = Field(default_factory=dict)

    # 3CX Web Client
    threecx_web_url: str = Field(...)
    threecx_refresh_interval: int = Field(default=10000)  # milliseconds
    threecx_headless: bool = Field(default=False)
    cookies_path: str = Field(default="cookies.json")

    # Screenshots
    enable_screenshots: bool = Field(default=False)
    screenshot_min_interval: int = Field(default=60000)  # milliseconds
    screenshot_max_per_session: int = Field(default=20)
    screenshots_dir: str = Field(default="screenshots")

    # Application Settings
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=1550)

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def refresh_interval_seconds(self) -> float:
        return self.threecx_refresh_interval / 1000


settings = Settings()
