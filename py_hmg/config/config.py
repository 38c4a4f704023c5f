from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings pulled from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Level model
    character_height: float = Field(default=180.0, gt=0, description="Character height in world units")
    max_height_difference: Optional[float] = Field(
        default=None, gt=0, description="Override for the max height between adjacent levels"
    )
    max_walkable_level: int = Field(default=2, description="Highest level that is still playable")

    # Grid defaults
    default_cols: int = Field(default=100, gt=0, description="Default grid width in cells")
    default_rows: int = Field(default=100, gt=0, description="Default grid height in cells")
    cell_size: float = Field(default=50.0, gt=0, description="World units per grid cell")
    default_seed: str = Field(default="py-hmg", description="Seed used when none is given")

    # Performance
    max_workers: int = Field(default=1, ge=1, description="Worker threads for pathfinding fan-out")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Logging format (plain or json)")


# Instantiate singleton settings object
settings = Settings()
