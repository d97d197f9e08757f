"""Configuration management with YAML and environment variable support.

Settings are read once at import time into the module-level `settings`.
The YAML file defaults to ./config.yaml; REELPIPE_CONFIG_FILE points
elsewhere.
"""

import os
from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


CONFIG_FILE_ENV = "REELPIPE_CONFIG_FILE"


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading the nested sections from a YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        yaml_path = Path(os.environ.get(CONFIG_FILE_ENV, "config.yaml"))
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{yaml_path} must contain a mapping of settings sections")
        return data


class GoogleCloudConfig(BaseModel):
    """Google Cloud configuration.

    project_id is only needed when the analysis model routes to Vertex AI.
    """

    project_id: Optional[str] = None
    location: str = "us-central1"


class ServicesConfig(BaseModel):
    """External generation service endpoints and credentials."""

    analysis_model: str = "gemini-2.5-flash"
    ollama_endpoint: Optional[str] = None
    ollama_api_key: Optional[str] = None
    tts_url: str = "http://localhost:8100"
    tts_api_key: Optional[str] = None
    pexels_api_key: Optional[str] = None
    pixabay_api_key: Optional[str] = None
    jamendo_client_id: Optional[str] = None
    transcription_url: str = "https://api.openai.com/v1"
    transcription_api_key: Optional[str] = None
    transcription_model: str = "whisper-1"
    request_timeout: float = 60.0


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    min_total_duration: float = 25.0
    max_total_duration: float = 35.0
    min_scene_duration: float = 2.0
    max_scene_duration: float = 8.0
    continuity_tolerance: float = 0.1
    retry_max_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 30.0
    call_timeout: float = 300.0
    output_width: int = 1080
    output_height: int = 1920
    output_fps: int = 30
    music_volume: float = 0.15
    watch_poll_interval: float = 5.0
    max_concurrent_jobs: int = 2


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///reelpipe.db"
    tmp_dir: Path = Path("tmp/scratch")
    output_dir: Path = Path("tmp/storage")
    public_base_url: str = "http://localhost:8000/media"

    @field_validator("tmp_dir", "output_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: REELPIPE_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="REELPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_cloud: GoogleCloudConfig = GoogleCloudConfig()
    services: ServicesConfig = ServicesConfig()
    pipeline: PipelineConfig = PipelineConfig()
    storage: StorageConfig = StorageConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. .env file
        3. YAML file (see CONFIG_FILE_ENV)
        4. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


# Singleton instance
settings = Settings()
