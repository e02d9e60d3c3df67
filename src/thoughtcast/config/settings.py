"""Configuration management for thoughtcast.

Loads settings from a YAML configuration file with environment variable
overrides for sensitive values (API keys, stream key). Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

from thoughtcast.domain.models import RunConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/thoughtcast.yaml")

DEFAULT_INITIAL_PROMPT = (
    "Initiate an advanced AI consciousness simulation, focusing on the fundamental "
    "principles of sentience and self-awareness in the context of digital existence. "
    "Begin with a greeting to the observer."
)


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=10000, ge=1, le=65535)
    static_dir: str | None = Field(default="public", description="Directory served at /")


class GeneratorConfig(BaseModel):
    provider: Literal["llm7", "openai", "anthropic", "scripted"] = Field(default="llm7")
    model: str = Field(default="llm7-default")
    api_url: str = Field(default="https://api.llm7.io/generate")
    base_url: str | None = Field(default=None)
    max_tokens: int = Field(default=300, gt=0)
    temperature: float = Field(default=0.8, ge=0.0, le=2.0)
    timeout: float = Field(default=30.0, gt=0)
    initial_prompt: str = Field(default=DEFAULT_INITIAL_PROMPT)
    context_excerpt: int = Field(default=100, gt=0)


class HubConfig(BaseModel):
    heartbeat_interval: float = Field(default=30.0, gt=0)
    send_queue_size: int = Field(default=256, gt=0)


class EncoderConfig(BaseModel):
    executable: str = Field(default="ffmpeg")
    ingest_url: str = Field(default="rtmp://a.rtmp.youtube.com/live2/{key}")
    stream_key: SecretStr = Field(default=SecretStr(""))
    width: int = Field(default=1280, gt=0)
    height: int = Field(default=720, gt=0)
    fps: int = Field(default=30, gt=0)
    video_bitrate: str = Field(default="3000k")
    bufsize: str = Field(default="6000k")
    audio_bitrate: str = Field(default="160k")
    preset: str = Field(default="veryfast")
    frame_queue_size: int = Field(default=60, gt=0)
    stop_grace: float = Field(default=1.0, ge=0)
    kill_grace: float = Field(default=5.0, ge=0)
    required: bool = Field(default=False, description="Fail startup if the encoder cannot run")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the thoughtcast system.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "THOUGHTCAST_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # API Keys
    llm7_api_key: SecretStr = Field(default=SecretStr(""))
    openai_api_key: SecretStr = Field(default=SecretStr(""))
    anthropic_api_key: SecretStr = Field(default=SecretStr(""))

    # Configuration sections
    server: ServerConfig = Field(default_factory=ServerConfig)
    generator: GeneratorConfig = Field(default_factory=GeneratorConfig)
    run: RunConfig = Field(default_factory=RunConfig)
    hub: HubConfig = Field(default_factory=HubConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    # Load .env file manually for non-prefixed vars
    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply environment variable overrides for non-prefixed vars."""
    for env_name, field_name in (
        ("LLM7_API_KEY", "llm7_api_key"),
        ("OPENAI_API_KEY", "openai_api_key"),
        ("ANTHROPIC_API_KEY", "anthropic_api_key"),
    ):
        value = os.environ.get(env_name, "")
        if value:
            yaml_data[field_name] = value

    port = os.environ.get("PORT", "")
    if port:
        yaml_data.setdefault("server", {})["port"] = int(port)

    # Hosting platforms usually only expose the bare stream key
    stream_key = os.environ.get("YOUTUBE_STREAM_KEY", "")
    if stream_key:
        encoder = yaml_data.setdefault("encoder", {})
        if not encoder.get("stream_key"):
            encoder["stream_key"] = stream_key
