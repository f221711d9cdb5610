"""Pydantic models for configuration and validation."""

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ServerConfig(BaseModel):
    """HTTP surface settings."""

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, gt=0, lt=65536, description="Listen port")
    api_key: Optional[str] = Field(
        default=None, description="Required X-API-Key value (None = no authentication)"
    )

    @field_validator("api_key")
    @classmethod
    def empty_key_disables_auth(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class WorkerConfig(BaseModel):
    """Job engine sizing."""

    worker_count: int = Field(default=2, ge=1, description="Concurrent transcode workers")
    queue_capacity: int = Field(default=100, ge=1, description="Bounded queue buffer size")
    shutdown_timeout_s: float = Field(
        default=30.0, gt=0.0, description="Max wait for in-flight jobs on shutdown"
    )
    progress_persist_interval_s: float = Field(
        default=1.0, ge=0.0, description="Minimum seconds between progress writes"
    )


class StorageConfig(BaseModel):
    """Local files and job database location."""

    temp_dir: str = Field(default="/tmp/transcoder", description="Uploads, outputs and database")
    database_name: str = Field(default="transcoder.db", description="SQLite file inside temp_dir")

    @property
    def database_path(self) -> str:
        return os.path.join(self.temp_dir, self.database_name)


class DriveConfig(BaseModel):
    """Google Drive upload (enabled when both fields are set)."""

    credentials_file: Optional[str] = Field(
        default="/config/credentials.json", description="Service account JSON key"
    )
    folder_id: Optional[str] = Field(default=None, description="Destination folder id")

    @property
    def enabled(self) -> bool:
        return bool(self.credentials_file and self.folder_id)


class WebhookConfig(BaseModel):
    """Completion notification settings."""

    url: Optional[str] = Field(default=None, description="Endpoint (None = notifications off)")
    retry_count: int = Field(default=3, ge=0, description="Extra attempts after the first")
    backoff_base_s: float = Field(
        default=1.0, gt=0.0, description="First retry delay, doubled for each further retry"
    )
    deadline_s: float = Field(default=300.0, gt=0.0, description="Ceiling for all attempts")
    request_timeout_s: float = Field(default=30.0, gt=0.0, description="Per-request timeout")

    @field_validator("url")
    @classmethod
    def empty_url_disables(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class TranscodeConfig(BaseModel):
    """FFmpeg output contract and runner limits."""

    video_codec: str = Field(default="libx264", description="Video codec name")
    preset: Literal[
        "ultrafast",
        "superfast",
        "veryfast",
        "faster",
        "fast",
        "medium",
        "slow",
        "slower",
        "veryslow",
    ] = Field(default="medium", description="Encoding speed preset (faster = larger files)")
    crf: int = Field(
        default=23, ge=0, le=51, description="Constant Rate Factor (0-51, lower = better quality)"
    )
    audio_codec: str = Field(default="aac", description="Audio codec name")
    audio_bitrate: str = Field(default="128k", description="Audio bitrate (e.g., '128k')")
    global_timeout_s: float = Field(
        default=7200, gt=0, description="Maximum duration of one transcode in seconds"
    )
    no_progress_timeout_s: float = Field(
        default=300, gt=0, description="Kill FFmpeg if no progress for N seconds (stall detection)"
    )
    kill_grace_period_s: float = Field(
        default=5, gt=0, description="Grace period between SIGTERM and SIGKILL"
    )
    save_artifacts_on_failure: bool = Field(
        default=True, description="Save FFmpeg logs and commands on failure for debugging"
    )
    ffmpeg_loglevel: str = Field(
        default="info", description="FFmpeg log level (info or more verbose keeps Duration)"
    )
    ffmpeg_path: Optional[str] = Field(
        default=None, description="FFmpeg executable (None = imageio-ffmpeg binary)"
    )


class TranscoderConfig(BaseModel):
    """Complete application configuration with validation."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    workers: WorkerConfig = Field(default_factory=WorkerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    drive: DriveConfig = Field(default_factory=DriveConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    transcode: TranscodeConfig = Field(default_factory=TranscodeConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "TranscoderConfig":
        """Create config from nested dict (YAML)."""
        return cls(**data)

    def merge_cli_overrides(self, cli_args: dict) -> "TranscoderConfig":
        """Apply CLI overrides and return new config instance."""
        config_dict = self.model_dump()

        if cli_args.get("host") is not None:
            config_dict["server"]["host"] = cli_args["host"]
        if cli_args.get("port") is not None:
            config_dict["server"]["port"] = cli_args["port"]
        if cli_args.get("workers") is not None:
            config_dict["workers"]["worker_count"] = cli_args["workers"]
        if cli_args.get("temp_dir") is not None:
            config_dict["storage"]["temp_dir"] = cli_args["temp_dir"]

        return TranscoderConfig.from_dict(config_dict)
