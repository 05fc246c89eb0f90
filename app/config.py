"""
Configuration management for the Whisper Upload Gateway.

This module provides configuration settings for the transcription job
pipeline, including the engine script location, runtime discovery,
execution bounds and upload limits.

Uses Pydantic Settings for robust environment variable management with
validation and type safety.
"""

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Supported logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """
    Configuration settings for the transcription gateway.

    All settings can be overridden using environment variables.
    Pydantic Settings provides automatic validation and type conversion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        populate_by_name=True,
        extra="ignore"
    )

    # External engine
    worker_script_path: str = Field(
        default="worker/transcribe.py",
        description="Path to the engine script (relative paths resolve against the working directory)",
        alias="WORKER_SCRIPT_PATH"
    )

    runtime_candidates: Optional[List[str]] = Field(
        default=None,
        description="Ordered interpreter candidates overriding the platform defaults",
        alias="RUNTIME_CANDIDATES"
    )

    check_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Time limit for each interpreter version check (in seconds)",
        alias="CHECK_TIMEOUT_SECONDS"
    )

    # Workspace
    workspace_dir_name: str = Field(
        default="whisper-uploads",
        min_length=1,
        description="Subdirectory of the system temp root holding job artifacts",
        alias="WORKSPACE_DIR_NAME"
    )

    output_suffix: str = Field(
        default=".json",
        description="Extension of the engine's output artifact",
        alias="OUTPUT_SUFFIX"
    )

    # Execution bounds
    job_timeout_seconds: float = Field(
        default=600.0,  # 10 minutes
        gt=0,
        le=24 * 3600,
        description="Wall-clock limit for one engine run (in seconds)",
        alias="JOB_TIMEOUT_SECONDS"
    )

    max_output_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10 MiB
        ge=1024,
        le=1024 * 1024 * 1024,
        description="Maximum combined size of captured stdout and stderr (in bytes)",
        alias="MAX_OUTPUT_BYTES"
    )

    # File upload limits
    max_upload_size_mb: int = Field(
        default=500,
        ge=1,
        le=5000,
        description="Maximum media upload size in megabytes",
        alias="MAX_UPLOAD_SIZE_MB"
    )

    # Credentials
    hf_token_env: str = Field(
        default="HUGGING_FACE_TOKEN",
        min_length=1,
        description="Environment variable read at request time for the diarization token",
        alias="HF_TOKEN_ENV"
    )

    # API configuration
    api_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port to expose the API",
        alias="API_PORT"
    )

    api_host: str = Field(
        default="0.0.0.0",
        description="API host address",
        alias="API_HOST"
    )

    # Logging configuration
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
        alias="LOG_LEVEL"
    )

    log_file: Optional[str] = Field(
        default=None,
        description="Optional file that receives a copy of the logs",
        alias="LOG_FILE"
    )

    log_json: bool = Field(
        default=True,
        description="Emit JSON log lines instead of plain text",
        alias="LOG_JSON"
    )

    @field_validator("output_suffix")
    @classmethod
    def validate_output_suffix(cls, v: str) -> str:
        """Ensure the output suffix is a single file extension."""
        if not v.startswith(".") or len(v) < 2 or "/" in v or "\\" in v:
            raise ValueError(f"output_suffix must look like '.json', got {v!r}")
        return v

    @field_validator("workspace_dir_name")
    @classmethod
    def validate_workspace_dir_name(cls, v: str) -> str:
        """Keep the workspace a direct child of the temp root."""
        if Path(v).name != v or v in (".", ".."):
            raise ValueError(f"workspace_dir_name must be a plain directory name, got {v!r}")
        return v

    def get_max_upload_size_bytes(self) -> int:
        """Get maximum upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024

    def display(self) -> str:
        """
        Get a formatted string of all configuration settings.

        Returns:
            Formatted configuration string
        """
        candidates = ", ".join(self.runtime_candidates) if self.runtime_candidates else "platform defaults"
        return f"""
Whisper Upload Gateway Configuration:
=====================================
Worker Script: {self.worker_script_path}
Runtime Candidates: {candidates}
Check Timeout: {self.check_timeout_seconds} seconds
Workspace Directory: {self.workspace_dir_name}
Output Suffix: {self.output_suffix}
Job Timeout: {self.job_timeout_seconds} seconds
Max Captured Output: {self.max_output_bytes} bytes
Max Upload Size: {self.max_upload_size_mb} MB
Token Variable: {self.hf_token_env}
API Host: {self.api_host}
API Port: {self.api_port}
Log Level: {self.log_level.value}
Log File: {self.log_file or "stdout only"}
JSON Logs: {self.log_json}
"""


# Create a global settings instance
# This will be imported and used throughout the application
settings = Settings()
