from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GITBRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="gitbridge", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment mode"
    )

    api_host: str = Field(default="0.0.0.0", description="HTTP server host")
    api_port: int = Field(default=8000, description="HTTP server port")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log output format"
    )
    debug: bool = Field(default=False, description="Enable debug logging")

    storage_root: Path = Field(
        default=Path("./repositories"),
        description="Directory where pushed repositories are stored",
    )

    # Hook policies
    auto_create: bool = Field(
        default=False, description="Create missing repositories on push"
    )
    master_only: bool = Field(
        default=False, description="Only allow pushes to refs/heads/master"
    )
    github_repo_names: bool = Field(
        default=False, description="Require owner/project.git repository names"
    )
    post_receive_webhook_url: Optional[str] = Field(
        default=None, description="URL notified after every successful push"
    )

    git_binary_path: str = Field(default="git", description="Path to git binary")
    git_command_timeout: float = Field(
        default=300.0, description="Deadline in seconds for a git process"
    )
    hook_timeout: float = Field(
        default=30.0, description="Deadline in seconds for a single hook call"
    )

    max_upload_size_mb: int = Field(
        default=100, description="Maximum request body size in megabytes"
    )
    stream_progress: bool = Field(
        default=True,
        description="Flush hook progress and git output to the client as it is produced",
    )

    metrics_enabled: bool = Field(default=True, description="Enable metrics endpoint")

    @field_validator("storage_root", mode="before")
    @classmethod
    def validate_storage_root(cls, v):
        return Path(v).expanduser()

    @field_validator("log_format", mode="before")
    @classmethod
    def validate_log_format(cls, v, info: ValidationInfo):
        if info.data.get("environment") == "production":
            return "json"
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


settings = get_settings()
