"""Configuration management for sitesync."""

import os
import shlex
from typing import List, Literal, Optional

from pydantic import Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_core import PydanticCustomError
from pydantic_settings import BaseSettings, SettingsConfigDict

from sitesync.core.exceptions import ConfigurationError


DEFAULT_ARCHIVE_URL = "https://github.com/{repository}/archive/refs/heads/{branch}.tar.gz"

REQUIRED_FIELDS = ("webhook_secret", "override_key", "ssh_key_path", "source_repository", "publish_target")


class Settings(BaseSettings):
    """Service configuration settings.

    Loaded once at process start. Every component receives the instance it
    needs through its constructor.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Server configuration
    host: str = Field("0.0.0.0", description="Server host")
    port: int = Field(4000, description="Server port")

    # Credentials
    webhook_secret: SecretStr = Field(..., description="Shared secret for push notification signatures")
    override_key: SecretStr = Field(..., description="Manual override credential")
    ssh_key_path: str = Field(..., description="Private key used to reach the publish host")
    ssh_known_hosts: Optional[str] = Field(None, description="known_hosts file for strict host checking")
    github_token: Optional[SecretStr] = Field(None, description="Token for private archive downloads")

    # Source
    source_repository: str = Field(..., description="Repository as owner/name")
    source_branch: str = Field("master", description="Branch that is deployed")
    fetch_strategy: Literal["archive", "git"] = Field("archive", description="How the source is obtained")
    source_archive_url: str = Field(DEFAULT_ARCHIVE_URL, description="Archive URL template")
    repo_path: Optional[str] = Field(None, description="Persistent local clone for the git strategy")
    fetch_timeout_seconds: float = Field(120.0, gt=0)
    fetch_max_attempts: int = Field(3, ge=1)
    max_archive_size_mb: int = Field(200, ge=1)

    # Build
    install_command: str = Field("bundle install --path vendor/bundle", description="Empty disables install")
    build_command: str = Field("bundle exec jekyll build")
    build_output_dir: str = Field("_site")
    install_timeout_seconds: float = Field(900.0, gt=0)
    build_timeout_seconds: float = Field(600.0, gt=0)

    # Publish
    publish_target: str = Field(..., description="rsync destination, e.g. user@host:~/public_html")
    publish_timeout_seconds: float = Field(600.0, gt=0)
    ssh_connect_timeout_seconds: int = Field(15, ge=1)

    # Storage
    work_dir: Optional[str] = Field(None, description="Parent directory for run workspaces")

    # Dispatch
    dispatch_backend: Literal["background", "lambda"] = Field("background")
    worker_function_name: Optional[str] = Field(None)
    aws_region: str = Field("us-east-1")
    dispatch_max_attempts: int = Field(1, ge=1)
    dispatch_backoff_seconds: float = Field(0.3, ge=0)

    # Observability
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field("INFO")
    log_format: Literal["json", "console"] = Field("json")
    metrics_enabled: bool = Field(True)

    @field_validator(*REQUIRED_FIELDS, mode="before")
    @classmethod
    def check_not_blank(cls, v):
        """An empty value counts as unset."""
        raw = v.get_secret_value() if isinstance(v, SecretStr) else v
        if isinstance(raw, str) and not raw.strip():
            raise PydanticCustomError("blank", "value is blank")
        return v

    @field_validator("log_level", "log_format", mode="before")
    @classmethod
    def normalize_case(cls, v, info):
        if isinstance(v, str):
            return v.upper() if info.field_name == "log_level" else v.lower()
        return v

    @field_validator("source_repository")
    @classmethod
    def check_repository(cls, v: str) -> str:
        """Require owner/name form."""
        owner, _, name = v.strip().partition("/")
        if not owner or not name or "/" in name:
            raise ValueError("expected owner/name")
        return v.strip()

    @field_validator("build_output_dir")
    @classmethod
    def check_output_dir(cls, v: str) -> str:
        if not v or os.path.isabs(v) or ".." in v.split("/"):
            raise ValueError("must be a relative path inside the snapshot")
        return v.strip("/")

    @model_validator(mode="after")
    def check_strategy_requirements(self) -> "Settings":
        if self.fetch_strategy == "git" and not self.repo_path:
            raise ValueError("REPO_PATH is required when FETCH_STRATEGY=git")
        if self.dispatch_backend == "lambda" and not self.worker_function_name:
            raise ValueError("WORKER_FUNCTION_NAME is required when DISPATCH_BACKEND=lambda")
        return self

    @property
    def archive_url(self) -> str:
        """Archive URL for the configured repository and branch."""
        return self.source_archive_url.format(
            repository=self.source_repository,
            branch=self.source_branch,
        )

    @property
    def install_argv(self) -> List[str]:
        return shlex.split(self.install_command)

    @property
    def build_argv(self) -> List[str]:
        return shlex.split(self.build_command)

    @property
    def deploy_ref(self) -> str:
        return f"refs/heads/{self.source_branch}"


def load_settings(**overrides) -> Settings:
    """Build settings from the environment.

    Raises ConfigurationError naming every missing or invalid variable so
    the process refuses to start with an incomplete configuration.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err["loc"]) or "settings"
            if err["type"] in ("missing", "blank"):
                problems.append(f"{loc.upper()} is not set")
            else:
                problems.append(f"{loc.upper()}: {err['msg']}")
        raise ConfigurationError("invalid configuration: " + "; ".join(problems), code="config") from None
