"""Configuration settings for image_release.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from datetime import date
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from image_release.types import CacheDomain


def _default_cache_root() -> Path:
    """Return the default cache store directory."""
    return Path.home() / ".cache" / "image-release" / "store"


def _default_logs_dir() -> Path:
    """Return the default directory for build logs."""
    return Path.home() / ".local" / "share" / "image-release" / "logs"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "image-release" / "db.sqlite"
    return f"sqlite:///{db_path}"


def _default_dependency_cache_paths() -> list[Path]:
    """Return the cargo directories cached in the dependency domain."""
    cargo_home = Path.home() / ".cargo"
    return [
        cargo_home / "bin",
        cargo_home / "registry" / "index",
        cargo_home / "registry" / "cache",
        cargo_home / "git" / "db",
        Path("backend") / "target",
    ]


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the IMG_RELEASE_
    prefix. Credentials and the run ordinal are also accepted under the
    names CI environments already export.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMG_RELEASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Secrets
    access_key_id: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("IMG_RELEASE_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID"),
        exclude=True,
        description="Long-lived access key identifier",
    )
    secret_access_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "IMG_RELEASE_SECRET_ACCESS_KEY", "AWS_SECRET_ACCESS_KEY"
        ),
        exclude=True,
        description="Long-lived secret key",
    )

    # Registry
    region: str = Field(default="sa-east-1", description="Cloud region")
    registry: str | None = Field(
        default=None,
        description="Registry endpoint, e.g. 123456789012.dkr.ecr.sa-east-1.amazonaws.com",
    )
    image_name: str = Field(default="app", description="Image repository name")

    # Run identity
    run_ordinal: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("IMG_RELEASE_RUN_ORDINAL", "GITHUB_RUN_NUMBER"),
        description="Increasing per-invocation run number",
    )
    run_date: date | None = Field(
        default=None,
        description="Override the run date (defaults to today, UTC)",
    )

    # Build
    workspace: Path = Field(
        default_factory=Path.cwd,
        description="Source checkout root",
    )
    description_file: Path | None = Field(
        default=None,
        description="YAML build description (relative to workspace)",
    )
    dockerfile: Path = Field(default=Path("Dockerfile"))
    build_context: Path = Field(default=Path("."))
    platform: str = Field(default="linux/amd64", description="Target platform")
    builder_name: str = Field(
        default="image-release",
        description="Name of the buildx builder instance",
    )
    expose_cache_contexts: bool = Field(
        default=False,
        description="Pass restored dependency/package caches as named build contexts",
    )

    # Caches
    cache_root: Path = Field(
        default_factory=_default_cache_root,
        description="Root directory of the shared cache store",
    )
    dependency_lock_file: Path = Field(default=Path("backend/Cargo.lock"))
    package_lock_file: Path = Field(default=Path("frontend/package-lock.json"))
    dependency_cache_paths: list[Path] = Field(
        default_factory=_default_dependency_cache_paths,
    )
    package_cache_dir: Path | None = Field(
        default=None,
        description="npm cache directory (resolved with `npm config get cache` if unset)",
    )
    layer_cache_dir: Path = Field(default=Path("/tmp/.buildx-cache"))
    layer_cache_key: str = Field(
        default="docker-buildx",
        description="Constant key for the build-layer cache domain",
    )
    save_domains: list[CacheDomain] = Field(
        default_factory=lambda: [CacheDomain.LAYER],
        description="Cache domains persisted after a successful build",
    )

    # Source repository
    git_remote: str = Field(default="origin")

    # Paths
    logs_dir: Path = Field(default_factory=_default_logs_dir)
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    retry_attempts: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Attempts for credential exchange and push (1 = no retry)",
    )
    retry_backoff: float = Field(
        default=2.0,
        ge=0,
        description="Initial backoff in seconds between attempts, doubled each time",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Secrets are excluded.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
