"""Pipeline context.

The context is built once at startup from settings and the triggering
commit, then passed explicitly to every stage.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING

from image_release.errors import ConfigError
from image_release.types import LATEST_TAG, ImageTag
from image_release.version import resolve_version, utc_today

if TYPE_CHECKING:
    from image_release.config import Settings


@dataclass(frozen=True)
class PipelineContext:
    """Immutable per-run values shared by all stages.

    Attributes:
        version: Release version for this run.
        run_date: Calendar date the run started.
        run_ordinal: Run number supplied by the environment.
        region: Cloud region of the registry.
        registry: Registry endpoint host.
        image_name: Repository name inside the registry.
        platform: Target platform identifier.
        workspace: Source checkout root.
        head_commit: Commit that triggered the run.
        git_remote: Remote the revision tag is pushed to.
    """

    version: str
    run_date: date
    run_ordinal: int
    region: str
    registry: str
    image_name: str
    platform: str
    workspace: Path
    head_commit: str
    git_remote: str = "origin"

    @property
    def repository(self) -> str:
        """Full repository path, e.g. ``registry/app``."""
        return f"{self.registry}/{self.image_name}"

    @property
    def image_tags(self) -> tuple[ImageTag, ImageTag]:
        """The two tags published per run: ``latest`` and the version."""
        return (
            ImageTag(self.repository, LATEST_TAG),
            ImageTag(self.repository, self.version),
        )


def create_context(
    settings: Settings,
    head_commit: str,
    today: date | None = None,
    platform: str | None = None,
) -> PipelineContext:
    """Build the pipeline context for this run.

    Args:
        settings: Effective settings.
        head_commit: Full SHA of the triggering commit.
        today: Run date; defaults to settings.run_date, then today in UTC.
        platform: Target platform; defaults to settings.platform.

    Returns:
        PipelineContext instance.

    Raises:
        ConfigError: If the registry or run ordinal is not configured.
    """
    if not settings.registry:
        raise ConfigError("Registry endpoint is not configured (IMG_RELEASE_REGISTRY)")
    if settings.run_ordinal is None:
        raise ConfigError(
            "Run ordinal is not configured (IMG_RELEASE_RUN_ORDINAL or GITHUB_RUN_NUMBER)"
        )

    run_date = today or settings.run_date or utc_today()
    try:
        version = resolve_version(run_date, settings.run_ordinal)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    return PipelineContext(
        version=version,
        run_date=run_date,
        run_ordinal=settings.run_ordinal,
        region=settings.region,
        registry=settings.registry,
        image_name=settings.image_name,
        platform=platform or settings.platform,
        workspace=settings.workspace,
        head_commit=head_commit,
        git_remote=settings.git_remote,
    )


__all__ = ["PipelineContext", "create_context"]
