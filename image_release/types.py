"""Shared type definitions for image_release.

This module contains enums and small value types shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum

LATEST_TAG = "latest"


class CacheDomain(str, Enum):
    """Independent build cache domains."""

    DEPENDENCY = "dependency"
    PACKAGE = "package"
    LAYER = "layer"


class Stage(str, Enum):
    """Pipeline stages, in execution order."""

    AUTHENTICATE = "authenticate"
    CACHE_RESTORE = "cache_restore"
    BUILD = "build"
    PUBLISH = "publish"
    CACHE_SAVE = "cache_save"
    TAG_REVISION = "tag_revision"


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


class StageStatus(str, Enum):
    """Status of a single pipeline stage."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    WARNING = "warning"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Final status of a pipeline run.

    PARTIAL means the image was published but a later stage failed,
    leaving the source revision unlabeled.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ImageTag:
    """A (repository, label) pair naming an image in a registry."""

    repository: str
    label: str

    @property
    def reference(self) -> str:
        """Full image reference, e.g. ``registry/app:latest``."""
        return f"{self.repository}:{self.label}"

    @property
    def registry(self) -> str:
        """Registry host part of the repository."""
        return self.repository.split("/", 1)[0]

    def __str__(self) -> str:
        return self.reference


__all__ = [
    "LATEST_TAG",
    "STAGE_ORDER",
    "CacheDomain",
    "ImageTag",
    "RunStatus",
    "Stage",
    "StageStatus",
]
