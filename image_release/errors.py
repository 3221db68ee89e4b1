"""Error taxonomy for release pipeline stages.

Every stage failure is a PipelineError carrying a stable code and the
stage it belongs to, so the CLI and the run history can report the
first failing stage without inspecting exception types.
"""

from __future__ import annotations

from image_release.types import Stage

CONFIG_ERROR = "config_error"
AUTH_ERROR = "auth_failed"
CACHE_PATH_ERROR = "cache_path_error"
CACHE_SAVE_ERROR = "cache_save_failed"
BUILD_ERROR = "build_failed"
PUSH_ERROR = "push_failed"
TAG_CONFLICT_ERROR = "tag_conflict"
REVISION_TAG_ERROR = "revision_tag_failed"
# Non-pipeline exception raised inside a stage
UNEXPECTED_ERROR = "unexpected_error"


class PipelineError(Exception):
    """Base error for pipeline stage failures."""

    default_code = "pipeline_error"
    stage: Stage | None = None

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ConfigError(PipelineError):
    """Raised when required settings are missing or invalid."""

    default_code = CONFIG_ERROR


class AuthError(PipelineError):
    """Raised when exchanging secrets for a registry credential fails."""

    default_code = AUTH_ERROR
    stage = Stage.AUTHENTICATE


class CachePathError(PipelineError):
    """Raised when a cache domain's storage path cannot be resolved."""

    default_code = CACHE_PATH_ERROR
    stage = Stage.CACHE_RESTORE


class SaveError(PipelineError):
    """Raised when persisting a cache entry fails. Never fatal to a run."""

    default_code = CACHE_SAVE_ERROR
    stage = Stage.CACHE_SAVE


class BuildError(PipelineError):
    """Raised when a sub-application build or image assembly fails."""

    default_code = BUILD_ERROR
    stage = Stage.BUILD

    def __init__(
        self,
        message: str,
        code: str | None = None,
        exit_code: int | None = None,
        log_path: str | None = None,
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code
        self.log_path = log_path


class PushError(PipelineError):
    """Raised when uploading an image tag to the registry fails."""

    default_code = PUSH_ERROR
    stage = Stage.PUBLISH


class RevisionTagError(PipelineError):
    """Raised when creating or publishing the revision tag fails."""

    default_code = REVISION_TAG_ERROR
    stage = Stage.TAG_REVISION


class TagConflictError(RevisionTagError):
    """Raised when a revision tag with the version name already exists."""

    default_code = TAG_CONFLICT_ERROR

    def __init__(self, tag_name: str, where: str = "local") -> None:
        super().__init__(f"Revision tag already exists ({where}): {tag_name}")
        self.tag_name = tag_name
        self.where = where


# Error type reported for each stage
STAGE_ERRORS: dict[Stage, type[PipelineError]] = {
    Stage.AUTHENTICATE: AuthError,
    Stage.CACHE_RESTORE: CachePathError,
    Stage.BUILD: BuildError,
    Stage.PUBLISH: PushError,
    Stage.CACHE_SAVE: SaveError,
    Stage.TAG_REVISION: RevisionTagError,
}


__all__ = [
    "AUTH_ERROR",
    "BUILD_ERROR",
    "CACHE_PATH_ERROR",
    "CACHE_SAVE_ERROR",
    "CONFIG_ERROR",
    "PUSH_ERROR",
    "REVISION_TAG_ERROR",
    "STAGE_ERRORS",
    "TAG_CONFLICT_ERROR",
    "UNEXPECTED_ERROR",
    "AuthError",
    "BuildError",
    "CachePathError",
    "ConfigError",
    "PipelineError",
    "PushError",
    "RevisionTagError",
    "SaveError",
    "TagConflictError",
]
