"""Build description loading and validation.

A build description declares how the image is built: the Dockerfile,
the build context, the sub-application stages it is expected to contain,
build arguments and an optional final target. Descriptions are read from
YAML files or derived from settings.
"""

import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from image_release.errors import BuildError

if TYPE_CHECKING:
    from image_release.config import Settings

STAGE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]*$")
BUILD_ARG_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# FROM [--platform=...] image AS name
FROM_STAGE_PATTERN = re.compile(
    r"^\s*FROM\s+(?:--\S+\s+)*\S+\s+AS\s+(?P<name>\S+)\s*$",
    re.IGNORECASE,
)


class BuildDescription(BaseModel):
    """Schema for a multi-stage image build.

    Attributes:
        dockerfile: Dockerfile path, relative to the workspace.
        context: Build context directory, relative to the workspace.
        stages: Stage names the Dockerfile must define (e.g. backend, frontend).
        target: Optional final stage to build.
        build_args: Build-time variables.
        platform: Target platform; overrides the configured default.
    """

    model_config = ConfigDict(extra="forbid")

    dockerfile: str = Field(default="Dockerfile", description="Dockerfile path")
    context: str = Field(default=".", description="Build context directory")
    stages: list[str] = Field(
        default_factory=list,
        description="Sub-application stages the Dockerfile must define",
    )
    target: str | None = Field(default=None, description="Final stage to build")
    build_args: dict[str, str] = Field(default_factory=dict)
    platform: str | None = Field(default=None, description="Target platform")

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, v: list[str]) -> list[str]:
        """Validate stage names."""
        for name in v:
            if not STAGE_NAME_PATTERN.match(name):
                raise ValueError(f"invalid stage name: '{name}'")
        return v

    @field_validator("build_args")
    @classmethod
    def validate_build_args(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate build argument names."""
        for name in v:
            if not BUILD_ARG_PATTERN.match(name):
                raise ValueError(f"invalid build argument name: '{name}'")
        return v

    def dockerfile_path(self, workspace: Path) -> Path:
        """Resolve the Dockerfile against a workspace."""
        return workspace / self.dockerfile

    def context_path(self, workspace: Path) -> Path:
        """Resolve the build context against a workspace."""
        return workspace / self.context


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_description(path: Path) -> BuildDescription:
    """Load and validate a build description from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If data does not match the schema.
    """
    return BuildDescription.model_validate(load_yaml(path))


def description_from_settings(settings: "Settings") -> BuildDescription:
    """Load the configured description file, or derive one from settings."""
    if settings.description_file is not None:
        path = settings.description_file
        if not path.is_absolute():
            path = settings.workspace / path
        return load_description(path)
    return BuildDescription(
        dockerfile=str(settings.dockerfile),
        context=str(settings.build_context),
    )


def dockerfile_stages(dockerfile: Path) -> list[str]:
    """List the named stages (``FROM ... AS name``) of a Dockerfile."""
    names: list[str] = []
    for line in dockerfile.read_text(encoding="utf-8").splitlines():
        match = FROM_STAGE_PATTERN.match(line)
        if match:
            names.append(match.group("name"))
    return names


def check_description(description: BuildDescription, workspace: Path) -> None:
    """Check that a description matches the workspace.

    Raises:
        BuildError: If the Dockerfile or context is missing, or declared
            stages are not defined by the Dockerfile.
    """
    dockerfile = description.dockerfile_path(workspace)
    if not dockerfile.is_file():
        raise BuildError(f"Dockerfile not found: {dockerfile}", code="invalid_description")
    context = description.context_path(workspace)
    if not context.is_dir():
        raise BuildError(f"Build context not found: {context}", code="invalid_description")

    defined = {name.lower() for name in dockerfile_stages(dockerfile)}
    wanted = list(description.stages)
    if description.target:
        wanted.append(description.target)
    missing = [name for name in wanted if name.lower() not in defined]
    if missing:
        raise BuildError(
            f"Dockerfile {dockerfile} does not define stage(s): {', '.join(missing)}",
            code="invalid_description",
        )


__all__ = [
    "BuildDescription",
    "check_description",
    "description_from_settings",
    "dockerfile_stages",
    "load_description",
    "load_yaml",
]
