"""Image build runner.

This module handles:
- Ensuring a buildx builder that can export a local layer cache
- Composing `docker buildx build` commands from a build description
- Executing builds with stdout/stderr captured to a log file
- Tagging the finished image by digest and verifying every tag

Tags are applied only after the build has produced its final digest, so
all tags of a run always reference the same image.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from image_release.builds.description import BuildDescription, check_description
from image_release.cache.manager import CacheRestoreResult
from image_release.errors import BuildError
from image_release.types import LATEST_TAG, CacheDomain, ImageTag

logger = logging.getLogger(__name__)

BUILDER_DRIVER = "docker-container"
# Restored domains passed as named build contexts when enabled
CACHE_CONTEXT_DOMAINS = (CacheDomain.DEPENDENCY, CacheDomain.PACKAGE)


@dataclass
class BuiltImage:
    """Result of a successful image build.

    Attributes:
        digest: Image ID (content digest) of the built image.
        tags: Tags applied to the digest.
        log_path: Path to the build log file.
        command: The build command that was executed.
        started_at: Build start time.
        finished_at: Build finish time.
        cache_hits: Cache domains restored from a stored entry.
    """

    digest: str
    tags: list[ImageTag]
    log_path: Path
    command: str
    started_at: datetime
    finished_at: datetime
    cache_hits: list[str] = field(default_factory=list)


def _run(cmd: list[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as e:
        raise BuildError(f"Failed to run {cmd[0]}: {e}", code="execution_error") from e


def ensure_builder(name: str) -> None:
    """Create the named buildx builder unless it already exists.

    Raises:
        BuildError: If the builder cannot be created.
    """
    result = _run(["docker", "buildx", "inspect", name])
    if result.returncode == 0:
        logger.debug("Using existing builder %s", name)
        return

    cmd = ["docker", "buildx", "create", "--name", name, "--driver", BUILDER_DRIVER]
    logger.info("Creating builder: %s", shlex.join(cmd))
    result = _run(cmd)
    if result.returncode != 0:
        raise BuildError(
            f"Failed to create builder {name}: {result.stderr.strip()}",
            code="builder_error",
            exit_code=result.returncode,
        )


def compose_build_command(
    description: BuildDescription,
    workspace: Path,
    platform: str,
    builder: str,
    iidfile: Path,
    layer_cache_dir: Path | None = None,
    cache_contexts: Mapping[str, Path] | None = None,
) -> list[str]:
    """Compose the `docker buildx build` command.

    The image is loaded into the local engine untagged; tags are applied
    by digest afterwards.

    Args:
        description: Build description.
        workspace: Source checkout root.
        platform: Target platform identifier.
        builder: Buildx builder name.
        iidfile: File the image ID is written to.
        layer_cache_dir: Local layer cache directory (None = no layer cache).
        cache_contexts: Named build contexts for restored caches.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        "docker",
        "buildx",
        "build",
        "--builder",
        builder,
        "--platform",
        platform,
        "--file",
        str(description.dockerfile_path(workspace)),
        "--iidfile",
        str(iidfile),
        "--load",
    ]

    if layer_cache_dir is not None:
        # An empty cache directory cannot be imported yet
        if (layer_cache_dir / "index.json").exists():
            cmd.extend(["--cache-from", f"type=local,src={layer_cache_dir}"])
        cmd.extend(["--cache-to", f"type=local,dest={layer_cache_dir},mode=max"])

    for name, value in sorted(description.build_args.items()):
        cmd.extend(["--build-arg", f"{name}={value}"])

    for name, path in sorted((cache_contexts or {}).items()):
        cmd.extend(["--build-context", f"{name}={path}"])

    if description.target:
        cmd.extend(["--target", description.target])

    cmd.append(str(description.context_path(workspace)))
    return cmd


def run_build(
    cmd: list[str],
    workspace: Path,
    iidfile: Path,
    log_path: Path,
) -> str:
    """Execute a build command and return the produced image digest.

    Raises:
        BuildError: If the build fails or produces no digest.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    iidfile.unlink(missing_ok=True)

    cmd_str = shlex.join(cmd)
    logger.info("Executing build: %s", cmd_str)
    logger.info("Build log: %s", log_path)

    started_at = datetime.now(timezone.utc)
    try:
        with log_path.open("w") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {workspace}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            result = subprocess.run(
                cmd,
                cwd=workspace,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                check=False,
            )
    except OSError as e:
        error_message = f"Failed to execute build: {e}"
        logger.error(error_message)
        raise BuildError(error_message, code="execution_error") from e

    finished_at = datetime.now(timezone.utc)
    with log_path.open("a") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {result.returncode}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    if result.returncode != 0:
        error_message = f"Build failed with exit code {result.returncode}"
        logger.error("%s. See log: %s", error_message, log_path)
        raise BuildError(
            error_message,
            exit_code=result.returncode,
            log_path=str(log_path),
        )

    digest = iidfile.read_text().strip() if iidfile.exists() else ""
    if not digest:
        raise BuildError(
            "Build finished without reporting an image digest",
            code="missing_digest",
            log_path=str(log_path),
        )
    return digest


def tag_image(digest: str, tags: Sequence[ImageTag]) -> None:
    """Point every tag at a finished image digest.

    Raises:
        BuildError: If tagging fails.
    """
    for tag in tags:
        result = _run(["docker", "tag", digest, tag.reference])
        if result.returncode != 0:
            raise BuildError(
                f"Failed to tag {digest} as {tag.reference}: {result.stderr.strip()}",
                code="tag_error",
                exit_code=result.returncode,
            )


def image_digest(reference: str) -> str:
    """Return the image ID a local reference resolves to.

    Raises:
        BuildError: If the reference cannot be inspected.
    """
    result = _run(["docker", "image", "inspect", "--format", "{{.Id}}", reference])
    if result.returncode != 0:
        raise BuildError(
            f"Failed to inspect {reference}: {result.stderr.strip()}",
            code="inspect_error",
            exit_code=result.returncode,
        )
    return result.stdout.strip()


def verify_tags(digest: str, tags: Sequence[ImageTag]) -> None:
    """Check that every tag resolves to ``digest``.

    Raises:
        BuildError: If any tag points elsewhere.
    """
    for tag in tags:
        actual = image_digest(tag.reference)
        if actual != digest:
            raise BuildError(
                f"Tag {tag.reference} resolves to {actual}, expected {digest}",
                code="digest_mismatch",
            )


def _log_name(tags: Sequence[ImageTag]) -> str:
    labels = [t.label for t in tags if t.label != LATEST_TAG]
    stamp = labels[0] if labels else datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"build-{stamp}.log"


class ImageBuilder:
    """Stage adapter building one image and labeling it with all tags."""

    def __init__(
        self,
        workspace: Path,
        logs_dir: Path,
        builder_name: str = "image-release",
        expose_cache_contexts: bool = False,
    ) -> None:
        self.workspace = workspace
        self.logs_dir = logs_dir
        self.builder_name = builder_name
        self.expose_cache_contexts = expose_cache_contexts

    def build(
        self,
        description: BuildDescription,
        platform: str,
        tags: Sequence[ImageTag],
        caches: Mapping[CacheDomain, CacheRestoreResult] | None = None,
    ) -> BuiltImage:
        """Build the image and apply ``tags`` to its digest.

        Args:
            description: Build description.
            platform: Target platform identifier.
            tags: Tags to apply (``latest`` and the version).
            caches: Restored cache domains.

        Returns:
            BuiltImage with the digest shared by all tags.

        Raises:
            BuildError: On any build, tagging or verification failure.
        """
        if not tags:
            raise BuildError("At least one image tag is required", code="no_tags")
        caches = caches or {}
        check_description(description, self.workspace)
        ensure_builder(self.builder_name)

        layer = caches.get(CacheDomain.LAYER)
        layer_dir = layer.primary_path if layer is not None else None
        if layer_dir is not None:
            layer_dir.mkdir(parents=True, exist_ok=True)

        cache_contexts: dict[str, Path] = {}
        if self.expose_cache_contexts:
            for domain in CACHE_CONTEXT_DOMAINS:
                restored = caches.get(domain)
                if restored is not None and restored.primary_path is not None:
                    path = restored.primary_path
                    path.mkdir(parents=True, exist_ok=True)
                    cache_contexts[f"{domain.value}-cache"] = path

        log_path = self.logs_dir / _log_name(tags)
        iidfile = log_path.with_suffix(".iid")
        cmd = compose_build_command(
            description,
            self.workspace,
            platform,
            self.builder_name,
            iidfile,
            layer_cache_dir=layer_dir,
            cache_contexts=cache_contexts,
        )

        started_at = datetime.now(timezone.utc)
        digest = run_build(cmd, self.workspace, iidfile, log_path)
        tag_image(digest, tags)
        verify_tags(digest, tags)
        finished_at = datetime.now(timezone.utc)

        logger.info(
            "Built %s as %s",
            digest,
            ", ".join(t.reference for t in tags),
        )
        return BuiltImage(
            digest=digest,
            tags=list(tags),
            log_path=log_path,
            command=shlex.join(cmd),
            started_at=started_at,
            finished_at=finished_at,
            cache_hits=[d.value for d, r in caches.items() if r.hit],
        )


__all__ = [
    "BuiltImage",
    "ImageBuilder",
    "compose_build_command",
    "ensure_builder",
    "image_digest",
    "run_build",
    "tag_image",
    "verify_tags",
]
