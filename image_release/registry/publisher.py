"""Image publishing.

Pushes both image tags of a run to the registry and checks that the
registry reports the same manifest digest for each of them.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field

from image_release.errors import PushError
from image_release.registry.credentials import Credential
from image_release.types import ImageTag

logger = logging.getLogger(__name__)

# `docker push` ends with e.g. "latest: digest: sha256:abc... size: 1234"
PUSH_DIGEST_PATTERN = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")


@dataclass
class PushResult:
    """Result of publishing a run's tags.

    Attributes:
        digest: Manifest digest reported by the registry.
        references: Image references that were pushed.
    """

    digest: str | None
    references: list[str] = field(default_factory=list)


def parse_push_digest(output: str) -> str | None:
    """Extract the manifest digest from `docker push` output."""
    matches = PUSH_DIGEST_PATTERN.findall(output)
    return matches[-1] if matches else None


def push_tag(tag: ImageTag, env: dict[str, str] | None = None) -> str | None:
    """Push a single tag.

    Args:
        tag: Tag to push.
        env: Process environment for docker, e.g. from
            :meth:`Credential.docker_env`.

    Returns:
        Manifest digest reported by the registry, if any.

    Raises:
        PushError: If the push fails.
    """
    cmd = ["docker", "push", tag.reference]
    logger.info("Pushing: %s", shlex.join(cmd))
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, env=env, check=False
        )
    except OSError as e:
        raise PushError(f"Failed to run docker push: {e}", code="execution_error") from e

    if result.returncode != 0:
        raise PushError(
            f"Push of {tag.reference} failed with exit code {result.returncode}: "
            f"{result.stderr.strip()}"
        )
    return parse_push_digest(result.stdout)


def push(tags: Sequence[ImageTag], credential: Credential) -> PushResult:
    """Upload image tags to the registry.

    Args:
        tags: Tags to push; all must live in the credential's registry.
        credential: Credential from the authentication stage.

    Returns:
        PushResult with the common manifest digest.

    Raises:
        PushError: If the credential is unusable, a push fails, or the
            registry reports different digests for the tags.
    """
    if credential.is_expired():
        raise PushError(
            f"Credential for {credential.registry} expired at "
            f"{credential.expires_at.isoformat()}",
            code="credential_expired",
        )
    for tag in tags:
        if tag.registry != credential.registry:
            raise PushError(
                f"Credential is for {credential.registry}, cannot push {tag.reference}",
                code="registry_mismatch",
            )

    env = credential.docker_env()
    digests: dict[str, str | None] = {}
    for tag in tags:
        digests[tag.reference] = push_tag(tag, env)

    reported = {d for d in digests.values() if d is not None}
    if len(reported) > 1:
        raise PushError(
            f"Registry reported different digests for one image: {digests}",
            code="digest_mismatch",
        )

    digest = reported.pop() if reported else None
    logger.info("Published %d tag(s) at %s", len(tags), digest or "unknown digest")
    return PushResult(digest=digest, references=list(digests))


class Publisher:
    """Stage adapter pushing tags with a credential."""

    def push(self, tags: Sequence[ImageTag], credential: Credential) -> PushResult:
        """Push all tags; see :func:`push`."""
        return push(tags, credential)


__all__ = ["PushResult", "Publisher", "parse_push_digest", "push", "push_tag"]
