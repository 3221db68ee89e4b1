"""Source revision tagging.

This module handles:
- Resolving the commit that triggered the run
- Checking that no tag with the version name exists, locally or remotely
- Creating the tag and pushing only that tag to the source remote

Revision tags are never overwritten: an existing tag is a TagConflictError.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from image_release.errors import RevisionTagError, TagConflictError

logger = logging.getLogger(__name__)

# Messages git prints when a tag name is already taken
CONFLICT_PATTERN = re.compile(r"already exists|\[rejected\]", re.IGNORECASE)
SHA_PATTERN = re.compile(r"^[0-9a-f]{40}([0-9a-f]{24})?$")


@dataclass(frozen=True)
class RevisionTag:
    """A published revision tag.

    Attributes:
        name: Tag name (the release version).
        commit: Commit the tag points at.
        remote: Remote the tag was pushed to.
    """

    name: str
    commit: str
    remote: str


def _git(args: list[str], workspace: Path) -> subprocess.CompletedProcess[str]:
    cmd = ["git", *args]
    logger.debug("Running: %s", shlex.join(cmd))
    try:
        return subprocess.run(
            cmd,
            cwd=workspace,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise RevisionTagError(f"Failed to run git: {e}", code="execution_error") from e


def resolve_head_commit(workspace: Path) -> str:
    """Return the full SHA of HEAD.

    Raises:
        RevisionTagError: If HEAD cannot be resolved.
    """
    result = _git(["rev-parse", "--verify", "HEAD"], workspace)
    commit = result.stdout.strip()
    if result.returncode != 0 or not SHA_PATTERN.match(commit):
        raise RevisionTagError(
            f"Cannot resolve HEAD in {workspace}: {result.stderr.strip()}",
            code="head_unresolved",
        )
    return commit


def local_tag_exists(workspace: Path, name: str) -> bool:
    """Check the local tag namespace for ``name``.

    Raises:
        RevisionTagError: If git fails for another reason.
    """
    result = _git(["rev-parse", "--verify", "--quiet", f"refs/tags/{name}"], workspace)
    if result.returncode == 0:
        return True
    if result.returncode == 1:
        return False
    raise RevisionTagError(
        f"Failed to look up tag {name}: {result.stderr.strip()}",
        code="tag_lookup_failed",
    )


def remote_tag_exists(workspace: Path, remote: str, name: str) -> bool:
    """Check a remote for a tag named ``name``.

    Raises:
        RevisionTagError: If the remote cannot be queried.
    """
    result = _git(["ls-remote", "--tags", remote, f"refs/tags/{name}"], workspace)
    if result.returncode != 0:
        raise RevisionTagError(
            f"Failed to query tags on {remote}: {result.stderr.strip()}",
            code="tag_lookup_failed",
        )
    return bool(result.stdout.strip())


def create_tag(workspace: Path, name: str, commit: str) -> None:
    """Create a lightweight tag pointing at ``commit``.

    Raises:
        TagConflictError: If the tag already exists.
        RevisionTagError: If git fails otherwise.
    """
    result = _git(["tag", name, commit], workspace)
    if result.returncode == 0:
        return
    if CONFLICT_PATTERN.search(result.stderr):
        raise TagConflictError(name, where="local")
    raise RevisionTagError(f"Failed to create tag {name}: {result.stderr.strip()}")


def push_tag(workspace: Path, remote: str, name: str) -> None:
    """Push a single tag to a remote.

    Raises:
        TagConflictError: If the remote already has the tag.
        RevisionTagError: If the push fails otherwise.
    """
    result = _git(["push", remote, f"refs/tags/{name}"], workspace)
    if result.returncode == 0:
        return
    if CONFLICT_PATTERN.search(result.stderr):
        raise TagConflictError(name, where=remote)
    raise RevisionTagError(
        f"Failed to push tag {name} to {remote}: {result.stderr.strip()}",
        code="tag_push_failed",
    )


class RevisionTagger:
    """Stage adapter labeling the triggering commit with the version."""

    def __init__(
        self,
        workspace: Path,
        remote: str = "origin",
        check_remote: bool = True,
    ) -> None:
        self.workspace = workspace
        self.remote = remote
        self.check_remote = check_remote

    def resolve_head_commit(self) -> str:
        """Return the commit the run was triggered from."""
        return resolve_head_commit(self.workspace)

    def tag_revision(self, version: str, head_commit: str) -> RevisionTag:
        """Create and publish the revision tag ``version`` on ``head_commit``.

        Raises:
            TagConflictError: If the tag exists locally or on the remote.
            RevisionTagError: If git fails otherwise.
        """
        if local_tag_exists(self.workspace, version):
            raise TagConflictError(version, where="local")
        if self.check_remote and remote_tag_exists(self.workspace, self.remote, version):
            raise TagConflictError(version, where=self.remote)

        create_tag(self.workspace, version, head_commit)
        push_tag(self.workspace, self.remote, version)
        logger.info("Tagged %s as %s on %s", head_commit[:12], version, self.remote)
        return RevisionTag(name=version, commit=head_commit, remote=self.remote)


__all__ = [
    "RevisionTag",
    "RevisionTagger",
    "create_tag",
    "local_tag_exists",
    "push_tag",
    "remote_tag_exists",
    "resolve_head_commit",
]
