"""Cache key computation.

This module handles:
- Hashing lock/manifest file contents
- Composing per-domain cache keys

Keys are content-derived: any byte change in a lock file changes the key
of its domain, and two runs with identical lock files share a key.
"""

from __future__ import annotations

import hashlib
import logging
import platform
from collections.abc import Sequence
from pathlib import Path

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 64 * 1024  # 64 KB


def runner_os() -> str:
    """Return the OS name used to prefix cache keys (e.g. 'Linux')."""
    return platform.system() or "unknown"


def hash_file(path: Path) -> str:
    """Compute the SHA-256 of a file's full byte content."""
    sha256 = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def hash_files(paths: Sequence[Path]) -> str:
    """Hash the contents of one or more files into a single digest.

    Each file's SHA-256 is fed, in order, into an outer SHA-256. Missing
    files are skipped with a warning; if none exist the result is the
    empty string.

    Args:
        paths: Files to hash.

    Returns:
        Hex digest, or "" when no file exists.
    """
    outer = hashlib.sha256()
    found = False
    for path in paths:
        if not path.is_file():
            logger.warning("Cache key input not found: %s", path)
            continue
        outer.update(bytes.fromhex(hash_file(path)))
        found = True
    return outer.hexdigest() if found else ""


def compute_cache_key(
    label: str,
    lock_files: Sequence[Path] | None = None,
    prefix: str | None = None,
) -> str:
    """Compose a cache key for a domain.

    Args:
        label: Domain label (e.g. 'cargo', 'node', 'docker-buildx').
        lock_files: Files whose content keys the domain; None for a
            constant key shared across runs.
        prefix: Key prefix; defaults to the runner OS name.

    Returns:
        Cache key, e.g. ``Linux-cargo-<sha256>``.
    """
    prefix = prefix or runner_os()
    if lock_files is None:
        return f"{prefix}-{label}"
    return f"{prefix}-{label}-{hash_files(lock_files)}"


__all__ = ["compute_cache_key", "hash_file", "hash_files", "runner_os"]
