"""Directory-backed cache store.

Entries live at ``<root>/<domain>/<key>.tar.gz``. The root may be a shared
mount so that concurrent runs see each other's entries. Writes go to a
temporary file next to the destination and are renamed into place, so
readers never observe a partial archive and concurrent writers of one
key resolve to the last rename.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from image_release.errors import SaveError
from image_release.types import CacheDomain

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"


@dataclass
class CacheEntry:
    """A stored cache archive for one domain.

    Attributes:
        domain: Cache domain.
        key: Content-derived cache key.
        archive_path: Location of the archive in the store.
        paths: Directories the archive is restored into / saved from.
        size_bytes: Archive size.
    """

    domain: CacheDomain
    key: str
    archive_path: Path
    paths: list[Path] = field(default_factory=list)
    size_bytes: int = 0


def _safe_key(key: str) -> str:
    return key.replace(":", "_").replace("/", "_")


class CacheStore:
    """Content-keyed archive store for cache domains."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def archive_path(self, domain: CacheDomain, key: str) -> Path:
        """Return the archive location for a domain and key."""
        return self.root / domain.value / f"{_safe_key(key)}{ARCHIVE_SUFFIX}"

    def lookup(self, domain: CacheDomain, key: str) -> Path | None:
        """Return the archive path if an entry exists for the exact key."""
        path = self.archive_path(domain, key)
        return path if path.is_file() else None

    def restore(
        self,
        domain: CacheDomain,
        key: str,
        paths: Sequence[Path],
    ) -> CacheEntry | None:
        """Restore an entry into its directories.

        Args:
            domain: Cache domain.
            key: Exact cache key.
            paths: Directories to restore into, in the order they were saved.

        Returns:
            CacheEntry on a hit, None on a miss. Unreadable archives are
            logged and treated as a miss.
        """
        archive = self.lookup(domain, key)
        if archive is None:
            logger.info("Cache miss for %s: %s", domain.value, key)
            return None

        try:
            with tempfile.TemporaryDirectory(prefix="image-release-restore-") as tmp:
                tmp_dir = Path(tmp)
                with tarfile.open(archive, "r:gz") as tar:
                    for member in tar.getmembers():
                        member_path = Path(member.name)
                        if member_path.is_absolute() or ".." in member_path.parts:
                            logger.warning(
                                "Refusing cache archive %s: unsafe member %s",
                                archive,
                                member.name,
                            )
                            return None
                    tar.extractall(tmp_dir, filter="data")

                for index, dest in enumerate(paths):
                    src = tmp_dir / str(index)
                    if not src.is_dir():
                        continue
                    dest.mkdir(parents=True, exist_ok=True)
                    shutil.copytree(src, dest, dirs_exist_ok=True, symlinks=True)
        except (tarfile.TarError, OSError, EOFError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", archive, e)
            return None

        size = archive.stat().st_size
        logger.info("Cache hit for %s: %s (%d bytes)", domain.value, key, size)
        return CacheEntry(
            domain=domain,
            key=key,
            archive_path=archive,
            paths=list(paths),
            size_bytes=size,
        )

    def save(
        self,
        domain: CacheDomain,
        key: str,
        paths: Sequence[Path],
    ) -> CacheEntry:
        """Archive directories and store them under a key.

        Creates or overwrites the entry. Paths that do not exist are
        skipped; their index is kept so restore maps each archive member
        back to the same position.

        Raises:
            SaveError: If nothing exists to save or writing fails.
        """
        existing = [(i, p) for i, p in enumerate(paths) if p.exists()]
        if not existing:
            raise SaveError(
                f"No cache paths exist for {domain.value}: "
                f"{', '.join(str(p) for p in paths)}",
                code="nothing_to_save",
            )

        dest = self.archive_path(domain, key)
        tmp_path: Path | None = None
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{dest.name}.", suffix=".tmp", dir=dest.parent
            )
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as f, tarfile.open(fileobj=f, mode="w:gz") as tar:
                for index, path in existing:
                    tar.add(path, arcname=str(index))
            os.replace(tmp_path, dest)
            tmp_path = None
        except (tarfile.TarError, OSError) as e:
            raise SaveError(f"Failed to save cache {domain.value} ({key}): {e}") from e
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

        size = dest.stat().st_size
        logger.info("Saved cache %s: %s (%d bytes)", domain.value, key, size)
        return CacheEntry(
            domain=domain,
            key=key,
            archive_path=dest,
            paths=list(paths),
            size_bytes=size,
        )


__all__ = ["ARCHIVE_SUFFIX", "CacheEntry", "CacheStore"]
