"""Cache domain management.

This module handles:
- Defining the three cache domains (compiled dependencies, package
  manager, build layers) and their keys
- Resolving the package manager's cache directory
- Restoring every domain before the build and saving selected domains
  after it

A cache miss is never an error: the domain simply starts empty.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from image_release.cache.keys import compute_cache_key
from image_release.cache.store import CacheEntry, CacheStore
from image_release.errors import CachePathError, SaveError
from image_release.types import CacheDomain

if TYPE_CHECKING:
    from image_release.config import Settings

logger = logging.getLogger(__name__)

DEPENDENCY_LABEL = "cargo"
PACKAGE_LABEL = "node"


@dataclass(frozen=True)
class CacheDomainSpec:
    """Definition of one cache domain.

    Attributes:
        domain: Domain identifier.
        label: Key label (e.g. 'cargo').
        paths: Directories stored in the domain.
        lock_files: Files whose content keys the domain; None for a
            constant key.
    """

    domain: CacheDomain
    label: str
    paths: tuple[Path, ...]
    lock_files: tuple[Path, ...] | None = None

    def key(self, prefix: str | None = None) -> str:
        """Compute this domain's cache key."""
        return compute_cache_key(self.label, self.lock_files, prefix)


@dataclass
class CacheRestoreResult:
    """Outcome of restoring one domain."""

    domain: CacheDomain
    key: str
    paths: list[Path] = field(default_factory=list)
    entry: CacheEntry | None = None

    @property
    def hit(self) -> bool:
        """Whether a stored entry matched the key."""
        return self.entry is not None

    @property
    def primary_path(self) -> Path | None:
        """First directory of the domain."""
        return self.paths[0] if self.paths else None


def resolve_package_cache_dir() -> Path:
    """Ask npm for its cache directory.

    Raises:
        CachePathError: If npm is missing, fails, or prints nothing.
    """
    cmd = ["npm", "config", "get", "cache"]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as e:
        raise CachePathError(f"Failed to resolve npm cache directory: {e}") from e

    if result.returncode != 0:
        raise CachePathError(
            f"`npm config get cache` failed with exit code {result.returncode}: "
            f"{result.stderr.strip()}"
        )
    value = result.stdout.strip()
    if not value:
        raise CachePathError("`npm config get cache` returned an empty path")
    return Path(value)


def _in_workspace(workspace: Path, path: Path) -> Path:
    return path if path.is_absolute() else workspace / path


def default_domains(settings: Settings) -> list[CacheDomainSpec]:
    """Build the dependency, package and layer domains from settings.

    Raises:
        CachePathError: If the package cache directory cannot be resolved.
    """
    workspace = settings.workspace
    package_dir = settings.package_cache_dir or resolve_package_cache_dir()
    return [
        CacheDomainSpec(
            domain=CacheDomain.DEPENDENCY,
            label=DEPENDENCY_LABEL,
            paths=tuple(
                _in_workspace(workspace, p) for p in settings.dependency_cache_paths
            ),
            lock_files=(_in_workspace(workspace, settings.dependency_lock_file),),
        ),
        CacheDomainSpec(
            domain=CacheDomain.PACKAGE,
            label=PACKAGE_LABEL,
            paths=(package_dir,),
            lock_files=(_in_workspace(workspace, settings.package_lock_file),),
        ),
        CacheDomainSpec(
            domain=CacheDomain.LAYER,
            label=settings.layer_cache_key,
            paths=(settings.layer_cache_dir,),
            lock_files=None,
        ),
    ]


class CacheManager:
    """Restores and saves cache domains through a CacheStore.

    Domains are resolved on first use, so path resolution failures are
    reported by the cache stage rather than at construction.
    """

    def __init__(
        self,
        store: CacheStore,
        settings: Settings | None = None,
        domains: Sequence[CacheDomainSpec] | None = None,
        key_prefix: str | None = None,
    ) -> None:
        if settings is None and domains is None:
            raise ValueError("CacheManager needs settings or explicit domains")
        self.store = store
        self._settings = settings
        self._domains: dict[CacheDomain, CacheDomainSpec] | None = (
            {d.domain: d for d in domains} if domains is not None else None
        )
        self._key_prefix = key_prefix
        self._keys: dict[CacheDomain, str] = {}

    @property
    def domains(self) -> dict[CacheDomain, CacheDomainSpec]:
        """Domain definitions, resolved on first access."""
        if self._domains is None:
            if self._settings is None:
                raise ValueError("CacheManager has no settings to resolve domains from")
            self._domains = {d.domain: d for d in default_domains(self._settings)}
        return self._domains

    def key_for(self, domain: CacheDomain) -> str:
        """Return the key of a domain, computed once per manager."""
        if domain not in self._keys:
            self._keys[domain] = self.domains[domain].key(self._key_prefix)
        return self._keys[domain]

    def restore(self, domain: CacheDomain) -> CacheRestoreResult:
        """Restore one domain; a miss leaves it empty."""
        spec = self.domains[domain]
        key = self.key_for(domain)
        entry = self.store.restore(domain, key, spec.paths)
        if entry is None:
            logger.info("Cache %s starts empty", domain.value)
        return CacheRestoreResult(
            domain=domain, key=key, paths=list(spec.paths), entry=entry
        )

    def restore_all(self) -> dict[CacheDomain, CacheRestoreResult]:
        """Restore every configured domain.

        Raises:
            CachePathError: If a domain's path cannot be resolved.
        """
        return {domain: self.restore(domain) for domain in self.domains}

    def save(self, domain: CacheDomain) -> CacheEntry:
        """Save one domain under the key used to restore it.

        Raises:
            SaveError: If the entry cannot be written.
        """
        spec = self.domains[domain]
        return self.store.save(domain, self.key_for(domain), spec.paths)

    def save_many(
        self, domains: Iterable[CacheDomain]
    ) -> tuple[list[CacheEntry], list[SaveError]]:
        """Save several domains, collecting failures instead of raising.

        Returns:
            Tuple of (saved entries, save errors).
        """
        saved: list[CacheEntry] = []
        errors: list[SaveError] = []
        for domain in domains:
            if domain not in self.domains:
                logger.debug("Skipping unknown cache domain %s", domain.value)
                continue
            try:
                saved.append(self.save(domain))
            except SaveError as e:
                logger.warning("Cache save failed for %s: %s", domain.value, e)
                errors.append(e)
        return saved, errors


__all__ = [
    "CacheDomainSpec",
    "CacheManager",
    "CacheRestoreResult",
    "default_domains",
    "resolve_package_cache_dir",
]
