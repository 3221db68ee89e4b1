"""Tests for cache/manager.py module.

Uses mocked subprocess for package cache directory resolution.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from image_release.cache.manager import (
    CacheDomainSpec,
    CacheManager,
    default_domains,
    resolve_package_cache_dir,
)
from image_release.cache.store import CacheStore
from image_release.config import Settings
from image_release.errors import CachePathError
from image_release.types import CacheDomain


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a workspace with both lock files."""
    ws = tmp_path / "ws"
    (ws / "backend").mkdir(parents=True)
    (ws / "frontend").mkdir()
    (ws / "backend" / "Cargo.lock").write_text("[[package]]\nname = 'a'\n")
    (ws / "frontend" / "package-lock.json").write_text('{"lockfileVersion": 3}')
    return ws


@pytest.fixture
def settings(workspace: Path, tmp_path: Path) -> Settings:
    """Create settings pointing every domain into tmp_path."""
    return Settings(
        workspace=workspace,
        cache_root=tmp_path / "store",
        dependency_cache_paths=[Path("backend/target")],
        package_cache_dir=tmp_path / "npm-cache",
        layer_cache_dir=tmp_path / "buildx-cache",
    )


@pytest.fixture
def manager(settings: Settings) -> CacheManager:
    """Create a cache manager from settings."""
    return CacheManager(CacheStore(settings.cache_root), settings=settings)


class TestResolvePackageCacheDir:
    """Tests for resolve_package_cache_dir function."""

    @patch("image_release.cache.manager.subprocess.run")
    def test_success(self, mock_run: MagicMock) -> None:
        """Should return the directory npm reports."""
        mock_run.return_value = MagicMock(
            returncode=0, stdout="/home/runner/.npm\n", stderr=""
        )
        assert resolve_package_cache_dir() == Path("/home/runner/.npm")
        assert mock_run.call_args[0][0] == ["npm", "config", "get", "cache"]

    @patch("image_release.cache.manager.subprocess.run")
    def test_npm_missing(self, mock_run: MagicMock) -> None:
        """A missing npm binary should raise CachePathError."""
        mock_run.side_effect = FileNotFoundError("npm")
        with pytest.raises(CachePathError) as exc_info:
            resolve_package_cache_dir()
        assert exc_info.value.code == "cache_path_error"

    @patch("image_release.cache.manager.subprocess.run")
    def test_nonzero_exit(self, mock_run: MagicMock) -> None:
        """A failing npm should raise CachePathError."""
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="boom")
        with pytest.raises(CachePathError, match="exit code 1"):
            resolve_package_cache_dir()

    @patch("image_release.cache.manager.subprocess.run")
    def test_empty_output(self, mock_run: MagicMock) -> None:
        """Empty output should raise CachePathError."""
        mock_run.return_value = MagicMock(returncode=0, stdout="\n", stderr="")
        with pytest.raises(CachePathError, match="empty"):
            resolve_package_cache_dir()


class TestDefaultDomains:
    """Tests for default_domains function."""

    def test_three_domains(self, settings: Settings, workspace: Path) -> None:
        """Should define dependency, package and layer domains."""
        domains = {d.domain: d for d in default_domains(settings)}
        assert set(domains) == set(CacheDomain)

        dependency = domains[CacheDomain.DEPENDENCY]
        assert dependency.paths == (workspace / "backend" / "target",)
        assert dependency.lock_files == (workspace / "backend" / "Cargo.lock",)

        layer = domains[CacheDomain.LAYER]
        assert layer.lock_files is None
        assert layer.label == "docker-buildx"

    @patch("image_release.cache.manager.subprocess.run")
    def test_package_dir_resolved_with_npm(
        self, mock_run: MagicMock, settings: Settings
    ) -> None:
        """Without a configured package dir, npm should be asked."""
        mock_run.return_value = MagicMock(returncode=0, stdout="/npm\n", stderr="")
        settings = settings.model_copy(update={"package_cache_dir": None})
        domains = {d.domain: d for d in default_domains(settings)}
        assert domains[CacheDomain.PACKAGE].paths == (Path("/npm"),)


class TestCacheManager:
    """Tests for CacheManager."""

    def test_requires_settings_or_domains(self, tmp_path: Path) -> None:
        """Constructing without any domain source should fail."""
        with pytest.raises(ValueError):
            CacheManager(CacheStore(tmp_path))

    def test_resolving_without_settings(self, tmp_path: Path) -> None:
        """Resolving default domains without settings should raise ValueError."""
        manager = CacheManager(CacheStore(tmp_path), domains=[])
        manager._domains = None
        with pytest.raises(ValueError, match="no settings"):
            manager.domains

    def test_keys(self, manager: CacheManager) -> None:
        """Content domains should have hashed keys, the layer a constant one."""
        dependency_key = manager.key_for(CacheDomain.DEPENDENCY)
        package_key = manager.key_for(CacheDomain.PACKAGE)
        assert "-cargo-" in dependency_key
        assert "-node-" in package_key
        assert manager.key_for(CacheDomain.LAYER).endswith("-docker-buildx")

    def test_keys_follow_lock_file_content(
        self, settings: Settings, workspace: Path
    ) -> None:
        """Changing a lock file should change only its domain's key."""
        before = CacheManager(CacheStore(settings.cache_root), settings=settings)
        (workspace / "backend" / "Cargo.lock").write_text("[[package]]\nname = 'b'\n")
        after = CacheManager(CacheStore(settings.cache_root), settings=settings)

        assert before.key_for(CacheDomain.DEPENDENCY) != after.key_for(
            CacheDomain.DEPENDENCY
        )
        assert before.key_for(CacheDomain.PACKAGE) == after.key_for(
            CacheDomain.PACKAGE
        )

    def test_restore_all_misses_on_empty_store(self, manager: CacheManager) -> None:
        """Every domain should miss on a fresh store."""
        restored = manager.restore_all()
        assert set(restored) == set(CacheDomain)
        assert not any(r.hit for r in restored.values())

    def test_save_then_restore_hits(
        self, manager: CacheManager, settings: Settings
    ) -> None:
        """A saved domain should hit on the next restore."""
        settings.layer_cache_dir.mkdir()
        (settings.layer_cache_dir / "index.json").write_text("{}")
        manager.save(CacheDomain.LAYER)

        result = manager.restore(CacheDomain.LAYER)
        assert result.hit
        assert result.primary_path == settings.layer_cache_dir

    def test_save_many_collects_errors(
        self, manager: CacheManager, settings: Settings
    ) -> None:
        """Failed saves should be returned rather than raised."""
        settings.layer_cache_dir.mkdir()
        (settings.layer_cache_dir / "index.json").write_text("{}")

        saved, errors = manager.save_many([CacheDomain.LAYER, CacheDomain.PACKAGE])
        assert [e.domain for e in saved] == [CacheDomain.LAYER]
        assert len(errors) == 1
        assert errors[0].code == "nothing_to_save"

    def test_explicit_domains(self, tmp_path: Path) -> None:
        """Explicit domain specs should bypass settings."""
        spec = CacheDomainSpec(
            domain=CacheDomain.LAYER,
            label="docker-buildx",
            paths=(tmp_path / "layers",),
        )
        manager = CacheManager(
            CacheStore(tmp_path / "store"), domains=[spec], key_prefix="Linux"
        )
        assert manager.key_for(CacheDomain.LAYER) == "Linux-docker-buildx"
        saved, errors = manager.save_many([CacheDomain.DEPENDENCY])
        assert saved == []
        assert errors == []

    @patch("image_release.cache.manager.subprocess.run")
    def test_unresolvable_package_dir(
        self, mock_run: MagicMock, settings: Settings
    ) -> None:
        """Restoring should raise CachePathError when npm fails."""
        mock_run.side_effect = FileNotFoundError("npm")
        settings = settings.model_copy(update={"package_cache_dir": None})
        manager = CacheManager(CacheStore(settings.cache_root), settings=settings)
        with pytest.raises(CachePathError):
            manager.restore_all()
