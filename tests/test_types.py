"""Tests for types.py module."""

from image_release.types import STAGE_ORDER, ImageTag, RunStatus, Stage


class TestStageOrder:
    """Test stage ordering."""

    def test_order(self) -> None:
        """Stages should run in the documented order."""
        assert STAGE_ORDER == (
            Stage.AUTHENTICATE,
            Stage.CACHE_RESTORE,
            Stage.BUILD,
            Stage.PUBLISH,
            Stage.CACHE_SAVE,
            Stage.TAG_REVISION,
        )

    def test_enum_values_are_strings(self) -> None:
        """Enum members should compare equal to their values."""
        assert Stage.BUILD == "build"
        assert RunStatus.PARTIAL == "partial"


class TestImageTag:
    """Test ImageTag value type."""

    def test_reference(self) -> None:
        """Reference should join repository and label."""
        tag = ImageTag("123.dkr.ecr.sa-east-1.amazonaws.com/app", "latest")
        assert tag.reference == "123.dkr.ecr.sa-east-1.amazonaws.com/app:latest"
        assert str(tag) == tag.reference

    def test_registry(self) -> None:
        """Registry should be the host part of the repository."""
        tag = ImageTag("registry.example.com/team/app", "2024.05.01-7")
        assert tag.registry == "registry.example.com"

    def test_equality(self) -> None:
        """Tags should compare by value."""
        assert ImageTag("r/app", "latest") == ImageTag("r/app", "latest")
