"""Tests for registry/publisher.py module.

Uses mocked subprocess for docker push.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pydantic import SecretStr

from image_release.errors import PushError
from image_release.registry.credentials import Credential
from image_release.registry.publisher import Publisher, parse_push_digest, push
from image_release.types import ImageTag

REGISTRY = "123456789012.dkr.ecr.sa-east-1.amazonaws.com"
DIGEST = "sha256:" + "ab" * 32
OTHER_DIGEST = "sha256:" + "cd" * 32


def _push_output(label: str, digest: str) -> MagicMock:
    stdout = (
        "The push refers to repository [registry/app]\n"
        "5f70bf18a086: Pushed\n"
        f"{label}: digest: {digest} size: 1234\n"
    )
    return MagicMock(returncode=0, stdout=stdout, stderr="")


@pytest.fixture
def credential() -> Credential:
    """Create a valid credential for the registry."""
    return Credential(
        registry=REGISTRY,
        region="sa-east-1",
        username="AWS",
        token=SecretStr("t"),
        expires_at=datetime.now(timezone.utc) + timedelta(hours=12),
    )


@pytest.fixture
def tags() -> list[ImageTag]:
    """Create the two tags of a run."""
    repo = f"{REGISTRY}/windmill"
    return [ImageTag(repo, "latest"), ImageTag(repo, "2024.05.01-7")]


class TestParsePushDigest:
    """Tests for parse_push_digest function."""

    def test_parses_digest(self) -> None:
        """Should extract the digest from push output."""
        assert parse_push_digest(f"latest: digest: {DIGEST} size: 528") == DIGEST

    def test_no_digest(self) -> None:
        """Output without a digest should give None."""
        assert parse_push_digest("Everything up-to-date") is None


class TestPush:
    """Tests for push function."""

    @patch("image_release.registry.publisher.subprocess.run")
    def test_pushes_both_tags(
        self, mock_run: MagicMock, credential: Credential, tags: list[ImageTag]
    ) -> None:
        """Should push each tag and report the shared digest."""
        mock_run.side_effect = [
            _push_output("latest", DIGEST),
            _push_output("2024.05.01-7", DIGEST),
        ]
        result = push(tags, credential)

        assert result.digest == DIGEST
        assert result.references == [t.reference for t in tags]
        pushed = [c[0][0] for c in mock_run.call_args_list]
        assert pushed == [["docker", "push", t.reference] for t in tags]

    @patch("image_release.registry.publisher.subprocess.run")
    def test_pushes_with_credential_config(
        self,
        mock_run: MagicMock,
        credential: Credential,
        tags: list[ImageTag],
        tmp_path: Path,
    ) -> None:
        """Pushes should use the docker config holding the run's login."""
        credential = replace(credential, config_dir=tmp_path)
        mock_run.side_effect = [
            _push_output("latest", DIGEST),
            _push_output("2024.05.01-7", DIGEST),
        ]
        push(tags, credential)

        for call in mock_run.call_args_list:
            assert call[1]["env"]["DOCKER_CONFIG"] == str(tmp_path)

    @patch("image_release.registry.publisher.subprocess.run")
    def test_pushes_with_inherited_environment(
        self, mock_run: MagicMock, credential: Credential, tags: list[ImageTag]
    ) -> None:
        """Without a config directory docker should inherit the environment."""
        mock_run.side_effect = [
            _push_output("latest", DIGEST),
            _push_output("2024.05.01-7", DIGEST),
        ]
        push(tags, credential)
        assert all(c[1]["env"] is None for c in mock_run.call_args_list)

    @patch("image_release.registry.publisher.subprocess.run")
    def test_digest_mismatch(
        self, mock_run: MagicMock, credential: Credential, tags: list[ImageTag]
    ) -> None:
        """Different digests for the two tags should raise PushError."""
        mock_run.side_effect = [
            _push_output("latest", DIGEST),
            _push_output("2024.05.01-7", OTHER_DIGEST),
        ]
        with pytest.raises(PushError) as exc_info:
            push(tags, credential)
        assert exc_info.value.code == "digest_mismatch"

    @patch("image_release.registry.publisher.subprocess.run")
    def test_push_failure(
        self, mock_run: MagicMock, credential: Credential, tags: list[ImageTag]
    ) -> None:
        """A failing push should raise PushError and stop."""
        mock_run.return_value = MagicMock(
            returncode=1, stdout="", stderr="denied: not authorized"
        )
        with pytest.raises(PushError) as exc_info:
            push(tags, credential)
        assert exc_info.value.code == "push_failed"
        assert "denied" in exc_info.value.message
        assert mock_run.call_count == 1

    @patch("image_release.registry.publisher.subprocess.run")
    def test_expired_credential(
        self, mock_run: MagicMock, credential: Credential, tags: list[ImageTag]
    ) -> None:
        """An expired credential should be rejected before pushing."""
        expired = Credential(
            registry=credential.registry,
            region=credential.region,
            username=credential.username,
            token=credential.token,
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
        with pytest.raises(PushError) as exc_info:
            push(tags, expired)
        assert exc_info.value.code == "credential_expired"
        mock_run.assert_not_called()

    @patch("image_release.registry.publisher.subprocess.run")
    def test_registry_mismatch(
        self, mock_run: MagicMock, credential: Credential
    ) -> None:
        """Tags outside the credential's registry should be rejected."""
        tags = [ImageTag("other.example.com/windmill", "latest")]
        with pytest.raises(PushError) as exc_info:
            push(tags, credential)
        assert exc_info.value.code == "registry_mismatch"
        mock_run.assert_not_called()

    @patch("image_release.registry.publisher.subprocess.run")
    def test_publisher_adapter(
        self, mock_run: MagicMock, credential: Credential, tags: list[ImageTag]
    ) -> None:
        """Publisher.push should delegate to push."""
        mock_run.side_effect = [
            _push_output("latest", DIGEST),
            _push_output("2024.05.01-7", DIGEST),
        ]
        assert Publisher().push(tags, credential).digest == DIGEST
