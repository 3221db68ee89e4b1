"""Registry credential exchange.

This module handles:
- Exchanging long-lived account secrets for a short-lived registry token
  (`aws ecr get-login-password`)
- Logging the container engine into the registry with that token
- Logging out again at the end of a run

Login state is written to a private docker config directory created for
the run (`DOCKER_CONFIG`) and removed on release, so the token never lands
in the user's `~/.docker/config.json`.

Secrets are only passed through the child process environment or stdin;
they never appear on a command line or in logs.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import SecretStr

from image_release.errors import AuthError

logger = logging.getLogger(__name__)

# Registry authorization tokens are valid for 12 hours
TOKEN_LIFETIME = timedelta(hours=12)

REGISTRY_USERNAME = "AWS"

CONFIG_DIR_PREFIX = "image-release-docker-"


@dataclass(frozen=True)
class Credential:
    """Short-lived authorization for one registry endpoint.

    Attributes:
        registry: Registry endpoint the credential is valid for.
        region: Region the credential is scoped to.
        username: Registry login user.
        token: Authorization token (never shown in repr).
        expires_at: Expiry time of the token.
        config_dir: Docker config directory holding the login, if any.
    """

    registry: str
    region: str
    username: str
    token: SecretStr = field(repr=False)
    expires_at: datetime
    config_dir: Path | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the credential has expired."""
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def docker_env(self) -> dict[str, str] | None:
        """Environment for docker commands using this credential's login."""
        return docker_env(self.config_dir)


def docker_env(config_dir: Path | None) -> dict[str, str] | None:
    """Return the process environment pointing docker at ``config_dir``.

    None means the inherited environment.
    """
    if config_dir is None:
        return None
    env = dict(os.environ)
    env["DOCKER_CONFIG"] = str(config_dir)
    return env


def _secret_value(secret: SecretStr | str | None) -> str:
    if secret is None:
        return ""
    if isinstance(secret, SecretStr):
        return secret.get_secret_value()
    return secret


def get_login_password(
    access_key_id: SecretStr | str | None,
    secret_key: SecretStr | str | None,
    region: str,
) -> str:
    """Exchange account secrets for a registry login token.

    Args:
        access_key_id: Access key identifier.
        secret_key: Secret access key.
        region: Region to scope the token to.

    Returns:
        The registry login token.

    Raises:
        AuthError: If secrets are missing or the exchange fails.
    """
    key_id = _secret_value(access_key_id)
    secret = _secret_value(secret_key)
    if not key_id or not secret:
        raise AuthError("Access key id and secret key are required", code="missing_secrets")

    cmd = ["aws", "ecr", "get-login-password", "--region", region]
    env = dict(os.environ)
    env["AWS_ACCESS_KEY_ID"] = key_id
    env["AWS_SECRET_ACCESS_KEY"] = secret
    env["AWS_DEFAULT_REGION"] = region
    env.pop("AWS_SESSION_TOKEN", None)

    logger.info("Requesting registry token: %s", shlex.join(cmd))
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            env=env,
            check=False,
        )
    except OSError as e:
        raise AuthError(f"Failed to run credential exchange: {e}", code="execution_error") from e

    if result.returncode != 0:
        raise AuthError(
            f"Credential exchange failed with exit code {result.returncode}: "
            f"{result.stderr.strip()}"
        )

    token = result.stdout.strip()
    if not token:
        raise AuthError("Credential exchange returned an empty token", code="empty_token")
    return token


def docker_login(
    registry: str, username: str, token: str, config_dir: Path | None = None
) -> None:
    """Log the container engine into a registry.

    Args:
        registry: Registry endpoint host.
        username: Registry login user.
        token: Registry login token, passed on stdin.
        config_dir: Docker config directory to store the login in.

    Raises:
        AuthError: If the login is rejected.
    """
    cmd = ["docker", "login", "--username", username, "--password-stdin", registry]
    logger.info("Logging in to registry: %s", shlex.join(cmd))
    try:
        result = subprocess.run(
            cmd,
            input=token,
            capture_output=True,
            text=True,
            env=docker_env(config_dir),
            check=False,
        )
    except OSError as e:
        raise AuthError(f"Failed to run docker login: {e}", code="execution_error") from e

    if result.returncode != 0:
        raise AuthError(
            f"Registry login to {registry} failed: {result.stderr.strip()}",
            code="login_rejected",
        )


def authenticate(
    access_key_id: SecretStr | str | None,
    secret_key: SecretStr | str | None,
    region: str,
    registry: str,
) -> Credential:
    """Acquire a short-lived credential for a registry and log in with it.

    Args:
        access_key_id: Access key identifier.
        secret_key: Secret access key.
        region: Region of the registry.
        registry: Registry endpoint host.

    Returns:
        Credential scoped to region and registry.

    Raises:
        AuthError: If any step fails.
    """
    issued_at = datetime.now(timezone.utc)
    token = get_login_password(access_key_id, secret_key, region)
    config_dir = Path(tempfile.mkdtemp(prefix=CONFIG_DIR_PREFIX))
    try:
        docker_login(registry, REGISTRY_USERNAME, token, config_dir)
    except AuthError:
        shutil.rmtree(config_dir, ignore_errors=True)
        raise
    logger.info("Authenticated to %s (region %s)", registry, region)
    return Credential(
        registry=registry,
        region=region,
        username=REGISTRY_USERNAME,
        token=SecretStr(token),
        expires_at=issued_at + TOKEN_LIFETIME,
        config_dir=config_dir,
    )


def release(credential: Credential) -> bool:
    """Log out of the credential's registry and drop its docker config.

    Returns:
        True if the logout succeeded. Failures are logged, not raised.
    """
    try:
        return _logout(credential)
    finally:
        if credential.config_dir is not None:
            shutil.rmtree(credential.config_dir, ignore_errors=True)


def _logout(credential: Credential) -> bool:
    cmd = ["docker", "logout", credential.registry]
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            env=credential.docker_env(),
            check=False,
        )
    except OSError as e:
        logger.warning("Failed to log out of %s: %s", credential.registry, e)
        return False
    if result.returncode != 0:
        logger.warning(
            "Failed to log out of %s: %s", credential.registry, result.stderr.strip()
        )
        return False
    logger.debug("Logged out of %s", credential.registry)
    return True


class CredentialProvider:
    """Stage adapter exchanging configured secrets for a Credential."""

    def __init__(
        self,
        access_key_id: SecretStr | str | None,
        secret_key: SecretStr | str | None,
    ) -> None:
        self._access_key_id = access_key_id
        self._secret_key = secret_key

    def __repr__(self) -> str:
        return "CredentialProvider(access_key_id='**********', secret_key='**********')"

    def authenticate(self, region: str, registry: str) -> Credential:
        """Acquire a credential for ``registry`` in ``region``."""
        return authenticate(self._access_key_id, self._secret_key, region, registry)

    def release(self, credential: Credential) -> bool:
        """Discard a credential at the end of a run."""
        return release(credential)


__all__ = [
    "TOKEN_LIFETIME",
    "Credential",
    "CredentialProvider",
    "authenticate",
    "docker_env",
    "docker_login",
    "get_login_password",
    "release",
]
