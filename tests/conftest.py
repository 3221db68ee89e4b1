"""Shared test fixtures."""

import pytest

ENV_VARS = (
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "GITHUB_RUN_NUMBER",
    "IMG_RELEASE_ACCESS_KEY_ID",
    "IMG_RELEASE_SECRET_ACCESS_KEY",
    "IMG_RELEASE_RUN_ORDINAL",
    "IMG_RELEASE_REGISTRY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from CI variables and a local .env file."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
