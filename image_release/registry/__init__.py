"""Container registry access.

This module handles:
- Exchanging account secrets for short-lived registry credentials
- Publishing image tags
"""

from image_release.registry.credentials import Credential, CredentialProvider
from image_release.registry.publisher import Publisher, PushResult

__all__ = ["Credential", "CredentialProvider", "Publisher", "PushResult"]
