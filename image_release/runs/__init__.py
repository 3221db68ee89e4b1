"""Run history module.

This module handles:
- ReleaseRun and StageRecord persistence
- Listing and looking up past runs
"""

from image_release.runs.models import ReleaseRun, StageRecord

__all__ = ["ReleaseRun", "StageRecord"]
