"""Image build module.

This module handles:
- Build description loading and validation
- Running the container build engine
- Tagging the built image by digest
"""

from image_release.builds.description import BuildDescription
from image_release.builds.runner import BuiltImage, ImageBuilder

__all__ = ["BuildDescription", "BuiltImage", "ImageBuilder"]
