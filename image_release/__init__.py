"""Image Release - build, publish and tag versioned container images.

This package orchestrates a single release run: version derivation,
registry authentication, build cache restore/save, the container image
build, publishing under two tags and tagging the source revision.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
