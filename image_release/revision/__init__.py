"""Source revision tagging."""

from image_release.revision.tagger import RevisionTag, RevisionTagger

__all__ = ["RevisionTag", "RevisionTagger"]
