"""
Domain Value Objects

Value objects are immutable types that represent descriptive aspects of the domain.
They have no conceptual identity and are compared by their values, not by ID.

Examples:
- SourceFile: Snapshot of a video in an owner's file store
- CachePolicy: Where and how an HLS cache is generated
- ArtifactRef: Location of a generated cache artifact
"""

from .cache_key import compute_cache_key, is_valid_cache_key
from .source_file import SourceFile
from .cache_policy import CachePolicy
from .artifact_ref import ArtifactRef

__all__ = [
    "compute_cache_key",
    "is_valid_cache_key",
    "SourceFile",
    "CachePolicy",
    "ArtifactRef",
]
