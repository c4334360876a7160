"""
ArtifactRef Value Object

Points at a generated cache artifact: an HLS directory or a proxy file.
"""

import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from constants import ArtifactKinds


@dataclass(frozen=True)
class ArtifactRef:
    """
    Location of a cache artifact.

    For HLS artifacts cache_path is the logical cache directory in the owner's
    tree and manifest is the published manifest name inside it. For proxy
    artifacts cache_path is empty and local_path is the proxy file.
    """

    kind: str
    owner: str
    cache_key: str
    local_path: Path
    cache_path: str = ""
    manifest: Optional[str] = None

    @property
    def is_hls(self) -> bool:
        return self.kind == ArtifactKinds.HLS

    @property
    def manifest_path(self) -> Optional[str]:
        """Logical path of the manifest, None for proxy files"""
        if not self.is_hls or not self.manifest:
            return None
        return posixpath.join(self.cache_path, self.manifest)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "cache_key": self.cache_key,
            "cache_path": self.cache_path or None,
            "manifest": self.manifest,
            "manifest_path": self.manifest_path,
        }
