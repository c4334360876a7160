"""
Cache Locator

Derives where the cache of a source file lives and probes whether it exists.

Layout:
- relative: <dir of video>/.cached_hls/<basename>/
- home:     /.cached_hls/<basename>/
- custom:   <custom path>/.cached_hls/<basename>/  (".cached_hls" appended once)
- proxy:    <proxy_dir>/<cache_key>.mp4

A location only counts as cached when a published manifest is present;
master.m3u8 is preferred over the legacy playlist.m3u8. Staleness is handled
by the cache key, never by inspecting the artifact.
"""
import posixpath
from pathlib import Path
from typing import Callable, Iterable, List, Optional
import logging

from constants import ArtifactKinds, CacheLayout, CacheLocations
from domain.value_objects import ArtifactRef, CachePolicy, SourceFile
from exceptions import PermissionDeniedError, ValidationError
from services.file_store import normalize_logical_path
from services.interfaces import IFileStore

logger = logging.getLogger(__name__)

MountProvider = Callable[[str], Iterable[str]]


def _no_mounts(owner: str) -> List[str]:
    return []


def cache_root_for_custom(custom_path: str) -> str:
    """Append the cache directory name unless the path already ends with it"""
    root = normalize_logical_path(custom_path)
    if posixpath.basename(root) != CacheLayout.CACHE_DIR_NAME:
        root = posixpath.join(root, CacheLayout.CACHE_DIR_NAME)
    return root


class CacheLocator:
    """Resolves and probes cache locations for source files"""

    def __init__(self, file_store: IFileStore, proxy_dir: Path, mount_provider: Optional[MountProvider] = None):
        self.file_store = file_store
        self.proxy_dir = Path(proxy_dir)
        self.mount_provider = mount_provider or _no_mounts

    # ------------------------------------------------------------------
    # Resolution (pure)
    # ------------------------------------------------------------------

    def resolve(self, source: SourceFile, policy: CachePolicy) -> str:
        """
        Logical cache directory for a source under a policy.

        Raises:
            ValidationError: If the custom location has no path
        """
        if policy.location == CacheLocations.RELATIVE:
            root = posixpath.join(source.directory, CacheLayout.CACHE_DIR_NAME)
        elif policy.location == CacheLocations.HOME:
            root = '/' + CacheLayout.CACHE_DIR_NAME
        elif policy.location == CacheLocations.CUSTOM:
            if not policy.custom_path:
                raise ValidationError("Custom cache location requires a custom path",
                                      invalid_fields={"custom_path": None})
            root = cache_root_for_custom(policy.custom_path)
        else:
            raise ValidationError(f"Unknown cache location: {policy.location}",
                                  invalid_fields={"location": policy.location})
        return posixpath.join(root, source.stem)

    def candidate_locations(self, source: SourceFile) -> List[str]:
        """Probe order: relative, home, then each registered custom mount"""
        candidates = [
            self.resolve(source, CachePolicy(location=CacheLocations.RELATIVE)),
            self.resolve(source, CachePolicy(location=CacheLocations.HOME)),
        ]
        for mount in self.mount_provider(source.owner):
            candidate = posixpath.join(cache_root_for_custom(mount), source.stem)
            if candidate not in candidates:
                candidates.append(candidate)
        return candidates

    def proxy_path(self, cache_key: str) -> Path:
        return self.proxy_dir / f"{cache_key}{CacheLayout.PROXY_EXTENSION}"

    def proxy_partial_path(self, cache_key: str) -> Path:
        return self.proxy_dir / f"{cache_key}{CacheLayout.PROXY_EXTENSION}{CacheLayout.PROXY_PARTIAL_SUFFIX}"

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    def published_manifest(self, owner: str, cache_path: str) -> Optional[str]:
        """Name of the published manifest in a cache directory, or None"""
        for manifest in (CacheLayout.MASTER_MANIFEST, CacheLayout.LEGACY_MANIFEST):
            try:
                if self.file_store.exists(owner, posixpath.join(cache_path, manifest)):
                    return manifest
            except (ValidationError, PermissionDeniedError) as e:
                logger.debug(f"Skipping unusable cache location {cache_path}: {e}")
                return None
        return None

    def hls_ref(self, source: SourceFile, cache_path: str, manifest: str) -> ArtifactRef:
        return ArtifactRef(
            kind=ArtifactKinds.HLS,
            owner=source.owner,
            cache_key=source.cache_key,
            local_path=self.file_store.local_path(source.owner, cache_path),
            cache_path=cache_path,
            manifest=manifest,
        )

    def find_existing(self, source: SourceFile) -> Optional[ArtifactRef]:
        """First HLS cache found in probe order, or None"""
        for cache_path in self.candidate_locations(source):
            manifest = self.published_manifest(source.owner, cache_path)
            if manifest:
                return self.hls_ref(source, cache_path, manifest)
        return None

    def find_proxy(self, source: SourceFile) -> Optional[ArtifactRef]:
        path = self.proxy_path(source.cache_key)
        if not path.is_file():
            return None
        return ArtifactRef(
            kind=ArtifactKinds.PROXY,
            owner=source.owner,
            cache_key=source.cache_key,
            local_path=path,
        )

    def find_cache(self, source: SourceFile) -> Optional[ArtifactRef]:
        """HLS cache if present, else proxy file if present, else None"""
        return self.find_existing(source) or self.find_proxy(source)
