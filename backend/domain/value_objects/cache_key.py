"""
Cache Key

Deterministic identifier of one generation of a source file.
"""

import hashlib
import re

_CACHE_KEY_RE = re.compile(r'^[0-9a-f]{32}$')


def compute_cache_key(owner: str, path: str, mtime: int) -> str:
    """
    Compute the cache key of a source file.

    Equal (owner, path, mtime) always yield the same key; touching the file
    changes its mtime and therefore the key, which is how stale caches are
    left behind instead of being served.

    Args:
        owner: Owner identifier
        path: Logical path in the owner's file store
        mtime: Modification time in whole seconds

    Returns:
        32-character lower-case hex digest
    """
    raw = f"{owner}:{path}:{int(mtime)}"
    return hashlib.md5(raw.encode('utf-8')).hexdigest()


def is_valid_cache_key(value: str) -> bool:
    """Check a client-supplied key before it is used to build a file name."""
    return bool(value) and _CACHE_KEY_RE.match(value) is not None
