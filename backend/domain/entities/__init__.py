"""
Domain Entities

Entities are business objects with identity and lifecycle.
They are mutable and have a unique identifier that persists through their lifetime.

Examples:
- ProgressRecord: Generation state of one cache key, persisted across restarts
"""

from .progress_record import ProgressRecord

__all__ = ["ProgressRecord"]
