"""
Domain Layer

This package contains the core cache and transcode domain types, separated
from persistence concerns and infrastructure.

Structure:
- entities/: Mutable records with identity (progress of one cache key)
- value_objects/: Immutable value types without identity
"""
