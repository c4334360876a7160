"""
CachePolicy Value Object

Where an HLS cache is written and how it is generated.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from constants import CacheLocations, ResolutionPresets
from exceptions import ValidationError


@dataclass(frozen=True)
class CachePolicy:
    """
    Immutable cache policy.

    Validation happens here as well as at the HTTP edge so that policies
    loaded from watch registrations are checked the same way.
    """

    location: str = CacheLocations.RELATIVE
    custom_path: Optional[str] = None
    overwrite_existing: bool = False
    resolutions: Tuple[str, ...] = field(default_factory=lambda: tuple(ResolutionPresets.DEFAULT))
    notify_completion: bool = True

    def __post_init__(self):
        if self.location not in CacheLocations.ALL:
            raise ValidationError(
                f"Unknown cache location: {self.location}",
                invalid_fields={"location": self.location},
            )
        if self.location == CacheLocations.CUSTOM and not (self.custom_path or '').strip():
            raise ValidationError(
                "Custom cache location requires a custom path",
                invalid_fields={"custom_path": self.custom_path},
            )
        # Lists arrive from JSON; keep the dataclass hashable
        object.__setattr__(self, 'resolutions', tuple(self.resolutions))
        if not self.resolutions:
            object.__setattr__(self, 'resolutions', tuple(ResolutionPresets.DEFAULT))
        unknown = [r for r in self.resolutions if not ResolutionPresets.is_known(r)]
        if unknown:
            raise ValidationError(
                f"Unknown resolutions: {', '.join(unknown)}",
                invalid_fields={"resolutions": unknown},
            )

    def to_dict(self) -> dict:
        return {
            "location": self.location,
            "custom_path": self.custom_path,
            "overwrite_existing": self.overwrite_existing,
            "resolutions": list(self.resolutions),
            "notify_completion": self.notify_completion,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CachePolicy":
        return cls(
            location=data.get("location") or CacheLocations.RELATIVE,
            custom_path=data.get("custom_path"),
            overwrite_existing=bool(data.get("overwrite_existing", False)),
            resolutions=tuple(data.get("resolutions") or ResolutionPresets.DEFAULT),
            notify_completion=bool(data.get("notify_completion", True)),
        )
