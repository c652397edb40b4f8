"""
===========================================================
ellipsoid_fit.config — fit and filter parameters
===========================================================

Two frozen records, supplied by the caller and immutable for a fit call:

  - FitConfig          : sampling budget and cost cutoffs
  - EdgelFilterConfig  : direction polarity and occlusion thresholds

Defaults are the values used for nuclei in light-sheet data
(1000 samples, 3 / 5 units outside / inside, 30 degrees, 10 units).
Angles are radians; from_mapping() also accepts "<name>_deg" keys.
"""

# --- Imports --------------------------------------------------------------

from __future__ import annotations

import math
from dataclasses import dataclass, asdict, fields, replace
from typing import Any, Mapping


POLARITIES = ("bright", "dark")
_ANGLES = ("angle_cutoff_distance", "max_angle")


def _from_mapping(cls, values: Mapping[str, Any]):
    known = {f.name for f in fields(cls)}
    kwargs = {}
    for key, value in values.items():
        if key.endswith("_deg") and key[:-4] in known and key[:-4] in _ANGLES:
            kwargs[key[:-4]] = math.radians(float(value))
        elif key in known:
            kwargs[key] = value
        else:
            raise ValueError(f"Unknown {cls.__name__} parameter: {key!r}")
    return cls(**kwargs)


# --- Fit configuration ----------------------------------------------------

@dataclass(frozen=True)
class FitConfig:
    """
    Parameters of the sampling-consensus search.

    Parameters
    ----------
    num_samples : int
        Hard cap on the number of minimal samples drawn.
    num_candidates : int
        Stop once this many valid candidates have been scored.
    outside_cutoff_distance : float
        Distance cutoff for edgels outside the candidate ellipsoid.
    inside_cutoff_distance : float
        Distance cutoff for edgels inside the candidate ellipsoid.
    angle_cutoff_distance : float
        Angular cutoff (radians) between surface normal and edgel gradient.
    max_center_distance : float
        Candidates whose center is farther from the expected center are rejected.
    """
    num_samples: int = 1000
    num_candidates: int = 1000
    outside_cutoff_distance: float = 3.0
    inside_cutoff_distance: float = 5.0
    angle_cutoff_distance: float = math.radians(30.0)
    max_center_distance: float = 10.0

    def __post_init__(self):
        if int(self.num_samples) < 1:
            raise ValueError("num_samples must be ≥ 1")
        if int(self.num_candidates) < 1:
            raise ValueError("num_candidates must be ≥ 1")
        for name in ("outside_cutoff_distance", "inside_cutoff_distance",
                     "angle_cutoff_distance", "max_center_distance"):
            value = getattr(self, name)
            if not (value > 0.0) or not math.isfinite(value):
                raise ValueError(f"{name} must be a positive finite number, got {value!r}")
        if self.angle_cutoff_distance > math.pi:
            raise ValueError("angle_cutoff_distance is in radians and must be ≤ π")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "FitConfig":
        return _from_mapping(cls, values)

    def to_dict(self) -> dict:
        return asdict(self)

    def replace(self, **changes) -> "FitConfig":
        return replace(self, **changes)


# --- Edgel filter configuration -------------------------------------------

@dataclass(frozen=True)
class EdgelFilterConfig:
    """
    Parameters of the edgel pre-filters.

    polarity="bright" keeps edgels whose gradient points towards the expected
    center (object brighter than background). Use "dark" for inverted contrast.
    """
    max_angle: float = math.radians(5.0)
    max_factor: float = 1.1
    polarity: str = "bright"

    def __post_init__(self):
        if not (0.0 < self.max_angle <= math.pi):
            raise ValueError("max_angle must lie in (0, π] radians")
        if not (self.max_factor >= 1.0):
            raise ValueError("max_factor must be ≥ 1")
        if self.polarity not in POLARITIES:
            raise ValueError(f"polarity must be one of {POLARITIES}, got {self.polarity!r}")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "EdgelFilterConfig":
        return _from_mapping(cls, values)

    def to_dict(self) -> dict:
        return asdict(self)

    def replace(self, **changes) -> "EdgelFilterConfig":
        return replace(self, **changes)
