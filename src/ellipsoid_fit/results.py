"""
===========================================================
ellipsoid_fit.results — fit outcomes and error taxonomy
===========================================================

Every fitting call ends in exactly one FitStatus:

  - FOUND                          : an ellipsoid is attached
  - INSUFFICIENT_SAMPLE_POINTS     : fewer than 9 edgels / points
  - DEGENERATE_ALGEBRAIC_SYSTEM    : normal equations not SPD, or NaN radii
  - NO_CANDIDATE_WITHIN_TOLERANCE  : no sample gave a usable ellipsoid
  - CANCELLED                      : batch cancelled before this target ran
  - ERROR                          : unexpected exception while fitting a target

The exceptions mirror the failure statuses; FitResult.unwrap() converts a
failed result into the matching exception.
"""

# --- Imports --------------------------------------------------------------

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .ellipsoid import Ellipsoid


# --- Exceptions -----------------------------------------------------------

class EllipsoidFitError(RuntimeError):
    """Base class of all fitting failures."""


class InsufficientSamplePoints(EllipsoidFitError, ValueError):
    """Fewer than 9 points / edgels available."""


class DegenerateAlgebraicSystem(EllipsoidFitError):
    """The 9x9 normal equations are not SPD, or the quadric is not an ellipsoid."""


class RefinementFailure(DegenerateAlgebraicSystem):
    """Inlier re-fit failed; callers fall back to the unrefined candidate."""


class NoCandidateWithinTolerance(EllipsoidFitError):
    """Every sampled hypothesis was degenerate or too far from the expected center."""


class FitCancelled(EllipsoidFitError):
    """The target was skipped because its batch was cancelled."""


# --- Status / result ------------------------------------------------------

class FitStatus(enum.Enum):
    FOUND = "found"
    INSUFFICIENT_SAMPLE_POINTS = "insufficient_sample_points"
    DEGENERATE_ALGEBRAIC_SYSTEM = "degenerate_algebraic_system"
    NO_CANDIDATE_WITHIN_TOLERANCE = "no_candidate_within_tolerance"
    CANCELLED = "cancelled"
    ERROR = "error"


_ERRORS = {
    FitStatus.INSUFFICIENT_SAMPLE_POINTS: InsufficientSamplePoints,
    FitStatus.DEGENERATE_ALGEBRAIC_SYSTEM: DegenerateAlgebraicSystem,
    FitStatus.NO_CANDIDATE_WITHIN_TOLERANCE: NoCandidateWithinTolerance,
    FitStatus.CANCELLED: FitCancelled,
    FitStatus.ERROR: EllipsoidFitError,
}


@dataclass(frozen=True)
class FitResult:
    """
    Outcome of one fit call.

    Attributes
    ----------
    status : FitStatus
    ellipsoid : Ellipsoid or None
        Set iff status is FOUND.
    message : str
        Human readable reason for failures.
    refined : bool
        True when the returned ellipsoid comes from the inlier re-fit.
    num_samples_drawn : int
        Number of minimal samples drawn (0 when no randomness was consumed).
    num_candidates : int
        Number of samples that produced a valid, scored candidate.
    """
    status: FitStatus
    ellipsoid: Optional["Ellipsoid"] = None
    message: str = ""
    refined: bool = False
    num_samples_drawn: int = 0
    num_candidates: int = 0

    @property
    def found(self) -> bool:
        return self.status is FitStatus.FOUND

    def unwrap(self) -> "Ellipsoid":
        """Return the ellipsoid, or raise the exception matching the status."""
        if self.found:
            return self.ellipsoid
        raise _ERRORS[self.status](self.message or self.status.value)

    @classmethod
    def failure(cls, status: FitStatus, message: str, **kwargs) -> "FitResult":
        if status is FitStatus.FOUND:
            raise ValueError("failure() needs a failure status")
        return cls(status=status, message=message, **kwargs)

    @classmethod
    def from_error(cls, error: EllipsoidFitError, **kwargs) -> "FitResult":
        """Map a typed exception onto the corresponding failed result."""
        for status, err_type in _ERRORS.items():
            if type(error) is err_type:
                return cls(status=status, message=str(error), **kwargs)
        if isinstance(error, DegenerateAlgebraicSystem):
            return cls(FitStatus.DEGENERATE_ALGEBRAIC_SYSTEM, message=str(error), **kwargs)
        raise TypeError(f"No FitStatus for {type(error).__name__}")
