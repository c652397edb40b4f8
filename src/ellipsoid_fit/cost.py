"""
===========================================================
ellipsoid_fit.cost — edgel-to-ellipsoid agreement
===========================================================

Scores how well edgels agree with a candidate ellipsoid:

  - distance : Euclidean distance of the edgel to the surface
  - angle    : acos(-normal · gradient) with the outward normal taken at
               the nearest surface point, ~0 for a boundary edgel whose
               gradient points inwards (towards the bright interior)
  - side     : inside (quadric ≤ 1) uses the inside cutoff, outside the
               outside cutoff

Per-edgel cost is min(angle, αc)/αc + min(dist, dc)/dc, so every edgel
contributes between 0 and 2 and far outliers cannot dominate the sum.
"""

# --- Imports --------------------------------------------------------------

from __future__ import annotations

import numpy as np

from .config import FitConfig
from .edgels import as_edgel_set
from .ellipsoid import Ellipsoid, distance_to_surface


# --- Cost function ---------------------------------------------------------

class EdgelDistanceCost:
    """
    Truncated distance + angle cost of edgels against an ellipsoid.

    Parameters
    ----------
    outside_cutoff : float
    inside_cutoff : float
    angle_cutoff : float
        Radians.
    """

    def __init__(self, outside_cutoff: float, inside_cutoff: float, angle_cutoff: float):
        if min(outside_cutoff, inside_cutoff, angle_cutoff) <= 0.0:
            raise ValueError("Cutoffs must be positive.")
        self.outside_cutoff = float(outside_cutoff)
        self.inside_cutoff = float(inside_cutoff)
        self.angle_cutoff = float(angle_cutoff)

    @classmethod
    def from_config(cls, config: FitConfig) -> "EdgelDistanceCost":
        return cls(config.outside_cutoff_distance,
                   config.inside_cutoff_distance,
                   config.angle_cutoff_distance)

    def measure(self, ellipsoid: Ellipsoid, edgels):
        """
        Return (distance, angle, side_cutoff) arrays for all edgels.
        """
        E = as_edgel_set(edgels)
        distance, nearest = distance_to_surface(ellipsoid, E.positions)
        normals = ellipsoid.normal(nearest)
        cos = -np.einsum("ni,ni->n", normals, E.gradients)
        angle = np.arccos(np.clip(cos, -1.0, 1.0))
        # degenerate normal
        angle = np.where(np.isnan(angle), np.pi, angle)
        inside = ellipsoid.quadric(E.positions) <= 1.0
        side_cutoff = np.where(inside, self.inside_cutoff, self.outside_cutoff)
        return distance, angle, side_cutoff

    def compute(self, ellipsoid: Ellipsoid, edgels) -> np.ndarray:
        """Per-edgel cost, each value in [0, 2]."""
        distance, angle, side = self.measure(ellipsoid, edgels)
        return (np.minimum(angle, self.angle_cutoff) / self.angle_cutoff
                + np.minimum(distance, side) / side)

    def total(self, ellipsoid: Ellipsoid, edgels) -> float:
        """Summed cost over all edgels (lower is better)."""
        return float(np.sum(self.compute(ellipsoid, edgels)))

    def is_inlier(self, ellipsoid: Ellipsoid, edgels) -> np.ndarray:
        """Boolean mask: angle and distance both below their cutoffs."""
        distance, angle, side = self.measure(ellipsoid, edgels)
        return (angle < self.angle_cutoff) & (distance < side)

    def inliers(self, ellipsoid: Ellipsoid, edgels):
        E = as_edgel_set(edgels)
        return E[self.is_inlier(ellipsoid, E)]


def edgel_costs(edgels, ellipsoid: Ellipsoid, config: FitConfig, binary: bool = True) -> np.ndarray:
    """
    Per-edgel cost map for inspection.

    With binary=True (default) inliers map to 0.0 and outliers to 1.0;
    otherwise the raw truncated cost is returned.
    """
    cost = EdgelDistanceCost.from_config(config)
    if binary:
        return np.where(cost.is_inlier(ellipsoid, edgels), 0.0, 1.0)
    return cost.compute(ellipsoid, edgels)
