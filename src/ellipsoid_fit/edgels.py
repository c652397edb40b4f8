"""
===========================================================
ellipsoid_fit.edgels — oriented edge samples and filters
===========================================================

An edgel is a sub-voxel edge sample: position, unit gradient direction
(pointing towards brighter voxels) and gradient magnitude. Edgels come from
an external edge detector and are never mutated.

  - Edgel                 : a single immutable edgel
  - EdgelSet              : read-only arrays of n edgels (vectorized)
  - filter_by_direction() : keep edgels whose polarity faces the center
  - filter_by_occlusion() : drop edgels hidden behind nearer ones
  - transform_edgels()    : map edgels through an affine transform
"""

# --- Imports --------------------------------------------------------------

from __future__ import annotations

import logging
from typing import Iterable, Iterator, NamedTuple, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)


# --- Data types -----------------------------------------------------------

class Edgel(NamedTuple):
    position: tuple
    gradient: tuple
    magnitude: float


class EdgelSet:
    """
    Immutable collection of edgels stored as three read-only arrays.

    Parameters
    ----------
    positions : array-like, shape (n, 3)
    gradients : array-like, shape (n, 3)
        Unit gradient directions.
    magnitudes : array-like, shape (n,)
    """

    __slots__ = ("positions", "gradients", "magnitudes")

    def __init__(self, positions, gradients, magnitudes):
        positions = np.array(positions, dtype=float).reshape(-1, 3)
        gradients = np.array(gradients, dtype=float).reshape(-1, 3)
        magnitudes = np.array(magnitudes, dtype=float).reshape(-1)
        n = positions.shape[0]
        if gradients.shape[0] != n or magnitudes.shape[0] != n:
            raise ValueError("positions, gradients and magnitudes must have the same length")
        for a in (positions, gradients, magnitudes):
            a.setflags(write=False)
        self.positions = positions
        self.gradients = gradients
        self.magnitudes = magnitudes

    @classmethod
    def from_edgels(cls, edgels: Iterable[Edgel]) -> "EdgelSet":
        edgels = list(edgels)
        if not edgels:
            return cls.empty()
        return cls([e.position for e in edgels],
                   [e.gradient for e in edgels],
                   [e.magnitude for e in edgels])

    @classmethod
    def empty(cls) -> "EdgelSet":
        return cls(np.zeros((0, 3)), np.zeros((0, 3)), np.zeros(0))

    def __len__(self):
        return self.positions.shape[0]

    def __iter__(self) -> Iterator[Edgel]:
        for p, g, m in zip(self.positions, self.gradients, self.magnitudes):
            yield Edgel(tuple(p), tuple(g), float(m))

    def __getitem__(self, index) -> Union[Edgel, "EdgelSet"]:
        if isinstance(index, (int, np.integer)):
            return Edgel(tuple(self.positions[index]), tuple(self.gradients[index]),
                         float(self.magnitudes[index]))
        return EdgelSet(self.positions[index], self.gradients[index], self.magnitudes[index])

    def __repr__(self):
        return f"EdgelSet(n={len(self)})"


def as_edgel_set(edgels: Union[EdgelSet, Sequence[Edgel]]) -> EdgelSet:
    if isinstance(edgels, EdgelSet):
        return edgels
    return EdgelSet.from_edgels(edgels)


# --- Direction filter -----------------------------------------------------

def filter_by_direction(edgels, expected_center, polarity: str = "bright") -> EdgelSet:
    """
    Keep edgels that have expected_center in their positive half-space.

    With polarity="bright" an edgel survives iff
    dot(expected_center - position, gradient) > 0, i.e. its dark-to-bright
    transition points towards the center. polarity="dark" inverts the test.
    """
    E = as_edgel_set(edgels)
    c = np.asarray(expected_center, float).reshape(3)
    dots = np.einsum("ni,ni->n", c - E.positions, E.gradients)
    if polarity == "bright":
        keep = dots > 0.0
    elif polarity == "dark":
        keep = dots < 0.0
    else:
        raise ValueError(f"Unknown polarity {polarity!r}; use 'bright' or 'dark'.")
    logger.debug("direction filter kept %d of %d edgels", int(keep.sum()), len(E))
    return E[keep]


# --- Occlusion filter -----------------------------------------------------

def occlusion_mask(positions, expected_center, max_angle: float, max_factor: float) -> np.ndarray:
    """
    Validity mask of the pairwise occlusion test (see filter_by_occlusion).

    Edgels are visited in index order. For a still-valid edgel i, every other
    valid edgel j (ascending) whose direction from the center is within
    max_angle of i's is compared: j is discarded if it is more than
    max_factor times farther than i; if instead i is more than max_factor
    times farther than j, i is discarded and its scan stops.
    """
    P = np.asarray(positions, float).reshape(-1, 3) - np.asarray(expected_center, float).reshape(3)
    n = P.shape[0]
    valid = np.ones(n, dtype=bool)
    if n < 2:
        return valid
    lengths = np.linalg.norm(P, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        U = P / lengths[:, None]
    cos_max = np.cos(max_angle)

    for i in range(n):
        if not valid[i]:
            continue
        with np.errstate(invalid="ignore"):
            near = (U @ U[i]) > cos_max
        near &= valid
        near[i] = False
        if not near.any():
            continue
        farther = near & (lengths > max_factor * lengths[i])
        occluders = np.flatnonzero(near & ~farther & (lengths[i] > max_factor * lengths))
        if occluders.size:
            # scan stops at the first occluder; farther edgels after it survive this pass
            farther[occluders[0]:] = False
            valid[i] = False
        valid[farther] = False
    return valid


def filter_by_occlusion(edgels, expected_center, max_angle: float, max_factor: float) -> EdgelSet:
    """
    Drop edgels occluded by a nearer edgel along (nearly) the same ray.

    Parameters
    ----------
    edgels : EdgelSet or sequence of Edgel
    expected_center : array-like, shape (3,)
    max_angle : float
        Two edgels lie on the same ray if their directions from the center
        differ by less than this angle (radians).
    max_factor : float
        The farther edgel is discarded when its distance exceeds
        max_factor times the nearer one's. Equal distances never discard.

    Returns
    -------
    EdgelSet
        Surviving edgels, in input order.
    """
    E = as_edgel_set(edgels)
    keep = occlusion_mask(E.positions, expected_center, max_angle, max_factor)
    logger.debug("occlusion filter kept %d of %d edgels", int(keep.sum()), len(E))
    return E[keep]


# --- Affine transform -----------------------------------------------------

def transform_edgels(edgels, transform) -> EdgelSet:
    """
    Map edgels through an affine transform.

    Positions are mapped by p' = M p + t. Gradients are covariant: the
    scaled gradient (direction * magnitude) is mapped by M⁻ᵀ, then split into
    a unit direction and its length, which becomes the new magnitude.

    Parameters
    ----------
    edgels : EdgelSet or sequence of Edgel
    transform : array-like, shape (4, 4) or (3, 4)
        Homogeneous affine matrix.
    """
    E = as_edgel_set(edgels)
    T = np.asarray(transform, float)
    if T.shape not in ((4, 4), (3, 4)):
        raise ValueError("transform must be a 3x4 or 4x4 affine matrix")
    M, t = T[:3, :3], T[:3, 3]
    try:
        normal_transform = np.linalg.inv(M).T
    except np.linalg.LinAlgError as exc:
        raise ValueError("transform is not invertible") from exc

    positions = E.positions @ M.T + t
    n = (E.gradients * E.magnitudes[:, None]) @ normal_transform.T
    magnitudes = np.linalg.norm(n, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        gradients = np.where(magnitudes[:, None] > 0.0, n / magnitudes[:, None], 0.0)
    return EdgelSet(positions, gradients, magnitudes)
