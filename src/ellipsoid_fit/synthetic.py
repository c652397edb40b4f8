"""
===========================================================
ellipsoid_fit.synthetic — artificial blobs and their edgels
===========================================================

Test and demo data, standing in for the image pipeline that normally feeds
the fitter:

  - random_covariance()    : scale-then-rotate covariance with bounded half-axes
  - render_gaussian_blob() : un-normalized Gaussian density in a voxel block
  - detect_edgels()        : smoothing + gradient non-maximum suppression with
                             sub-voxel (parabolic) localization
  - surface_edgels()       : exact edgels sampled on a known ellipsoid
  - artificial_grid()      : columns³ blobs, one per block, as FitTargets

Coordinates: array index (i, j, k) maps to world (x, y, z) = origin + index.
"""

# --- Imports --------------------------------------------------------------

from __future__ import annotations

from functools import partial
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy import ndimage

from .core import ellipsoid_points
from .driver import FitTarget
from .edgels import EdgelSet
from .ellipsoid import Ellipsoid


# --- Random shapes --------------------------------------------------------

def _rotation(axis: int, angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    i, j = [k for k in range(3) if k != axis]
    R = np.eye(3)
    R[i, i], R[i, j], R[j, i], R[j, j] = c, -s, s, c
    return R


def random_covariance(rng: np.random.Generator,
                      min_axis: float = 8.0, max_axis: float = 16.0) -> np.ndarray:
    """
    Covariance A Aᵀ of A = Rz Ry Rx S, with S = diag(half-axes) drawn
    uniformly in [min_axis, max_axis] and rotation angles in [0, 2π).
    """
    S = np.diag(rng.uniform(min_axis, max_axis, size=3))
    A = S
    for axis in range(3):
        A = _rotation(axis, rng.uniform(0.0, 2.0 * np.pi)) @ A
    return A @ A.T


# --- Rendering ------------------------------------------------------------

def _grid(shape, origin) -> np.ndarray:
    axes = [np.arange(n, dtype=float) + o for n, o in zip(shape, origin)]
    return np.stack(np.meshgrid(*axes, indexing="ij"), axis=-1)


def render_gaussian_blob(shape, center, covariance,
                         origin=(0.0, 0.0, 0.0), amplitude: float = 1000.0) -> np.ndarray:
    """
    amplitude * exp(-½ dᵀ Σ⁻¹ d) on a voxel block (normalization factor
    left out so the blob stays visible).
    """
    X = _grid(shape, origin) - np.asarray(center, float)
    Q = np.einsum("...i,ij,...j->...", X, np.linalg.inv(covariance), X)
    return amplitude * np.exp(-0.5 * Q)


# --- Edgel detection ------------------------------------------------------

def detect_edgels(volume: np.ndarray, min_gradient_magnitude: float = 10.0,
                  sigma: float = 2.0, origin=(0.0, 0.0, 0.0)) -> EdgelSet:
    """
    Sub-voxel edgels of a 3D volume.

    A voxel is an edgel if its gradient magnitude is at least
    min_gradient_magnitude and is a local maximum along the gradient
    direction. The position is refined by fitting a parabola to the
    magnitude at -1, 0, +1 steps along the gradient.

    Parameters
    ----------
    volume : np.ndarray, 3D
    min_gradient_magnitude : float
    sigma : float
        Gaussian pre-smoothing in voxels (0 disables).
    origin : array-like, shape (3,)
        World position of voxel (0, 0, 0).
    """
    V = np.asarray(volume, float)
    if V.ndim != 3:
        raise ValueError("detect_edgels expects a 3D array")
    if sigma > 0:
        V = ndimage.gaussian_filter(V, sigma, mode="mirror")

    G = np.stack(np.gradient(V), axis=-1)
    mag = np.linalg.norm(G, axis=-1)

    candidate = mag >= min_gradient_magnitude
    candidate[[0, -1], :, :] = False
    candidate[:, [0, -1], :] = False
    candidate[:, :, [0, -1]] = False
    idx = np.argwhere(candidate)
    if idx.size == 0:
        return EdgelSet.empty()

    m0 = mag[candidate]
    u = G[candidate] / m0[:, None]
    p = idx.astype(float)
    m_plus = ndimage.map_coordinates(mag, (p + u).T, order=1, mode="nearest")
    m_minus = ndimage.map_coordinates(mag, (p - u).T, order=1, mode="nearest")

    keep = (m0 >= m_plus) & (m0 > m_minus)
    m0, u, p = m0[keep], u[keep], p[keep]
    m_plus, m_minus = m_plus[keep], m_minus[keep]

    curvature = m_minus - 2.0 * m0 + m_plus
    with np.errstate(divide="ignore", invalid="ignore"):
        offset = np.where(curvature < 0.0, 0.5 * (m_minus - m_plus) / curvature, 0.0)
    offset = np.clip(offset, -0.5, 0.5)

    positions = p + offset[:, None] * u + np.asarray(origin, float)
    return EdgelSet(positions, u, m0)


def surface_edgels(ellipsoid: Ellipsoid, n: int = 500, noise: float = 0.0,
                   rng: Optional[np.random.Generator] = None) -> EdgelSet:
    """
    Edgels lying on the surface of ``ellipsoid`` with gradients pointing
    inwards (object brighter than background); optional positional noise.
    """
    points, normals = ellipsoid_points(ellipsoid, n)
    if noise > 0:
        rng = np.random.default_rng() if rng is None else rng
        points = points + rng.normal(scale=noise, size=points.shape)
    return EdgelSet(points, -normals, np.ones(n))


# --- Artificial data set --------------------------------------------------

def _block_edgels(shape, origin, center, covariance, sigma, min_gradient_magnitude):
    # voxel coordinates of the block; the target maps them to world
    volume = render_gaussian_blob(shape, center, covariance, origin=origin)
    return detect_edgels(volume, min_gradient_magnitude, sigma=sigma)


def artificial_grid(columns: int = 4, size: int = 80,
                    rng: Optional[np.random.Generator] = None,
                    min_axis: float = 8.0, max_axis: float = 16.0,
                    jitter: float = 5.0, sigma: float = 2.0,
                    min_gradient_magnitude: float = 10.0
                    ) -> Tuple[List[FitTarget], Dict[Tuple[int, int, int], Ellipsoid]]:
    """
    columns³ Gaussian blobs, each in its own size³ block.

    Each blob has a random covariance (half-axes in [min_axis, max_axis]) and
    a center jittered by up to ±jitter from the block center. Targets carry
    the un-jittered block center as expected center and render their block
    lazily when their edgels are requested. Edgels come in voxel
    coordinates of the block; each target carries the translation to world
    coordinates as its transform.

    Returns
    -------
    targets : list of FitTarget
    truth : dict
        Ground-truth Ellipsoid per target key (i, j, k).
    """
    rng = np.random.default_rng(1) if rng is None else rng
    shape = (size, size, size)
    targets, truth = [], {}
    for i in range(columns):
        for j in range(columns):
            for k in range(columns):
                origin = np.array([i, j, k], float) * size
                expected = origin + size // 2
                center = expected + rng.uniform(-jitter, jitter, size=3)
                covariance = random_covariance(rng, min_axis, max_axis)
                key = (i, j, k)
                truth[key] = Ellipsoid(center, covariance=covariance)
                source = partial(_block_edgels, shape, origin, center, covariance,
                                 sigma, min_gradient_magnitude)
                transform = np.eye(4)
                transform[:3, 3] = origin
                targets.append(FitTarget(key, tuple(expected), source, transform=transform))
    return targets, truth
