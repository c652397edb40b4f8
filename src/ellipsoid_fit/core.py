"""
===========================================================
ellipsoid_fit.core — compact ellipsoid fitting core
===========================================================

Implements the essential computational parts of the library:
  - fit_ellipsoid_ls()      : algebraic least-squares quadric fit (Petrov)
  - try_fit_ellipsoid_ls()  : same, returning a FitResult instead of raising
  - fit_to_inliers()        : re-fit on the inliers of a guess
  - fit_ellipsoid_ransac()  : robust fit via sampling consensus over edgels
  - ellipsoid_points()      : sample points (and normals) on an ellipsoid

Design goals
------------
- NumPy / SciPy only, vectorized over points
- Hartley normalization of the points before building the normal equations
- Cholesky solve; rank-deficient systems are reported, never patched up
- One explicit FitResult per robust fit call
"""

# --- Imports --------------------------------------------------------------

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from scipy.linalg import cho_factor, cho_solve

from .config import FitConfig
from .cost import EdgelDistanceCost
from .edgels import as_edgel_set
from .ellipsoid import Ellipsoid
from .results import (
    DegenerateAlgebraicSystem,
    EllipsoidFitError,
    FitResult,
    FitStatus,
    InsufficientSamplePoints,
    RefinementFailure,
)

logger = logging.getLogger(__name__)

NUM_POINTS_PER_SAMPLE = 9


# --- Normalization --------------------------------------------------------

def _normalize_points(P: np.ndarray):
    """Mean-center and scale to unit RMS distance; returns (U, mean, scale)."""
    mean = P.mean(axis=0)
    P0 = P - mean
    scale = float(np.sqrt(np.mean(np.sum(P0 * P0, axis=1)))) or 1.0
    return P0 / scale, mean, scale


def _design_matrix(U: np.ndarray) -> np.ndarray:
    x, y, z = U[:, 0], U[:, 1], U[:, 2]
    return np.column_stack([x*x, y*y, z*z, 2*x*y, 2*x*z, 2*y*z, 2*x, 2*y, 2*z])


# --- Algebraic Least-Squares Ellipsoid Fit --------------------------------

def fit_ellipsoid_ls(points, rcond: float = 1e-10) -> Ellipsoid:
    """
    Least-squares fit of the quadric

        a x² + b y² + c z² + 2d xy + 2e xz + 2f yz + 2g x + 2h y + 2i z = 1

    to n ≥ 9 points (Yury Petrov's ellipsoid fit).

    Parameters
    ----------
    points : array-like, shape (n, 3)
    rcond : float
        A Cholesky pivot² below rcond * max(diag(DᵀD)) marks the system as
        rank deficient.

    Returns
    -------
    Ellipsoid
        Center and precision matrix of the fitted surface.

    Raises
    ------
    InsufficientSamplePoints
        Fewer than 9 points.
    DegenerateAlgebraicSystem
        DᵀD is not symmetric positive definite (e.g. coplanar points), the
        quadric has no center, or any radius is NaN / non-finite.
    """
    P = np.asarray(points, float)
    if P.ndim != 2 or P.shape[1] != 3:
        raise ValueError("points must be an (n, 3) array")
    if len(P) < NUM_POINTS_PER_SAMPLE:
        raise InsufficientSamplePoints(
            f"Too few points ({len(P)}); need ≥ {NUM_POINTS_PER_SAMPLE} for a unique ellipsoid.")
    if not np.all(np.isfinite(P)):
        raise ValueError("points must be finite")

    U, mean, scale = _normalize_points(P)
    D = _design_matrix(U)
    DTD = D.T @ D
    rhs = D.sum(axis=0)

    try:
        L, lower = cho_factor(DTD, lower=True, check_finite=False)
    except np.linalg.LinAlgError as exc:
        raise DegenerateAlgebraicSystem("Normal equations are not positive definite.") from exc
    pivots = np.diag(L) ** 2
    if not np.all(np.isfinite(pivots)) or pivots.min() <= rcond * np.max(np.diag(DTD)):
        raise DegenerateAlgebraicSystem("Normal equations are rank deficient.")

    v = cho_solve((L, lower), rhs, check_finite=False)
    return _ellipsoid_from_equation(v, mean, scale)


def _ellipsoid_from_equation(v: np.ndarray, mean: np.ndarray, scale: float) -> Ellipsoid:
    """
    Center / precision form of the quadric coefficients (a, ..., i),
    mapped back from normalized to original coordinates.
    """
    a, b, c, d, e, f, g, h, i = v
    A = np.array([[a, d, e],
                  [d, b, f],
                  [e, f, c]])
    bb = np.array([g, h, i])
    try:
        center = -np.linalg.solve(A, bb)
    except np.linalg.LinAlgError as exc:
        raise DegenerateAlgebraicSystem("Quadric has no unique center.") from exc

    r33 = center @ A @ center + 2.0 * (bb @ center) - 1.0
    if r33 == 0.0 or not np.isfinite(r33):
        raise DegenerateAlgebraicSystem("Degenerate quadric (r33≈0).")
    precision = -A / r33

    ellipsoid = Ellipsoid(mean + scale * center, precision=precision / scale**2)
    if not ellipsoid.is_valid:
        raise DegenerateAlgebraicSystem(f"Quadric is not an ellipsoid (radii={ellipsoid.radii}).")
    return ellipsoid


def try_fit_ellipsoid_ls(points) -> FitResult:
    """fit_ellipsoid_ls() with failures reported as a FitResult."""
    try:
        return FitResult(FitStatus.FOUND, fit_ellipsoid_ls(points))
    except EllipsoidFitError as exc:
        return FitResult.from_error(exc)


# --- Inlier refinement ----------------------------------------------------

def fit_to_inliers(edgels, guess: Ellipsoid, cost: EdgelDistanceCost) -> Ellipsoid:
    """
    Fit an ellipsoid to all edgels that are inliers of ``guess``.

    Raises
    ------
    RefinementFailure
        Too few inliers, or their normal equations are degenerate.
    """
    inliers = cost.inliers(guess, edgels)
    try:
        return fit_ellipsoid_ls(inliers.positions)
    except (InsufficientSamplePoints, DegenerateAlgebraicSystem) as exc:
        raise RefinementFailure(f"Inlier re-fit failed on {len(inliers)} inliers: {exc}") from exc


# --- RANSAC over edgels ---------------------------------------------------

def _sample_indices(rng: np.random.Generator, n: int, k: int = NUM_POINTS_PER_SAMPLE) -> np.ndarray:
    """k distinct indices in [0, n), redrawing duplicates."""
    indices = []
    while len(indices) < k:
        i = int(rng.integers(n))
        if i not in indices:
            indices.append(i)
    return np.array(indices)


def fit_ellipsoid_ransac(edgels, expected_center,
                         config: Optional[FitConfig] = None,
                         rng: Optional[np.random.Generator] = None) -> FitResult:
    """
    Robust ellipsoid fit to edgels around an expected center:
      - Draw 9 distinct edgels, fit their positions with fit_ellipsoid_ls().
      - Skip degenerate fits and fits centered too far from expected_center.
      - Score the rest with the summed EdgelDistanceCost over all edgels and
        keep the cheapest; stop after config.num_candidates scored fits.
      - Re-fit on the inliers of the best; fall back to the best itself if
        that fails.

    Parameters
    ----------
    edgels : EdgelSet or sequence of Edgel
        Already filtered edgels.
    expected_center : array-like, shape (3,)
    config : FitConfig, optional
    rng : numpy.random.Generator, optional
        Fresh OS-seeded generator when omitted.

    Returns
    -------
    FitResult
        FOUND, INSUFFICIENT_SAMPLE_POINTS or NO_CANDIDATE_WITHIN_TOLERANCE.
    """
    config = config or FitConfig()
    E = as_edgel_set(edgels)
    n = len(E)
    if n < NUM_POINTS_PER_SAMPLE:
        return FitResult.failure(FitStatus.INSUFFICIENT_SAMPLE_POINTS,
                                 f"Not enough edgels to fit an ellipsoid ({n} < {NUM_POINTS_PER_SAMPLE}).")

    rng = np.random.default_rng() if rng is None else rng
    center = np.asarray(expected_center, float).reshape(3)
    cost = EdgelDistanceCost.from_config(config)

    best, best_cost = None, np.inf
    candidates = drawn = 0
    for _ in range(config.num_samples):
        drawn += 1
        idx = _sample_indices(rng, n)
        try:
            ellipsoid = fit_ellipsoid_ls(E.positions[idx])
        except DegenerateAlgebraicSystem:
            continue
        if np.linalg.norm(ellipsoid.center - center) > config.max_center_distance:
            continue

        total = cost.total(ellipsoid, E)
        if total < best_cost:
            best, best_cost = ellipsoid, total
        candidates += 1
        if candidates >= config.num_candidates:
            break

    stats = dict(num_samples_drawn=drawn, num_candidates=candidates)
    if best is None:
        return FitResult.failure(FitStatus.NO_CANDIDATE_WITHIN_TOLERANCE,
                                 "No ellipsoid found that is near to the expected center.", **stats)

    logger.debug("best of %d candidates (%d samples): cost=%.3f", candidates, drawn, best_cost)
    try:
        refined = fit_to_inliers(E, best, cost)
    except RefinementFailure as exc:
        logger.debug("refinement failed, keeping best candidate: %s", exc)
        return FitResult(FitStatus.FOUND, best, refined=False, **stats)
    return FitResult(FitStatus.FOUND, refined, refined=True, **stats)


# --- Sampling -------------------------------------------------------------

def ellipsoid_points(ellipsoid: Ellipsoid, n: int = 400):
    """
    Generate n roughly uniformly spread points on the ellipsoid surface
    (Fibonacci lattice on the unit sphere, mapped by axes and radii).

    Returns
    -------
    points, normals : np.ndarray, shape (n, 3)
        Surface points and their unit outward normals.
    """
    k = np.arange(n) + 0.5
    phi = np.arccos(1.0 - 2.0 * k / n)
    theta = np.pi * (1.0 + 5.0**0.5) * k
    S = np.column_stack([np.cos(theta) * np.sin(phi),
                         np.sin(theta) * np.sin(phi),
                         np.cos(phi)])
    V, r = ellipsoid.axes, ellipsoid.radii
    points = ellipsoid.center + (S * r) @ V.T
    return points, ellipsoid.normal(points)
