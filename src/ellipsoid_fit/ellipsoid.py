"""
===========================================================
ellipsoid_fit.ellipsoid — 3D ellipsoid representation
===========================================================

An ellipsoid is a center plus any one of

  - covariance  C            (radii² are the eigenvalues of C)
  - precision   P = C⁻¹      (surface: (x-c)ᵀ P (x-c) = 1)
  - axes + radii             (orthonormal columns, semi-axis lengths)

and the missing representations are derived on first access.
Radii are always reported in ascending order, axes[:, k] belonging to
radii[k]. An ellipsoid whose radii are not all finite and positive is
invalid (is_valid is False); such fits are never persisted.

distance_to_surface() computes the exact Euclidean distance from points to
the surface (nearest point on the quadric) by robust bisection on the
Lagrange multiplier, vectorized over all points.
"""

# --- Imports --------------------------------------------------------------

from __future__ import annotations

from typing import Optional

import numpy as np


# --- Ellipsoid ------------------------------------------------------------

class Ellipsoid:
    """
    Immutable 3D ellipsoid.

    Parameters
    ----------
    center : array-like, shape (3,)
    covariance, precision : array-like, shape (3, 3), optional
    axes : array-like, shape (3, 3), optional
        Orthonormal axis directions as columns (requires ``radii``).
    radii : array-like, shape (3,), optional
    """

    __slots__ = ("_center", "_covariance", "_precision", "_axes", "_radii")

    def __init__(self, center, covariance=None, precision=None, axes=None, radii=None):
        center = np.asarray(center, float).reshape(-1)
        if center.shape != (3,):
            raise ValueError("center must have 3 coordinates")
        if covariance is None and precision is None and (axes is None or radii is None):
            raise ValueError("Need covariance, precision, or axes and radii.")
        self._center = _frozen(center)
        self._covariance = _frozen_matrix(covariance)
        self._precision = _frozen_matrix(precision)
        self._axes = _frozen_matrix(axes)
        self._radii = None if radii is None else _frozen(np.asarray(radii, float).reshape(3))
        if self._axes is not None and self._radii is not None:
            self._axes, self._radii = _sorted_axes(self._axes, self._radii)

    # --- Constructors ----------------------------------------------------

    @classmethod
    def from_covariance(cls, center, covariance) -> "Ellipsoid":
        return cls(center, covariance=covariance)

    @classmethod
    def from_precision(cls, center, precision) -> "Ellipsoid":
        return cls(center, precision=precision)

    @classmethod
    def from_axes(cls, center, axes, radii) -> "Ellipsoid":
        return cls(center, axes=axes, radii=radii)

    # --- Representations -------------------------------------------------

    @property
    def center(self) -> np.ndarray:
        return self._center

    @property
    def radii(self) -> np.ndarray:
        if self._radii is None:
            self._decompose()
        return self._radii

    @property
    def axes(self) -> np.ndarray:
        if self._axes is None:
            self._decompose()
        return self._axes

    @property
    def covariance(self) -> np.ndarray:
        if self._covariance is None:
            V, r = self.axes, self.radii
            self._covariance = _frozen((V * r**2) @ V.T)
        return self._covariance

    @property
    def precision(self) -> np.ndarray:
        if self._precision is None:
            V, r = self.axes, self.radii
            with np.errstate(divide="ignore", invalid="ignore"):
                self._precision = _frozen((V / r**2) @ V.T)
        return self._precision

    def _decompose(self):
        if self._covariance is not None:
            w, V = np.linalg.eigh(_symmetric(self._covariance))
            with np.errstate(invalid="ignore"):
                r = np.sqrt(w)
        else:
            w, V = np.linalg.eigh(_symmetric(self._precision))
            with np.errstate(divide="ignore", invalid="ignore"):
                r = 1.0 / np.sqrt(w)
        self._axes, self._radii = _sorted_axes(V, r)

    @property
    def is_valid(self) -> bool:
        r = self.radii
        return bool(np.all(np.isfinite(r)) and np.all(r > 0.0))

    # --- Geometry --------------------------------------------------------

    def quadric(self, points) -> np.ndarray:
        """Evaluate (x-c)ᵀ P (x-c) for each point (1 on the surface)."""
        d = np.atleast_2d(np.asarray(points, float)) - self._center
        return np.einsum("ni,ij,nj->n", d, self.precision, d)

    def contains(self, points) -> np.ndarray:
        return self.quadric(points) <= 1.0

    def normal(self, points) -> np.ndarray:
        """Unit outward normal of the level surface through each point."""
        d = np.atleast_2d(np.asarray(points, float)) - self._center
        g = d @ self.precision
        norm = np.linalg.norm(g, axis=1, keepdims=True)
        with np.errstate(divide="ignore", invalid="ignore"):
            return g / norm

    def distance(self, points) -> np.ndarray:
        """Euclidean distance of each point to the surface."""
        return distance_to_surface(self, points)[0]

    # --- Misc ------------------------------------------------------------

    def __str__(self):
        with np.printoptions(precision=4, suppress=True):
            return (f"center = {self.center}\n"
                    f"radii = {self.radii}\n"
                    f"axes = {self.axes.tolist()}\n"
                    f"precision = {self.precision.tolist()}")

    def __repr__(self):
        with np.printoptions(precision=4, suppress=True):
            return f"Ellipsoid(center={self.center}, radii={self.radii})"


# --- Helpers --------------------------------------------------------------

def _frozen(a: np.ndarray) -> np.ndarray:
    a = np.array(a, dtype=float)
    a.setflags(write=False)
    return a


def _frozen_matrix(m) -> Optional[np.ndarray]:
    if m is None:
        return None
    m = np.asarray(m, float)
    if m.shape != (3, 3):
        raise ValueError("Expected a 3x3 matrix")
    return _frozen(m)


def _symmetric(m: np.ndarray) -> np.ndarray:
    return 0.5 * (m + m.T)


def _sorted_axes(V, r):
    """Order radii ascending (NaN last) and permute axis columns alike."""
    order = np.argsort(r)
    return _frozen(np.asarray(V)[:, order]), _frozen(np.asarray(r)[order])


# --- Point-to-surface distance ---------------------------------------------

def _bisect_multiplier(z, r, tol, max_iter):
    """
    Root t = s + 1 of G(s) = Σ (r_i z_i / (s + r_i))² - 1, bracketed by
    [z2, 1] for interior points and [z2, |r z|] otherwise. Each point
    stops once its bracket is narrower than tol * t.
    """
    rz = r * z
    g = np.sum(z * z, axis=1) - 1.0
    lo = z[:, 2].copy()
    hi = np.where(g < 0.0, 1.0, np.linalg.norm(rz, axis=1))
    hi = np.maximum(hi, lo)
    for _ in range(max_iter):
        active = np.flatnonzero(hi - lo > tol * hi)
        if active.size == 0:
            break
        t = 0.5 * (lo[active] + hi[active])
        ratio = rz[active] / (t[:, None] + r - 1.0)
        above = np.sum(ratio * ratio, axis=1) > 1.0
        lo[active] = np.where(above, t, lo[active])
        hi[active] = np.where(above, hi[active], t)
    return 0.5 * (lo + hi)


def distance_to_surface(ellipsoid: Ellipsoid, points, tol: float = 1e-12,
                        max_iter: int = 200):
    """
    Exact distance from points to the ellipsoid surface.

    The points are rotated into the axis frame and folded into the first
    octant. With semi-axes e0 ≥ e1 ≥ e2, z_i = y_i / e_i and
    r_i = (e_i / e2)², the nearest surface point is x_i = r_i y_i / (s + r_i)
    where s ≥ -1 is the largest root of

        G(s) = Σ (r_i z_i / (s + r_i))² - 1

    G is decreasing there, so the root is found by bisection on t = s + 1.

    Interior points on the plane of the shortest axis (y2 = 0) need the
    root s = -1 itself whenever

        x_i = r_i y_i / (r_i - 1),  i = 0, 1

    lies inside the ellipse Σ (x_i / e_i)² ≤ 1. The nearest point then
    leaves the plane with x2 = e2 sqrt(1 - Σ (x_i / e_i)²). Otherwise
    x2 = 0 and the remaining two-axis root is bisected as usual.

    Parameters
    ----------
    ellipsoid : Ellipsoid
        Must be valid.
    points : array-like, shape (n, 3)
    tol : float
        Relative bracket width on t = s + 1 at which bisection stops.
    max_iter : int
        Upper bound on bisection steps.

    Returns
    -------
    distance : np.ndarray, shape (n,)
    nearest : np.ndarray, shape (n, 3)
        Nearest surface points in world coordinates.
    """
    if not ellipsoid.is_valid:
        raise ValueError("Distance is undefined for an invalid ellipsoid.")
    P = np.atleast_2d(np.asarray(points, float))
    if P.shape[0] == 0:
        return np.zeros(0), np.zeros((0, 3))

    # axis frame, largest semi-axis first
    order = np.argsort(ellipsoid.radii)[::-1]
    e = ellipsoid.radii[order]
    V = ellipsoid.axes[:, order]
    y = (P - ellipsoid.center) @ V
    sign = np.where(y < 0.0, -1.0, 1.0)
    y = np.abs(y)

    z = y / e
    r = (e / e[2]) ** 2
    x = np.empty_like(y)

    # short-axis plane; a long axis as short as e2 never admits s = -1
    with np.errstate(divide="ignore", invalid="ignore"):
        w = np.where(y[:, :2] > 0.0, r[:2] * z[:, :2] / (r[:2] - 1.0), 0.0)
    g_plane = np.sum(w * w, axis=1) - 1.0
    leaves_plane = (y[:, 2] == 0.0) & (g_plane <= 0.0)
    x[leaves_plane, :2] = e[:2] * w[leaves_plane]
    x[leaves_plane, 2] = e[2] * np.sqrt(-g_plane[leaves_plane])

    rest = ~leaves_plane
    if np.any(rest):
        t = _bisect_multiplier(z[rest], r, tol, max_iter)
        x[rest] = r * y[rest] / (t[:, None] + r - 1.0)

    distance = np.linalg.norm(x - y, axis=1)
    nearest = ellipsoid.center + (sign * x) @ V.T
    return distance, nearest
