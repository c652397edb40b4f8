"""
===========================================================
ellipsoid_fit — robust 3D ellipsoid fitting to edgels
===========================================================

A NumPy/SciPy toolkit for fitting ellipsoids (e.g. cell nuclei) to oriented
edge samples ("edgels") around a known approximate center, robust to
outliers and self-occlusion, and for running such fits over many targets
in parallel.

Main functions
--------------
- filter_by_direction(edgels, center)
- filter_by_occlusion(edgels, center, max_angle, max_factor)
- transform_edgels(edgels, affine)
- fit_ellipsoid_ls(points)
- fit_ellipsoid_ransac(edgels, center, config)
- ParallelFitDriver(config).process(targets, model)

Typical workflow
----------------
    from ellipsoid_fit import *
    edgels = filter_by_direction(edgels, center)
    edgels = filter_by_occlusion(edgels, center, max_angle, max_factor)
    result = fit_ellipsoid_ransac(edgels, center, FitConfig())
    if result.found:
        print(result.ellipsoid.center, result.ellipsoid.radii)
"""

# --- Public Imports -------------------------------------------------------

import logging

from .config import FitConfig, EdgelFilterConfig
from .results import (
    FitStatus,
    FitResult,
    EllipsoidFitError,
    InsufficientSamplePoints,
    DegenerateAlgebraicSystem,
    RefinementFailure,
    NoCandidateWithinTolerance,
    FitCancelled,
)
from .ellipsoid import Ellipsoid, distance_to_surface
from .edgels import Edgel, EdgelSet, filter_by_direction, filter_by_occlusion, transform_edgels
from .cost import EdgelDistanceCost, edgel_costs
from .core import fit_ellipsoid_ls, try_fit_ellipsoid_ls, fit_to_inliers, fit_ellipsoid_ransac, ellipsoid_points
from .driver import FitTarget, FitReport, EllipsoidModel, ParallelFitDriver, fit_target
from .io import load_edgels_csv, save_edgels_csv, save_report_csv

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "FitConfig",
    "EdgelFilterConfig",
    "FitStatus",
    "FitResult",
    "EllipsoidFitError",
    "InsufficientSamplePoints",
    "DegenerateAlgebraicSystem",
    "RefinementFailure",
    "NoCandidateWithinTolerance",
    "FitCancelled",
    "Ellipsoid",
    "distance_to_surface",
    "Edgel",
    "EdgelSet",
    "filter_by_direction",
    "filter_by_occlusion",
    "transform_edgels",
    "EdgelDistanceCost",
    "edgel_costs",
    "fit_ellipsoid_ls",
    "try_fit_ellipsoid_ls",
    "fit_to_inliers",
    "fit_ellipsoid_ransac",
    "ellipsoid_points",
    "FitTarget",
    "FitReport",
    "EllipsoidModel",
    "ParallelFitDriver",
    "fit_target",
    "load_edgels_csv",
    "save_edgels_csv",
    "save_report_csv",
]
