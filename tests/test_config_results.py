"""
===========================================================
Configuration records and fit results
===========================================================
"""

import dataclasses
import math

import pytest
from ellipsoid_fit import (
    DegenerateAlgebraicSystem,
    EdgelFilterConfig,
    EllipsoidFitError,
    FitCancelled,
    FitConfig,
    FitResult,
    FitStatus,
    InsufficientSamplePoints,
    NoCandidateWithinTolerance,
    RefinementFailure,
)


# --- Config ---------------------------------------------------------------

def test_fit_config_defaults():
    c = FitConfig()
    assert c.num_samples == 1000
    assert c.outside_cutoff_distance == 3.0
    assert c.inside_cutoff_distance == 5.0
    assert c.angle_cutoff_distance == pytest.approx(math.radians(30))
    assert c.max_center_distance == 10.0


def test_from_mapping_converts_degrees():
    c = FitConfig.from_mapping({"num_samples": 50, "angle_cutoff_distance_deg": 45})
    assert c.num_samples == 50
    assert c.angle_cutoff_distance == pytest.approx(math.pi / 4)
    f = EdgelFilterConfig.from_mapping({"max_angle_deg": 10, "polarity": "dark"})
    assert f.max_angle == pytest.approx(math.radians(10))
    assert f.polarity == "dark"


def test_from_mapping_rejects_unknown_keys():
    with pytest.raises(ValueError):
        FitConfig.from_mapping({"num_sample": 10})
    with pytest.raises(ValueError):
        FitConfig.from_mapping({"num_samples_deg": 10})


@pytest.mark.parametrize("kwargs", [
    {"num_samples": 0},
    {"num_candidates": 0},
    {"outside_cutoff_distance": -1.0},
    {"max_center_distance": float("inf")},
    {"angle_cutoff_distance": 30.0},
])
def test_fit_config_validation(kwargs):
    with pytest.raises(ValueError):
        FitConfig(**kwargs)


@pytest.mark.parametrize("kwargs", [
    {"max_angle": 0.0},
    {"max_factor": 0.9},
    {"polarity": "grey"},
])
def test_filter_config_validation(kwargs):
    with pytest.raises(ValueError):
        EdgelFilterConfig(**kwargs)


def test_config_is_frozen_and_replace():
    c = FitConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        c.num_samples = 5
    c2 = c.replace(num_samples=5)
    assert c2.num_samples == 5 and c.num_samples == 1000
    assert FitConfig.from_mapping(c2.to_dict()) == c2


# --- Results --------------------------------------------------------------

@pytest.mark.parametrize("status, error", [
    (FitStatus.INSUFFICIENT_SAMPLE_POINTS, InsufficientSamplePoints),
    (FitStatus.DEGENERATE_ALGEBRAIC_SYSTEM, DegenerateAlgebraicSystem),
    (FitStatus.NO_CANDIDATE_WITHIN_TOLERANCE, NoCandidateWithinTolerance),
    (FitStatus.CANCELLED, FitCancelled),
])
def test_unwrap_raises_matching_error(status, error):
    result = FitResult.failure(status, "nope")
    assert not result.found
    with pytest.raises(error, match="nope"):
        result.unwrap()


def test_cancelled_is_a_fit_error():
    assert issubclass(FitCancelled, EllipsoidFitError)
    with pytest.raises(EllipsoidFitError):
        FitResult.failure(FitStatus.CANCELLED, "stopped").unwrap()


def test_failure_requires_failure_status():
    with pytest.raises(ValueError):
        FitResult.failure(FitStatus.FOUND, "")


def test_from_error_mapping():
    assert FitResult.from_error(InsufficientSamplePoints("x")).status is FitStatus.INSUFFICIENT_SAMPLE_POINTS
    assert FitResult.from_error(RefinementFailure("x")).status is FitStatus.DEGENERATE_ALGEBRAIC_SYSTEM
    assert FitResult.from_error(EllipsoidFitError("x")).status is FitStatus.ERROR
    assert issubclass(InsufficientSamplePoints, EllipsoidFitError)
