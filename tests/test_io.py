"""
===========================================================
CSV import / export
===========================================================
"""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from ellipsoid_fit import (
    EdgelSet,
    EllipsoidModel,
    Ellipsoid,
    FitConfig,
    FitTarget,
    ParallelFitDriver,
    load_edgels_csv,
    save_edgels_csv,
    save_report_csv,
)
from ellipsoid_fit.synthetic import surface_edgels


def test_edgels_csv_roundtrip(tmp_path: Path):
    E = surface_edgels(Ellipsoid.from_covariance([1, 2, 3], np.diag([4.0, 9.0, 16.0])), 50)
    path = tmp_path / "edgels.csv"
    save_edgels_csv(path, E)

    assert path.read_text().splitlines()[0] == "x,y,z,gx,gy,gz,magnitude"
    loaded = load_edgels_csv(path)
    assert isinstance(loaded, EdgelSet)
    assert np.allclose(loaded.positions, E.positions, atol=1e-6)
    assert np.allclose(loaded.gradients, E.gradients, atol=1e-6)
    assert np.allclose(loaded.magnitudes, E.magnitudes)


def test_load_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_edgels_csv(tmp_path / "nope.csv")


def test_load_wrong_columns(tmp_path: Path):
    path = tmp_path / "bad.csv"
    path.write_text("x,y,z\n1,2,3\n4,5,6\n")
    with pytest.raises(ValueError):
        load_edgels_csv(path)


def test_report_csv(tmp_path: Path):
    E = Ellipsoid.from_covariance([0, 0, 0], 49.0 * np.eye(3))
    targets = [FitTarget("a", (0.0, 0.0, 0.0), surface_edgels(E, 100)),
               FitTarget("b", (0.0, 0.0, 0.0), EdgelSet.empty())]
    report = ParallelFitDriver(FitConfig(num_samples=50, num_candidates=5), parallel=False,
                               seed=0).process(targets, EllipsoidModel())
    path = tmp_path / "report.csv"
    save_report_csv(path, report)

    df = pd.read_csv(path)
    assert len(df) == 2
    assert set(df["status"]) == {"found", "insufficient_sample_points"}
    assert df.loc[df["key"] == "a", "radius_1"].iloc[0] == pytest.approx(7.0, abs=1e-3)
