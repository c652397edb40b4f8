"""
===========================================================
Parallel driver: counting, model writes, cancellation
===========================================================
"""

import threading

import numpy as np
import pytest
from ellipsoid_fit import (
    Edgel,
    EllipsoidModel,
    Ellipsoid,
    FitConfig,
    FitStatus,
    FitTarget,
    ParallelFitDriver,
    fit_target,
)
from ellipsoid_fit.synthetic import surface_edgels

CONFIG = FitConfig(num_samples=200, num_candidates=30)


# --- Helpers --------------------------------------------------------------

def _truths(n=6):
    rng = np.random.default_rng(4)
    out = {}
    for k in range(n):
        center = np.array([40.0 * k, 0.0, 0.0]) + rng.uniform(-2, 2, size=3)
        out[f"t{k}"] = Ellipsoid.from_axes(center, np.eye(3), rng.uniform(6.0, 8.0, size=3))
    return out


def _targets(truths):
    targets = []
    for key, E in truths.items():
        expected = tuple(np.round(E.center))
        targets.append(FitTarget(key, expected, surface_edgels(E, 200)))
    return targets


def _broken_source():
    raise RuntimeError("segmentation unavailable")


class _CheckedLock:
    """Lock that remembers whether it is currently held."""

    def __init__(self):
        self._lock = threading.Lock()
        self.held = False
        self.acquisitions = 0

    def __enter__(self):
        self._lock.acquire()
        self.held = True
        self.acquisitions += 1
        return self

    def __exit__(self, *exc):
        self.held = False
        self._lock.release()


class _CheckedModel:
    def __init__(self):
        self.lock = _CheckedLock()
        self.entries = {}

    def set_ellipsoid(self, key, center, covariance):
        assert self.lock.held
        self.entries[key] = (center, covariance)


class _RejectingModel(EllipsoidModel):
    """Model that refuses to store one key."""

    def __init__(self, rejected):
        super().__init__()
        self.rejected = rejected

    def set_ellipsoid(self, key, center, covariance):
        if key == self.rejected:
            raise KeyError(f"no object for {key!r}")
        super().set_ellipsoid(key, center, covariance)


# --- Single target --------------------------------------------------------

def test_fit_target_from_edgel_list():
    E = _truths(1)["t0"]
    edgels = list(surface_edgels(E, 100))
    assert isinstance(edgels[0], Edgel)
    result = fit_target(FitTarget("a", tuple(E.center), lambda: edgels), CONFIG,
                        rng=np.random.default_rng(0))
    assert result.found
    assert np.allclose(result.ellipsoid.center, E.center, atol=1e-3)


def test_fit_target_maps_edgels_to_global_frame():
    local = Ellipsoid.from_axes([4.0, 6.0, -2.0], np.eye(3), [12.0, 7.0, 3.5])
    M = np.diag([0.5, 1.0, 2.0])
    t = np.array([10.0, -3.0, 5.0])
    T = np.eye(4)
    T[:3, :3], T[:3, 3] = M, t
    center = M @ local.center + t

    target = FitTarget("a", tuple(center), surface_edgels(local, 200), transform=T)
    result = fit_target(target, CONFIG, rng=np.random.default_rng(0))
    assert result.found
    assert np.allclose(result.ellipsoid.center, [12.0, 3.0, 1.0], atol=1e-3)
    assert np.allclose(result.ellipsoid.covariance, M @ local.covariance @ M.T, atol=1e-2)
    assert np.allclose(result.ellipsoid.radii, [6.0, 7.0, 7.0], atol=1e-3)


# --- Batch ----------------------------------------------------------------

def test_process_counts_successes_and_failures():
    truths = _truths()
    targets = _targets(truths)
    few = surface_edgels(truths["t0"], 5)
    targets += [FitTarget("few", tuple(truths["t0"].center), few),
                FitTarget("broken", (0.0, 0.0, 0.0), _broken_source)]

    model = EllipsoidModel()
    report = ParallelFitDriver(CONFIG, max_workers=4, seed=0).process(targets, model)

    assert report.found == 6
    assert report.not_found == 2
    assert report.total == 8
    statuses = {r.key: r.status for r in report.records}
    assert statuses["few"] is FitStatus.INSUFFICIENT_SAMPLE_POINTS
    assert statuses["broken"] is FitStatus.ERROR
    assert sorted(model.keys()) == sorted(truths)
    for key, E in truths.items():
        center, covariance = model.get(key)
        assert np.allclose(center, E.center, atol=1e-3)
        assert np.allclose(covariance, E.covariance, atol=1e-2)
    assert "found: 6 (75%)" in report.summary()


def test_model_written_under_lock():
    targets = _targets(_truths(4))
    model = _CheckedModel()
    ParallelFitDriver(CONFIG, max_workers=3, seed=1).process(targets, model)
    assert len(model.entries) == 4
    assert model.lock.acquisitions == 4


def test_sequential_and_parallel_agree_with_same_seed():
    targets = _targets(_truths(4))
    m1, m2 = EllipsoidModel(), EllipsoidModel()
    ParallelFitDriver(CONFIG, parallel=False, seed=42).process(targets, m1)
    ParallelFitDriver(CONFIG, max_workers=4, seed=42).process(targets, m2)
    for key in m1.keys():
        assert np.allclose(m1.get(key)[0], m2.get(key)[0], rtol=0, atol=1e-12)


def test_cancel_skips_remaining_targets():
    truths = _truths(4)
    driver = ParallelFitDriver(CONFIG, parallel=False, seed=0)
    first = truths["t0"]

    def cancelling_source():
        driver.cancel()
        return surface_edgels(first, 200)

    targets = [FitTarget("t0", tuple(first.center), cancelling_source)] + _targets(truths)[1:]
    model = EllipsoidModel()
    report = driver.process(targets, model)

    assert report.found == 1 and report.not_found == 0
    assert [r.status for r in report.records[1:]] == [FitStatus.CANCELLED] * 3
    assert model.keys() == ["t0"]

    # a new batch starts un-cancelled
    report = driver.process(_targets(truths), EllipsoidModel())
    assert report.found == 4


def test_empty_batch():
    report = ParallelFitDriver(CONFIG).process([], EllipsoidModel())
    assert report.total == 0
    assert report.success_rate == 0.0


def test_report_frame():
    truths = _truths(2)
    targets = _targets(truths) + [FitTarget("few", (0.0, 0.0, 0.0), surface_edgels(truths["t0"], 3))]
    report = ParallelFitDriver(CONFIG, parallel=False, seed=0).process(targets, EllipsoidModel())
    df = report.to_frame().set_index("key")
    assert list(df.columns[:2]) == ["status", "elapsed_s"]
    assert df.loc["t0", "status"] == "found"
    assert df.loc["t1", "radius_0"] <= df.loc["t1", "radius_2"]
    assert np.isnan(df.loc["few", "center_0"])
    assert df.loc["few", "status"] == "insufficient_sample_points"


def test_progress_is_logged(caplog):
    targets = _targets(_truths(2))
    with caplog.at_level("INFO", logger="ellipsoid_fit"):
        ParallelFitDriver(CONFIG, parallel=False, seed=0, progress_every=1).process(targets, EllipsoidModel())
    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("Computed 2 of 2 ellipsoids") for m in messages)
    assert any(m.startswith("found: 2") for m in messages)


def test_source_exception_is_counted_and_logged(caplog):
    with caplog.at_level("WARNING", logger="ellipsoid_fit"):
        report = ParallelFitDriver(CONFIG, parallel=False).process(
            [FitTarget("broken", (0.0, 0.0, 0.0), _broken_source)], EllipsoidModel())
    assert report.not_found == 1
    assert "segmentation unavailable" in report.records[0].message
    assert any("broken" in r.getMessage() for r in caplog.records)


def test_failed_model_write_is_recorded_as_error(caplog):
    truths = _truths(4)
    model = _RejectingModel("t1")
    with caplog.at_level("WARNING", logger="ellipsoid_fit"):
        report = ParallelFitDriver(CONFIG, max_workers=2, seed=0).process(_targets(truths), model)

    assert report.found == 3 and report.not_found == 1
    record = next(r for r in report.records if r.key == "t1")
    assert record.status is FitStatus.ERROR
    assert "KeyError" in record.message
    assert sorted(model.keys()) == ["t0", "t2", "t3"]
    assert any("t1" in r.getMessage() for r in caplog.records)


@pytest.mark.parametrize("workers", [1, 2])
def test_counters_match_report(workers):
    targets = _targets(_truths(3))
    driver = ParallelFitDriver(CONFIG, max_workers=workers, seed=0)
    report = driver.process(targets, EllipsoidModel())
    assert driver.num_found == report.found == 3
    assert driver.num_not_found == 0
