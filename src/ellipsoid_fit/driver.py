"""
===========================================================
ellipsoid_fit.driver — batch fitting over many targets
===========================================================

Fans the robust fit out over independent targets (one expected center and
one edgel source each) on a thread pool, or sequentially.

  - FitTarget         : key + expected center + edgels (or a callable
                        producing them), optionally with the transform
                        from edgel coordinates to the global frame
  - fit_target()      : filter + fit one target; pure, no shared state
  - EllipsoidModel    : in-memory stand-in for the host's object graph
  - ParallelFitDriver : runs a batch, writes results under the model lock
  - FitReport         : found / not-found counts, timings, per-target records

Writing a result is the only synchronization point: the driver takes the
model's write lock, sets center and covariance together, and releases it.
"""

# --- Imports --------------------------------------------------------------

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .config import EdgelFilterConfig, FitConfig
from .core import fit_ellipsoid_ransac
from .edgels import (
    EdgelSet,
    as_edgel_set,
    filter_by_direction,
    filter_by_occlusion,
    transform_edgels,
)
from .results import FitResult, FitStatus

logger = logging.getLogger(__name__)

EdgelSource = Union[EdgelSet, Callable[[], EdgelSet]]


# --- Targets --------------------------------------------------------------

@dataclass(frozen=True)
class FitTarget:
    key: Hashable
    expected_center: Tuple[float, float, float]
    edgels: EdgelSource
    # 4x4 homogeneous map from edgel coordinates to the global frame
    transform: Optional[np.ndarray] = None

    def load_edgels(self) -> EdgelSet:
        source = self.edgels
        return as_edgel_set(source() if callable(source) else source)


def fit_target(target: FitTarget,
               config: FitConfig,
               filter_config: Optional[EdgelFilterConfig] = None,
               rng: Optional[np.random.Generator] = None) -> FitResult:
    """
    Map edgels to global coordinates (when the target carries a transform),
    filter by direction and occlusion, then fit_ellipsoid_ransac().
    """
    filter_config = filter_config or EdgelFilterConfig()
    center = np.asarray(target.expected_center, float)
    edgels = target.load_edgels()
    if target.transform is not None:
        edgels = transform_edgels(edgels, target.transform)
    edgels = filter_by_direction(edgels, center, polarity=filter_config.polarity)
    edgels = filter_by_occlusion(edgels, center, filter_config.max_angle, filter_config.max_factor)
    return fit_ellipsoid_ransac(edgels, center, config, rng=rng)


# --- Shared model ---------------------------------------------------------

class EllipsoidModel:
    """
    Minimal thread-safe store of per-target ellipsoids.

    Any object with a ``lock`` (context manager) and
    ``set_ellipsoid(key, center, covariance)`` can stand in for it.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self._entries: Dict[Hashable, Tuple[np.ndarray, np.ndarray]] = {}

    def set_ellipsoid(self, key, center, covariance):
        """Store center and covariance; caller must hold ``lock``."""
        self._entries[key] = (np.array(center, float), np.array(covariance, float))

    def get(self, key):
        with self.lock:
            return self._entries.get(key)

    def keys(self):
        with self.lock:
            return list(self._entries)

    def __len__(self):
        with self.lock:
            return len(self._entries)


# --- Report ---------------------------------------------------------------

@dataclass(frozen=True)
class FitRecord:
    key: Hashable
    status: FitStatus
    elapsed: float
    center: Optional[np.ndarray] = None
    radii: Optional[np.ndarray] = None
    message: str = ""


@dataclass
class FitReport:
    found: int = 0
    not_found: int = 0
    elapsed: float = 0.0
    records: List[FitRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.found + self.not_found

    @property
    def success_rate(self) -> float:
        return self.found / self.total if self.total else 0.0

    @property
    def time_per_target(self) -> float:
        return self.elapsed / self.total if self.total else 0.0

    def summary(self) -> str:
        pct_found = round(100.0 * self.success_rate)
        pct_missing = 100 - pct_found if self.total else 0
        return (f"found: {self.found} ({pct_found}%), "
                f"not found: {self.not_found} ({pct_missing}%), "
                f"total time: {self.elapsed:.2f}s, "
                f"time per target: {1000.0 * self.time_per_target:.0f}ms.")

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for rec in self.records:
            row = {"key": rec.key, "status": rec.status.value,
                   "elapsed_s": rec.elapsed, "message": rec.message}
            for name, values in (("center", rec.center), ("radius", rec.radii)):
                for k in range(3):
                    row[f"{name}_{k}"] = np.nan if values is None else float(values[k])
            rows.append(row)
        columns = ["key", "status", "elapsed_s",
                   "center_0", "center_1", "center_2",
                   "radius_0", "radius_1", "radius_2", "message"]
        return pd.DataFrame(rows, columns=columns)


# --- Driver ---------------------------------------------------------------

class ParallelFitDriver:
    """
    Fit an ellipsoid for each target and write successes into a model.

    Parameters
    ----------
    config : FitConfig
    filter_config : EdgelFilterConfig, optional
    parallel : bool
        Use a thread pool (default) or run targets one after another.
    max_workers : int, optional
        Pool size; defaults to os.cpu_count().
    seed : int or numpy.random.SeedSequence, optional
        Root of the per-target generators. None draws OS entropy.
    progress_every : int
        Log progress every this many finished targets (0 disables).
    """

    def __init__(self, config: Optional[FitConfig] = None,
                 filter_config: Optional[EdgelFilterConfig] = None,
                 parallel: bool = True,
                 max_workers: Optional[int] = None,
                 seed=None,
                 progress_every: int = 1000):
        self.config = config or FitConfig()
        self.filter_config = filter_config or EdgelFilterConfig()
        self.parallel = parallel
        self.max_workers = max_workers or os.cpu_count() or 1
        self.seed = seed
        self.progress_every = progress_every
        self._counter_lock = threading.Lock()
        self._cancelled = threading.Event()
        self._report = FitReport()
        self._t0 = 0.0

    # --- Public API ------------------------------------------------------

    def cancel(self):
        """Skip targets that have not started yet; running ones finish."""
        self._cancelled.set()

    @property
    def num_found(self) -> int:
        with self._counter_lock:
            return self._report.found

    @property
    def num_not_found(self) -> int:
        with self._counter_lock:
            return self._report.not_found

    def process(self, targets: Sequence[FitTarget], model) -> FitReport:
        """
        Fit all targets and apply successes to ``model``.

        One target's failure never aborts the batch; it is counted and
        logged. Returns the FitReport of this batch.
        """
        targets = tuple(targets)
        self._cancelled.clear()
        self._report = FitReport()
        self._t0 = time.perf_counter()
        if not targets:
            logger.info("no targets to fit")
            return self._report

        seeds = np.random.SeedSequence(self.seed).spawn(len(targets))
        jobs = list(zip(targets, seeds))
        total = len(targets)

        if self.parallel and self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [executor.submit(self._run_one, t, s, model, total) for t, s in jobs]
                for future in futures:
                    future.result()
        else:
            for t, s in jobs:
                self._run_one(t, s, model, total)

        with self._counter_lock:
            self._report.elapsed = time.perf_counter() - self._t0
            report = self._report
        logger.info(report.summary())
        return report

    # --- Per-target work -------------------------------------------------

    def _run_one(self, target: FitTarget, seed: np.random.SeedSequence, model, total: int):
        t1 = time.perf_counter()
        if self._cancelled.is_set():
            self._record(FitRecord(target.key, FitStatus.CANCELLED, 0.0, message="cancelled"),
                         count=False, total=total)
            return
        try:
            result = fit_target(target, self.config, self.filter_config,
                                rng=np.random.default_rng(seed))
            if result.found:
                ellipsoid = result.ellipsoid
                with model.lock:
                    model.set_ellipsoid(target.key, ellipsoid.center, ellipsoid.covariance)
        except Exception as exc:  # noqa: BLE001
            logger.warning("fit failed for target %r: %s", target.key, exc, exc_info=True)
            self._record(FitRecord(target.key, FitStatus.ERROR,
                                   time.perf_counter() - t1, message=f"{type(exc).__name__}: {exc}"),
                         found=False, total=total)
            return
        elapsed = time.perf_counter() - t1

        if not result.found:
            logger.debug("no ellipsoid found for target %r: %s", target.key, result.message)
            self._record(FitRecord(target.key, result.status, elapsed, message=result.message),
                         found=False, total=total)
            return

        logger.debug("target %r fitted in %.0fms: %r", target.key, 1000.0 * elapsed, ellipsoid)
        self._record(FitRecord(target.key, FitStatus.FOUND, elapsed,
                               center=ellipsoid.center, radii=ellipsoid.radii),
                     found=True, total=total)

    def _record(self, record: FitRecord, found: bool = False, count: bool = True, total: int = 0):
        with self._counter_lock:
            self._report.records.append(record)
            if not count:
                return
            if found:
                self._report.found += 1
            else:
                self._report.not_found += 1
            done = self._report.total
        if self.progress_every and done % self.progress_every == 0:
            logger.info("Computed %d of %d ellipsoids (%d%%). Total time: %.1fs",
                        done, total, round(100.0 * done / total),
                        time.perf_counter() - self._t0)
