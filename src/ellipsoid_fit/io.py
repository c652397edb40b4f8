from pathlib import Path

import numpy as np

from .edgels import EdgelSet, as_edgel_set

EDGEL_COLUMNS = ("x", "y", "z", "gx", "gy", "gz", "magnitude")


def load_edgels_csv(path: str, delimiter: str = ",") -> EdgelSet:
    """
    Load edgels from a CSV with one header line and 7 columns
    (x, y, z, gx, gy, gz, magnitude).

    Parameters
    ----------
    path : str
        CSV file path.
    delimiter : str
        CSV delimiter (default ",").
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {p}")
    arr = np.loadtxt(p, delimiter=delimiter, skiprows=1, ndmin=2)
    if arr.size == 0:
        return EdgelSet.empty()
    if arr.shape[1] != len(EDGEL_COLUMNS):
        raise ValueError(f"Expected {len(EDGEL_COLUMNS)} columns, got {arr.shape[1]} in {p}")
    return EdgelSet(arr[:, 0:3], arr[:, 3:6], arr[:, 6])


def save_edgels_csv(path: str, edgels):
    """
    Save edgels to a CSV readable by load_edgels_csv().

    Notes
    -----
    Useful to hand edgels of a difficult target to external tools.
    """
    E = as_edgel_set(edgels)
    arr = np.column_stack([E.positions, E.gradients, E.magnitudes])
    np.savetxt(path, arr, delimiter=",", header=",".join(EDGEL_COLUMNS), comments="", fmt="%.6f")


def save_report_csv(path: str, report):
    """Write the per-target records of a FitReport (one row per target)."""
    report.to_frame().to_csv(path, index=False)
