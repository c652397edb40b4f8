"""
===========================================================
Synthetic blobs and edgel detection
===========================================================
"""

import numpy as np
from ellipsoid_fit import transform_edgels
from ellipsoid_fit.synthetic import (
    artificial_grid,
    detect_edgels,
    random_covariance,
    render_gaussian_blob,
)


def test_random_covariance_half_axes():
    rng = np.random.default_rng(0)
    for _ in range(20):
        w = np.linalg.eigvalsh(random_covariance(rng, 8.0, 16.0))
        assert np.all(np.sqrt(w) >= 8.0 - 1e-9)
        assert np.all(np.sqrt(w) <= 16.0 + 1e-9)


def test_blob_peaks_at_center():
    V = render_gaussian_blob((21, 21, 21), (10, 10, 10), 9.0 * np.eye(3))
    assert np.unravel_index(np.argmax(V), V.shape) == (10, 10, 10)
    assert V[10, 10, 10] == 1000.0


def test_detect_edgels_on_sphere_blob():
    """Gradient maxima of an isotropic blob sit on a sphere of radius ≈ σ."""
    sigma_blob, sigma_smooth = 6.0, 2.0
    origin = np.array([100.0, 0.0, -50.0])
    center = origin + 20.0
    V = render_gaussian_blob((40, 40, 40), center, sigma_blob**2 * np.eye(3), origin=origin)
    E = detect_edgels(V, min_gradient_magnitude=10.0, sigma=sigma_smooth, origin=origin)

    assert len(E) > 100
    r = np.linalg.norm(E.positions - center, axis=1)
    expected = np.hypot(sigma_blob, sigma_smooth)
    assert abs(np.median(r) - expected) < 0.5
    # gradients point towards the bright center
    inward = np.einsum("ni,ni->n", center - E.positions, E.gradients) > 0
    assert inward.mean() > 0.95
    assert np.allclose(np.linalg.norm(E.gradients, axis=1), 1.0)


def test_detect_edgels_flat_volume():
    assert len(detect_edgels(np.zeros((10, 10, 10)))) == 0


def test_artificial_grid_layout():
    targets, truth = artificial_grid(columns=2, size=40, rng=np.random.default_rng(3))
    assert len(targets) == 8
    assert set(truth) == {t.key for t in targets}
    t = targets[-1]
    assert t.key == (1, 1, 1)
    assert t.expected_center == (60.0, 60.0, 60.0)
    assert np.all(np.abs(truth[t.key].center - 60.0) <= 5.0)
    assert np.array_equal(t.transform[:3, 3], [40.0, 40.0, 40.0])

    # edgels are block-local; the transform only shifts them
    local = t.load_edgels()
    assert len(local) > 0
    world = transform_edgels(local, t.transform)
    assert np.allclose(world.positions, local.positions + 40.0)
    assert np.allclose(world.gradients, local.gradients)
