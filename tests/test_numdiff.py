from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from nonlin_min.numdiff import (
    DerivativeCache,
    DerivativeOptions,
    complex_step_gradient,
    complex_step_jacobian,
    estimate_gradient,
    estimate_jacobian,
)


def _options(n, **kw) -> DerivativeOptions:
    base = dict(
        diffp=np.full(n, 1e-6),
        typical_x=np.ones(n),
        onesided=np.zeros(n, dtype=bool),
        lbound=np.full(n, -np.inf),
        ubound=np.full(n, np.inf),
        fixed=np.zeros(n, dtype=bool),
    )
    base.update(kw)
    return DerivativeOptions(**base)


def test_central_gradient_of_polynomial():
    f = lambda p: p[0] ** 2 + 3.0 * p[1] - p[0] * p[1]
    g = estimate_gradient(np.array([1.0, 2.0]), f, _options(2))
    np.testing.assert_allclose(g, [2.0 * 1.0 - 2.0, 3.0 - 1.0], atol=1e-6)


def test_jacobian_shape_of_vector_function():
    f = lambda p: np.array([p[0] * p[1], p[2], p.sum()])
    jac = estimate_jacobian(np.array([1.0, 2.0, 3.0]), f, _options(3))
    assert jac.shape == (3, 3)
    np.testing.assert_allclose(
        jac, [[2.0, 1.0, 0.0], [0.0, 0.0, 1.0], [1.0, 1.0, 1.0]], atol=1e-6
    )


def test_difference_steps_stay_within_bounds():
    seen = []

    def f(p):
        seen.append(p.copy())
        return p[0] ** 2

    opts = _options(1, lbound=np.array([0.0]), ubound=np.array([1.0]), diffp=np.array([1e-3]))

    g = estimate_gradient(np.array([0.0]), f, opts)
    assert all(q[0] >= 0.0 for q in seen)
    assert g[0] == pytest.approx(1e-3, rel=1e-6)

    seen.clear()
    g = estimate_gradient(np.array([1.0]), f, opts)
    assert all(q[0] <= 1.0 for q in seen)
    assert g[0] == pytest.approx(2.0, abs=2e-3)


def test_onesided_uses_forward_differences():
    calls = []

    def f(p):
        calls.append(p.copy())
        return float(p @ p)

    opts = _options(2, onesided=np.array([True, True]))
    estimate_gradient(np.array([1.0, 1.0]), f, opts)
    # base point + one step per element
    assert len(calls) == 3


def test_fixed_columns_are_zero_and_not_perturbed():
    calls = []

    def f(p):
        calls.append(p.copy())
        return float(np.sum(p**2))

    opts = _options(3, fixed=np.array([False, True, False]))
    g = estimate_gradient(np.array([1.0, 2.0, 3.0]), f, opts)
    assert g[1] == 0.0
    np.testing.assert_allclose(g[[0, 2]], [2.0, 6.0], atol=1e-5)
    for q in calls:
        assert q[1] == 2.0


def test_complex_step_is_exact():
    f = lambda p: np.exp(p[0]) * np.sin(p[1])
    p = np.array([0.3, 1.1])
    g = complex_step_gradient(p, f, _options(2))
    np.testing.assert_allclose(
        g, [np.exp(0.3) * np.sin(1.1), np.exp(0.3) * np.cos(1.1)], rtol=1e-14
    )

    jac = complex_step_jacobian(p, lambda q: np.array([q[0] * q[1], q[1] ** 2]), _options(2))
    np.testing.assert_allclose(jac, [[1.1, 0.3], [0.0, 2.2]], rtol=1e-14)


def test_parallel_evaluations_match_serial():
    f = lambda p: np.array([np.sin(p[0]) * p[1], p[0] ** 3, np.cos(p[2])])
    p = np.array([0.5, -1.0, 2.0])
    serial = estimate_jacobian(p, f, _options(3))
    with ThreadPoolExecutor(max_workers=3) as pool:
        parallel = estimate_jacobian(p, f, _options(3, executor=pool))
    np.testing.assert_array_equal(serial, parallel)


def test_cache_skips_base_point_reevaluation():
    calls = []

    def f(p):
        calls.append(p.copy())
        return float(p @ p)

    cache = DerivativeCache()
    p = np.array([1.0, 2.0])
    assert cache.value(f, p) == 5.0
    assert cache.value(f, p.copy()) == 5.0
    assert len(calls) == 1 and cache.hits == 1

    opts = _options(2, cache=cache)
    estimate_gradient(p, f, opts)
    # base point came from the cache, four central steps
    assert len(calls) == 5
    assert cache.hits == 2

    cache.reset()
    assert cache.hits == 0
    cache.value(f, p)
    assert len(calls) == 6
