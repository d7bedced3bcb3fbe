import numpy as np

from nonlin_min import null_space


def test_wide_matrix():
    a = np.array([[1.0, 1.0]])
    z = null_space(a)
    assert z.shape == (2, 1)
    np.testing.assert_allclose(a @ z, 0.0, atol=1e-15)
    assert abs(np.linalg.norm(z) - 1.0) < 1e-14


def test_full_rank_has_empty_null_space():
    assert null_space(np.eye(3)).shape == (3, 0)


def test_tall_rank_deficient_matrix():
    a = np.array([[1.0, 2.0], [2.0, 4.0], [3.0, 6.0], [0.0, 0.0]])
    z = null_space(a)
    assert z.shape == (2, 1)
    np.testing.assert_allclose(a @ z, 0.0, atol=1e-12)
    np.testing.assert_allclose(np.abs(z[:, 0]), np.array([2.0, 1.0]) / np.sqrt(5.0))


def test_tiny_entries_of_single_basis_vector_are_exact_zeros():
    a = np.diag([1.0, 1.0, 0.0])
    z = null_space(a)
    assert z.shape == (3, 1)
    assert z[0, 0] == 0.0 and z[1, 0] == 0.0
    assert abs(abs(z[2, 0]) - 1.0) < 1e-15


def test_multidimensional_null_space():
    a = np.array([[1.0, 0.0, 0.0, 0.0]])
    z = null_space(a)
    assert z.shape == (4, 3)
    np.testing.assert_allclose(z.T @ z, np.eye(3), atol=1e-14)
    np.testing.assert_allclose(a @ z, 0.0, atol=1e-15)


def test_explicit_tolerance():
    a = np.diag([1.0, 1e-8])
    assert null_space(a).shape == (2, 0)
    assert null_space(a, tol=1e-6).shape == (2, 1)
