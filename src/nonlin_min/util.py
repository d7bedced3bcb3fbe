from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as np


def prod(shape: Tuple[int, ...]) -> int:
    n = 1
    for s in shape:
        n *= int(s)
    return int(n)


def as_shape(dim: Any) -> Tuple[int, ...]:
    """Normalize a dimension (int, tuple, list) to a shape tuple."""
    if isinstance(dim, (int, np.integer)):
        return () if int(dim) == 1 else (int(dim),)
    shape = tuple(int(d) for d in dim)
    if any(d < 0 for d in shape):
        raise ValueError(f"Negative dimension in {dim!r}.")
    return shape


def null_space(a: Any, tol: Optional[float] = None) -> np.ndarray:
    """Orthonormal basis of the null space of ``a`` (columns of the result).

    The dimension of the null space is the number of singular values not
    greater than ``tol``, which defaults to ``max(a.shape) * s_max * eps``.

    When the matrix has at least as many rows as columns and the null space is
    one-dimensional, entries of the basis vector that could jointly be zero
    without rotating the vector by more than its LAPACK error bound are set to
    exactly zero. Otherwise, entries smaller than machine epsilon are zeroed.
    """
    a = np.asarray(a)
    if a.size == 0:
        return np.zeros((a.shape[1] if a.ndim == 2 else 0, 0))
    if a.ndim != 2:
        raise ValueError("null_space expects a 2-D matrix.")

    rows, cols = a.shape
    _, s, vh = np.linalg.svd(a)
    eps = np.finfo(a.dtype if np.issubdtype(a.dtype, np.floating) else float).eps
    if tol is None:
        tol = max(rows, cols) * s[0] * eps

    rank = int(np.sum(s > tol))
    if rank >= cols:
        return np.zeros((cols, 0))

    basis = vh[rank:, :].conj().T.copy()

    if rows < cols:
        # no error bounds computable
        basis[np.abs(basis) < eps] = 0.0
        return basis

    if basis.shape[1] > 1:
        # Error angles of multidimensional null spaces are too large to be
        # useful; leave the basis as computed.
        return basis

    gaps = _singular_vector_gaps(s, rows, cols, tol)[rank:cols]
    with np.errstate(divide="ignore"):
        bound = 2.0 * tol / gaps
    bound = np.where(np.isfinite(bound), bound, 0.0)

    mag = (basis.conj() * basis).real
    order = np.argsort(mag, axis=0, kind="stable")
    cum = np.sqrt(np.cumsum(np.take_along_axis(mag, order, axis=0), axis=0))
    zero_sorted = cum <= bound[None, :]
    for j in range(basis.shape[1]):
        basis[order[zero_sorted[:, j], j], j] = 0.0
    return basis


def _singular_vector_gaps(
    s: np.ndarray, rows: int, cols: int, tol: float
) -> np.ndarray:
    """Gaps bounding the error angles of right singular vectors (DDISNA 'R').

    Singular values not above ``tol`` count as exact zeros, so the rectangular
    shape term only applies to a nonzero smallest singular value.
    """
    s = np.asarray(s, dtype=float)
    k = s.shape[0]
    gaps = np.empty(k, dtype=float)
    for i in range(k):
        others = np.delete(s, i)
        g = np.min(np.abs(others - s[i])) if others.size else np.inf
        if rows != cols and i == k - 1 and s[i] > tol:
            g = min(g, s[i])
        gaps[i] = g
    return gaps
