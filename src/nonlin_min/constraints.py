"""Constraint parsing and stacking.

All constraints end up as rows ``c(p) >= 0`` (inequalities) or ``c(p) == 0``
(equalities) of one stacked function. Rows are ordered

    bound lower, bound upper, linear inequality, linear equality,
    general inequality, general equality

and ``eq_idx`` marks the equality rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import numpy as np

from .params import ParameterLayout

__all__ = [
    "ConstraintSpec",
    "as_constraint_spec",
    "linear_part",
    "StackedConstraints",
    "stack_constraints",
    "initial_constraint_values",
]

_KIND_NAMES = {"inequc": "inequality", "equc": "equality"}
_SPEC_KEYS = ("matrix", "offset", "function", "jacobian")


@dataclass(frozen=True)
class ConstraintSpec:
    """Linear part ``matrix^T p + offset`` and/or a general function.

    ``matrix`` has one row per parameter element and one column per
    constraint; it may also be a mapping parameter name -> rows when
    parameters are named.
    """

    matrix: Any = None
    offset: Any = None
    function: Optional[Callable[..., Any]] = None
    jacobian: Optional[Callable[..., Any]] = None

    @staticmethod
    def linear(matrix: Any, offset: Any = None) -> "ConstraintSpec":
        return ConstraintSpec(matrix=matrix, offset=offset)

    @staticmethod
    def general(
        function: Callable[..., Any], jacobian: Optional[Callable[..., Any]] = None
    ) -> "ConstraintSpec":
        return ConstraintSpec(function=function, jacobian=jacobian)

    @property
    def has_linear(self) -> bool:
        return self.matrix is not None

    @property
    def has_general(self) -> bool:
        return self.function is not None

    @property
    def structured_matrix(self) -> bool:
        return isinstance(self.matrix, Mapping)


def as_constraint_spec(obj: Any, kind: str = "inequc") -> ConstraintSpec:
    """Normalize the accepted input forms of ``inequc`` / ``equc``."""
    what = f"{_KIND_NAMES[kind]} constraints"
    if obj is None:
        return ConstraintSpec()
    if isinstance(obj, ConstraintSpec):
        spec = obj
    elif callable(obj):
        spec = ConstraintSpec.general(obj)
    elif isinstance(obj, Mapping):
        unknown = [k for k in obj if k not in _SPEC_KEYS]
        if unknown:
            raise ValueError(f"{what}: unknown keys {unknown}. Available: {_SPEC_KEYS}")
        spec = ConstraintSpec(**dict(obj))
    elif isinstance(obj, (list, tuple)):
        items = list(obj)
        if not items:
            return ConstraintSpec()
        if callable(items[0]):
            if len(items) > 2:
                raise ValueError(f"{what}: expected (function[, jacobian]).")
            spec = ConstraintSpec.general(*items)
        else:
            if len(items) < 2 or len(items) > 4:
                raise ValueError(
                    f"{what}: expected (matrix, offset[, function[, jacobian]])."
                )
            spec = ConstraintSpec(*items)
    else:
        raise TypeError(f"{what}: unsupported specification of type {type(obj)!r}.")

    if spec.function is not None and not callable(spec.function):
        raise TypeError(f"{what}: 'function' must be callable.")
    if spec.jacobian is not None:
        if not callable(spec.jacobian):
            raise TypeError(f"{what}: 'jacobian' must be callable.")
        if spec.function is None:
            raise ValueError(f"{what}: jacobian given without function.")
    if spec.offset is not None and spec.matrix is None:
        raise ValueError(f"{what}: offset given without matrix.")
    return spec


def linear_part(
    spec: ConstraintSpec,
    n: int,
    kind: str,
    layout: Optional[ParameterLayout] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """(matrix (n x k), offset (k,)) of the linear part; k == 0 if absent."""
    what = f"linear {_KIND_NAMES[kind]} constraints"
    if not spec.has_linear:
        return np.zeros((n, 0)), np.zeros((0,))

    offset = None if spec.offset is None else np.asarray(spec.offset, dtype=float)
    if offset is not None and offset.ndim == 2 and offset.shape[1] == 1:
        offset = offset[:, 0]
    if offset is not None and offset.ndim > 1:
        raise ValueError(f"{what}: wrong dimensions")

    if spec.structured_matrix:
        if layout is None:
            raise ValueError(
                "given settings require specification of parameter order or "
                "initial parameters in the form of a structure"
            )
        if offset is not None:
            k = int(offset.size)
        else:
            k = _columns_of_blocks(spec.matrix, layout, what)
        matrix = layout.rows(spec.matrix, k, what)
    else:
        matrix = np.asarray(spec.matrix, dtype=float)
        if matrix.ndim == 1:
            matrix = matrix[:, None]
        if matrix.ndim != 2:
            raise ValueError(f"{what}: wrong dimensions")

    if offset is None:
        offset = np.zeros((matrix.shape[1],), dtype=float)
    offset = offset.reshape((-1,))
    if matrix.shape[0] != n or matrix.shape[1] != offset.shape[0]:
        raise ValueError(f"{what}: wrong dimensions")
    return matrix, offset


def _columns_of_blocks(
    blocks: Mapping[str, Any], layout: ParameterLayout, what: str
) -> int:
    for name, value in blocks.items():
        if name not in layout.names:
            raise ValueError(f"unknown fields in structure of {what}: {[name]}")
        size = layout.slice_of(name).stop - layout.slice_of(name).start
        if size:
            return int(np.size(value) // size)
    return 0


def initial_constraint_values(
    p: np.ndarray,
    lin_inequ: Tuple[np.ndarray, np.ndarray],
    lin_equ: Tuple[np.ndarray, np.ndarray],
    f_inequc: Optional[Callable[..., Any]],
    f_equc: Optional[Callable[..., Any]],
) -> Dict[str, Dict[str, np.ndarray]]:
    """Constraint values at the full initial point, bounds excluded."""
    def gen(f: Optional[Callable[..., Any]]) -> np.ndarray:
        if f is None:
            return np.zeros((0,))
        return np.asarray(f(p), dtype=float).reshape((-1,))

    return {
        "inequ": {
            "lin_except_bounds": lin_inequ[0].T @ p + lin_inequ[1],
            "gen": gen(f_inequc),
        },
        "equ": {
            "lin": lin_equ[0].T @ p + lin_equ[1],
            "gen": gen(f_equc),
        },
    }


@dataclass(frozen=True)
class StackedConstraints:
    """One constraint function over the free parameters.

    ``f_cstr(p, idx=None)`` returns the values of the rows selected by
    ``idx`` (boolean mask or integer indices, ``None`` for all rows).
    ``df_cstr(p, idx=None, values=None)`` returns their Jacobian; ``values``
    may carry already known values of the selected rows.
    """

    f_cstr: Callable[..., np.ndarray]
    df_cstr: Callable[..., np.ndarray]
    eq_idx: np.ndarray
    # linear rows, bounds included: matrix^T p + offset
    mc: np.ndarray
    vc: np.ndarray
    n_bounds: int
    n_lin_inequ: int
    n_lin_equ: int
    n_gen_inequ: int
    n_gen_equ: int

    @property
    def m(self) -> int:
        return int(self.eq_idx.shape[0])

    @property
    def n_lin(self) -> int:
        return self.n_bounds + self.n_lin_inequ + self.n_lin_equ

    @property
    def n_gen(self) -> int:
        return self.n_gen_inequ + self.n_gen_equ

    @property
    def has_equalities(self) -> bool:
        return bool(np.any(self.eq_idx))

    @property
    def gen_equ_rows(self) -> np.ndarray:
        mask = np.zeros((self.m,), dtype=bool)
        mask[self.m - self.n_gen_equ :] = True
        return mask

    @property
    def lin_equ_rows(self) -> np.ndarray:
        mask = np.zeros((self.m,), dtype=bool)
        start = self.n_bounds + self.n_lin_inequ
        mask[start : start + self.n_lin_equ] = True
        return mask


def _bound_rows(lbound: np.ndarray, ubound: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    n = lbound.shape[0]
    eye = np.eye(n)
    lo = np.isfinite(lbound)
    hi = np.isfinite(ubound)
    matrix = np.hstack([eye[:, lo], -eye[:, hi]])
    offset = np.concatenate([-lbound[lo], ubound[hi]])
    return matrix, offset


def _row_mask(idx: Any, m: int) -> Optional[np.ndarray]:
    if idx is None:
        return None
    a = np.asarray(idx)
    if a.dtype == bool:
        if a.shape != (m,):
            raise ValueError(f"row mask has shape {a.shape}, expected ({m},).")
        return a
    mask = np.zeros((m,), dtype=bool)
    mask[a.astype(int)] = True
    return mask


def stack_constraints(
    *,
    lbound: np.ndarray,
    ubound: np.ndarray,
    lin_inequ: Tuple[np.ndarray, np.ndarray],
    lin_equ: Tuple[np.ndarray, np.ndarray],
    f_inequc: Optional[Callable[..., Any]] = None,
    df_inequc: Optional[Callable[..., Any]] = None,
    f_equc: Optional[Callable[..., Any]] = None,
    df_equc: Optional[Callable[..., Any]] = None,
    n_gen_inequ: int = 0,
    n_gen_equ: int = 0,
) -> StackedConstraints:
    """Stack bounds, linear and general constraints over the free parameters.

    Linear parts must already be reduced to the free subspace and the general
    functions must take the free sub-vector with the signatures documented in
    :mod:`nonlin_min.pipeline`.
    """
    lbound = np.asarray(lbound, dtype=float)
    ubound = np.asarray(ubound, dtype=float)
    n = lbound.shape[0]
    mb, vb = _bound_rows(lbound, ubound)
    mc = np.hstack([mb, lin_inequ[0], lin_equ[0]]).reshape((n, -1))
    vc = np.concatenate([vb, lin_inequ[1], lin_equ[1]])
    n_bounds = int(vb.shape[0])
    n_li = int(lin_inequ[1].shape[0])
    n_le = int(lin_equ[1].shape[0])
    n_lin = n_bounds + n_li + n_le
    n_gi, n_ge = int(n_gen_inequ), int(n_gen_equ)
    if (n_gi and f_inequc is None) or (n_ge and f_equc is None):
        raise ValueError("general constraint rows without constraint function")
    m = n_lin + n_gi + n_ge

    eq_idx = np.concatenate(
        [
            np.zeros((n_bounds + n_li,), dtype=bool),
            np.ones((n_le,), dtype=bool),
            np.zeros((n_gi,), dtype=bool),
            np.ones((n_ge,), dtype=bool),
        ]
    )
    gi = slice(n_lin, n_lin + n_gi)
    ge = slice(n_lin + n_gi, m)

    def _sub(mask: Optional[np.ndarray], sl: slice, count: int) -> Any:
        # None selects all rows of a block; False skips the block
        if mask is None:
            return None if count else False
        part = mask[sl]
        if not np.any(part):
            return False
        return None if np.all(part) else part

    def f_cstr(p, idx=None):
        p = np.asarray(p)
        mask = _row_mask(idx, m)
        lin = slice(None) if mask is None else mask[:n_lin]
        parts = [mc[:, lin].T @ p + vc[lin]]
        for f, sl, count in ((f_inequc, gi, n_gi), (f_equc, ge, n_ge)):
            sub = _sub(mask, sl, count)
            if sub is not False:
                parts.append(np.asarray(f(p, sub)).reshape((-1,)))
        return np.concatenate(parts)

    def df_cstr(p, idx=None, values=None):
        p = np.asarray(p)
        mask = _row_mask(idx, m)
        lin = slice(None) if mask is None else mask[:n_lin]
        lin_rows = mc[:, lin].T
        parts = [lin_rows]
        pos = lin_rows.shape[0]
        for df, sl, count in ((df_inequc, gi, n_gi), (df_equc, ge, n_ge)):
            sub = _sub(mask, sl, count)
            if sub is False:
                continue
            k = count if sub is None else int(np.sum(sub))
            vals = None if values is None else np.asarray(values)[pos : pos + k]
            parts.append(np.asarray(df(p, sub, vals), dtype=float).reshape((k, n)))
            pos += k
        return np.vstack(parts)

    return StackedConstraints(
        f_cstr=f_cstr,
        df_cstr=df_cstr,
        eq_idx=eq_idx,
        mc=mc,
        vc=vc,
        n_bounds=n_bounds,
        n_lin_inequ=n_li,
        n_lin_equ=n_le,
        n_gen_inequ=n_gi,
        n_gen_equ=n_ge,
    )
