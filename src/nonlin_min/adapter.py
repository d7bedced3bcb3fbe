from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Optional

import numpy as np

from .numdiff import (
    DerivativeOptions,
    complex_step_gradient,
    complex_step_jacobian,
    estimate_gradient,
    estimate_jacobian,
)
from .params import ParameterLayout
from .pipeline import CONSTRAINT_KINDS, FunctionSet, Stage

__all__ = [
    "StructureFlags",
    "IndexFlags",
    "structure_stage",
    "index_filter_stage",
    "numeric_derivative_stage",
    "fun_val_check_stage",
    "hessian_from_blocks",
    "jacobian_from_blocks",
]


@dataclass(frozen=True)
class StructureFlags:
    """Which user functions take/return named structures instead of vectors."""

    objf: bool = False
    grad_objf: bool = False
    hessian_objf: bool = False
    f_inequc: bool = False
    df_inequc: bool = False
    f_equc: bool = False
    df_equc: bool = False

    @property
    def any(self) -> bool:
        return any(getattr(self, f) for f in self.__dataclass_fields__)

    def corrected(self, functions: FunctionSet) -> "StructureFlags":
        """Clear flags of functions that are not supplied."""
        return StructureFlags(
            objf=self.objf,
            grad_objf=self.grad_objf and functions.gradient is not None,
            hessian_objf=self.hessian_objf and functions.hessian is not None,
            f_inequc=self.f_inequc and functions.f_inequc is not None,
            df_inequc=self.df_inequc and functions.df_inequc is not None,
            f_equc=self.f_equc and functions.f_equc is not None,
            df_equc=self.df_equc and functions.df_equc is not None,
        )


@dataclass(frozen=True)
class IndexFlags:
    """Which constraint functions accept a row-index argument themselves."""

    f_inequc: bool = False
    df_inequc: bool = False
    f_equc: bool = False
    df_equc: bool = False


# ---- structure <-> vector -------------------------------------------------


def jacobian_from_blocks(
    layout: ParameterLayout, blocks: Mapping[str, Any], what: str = "jacobian"
) -> np.ndarray:
    """(k, n) matrix from a mapping name -> (k, *block shape) column blocks."""
    if not isinstance(blocks, Mapping):
        raise TypeError(f"{what}: structure based function must return a mapping.")
    first = next((b for b in layout.blocks if b.size), None)
    if first is None or first.name not in blocks:
        nrows = 0 if first is None else None
    else:
        nrows = np.asarray(blocks[first.name]).size // first.size
    if nrows is None:
        raise ValueError(f"{what}: no entry for parameter {first.name!r}.")
    return layout.columns(blocks, nrows, what)


def hessian_from_blocks(
    layout: ParameterLayout, blocks: Mapping[str, Mapping[str, Any]]
) -> np.ndarray:
    """(n, n) Hessian from a two-level mapping row name -> col name -> block.

    Only one triangle needs to be supplied. Missing blocks (absent or
    ``None``) and NaN entries, also inside diagonal blocks, are taken from
    the transposed position.
    """
    if not isinstance(blocks, Mapping):
        raise TypeError("hessian: structure based function must return a mapping.")
    unknown = [k for k in blocks if k not in layout.names]
    if unknown:
        raise ValueError(f"hessian: unknown parameter names {unknown}")

    def _get(r: str, c: str) -> Any:
        row = blocks.get(r)
        if row is None:
            return None
        return row.get(c)

    h = np.full((layout.n, layout.n), np.nan, dtype=float)
    for bi in layout.blocks:
        si = layout.slice_of(bi.name)
        for bj in layout.blocks:
            blk = _get(bi.name, bj.name)
            if blk is not None:
                h[si, layout.slice_of(bj.name)] = np.asarray(blk, dtype=float).reshape(
                    (bi.size, bj.size)
                )

    missing = np.isnan(h)
    h[missing] = h.T[missing]
    still = np.argwhere(np.isnan(h))
    if still.size:
        i, j = still[0]
        names = layout.element_names
        raise ValueError(
            f"hessian: neither element ({i}, {j}) of ({names[i]!r}, {names[j]!r}) "
            "nor its transpose position is given."
        )
    return h


def structure_stage(layout: Optional[ParameterLayout], flags: StructureFlags) -> Stage:
    """Let structure-based user functions be called with flat vectors."""

    def structure(fs: FunctionSet) -> FunctionSet:
        if layout is None or not flags.any:
            return fs
        to_struct = layout.unflatten
        objective, gradient, hessian = fs.objective, fs.gradient, fs.hessian
        if flags.objf:
            f_user = objective
            objective = lambda p, *args: f_user(to_struct(p), *args)
        if flags.grad_objf:
            g_user = gradient
            gradient = lambda p: jacobian_from_blocks(
                layout, g_user(to_struct(p)), "objf_grad"
            )[0]
        if flags.hessian_objf:
            h_user = hessian
            hessian = lambda p: hessian_from_blocks(layout, h_user(to_struct(p)))
        out = replace(fs, objective=objective, gradient=gradient, hessian=hessian)
        for kind in CONSTRAINT_KINDS:
            f, df = out.constraint(kind)
            if getattr(flags, f"f_{kind}"):
                f = _struct_values(f, to_struct)
            if getattr(flags, f"df_{kind}"):
                df = _struct_jacobian(df, to_struct, layout, f"jacobian of {kind}")
            out = out.with_constraint(kind, f, df)
        return out

    return structure


def _struct_values(f: Callable, to_struct: Callable) -> Callable:
    return lambda p, *args: f(to_struct(p), *args)


def _struct_jacobian(
    df: Callable, to_struct: Callable, layout: ParameterLayout, what: str
) -> Callable:
    return lambda p, *args: jacobian_from_blocks(layout, df(to_struct(p), *args), what)


# ---- row indices ------------------------------------------------------------


def _rows(values: Any, idx: Any) -> np.ndarray:
    v = np.asarray(values).reshape((-1,))
    return v if idx is None else v[np.asarray(idx)]


def _jac_rows(jac: Any, idx: Any) -> np.ndarray:
    j = np.asarray(jac)
    if j.ndim == 1:
        j = j[None, :]
    return j if idx is None else j[np.asarray(idx), :]


def index_filter_stage(flags: IndexFlags) -> Stage:
    """Give every constraint function the ``(p, idx=None)`` signature.

    Functions that ignore indices are called with ``p`` only and their output
    is filtered by ``idx`` afterwards.
    """

    def index_filter(fs: FunctionSet) -> FunctionSet:
        out = fs
        for kind in CONSTRAINT_KINDS:
            f, df = out.constraint(kind)
            if f is not None:
                f = _indexed_values(f, getattr(flags, f"f_{kind}"))
            if df is not None:
                df = _indexed_jacobian(df, getattr(flags, f"df_{kind}"))
            out = out.with_constraint(kind, f, df)
        return out

    return index_filter


def _indexed_values(f: Callable, honors_idx: bool) -> Callable:
    if honors_idx:
        def f_idx(p, idx=None):
            return _rows(f(p) if idx is None else f(p, idx), None)
    else:
        def f_idx(p, idx=None):
            return _rows(f(p), idx)
    return f_idx


def _indexed_jacobian(df: Callable, honors_idx: bool) -> Callable:
    if honors_idx:
        def df_idx(p, idx=None, values=None):
            return _jac_rows(df(p) if idx is None else df(p, idx), None)
    else:
        def df_idx(p, idx=None, values=None):
            return _jac_rows(df(p), idx)
    return df_idx


# ---- numeric derivatives ----------------------------------------------------


def numeric_derivative_stage(
    options: DerivativeOptions,
    *,
    complex_step_objf: bool = False,
    complex_step_inequc: bool = False,
    complex_step_equc: bool = False,
) -> Stage:
    """Substitute numeric estimators for derivatives the user did not supply."""
    cstep = {"inequc": complex_step_inequc, "equc": complex_step_equc}
    # constraint derivative closures are built per call, so they are not memoized
    cstr_options = replace(options, cache=None)

    def numeric_derivatives(fs: FunctionSet) -> FunctionSet:
        out = fs
        if fs.gradient is None:
            out = replace(
                out,
                gradient=_numeric_gradient(fs.objective, options, complex_step_objf),
            )
        for kind in CONSTRAINT_KINDS:
            f, df = out.constraint(kind)
            if f is not None and df is None:
                df = _numeric_jacobian(f, cstr_options, cstep[kind])
                out = out.with_constraint(kind, f, df)
        return out

    return numeric_derivatives


def _numeric_gradient(f: Callable, options: DerivativeOptions, cstep: bool) -> Callable:
    if cstep:
        def gradient(p):
            return complex_step_gradient(p, f, options)
    else:
        def gradient(p):
            return estimate_gradient(p, f, options)
    return gradient


def _numeric_jacobian(f: Callable, options: DerivativeOptions, cstep: bool) -> Callable:
    if cstep:
        def df(p, idx=None, values=None):
            return complex_step_jacobian(p, lambda q: f(q, idx), options)
    else:
        def df(p, idx=None, values=None):
            return estimate_jacobian(p, lambda q: f(q, idx), options, f0=values)
    return df


# ---- checks -----------------------------------------------------------------


def fun_val_check_stage(enabled: bool) -> Stage:
    """Reject non-finite or non-real objective values when ``enabled``."""

    def fun_val_check(fs: FunctionSet) -> FunctionSet:
        if not enabled:
            return fs
        f = fs.objective

        def checked(p, *args):
            v = f(p, *args)
            a = np.asarray(v)
            if a.size != 1 or np.iscomplexobj(a) or not np.all(np.isfinite(a)):
                raise ValueError(
                    f"objective function returned an invalid value: {v!r}"
                )
            return v

        return replace(fs, objective=checked)

    return fun_val_check
