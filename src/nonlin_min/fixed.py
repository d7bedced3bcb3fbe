from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Tuple
from warnings import warn

import numpy as np

from .config import ParameterConfig
from .pipeline import CONSTRAINT_KINDS, FunctionSet, Stage

__all__ = ["FixedPartition", "fixed_elimination_stage", "fold_linear"]


@dataclass(frozen=True)
class FixedPartition:
    """Split of the flat parameter vector into fixed and free elements.

    ``pin`` is the full initial vector; fixed elements keep their values from
    it whenever a free sub-vector is expanded.
    """

    mask: np.ndarray
    pin: np.ndarray

    @staticmethod
    def from_config(cfg: ParameterConfig, pin: np.ndarray) -> "FixedPartition":
        part = FixedPartition(mask=cfg.fixed.copy(), pin=np.array(pin, dtype=float))
        if not np.any(part.free):
            raise ValueError("no free parameters")
        outside = part.mask & ((part.pin < cfg.lbound) | (part.pin > cfg.ubound))
        if np.any(outside):
            warn("some fixed parameters outside bounds", UserWarning)
        return part

    @property
    def free(self) -> np.ndarray:
        return ~self.mask

    @property
    def n_free(self) -> int:
        return int(np.sum(self.free))

    @property
    def any_fixed(self) -> bool:
        return bool(np.any(self.mask))

    def expand(self, p_free: Any) -> np.ndarray:
        p = self.pin.copy()
        p[self.free] = np.asarray(p_free, dtype=float).reshape((-1,))
        return p

    def reduce(self, p_full: Any) -> np.ndarray:
        return np.asarray(p_full, dtype=float)[self.free].copy()


def fold_linear(
    matrix: np.ndarray, offset: np.ndarray, partition: FixedPartition
) -> Tuple[np.ndarray, np.ndarray]:
    """Move fixed rows of ``matrix`` (np x k) into ``offset``.

    Returns the free-row matrix and the offset with ``M[fixed]^T p_fixed``
    added, so ``M_free^T p_free + offset`` equals the original linear form.
    """
    mask = partition.mask
    folded = offset + matrix[mask].T @ partition.pin[mask]
    return matrix[~mask].copy(), folded


def fixed_elimination_stage(partition: FixedPartition) -> Stage:
    """Let every function take the free sub-vector only."""

    def fixed_elimination(fs: FunctionSet) -> FunctionSet:
        if not partition.any_fixed:
            return fs
        free = partition.free
        expand = partition.expand
        f, g, h = fs.objective, fs.gradient, fs.hessian
        out = replace(
            fs,
            objective=lambda p: f(expand(p)),
            gradient=None if g is None else (lambda p: np.asarray(g(expand(p)))[free]),
            hessian=None
            if h is None
            else (lambda p: np.asarray(h(expand(p)))[np.ix_(free, free)]),
        )
        for kind in CONSTRAINT_KINDS:
            fc, dfc = out.constraint(kind)
            out = out.with_constraint(
                kind,
                None if fc is None else _values_on_free(fc, expand),
                None if dfc is None else _jacobian_on_free(dfc, expand, free),
            )
        return out

    return fixed_elimination


def _values_on_free(f: Callable, expand: Callable) -> Callable:
    def f_free(p, idx=None):
        return f(expand(p), idx)

    return f_free


def _jacobian_on_free(df: Callable, expand: Callable, free: np.ndarray) -> Callable:
    def df_free(p, idx=None, values=None):
        return np.asarray(df(expand(p), idx, values))[:, free]

    return df_free
