from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .config import ParameterConfig

__all__ = [
    "DerivativeCache",
    "DerivativeOptions",
    "estimate_jacobian",
    "estimate_gradient",
    "complex_step_jacobian",
    "complex_step_gradient",
]

DIFFP_DEFAULT = 1e-3


class DerivativeCache:
    """Last evaluated point per function, to skip re-evaluating the base point.

    One instance lives for one ``minimize`` call and is reset at its start.
    Only the calling thread touches it; parallel evaluations bypass it.
    """

    def __init__(self) -> None:
        self._entries: Dict[int, Tuple[Callable[..., Any], np.ndarray, Any]] = {}
        self.hits = 0

    def reset(self) -> None:
        self._entries.clear()
        self.hits = 0

    def value(self, func: Callable[..., Any], p: np.ndarray) -> Any:
        entry = self._entries.get(id(func))
        if entry is not None and entry[0] is func and np.array_equal(entry[1], p):
            self.hits += 1
            return entry[2]
        v = func(p)
        self._entries[id(func)] = (func, np.array(p, copy=True), v)
        return v


@dataclass(frozen=True)
class DerivativeOptions:
    """Per-element settings consumed by the numeric estimators."""

    diffp: np.ndarray
    typical_x: np.ndarray
    onesided: np.ndarray
    lbound: np.ndarray
    ubound: np.ndarray
    # elements held constant; their columns are left zero
    fixed: np.ndarray
    cstep: float = 1e-20
    executor: Optional[Executor] = None
    cache: Optional[DerivativeCache] = None

    @staticmethod
    def from_config(
        cfg: ParameterConfig,
        *,
        lbound: np.ndarray,
        ubound: np.ndarray,
        cstep: float,
        executor: Optional[Executor] = None,
        cache: Optional[DerivativeCache] = None,
    ) -> "DerivativeOptions":
        return DerivativeOptions(
            diffp=cfg.diffp.filled(DIFFP_DEFAULT),
            typical_x=cfg.TypicalX.filled(1.0),
            onesided=cfg.diff_onesided.copy(),
            lbound=np.asarray(lbound, dtype=float),
            ubound=np.asarray(ubound, dtype=float),
            fixed=cfg.fixed.copy(),
            cstep=float(cstep),
            executor=executor,
            cache=cache,
        )


def _map(options: DerivativeOptions, func: Callable[..., Any], points: List[np.ndarray]):
    # Executor.map yields results in submission order.
    if options.executor is None or len(points) < 2:
        return [func(q) for q in points]
    return list(options.executor.map(func, points))


def _as_values(v: Any) -> np.ndarray:
    return np.asarray(v).reshape((-1,))


def _steps(p: np.ndarray, options: DerivativeOptions) -> List[Tuple[int, float, float]]:
    """(index, forward step, backward step) per free element.

    A zero backward step means a one-sided difference with the forward step,
    whose sign may be negative when the upper bound leaves no room.
    """
    delta = options.diffp * np.maximum(np.abs(p), np.abs(options.typical_x))
    out: List[Tuple[int, float, float]] = []
    for j in range(p.shape[0]):
        if options.fixed[j]:
            continue
        d = float(delta[j])
        up = float(options.ubound[j] - p[j])
        down = float(p[j] - options.lbound[j])
        if not options.onesided[j] and up >= d and down >= d:
            out.append((j, d, d))
            continue
        if up >= d:
            out.append((j, d, 0.0))
        elif down >= d:
            out.append((j, -d, 0.0))
        elif up >= down:
            out.append((j, up, 0.0))
        else:
            out.append((j, -down, 0.0))
    return out


def estimate_jacobian(
    p: Any,
    func: Callable[..., Any],
    options: DerivativeOptions,
    f0: Any = None,
) -> np.ndarray:
    """Finite-difference Jacobian ``(m, n)`` of a scalar or vector function.

    Central differences where requested and the bounds leave room on both
    sides, one-sided otherwise. Difference steps never leave ``[lbound, ubound]``.
    """
    p = np.asarray(p, dtype=float)
    if f0 is None:
        f0 = options.cache.value(func, p) if options.cache is not None else func(p)
    f0 = _as_values(f0).astype(float)

    steps = _steps(p, options)
    points: List[np.ndarray] = []
    for j, fwd, bwd in steps:
        q = p.copy()
        q[j] += fwd
        points.append(q)
        if bwd:
            q = p.copy()
            q[j] -= bwd
            points.append(q)

    values = iter(_map(options, func, points))
    jac = np.zeros((f0.shape[0], p.shape[0]), dtype=float)
    for j, fwd, bwd in steps:
        f_fwd = _as_values(next(values))
        if bwd:
            f_bwd = _as_values(next(values))
            jac[:, j] = (f_fwd - f_bwd) / (fwd + bwd)
        elif fwd != 0.0:
            jac[:, j] = (f_fwd - f0) / fwd
    return jac


def estimate_gradient(
    p: Any, func: Callable[..., Any], options: DerivativeOptions
) -> np.ndarray:
    """Finite-difference gradient ``(n,)`` of a scalar function."""
    return estimate_jacobian(p, func, options)[0]


def complex_step_jacobian(
    p: Any, func: Callable[..., Any], options: DerivativeOptions
) -> np.ndarray:
    """Complex-step Jacobian ``(m, n)``; ``func`` must accept complex input."""
    p = np.asarray(p, dtype=float)
    h = options.cstep
    free = [j for j in range(p.shape[0]) if not options.fixed[j]]
    points = []
    for j in free:
        q = p.astype(complex)
        q[j] += 1j * h
        points.append(q)
    values = _map(options, func, points)
    if values:
        m = _as_values(values[0]).shape[0]
    else:
        m = _as_values(func(p)).shape[0]
    jac = np.zeros((m, p.shape[0]), dtype=float)
    for j, v in zip(free, values):
        jac[:, j] = np.imag(_as_values(v)) / h
    return jac


def complex_step_gradient(
    p: Any, func: Callable[..., Any], options: DerivativeOptions
) -> np.ndarray:
    return complex_step_jacobian(p, func, options)[0]
