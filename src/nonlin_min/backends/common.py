from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

import numpy as np

from ..config import OptionalVector
from ..constraints import StackedConstraints

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendResult:
    """Normalized result returned by any backend."""

    p: np.ndarray  # free parameters, shape (P,)
    objf: float
    cvg: int
    outp: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OptimizationHook:
    """Everything a backend gets besides the objective and the start point.

    All vectors and functions live in the free parameter subspace. Bound rows
    are part of the stacked constraints; ``lbound``/``ubound`` repeat them
    for solvers with native bound handling.
    """

    constraints: StackedConstraints
    gradient: Callable[[np.ndarray], np.ndarray]
    hessian: Optional[Callable[[np.ndarray], np.ndarray]]
    lbound: np.ndarray
    ubound: np.ndarray
    max_fract_change: OptionalVector
    fract_prec: OptionalVector
    max_rand_step: OptionalVector
    TolFun: Optional[float] = None
    TolX: Optional[float] = None
    MaxIter: Optional[int] = None
    inverse_hessian: bool = False
    display: str = "off"
    user_interaction: Tuple[Callable[..., Any], ...] = ()
    pin_cstr: Mapping[str, Mapping[str, np.ndarray]] = field(default_factory=dict)
    # algorithm specific settings (annealing schedule, checkpoint paths, ...)
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def f_cstr(self) -> Callable[..., np.ndarray]:
        return self.constraints.f_cstr

    @property
    def df_cstr(self) -> Callable[..., np.ndarray]:
        return self.constraints.df_cstr

    @property
    def eq_idx(self) -> np.ndarray:
        return self.constraints.eq_idx

    def rows_except_bounds(self) -> np.ndarray:
        """Row mask of the stacked constraints without the bound rows."""
        mask = np.ones((self.constraints.m,), dtype=bool)
        mask[: self.constraints.n_bounds] = False
        return mask


class Backend(Protocol):
    """Backend protocol: minimize one objective over the free parameters."""

    name: str
    # whether every iterate respects the bounds
    path_bounds: bool
    # backends may also define check_options(options), called before any
    # user function to reject invalid backend settings

    def run(
        self,
        objective: Callable[[np.ndarray], float],
        p0: np.ndarray,
        hook: OptimizationHook,
    ) -> BackendResult: ...


class UserStop(Exception):
    """Raised from inside a solver loop when a user_interaction function asks to stop."""

    def __init__(self, p: np.ndarray, objf: float):
        super().__init__("stopped by user_interaction")
        self.p = np.array(p, dtype=float, copy=True)
        self.objf = float(objf)


class CountingObjective:
    """Objective wrapper counting evaluations; repeats at the last point are free."""

    def __init__(self, f: Callable[[np.ndarray], Any]):
        self._f = f
        self.count = 0
        self._last: Optional[Tuple[np.ndarray, float]] = None

    def __call__(self, p: Any) -> float:
        p = np.asarray(p, dtype=float)
        if self._last is not None and np.array_equal(self._last[0], p):
            return self._last[1]
        v = float(self._f(p))
        self.count += 1
        self._last = (p.copy(), v)
        return v


class IterationMonitor:
    """Iteration bookkeeping shared by the backends.

    Counts iterations, logs them according to ``Display`` and calls the
    ``user_interaction`` functions, which receive
    ``(p, optimvalues, state)`` and return a stop flag or ``(stop, info)``.
    """

    def __init__(self, hook: OptimizationHook, objective: CountingObjective, name: str):
        self.hook = hook
        self.objective = objective
        self.name = name
        self.niter = 0
        self._stop: List[bool] = []
        self._info: List[Any] = []

    def _optimvalues(self, fval: float) -> Dict[str, Any]:
        return {
            "iteration": self.niter,
            "fval": fval,
            "funccount": self.objective.count,
        }

    def _interact(self, p: np.ndarray, fval: float, state: str) -> bool:
        if not self.hook.user_interaction:
            return False
        stop: List[bool] = []
        info: List[Any] = []
        for fn in self.hook.user_interaction:
            ret = fn(np.array(p, dtype=float, copy=True), self._optimvalues(fval), state)
            if isinstance(ret, tuple):
                stop.append(bool(ret[0]))
                info.append(ret[1] if len(ret) > 1 else None)
            else:
                stop.append(bool(ret))
                info.append(None)
        # the record reports the call that decided about stopping
        if state != "done":
            self._stop, self._info = stop, info
        return any(stop)

    def start(self, p: np.ndarray, fval: Optional[float] = None) -> None:
        fval = self.objective(p) if fval is None else float(fval)
        if self._interact(p, fval, "init"):
            raise UserStop(p, fval)

    def step(self, p: np.ndarray, fval: Optional[float] = None) -> None:
        self.niter += 1
        fval = self.objective(p) if fval is None else float(fval)
        if self.hook.display == "iter":
            logger.info("%s: iteration %d, objective %.10g", self.name, self.niter, fval)
        if self._interact(p, fval, "iter"):
            raise UserStop(p, fval)

    def finish(self, p: np.ndarray, fval: float, cvg: int) -> None:
        self._interact(p, fval, "done")
        if self.hook.display in ("iter", "final"):
            logger.info(
                "%s: finished with code %d after %d iterations, objective %.10g",
                self.name,
                cvg,
                self.niter,
                fval,
            )

    def outp(self, **extra: Any) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "niter": self.niter,
            "nobjf": self.objective.count,
            "lambda": None,
            "user_interaction": {"stop": list(self._stop), "info": list(self._info)},
            "backend": self.name,
        }
        out.update(extra)
        return out
