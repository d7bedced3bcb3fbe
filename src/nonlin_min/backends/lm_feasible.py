from __future__ import annotations

from typing import Any, Callable, Dict, List

import numpy as np
from scipy.optimize import BFGS, Bounds, NonlinearConstraint, minimize

from .common import (
    BackendResult,
    CountingObjective,
    IterationMonitor,
    OptimizationHook,
    UserStop,
)

# trust-constr status -> convergence code
_CODES = {0: 0, 1: 1, 2: 2}

# relative distance of the start point from an active bound
_START_OFFSET = 1e-3


def _interior_start(x0: np.ndarray, lb: np.ndarray, ub: np.ndarray) -> np.ndarray:
    """Clip ``x0`` into the bounds and move it off bounds it touches.

    The interior point barrier cannot leave a start on a bound. Elements with
    ``lb == ub`` stay at that value.
    """
    x = np.clip(x0, lb, ub)
    width = ub - lb
    step = _START_OFFSET * np.maximum(np.abs(x), 1.0)
    with np.errstate(invalid="ignore"):
        step = np.where(np.isfinite(width), np.minimum(step, 0.5 * width), step)
    open_ = lb < ub
    x = np.where(open_ & (x <= lb), lb + step, x)
    x = np.where(open_ & (x >= ub), ub - step, x)
    return x


class LmFeasibleBackend:
    """Feasible-path minimizer based on scipy's ``trust-constr``.

    Bounds are kept feasible at every iterate. All other stacked constraint
    rows form one ``NonlinearConstraint`` with equality rows pinned to zero.

    Codes: 1 gradient below tolerance, 2 step below ``TolX``, 0 ``MaxIter``
    reached, -1 stopped by ``user_interaction``, -4 otherwise.
    """

    name = "lm_feasible"
    path_bounds = True

    def run(
        self,
        objective: Callable[[np.ndarray], float],
        p0: np.ndarray,
        hook: OptimizationHook,
    ) -> BackendResult:
        f = CountingObjective(objective)
        monitor = IterationMonitor(hook, f, self.name)

        lb = np.asarray(hook.lbound, dtype=float)
        ub = np.asarray(hook.ubound, dtype=float)
        x0 = _interior_start(np.asarray(p0, dtype=float), lb, ub)

        bounds = None
        if np.any(np.isfinite(lb) | np.isfinite(ub)):
            bounds = Bounds(lb, ub, keep_feasible=lb < ub)

        rows = hook.rows_except_bounds()
        constraints: List[NonlinearConstraint] = []
        if np.any(rows):
            eq = hook.eq_idx[rows]
            constraints.append(
                NonlinearConstraint(
                    lambda p: hook.f_cstr(p, rows),
                    np.zeros(eq.shape),
                    np.where(eq, 0.0, np.inf),
                    jac=lambda p: hook.df_cstr(p, rows),
                    hess=BFGS(),
                )
            )

        hess: Any = BFGS()
        if hook.hessian is not None:
            hess = (
                (lambda p: np.linalg.inv(hook.hessian(p)))
                if hook.inverse_hessian
                else hook.hessian
            )

        options: Dict[str, Any] = {
            "maxiter": int(hook.MaxIter) if hook.MaxIter is not None else 1000,
            "gtol": float(hook.TolFun) if hook.TolFun is not None else 1e-8,
            "xtol": float(hook.TolX) if hook.TolX is not None else 1e-8,
        }

        def callback(xk, state):
            monitor.step(xk, state.fun)
            return False

        try:
            monitor.start(x0)
            res = minimize(
                f,
                x0,
                method="trust-constr",
                jac=hook.gradient,
                hess=hess,
                bounds=bounds,
                constraints=constraints,
                callback=callback,
                options=options,
            )
        except UserStop as stop:
            monitor.finish(stop.p, stop.objf, -1)
            return BackendResult(
                p=stop.p,
                objf=stop.objf,
                cvg=-1,
                outp=monitor.outp(message="stopped by user_interaction"),
            )

        p = np.asarray(res.x, dtype=float)
        objf = f(p)
        cvg = _CODES.get(int(res.status), -4)
        multipliers = None
        if constraints and getattr(res, "v", None):
            multipliers = np.asarray(res.v[0], dtype=float)
        monitor.finish(p, objf, cvg)
        outp = monitor.outp(message=str(res.message))
        outp["lambda"] = multipliers
        return BackendResult(p=p, objf=objf, cvg=cvg, outp=outp)
