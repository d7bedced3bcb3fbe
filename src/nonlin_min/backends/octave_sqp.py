from __future__ import annotations

from typing import Any, Callable, Dict, List

import numpy as np
from scipy.optimize import Bounds, minimize

from .common import (
    BackendResult,
    CountingObjective,
    IterationMonitor,
    OptimizationHook,
    UserStop,
)

_DEFAULT_TOL = float(np.sqrt(np.finfo(float).eps))


class OctaveSqpBackend:
    """Sequential quadratic programming via scipy's ``SLSQP``.

    Bounds are only enforced at the solution. ``octave_sqp_tolerance`` takes
    precedence over ``TolFun`` as the stopping tolerance.

    Codes: 1 success, 0 ``MaxIter`` reached, -1 stopped by
    ``user_interaction``, -4 otherwise.
    """

    name = "octave_sqp"
    path_bounds = False

    def run(
        self,
        objective: Callable[[np.ndarray], float],
        p0: np.ndarray,
        hook: OptimizationHook,
    ) -> BackendResult:
        f = CountingObjective(objective)
        monitor = IterationMonitor(hook, f, self.name)

        rows = hook.rows_except_bounds()
        constraints: List[Dict[str, Any]] = []
        for kind, sel in (("eq", rows & hook.eq_idx), ("ineq", rows & ~hook.eq_idx)):
            if np.any(sel):
                constraints.append(
                    {
                        "type": kind,
                        "fun": lambda p, sel=sel: hook.f_cstr(p, sel),
                        "jac": lambda p, sel=sel: hook.df_cstr(p, sel),
                    }
                )

        bounds = None
        if np.any(np.isfinite(hook.lbound) | np.isfinite(hook.ubound)):
            bounds = Bounds(hook.lbound, hook.ubound)

        tol = hook.options.get("octave_sqp_tolerance")
        if tol is None:
            tol = hook.TolFun if hook.TolFun is not None else _DEFAULT_TOL
        options: Dict[str, Any] = {
            "maxiter": int(hook.MaxIter) if hook.MaxIter is not None else 100,
            "ftol": float(tol),
        }

        def callback(xk):
            monitor.step(xk)

        x0 = np.asarray(p0, dtype=float)
        try:
            monitor.start(x0)
            res = minimize(
                f,
                x0,
                method="SLSQP",
                jac=hook.gradient,
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
        if res.success:
            cvg = 1
        elif int(res.status) == 9:
            cvg = 0
        else:
            cvg = -4
        monitor.finish(p, objf, cvg)
        outp = monitor.outp(message=str(res.message))
        # only reported by recent scipy releases
        outp["lambda"] = getattr(res, "multipliers", None)
        return BackendResult(p=p, objf=objf, cvg=cvg, outp=outp)
