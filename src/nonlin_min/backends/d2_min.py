from __future__ import annotations

from typing import Any, Callable, Dict

import numpy as np
from scipy.optimize import Bounds, minimize

from .common import (
    BackendResult,
    CountingObjective,
    IterationMonitor,
    OptimizationHook,
    UserStop,
)


class D2MinBackend:
    """Newton-type minimizer with optional bounds.

    Without finite bounds, uses scipy's ``trust-exact`` with the user's
    Hessian if one is given (the inverse when ``inverse_hessian`` is set),
    ``BFGS`` otherwise. With finite bounds, uses the bounded quasi-Newton
    ``L-BFGS-B``, which keeps every iterate within the bounds and builds its
    own curvature estimate. Linear and general constraints are not supported.
    """

    name = "d2_min"
    path_bounds = True

    def run(
        self,
        objective: Callable[[np.ndarray], float],
        p0: np.ndarray,
        hook: OptimizationHook,
    ) -> BackendResult:
        cs = hook.constraints
        if cs.m > cs.n_bounds:
            raise NotImplementedError(
                "backend 'd2_min' does not support linear or general constraints."
            )

        f = CountingObjective(objective)
        monitor = IterationMonitor(hook, f, self.name)

        lb = np.asarray(hook.lbound, dtype=float)
        ub = np.asarray(hook.ubound, dtype=float)
        bounded = bool(np.any(np.isfinite(lb) | np.isfinite(ub)))

        kw: Dict[str, Any] = {"jac": hook.gradient}
        options: Dict[str, Any] = {}
        if hook.MaxIter is not None:
            options["maxiter"] = int(hook.MaxIter)
        if hook.TolFun is not None:
            options["gtol"] = float(hook.TolFun)
        if bounded:
            method = "L-BFGS-B"
            kw["bounds"] = Bounds(lb, ub)
        elif hook.hessian is not None:
            method = "trust-exact"
            h = hook.hessian
            kw["hess"] = (lambda p: np.linalg.inv(h(p))) if hook.inverse_hessian else h
        else:
            method = "BFGS"

        def callback(xk):
            monitor.step(xk)

        x0 = np.asarray(p0, dtype=float)
        if bounded:
            x0 = np.clip(x0, lb, ub)
        try:
            monitor.start(x0)
            res = minimize(f, x0, method=method, callback=callback, options=options, **kw)
        except UserStop as stop:
            monitor.finish(stop.p, stop.objf, -1)
            return BackendResult(
                p=stop.p,
                objf=stop.objf,
                cvg=-1,
                outp=monitor.outp(message="stopped by user_interaction", method=method),
            )

        p = np.asarray(res.x, dtype=float)
        objf = f(p)
        status = int(res.status)
        cvg = 1 if status == 0 else 0 if status == 1 else -4
        monitor.finish(p, objf, cvg)
        outp = monitor.outp(message=str(res.message), method=method)
        return BackendResult(p=p, objf=objf, cvg=cvg, outp=outp)
