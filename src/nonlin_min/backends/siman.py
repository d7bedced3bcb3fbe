from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Mapping, Optional

import numpy as np

from ..util import null_space
from .common import (
    BackendResult,
    CountingObjective,
    IterationMonitor,
    OptimizationHook,
    UserStop,
)

logger = logging.getLogger(__name__)


class SimanBackend:
    """Simulated annealing with a Metropolis acceptance rule.

    Schedule: start at ``T_init``, try ``iters_fixed_T`` random steps per
    temperature, divide the temperature by ``mu_T`` until it falls below
    ``T_min``. Steps are uniform within ``+/- max_rand_step`` per element.
    Trials violating an inequality (bounds included) are rejected. Linear
    equality constraints are kept by stepping inside the null space of their
    matrix; general equality constraints are not supported.

    With ``stoch_regain_constr`` an infeasible start is allowed: trials are
    then accepted as long as they do not increase the total constraint
    violation, until a feasible point is reached.

    Codes: 1 cooling finished, 0 ``MaxIter`` trials reached, -1 stopped by
    ``user_interaction``.
    """

    name = "siman"
    path_bounds = True

    def check_options(self, options: Mapping[str, Any]) -> None:
        """Validate the annealing schedule."""
        if float(options.get("mu_T", 1.005)) <= 1.0:
            raise ValueError("'mu_T' must be larger than 1.")
        if float(options.get("T_init", 0.01)) <= 0.0 or float(options.get("T_min", 1.0e-5)) <= 0.0:
            raise ValueError("'T_init' and 'T_min' must be positive.")
        if int(options.get("iters_fixed_T", 10)) < 1:
            raise ValueError("'iters_fixed_T' must be a positive integer.")

    def run(
        self,
        objective: Callable[[np.ndarray], float],
        p0: np.ndarray,
        hook: OptimizationHook,
    ) -> BackendResult:
        cs = hook.constraints
        if cs.n_gen_equ:
            raise NotImplementedError(
                "backend 'siman' does not support general equality constraints."
            )
        opts = hook.options
        self.check_options(opts)
        t_init = float(opts.get("T_init", 0.01))
        t_min = float(opts.get("T_min", 1.0e-5))
        mu_t = float(opts.get("mu_T", 1.005))
        iters_fixed_t = int(opts.get("iters_fixed_T", 10))
        regain = bool(opts.get("stoch_regain_constr", False))
        trace_steps = bool(opts.get("trace_steps", False))
        siman_log = bool(opts.get("siman_log", False))
        save_state = str(opts.get("save_state") or "")
        recover_state = str(opts.get("recover_state") or "")
        rng = np.random.default_rng(opts.get("seed"))

        f = CountingObjective(objective)
        monitor = IterationMonitor(hook, f, self.name)

        p = np.asarray(p0, dtype=float).copy()
        step = hook.max_rand_step.filled(0.005 * np.maximum(np.abs(p), 1.0))

        basis: Optional[np.ndarray] = None
        if cs.n_lin_equ:
            a = cs.mc[:, cs.lin_equ_rows].T
            b = cs.vc[cs.lin_equ_rows]
            # move the start onto the equality constraints
            p = p - np.linalg.pinv(a) @ (a @ p + b)
            basis = null_space(a)

        inequ = ~cs.eq_idx

        def violation(q: np.ndarray) -> float:
            if not np.any(inequ):
                return 0.0
            v = hook.f_cstr(q, inequ)
            return float(np.sum(np.maximum(-v, 0.0)))

        def propose(q: np.ndarray) -> np.ndarray:
            delta = rng.uniform(-1.0, 1.0, size=q.shape) * step
            if basis is not None:
                delta = basis @ (basis.T @ delta)
            return q + delta

        temperature = t_init
        outer = 0
        trace: List[List[float]] = []
        log: List[List[float]] = []
        if recover_state:
            state = _load_state(recover_state)
            p = np.asarray(state["p"], dtype=float).reshape((-1,))
            temperature = float(state["T"])
            outer = int(state["outer"])
            monitor.niter = int(state["niter"])
            logger.debug("siman: resuming from %s at T=%g", recover_state, temperature)

        viol = violation(p)
        if viol > 0.0 and not regain:
            raise ValueError(
                "siman: initial parameters violate inequality constraints "
                "(set 'stoch_regain_constr' to search for a feasible start)."
            )

        fp = f(p)
        best_p, best_f = p.copy(), fp
        n_trials = 0
        max_trials = None if hook.MaxIter is None else int(hook.MaxIter)
        cvg = 1
        try:
            monitor.start(p, fp)
            while temperature >= t_min:
                for inner in range(iters_fixed_t):
                    if max_trials is not None and n_trials >= max_trials:
                        cvg = 0
                        break
                    n_trials += 1
                    q = propose(p)
                    q_viol = violation(q)
                    if viol > 0.0:
                        # regaining feasibility; objective is not consulted
                        if q_viol <= viol:
                            p, viol = q, q_viol
                            if viol == 0.0:
                                fp = f(p)
                                best_p, best_f = p.copy(), fp
                        continue
                    if q_viol > 0.0:
                        continue
                    fq = f(q)
                    if fq <= fp or rng.random() < np.exp(-(fq - fp) / temperature):
                        p, fp = q, fq
                        if fp < best_f:
                            best_p, best_f = p.copy(), fp
                    if trace_steps:
                        trace.append([outer, inner, fp, *p.tolist()])
                if siman_log:
                    log.append([temperature, fp])
                if cvg == 0:
                    break
                temperature /= mu_t
                outer += 1
                if save_state:
                    _save_state(save_state, p, fp, temperature, outer, monitor.niter + 1)
                monitor.step(best_p, best_f)
        except UserStop as stop:
            cvg = -1
            best_p, best_f = stop.p, stop.objf

        if viol > 0.0:
            # never became feasible
            best_p, best_f = p.copy(), fp
            cvg = min(cvg, 0)

        monitor.finish(best_p, best_f, cvg)
        extra: Dict[str, Any] = {"T_final": temperature, "ntrials": n_trials}
        if trace_steps:
            extra["trace"] = np.asarray(trace, dtype=float).reshape((-1, 3 + p.size))
        if siman_log:
            extra["siman_log"] = np.asarray(log, dtype=float).reshape((-1, 2))
        return BackendResult(p=best_p, objf=best_f, cvg=cvg, outp=monitor.outp(**extra))


def _save_state(
    path: str, p: np.ndarray, fp: float, temperature: float, outer: int, niter: int
) -> None:
    np.savez(path, p=p, objf=fp, T=temperature, outer=outer, niter=niter)


def _load_state(path: str) -> Dict[str, Any]:
    if not os.path.exists(path) and os.path.exists(path + ".npz"):
        path = path + ".npz"
    with np.load(path) as data:
        return {k: np.array(data[k]) for k in data.files}
