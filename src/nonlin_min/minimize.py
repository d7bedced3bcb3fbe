"""The ``minimize`` frontend.

One call runs, in order: option lookup, parameter layout, configuration
resolution, constraint parsing, the function stages of
:mod:`nonlin_min.pipeline`, constraint stacking over the free parameters and
finally the selected backend. The backend's flat result is mapped back to the
caller's parameter representation.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

import numpy as np

from .adapter import (
    IndexFlags,
    StructureFlags,
    fun_val_check_stage,
    index_filter_stage,
    numeric_derivative_stage,
    structure_stage,
)
from .backends import get_backend
from .backends.common import OptimizationHook
from .config import VECTOR_ITEMS, resolve_config
from .constraints import (
    ConstraintSpec,
    as_constraint_spec,
    initial_constraint_values,
    linear_part,
    stack_constraints,
)
from .fixed import FixedPartition, fixed_elimination_stage, fold_linear
from .numdiff import DerivativeCache, DerivativeOptions
from .params import ParameterLayout
from .pipeline import FunctionSet, run_stages
from .settings import Options

__all__ = ["MinimizeResult", "minimize"]

logger = logging.getLogger(__name__)

# settings handed to the backends unchanged
_BACKEND_OPTIONS = (
    "T_init",
    "T_min",
    "mu_T",
    "iters_fixed_T",
    "stoch_regain_constr",
    "trace_steps",
    "siman_log",
    "seed",
    "save_state",
    "recover_state",
    "octave_sqp_tolerance",
    "FunValCheck",
    "debug",
)


@dataclass(frozen=True)
class MinimizeResult:
    """Outcome of :func:`minimize`; unpacks as ``p, objf, cvg, outp``.

    ``p`` has the form of the initial parameters: a flat vector, or a mapping
    name -> value if the initial parameters were given as a mapping.
    ``cvg > 0`` means success, ``0`` an exhausted iteration budget, ``< 0``
    failure (``-1`` stop requested by ``user_interaction``).
    """

    p: Any
    objf: float
    cvg: int
    outp: Dict[str, Any] = field(default_factory=dict)

    def __iter__(self) -> Iterator[Any]:
        return iter((self.p, self.objf, self.cvg, self.outp))

    @property
    def success(self) -> bool:
        return self.cvg > 0

    def summary(self, digits: int = 6) -> str:
        """Return a human-readable summary string."""
        lines = [
            f"MinimizeResult(backend={self.outp.get('backend', '')!r}, "
            f"cvg={self.cvg}, objf={self.objf:.{digits}g})"
        ]
        if isinstance(self.p, Mapping):
            items = list(self.p.items())
        else:
            items = [(f"p[{i}]", v) for i, v in enumerate(np.asarray(self.p))]
        for name, v in items:
            a = np.asarray(v, dtype=float)
            if a.shape == ():
                lines.append(f"  {name:>12s}: {float(a):.{digits}g}")
            else:
                vals = ", ".join(f"{x:.{digits}g}" for x in a.reshape((-1,)))
                lines.append(f"  {name:>12s}: [{vals}]")
        for key in ("niter", "nobjf"):
            if key in self.outp:
                lines.append(f"  {key:>12s}: {self.outp[key]}")
        return "\n".join(lines)


def _structure_flags(options: Options) -> StructureFlags:
    # derivative flags default to the flag of their value function
    objf = bool(options.get("objf_pstruct"))
    f_inequc = bool(options.get("f_inequc_pstruct"))
    f_equc = bool(options.get("f_equc_pstruct"))

    def flag(name: str, default: bool) -> bool:
        return bool(options.get(name)) if options.given(name) else default

    return StructureFlags(
        objf=objf,
        grad_objf=flag("grad_objf_pstruct", objf),
        hessian_objf=flag("hessian_objf_pstruct", objf),
        f_inequc=f_inequc,
        df_inequc=flag("df_inequc_pstruct", f_inequc),
        f_equc=f_equc,
        df_equc=flag("df_equc_pstruct", f_equc),
    )


def _resolve_layout(
    initial: Any,
    options: Options,
    functions: FunctionSet,
    flags: StructureFlags,
    inequc: ConstraintSpec,
    equc: ConstraintSpec,
) -> Tuple[Optional[ParameterLayout], np.ndarray, bool]:
    """(layout or None, flat initial vector, whether input was a mapping)."""
    structured_input = isinstance(initial, Mapping)
    order = options.get("param_order")
    dims = options.get("param_dims")

    needs_order = (
        structured_input
        or options.given("param_config")
        or flags.any
        or inequc.structured_matrix
        or equc.structured_matrix
    )
    if not needs_order:
        pin = _initial_vector(initial)
        return None, pin, False

    if order is None:
        if not structured_input:
            raise ValueError(
                "given settings require specification of parameter order or "
                "initial parameters in the form of a structure"
            )
        any_vector_conf = any(options.given(item) for item in VECTOR_ITEMS)
        all_structured = (
            flags.objf
            and (flags.f_inequc or functions.f_inequc is None)
            and (flags.f_equc or functions.f_equc is None)
            and (flags.grad_objf or functions.gradient is None)
            and (flags.hessian_objf or functions.hessian is None)
            and (flags.df_inequc or functions.df_inequc is None)
            and (flags.df_equc or functions.df_equc is None)
            and (inequc.structured_matrix or not inequc.has_linear)
            and (equc.structured_matrix or not equc.has_linear)
        )
        if any_vector_conf or not all_structured:
            raise ValueError(
                "no parameter order specified and constructing a parameter order "
                "from the structure of initial parameters can not be done since "
                "not all configuration or given functions are structure based"
            )

    if structured_input:
        layout = ParameterLayout.from_mapping(initial, order=order, dims=dims)
        return layout, layout.flatten(initial).astype(float), True

    layout = ParameterLayout.from_order(order, dims)
    pin = _initial_vector(initial)
    if pin.shape[0] != layout.n:
        raise ValueError("number of initial parameters not correct")
    return layout, pin, False


def _initial_vector(initial: Any) -> np.ndarray:
    a = np.asarray(initial, dtype=float)
    if a.ndim == 2 and a.shape[1] == 1:
        a = a[:, 0]
    if a.ndim != 1:
        raise ValueError(
            "initial parameters must be either a structure or a column vector"
        )
    return a.copy()


@contextmanager
def _executor(options: Options) -> Iterator[Optional[Executor]]:
    local = options.get("parallel_local")
    net = options.get("parallel_net")
    if local and net is not None:
        raise ValueError("only one of 'parallel_local' and 'parallel_net' may be set")
    if net is not None:
        if not isinstance(net, Executor):
            raise TypeError("'parallel_net' must be a concurrent.futures.Executor.")
        yield net
        return
    if not local:
        yield None
        return
    workers = None if isinstance(local, bool) else int(local)
    if workers is not None and workers < 1:
        raise ValueError("'parallel_local' must be True or a positive worker count.")
    with ThreadPoolExecutor(max_workers=workers) as pool:
        yield pool


def _check_derivative_requests(options: Options, inequc: ConstraintSpec, equc: ConstraintSpec) -> None:
    if options.get("complex_step_derivative_objf") and options.given("objf_grad"):
        raise ValueError(
            "both 'complex_step_derivative_objf' and 'objf_grad' are set"
        )
    for kind, spec in (("inequc", inequc), ("equc", equc)):
        if options.get(f"complex_step_derivative_{kind}") and spec.jacobian is not None:
            raise ValueError(
                f"both 'complex_step_derivative_{kind}' and a jacobian of "
                f"'{kind}' are set"
            )


def minimize(
    objective: Callable[..., Any],
    initial_parameters: Any,
    settings: Optional[Mapping[str, Any]] = None,
) -> MinimizeResult:
    """Minimize a scalar objective under bounds and constraints.

    Parameters
    ----------
    objective:
        ``objective(p) -> float``; ``p`` is a flat vector, or a mapping
        name -> value when ``objf_pstruct`` is set.
    initial_parameters:
        Flat vector, or a mapping name -> array-like.
    settings:
        Mapping of options; see :func:`nonlin_min.default_settings`.
        Keys are case-insensitive.

    Configuration errors raise ``ValueError``/``TypeError`` before the
    objective is evaluated. Convergence problems are reported through
    ``cvg``, never raised.
    """
    if not callable(objective):
        raise TypeError("objective must be callable.")
    options = Options(settings)
    debug = bool(options.get("debug"))
    display = str(options.get("Display")).lower()
    if display not in ("off", "iter", "final"):
        raise ValueError(f"invalid value of 'Display': {display!r}")

    inequc = as_constraint_spec(options.get("inequc"), "inequc")
    equc = as_constraint_spec(options.get("equc"), "equc")
    functions = FunctionSet(
        objective=objective,
        gradient=options.get("objf_grad"),
        hessian=options.get("objf_hessian"),
        f_inequc=inequc.function,
        df_inequc=inequc.jacobian,
        f_equc=equc.function,
        df_equc=equc.jacobian,
    )
    flags = _structure_flags(options).corrected(functions)
    layout, pin, structured_input = _resolve_layout(
        initial_parameters, options, functions, flags, inequc, equc
    )
    n = int(pin.shape[0])

    cstep = float(options.get("cstep"))
    if not cstep > 0.0:
        raise ValueError("'cstep' must be positive")
    tol_fun = options.get("TolFun")
    if tol_fun is not None and float(tol_fun) < 0.0:
        raise ValueError("'TolFun' must not be negative")
    _check_derivative_requests(options, inequc, equc)

    backend = get_backend(options.get("Algorithm"))
    backend_options = {k: options.get(k) for k in _BACKEND_OPTIONS}
    check_options = getattr(backend, "check_options", None)
    if check_options is not None:
        check_options(backend_options)
    cfg = resolve_config(n, options, layout)
    lin_inequ = linear_part(inequc, n, "inequc", layout)
    lin_equ = linear_part(equc, n, "equc", layout)

    # all-fixed check happens here, before any user function is called
    partition = FixedPartition.from_config(cfg, pin)

    if backend.path_bounds:
        jac_lbound, jac_ubound = cfg.lbound, cfg.ubound
    else:
        jac_lbound, jac_ubound = np.full((n,), -np.inf), np.full((n,), np.inf)

    if debug:
        logger.debug(
            "nonlin_min: backend %s, %d parameters (%d free), structured input: %s",
            backend.name,
            n,
            partition.n_free,
            structured_input,
        )

    cache = DerivativeCache()
    with _executor(options) as executor:
        cache.reset()
        deriv = DerivativeOptions.from_config(
            cfg,
            lbound=jac_lbound,
            ubound=jac_ubound,
            cstep=cstep,
            executor=executor,
            cache=cache,
        )
        full = run_stages(
            functions,
            [
                structure_stage(layout, flags),
                index_filter_stage(
                    IndexFlags(
                        f_inequc=bool(options.get("f_inequc_idx")),
                        df_inequc=bool(options.get("df_inequc_idx")),
                        f_equc=bool(options.get("f_equc_idx")),
                        df_equc=bool(options.get("df_equc_idx")),
                    )
                ),
                numeric_derivative_stage(
                    deriv,
                    complex_step_objf=bool(options.get("complex_step_derivative_objf")),
                    complex_step_inequc=bool(
                        options.get("complex_step_derivative_inequc")
                    ),
                    complex_step_equc=bool(options.get("complex_step_derivative_equc")),
                ),
                fun_val_check_stage(str(options.get("FunValCheck")).lower() == "on"),
            ],
        )

        # values at the full initial point, also fixing the general row counts
        pin_cstr = initial_constraint_values(
            pin, lin_inequ, lin_equ, full.f_inequc, full.f_equc
        )
        reduced = run_stages(full, [fixed_elimination_stage(partition)])
        lin_inequ_free = fold_linear(*lin_inequ, partition)
        lin_equ_free = fold_linear(*lin_equ, partition)
        free_cfg = cfg.subset(partition.free)

        stacked = stack_constraints(
            lbound=free_cfg.lbound,
            ubound=free_cfg.ubound,
            lin_inequ=lin_inequ_free,
            lin_equ=lin_equ_free,
            f_inequc=reduced.f_inequc,
            df_inequc=reduced.df_inequc,
            f_equc=reduced.f_equc,
            df_equc=reduced.df_equc,
            n_gen_inequ=int(pin_cstr["inequ"]["gen"].shape[0]),
            n_gen_equ=int(pin_cstr["equ"]["gen"].shape[0]),
        )
        if debug:
            logger.debug(
                "nonlin_min: %d constraint rows (%d bounds, %d linear, %d general), "
                "%d equalities",
                stacked.m,
                stacked.n_bounds,
                stacked.n_lin_inequ + stacked.n_lin_equ,
                stacked.n_gen,
                int(np.sum(stacked.eq_idx)),
            )

        max_iter = options.get("MaxIter")
        user_interaction = options.get("user_interaction")
        if callable(user_interaction):
            user_interaction = (user_interaction,)
        hook = OptimizationHook(
            constraints=stacked,
            gradient=reduced.gradient,
            hessian=reduced.hessian,
            lbound=free_cfg.lbound,
            ubound=free_cfg.ubound,
            max_fract_change=free_cfg.max_fract_change,
            fract_prec=free_cfg.fract_prec,
            max_rand_step=free_cfg.max_rand_step,
            TolFun=None if tol_fun is None else float(tol_fun),
            TolX=options.get("TolX"),
            MaxIter=None if max_iter is None else int(max_iter),
            inverse_hessian=bool(options.get("inverse_hessian")),
            display=display,
            user_interaction=tuple(user_interaction),
            pin_cstr=pin_cstr,
            options=backend_options,
        )

        result = backend.run(reduced.objective, partition.reduce(pin), hook)

    p_full = partition.expand(result.p)
    p_out: Any = layout.unflatten(p_full) if structured_input else p_full
    outp = dict(result.outp)
    outp.setdefault("backend", backend.name)
    if debug:
        outp["derivative_cache_hits"] = cache.hits
    if display in ("final", "iter"):
        logger.info(
            "nonlin_min: %s finished with cvg=%d, objf=%.10g",
            backend.name,
            result.cvg,
            result.objf,
        )
    return MinimizeResult(p=p_out, objf=float(result.objf), cvg=int(result.cvg), outp=outp)
