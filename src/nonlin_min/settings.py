"""Settings map handling.

Settings are a plain mapping of option name -> value. Lookup is
case-insensitive, so ``{"algorithm": "siman"}`` and
``{"Algorithm": "siman"}`` are equivalent. Unknown option names are an
error rather than being silently ignored.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

__all__ = ["default_settings", "optimset", "Options"]

CSTEP_DEFAULT = 1e-20

_DEFAULTS: Dict[str, Any] = {
    "param_config": None,
    "param_order": None,
    "param_dims": None,
    "f_inequc_pstruct": False,
    "f_equc_pstruct": False,
    "objf_pstruct": False,
    "df_inequc_pstruct": False,
    "df_equc_pstruct": False,
    "grad_objf_pstruct": False,
    "hessian_objf_pstruct": False,
    "lbound": None,
    "ubound": None,
    "objf_grad": None,
    "objf_hessian": None,
    "inverse_hessian": False,
    "max_fract_change": None,
    # vector; TolX is a scalar
    "fract_prec": None,
    "diffp": None,
    "diff_onesided": None,
    "FinDiffRelStep": None,
    "FinDiffType": None,
    "TypicalX": None,
    "complex_step_derivative_objf": False,
    "complex_step_derivative_inequc": False,
    "complex_step_derivative_equc": False,
    "cstep": CSTEP_DEFAULT,
    "fixed": None,
    "inequc": None,
    "equc": None,
    "f_inequc_idx": False,
    "df_inequc_idx": False,
    "f_equc_idx": False,
    "df_equc_idx": False,
    # None lets each backend apply its own tolerance
    "TolFun": None,
    "TolX": None,
    "MaxIter": None,
    "Display": "off",
    "Algorithm": "lm_feasible",
    "parallel_local": False,
    "parallel_net": None,
    "user_interaction": (),
    "T_init": 0.01,
    "T_min": 1.0e-5,
    "mu_T": 1.005,
    "iters_fixed_T": 10,
    "max_rand_step": None,
    "stoch_regain_constr": False,
    "trace_steps": False,
    "siman_log": False,
    "seed": None,
    "debug": False,
    "FunValCheck": "off",
    "save_state": "",
    "recover_state": "",
    "octave_sqp_tolerance": None,
}

_CANONICAL = {k.lower(): k for k in _DEFAULTS}


def default_settings() -> Dict[str, Any]:
    """Return every recognized option with its default value."""
    return dict(_DEFAULTS)


def optimset(**options: Any) -> Dict[str, Any]:
    """Build a settings mapping, validating option names."""
    return dict(Options(options).explicit())


class Options:
    """Case-insensitive read-only view over a settings mapping."""

    def __init__(self, settings: Optional[Mapping[str, Any]] = None):
        self._given: Dict[str, Any] = {}
        for key, value in dict(settings or {}).items():
            canonical = _CANONICAL.get(str(key).lower())
            if canonical is None:
                raise ValueError(
                    f"Unknown option {key!r}. Available: {tuple(_DEFAULTS.keys())}"
                )
            if canonical in self._given:
                raise ValueError(f"Option {canonical!r} given more than once.")
            self._given[canonical] = value

    def get(self, name: str, default: Any = None) -> Any:
        """Value of ``name``; falls back to ``default``, then to the option default.

        A given value of ``None`` counts as not given, as with an empty
        setting in ``optimset``.
        """
        canonical = _CANONICAL[name.lower()]
        value = self._given.get(canonical)
        if value is not None:
            return value
        if default is not None:
            return default
        return _DEFAULTS[canonical]

    def given(self, name: str) -> bool:
        return self._given.get(_CANONICAL[name.lower()]) is not None

    def explicit(self) -> Dict[str, Any]:
        return dict(self._given)
