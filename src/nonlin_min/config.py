from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from warnings import warn

import numpy as np

from .params import ParameterLayout
from .settings import Options

__all__ = [
    "OptionalVector",
    "ParameterConfig",
    "resolve_config",
    "VECTOR_ITEMS",
]

# Parameter-related items configurable either per name (param_config) or as
# flat vectors, never both.
VECTOR_ITEMS: Tuple[str, ...] = (
    "lbound",
    "ubound",
    "max_fract_change",
    "fract_prec",
    "diffp",
    "TypicalX",
    "FinDiffRelStep",
    "diff_onesided",
    "fixed",
    "max_rand_step",
)

_BOOL_ITEMS = ("diff_onesided", "fixed")


@dataclass(frozen=True, eq=False)
class OptionalVector:
    """Per-element values, each either given or unset.

    Unset entries hold 0.0 in ``values``; only ``given`` decides whether an
    entry means anything.
    """

    values: np.ndarray
    given: np.ndarray

    @staticmethod
    def unset(n: int) -> "OptionalVector":
        return OptionalVector(np.zeros((n,), dtype=float), np.zeros((n,), dtype=bool))

    @staticmethod
    def from_array(a: Any) -> "OptionalVector":
        """NaN entries become unset."""
        a = np.asarray(a, dtype=float)
        given = ~np.isnan(a)
        return OptionalVector(np.where(given, a, 0.0), given)

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OptionalVector):
            return NotImplemented
        return bool(
            np.array_equal(self.given, other.given)
            and np.array_equal(self.values[self.given], other.values[other.given])
        )

    @property
    def any_given(self) -> bool:
        return bool(np.any(self.given))

    def filled(self, default: Any) -> np.ndarray:
        """Values with unset entries replaced by ``default`` (scalar or vector)."""
        return np.where(self.given, self.values, default)

    def subset(self, idx: Any) -> "OptionalVector":
        return OptionalVector(self.values[idx].copy(), self.given[idx].copy())


@dataclass(frozen=True)
class ParameterConfig:
    """Resolved per-element configuration over the flat parameter space."""

    lbound: np.ndarray
    ubound: np.ndarray
    fixed: np.ndarray
    diff_onesided: np.ndarray
    max_fract_change: OptionalVector
    fract_prec: OptionalVector
    diffp: OptionalVector
    TypicalX: OptionalVector
    max_rand_step: OptionalVector

    @property
    def n(self) -> int:
        return int(self.lbound.shape[0])

    def subset(self, idx: Any) -> "ParameterConfig":
        """Restrict every per-element vector to ``idx`` (mask or indices)."""
        return ParameterConfig(
            lbound=self.lbound[idx].copy(),
            ubound=self.ubound[idx].copy(),
            fixed=self.fixed[idx].copy(),
            diff_onesided=self.diff_onesided[idx].copy(),
            max_fract_change=self.max_fract_change.subset(idx),
            fract_prec=self.fract_prec.subset(idx),
            diffp=self.diffp.subset(idx),
            TypicalX=self.TypicalX.subset(idx),
            max_rand_step=self.max_rand_step.subset(idx),
        )


def resolve_config(
    n: int, options: Options, layout: Optional[ParameterLayout] = None
) -> ParameterConfig:
    """Merge parameter-related settings into flat per-element vectors.

    Reads either ``param_config`` (needs ``layout``) or the flat vector items,
    maps ``FinDiffType``/``FinDiffRelStep`` onto ``diff_onesided``/``diffp``
    and validates the result.
    """
    fd_onesided = _fin_diff_type(options.get("FinDiffType"))

    pconf = options.get("param_config")
    if pconf is not None:
        if any(options.given(item) for item in VECTOR_ITEMS):
            raise ValueError(
                "if param_config is given, its potential items must not be "
                "configured in another way"
            )
        if layout is None:
            raise ValueError(
                "given settings require specification of parameter order or "
                "initial parameters in the form of a structure"
            )
        raw = _from_table(pconf, layout)
    else:
        raw = _from_vectors(n, options)

    fixed = raw["fixed"].filled(0.0).astype(bool)
    diff_onesided = raw["diff_onesided"].filled(0.0).astype(bool)
    diff_onesided_specified = raw["diff_onesided"].any_given
    diffp = raw["diffp"]
    rel_step = raw["FinDiffRelStep"]

    lbound = raw["lbound"].filled(-np.inf)
    ubound = raw["ubound"].filled(np.inf)
    if np.any(lbound > ubound):
        raise ValueError("some lower bounds larger than upper bounds")

    typical = raw["TypicalX"]
    if np.any(typical.given & (typical.values == 0)):
        raise ValueError("TypicalX must not be zero.")

    if fd_onesided is not None:
        if diff_onesided_specified and np.any(diff_onesided != fd_onesided):
            warn("option 'FinDiffType' overrides option 'diff_onesided'", UserWarning)
        diff_onesided = np.full((n,), fd_onesided, dtype=bool)

    if rel_step.any_given:
        if diffp.any_given:
            warn("option 'FinDiffRelStep' overrides option 'diffp'", UserWarning)
        step = np.where(diff_onesided, rel_step.values, rel_step.values / 2.0)
        diffp = OptionalVector(step, rel_step.given.copy())

    cfg = ParameterConfig(
        lbound=lbound,
        ubound=ubound,
        fixed=fixed,
        diff_onesided=diff_onesided,
        max_fract_change=raw["max_fract_change"],
        fract_prec=raw["fract_prec"],
        diffp=diffp,
        TypicalX=typical,
        max_rand_step=raw["max_rand_step"],
    )
    _validate(cfg)
    return cfg


def _validate(cfg: ParameterConfig) -> None:
    if np.any(cfg.diffp.given & (cfg.diffp.values <= 0)):
        raise ValueError("some elements of 'diffp' non-positive")
    if np.any(cfg.fract_prec.given & (cfg.fract_prec.values < 0)):
        raise ValueError("some elements of 'fract_prec' negative")
    if np.any(cfg.max_fract_change.given & (cfg.max_fract_change.values < 0)):
        raise ValueError("some elements of 'max_fract_change' negative")


def _fin_diff_type(value: Any) -> Optional[bool]:
    if value is None:
        return None
    kind = str(value).lower()
    if kind == "forward":
        return True
    if kind == "central":
        return False
    raise ValueError("invalid value of 'FinDiffType'")


def _from_vectors(n: int, options: Options) -> Dict[str, OptionalVector]:
    out: Dict[str, OptionalVector] = {}
    for item in VECTOR_ITEMS:
        value = options.get(item)
        if value is None:
            out[item] = OptionalVector.unset(n)
            continue
        a = np.asarray(value, dtype=float)
        if a.size == 1 and n != 1:
            a = np.full((n,), float(a.reshape(())), dtype=float)
        elif a.shape in ((n,), (n, 1)) or (n == 1 and a.size == 1):
            a = a.reshape((n,))
        else:
            raise ValueError(f"{item}: wrong dimensions")
        if item in _BOOL_ITEMS:
            a = np.where(np.isnan(a), 0.0, a)
        out[item] = OptionalVector.from_array(a)
    return out


def _from_table(
    pconf: Mapping[str, Any], layout: ParameterLayout
) -> Dict[str, OptionalVector]:
    if not isinstance(pconf, Mapping):
        raise TypeError("param_config must be a mapping of parameter name -> settings.")
    unknown = [k for k in pconf if k not in layout.names]
    if unknown:
        raise ValueError(f"param_config: unknown parameter names {unknown}")

    per_item: Dict[str, Dict[str, Any]] = {item: {} for item in VECTOR_ITEMS}
    for name in layout.names:
        entry = pconf.get(name) or {}
        if not isinstance(entry, Mapping):
            raise TypeError(f"param_config[{name!r}] must be a mapping.")
        for field, value in entry.items():
            if field not in per_item:
                raise ValueError(
                    f"param_config[{name!r}]: unknown item {field!r}. "
                    f"Available: {VECTOR_ITEMS}"
                )
            if value is not None:
                per_item[field][name] = value

    out: Dict[str, OptionalVector] = {}
    for item, per_name in per_item.items():
        # names absent from the table stay NaN, i.e. unset
        out[item] = OptionalVector.from_array(layout.expand(per_name, item))
    return out
