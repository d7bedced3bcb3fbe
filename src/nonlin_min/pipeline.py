"""Ordered transformation of the user-supplied function set.

Every stage is a pure function ``FunctionSet -> FunctionSet``. The frontend
builds the stage list explicitly, so the order in which wrappers are applied
is visible in one place and can be inspected in tests.

Signatures after the index stage:

- ``objective(p) -> float``
- ``gradient(p) -> (n,)``
- ``hessian(p) -> (n, n)``
- ``f_inequc(p, idx=None) -> (k,)`` and ``f_equc`` alike
- ``df_inequc(p, idx=None, values=None) -> (k, n)`` and ``df_equc`` alike

``idx`` is a boolean row mask or ``None`` for all rows. ``values`` optionally
carries the constraint values of the selected rows at ``p``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Sequence, Tuple

__all__ = ["FunctionSet", "Stage", "run_stages", "CONSTRAINT_KINDS"]

logger = logging.getLogger(__name__)

CONSTRAINT_KINDS = ("inequc", "equc")


@dataclass(frozen=True)
class FunctionSet:
    objective: Callable[..., Any]
    gradient: Optional[Callable[..., Any]] = None
    hessian: Optional[Callable[..., Any]] = None
    f_inequc: Optional[Callable[..., Any]] = None
    df_inequc: Optional[Callable[..., Any]] = None
    f_equc: Optional[Callable[..., Any]] = None
    df_equc: Optional[Callable[..., Any]] = None

    def constraint(self, kind: str) -> Tuple[Optional[Callable], Optional[Callable]]:
        """(value function, jacobian function) for ``"inequc"`` or ``"equc"``."""
        return getattr(self, f"f_{kind}"), getattr(self, f"df_{kind}")

    def with_constraint(
        self, kind: str, f: Optional[Callable], df: Optional[Callable]
    ) -> "FunctionSet":
        return replace(self, **{f"f_{kind}": f, f"df_{kind}": df})


Stage = Callable[[FunctionSet], FunctionSet]


def run_stages(functions: FunctionSet, stages: Sequence[Stage]) -> FunctionSet:
    """Apply ``stages`` left to right."""
    for stage in stages:
        logger.debug("applying function stage %s", getattr(stage, "__name__", stage))
        functions = stage(functions)
    return functions
