"""Backend implementations + registry."""

from __future__ import annotations

from typing import Dict

from .common import Backend, BackendResult, OptimizationHook
from .d2_min import D2MinBackend
from .lm_feasible import LmFeasibleBackend
from .octave_sqp import OctaveSqpBackend
from .siman import SimanBackend

_BACKENDS: Dict[str, Backend] = {
    "lm_feasible": LmFeasibleBackend(),
    "octave_sqp": OctaveSqpBackend(),
    "siman": SimanBackend(),
    "d2_min": D2MinBackend(),
}


def get_backend(name: str) -> Backend:
    """Return a backend implementation by algorithm name."""
    try:
        return _BACKENDS[str(name).lower()]
    except KeyError as e:
        raise ValueError(
            f"no backend implemented for algorithm {name!r}. "
            f"Available: {tuple(_BACKENDS.keys())}"
        ) from e


AVAILABLE_BACKENDS = tuple(_BACKENDS.keys())

__all__ = [
    "AVAILABLE_BACKENDS",
    "Backend",
    "BackendResult",
    "OptimizationHook",
    "get_backend",
]
