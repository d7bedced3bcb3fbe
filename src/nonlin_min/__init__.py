"""nonlin_min public API."""
from .backends import AVAILABLE_BACKENDS
from .constraints import ConstraintSpec
from .minimize import MinimizeResult, minimize
from .params import ParameterLayout
from .settings import default_settings, optimset
from .util import null_space

__all__ = [
    "AVAILABLE_BACKENDS",
    "ConstraintSpec",
    "MinimizeResult",
    "ParameterLayout",
    "default_settings",
    "minimize",
    "null_space",
    "optimset",
]
