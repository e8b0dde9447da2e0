"""spinefem.errors
Exception hierarchy shared by the whole package.
"""
from __future__ import annotations

from enum import Enum


class SpinefemError(Exception):
    """Base class of every error raised by spinefem."""


# ----------------------------------------------------------------------------
#  Configuration errors
# ----------------------------------------------------------------------------
class ConfigurationError(SpinefemError):
    """Invalid set-up: bad parameters, stale equation numbering, ..."""


class FieldIndexError(ConfigurationError, IndexError):
    """A value index outside the range stored by a Data / Node."""

    def __init__(self, index: int, n_value: int, owner: str = "Data"):
        self.index = index
        self.n_value = n_value
        super().__init__(
            f"{owner} stores {n_value} value(s); index {index} is out of range."
        )


class UnsupportedVariantError(ConfigurationError):
    """An operation variant the receiving type does not implement."""

    def __init__(self, owner: str, capability):
        self.owner = owner
        self.capability = capability
        super().__init__(f"{owner} does not support {getattr(capability, 'name', capability)}.")


# ----------------------------------------------------------------------------
#  Solver pool / linear solver
# ----------------------------------------------------------------------------
class SolverPoolError(SpinefemError):
    """Misuse of the solver pool (unknown or doubly returned handle)."""


class SolverPoolNotSetupError(SolverPoolError):
    """A handle was requested before ``SolverPool.setup`` was called."""


class SolverPoolExhaustedError(SolverPoolError):
    """Every handle of the pool is held by a live solver."""


class NoFactorizationError(SpinefemError):
    """Back-substitution requested without a live factorization."""


class NonCopyableError(SpinefemError, TypeError):
    """Attempt to duplicate an object that owns a unique resource."""


# ----------------------------------------------------------------------------
#  Numerical failure
# ----------------------------------------------------------------------------
class NewtonFailure(Enum):
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"
    MAX_RESIDUAL_EXCEEDED = "max_residual_exceeded"


class NewtonSolverError(SpinefemError):
    """Newton iteration failed; the current time step must be discarded."""

    def __init__(self, reason: NewtonFailure, iterations: int, residual_norm: float):
        self.reason = reason
        self.iterations = iterations
        self.residual_norm = residual_norm
        super().__init__(
            f"Newton solver failed ({reason.value}) after {iterations} iteration(s); "
            f"|R|_inf = {residual_norm:.3e}"
        )
