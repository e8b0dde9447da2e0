r"""
nonlinear_solver.py  -  Newton driver for spine-coupled systems
===============================================================
The solver knows nothing about elements or meshes. It talks to a *system*
(normally a :class:`spinefem.problem.Problem`) through four calls:

``get_residuals()``, ``get_jacobian()``
    assembled global residual, and residual plus sparse Jacobian;
``add_to_dofs(ddofs, scale)``
    apply an increment to every unknown;
``actions_before_newton_convergence_check()``
    re-derive anything that depends on the unknowns (node positions from
    spine heights) before the residual is looked at again.

Each iteration walks ``ASSEMBLING -> LINEAR_SOLVING -> UPDATING ->
MESH_SYNCING -> CONVERGENCE_CHECK``; the residual that decides convergence
is always evaluated on the resynchronised mesh.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

import numpy as np

from spinefem.errors import NewtonFailure, NewtonSolverError

if TYPE_CHECKING:
    from spinefem.solvers.linear_solver import DirectSolver

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------------
#  Parameter dataclasses
# ----------------------------------------------------------------------------
@dataclass
class NewtonParameters:
    """Settings that govern a *single* Newton solve."""

    newton_tol: float = 1e-8            # |R|_inf convergence threshold
    max_newton_iter: int = 10           # hard cap on Newton iterations
    max_residual: float = 10.0          # |R|_inf above this is divergence
    abort_on_max_residual: bool = True


class NewtonState(Enum):
    ASSEMBLING = "assembling"
    LINEAR_SOLVING = "linear_solving"
    UPDATING = "updating"
    MESH_SYNCING = "mesh_syncing"
    CONVERGENCE_CHECK = "convergence_check"
    CONVERGED = "converged"
    FAILED = "failed"


@dataclass
class NewtonResult:
    iterations: int
    residual_norms: List[float] = field(default_factory=list)
    assembly_time: float = 0.0
    linear_solve_time: float = 0.0

    @property
    def final_residual(self) -> float:
        return self.residual_norms[-1]


class NewtonSolver:
    """Plain Newton iteration with mesh resynchronisation after each update."""

    def __init__(self, linear_solver: "DirectSolver", params: NewtonParameters | None = None):
        self.linear_solver = linear_solver
        self.np = params if params is not None else NewtonParameters()
        self.state_history: List[NewtonState] = []
        self.last_result: Optional[NewtonResult] = None

    def _enter(self, state: NewtonState) -> None:
        self.state_history.append(state)

    def _check_residual(self, result: NewtonResult, norm_R: float, it: int) -> bool:
        """True when converged; raises on divergence."""
        result.residual_norms.append(norm_R)
        if norm_R < self.np.newton_tol:
            self._enter(NewtonState.CONVERGED)
            logger.info(f"Newton converged in {it} iteration(s): |R|_inf = {norm_R:.2e}")
            return True
        if not np.isfinite(norm_R) or (self.np.abort_on_max_residual and norm_R > self.np.max_residual):
            self._fail(NewtonFailure.MAX_RESIDUAL_EXCEEDED, it, norm_R)
        return False

    def _fail(self, reason: NewtonFailure, it: int, norm_R: float):
        self._enter(NewtonState.FAILED)
        logger.warning(f"Newton failed ({reason.value}) after {it} iteration(s): |R|_inf = {norm_R:.2e}")
        raise NewtonSolverError(reason, it, norm_R)

    def solve(self, system) -> NewtonResult:
        """Drive ``system`` to ``|R|_inf < newton_tol``.

        Raises NewtonSolverError when ``max_newton_iter`` iterations do not
        converge or the residual exceeds ``max_residual``; the system is then
        left at the last iterate and it is the caller's job to roll back.
        """
        self.state_history = []
        result = NewtonResult(iterations=0)
        self.last_result = result

        # the unknowns may have been touched since the mesh was last synced
        self._enter(NewtonState.MESH_SYNCING)
        system.actions_before_newton_convergence_check()
        self._enter(NewtonState.CONVERGENCE_CHECK)
        norm_R = float(np.linalg.norm(system.get_residuals(), ord=np.inf))
        logger.info(f"Newton 0: |R|_inf = {norm_R:.2e}")
        if self._check_residual(result, norm_R, 0):
            return result

        for it in range(1, self.np.max_newton_iter + 1):
            self._enter(NewtonState.ASSEMBLING)
            t0 = time.perf_counter()
            R, J = system.get_jacobian()
            t1 = time.perf_counter()

            self._enter(NewtonState.LINEAR_SOLVING)
            dx = self.linear_solver.solve(J, R)
            t2 = time.perf_counter()

            self._enter(NewtonState.UPDATING)
            system.add_to_dofs(dx, -1.0)

            self._enter(NewtonState.MESH_SYNCING)
            system.actions_before_newton_convergence_check()

            self._enter(NewtonState.CONVERGENCE_CHECK)
            norm_R = float(np.linalg.norm(system.get_residuals(), ord=np.inf))
            result.iterations = it
            result.assembly_time += t1 - t0
            result.linear_solve_time += t2 - t1
            logger.info(f"Newton {it}: |R|_inf = {norm_R:.2e}, |dx|_inf = "
                        f"{np.linalg.norm(dx, ord=np.inf):.2e}")
            logger.debug(f"          timings: assembly={t1 - t0:.3e}s, solve={t2 - t1:.3e}s")
            if self._check_residual(result, norm_R, it):
                return result

        self._fail(NewtonFailure.MAX_ITERATIONS_EXCEEDED, self.np.max_newton_iter, norm_R)
