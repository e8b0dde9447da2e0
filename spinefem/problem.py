"""spinefem.problem
A Problem binds a mesh to its equation numbering, its time stepper and the
Newton / linear solvers, and owns the time-stepping policy.
"""
from __future__ import annotations

import logging
from typing import List, Tuple

import numpy as np

from spinefem.assembly.global_matrix import assemble
from spinefem.core.dofhandler import DofHandler
from spinefem.core.mesh import Mesh
from spinefem.core.topology import Data, Node
from spinefem.fem.element import ContributionFlag
from spinefem.solvers.linear_solver import DirectSolver, LinearSolverParameters, SolverPool
from spinefem.solvers.nonlinear_solver import NewtonParameters, NewtonResult, NewtonSolver
from spinefem.solvers.timestepper import Steady, TimeStepper

logger = logging.getLogger(__name__)

#: pool size used when nobody configured the pool before the first Problem
DEFAULT_POOL_SIZE = 8


class Problem:
    """Mesh + numbering + solvers.

    Subclasses override the ``actions_*`` hooks; the default convergence-check
    hook re-derives node positions from the current spine heights.
    """

    def __init__(
        self,
        mesh: Mesh,
        time_stepper: TimeStepper | None = None,
        newton_params: NewtonParameters | None = None,
        linear_params: LinearSolverParameters | None = None,
    ):
        self.mesh = mesh
        self.time_stepper = time_stepper if time_stepper is not None else Steady()
        self.dof_handler = DofHandler(mesh)
        if not SolverPool.is_setup():
            SolverPool.setup(DEFAULT_POOL_SIZE)
            logger.info(f"SolverPool was not set up; using {DEFAULT_POOL_SIZE} solvers")
        self.linear_solver = DirectSolver(linear_params)
        self.newton_solver = NewtonSolver(self.linear_solver, newton_params)

    @property
    def time(self):
        return self.time_stepper.time

    @property
    def n_dof(self) -> int:
        return self.dof_handler.n_dof

    def close(self) -> None:
        """Return the linear solver's pool handle. Safe to repeat."""
        self.linear_solver.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    # ------------------------------------------------------------------
    #  Numbering and dofs
    # ------------------------------------------------------------------
    def assign_eqn_numbers(self) -> int:
        return self.dof_handler.assign_eqn_numbers()

    def get_dofs(self) -> np.ndarray:
        return self.dof_handler.get_dofs()

    def set_dofs(self, dofs: np.ndarray) -> None:
        self.dof_handler.set_dofs(dofs)

    def add_to_dofs(self, ddofs: np.ndarray, scale: float = 1.0) -> None:
        self.dof_handler.add_to_dofs(ddofs, scale)

    # ------------------------------------------------------------------
    #  Global system
    # ------------------------------------------------------------------
    def get_residuals(self) -> np.ndarray:
        return assemble(self.mesh.elements_list, self.n_dof, ContributionFlag.RESIDUAL)[0]

    def get_jacobian(self):
        R, J, _ = assemble(self.mesh.elements_list, self.n_dof, ContributionFlag.JACOBIAN)
        return R, J

    def get_jacobian_and_mass_matrix(self):
        return assemble(self.mesh.elements_list, self.n_dof, ContributionFlag.MASS_MATRIX)

    # ------------------------------------------------------------------
    #  Hooks
    # ------------------------------------------------------------------
    def actions_before_newton_solve(self) -> None:
        pass

    def actions_after_newton_solve(self) -> None:
        pass

    def actions_before_newton_convergence_check(self) -> None:
        self.mesh.update_nodes()

    # ------------------------------------------------------------------
    #  Initial conditions / history
    # ------------------------------------------------------------------
    def set_initial_condition(self) -> None:
        """Default: leave the current values and start impulsively from them."""
        self.assign_initial_values_impulsive()

    def assign_initial_values_impulsive(self) -> None:
        """Every past value (and position) equals the present one."""
        self.mesh.assign_initial_values_impulsive()

    def shift_time_values(self) -> None:
        self.mesh.shift_time_values()

    def initialise_dt(self, dt: float) -> None:
        self.time.initialise_dt(dt)
        self.time_stepper.set_weights()

    # ------------------------------------------------------------------
    #  Solves
    # ------------------------------------------------------------------
    def newton_solve(self) -> NewtonResult:
        self.dof_handler.validate_eqn_numbers()
        self.actions_before_newton_solve()
        result = self.newton_solver.solve(self)
        self.actions_after_newton_solve()
        self.dof_handler.validate_eqn_numbers()
        return result

    def steady_newton_solve(self) -> NewtonResult:
        """Newton solve at the current time; the stepper decides whether it is steady."""
        return self.newton_solve()

    def _snapshot(self) -> Tuple[List[Tuple[Data, np.ndarray, np.ndarray | None]], tuple]:
        saved = []
        for data in self.mesh.all_data():
            positions = data.positions.copy() if isinstance(data, Node) else None
            saved.append((data, data.values.copy(), positions))
        return saved, self.time.snapshot()

    def _restore(self, snapshot) -> None:
        saved, time_snap = snapshot
        for data, values, positions in saved:
            data.values[...] = values
            if positions is not None:
                data.positions[...] = positions
        self.time.restore(time_snap)
        self.time_stepper.set_weights()

    def unsteady_newton_solve(self, dt: float) -> NewtonResult:
        """Advance by ``dt``; on success rotate the history.

        A failed solve restores values, positions and time of the step start
        and re-raises, so no partial update survives.
        """
        snapshot = self._snapshot()
        try:
            self.time.shift_dt()
            self.time.set_dt(dt)
            self.time.time += dt
            self.time_stepper.set_weights()
            result = self.newton_solve()
        except Exception as exc:
            logger.warning(f"Step to t = {self.time.time:.6g} failed "
                           f"({type(exc).__name__}); restoring t = {snapshot[1][0]:.6g}")
            self._restore(snapshot)
            raise
        self.shift_time_values()
        return result
