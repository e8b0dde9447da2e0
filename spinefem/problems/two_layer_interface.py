"""spinefem.problems.two_layer_interface
Relaxation of a perturbed interface between two fluid layers in a closed
rectangular box.

Both walls are slippery (no penetration only), the top and bottom are
impermeable. The interface starts at ``h1 + epsilon * mode(x)`` with the
fluid at rest and relaxes under surface tension and gravity.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np

from spinefem.core.two_layer_mesh import BOTTOM, TOP, TwoLayerSpineMesh
from spinefem.fem.interface import FluidInterface, InterfaceParameters
from spinefem.fem.navier_stokes import (
    FluidProperties,
    NavierStokes,
    NavierStokesParameters,
    fix_pressure,
)
from spinefem.io.trace import ContactAngleFct, TraceWriter, write_solution
from spinefem.logging_config import setup_logging
from spinefem.problem import Problem
from spinefem.solvers.linear_solver import LinearSolverParameters, SolverPool
from spinefem.solvers.nonlinear_solver import NewtonParameters
from spinefem.solvers.timestepper import BDF2, TimeStepper, TimeStepperParameters

logger = logging.getLogger(__name__)


def default_physical_parameters() -> NavierStokesParameters:
    """Re = Re St = Re/Fr = 5 with gravity pointing down."""
    return NavierStokesParameters(re=5.0, re_st=5.0, re_inv_fr=5.0, g=np.array([0.0, -1.0]))


@dataclass
class TwoLayerRunParameters:
    n_x: int = 16
    n_y1: int = 12
    n_y2: int = 12
    l_x: float = 1.0
    h1: float = 1.0
    h2: float = 1.0
    epsilon: float = 0.2


class TwoLayerInterfaceProblem(Problem):
    """Two fluid layers on a spine mesh, Crouzeix-Raviart bulk elements."""

    def __init__(
        self,
        n_x: int,
        n_y1: int,
        n_y2: int,
        l_x: float,
        h1: float,
        h2: float,
        ns_params: NavierStokesParameters | None = None,
        interface_params: InterfaceParameters | None = None,
        upper_fluid: FluidProperties | None = None,
        time_stepper: TimeStepper | None = None,
        newton_params: NewtonParameters | None = None,
        linear_params: LinearSolverParameters | None = None,
    ):
        time_stepper = time_stepper if time_stepper is not None else BDF2()
        self.ns_params = ns_params if ns_params is not None else default_physical_parameters()
        self.interface_params = interface_params if interface_params is not None else InterfaceParameters()
        self.lower_fluid = FluidProperties()
        self.upper_fluid = upper_fluid if upper_fluid is not None else FluidProperties()

        mesh = TwoLayerSpineMesh(
            n_x, n_y1, n_y2, l_x, h1, h2, time_stepper,
            NavierStokes(self.ns_params, self.lower_fluid),
            NavierStokes(self.ns_params, self.upper_fluid),
            FluidInterface(self.interface_params),
        )
        super().__init__(mesh, time_stepper, newton_params, linear_params)
        self.l_x = l_x
        self.h1 = h1

        # no penetration on every wall, slip along the side walls
        for b in range(mesh.n_boundary):
            for node in mesh.boundary_nodes(b):
                node.pin(0)
                if b in (BOTTOM, TOP):
                    node.pin(1)
        fix_pressure(mesh.lower_elements[0], 0, 0.0)

        n_dof = self.assign_eqn_numbers()
        logger.info(f"TwoLayerInterfaceProblem: {n_dof} unknowns")

    # ------------------------------------------------------------------
    def set_initial_condition(self) -> None:
        """Fluid at rest, impulsive start."""
        for node in self.mesh.nodes_list:
            for i in range(2):
                node.set_value(i, 0.0)
        self.assign_initial_values_impulsive()

    def default_mode(self, x: float) -> float:
        return float(np.cos(np.pi * x / self.l_x))

    def deform_free_surface(self, epsilon: float, mode: Optional[Callable[[float], float]] = None) -> None:
        """Set every spine to ``h1 + epsilon * mode(x)`` and move the nodes."""
        mode = mode if mode is not None else self.default_mode
        for spine in self.mesh.spines:
            spine.height = self.h1 + epsilon * mode(spine.base[0])
        self.mesh.update_nodes()

    def perturbation_amplitude(self) -> float:
        """Half the peak-to-peak spread of the interface heights."""
        h = self.mesh.interface_heights()
        return 0.5 * float(h.max() - h.min())

    # ------------------------------------------------------------------
    def doc_solution(self, trace: TraceWriter, out_dir: Union[str, Path, None] = None,
                     number: int = 0, n_plot: int = 5) -> None:
        logger.info(f"Time is now {self.time.time:.6g}")
        trace.write(self.time.time, self.mesh)
        if out_dir is not None:
            write_solution(Path(out_dir) / f"soln{number}.dat", self.mesh, n_plot)

    def unsteady_run(
        self,
        t_max: float,
        dt: float,
        epsilon: float = 0.2,
        mode: Optional[Callable[[float], float]] = None,
        trace: TraceWriter | None = None,
        out_dir: Union[str, Path, None] = None,
    ) -> TraceWriter:
        """Deform, start from rest and take ``int(t_max/dt)`` fixed steps."""
        trace = trace if trace is not None else TraceWriter()
        self.deform_free_surface(epsilon, mode)
        self.initialise_dt(dt)
        self.set_initial_condition()

        run = TimeStepperParameters(dt=dt, t_max=t_max)
        number = 0
        self.doc_solution(trace, out_dir, number)
        for step in range(1, run.n_steps + 1):
            logger.info(f"Timestep {step} of {run.n_steps}")
            self.unsteady_newton_solve(dt)
            number += 1
            self.doc_solution(trace, out_dir, number)
        return trace


def main(
    t_max: float = 0.8,
    dt: float = 0.005,
    run: TwoLayerRunParameters | None = None,
    ca: float = 0.01,
    out_dir: Union[str, Path] = "RESLT",
    contact_angles: Optional[ContactAngleFct] = None,
) -> TraceWriter:
    """Run the relaxation and write ``trace.dat`` and ``soln*.dat`` into ``out_dir``."""
    setup_logging()
    run = run if run is not None else TwoLayerRunParameters()
    if not SolverPool.is_setup():
        SolverPool.setup(1)
    with TwoLayerInterfaceProblem(
        run.n_x, run.n_y1, run.n_y2, run.l_x, run.h1, run.h2,
        interface_params=InterfaceParameters(ca=ca),
    ) as problem, TraceWriter(Path(out_dir) / "trace.dat", contact_angles) as trace:
        problem.unsteady_run(t_max, dt, epsilon=run.epsilon, trace=trace, out_dir=out_dir)
    return trace


if __name__ == "__main__":
    main()
