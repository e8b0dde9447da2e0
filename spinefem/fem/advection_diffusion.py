"""spinefem.fem.advection_diffusion
Scalar advection-diffusion equation

    Pe_St * du/dt + Pe * w . grad(u) + f = lap(u)

discretised with Galerkin Lagrange elements on a possibly moving mesh.
The residual follows the contribution-protocol convention (negative weak
form); on a moving mesh ``du/dt`` is taken at fixed nodes and corrected by
``- v_mesh . grad(u)`` unless ALE is disabled on the element.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from spinefem.fem.element import Capability, ContributionFlag, Element, Physics

logger = logging.getLogger(__name__)

SourceFct = Callable[[np.ndarray], float]
WindFct = Callable[[np.ndarray], np.ndarray]


@dataclass
class AdvectionDiffusionParameters:
    """Peclet numbers shared by every element of a problem."""

    pe: float = 0.0
    pe_st: float = 0.0


class AdvectionDiffusion(Physics):
    """Advection-diffusion physics for a single nodal field ``u_index``."""

    capabilities = frozenset({Capability.STEADY_ERROR, Capability.MASS_MATRIX})

    def __init__(
        self,
        params: AdvectionDiffusionParameters | None = None,
        source: Optional[SourceFct] = None,
        wind: Optional[WindFct] = None,
        u_index: int = 0,
    ):
        self.params = params if params is not None else AdvectionDiffusionParameters()
        self.source = source
        self.wind = wind
        self.u_index = u_index

    def required_nvalue(self, n: int) -> int:
        return self.u_index + 1

    # ------------------------------------------------------------------
    #  Callbacks (absent -> zero)
    # ------------------------------------------------------------------
    def get_source(self, x: np.ndarray) -> np.ndarray:
        """Source at every row of ``x``."""
        if self.source is None:
            return np.zeros(x.shape[0])
        return np.array([float(self.source(xq)) for xq in x])

    def get_wind(self, x: np.ndarray) -> np.ndarray:
        """Wind vector at every row of ``x``."""
        if self.wind is None:
            return np.zeros_like(x)
        return np.array([np.asarray(self.wind(xq), dtype=float) for xq in x])

    # ------------------------------------------------------------------
    #  Contribution
    # ------------------------------------------------------------------
    def fill_in_generic_contribution(self, element: Element, residuals, jacobian, mass, flag):
        pe, pe_st = self.params.pe, self.params.pe_st
        coords = element.nodal_positions()
        psi, dpsidx, det = element.geometry.dshape_eulerian(coords)
        W = element.geometry.weights * det

        u = element.nodal_values(self.u_index)
        # nodal history walk once, interpolated afterwards
        dudt = psi @ element.nodal_time_derivatives(self.u_index)
        dudx = np.einsum('qnk,n->qk', dpsidx, u)
        x = psi @ coords

        if element.ale_is_disabled:
            mesh_velocity = np.zeros_like(x)
        else:
            mesh_velocity = psi @ element.nodal_velocities()
        advection = pe * self.get_wind(x) - pe_st * mesh_velocity
        f = self.get_source(x)

        r = psi.T @ ((pe_st * dudt + f + np.sum(dudx * advection, axis=1)) * W)
        r += np.einsum('qlk,qk,q->l', dpsidx, dudx, W)

        local = element.nodal_local_eqns(self.u_index)
        free = local >= 0
        rows = local[free]
        residuals[rows] -= r[free]

        if flag >= ContributionFlag.JACOBIAN and jacobian is not None:
            w10 = element.nodes[0].time_stepper.weight(1, 0)
            K = np.einsum('qak,qbk,q->ab', dpsidx, dpsidx, W)
            K += np.einsum('qa,qbk,qk,q->ab', psi, dpsidx, advection, W)
            K += pe_st * w10 * np.einsum('qa,qb,q->ab', psi, psi, W)
            jacobian[np.ix_(rows, rows)] -= K[np.ix_(free, free)]

        if flag == ContributionFlag.MASS_MATRIX and mass is not None:
            M = pe_st * np.einsum('qa,qb,q->ab', psi, psi, W)
            mass[np.ix_(rows, rows)] += M[np.ix_(free, free)]

    # ------------------------------------------------------------------
    #  Post-processing
    # ------------------------------------------------------------------
    def interpolated_u(self, element: Element, s) -> float:
        return element.interpolated_value(s, self.u_index)

    def flux(self, element: Element, s) -> np.ndarray:
        """``du/dx_i`` at local coordinate ``s``."""
        _, dpsidx, _ = element.geometry.dshape_eulerian(element.nodal_positions(), s)
        return dpsidx.T @ element.nodal_values(self.u_index)

    def dinterpolated_u_ddata(self, element: Element, s):
        """Derivative of ``u(s)`` w.r.t. the free nodal values, with their global equations."""
        psi = element.geometry.shape(s)
        eqns = np.array([node.eqn_number(self.u_index) for node in element.nodes])
        free = eqns >= 0
        return psi[free], eqns[free]

    def compute_error(self, element: Element, exact: Callable[[np.ndarray], float], time=None):
        """Squared L2 error and squared L2 norm of ``exact`` over the element.

        Only the steady variant exists; passing ``time`` raises
        ``UnsupportedVariantError``.
        """
        if time is not None:
            self.require(Capability.UNSTEADY_ERROR)
        coords = element.nodal_positions()
        psi, _, det = element.geometry.dshape_eulerian(coords)
        W = element.geometry.weights * det
        x = psi @ coords
        u_fe = psi @ element.nodal_values(self.u_index)
        u_ex = np.array([float(exact(xq)) for xq in x])
        return float(np.sum((u_ex - u_fe) ** 2 * W)), float(np.sum(u_ex ** 2 * W))

    def output_values(self, element: Element, n_plot: int = 5) -> np.ndarray:
        """Rows ``[x..., wind..., u]`` at ``n_plot**dim`` plot points."""
        rows = []
        for s in element.geometry.plot_points(n_plot):
            x = element.interpolated_x(s)
            wind = self.get_wind(x[None, :])[0]
            rows.append(np.concatenate([x, wind, [self.interpolated_u(element, s)]]))
        return np.array(rows)

    def output_exact(self, element: Element, exact, n_plot: int = 5, time=None) -> np.ndarray:
        """Rows ``[x..., u_exact]``; steady only."""
        if time is not None:
            self.require(Capability.UNSTEADY_EXACT_OUTPUT)
        rows = []
        for s in element.geometry.plot_points(n_plot):
            x = element.interpolated_x(s)
            rows.append(np.concatenate([x, [float(exact(x))]]))
        return np.array(rows)

    def self_test(self, element: Element) -> int:
        """0 if the element is consistent, 1 otherwise (problems are logged)."""
        status = 0
        for node in element.nodes:
            if node.n_value <= self.u_index:
                logger.warning(f"Node {node.id} does not store value {self.u_index}.")
                status = 1
            if node.dim != element.geometry.dim:
                logger.warning(f"Node {node.id} is {node.dim}D in a {element.geometry.dim}D element.")
                status = 1
        if status == 0 and not np.isfinite(element.nodal_values(self.u_index)).all():
            logger.warning(f"Element {element.id} has non-finite values.")
            status = 1
        return status
