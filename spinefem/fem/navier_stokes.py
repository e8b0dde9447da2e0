"""spinefem.fem.navier_stokes
Planar Navier-Stokes equations on Crouzeix-Raviart elements.

Velocity is Q2 (nodal values 0 and 1), pressure is discontinuous P1 held as
three values of element-internal Data with basis ``[1, s0, s1]``. In the
non-dimensionalisation used here

    Re_St rho (du/dt - v_mesh . grad u) + Re rho u . grad u
        = -grad p + div(mu (grad u + grad u^T)) + Re/Fr rho G

    div u = 0

``rho`` and ``mu`` are the density and viscosity of the fluid relative to
the reference fluid (``FluidProperties``).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from spinefem.fem.element import Capability, ContributionFlag, Element, Physics

logger = logging.getLogger(__name__)

PRESSURE_DATA = 0
N_PRESSURE = 3


@dataclass
class NavierStokesParameters:
    """Dimensionless groups shared by every fluid element."""

    re: float = 0.0
    re_st: float = 0.0
    re_inv_fr: float = 0.0
    g: np.ndarray = field(default_factory=lambda: np.array([0.0, -1.0]))


@dataclass
class FluidProperties:
    """Density and viscosity relative to the reference fluid."""

    density_ratio: float = 1.0
    viscosity_ratio: float = 1.0


def pressure_basis(s: np.ndarray) -> np.ndarray:
    """``[1, s0, s1]`` at every row of ``s``."""
    s = np.atleast_2d(s)
    return np.column_stack([np.ones(s.shape[0]), s[:, 0], s[:, 1]])


class NavierStokes(Physics):
    """Crouzeix-Raviart Navier-Stokes physics with an analytic Jacobian."""

    capabilities = frozenset({Capability.MASS_MATRIX})

    def __init__(
        self,
        params: NavierStokesParameters,
        fluid: FluidProperties | None = None,
        body_force: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    ):
        self.params = params
        self.fluid = fluid if fluid is not None else FluidProperties()
        self.body_force = body_force

    def required_nvalue(self, n: int) -> int:
        return 2

    def internal_data_sizes(self):
        return (N_PRESSURE,)

    # ------------------------------------------------------------------
    def _local_map(self, element: Element) -> np.ndarray:
        """Local equation of every ``[u_0(nodes), u_1(nodes), p]`` entry."""
        return np.concatenate([
            element.nodal_local_eqns(0),
            element.nodal_local_eqns(1),
            [element.internal_local_eqn(PRESSURE_DATA, m) for m in range(N_PRESSURE)],
        ])

    def fill_in_generic_contribution(self, element: Element, residuals, jacobian, mass, flag):
        prm = self.params
        rho = self.fluid.density_ratio
        mu = self.fluid.viscosity_ratio
        geom = element.geometry
        n = element.n_node

        coords = element.nodal_positions()
        psi, dpsidx, det = geom.dshape_eulerian(coords)
        W = geom.weights * det
        psip = pressure_basis(geom.knots)

        U = np.column_stack([element.nodal_values(0), element.nodal_values(1)])     # (n, 2)
        dUdt = np.column_stack([element.nodal_time_derivatives(0),
                                element.nodal_time_derivatives(1)])
        P = element.internal_data[PRESSURE_DATA].values[0]

        u = psi @ U                                     # (nq, 2)
        dudt = psi @ dUdt
        dudx = np.einsum('qnk,ni->qik', dpsidx, U)      # du_i/dx_k
        p = psip @ P
        x = psi @ coords
        if element.ale_is_disabled:
            v = np.zeros_like(u)
        else:
            v = psi @ element.nodal_velocities()

        # --- residuals --------------------------------------------------
        force = rho * prm.re_inv_fr * np.asarray(prm.g, dtype=float)[None, :]
        if self.body_force is not None:
            force = force + np.array([self.body_force(xq) for xq in x])
        inertia = rho * prm.re_st * (dudt - np.einsum('qk,qik->qi', v, dudx))
        inertia += rho * prm.re * np.einsum('qk,qik->qi', u, dudx)
        stress = mu * (dudx + np.transpose(dudx, (0, 2, 1)))

        Ru = np.einsum('qa,qi,q->ia', psi, force - inertia, W)
        Ru += np.einsum('qai,q,q->ia', dpsidx, p, W)
        Ru -= np.einsum('qik,qak,q->ia', stress, dpsidx, W)
        div = np.einsum('qii->q', dudx)
        Rp = psip.T @ (div * W)

        local = self._local_map(element)
        free = local >= 0
        rows = local[free]
        residuals[rows] += np.concatenate([Ru.reshape(-1), Rp])[free]

        if flag >= ContributionFlag.JACOBIAN and jacobian is not None:
            w10 = element.nodes[0].time_stepper.weight(1, 0)
            M = np.einsum('qa,qb,q->ab', psi, psi, W)
            lap = np.einsum('qak,qbk,q->ab', dpsidx, dpsidx, W)
            cross = np.einsum('qbi,qaj,q->ijab', dpsidx, dpsidx, W)
            transport = np.einsum('qa,qbk,qk,q->ab', psi, dpsidx,
                                  rho * (prm.re * u - prm.re_st * v), W)
            reaction = np.einsum('qa,qb,qij,q->ijab', psi, psi, dudx, W)

            K = -mu * cross - rho * prm.re * reaction
            diag = -mu * lap - rho * prm.re_st * w10 * M - transport
            for i in range(2):
                K[i, i] += diag
            G = np.einsum('qai,qm,q->iam', dpsidx, psip, W)

            J = np.zeros((2 * n + N_PRESSURE, 2 * n + N_PRESSURE))
            J[:2 * n, :2 * n] = K.transpose(0, 2, 1, 3).reshape(2 * n, 2 * n)
            J[:2 * n, 2 * n:] = G.reshape(2 * n, N_PRESSURE)
            J[2 * n:, :2 * n] = G.reshape(2 * n, N_PRESSURE).T
            jacobian[np.ix_(rows, rows)] += J[np.ix_(free, free)]

        if flag == ContributionFlag.MASS_MATRIX and mass is not None:
            Mloc = np.zeros((2 * n + N_PRESSURE, 2 * n + N_PRESSURE))
            Mu = rho * prm.re_st * np.einsum('qa,qb,q->ab', psi, psi, W)
            Mloc[:n, :n] = Mu
            Mloc[n:2 * n, n:2 * n] = Mu
            mass[np.ix_(rows, rows)] += Mloc[np.ix_(free, free)]

    # ------------------------------------------------------------------
    #  Post-processing
    # ------------------------------------------------------------------
    def interpolated_u(self, element: Element, s) -> np.ndarray:
        return np.array([element.interpolated_value(s, i) for i in range(2)])

    def interpolated_p(self, element: Element, s) -> float:
        return float(pressure_basis(np.asarray(s, dtype=float))[0]
                     @ element.internal_data[PRESSURE_DATA].values[0])

    def output_values(self, element: Element, n_plot: int = 5) -> np.ndarray:
        """Rows ``[x, y, u, v, p]`` at ``n_plot**2`` plot points."""
        rows = []
        for s in element.geometry.plot_points(n_plot):
            rows.append(np.concatenate([element.interpolated_x(s),
                                        self.interpolated_u(element, s),
                                        [self.interpolated_p(element, s)]]))
        return np.array(rows)


def fix_pressure(element: Element, p_dof: int, p_value: float) -> None:
    """Pin pressure value ``p_dof`` of ``element`` to ``p_value``."""
    data = element.internal_data[PRESSURE_DATA]
    data.pin(p_dof)
    data.set_value(p_dof, p_value)
