"""spinefem.fem.interface
Free interface between two fluid layers.

The line element shares its three nodes with the top edge of a bulk element
of the lower layer. It contributes

* surface tension to the momentum equations of its nodes, in the
  integrated-by-parts form ``-(1/Ca) int t . dpsi/ds ds`` (the end terms
  vanish, which imposes a 90 degree contact angle at the walls);
* the kinematic condition ``(u - dx/dt) . n = 0`` as the equation of the
  spine that positions each node.

The normal ``n`` is the tangent rotated anticlockwise, i.e. it points into
the upper fluid for an interface traversed in +x.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from spinefem.errors import ConfigurationError
from spinefem.fem import transform
from spinefem.fem.element import Capability, ContributionFlag, Element, Physics

logger = logging.getLogger(__name__)


@dataclass
class InterfaceParameters:
    ca: float = 0.01


class FluidInterface(Physics):
    """Surface tension plus kinematic condition on a spine-positioned line."""

    capabilities = frozenset({Capability.MASS_MATRIX})

    def __init__(self, params: InterfaceParameters | None = None):
        self.params = params if params is not None else InterfaceParameters()

    def required_nvalue(self, n: int) -> int:
        return 2

    def fill_in_generic_contribution(self, element: Element, residuals, jacobian, mass, flag):
        geom = element.geometry
        psi = geom.psi
        dpsids = geom.dpsids[:, :, 0]
        w = geom.weights

        coords = element.nodal_positions()
        t, J = transform.line_tangent(geom.dpsids, coords)
        if np.any(J <= 0.0):
            raise ConfigurationError(f"Degenerate interface element {element.id}.")
        normal = np.column_stack([-t[:, 1], t[:, 0]])          # |normal| = J

        # surface tension on the momentum equations
        inv_ca = 1.0 / self.params.ca
        for i in range(2):
            r = inv_ca * dpsids.T @ (t[:, i] / J * w)
            local = element.nodal_local_eqns(i)
            free = local >= 0
            residuals[local[free]] -= r[free]

        # kinematic condition on the spine equations
        U = np.column_stack([element.nodal_values(0), element.nodal_values(1)])
        u = psi @ U
        xdot = psi @ element.nodal_velocities()
        r_kin = psi.T @ (np.sum((u - xdot) * normal, axis=1) * w)
        spine_rows = np.array([element.spine_local_eqn(l) for l in range(element.n_node)])
        has_spine = spine_rows >= 0
        residuals[spine_rows[has_spine]] += r_kin[has_spine]

        if flag >= ContributionFlag.JACOBIAN and jacobian is not None:
            for i in range(2):
                cols = element.nodal_local_eqns(i)
                dkin = np.einsum('ql,qb,q,q->lb', psi, psi, normal[:, i], w)
                has_col = cols >= 0
                jacobian[np.ix_(spine_rows[has_spine], cols[has_col])] += \
                    dkin[np.ix_(has_spine, has_col)]

    def interface_height(self, element: Element, s) -> float:
        return float(element.interpolated_x(s)[1])
