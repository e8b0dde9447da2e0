"""spinefem.fem.element
Elements as a composition of a ``Geometry`` (shape functions, mapping) and a
``Physics`` (weak form), bound to shared nodes.

Contribution protocol
---------------------
``Element.contribute(flag)`` returns the local residual and, depending on
``flag``, the local Jacobian and mass matrix. There is exactly one local
entry per *free* value the element touches (nodal values, element-internal
values, spine heights); pinned values are never written. ``eqn_numbers``
maps local entries to global equations.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, List, Optional, Sequence

import numpy as np

from spinefem.core.topology import PINNED, Data, Node, SpineNode
from spinefem.errors import ConfigurationError, FieldIndexError, UnsupportedVariantError
from spinefem.fem import transform
from spinefem.fem.reference import get_reference
from spinefem.integration.quadrature import volume
from spinefem.utils.noncopyable import NonCopyable

if TYPE_CHECKING:
    from spinefem.solvers.timestepper import TimeStepper

logger = logging.getLogger(__name__)


class ContributionFlag(IntEnum):
    RESIDUAL = 0
    JACOBIAN = 1
    MASS_MATRIX = 2


class Capability(Enum):
    STEADY_ERROR = "steady compute_error"
    UNSTEADY_ERROR = "time-dependent compute_error"
    UNSTEADY_EXACT_OUTPUT = "time-dependent exact-solution output"
    MASS_MATRIX = "mass matrix"


@dataclass
class Contribution:
    residuals: np.ndarray
    jacobian: Optional[np.ndarray]
    mass: Optional[np.ndarray]
    eqn_numbers: np.ndarray


# ----------------------------------------------------------------------------
#  Geometry strategy
# ----------------------------------------------------------------------------
class Geometry:
    """Lagrange geometry on a reference line or square.

    Shape functions and their local derivatives are tabulated once at the
    quadrature points ("knots").
    """

    def __init__(self, element_type: str = "quad", poly_order: int = 2, n_int_points: int | None = None):
        self.ref = get_reference(element_type, poly_order)
        self.element_type = element_type
        self.poly_order = poly_order
        self.n_int_points = n_int_points or poly_order + 1
        self.knots, self.weights = volume(element_type, self.n_int_points)
        self.psi, self.dpsids = self.ref.tabulate(self.knots)

    @property
    def n_node(self) -> int:
        return self.ref.n_node

    @property
    def dim(self) -> int:
        return self.ref.dim

    @property
    def n_knot(self) -> int:
        return self.weights.size

    def shape(self, s) -> np.ndarray:
        return self.ref.shape(np.atleast_1d(s))

    def dshape_eulerian(self, coords: np.ndarray, s=None):
        """``(psi, dpsidx, det_J)`` at the knots, or at the single point ``s``."""
        if s is None:
            dpsidx, det = transform.dshape_eulerian(self.dpsids, coords)
            return self.psi, dpsidx, det
        s = np.atleast_1d(np.asarray(s, dtype=float))
        psi = self.ref.shape(s)[None, :]
        dpsids = self.ref.dshape_local(s)[None, :, :]
        dpsidx, det = transform.dshape_eulerian(dpsids, coords)
        return psi[0], dpsidx[0], float(det[0])

    def plot_points(self, n_plot: int) -> np.ndarray:
        """``n_plot`` equispaced local coordinates per direction."""
        z = np.linspace(-1.0, 1.0, n_plot)
        if self.dim == 1:
            return z.reshape(-1, 1)
        return np.array([[a, b] for b in z for a in z])

    def __repr__(self):
        return f"Geometry({self.element_type}, Q{self.poly_order}, {self.n_knot} knots)"


def q_geometry(poly_order: int = 2) -> Geometry:
    return Geometry("quad", poly_order)


def line_geometry(poly_order: int = 2) -> Geometry:
    return Geometry("line", poly_order)


# ----------------------------------------------------------------------------
#  Physics strategy
# ----------------------------------------------------------------------------
class Physics:
    """Weak form. Subclasses fill residual/Jacobian/mass for one element."""

    capabilities: frozenset = frozenset({Capability.MASS_MATRIX})
    #: False -> field-data Jacobian columns come from finite differences
    analytic_jacobian = True

    def required_nvalue(self, n: int) -> int:
        """Number of values node ``n`` must store."""
        raise NotImplementedError

    def internal_data_sizes(self) -> Sequence[int]:
        return ()

    def fill_in_generic_contribution(self, element: "Element", residuals, jacobian, mass, flag):
        raise NotImplementedError

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        if not self.supports(capability):
            raise UnsupportedVariantError(type(self).__name__, capability)


# ----------------------------------------------------------------------------
#  Element
# ----------------------------------------------------------------------------
class Element(NonCopyable):
    """An element: node references + internal data + geometry + physics."""

    fd_jacobian_step = 1.0e-8

    def __init__(
        self,
        geometry: Geometry,
        physics: Physics,
        nodes: Sequence[Node],
        *,
        id: int = -1,
        tag: str = "",
        time_stepper: "TimeStepper | None" = None,
    ):
        if len(nodes) != geometry.n_node:
            raise ConfigurationError(
                f"{geometry!r} needs {geometry.n_node} nodes, got {len(nodes)}."
            )
        self.id = id
        self.tag = tag
        self.geometry = geometry
        self.physics = physics
        self.nodes: List[Node] = list(nodes)
        for n, node in enumerate(self.nodes):
            need = physics.required_nvalue(n)
            if node.n_value < need:
                raise ConfigurationError(
                    f"Node {node.id} stores {node.n_value} values, element needs {need}."
                )
        ts = time_stepper if time_stepper is not None else self.nodes[0].time_stepper
        self.internal_data: List[Data] = [Data(k, ts) for k in physics.internal_data_sizes()]
        spines = []
        for node in self.nodes:
            if isinstance(node, SpineNode) and all(node.spine is not s for s in spines):
                spines.append(node.spine)
        self.geometric_data: List[Data] = spines
        self._ale_disabled = False
        self._eqns: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    #  Local equation numbering
    # ------------------------------------------------------------------
    def assign_local_eqn_numbers(self) -> None:
        """Build the local -> global map over internal, nodal, geometric data."""
        eqns: list[int] = []

        def number(data: Data) -> np.ndarray:
            local = np.full(data.n_value, PINNED, dtype=np.int64)
            for i in range(data.n_value):
                g = data.eqn_numbers[i]
                if g >= 0:
                    local[i] = len(eqns)
                    eqns.append(int(g))
            return local

        self._internal_local = [number(d) for d in self.internal_data]
        self._nodal_local = [number(n) for n in self.nodes]
        self._geometric_local = [number(d) for d in self.geometric_data]
        self._eqns = np.asarray(eqns, dtype=np.int64)

    def _require_numbering(self) -> None:
        if self._eqns is None:
            raise ConfigurationError(f"Element {self.id}: equation numbers not assigned.")

    @property
    def n_dof(self) -> int:
        self._require_numbering()
        return self._eqns.size

    @property
    def eqn_numbers(self) -> np.ndarray:
        self._require_numbering()
        return self._eqns

    def nodal_local_eqn(self, n: int, i: int) -> int:
        local = self._nodal_local[n]
        if not 0 <= i < local.size:
            raise FieldIndexError(i, local.size, f"Node {self.nodes[n].id}")
        return int(local[i])

    def internal_local_eqn(self, d: int, i: int) -> int:
        local = self._internal_local[d]
        if not 0 <= i < local.size:
            raise FieldIndexError(i, local.size, "internal Data")
        return int(local[i])

    def spine_local_eqn(self, n: int) -> int:
        """Local equation of the spine height that positions node ``n``."""
        node = self.nodes[n]
        if not isinstance(node, SpineNode):
            return PINNED
        for g, d in enumerate(self.geometric_data):
            if d is node.spine:
                return int(self._geometric_local[g][0])
        return PINNED

    def nodal_local_eqns(self, i: int) -> np.ndarray:
        """Local equation of value ``i`` at every node (``PINNED`` if fixed)."""
        return np.array([self.nodal_local_eqn(n, i) for n in range(self.n_node)], dtype=np.int64)

    # ------------------------------------------------------------------
    #  Nodal data access
    # ------------------------------------------------------------------
    @property
    def n_node(self) -> int:
        return len(self.nodes)

    def nodal_value(self, n: int, i: int, t: int = 0) -> float:
        return self.nodes[n].value(i, t)

    def nodal_values(self, i: int, t: int = 0) -> np.ndarray:
        for node in self.nodes:
            if not 0 <= i < node.n_value:
                raise FieldIndexError(i, node.n_value, f"Node {node.id}")
        return np.array([node.values[t, i] for node in self.nodes])

    def nodal_time_derivatives(self, i: int) -> np.ndarray:
        """``du_i/dt`` per node from the value history (zero if steady)."""
        return np.array([node.time_derivative(i) for node in self.nodes])

    def nodal_positions(self, t: int = 0) -> np.ndarray:
        return np.array([node.positions[t] for node in self.nodes])

    def nodal_velocities(self) -> np.ndarray:
        """Mesh velocity ``dx/dt`` per node."""
        return np.array([node.dposition_dt() for node in self.nodes])

    def interpolated_x(self, s) -> np.ndarray:
        return transform.x_mapping(self.geometry.shape(s), self.nodal_positions())

    def interpolated_value(self, s, i: int) -> float:
        return float(self.geometry.shape(s) @ self.nodal_values(i))

    # ------------------------------------------------------------------
    #  ALE
    # ------------------------------------------------------------------
    def disable_ale(self) -> None:
        """Skip the mesh-velocity correction (caller guarantees a fixed mesh)."""
        self._ale_disabled = True

    def enable_ale(self) -> None:
        self._ale_disabled = False

    @property
    def ale_is_disabled(self) -> bool:
        return self._ale_disabled

    # ------------------------------------------------------------------
    #  Contribution protocol
    # ------------------------------------------------------------------
    def supports(self, capability: Capability) -> bool:
        return self.physics.supports(capability)

    def contribute(self, flag: ContributionFlag = ContributionFlag.JACOBIAN) -> Contribution:
        flag = ContributionFlag(flag)
        if flag == ContributionFlag.MASS_MATRIX:
            self.physics.require(Capability.MASS_MATRIX)
        n = self.n_dof
        residuals = np.zeros(n)
        jacobian = np.zeros((n, n)) if flag >= ContributionFlag.JACOBIAN else None
        mass = np.zeros((n, n)) if flag == ContributionFlag.MASS_MATRIX else None

        self.physics.fill_in_generic_contribution(
            self, residuals, jacobian if self.physics.analytic_jacobian else None, mass,
            flag if self.physics.analytic_jacobian else ContributionFlag.RESIDUAL,
        )
        if jacobian is not None:
            if not self.physics.analytic_jacobian:
                self._fill_in_jacobian_from_field_data_by_fd(residuals, jacobian)
            self._fill_in_jacobian_from_geometric_data(residuals, jacobian)
        return Contribution(residuals, jacobian, mass, self._eqns)

    def get_residuals(self) -> np.ndarray:
        return self.contribute(ContributionFlag.RESIDUAL).residuals

    def get_jacobian(self):
        c = self.contribute(ContributionFlag.JACOBIAN)
        return c.residuals, c.jacobian

    def get_jacobian_and_mass_matrix(self):
        c = self.contribute(ContributionFlag.MASS_MATRIX)
        return c.residuals, c.jacobian, c.mass

    def _residuals_only(self) -> np.ndarray:
        r = np.zeros(self.n_dof)
        self.physics.fill_in_generic_contribution(self, r, None, None, ContributionFlag.RESIDUAL)
        return r

    def _fill_in_jacobian_from_field_data_by_fd(self, residuals, jacobian) -> None:
        step = self.fd_jacobian_step
        for data, local in zip(self.internal_data + self.nodes, self._internal_local + self._nodal_local):
            for i, col in enumerate(local):
                if col < 0:
                    continue
                old = data.values[0, i]
                data.values[0, i] = old + step
                try:
                    jacobian[:, col] = (self._residuals_only() - residuals) / step
                finally:
                    data.values[0, i] = old

    def _fill_in_jacobian_from_geometric_data(self, residuals, jacobian) -> None:
        """Jacobian columns for spine heights by finite differences.

        Each perturbed height re-derives the positions of this element's
        nodes on that spine; the original positions are restored afterwards.
        """
        if not self.geometric_data:
            return
        step = self.fd_jacobian_step
        for spine, local in zip(self.geometric_data, self._geometric_local):
            col = local[0]
            if col < 0:
                continue
            dependent = [node for node in self.nodes
                         if isinstance(node, SpineNode) and node.spine is spine]
            saved = [node.positions[0].copy() for node in dependent]
            h0 = spine.values[0, 0]
            spine.values[0, 0] = h0 + step
            try:
                for node in dependent:
                    node.node_update()
                jacobian[:, col] = (self._residuals_only() - residuals) / step
            finally:
                spine.values[0, 0] = h0
                for node, x in zip(dependent, saved):
                    node.positions[0] = x

    def __repr__(self):
        return (f"Element(id={self.id}, {type(self.physics).__name__}, "
                f"{self.geometry.element_type} Q{self.geometry.poly_order}, tag='{self.tag}')")
