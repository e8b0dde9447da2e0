"""spinefem.core.two_layer_mesh
Rectangular channel holding two fluid layers separated by a free interface.

Every lattice column carries one vertical spine whose height ``h`` is the
thickness of the lower layer. A node at fraction ``f`` of its layer sits at

* lower layer: ``y = f * h``
* upper layer: ``y = h + f * (H - h)``

with ``H`` the (fixed) total height. Boundaries: 0 bottom, 1 right, 2 top,
3 left.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

import numpy as np

from spinefem.core.mesh import SpineMesh
from spinefem.core.topology import Spine, SpineNode
from spinefem.errors import ConfigurationError
from spinefem.fem.element import Element, line_geometry, q_geometry
from spinefem.utils.meshgen import lattice_coordinates, structured_qn

if TYPE_CHECKING:
    from spinefem.fem.element import Physics
    from spinefem.solvers.timestepper import TimeStepper

logger = logging.getLogger(__name__)

LOWER, UPPER = 0, 1
BOTTOM, RIGHT, TOP, LEFT = 0, 1, 2, 3


class TwoLayerSpineMesh(SpineMesh):
    """Q2 bulk elements in two layers plus Q2 line elements on the interface."""

    def __init__(
        self,
        n_x: int,
        n_y1: int,
        n_y2: int,
        l_x: float,
        h1: float,
        h2: float,
        time_stepper: "TimeStepper",
        lower_physics: "Physics",
        upper_physics: Optional["Physics"] = None,
        interface_physics: Optional["Physics"] = None,
    ):
        if h1 <= 0.0 or h2 <= 0.0 or l_x <= 0.0:
            raise ConfigurationError(
                f"Layer heights and width must be positive, got h1={h1}, h2={h2}, l_x={l_x}."
            )
        super().__init__()
        self.n_x, self.n_y1, self.n_y2 = n_x, n_y1, n_y2
        self.l_x = l_x
        self.h1, self.h2 = h1, h2
        self.total_height = h1 + h2
        self.time_stepper = time_stepper
        upper_physics = upper_physics if upper_physics is not None else lower_physics
        n_value = lower_physics.required_nvalue(0)

        connectivity, (n_gx, n_gy) = structured_qn(n_x, n_y1 + n_y2, 2)
        fx, _ = lattice_coordinates(n_x, n_y1 + n_y2, 2)
        j_interface = 2 * n_y1
        self.interface_row = j_interface

        for i in range(n_gx):
            self.spines.append(Spine(i, (l_x * fx[i], 0.0), h1, time_stepper))

        # lattice node (i, j) gets id j*n_gx + i, matching the connectivity
        for j in range(n_gy):
            if j <= j_interface:
                layer, fraction = LOWER, j / j_interface
            else:
                layer, fraction = UPPER, (j - j_interface) / (n_gy - 1 - j_interface)
            for i in range(n_gx):
                spine = self.spines[i]
                node = SpineNode(j * n_gx + i, spine.base, n_value, time_stepper,
                                 spine, fraction, layer=layer, mesh=self)
                if j == j_interface:
                    node.tag = "interface"
                self.add_node(node)
        self.update_nodes(update_all_time_levels=True)

        for i in range(n_gx):
            self.add_boundary_node(BOTTOM, self.nodes_list[i])
        for j in range(n_gy):
            self.add_boundary_node(RIGHT, self.nodes_list[j * n_gx + n_gx - 1])
        for i in range(n_gx):
            self.add_boundary_node(TOP, self.nodes_list[(n_gy - 1) * n_gx + i])
        for j in range(n_gy):
            self.add_boundary_node(LEFT, self.nodes_list[j * n_gx])

        q2 = q_geometry(2)
        self.lower_elements: List["Element"] = []
        self.upper_elements: List["Element"] = []
        for e, conn in enumerate(connectivity):
            in_lower = e // n_x < n_y1
            el = Element(q2, lower_physics if in_lower else upper_physics,
                         [self.nodes_list[k] for k in conn], id=e,
                         tag="lower" if in_lower else "upper")
            (self.lower_elements if in_lower else self.upper_elements).append(el)
            self.add_element(el)

        self.interface_elements: List["Element"] = []
        if interface_physics is not None:
            line = line_geometry(2)
            top_row = self.lower_elements[(n_y1 - 1) * n_x:]
            for k, bulk in enumerate(top_row):
                edge = bulk.nodes[6:9]
                el = Element(line, interface_physics, edge,
                             id=len(self.elements_list), tag="interface")
                el.bulk_element = bulk
                self.interface_elements.append(el)
                self.add_element(el)

        logger.info(
            f"TwoLayerSpineMesh: {self.n_node} nodes, {len(self.bulk_elements)} bulk + "
            f"{len(self.interface_elements)} interface elements, {self.n_spine} spines"
        )

    @property
    def bulk_elements(self) -> List["Element"]:
        return self.lower_elements + self.upper_elements

    @property
    def interface_nodes(self) -> List[SpineNode]:
        n_gx = self.n_spine
        row = self.interface_row
        return self.nodes_list[row * n_gx:(row + 1) * n_gx]

    def spine_node_update(self, node: SpineNode, t: int = 0) -> np.ndarray:
        spine = node.spine
        h = spine.values[t, 0]
        if node.layer == LOWER:
            y = node.fraction * h
        else:
            y = h + node.fraction * (self.total_height - h)
        return spine.base + y * spine.direction

    def interface_heights(self, t: int = 0) -> np.ndarray:
        return np.array([s.values[t, 0] for s in self.spines])
