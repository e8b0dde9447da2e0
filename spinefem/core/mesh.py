"""spinefem.core.mesh
Containers for nodes, elements and boundary node sets.

``SpineMesh`` additionally owns the spines and is the single place where
node positions are re-derived from spine heights (``update_nodes``).
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Dict, Iterator, List

import numpy as np

from spinefem.core.topology import Data, Node, Spine, SpineNode

if TYPE_CHECKING:
    from spinefem.fem.element import Element

logger = logging.getLogger(__name__)


class Mesh:
    """Static topology: nodes and elements are created once, never destroyed."""

    def __init__(self, nodes: List[Node] | None = None, elements: List["Element"] | None = None):
        self.nodes_list: List[Node] = list(nodes or [])
        self.elements_list: List["Element"] = list(elements or [])
        self._boundary_nodes: Dict[int, List[Node]] = defaultdict(list)

    # --- access -------------------------------------------------------
    @property
    def n_node(self) -> int:
        return len(self.nodes_list)

    @property
    def n_element(self) -> int:
        return len(self.elements_list)

    def node(self, i: int) -> Node:
        return self.nodes_list[i]

    def element(self, e: int) -> "Element":
        return self.elements_list[e]

    def add_node(self, node: Node) -> None:
        self.nodes_list.append(node)

    def add_element(self, element: "Element") -> None:
        self.elements_list.append(element)

    # --- boundaries ---------------------------------------------------
    @property
    def n_boundary(self) -> int:
        return (max(self._boundary_nodes) + 1) if self._boundary_nodes else 0

    def add_boundary_node(self, b: int, node: Node) -> None:
        if node.is_on_boundary(b):
            return
        node.boundaries.add(b)
        self._boundary_nodes[b].append(node)

    def boundary_nodes(self, b: int) -> List[Node]:
        return self._boundary_nodes.get(b, [])

    def boundary_node(self, b: int, n: int) -> Node:
        return self._boundary_nodes[b][n]

    # --- data traversal ----------------------------------------------
    def internal_data(self) -> Iterator[Data]:
        for el in self.elements_list:
            yield from el.internal_data

    def geometric_data(self) -> Iterator[Data]:
        """Data that parameterises node positions (none for a fixed mesh)."""
        return iter(())

    def all_data(self) -> Iterator[Data]:
        yield from self.nodes_list
        yield from self.internal_data()
        yield from self.geometric_data()

    # --- node positions -----------------------------------------------
    def update_nodes(self, update_all_time_levels: bool = False) -> None:
        """Re-derive every dependent node position (no-op for a fixed mesh)."""
        for node in self.nodes_list:
            node.node_update(update_all_time_levels)

    def node_coordinates(self, t: int = 0) -> np.ndarray:
        return np.array([node.positions[t] for node in self.nodes_list])

    # --- time history -------------------------------------------------
    def shift_time_values(self) -> None:
        for data in self.all_data():
            data.shift_time_values()

    def assign_initial_values_impulsive(self) -> None:
        for data in self.all_data():
            data.assign_initial_values_impulsive()

    def __repr__(self):
        return (f"<{type(self).__name__} n_nodes={self.n_node}, "
                f"n_elems={self.n_element}, n_boundaries={self.n_boundary}>")


class SpineMesh(Mesh):
    """Mesh whose node positions are a function of spine heights."""

    def __init__(self, nodes=None, elements=None):
        super().__init__(nodes, elements)
        self.spines: List[Spine] = []

    @property
    def n_spine(self) -> int:
        return len(self.spines)

    def spine(self, i: int) -> Spine:
        return self.spines[i]

    def geometric_data(self) -> Iterator[Data]:
        return iter(self.spines)

    def spine_node_update(self, node: SpineNode, t: int = 0) -> np.ndarray:
        """Position of ``node`` at history level ``t``; layered meshes override."""
        spine = node.spine
        return spine.base + node.fraction * spine.values[t, 0] * spine.direction

    def update_nodes(self, update_all_time_levels: bool = False) -> None:
        """Recompute every spine-node position from the current spine heights.

        Positions depend on nothing but spine heights and fixed spine
        geometry, so repeated calls without an intervening change of the
        heights leave every coordinate unchanged.
        """
        for node in self.nodes_list:
            node.node_update(update_all_time_levels)
        logger.debug(f"update_nodes: {self.n_spine} spines, all_time_levels={update_all_time_levels}")
