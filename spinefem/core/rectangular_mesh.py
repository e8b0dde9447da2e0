"""spinefem.core.rectangular_mesh
Single-block rectangular meshes of Qn elements, fixed or spine-positioned.
Boundaries: 0 bottom, 1 right, 2 top, 3 left.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from spinefem.core.mesh import Mesh, SpineMesh
from spinefem.core.topology import Node, Spine, SpineNode
from spinefem.fem.element import Element, q_geometry
from spinefem.utils.meshgen import lattice_coordinates, structured_qn

if TYPE_CHECKING:
    from spinefem.fem.element import Physics
    from spinefem.solvers.timestepper import TimeStepper


def _add_boundaries(mesh: Mesh, n_gx: int, n_gy: int) -> None:
    nodes = mesh.nodes_list
    for i in range(n_gx):
        mesh.add_boundary_node(0, nodes[i])
    for j in range(n_gy):
        mesh.add_boundary_node(1, nodes[j * n_gx + n_gx - 1])
    for i in range(n_gx):
        mesh.add_boundary_node(2, nodes[(n_gy - 1) * n_gx + i])
    for j in range(n_gy):
        mesh.add_boundary_node(3, nodes[j * n_gx])


def _add_elements(mesh: Mesh, connectivity, physics: "Physics", poly_order: int) -> None:
    geom = q_geometry(poly_order)
    for e, conn in enumerate(connectivity):
        mesh.add_element(Element(geom, physics, [mesh.nodes_list[k] for k in conn], id=e))


def rectangular_quad_mesh(nx: int, ny: int, lx: float, ly: float, physics: "Physics",
                          time_stepper: "TimeStepper", poly_order: int = 2) -> Mesh:
    """Fixed ``[0, lx] x [0, ly]`` mesh."""
    connectivity, (n_gx, n_gy) = structured_qn(nx, ny, poly_order)
    fx, fy = lattice_coordinates(nx, ny, poly_order)
    n_value = physics.required_nvalue(0)
    mesh = Mesh()
    for j in range(n_gy):
        for i in range(n_gx):
            mesh.add_node(Node(j * n_gx + i, (lx * fx[i], ly * fy[j]), n_value, time_stepper))
    _add_boundaries(mesh, n_gx, n_gy)
    _add_elements(mesh, connectivity, physics, poly_order)
    return mesh


def single_layer_spine_mesh(nx: int, ny: int, lx: float, h: float, physics: "Physics",
                            time_stepper: "TimeStepper", poly_order: int = 2) -> SpineMesh:
    """``[0, lx] x [0, h(x)]`` with one vertical spine per lattice column."""
    connectivity, (n_gx, n_gy) = structured_qn(nx, ny, poly_order)
    fx, fy = lattice_coordinates(nx, ny, poly_order)
    n_value = physics.required_nvalue(0)
    mesh = SpineMesh()
    for i in range(n_gx):
        mesh.spines.append(Spine(i, (lx * fx[i], 0.0), h, time_stepper))
    for j in range(n_gy):
        for i in range(n_gx):
            spine = mesh.spines[i]
            mesh.add_node(SpineNode(j * n_gx + i, spine.base, n_value, time_stepper,
                                    spine, fy[j], mesh=mesh))
    mesh.update_nodes(update_all_time_levels=True)
    _add_boundaries(mesh, n_gx, n_gy)
    _add_elements(mesh, connectivity, physics, poly_order)
    return mesh
