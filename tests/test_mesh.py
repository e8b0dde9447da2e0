import numpy as np
import pytest

from spinefem.core.rectangular_mesh import rectangular_quad_mesh, single_layer_spine_mesh
from spinefem.core.two_layer_mesh import BOTTOM, LEFT, RIGHT, TOP, TwoLayerSpineMesh
from spinefem.errors import ConfigurationError
from spinefem.fem.advection_diffusion import AdvectionDiffusion
from spinefem.fem.interface import FluidInterface
from spinefem.fem.navier_stokes import NavierStokes, NavierStokesParameters
from spinefem.solvers.timestepper import BDF2, Steady
from spinefem.utils.meshgen import structured_qn


def _two_layer(n_x=3, n_y1=2, n_y2=3, h1=1.0, h2=0.5):
    return TwoLayerSpineMesh(n_x, n_y1, n_y2, 2.0, h1, h2, BDF2(),
                             NavierStokes(NavierStokesParameters()),
                             interface_physics=FluidInterface())


def test_structured_qn_connectivity():
    elements, (n_gx, n_gy) = structured_qn(2, 1, 2)
    assert (n_gx, n_gy) == (5, 3)
    assert elements.shape == (2, 9)
    assert list(elements[1]) == [2, 3, 4, 7, 8, 9, 12, 13, 14]


def test_rectangular_mesh_boundaries():
    mesh = rectangular_quad_mesh(2, 3, 1.0, 1.5, AdvectionDiffusion(), Steady())
    assert mesh.n_node == 5 * 7 and mesh.n_element == 6
    assert mesh.n_boundary == 4
    assert all(np.isclose(n.x[1], 0.0) for n in mesh.boundary_nodes(0))
    assert all(np.isclose(n.x[0], 1.0) for n in mesh.boundary_nodes(1))
    assert all(np.isclose(n.x[1], 1.5) for n in mesh.boundary_nodes(2))
    # corner nodes sit on two boundaries, listed once per boundary
    assert mesh.node(0).boundaries == {0, 3}
    assert len(mesh.boundary_nodes(3)) == 7


def test_update_nodes_is_idempotent():
    mesh = _two_layer()
    rng = np.random.default_rng(3)
    for spine in mesh.spines:
        spine.height = 1.0 + 0.1 * rng.standard_normal()
    mesh.update_nodes()
    first = mesh.node_coordinates().copy()
    mesh.update_nodes()
    assert np.array_equal(mesh.node_coordinates(), first)


def test_two_layer_positions_follow_spines():
    mesh = _two_layer()
    assert np.allclose(mesh.interface_heights(), 1.0)
    spine = mesh.spine(2)
    spine.height = 1.2
    mesh.update_nodes()
    column = [n for n in spine.nodes]
    ys = sorted(n.x[1] for n in column)
    assert np.isclose(ys[0], 0.0) and np.isclose(ys[-1], 1.5)
    lower = [n.x[1] for n in column if n.layer == 0]
    assert np.isclose(max(lower), 1.2)
    assert all(np.isclose(n.x[0], spine.base[0]) for n in column)
    # other columns untouched
    assert np.isclose(mesh.interface_nodes[0].x[1], 1.0)


def test_two_layer_structure():
    mesh = _two_layer()
    assert len(mesh.lower_elements) == 3 * 2
    assert len(mesh.upper_elements) == 3 * 3
    assert len(mesh.interface_elements) == 3
    assert mesh.n_spine == 7
    assert mesh.n_node == 7 * 11
    for el in mesh.interface_elements:
        assert all(n.tag == "interface" for n in el.nodes)
        assert el.nodes[0].x[0] < el.nodes[2].x[0]
        assert len(el.geometric_data) == 3
    assert all(np.isclose(n.x[1], 0.0) for n in mesh.boundary_nodes(BOTTOM))
    assert all(np.isclose(n.x[1], 1.5) for n in mesh.boundary_nodes(TOP))
    assert all(np.isclose(n.x[0], 2.0) for n in mesh.boundary_nodes(RIGHT))
    assert all(np.isclose(n.x[0], 0.0) for n in mesh.boundary_nodes(LEFT))


def test_two_layer_rejects_bad_geometry():
    with pytest.raises(ConfigurationError):
        _two_layer(h2=0.0)


def test_single_layer_spine_mesh_stretches():
    mesh = single_layer_spine_mesh(2, 2, 1.0, 1.0, AdvectionDiffusion(), Steady())
    for spine in mesh.spines:
        spine.height = 2.0
    mesh.update_nodes()
    assert np.isclose(mesh.node_coordinates()[:, 1].max(), 2.0)
    assert np.allclose(mesh.node_coordinates()[:, 0].max(), 1.0)
