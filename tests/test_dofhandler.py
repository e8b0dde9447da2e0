import numpy as np
import pytest

from spinefem.core.dofhandler import DofHandler
from spinefem.core.rectangular_mesh import rectangular_quad_mesh
from spinefem.core.topology import PINNED
from spinefem.core.two_layer_mesh import BOTTOM, TwoLayerSpineMesh
from spinefem.errors import ConfigurationError
from spinefem.fem.advection_diffusion import AdvectionDiffusion
from spinefem.fem.interface import FluidInterface
from spinefem.fem.navier_stokes import NavierStokes, NavierStokesParameters, fix_pressure
from spinefem.problem import Problem
from spinefem.solvers.timestepper import BDF2, Steady


def _poisson_mesh(nx=2, ny=2):
    return rectangular_quad_mesh(nx, ny, 1.0, 1.0, AdvectionDiffusion(), Steady())


def test_numbering_is_contiguous_over_free_values():
    mesh = _poisson_mesh()
    for b in range(4):
        for node in mesh.boundary_nodes(b):
            node.pin(0)
    dh = DofHandler(mesh)
    n = dh.assign_eqn_numbers()
    interior = [node for node in mesh.nodes_list if not node.is_on_boundary()]
    assert n == len(interior) == 9
    eqns = sorted(node.eqn_number(0) for node in interior)
    assert eqns == list(range(n))
    dh.validate_eqn_numbers()


def test_pinned_values_never_numbered_or_assembled():
    mesh = _poisson_mesh()
    pinned = mesh.boundary_nodes(BOTTOM)
    for node in pinned:
        node.pin(0)
    problem = Problem(mesh)
    n = problem.assign_eqn_numbers()
    assert all(node.eqn_number(0) == PINNED for node in pinned)
    R, J = problem.get_jacobian()
    assert R.shape == (n,) and J.shape == (n, n)
    assert n == mesh.n_node - len(pinned)
    for el in mesh.elements_list:
        assert np.all(el.eqn_numbers >= 0)
        assert el.n_dof == sum(1 for node in el.nodes if not node.is_pinned(0))
    problem.linear_solver.close()


def test_validate_detects_stale_numbering():
    mesh = _poisson_mesh()
    dh = DofHandler(mesh)
    dh.assign_eqn_numbers()
    mesh.node(4).pin(0)
    with pytest.raises(ConfigurationError):
        dh.validate_eqn_numbers()
    dh.assign_eqn_numbers()
    dh.validate_eqn_numbers()
    mesh.node(4).unpin(0)
    with pytest.raises(ConfigurationError):
        dh.validate_eqn_numbers()


def test_unnumbered_element_refuses_to_contribute():
    mesh = _poisson_mesh()
    with pytest.raises(ConfigurationError):
        mesh.element(0).contribute()


def test_dofs_roundtrip_through_data():
    mesh = _poisson_mesh()
    dh = DofHandler(mesh)
    n = dh.assign_eqn_numbers()
    x = np.linspace(0.0, 1.0, n)
    dh.set_dofs(x)
    assert np.allclose(dh.get_dofs(), x)
    dh.add_to_dofs(np.ones(n), scale=-2.0)
    data, i = dh.dof_owner(3)
    assert np.isclose(data.value(i), x[3] - 2.0)
    with pytest.raises(ConfigurationError):
        dh.set_dofs(np.zeros(n + 1))


def test_two_layer_numbering_order():
    ts = BDF2()
    mesh = TwoLayerSpineMesh(2, 1, 1, 1.0, 1.0, 1.0, ts,
                             NavierStokes(NavierStokesParameters()),
                             interface_physics=FluidInterface())
    fix_pressure(mesh.lower_elements[0], 0, 0.0)
    dh = DofHandler(mesh)
    n = dh.assign_eqn_numbers()
    n_nodal = 2 * mesh.n_node
    n_pressure = 3 * len(mesh.bulk_elements) - 1
    assert n == n_nodal + n_pressure + mesh.n_spine
    # spines are numbered last
    spine_eqns = [s.eqn_number(0) for s in mesh.spines]
    assert spine_eqns == list(range(n - mesh.n_spine, n))
    dh.validate_eqn_numbers()
