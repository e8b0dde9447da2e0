import numpy as np

from spinefem.fem.element import ContributionFlag
from spinefem.fem.interface import InterfaceParameters
from spinefem.fem.navier_stokes import NavierStokesParameters, FluidProperties, PRESSURE_DATA
from spinefem.problems.two_layer_interface import TwoLayerInterfaceProblem


def _perturbed_problem(seed=0, **kwargs):
    problem = TwoLayerInterfaceProblem(2, 1, 1, 1.0, 1.0, 1.0, **kwargs)
    problem.initialise_dt(0.01)
    problem.deform_free_surface(0.1)
    problem.set_initial_condition()
    rng = np.random.default_rng(seed)
    # nonzero velocities, pressures and mesh motion
    problem.set_dofs(problem.get_dofs() + 0.05 * rng.standard_normal(problem.n_dof))
    for node in problem.mesh.nodes_list:
        node.values[1:] += 0.05 * rng.standard_normal(node.values[1:].shape)
    for spine in problem.mesh.spines:
        spine.values[1:, 0] -= 0.02 * rng.random(spine.ntstorage - 1)
    problem.mesh.update_nodes(update_all_time_levels=True)
    for spine in problem.mesh.spines:
        spine.values[0, 0] += 0.01
    problem.mesh.update_nodes()
    return problem


def _central_fd_jacobian(problem, h=1e-6):
    x0 = problem.get_dofs()
    J = np.zeros((x0.size, x0.size))
    for k in range(x0.size):
        cols = []
        for sign in (1.0, -1.0):
            x = x0.copy()
            x[k] += sign * h
            problem.set_dofs(x)
            problem.mesh.update_nodes()
            cols.append(problem.get_residuals())
        J[:, k] = (cols[0] - cols[1]) / (2.0 * h)
    problem.set_dofs(x0)
    problem.mesh.update_nodes()
    return J


def test_two_layer_jacobian_matches_finite_differences():
    problem = _perturbed_problem(
        ns_params=NavierStokesParameters(re=5.0, re_st=5.0, re_inv_fr=5.0),
        interface_params=InterfaceParameters(ca=0.5),
        upper_fluid=FluidProperties(density_ratio=0.7, viscosity_ratio=2.0),
    )
    _, J = problem.get_jacobian()
    J = J.toarray()
    J_fd = _central_fd_jacobian(problem)
    scale = np.abs(J_fd).max()
    assert np.allclose(J, J_fd, rtol=1e-4, atol=1e-5 * scale)
    problem.linear_solver.close()


def test_steady_residual_independent_of_history():
    problem = _perturbed_problem(seed=2)
    problem.time_stepper.make_steady()
    R1 = problem.get_residuals()
    for node in problem.mesh.nodes_list:
        node.values[1:] += 1.0
        node.positions[1:] -= 0.05
    assert np.array_equal(problem.get_residuals(), R1)


def test_mass_matrix_only_on_velocities():
    params = NavierStokesParameters(re_st=2.0)
    problem = TwoLayerInterfaceProblem(2, 1, 1, 1.0, 1.0, 1.0, ns_params=params)
    _, _, M = problem.get_jacobian_and_mass_matrix()
    M = M.toarray()
    assert np.allclose(M, M.T)
    pressure_eqns = [e for el in problem.mesh.bulk_elements
                     for e in el.internal_data[PRESSURE_DATA].eqn_numbers if e >= 0]
    spine_eqns = [s.eqn_number(0) for s in problem.mesh.spines]
    assert np.allclose(M[pressure_eqns], 0.0)
    assert np.allclose(M[spine_eqns], 0.0)
    assert M.trace() > 0.0


def test_interface_element_contribution_rows():
    problem = TwoLayerInterfaceProblem(2, 1, 1, 1.0, 1.0, 1.0)
    el = problem.mesh.interface_elements[0]
    c = el.contribute(ContributionFlag.JACOBIAN)
    # 3 nodes x free velocities + 3 spines
    n_free_u = sum(1 for n in el.nodes for i in range(2) if not n.is_pinned(i))
    assert c.residuals.size == n_free_u + 3
    # flat interface at rest: no kinematic residual
    spine_rows = [el.spine_local_eqn(l) for l in range(3)]
    assert np.allclose(c.residuals[spine_rows], 0.0)
