import numpy as np
import pytest

from spinefem.fem.interface import InterfaceParameters
from spinefem.fem.navier_stokes import NavierStokesParameters
from spinefem.io.trace import TRACE_HEADER
from spinefem.solvers.linear_solver import SolverPool
from spinefem.problems.two_layer_interface import (
    TwoLayerInterfaceProblem,
    TwoLayerRunParameters,
    default_physical_parameters,
    main,
)


def test_default_parameters():
    params = default_physical_parameters()
    assert params.re == params.re_st == params.re_inv_fr == 5.0
    assert np.allclose(params.g, [0.0, -1.0])
    run = TwoLayerRunParameters()
    assert (run.n_x, run.n_y1, run.n_y2) == (16, 12, 12)
    assert run.epsilon == 0.2


def test_flat_interface_at_rest_stays_at_rest():
    problem = TwoLayerInterfaceProblem(4, 2, 2, 1.0, 1.0, 1.0)
    trace = problem.unsteady_run(t_max=0.005, dt=0.005, epsilon=0.0)
    assert trace.as_array().shape == (2, 4)
    assert np.isclose(problem.time.time, 0.005)

    u = np.array([[node.value(0), node.value(1)] for node in problem.mesh.nodes_list])
    assert np.abs(u).max() < 1e-8
    assert np.allclose(problem.mesh.interface_heights(), 1.0, atol=1e-8)

    # hydrostatic: dp/dy = Re/Fr * g_y over a lower element of height 0.5
    el = problem.mesh.lower_elements[0]
    ns = el.physics
    dp = ns.interpolated_p(el, np.array([0.0, 1.0])) - ns.interpolated_p(el, np.array([0.0, -1.0]))
    assert dp == pytest.approx(-5.0 * 0.5, abs=1e-6)
    problem.linear_solver.close()


def test_perturbation_decays_monotonically():
    problem = TwoLayerInterfaceProblem(
        4, 2, 2, 1.0, 1.0, 1.0,
        ns_params=NavierStokesParameters(re=0.0, re_st=0.0, re_inv_fr=0.0),
        interface_params=InterfaceParameters(ca=0.1),
    )
    problem.deform_free_surface(0.05)
    assert problem.perturbation_amplitude() == pytest.approx(0.05)
    problem.initialise_dt(0.01)
    problem.set_initial_condition()

    amplitudes = [problem.perturbation_amplitude()]
    for _ in range(5):
        problem.unsteady_newton_solve(0.01)
        amplitudes.append(problem.perturbation_amplitude())
    assert all(b <= a for a, b in zip(amplitudes, amplitudes[1:]))
    assert amplitudes[-1] < amplitudes[0]
    # the interface is still a cosine: high at the left wall, low at the right
    h = problem.mesh.interface_heights()
    assert h[0] > 1.0 > h[-1]
    problem.linear_solver.close()


def test_custom_mode():
    problem = TwoLayerInterfaceProblem(4, 1, 1, 2.0, 1.0, 0.5)
    problem.deform_free_surface(0.1, mode=lambda x: x / 2.0)
    h = problem.mesh.interface_heights()
    assert np.isclose(h[0], 1.0) and np.isclose(h[-1], 1.1)
    assert np.isclose(problem.mesh.interface_nodes[-1].x[1], 1.1)


def test_main_writes_trace_and_solutions(tmp_path):
    run = TwoLayerRunParameters(n_x=2, n_y1=1, n_y2=1, epsilon=0.02)
    trace = main(t_max=0.01, dt=0.005, run=run, ca=0.1, out_dir=tmp_path,
                 contact_angles=lambda mesh: (90.0, 90.0))
    rows = trace.as_array()
    assert rows.shape == (3, 4)
    assert np.allclose(rows[:, 0], [0.0, 0.005, 0.01])
    assert np.allclose(rows[:, 2:], 90.0)
    lines = (tmp_path / "trace.dat").read_text().splitlines()
    assert lines[0] == TRACE_HEADER and len(lines) == 4
    for k in range(3):
        block = np.loadtxt(tmp_path / f"soln{k}.dat")
        assert block.shape == (2 * 2 * 25, 5)


def test_main_returns_solver_when_run_fails(tmp_path):
    def broken_diagnostic(mesh):
        raise RuntimeError("contact angle diagnostic failed")

    run = TwoLayerRunParameters(n_x=2, n_y1=1, n_y2=1, epsilon=0.02)
    with pytest.raises(RuntimeError):
        main(t_max=0.005, dt=0.005, run=run, out_dir=tmp_path, contact_angles=broken_diagnostic)
    assert SolverPool.max_n_solvers() == 1
    assert SolverPool.available_count() == 1

    # the single pooled solver is free for the next run
    trace = main(t_max=0.005, dt=0.005, run=run, out_dir=tmp_path / "again")
    assert trace.as_array().shape == (2, 4)
    assert SolverPool.available_count() == 1


def test_problem_as_context_manager():
    SolverPool.setup(1)
    with TwoLayerInterfaceProblem(2, 1, 1, 1.0, 1.0, 1.0) as problem:
        assert SolverPool.available_count() == 0
    assert problem.linear_solver.is_released
    assert SolverPool.available_count() == 1
    problem.close()
    assert SolverPool.available_count() == 1
