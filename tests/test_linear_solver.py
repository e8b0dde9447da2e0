import copy
import gc

import numpy as np
import pytest
import scipy.sparse as sp
from scipy.sparse.linalg import gmres

from spinefem.errors import (
    NoFactorizationError,
    NonCopyableError,
    SolverPoolError,
    SolverPoolExhaustedError,
    SolverPoolNotSetupError,
)
from spinefem.solvers.linear_solver import (
    DirectPreconditioner,
    DirectSolver,
    LinearSolverParameters,
    SolverPool,
)


def _system(n=20, seed=0):
    rng = np.random.default_rng(seed)
    A = sp.diags([-1.0, 4.0, -1.0], [-1, 0, 1], shape=(n, n), format="lil")
    A[0, n - 1] = 0.5
    A = A.tocsr()
    x = rng.standard_normal(n)
    return A, x, A @ x


def test_pool_must_be_set_up_first():
    assert not SolverPool.is_setup()
    with pytest.raises(SolverPoolNotSetupError):
        DirectSolver()


def test_pool_exhaustion_and_accounting():
    SolverPool.setup(2)
    a, b = DirectSolver(), DirectSolver()
    assert {a.solver_id, b.solver_id} == {0, 1}
    assert SolverPool.available_count() == 0
    with pytest.raises(SolverPoolExhaustedError):
        DirectSolver()
    a.close()
    assert SolverPool.available_count() == 1
    c = DirectSolver()
    assert c.solver_id == a.solver_id
    b.close()
    c.close()
    assert SolverPool.available_count() == 2


def test_handles_do_not_leak_over_many_cycles():
    SolverPool.setup(3)
    A, x, rhs = _system()
    for _ in range(25):
        with DirectSolver() as solver:
            assert np.allclose(solver.solve(A, rhs), x)
    assert SolverPool.available_count() == 3


def test_double_return_is_rejected():
    SolverPool.setup(1)
    sid = SolverPool.get_new_solver_id()
    SolverPool.return_solver(sid)
    with pytest.raises(SolverPoolError):
        SolverPool.return_solver(sid)


def test_setup_refused_while_handles_live():
    SolverPool.setup(2)
    solver = DirectSolver()
    with pytest.raises(SolverPoolError):
        SolverPool.setup(4)
    with pytest.raises(SolverPoolError):
        SolverPool.setup(0)
    solver.close()
    SolverPool.setup(4)
    assert SolverPool.available_count() == 4


def test_handle_from_before_reset_cannot_free_new_handle():
    SolverPool.setup(1)
    old = DirectSolver()
    SolverPool.reset()
    assert old.is_released

    SolverPool.setup(1)
    new = DirectSolver()
    assert new.solver_id == old.solver_id
    old.close()
    assert old.is_released and not new.is_released
    assert SolverPool.available_count() == 0
    with pytest.raises(SolverPoolExhaustedError):
        DirectSolver()
    with pytest.raises(SolverPoolError):
        old.factorize(sp.identity(2, format="csr"))

    # a stale handle going out of scope is ignored as well
    SolverPool.reset()
    SolverPool.setup(1)
    newest = DirectSolver()
    del new
    gc.collect()
    assert SolverPool.available_count() == 0
    A, x, rhs = _system()
    assert np.allclose(newest.solve(A, rhs), x)
    newest.close()
    assert SolverPool.available_count() == 1


def test_garbage_collection_returns_handle():
    SolverPool.setup(1)
    solver = DirectSolver()
    assert SolverPool.available_count() == 0
    del solver
    gc.collect()
    assert SolverPool.available_count() == 1


def test_resolve_reuses_factorization():
    SolverPool.setup(1)
    A, x, rhs = _system()
    with DirectSolver() as solver:
        with pytest.raises(NoFactorizationError):
            solver.resolve(rhs)
        solver.factorize(A)
        assert solver.has_factorization
        assert np.allclose(solver.resolve(rhs), x)
        assert np.allclose(solver.resolve(2.0 * rhs), 2.0 * x)
        solver.release_memory()
        solver.release_memory()
        assert not solver.has_factorization
        with pytest.raises(NoFactorizationError):
            solver.resolve(rhs)


def test_disable_resolve_returns_handle():
    SolverPool.setup(1)
    A, _, rhs = _system()
    solver = DirectSolver()
    solver.solve(A, rhs)
    solver.disable_resolve()
    assert solver.is_released and not solver.has_factorization
    assert SolverPool.available_count() == 1
    with pytest.raises(SolverPoolError):
        solver.factorize(A)
    # closing again is harmless
    solver.close()


def test_delete_matrix_data_consumes_input():
    SolverPool.setup(1)
    A, x, rhs = _system()
    params = LinearSolverParameters(delete_matrix_data=True, doc_stats=True)
    with DirectSolver(params) as solver:
        assert np.allclose(solver.solve(A, rhs), x)
        assert A.nnz == 0 and A.data.size == 0


def test_matrix_kept_by_default():
    SolverPool.setup(1)
    A, x, rhs = _system()
    nnz = A.nnz
    with DirectSolver() as solver:
        solver.solve(A, rhs)
    assert A.nnz == nnz


def test_non_square_matrix_rejected():
    SolverPool.setup(1)
    with DirectSolver() as solver:
        with pytest.raises(ValueError):
            solver.factorize(sp.csr_matrix(np.ones((2, 3))))


def test_solver_is_not_copyable():
    SolverPool.setup(1)
    with DirectSolver() as solver:
        with pytest.raises(NonCopyableError):
            copy.copy(solver)
        with pytest.raises(NonCopyableError):
            copy.deepcopy(solver)
    assert SolverPool.available_count() == 1


def test_direct_preconditioner_in_gmres():
    SolverPool.setup(1)
    A, x, rhs = _system(n=40, seed=3)
    with DirectPreconditioner() as prec:
        with pytest.raises(NonCopyableError):
            copy.deepcopy(prec)
        with pytest.raises(NoFactorizationError):
            prec.as_linear_operator()
        prec.setup(A)
        M = prec.as_linear_operator()
        sol, info = gmres(A, rhs, M=M)
        assert info == 0
        assert np.allclose(sol, x, atol=1e-6)
        assert np.allclose(prec.apply(rhs), x)
        prec.clean_up_memory()
        assert not prec.solver.has_factorization
    assert SolverPool.available_count() == 1
