# conftest.py
import matplotlib
import pytest

from spinefem.solvers.linear_solver import SolverPool


@pytest.fixture(autouse=True)
def mpl_test_backend():
    """Switch to a non-interactive backend for all tests."""
    matplotlib.use('Agg')


@pytest.fixture(autouse=True)
def fresh_solver_pool():
    """Every test starts with an un-configured solver pool."""
    SolverPool.reset()
    yield
    SolverPool.reset()
