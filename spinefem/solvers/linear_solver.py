"""spinefem.solvers.linear_solver
Direct sparse solvers drawn from a fixed-size, process-wide pool.

Each ``DirectSolver`` holds one pool handle for its whole life. The handle
owns the LU factorization (SuperLU via ``scipy.sparse.linalg.splu``), so a
factorization can be reused for any number of right-hand sides until it is
released or replaced.
"""
from __future__ import annotations

import logging
import threading
import time
import weakref
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import LinearOperator, splu

from spinefem.errors import (
    NoFactorizationError,
    SolverPoolError,
    SolverPoolExhaustedError,
    SolverPoolNotSetupError,
)
from spinefem.utils.noncopyable import NonCopyable

logger = logging.getLogger(__name__)


@dataclass
class LinearSolverParameters:
    permc_spec: str = "COLAMD"
    #: let factorize() consume the caller's matrix instead of copying it
    delete_matrix_data: bool = False
    doc_stats: bool = False


class _SolverContext:
    """Per-handle state: the live factorization and its size."""

    __slots__ = ("factorization", "n_dof")

    def __init__(self):
        self.factorization = None
        self.n_dof = 0

    def clear(self) -> None:
        self.factorization = None
        self.n_dof = 0


class SolverPool:
    """Process-wide pool of solver contexts.

    ``setup`` must be called before the first handle is requested; asking
    for more live handles than configured raises instead of blocking.
    """

    _lock = threading.Lock()
    _max_n_solvers = 0
    _available: List[int] = []
    _contexts: Dict[int, _SolverContext] = {}
    _is_setup = False
    #: bumped by reset(); handles from an older generation are never taken back
    _generation = 0

    @classmethod
    def setup(cls, max_n_solvers: int) -> None:
        if max_n_solvers < 1:
            raise SolverPoolError(f"Pool capacity must be at least 1, got {max_n_solvers}.")
        with cls._lock:
            if cls._contexts:
                raise SolverPoolError(
                    f"Cannot re-setup the solver pool while {len(cls._contexts)} handle(s) are live."
                )
            cls._max_n_solvers = max_n_solvers
            cls._available = list(range(max_n_solvers - 1, -1, -1))
            cls._is_setup = True
        logger.debug(f"SolverPool: set up with {max_n_solvers} solver(s)")

    @classmethod
    def is_setup(cls) -> bool:
        return cls._is_setup

    @classmethod
    def max_n_solvers(cls) -> int:
        return cls._max_n_solvers

    @classmethod
    def available_count(cls) -> int:
        with cls._lock:
            return len(cls._available)

    @classmethod
    def generation(cls) -> int:
        return cls._generation

    @classmethod
    def get_new_solver_id(cls) -> int:
        return cls.acquire()[0]

    @classmethod
    def acquire(cls) -> Tuple[int, int]:
        """Check out a handle; returns ``(solver_id, generation)``."""
        with cls._lock:
            if not cls._is_setup:
                raise SolverPoolNotSetupError(
                    "SolverPool.setup(max_n_solvers) must be called before requesting a solver."
                )
            if not cls._available:
                raise SolverPoolExhaustedError(
                    f"All {cls._max_n_solvers} pooled solver(s) are in use."
                )
            solver_id = cls._available.pop()
            cls._contexts[solver_id] = _SolverContext()
            generation = cls._generation
        logger.debug(f"SolverPool: handed out solver {solver_id}")
        return solver_id, generation

    @classmethod
    def return_solver(cls, solver_id: int, generation: Optional[int] = None) -> None:
        """Give a handle back.

        A handle stamped with a generation older than the last ``reset`` is
        ignored: its id may already belong to a handle of the new pool.
        """
        with cls._lock:
            if generation is not None and generation != cls._generation:
                logger.debug(f"SolverPool: ignoring stale solver {solver_id} "
                             f"from generation {generation}")
                return
            ctx = cls._contexts.pop(solver_id, None)
            if ctx is None:
                raise SolverPoolError(f"Solver {solver_id} is not checked out of the pool.")
            ctx.clear()
            cls._available.append(solver_id)
        logger.debug(f"SolverPool: solver {solver_id} returned")

    @classmethod
    def context(cls, solver_id: int) -> _SolverContext:
        with cls._lock:
            try:
                return cls._contexts[solver_id]
            except KeyError:
                raise SolverPoolError(f"Solver {solver_id} is not checked out of the pool.") from None

    @classmethod
    def reset(cls) -> None:
        """Forget every handle and the configuration (tests, interpreter shutdown).

        Handles still alive are orphaned: they report ``is_released`` and their
        later release does not touch the new pool.
        """
        with cls._lock:
            cls._max_n_solvers = 0
            cls._available = []
            cls._contexts = {}
            cls._is_setup = False
            cls._generation += 1


def _release_handle(solver_id: int, generation: int) -> None:
    try:
        SolverPool.return_solver(solver_id, generation)
    except SolverPoolError:
        # pool was reset underneath a live solver
        logger.debug(f"SolverPool: solver {solver_id} was already gone on release")


class DirectSolver(NonCopyable):
    """Sparse LU solver bound to one pool handle.

    The handle is returned exactly once: by ``close()``, ``disable_resolve()``,
    leaving a ``with`` block, or when the object is garbage collected.
    """

    def __init__(self, params: LinearSolverParameters | None = None):
        self.params = params if params is not None else LinearSolverParameters()
        self.solver_id, self._generation = SolverPool.acquire()
        self._finalizer = weakref.finalize(self, _release_handle, self.solver_id, self._generation)
        self.jacobian_setup_time = 0.0
        self.solution_time = 0.0

    # ------------------------------------------------------------------
    @property
    def is_released(self) -> bool:
        return not self._finalizer.alive or self._generation != SolverPool.generation()

    @property
    def _ctx(self) -> _SolverContext:
        if self.is_released:
            raise SolverPoolError(f"Solver {self.solver_id} has already been returned to the pool.")
        return SolverPool.context(self.solver_id)

    @property
    def has_factorization(self) -> bool:
        return not self.is_released and self._ctx.factorization is not None

    # ------------------------------------------------------------------
    def factorize(self, matrix) -> None:
        """LU-factorize ``matrix``; replaces any previous factorization."""
        ctx = self._ctx
        t0 = time.perf_counter()
        if self.params.delete_matrix_data:
            A = sp.csc_matrix(matrix)
            _consume(matrix)
        else:
            A = sp.csc_matrix(matrix, copy=True)
        if A.shape[0] != A.shape[1]:
            raise ValueError(f"Direct solver needs a square matrix, got {A.shape}.")
        ctx.factorization = None
        ctx.factorization = splu(A, permc_spec=self.params.permc_spec)
        ctx.n_dof = A.shape[0]
        self.jacobian_setup_time = time.perf_counter() - t0
        if self.params.doc_stats:
            self.doc_stats()

    def backsub(self, rhs: np.ndarray) -> np.ndarray:
        """Back-substitute ``rhs`` through the live factorization."""
        ctx = self._ctx
        if ctx.factorization is None:
            raise NoFactorizationError(f"Solver {self.solver_id} has no live factorization.")
        t0 = time.perf_counter()
        x = ctx.factorization.solve(np.asarray(rhs, dtype=float))
        self.solution_time = time.perf_counter() - t0
        return x

    def solve(self, matrix, rhs: np.ndarray) -> np.ndarray:
        self.factorize(matrix)
        return self.backsub(rhs)

    def solve_with_rhs(self, rhs: np.ndarray) -> np.ndarray:
        return self.backsub(rhs)

    def resolve(self, rhs: np.ndarray) -> np.ndarray:
        """Reuse the previous factorization for a new right-hand side."""
        return self.backsub(rhs)

    def release_memory(self) -> None:
        """Drop the factorization, keep the handle. Safe to repeat."""
        if not self.is_released:
            self._ctx.clear()

    def disable_resolve(self) -> None:
        """Give up resolves for good: drop the factorization and return the handle."""
        self.close()

    def close(self) -> None:
        if not self._finalizer.alive:
            return
        self.release_memory()
        self._finalizer()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def doc_stats(self) -> None:
        if self.is_released or self._ctx.factorization is None:
            logger.info(f"DirectSolver {self.solver_id}: no factorization")
            return
        lu = self._ctx.factorization
        logger.info(
            f"DirectSolver {self.solver_id}: n = {self._ctx.n_dof}, "
            f"nnz(L) = {lu.L.nnz}, nnz(U) = {lu.U.nnz}, "
            f"factorization {self.jacobian_setup_time:.3e}s, "
            f"back-substitution {self.solution_time:.3e}s"
        )

    def __repr__(self):
        state = "released" if self.is_released else f"handle {self.solver_id}"
        return f"DirectSolver({state})"


def _consume(matrix) -> None:
    """Empty the storage of a compressed sparse ``matrix`` in place."""
    if not sp.issparse(matrix) or not hasattr(matrix, "indptr"):
        return
    matrix.data = np.empty(0, dtype=matrix.data.dtype)
    matrix.indices = np.empty(0, dtype=matrix.indices.dtype)
    matrix.indptr = np.zeros_like(matrix.indptr)


class DirectPreconditioner(NonCopyable):
    """Exact preconditioner: factorize once in ``setup``, resolve in ``apply``."""

    def __init__(self, params: LinearSolverParameters | None = None):
        self.solver = DirectSolver(params)
        self.n_dof = 0

    def setup(self, matrix) -> None:
        self.solver.release_memory()
        self.n_dof = matrix.shape[0]
        self.solver.factorize(matrix)

    def apply(self, r: np.ndarray) -> np.ndarray:
        return self.solver.resolve(r)

    def as_linear_operator(self) -> LinearOperator:
        """The preconditioner as ``M`` for ``scipy.sparse.linalg`` Krylov solvers."""
        if not self.solver.has_factorization:
            raise NoFactorizationError("Preconditioner used before setup().")
        n = self.n_dof
        return LinearOperator((n, n), matvec=self.apply, dtype=float)

    def clean_up_memory(self) -> None:
        self.solver.release_memory()

    def close(self) -> None:
        self.solver.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
