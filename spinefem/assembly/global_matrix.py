"""spinefem.assembly.global_matrix
Global residual / Jacobian / mass assembly from element contributions.
"""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Iterable, Optional, Tuple

import numba
import numpy as np
import scipy.sparse as sp

from spinefem.fem.element import ContributionFlag

if TYPE_CHECKING:
    from spinefem.fem.element import Element

logger = logging.getLogger(__name__)


@numba.njit(cache=True)
def _scatter_local(eqns, local, rows, cols, vals, offset):
    """Write the dense ``local`` block as COO triplets starting at ``offset``."""
    n = eqns.shape[0]
    k = offset
    for a in range(n):
        for b in range(n):
            rows[k] = eqns[a]
            cols[k] = eqns[b]
            vals[k] = local[a, b]
            k += 1
    return k


def assemble(
    elements: Iterable["Element"],
    n_dof: int,
    flag: ContributionFlag = ContributionFlag.JACOBIAN,
) -> Tuple[np.ndarray, Optional[sp.csr_matrix], Optional[sp.csr_matrix]]:
    """Sum element contributions into a residual vector and CSR matrices.

    Duplicate (row, col) triplets are summed by the COO -> CSR conversion.
    """
    flag = ContributionFlag(flag)
    elements = list(elements)
    t0 = time.perf_counter()
    residuals = np.zeros(n_dof)
    nnz = sum(el.n_dof ** 2 for el in elements) if flag >= ContributionFlag.JACOBIAN else 0
    rows = np.empty(nnz, dtype=np.int64)
    cols = np.empty(nnz, dtype=np.int64)
    jvals = np.empty(nnz)
    mvals = np.empty(nnz) if flag == ContributionFlag.MASS_MATRIX else None

    k = 0
    for el in elements:
        c = el.contribute(flag)
        if c.eqn_numbers.size == 0:
            continue
        np.add.at(residuals, c.eqn_numbers, c.residuals)
        if flag >= ContributionFlag.JACOBIAN:
            k_next = _scatter_local(c.eqn_numbers, c.jacobian, rows, cols, jvals, k)
            if mvals is not None:
                _scatter_local(c.eqn_numbers, c.mass, rows, cols, mvals, k)
            k = k_next

    jacobian = mass = None
    if flag >= ContributionFlag.JACOBIAN:
        jacobian = sp.coo_matrix((jvals[:k], (rows[:k], cols[:k])), shape=(n_dof, n_dof)).tocsr()
    if mvals is not None:
        mass = sp.coo_matrix((mvals[:k], (rows[:k], cols[:k])), shape=(n_dof, n_dof)).tocsr()
    logger.debug(f"assemble({flag.name}): {len(elements)} elements, "
                 f"{n_dof} dofs in {time.perf_counter() - t0:.3f}s")
    return residuals, jacobian, mass
