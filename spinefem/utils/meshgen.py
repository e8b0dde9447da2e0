"""spinefem.utils.meshgen
Structured Qn lattices on the unit square.

The generators return raw arrays only; meshes decide what kind of node sits
at each lattice point (fixed nodes, spine nodes, ...).
"""
import numba
import numpy as np

__all__ = ["structured_qn", "lattice_coordinates"]


@numba.jit(nopython=True, cache=True)
def _structured_qn_numba(nx: int, ny: int, order: int):
    """Connectivity of an ``nx`` x ``ny`` Qn lattice.

    Node ``(i, j)`` of the lattice has id ``j * (order*nx + 1) + i``; element
    nodes are stacked row by row (``s1`` outer, ``s0`` inner) as the
    reference Qn basis expects.
    """
    n_gx = order * nx + 1
    n_el = nx * ny
    n_loc = order + 1
    elements = np.empty((n_el, n_loc * n_loc), dtype=np.int64)
    for el in range(n_el):
        el_j = el // nx
        el_i = el % nx
        ix0 = order * el_i
        iy0 = order * el_j
        k = 0
        for ly in range(n_loc):
            for lx in range(n_loc):
                elements[el, k] = (iy0 + ly) * n_gx + (ix0 + lx)
                k += 1
    return elements


def structured_qn(nx: int, ny: int, poly_order: int = 2):
    """Element connectivity (n_el, (p+1)**2) and lattice shape ``(n_gx, n_gy)``."""
    if poly_order < 1:
        raise ValueError("Polynomial order must be a positive integer.")
    if nx < 1 or ny < 1:
        raise ValueError(f"Need at least one element per direction, got {nx} x {ny}.")
    elements = _structured_qn_numba(nx, ny, poly_order)
    return elements, (poly_order * nx + 1, poly_order * ny + 1)


def lattice_coordinates(nx: int, ny: int, poly_order: int = 2):
    """Fractional coordinates in [0, 1] of every lattice column and row."""
    return (np.linspace(0.0, 1.0, poly_order * nx + 1),
            np.linspace(0.0, 1.0, poly_order * ny + 1))
