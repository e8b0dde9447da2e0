# spinefem.fem.reference
"""
Order-agnostic reference-element factory.
"""
from functools import lru_cache

import numpy as np

from spinefem.fem.reference.lagrange import line_pn, quad_qn


class Ref:
    """Shape functions and local derivatives on a reference element."""

    def __init__(self, element_type: str, poly_order: int, dim: int, deriv_fns):
        self.element_type = element_type
        self.poly_order = poly_order
        self.dim = dim
        self._deriv_fns = deriv_fns
        self.n_node = (poly_order + 1) ** dim

    def _alpha(self, axis: int):
        return tuple(1 if k == axis else 0 for k in range(self.dim))

    def shape(self, s) -> np.ndarray:
        return self._deriv_fns[(0,) * self.dim](*s)

    def dshape_local(self, s) -> np.ndarray:
        """(n_node, dim) array of dpsi/ds."""
        return np.column_stack([self._deriv_fns[self._alpha(k)](*s) for k in range(self.dim)])

    def tabulate(self, points: np.ndarray):
        """psi (nq, n_node) and dpsi/ds (nq, n_node, dim) at ``points``."""
        psi = np.array([self.shape(s) for s in points])
        dpsids = np.array([self.dshape_local(s) for s in points])
        return psi, dpsids

    def __repr__(self):
        return f"Ref({self.element_type}, order={self.poly_order})"


@lru_cache(maxsize=None)
def get_reference(element_type: str, poly_order: int = 2) -> Ref:
    if element_type == "quad":
        return Ref(element_type, poly_order, 2, quad_qn(poly_order, 1))
    if element_type == "line":
        return Ref(element_type, poly_order, 1, line_pn(poly_order, 1))
    raise KeyError(element_type)


__all__ = ["Ref", "get_reference"]
