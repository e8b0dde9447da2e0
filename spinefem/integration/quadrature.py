"""spinefem.integration.quadrature
Gauss-Legendre rules on the reference line [-1, 1] and square [-1, 1]^2.
"""
from functools import lru_cache

import numpy as np
from numpy.polynomial.legendre import leggauss


# -------------------------------------------------------------------------
# 1-D Gauss-Legendre
# -------------------------------------------------------------------------
def gauss_legendre(order: int):
    if order < 1:
        raise ValueError(f"Gauss-Legendre rule needs at least one point, got {order}.")
    return leggauss(order)  # (points, weights)


@lru_cache(maxsize=None)
def line_rule(order: int):
    xi, wi = gauss_legendre(order)
    return xi.reshape(-1, 1), wi


# -------------------------------------------------------------------------
# Tensor-product construction
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def quad_rule(order: int):
    xi, wi = gauss_legendre(order)
    pts = np.array([[x, y] for x in xi for y in xi])
    wts = np.array([wx * wy for wx in wi for wy in wi])
    return pts, wts


# -------------------------------------------------------------------------
# Public API
# -------------------------------------------------------------------------
def volume(element_type: str, order: int = 3):
    """Points (nq, dim) and weights (nq,) for ``order`` points per direction."""
    if element_type == 'quad':
        return quad_rule(order)
    if element_type == 'line':
        return line_rule(order)
    raise KeyError(element_type)
