"""spinefem.fem.reference.lagrange
Lagrange bases on [-1, 1] and their tensor products, built symbolically once
and lambdified to numpy.
"""
from functools import lru_cache

import numpy as np
import sympy as sp


@lru_cache(maxsize=None)
def _lagrange_basis_1d(n: int, max_deriv_order: int):
    """1D Lagrange basis of degree ``n`` on equispaced nodes + derivatives."""
    x = sp.symbols('x')
    nodes = np.linspace(-1.0, 1.0, n + 1)
    dL = {k: [] for k in range(max_deriv_order + 1)}
    for i, xi in enumerate(nodes):
        num = 1
        den = 1.0
        for j, xj in enumerate(nodes):
            if i == j:
                continue
            num *= (x - xj)
            den *= (xi - xj)
        Li = sp.expand(num / den)
        for k in range(max_deriv_order + 1):
            dL[k].append(sp.lambdify(x, sp.diff(Li, x, k), 'numpy'))
    return nodes, dL


def _eval_1d(funcs, z: float) -> np.ndarray:
    # lambdified constants return scalars; broadcast explicitly
    return np.array([float(f(z)) for f in funcs], dtype=float)


@lru_cache(maxsize=None)
def line_pn(n: int, max_deriv_order: int = 1):
    """P_n on [-1, 1]: ``derivs[k](s) -> (n+1,)``."""
    _, dL = _lagrange_basis_1d(n, max_deriv_order)
    derivs = {}
    for k in range(max_deriv_order + 1):
        derivs[(k,)] = (lambda funcs: (lambda s: _eval_1d(funcs, s)))(dL[k])
    return derivs


@lru_cache(maxsize=None)
def quad_qn(n: int, max_deriv_order: int = 1):
    """Tensor-product Q_n on [-1, 1]^2.

    ``derivs[(ax, ay)](s0, s1) -> ((n+1)**2,)``; nodes are stacked with
    ``s1`` outer and ``s0`` inner: ``index = j*(n+1) + i``.
    """
    _, dL = _lagrange_basis_1d(n, max_deriv_order)
    derivs = {}
    for ax in range(max_deriv_order + 1):
        for ay in range(max_deriv_order + 1 - ax):
            def make(ax=ax, ay=ay):
                def d(s0, s1):
                    dx = _eval_1d(dL[ax], s0)
                    dy = _eval_1d(dL[ay], s1)
                    return np.outer(dy, dx).reshape(-1)
                return d
            derivs[(ax, ay)] = make()
    return derivs
