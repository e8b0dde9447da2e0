"""spinefem.fem.transform
Reference -> physical mapping for isoparametric elements.

Shape-function derivatives with respect to Eulerian coordinates and the
determinant of the mapping Jacobian come out of the same routine since both
need the same inverse.
"""
import numpy as np

from spinefem.errors import ConfigurationError


def x_mapping(psi: np.ndarray, coords: np.ndarray) -> np.ndarray:
    """Interpolated position(s): ``psi`` (..., n) times ``coords`` (n, dim)."""
    return psi @ coords


def jacobian(dpsids: np.ndarray, coords: np.ndarray) -> np.ndarray:
    """``J[q, a, b] = dx_b / ds_a`` at every point ``q``."""
    return np.einsum('qna,nb->qab', dpsids, coords)


def dshape_eulerian(dpsids: np.ndarray, coords: np.ndarray):
    """Eulerian derivatives ``dpsidx`` (nq, n, dim) and ``det J`` (nq,).

    ``dpsids`` are the local derivatives (nq, n, dim) tabulated at the
    quadrature points, ``coords`` the current nodal positions (n, dim).
    """
    J = jacobian(dpsids, coords)
    det = np.linalg.det(J)
    if np.any(det <= 0.0):
        raise ConfigurationError(
            f"Inverted or degenerate element: det J = {det.min():.3e}."
        )
    inv_J = np.linalg.inv(J)
    dpsidx = np.einsum('qna,qba->qnb', dpsids, inv_J)
    return dpsidx, det


def line_tangent(dpsids: np.ndarray, coords: np.ndarray):
    """Unnormalised tangent ``dx/ds`` (nq, dim) and its length (nq,)."""
    t = np.einsum('qn,nb->qb', dpsids[:, :, 0], coords)
    return t, np.linalg.norm(t, axis=1)
