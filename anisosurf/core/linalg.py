"""Small dense linear algebra on symmetric tensors.

Symmetric 3x3 tensors are stored as 6 values ``[m00, m01, m02, m11, m12, m22]``
and symmetric 2x2 tensors as 3 values ``[m00, m01, m11]``, matching the
layout of the metric array.
"""
from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np
import scipy.linalg

from .constants import EPS, EPSD, EPS_OFFDIAG

__all__ = [
    'rotmatrix', 'eigensym2', 'sys33sym', 'sym6_to_mat', 'mat_to_sym6', 'rmtr',
    'quadform6', 'sym2_from_eig', 'embed_tangent', 'tri_normal',
]


def sym6_to_mat(m6) -> np.ndarray:
    m = np.asarray(m6, dtype=float)
    return np.array([[m[0], m[1], m[2]],
                     [m[1], m[3], m[4]],
                     [m[2], m[4], m[5]]], dtype=float)


def mat_to_sym6(m: np.ndarray) -> np.ndarray:
    return np.array([m[0, 0], m[0, 1], m[0, 2], m[1, 1], m[1, 2], m[2, 2]], dtype=float)


def quadform6(m6, v) -> float:
    """Return ``vᵀ M v`` for a tensor in 6-slot storage."""
    m = m6
    return float(m[0] * v[0] * v[0] + m[3] * v[1] * v[1] + m[5] * v[2] * v[2]
                 + 2.0 * (m[1] * v[0] * v[1] + m[2] * v[0] * v[2] + m[4] * v[1] * v[2]))


def rotmatrix(n) -> np.ndarray:
    """Rotation ``R`` sending the unit vector ``n`` to ``e3``.

    The rows of ``R`` form a direct orthonormal frame whose third row is ``n``,
    so ``R @ v`` expresses ``v`` in the tangent-plane frame ``[z = 0]``.
    """
    n = np.asarray(n, dtype=float)
    aa = n[0] * n[0]
    bb = n[1] * n[1]
    ab = n[0] * n[1]
    ll = aa + bb
    cosalpha = float(n[2])
    sinalpha = math.sqrt(1.0 - min(1.0, cosalpha * cosalpha))

    if ll < EPS:
        if n[2] > 0.0:
            return np.eye(3)
        return np.diag([-1.0, 1.0, -1.0])

    l = math.sqrt(ll)
    r = np.empty((3, 3), dtype=float)
    r[0, 0] = (aa * cosalpha + bb) / ll
    r[0, 1] = ab * (cosalpha - 1.0) / ll
    r[0, 2] = -n[0] * sinalpha / l
    r[1, 0] = r[0, 1]
    r[1, 1] = (bb * cosalpha + aa) / ll
    r[1, 2] = -n[1] * sinalpha / l
    r[2, 0] = n[0]
    r[2, 1] = n[1]
    r[2, 2] = n[2]
    return r


def eigensym2(m3) -> Tuple[np.ndarray, np.ndarray]:
    """Eigen-decomposition of a symmetric 2x2 tensor ``[a, b, c]``.

    Returns ``(lam, vp)`` with ``vp[i]`` the unit eigenvector of ``lam[i]``.
    A (numerically) diagonal tensor keeps its diagonal order and the
    canonical basis; otherwise eigenvalues come in increasing order.
    """
    a, b, c = float(m3[0]), float(m3[1]), float(m3[2])
    if abs(b) <= EPS_OFFDIAG * max(abs(a), abs(c)) or b == 0.0:
        return np.array([a, c]), np.eye(2)

    dd = a - c
    sq_delta = math.sqrt(dd * dd + 4.0 * b * b)
    lam = np.array([0.5 * (a + c - sq_delta), 0.5 * (a + c + sq_delta)])

    # (A - lam0 I) v = 0 ; pick the better conditioned of the two rows
    v0 = np.array([b, lam[0] - a])
    v1 = np.array([lam[0] - c, b])
    v = v0 if v0 @ v0 >= v1 @ v1 else v1
    v = v / math.sqrt(v @ v)
    vp = np.array([[v[0], v[1]], [-v[1], v[0]]])
    return lam, vp


def sym2_from_eig(lam, vp) -> np.ndarray:
    """Recompose ``[m00, m01, m11]`` from eigenvalues and eigenvectors."""
    return np.array([
        lam[0] * vp[0, 0] * vp[0, 0] + lam[1] * vp[1, 0] * vp[1, 0],
        lam[0] * vp[0, 0] * vp[0, 1] + lam[1] * vp[1, 0] * vp[1, 1],
        lam[0] * vp[0, 1] * vp[0, 1] + lam[1] * vp[1, 1] * vp[1, 1],
    ])


def sys33sym(a6, b) -> Optional[np.ndarray]:
    """Solve the symmetric 3x3 system ``A x = b``, A in 6-slot storage.

    The system is scaled by its largest coefficient first; returns None when
    the scaled matrix is singular.
    """
    a = np.asarray(a6, dtype=float)
    magnitude = float(np.max(np.abs(a)))
    if magnitude < EPSD:
        return None
    mat = sym6_to_mat(a / magnitude)
    rhs = np.asarray(b, dtype=float) / magnitude
    if abs(float(np.linalg.det(mat))) < EPSD:
        return None
    try:
        return scipy.linalg.solve(mat, rhs, assume_a='sym')
    except (np.linalg.LinAlgError, ValueError):
        return None


def rmtr(r: np.ndarray, m6) -> np.ndarray:
    """Return ``R M Rᵀ`` (the tensor expressed in the rotated frame), 3x3."""
    return r @ sym6_to_mat(m6) @ r.T


def embed_tangent(r: np.ndarray, mtan, normal_size: float, base: Optional[np.ndarray] = None) -> np.ndarray:
    """Send a tangent-plane tensor back to the ambient frame.

    ``mtan`` is ``[m00, m01, m11]`` in the frame of ``r``. When ``base`` (a 3x3
    tensor in the rotated frame) is given, its normal row and column are kept;
    otherwise the normal direction receives ``normal_size``.
    """
    if base is None:
        mr = np.zeros((3, 3))
        mr[2, 2] = normal_size
    else:
        mr = np.array(base, dtype=float)
    mr[0, 0] = mtan[0]
    mr[0, 1] = mr[1, 0] = mtan[1]
    mr[1, 1] = mtan[2]
    return mat_to_sym6(r.T @ mr @ r)


def tri_normal(p0, p1, p2) -> Optional[np.ndarray]:
    """Unit normal of triangle (p0, p1, p2), None if degenerate."""
    n = np.cross(np.asarray(p1) - p0, np.asarray(p2) - p0)
    nn = float(n @ n)
    if nn < EPSD:
        return None
    return n / math.sqrt(nn)
