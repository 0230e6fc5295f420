"""Cubic Bezier reconstruction of edges and triangles from the discrete surface.

A triangle ``(p0, p1, p2)`` is mapped from barycentric parameters
``(u, v)``, ``w = 1 - u - v``, with ``p0`` at ``w = 1``, ``p1`` at ``u = 1``
and ``p2`` at ``v = 1``. The 10 control points are

    b0, b1, b2          the vertices
    b3, b4              edge p1-p2 (b3 next to p1)
    b5, b6              edge p2-p0 (b5 next to p2)
    b7, b8              edge p0-p1 (b7 next to p0)
    b9                  the inner point

Edge control points follow tangents on feature edges and the tangent planes
of the vertices elsewhere; ``b9`` is the usual ``E + (E - V)/2`` choice.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .constants import EPSD
from .mesh import INXT, IPRV, TAG_FEATURE_EDGE, SurfaceMesh

__all__ = ['CORNER_UV', 'BezierPatch', 'bezier_edge', 'bezier_patch', 'corner_param']

# (w, u, v) exponents of the Bernstein monomial of each control point
_EXPONENTS = (
    (3, 0, 0), (0, 3, 0), (0, 0, 3),
    (0, 2, 1), (0, 1, 2),
    (1, 0, 2), (2, 0, 1),
    (2, 1, 0), (1, 2, 0),
    (1, 1, 1),
)
_COEFS = tuple(6.0 / (math.factorial(i) * math.factorial(j) * math.factorial(k)) for i, j, k in _EXPONENTS)

# Parameter point of each local corner
CORNER_UV = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])


def corner_param(i0: int, weights) -> np.ndarray:
    """Parameter point with barycentric ``weights`` on corners ``(i0, i1, i2)``.

    ``weights[0]`` is attached to corner ``i0``, ``weights[1]`` to its
    successor and ``weights[2]`` to its predecessor.
    """
    return (weights[0] * CORNER_UV[i0] + weights[1] * CORNER_UV[INXT[i0]]
            + weights[2] * CORNER_UV[IPRV[i0]])


def _dpow(p: int, x: float, n: int) -> float:
    """n-th derivative of x**p."""
    if n > p:
        return 0.0
    return math.factorial(p) / math.factorial(p - n) * x ** (p - n)


@dataclass
class BezierPatch:
    b: np.ndarray  # (10, 3) control points

    def _terms(self, u: float, v: float, dw: int, du: int, dv: int) -> np.ndarray:
        w = 1.0 - u - v
        weights = np.array([
            c * _dpow(i, w, dw) * _dpow(j, u, du) * _dpow(k, v, dv)
            for c, (i, j, k) in zip(_COEFS, _EXPONENTS)
        ])
        return weights @ self.b

    def point(self, u: float, v: float) -> np.ndarray:
        return self._terms(u, v, 0, 0, 0)

    def jacobian(self, u: float, v: float) -> np.ndarray:
        """(3, 2) matrix of the partial derivatives along u and v."""
        dw = self._terms(u, v, 1, 0, 0)
        du = self._terms(u, v, 0, 1, 0) - dw
        dv = self._terms(u, v, 0, 0, 1) - dw
        return np.column_stack((du, dv))

    def hessian(self, u: float, v: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Second derivatives ``(d_uu, d_uv, d_vv)`` as 3-vectors."""
        t = self._terms
        ww = t(u, v, 2, 0, 0)
        wu = t(u, v, 1, 1, 0)
        wv = t(u, v, 1, 0, 1)
        d_uu = t(u, v, 0, 2, 0) - 2.0 * wu + ww
        d_uv = t(u, v, 0, 1, 1) - wu - wv + ww
        d_vv = t(u, v, 0, 0, 2) - 2.0 * wv + ww
        return d_uu, d_uv, d_vv

    def corner_jacobian(self, i: int) -> np.ndarray:
        return self.jacobian(*CORNER_UV[i])

    def rotated(self, origin: np.ndarray, r: np.ndarray) -> 'BezierPatch':
        """Patch expressed in the frame of ``r`` centred at ``origin``."""
        return BezierPatch((self.b - origin) @ r.T)


def bezier_edge(mesh: SurfaceMesh, ip0: int, ip1: int, feature: bool,
                nt: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Inner control points ``(b0, b1)`` of the cubic curve over edge ip0-ip1.

    ``b0`` is next to ``ip0``. Feature edges follow the curve tangents (the
    chord direction at singular points); other edges project the chord on
    the tangent plane of each endpoint, on the side of the triangle normal
    ``nt``.
    """
    p0 = mesh.points[ip0]
    p1 = mesh.points[ip1]
    u = p1 - p0

    if feature:
        ll = float(u @ u)
        if mesh.is_singular(ip0) or ll < EPSD:
            t0 = u / math.sqrt(ll) if ll >= EPSD else u
        else:
            t0 = mesh.n[ip0]
        if mesh.is_singular(ip1) or ll < EPSD:
            t1 = u / math.sqrt(ll) if ll >= EPSD else u
        else:
            t1 = mesh.n[ip1]
        b0 = p0 + (float(u @ t0) / 3.0) * t0
        b1 = p1 - (float(u @ t1) / 3.0) * t1
        return b0, b1

    n0 = mesh.surface_normal(ip0, nt)
    n1 = mesh.surface_normal(ip1, nt)
    b0 = p0 + (u - float(u @ n0) * n0) / 3.0
    b1 = p1 + (-u + float(u @ n1) * n1) / 3.0
    return b0, b1


def bezier_patch(mesh: SurfaceMesh, it: int) -> Optional[BezierPatch]:
    """Cubic Bezier patch of triangle ``it``; None for a degenerate triangle."""
    nt = mesh.tri_normal(it)
    if nt is None:
        return None
    tri = mesh.tris[it]
    b = np.zeros((10, 3))
    b[0:3] = mesh.points[tri]
    for i in range(3):
        i1, i2 = INXT[i], IPRV[i]
        feature = bool(mesh.edge_tags[it, i] & TAG_FEATURE_EDGE)
        b[3 + 2 * i], b[4 + 2 * i] = bezier_edge(mesh, int(tri[i1]), int(tri[i2]), feature, nt)
    e = b[3:9].mean(axis=0)
    vtx = b[0:3].mean(axis=0)
    b[9] = e + 0.5 * (e - vtx)
    return BezierPatch(b)
