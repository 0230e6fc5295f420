"""Edge length and triangle area in the metric field.

Lengths average the specific lengths of the support-curve tangents at both
ends of the edge; areas integrate ``sqrt(det(J^T M J))`` over the Bezier
patch with a three-point rule at the corners.
"""
from __future__ import annotations

import math
from typing import Tuple

import numba
import numpy as np

from .bezier import bezier_patch
from .logging_utils import get_logger
from .linalg import quadform6, sym6_to_mat
from .mesh import TAG_RIDGE, SurfaceMesh
from .metric import MetricField, metric_along

log = get_logger('anisosurf.lengths')

__all__ = ['edge_length', 'edge_lengths', 'triangle_area']


def _curve_tangent(mesh: SurfaceMesh, ip: int, u: np.ndarray, is_ridge: bool) -> np.ndarray:
    """Tangent at ``ip`` of the support curve of an edge leaving ``ip`` along ``u``."""
    if mesh.is_singular(ip):
        return u.copy()
    if is_ridge:
        t = mesh.n[ip]
        return float(u @ t) * t
    if mesh.is_ridge(ip):
        n1, n2 = mesh.xnormals(ip)
        ps1 = float(u @ n1)
        ps2 = float(u @ n2)
        n, ps = (n2, ps2) if abs(ps2) < abs(ps1) else (n1, ps1)
    else:
        n = mesh.surface_normal(ip)
        ps = float(u @ n)
    return u - ps * n


def _edge_setup(mesh: SurfaceMesh, field: MetricField, ip0: int, ip1: int, is_ridge: bool):
    u = mesh.points[ip1] - mesh.points[ip0]
    m0 = metric_along(mesh, field, ip0, u)
    m1 = metric_along(mesh, field, ip1, u)
    if m0 is None or m1 is None:
        return None
    g0 = _curve_tangent(mesh, ip0, u, is_ridge)
    g1 = _curve_tangent(mesh, ip1, -u, is_ridge)
    return m0, g0, m1, g1


def edge_length(mesh: SurfaceMesh, field: MetricField, ip0: int, ip1: int, is_ridge: bool = False) -> float:
    """Length of edge ``ip0``-``ip1`` in the metric; -1.0 if a ridge tensor cannot be built."""
    setup = _edge_setup(mesh, field, ip0, ip1, is_ridge)
    if setup is None:
        return -1.0
    m0, g0, m1, g1 = setup

    l0 = quadform6(m0, g0)
    l1 = quadform6(m1, g1)
    if l0 < 0.0:
        log.warning('edge (%d,%d): negative length form %e at %d', ip0, ip1, l0, ip0)
        l0 = 1.0
    if l1 < 0.0:
        log.warning('edge (%d,%d): negative length form %e at %d', ip0, ip1, l1, ip1)
        l1 = 1.0
    return 0.5 * (math.sqrt(l0) + math.sqrt(l1))


@numba.jit(nopython=True, cache=True)
def _edge_lengths_kernel(m0, g0, m1, g1, out):
    """Average specific length of each edge; returns the number of clamped forms."""
    n_neg = 0
    for e in range(out.shape[0]):
        acc = 0.0
        for side in range(2):
            if side == 0:
                m = m0[e]
                g = g0[e]
            else:
                m = m1[e]
                g = g1[e]
            q = (m[0] * g[0] * g[0] + m[3] * g[1] * g[1] + m[5] * g[2] * g[2]
                 + 2.0 * (m[1] * g[0] * g[1] + m[2] * g[0] * g[2] + m[4] * g[1] * g[2]))
            if q < 0.0:
                q = 1.0
                n_neg += 1
            acc += math.sqrt(q)
        out[e] = 0.5 * acc
    return n_neg


def edge_lengths(mesh: SurfaceMesh, field: MetricField, edges=None) -> Tuple[np.ndarray, np.ndarray]:
    """Metric lengths of many edges at once.

    ``edges`` defaults to the unique edges of the active triangles. Ridge
    status is looked up in the mesh edge tags. Returns ``(edges, lengths)``;
    an edge whose ridge tensor cannot be built gets -1.0.
    """
    if edges is None:
        edges, ridge = mesh.edges()
    else:
        edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
        ridge = np.array([bool(mesh.edge_tag(int(a), int(b)) & TAG_RIDGE) for a, b in edges], dtype=bool)

    n_edges = edges.shape[0]
    m0 = np.zeros((n_edges, 6))
    m1 = np.zeros((n_edges, 6))
    g0 = np.zeros((n_edges, 3))
    g1 = np.zeros((n_edges, 3))
    bad = np.zeros(n_edges, dtype=bool)
    for e in range(n_edges):
        setup = _edge_setup(mesh, field, int(edges[e, 0]), int(edges[e, 1]), bool(ridge[e]))
        if setup is None:
            bad[e] = True
            continue
        m0[e], g0[e], m1[e], g1[e] = setup

    lengths = np.empty(n_edges)
    n_neg = _edge_lengths_kernel(m0, g0, m1, g1, lengths)
    if n_neg:
        log.warning('%d negative length forms clamped', n_neg)
    lengths[bad] = -1.0
    return edges, lengths


def triangle_area(mesh: SurfaceMesh, field: MetricField, it: int) -> float:
    """Area of triangle ``it`` in the metric; 0.0 when it cannot be evaluated."""
    patch = bezier_patch(mesh, it)
    if patch is None:
        return 0.0
    tri = mesh.tris[it]
    pts = mesh.points[tri]

    surf = 0.0
    for i in range(3):
        ip = int(tri[i])
        # direction of the median, used to pick the sheet of a ridge vertex
        u = 0.5 * (pts[(i + 1) % 3] + pts[(i + 2) % 3]) - pts[i]
        m = metric_along(mesh, field, ip, u)
        if m is None:
            return 0.0
        jac = patch.corner_jacobian(i)
        g = jac.T @ sym6_to_mat(m) @ jac
        dens = g[0, 0] * g[1, 1] - g[1, 0] * g[0, 1]
        surf += math.sqrt(abs(dens))
    return surf / 3.0
