"""Anisotropic gradation of the metric field.

Sweeps over the edges of the active triangles and, for each edge, bounds the
specific speed at one end by the speed at the other end:

    speed_small >= speed_big / (1 + hgrad * l * speed_big)

The smaller speed is raised by growing the eigenvalue of the tangential
tensor whose eigenvector is closest to the edge. Vertices remember the sweep
(epoch) in which they last changed; an edge is revisited only when one of its
ends changed during the current or the previous sweep.
"""
from __future__ import annotations

import math
import time
from typing import NamedTuple, Optional, Tuple

import numpy as np

from .config import AdaptParams
from .constants import EPS, EPSD2
from .linalg import eigensym2, embed_tangent, quadform6, rmtr, rotmatrix, sym2_from_eig
from .logging_utils import get_logger
from .mesh import INXT, IPRV, SurfaceMesh
from .metric import MetricField, build_ridge_metric
from .stats import GradationReport, format_stats_table

log = get_logger('anisosurf.gradation')

__all__ = ['gradate_metric', 'grad_two_metrics', 'edge_speeds']


class _EndState(NamedTuple):
    ip: int
    r: np.ndarray       # rotation to the tangent frame
    mtan: np.ndarray    # [m00, m01, m11] tangential block
    t: np.ndarray       # unit edge direction in the tangent frame
    speed: float
    m6: np.ndarray      # ambient tensor used for the edge


class _EdgeState(NamedTuple):
    end1: _EndState
    end2: _EndState
    length: float


def _normal_and_metric(mesh: SurfaceMesh, field: MetricField, ip: int,
                       nt: np.ndarray, u: np.ndarray) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    if mesh.is_singular(ip):
        return nt, field.values[ip]
    if mesh.is_ridge(ip):
        n1, n2 = mesh.xnormals(ip)
        n = n2 if abs(float(nt @ n1)) < abs(float(nt @ n2)) else n1
        return n, build_ridge_metric(mesh, field, ip, u)
    if mesh.is_ref(ip):
        return mesh.xnormals(ip)[0], field.values[ip]
    return mesh.n[ip], field.values[ip]


def _end_state(ip: int, n: np.ndarray, m6: np.ndarray, u: np.ndarray) -> Optional[_EndState]:
    r = rotmatrix(n)
    mr = rmtr(r, m6)
    mtan = np.array([mr[0, 0], mr[0, 1], mr[1, 1]])
    c = r @ u
    dd = c[0] * c[0] + c[1] * c[1]
    if dd < EPSD2:
        return None
    t = c[:2] / math.sqrt(dd)
    q = mtan[0] * t[0] * t[0] + 2.0 * mtan[1] * t[0] * t[1] + mtan[2] * t[1] * t[1]
    return _EndState(ip, r, mtan, t, math.sqrt(max(q, 0.0)), m6)


def _support_length(u: np.ndarray, n1: np.ndarray, m1: np.ndarray,
                     n2: np.ndarray, m2: np.ndarray) -> float:
    """Average of the metric lengths of the edge tangents at both ends."""
    t1 = u - float(u @ n1) * n1
    t2 = -u + float(u @ n2) * n2
    return 0.5 * (math.sqrt(max(quadform6(m1, t1), 0.0)) + math.sqrt(max(quadform6(m2, t2), 0.0)))


def _edge_state(mesh: SurfaceMesh, field: MetricField, params: AdaptParams,
                iel: int, i: int) -> Optional[_EdgeState]:
    tri = mesh.tris[iel]
    np1 = int(tri[INXT[i]])
    np2 = int(tri[IPRV[i]])
    nt = mesh.tri_normal(iel)
    if nt is None:
        return None
    u = mesh.points[np2] - mesh.points[np1]

    n1, m1 = _normal_and_metric(mesh, field, np1, nt, u)
    n2, m2 = _normal_and_metric(mesh, field, np2, nt, u)
    if m1 is None or m2 is None:
        return None

    if params.grad_length == 'metric':
        length = _support_length(u, n1, m1, n2, m2)
    else:
        length = math.sqrt(float(u @ u))

    end1 = _end_state(np1, n1, m1, u)
    end2 = _end_state(np2, n2, m2, -u)
    if end1 is None or end2 is None:
        return None
    return _EdgeState(end1, end2, length)


def edge_speeds(mesh: SurfaceMesh, field: MetricField, iel: int, i: int,
                params: Optional[AdaptParams] = None) -> Optional[Tuple[float, float]]:
    """Specific speeds along edge ``i`` of triangle ``iel`` at its two ends.

    The first value belongs to ``tris[iel][INXT[i]]``, the second one to
    ``tris[iel][IPRV[i]]``. Returns None when the edge cannot be evaluated.
    """
    state = _edge_state(mesh, field, params or AdaptParams(), iel, i)
    if state is None:
        return None
    return state.end1.speed, state.end2.speed


def _ridge_slot(stored: np.ndarray, lam: float) -> int:
    c0 = abs(stored[0] - lam)
    c1 = abs(stored[1] - lam)
    c2 = abs(stored[2] - lam)
    if c0 < c1:
        return 0 if c0 < c2 else 2
    return 1 if c1 < c2 else 2


def _raise_speed(mesh: SurfaceMesh, field: MetricField, params: AdaptParams,
                 end: _EndState, alpha: float) -> bool:
    """Grow the stored metric of ``end.ip``; False if the ``isqhmin`` cap left it unchanged."""
    lam, vp = eigensym2(end.mtan)
    c = vp @ end.t
    ichg = 0 if abs(c[0]) > abs(c[1]) else 1
    beta = (alpha * alpha - end.speed * end.speed) / (c[ichg] * c[ichg])
    # an unset hmin puts no cap on the growth
    cap = params.isqhmin if params.hmin > 0.0 else math.inf

    stored = field.raw(end.ip)
    if mesh.is_singular(end.ip):
        old = stored[0]
        grown = min(old + 0.5 * beta, cap)
        if grown <= old:
            return False
        stored[0] = stored[3] = stored[5] = grown
    elif mesh.is_ridge(end.ip):
        slot = _ridge_slot(stored, lam[ichg])
        old = stored[slot]
        grown = min(old + beta, cap)
        if grown <= old:
            return False
        stored[slot] = grown
    else:
        lam = np.array(lam, dtype=float)
        grown = min(lam[ichg] + beta, cap)
        if grown <= lam[ichg]:
            return False
        lam[ichg] = grown
        mtan = sym2_from_eig(lam, vp)
        stored[:] = embed_tangent(end.r, mtan, 0.0, base=rmtr(end.r, stored))
    return True


def grad_two_metrics(mesh: SurfaceMesh, field: MetricField, params: AdaptParams,
                     iel: int, i: int, report: Optional[GradationReport] = None) -> Optional[int]:
    """Enforce the gradation bound on edge ``i`` of triangle ``iel``.

    Returns the id of the vertex whose metric was modified, or None.
    """
    state = _edge_state(mesh, field, params, iel, i)
    if state is None:
        if report is not None:
            report.skipped_edges += 1
        return None

    if state.end2.speed > state.end1.speed:
        big, small = state.end2, state.end1
    else:
        big, small = state.end1, state.end2

    alpha = big.speed / (1.0 + params.hgrad * state.length * big.speed)
    if small.speed >= alpha - EPS:
        return None
    if not _raise_speed(mesh, field, params, small, alpha):
        return None
    return small.ip


def _ridges_isotropic(mesh: SurfaceMesh, field: MetricField) -> None:
    for ip in range(mesh.n_points):
        if not mesh.vertex_ok(ip) or not mesh.is_ridge(ip):
            continue
        m = field.raw(ip)
        m[0:3] = max(m[0], m[1], m[2])


def gradate_metric(mesh: SurfaceMesh, field: MetricField,
                   params: Optional[AdaptParams] = None) -> GradationReport:
    """Relax the metric field until no edge violates the gradation bound.

    Ridge vertices are made isotropic first. Stops after a sweep without any
    update or after ``params.max_grad_iter`` sweeps; a capped run does not
    guarantee the bound on every edge. Grown eigenvalues are capped at
    ``isqhmin``; an edge whose bound would need more is left as it is.
    """
    t0 = time.perf_counter()
    params = (params or AdaptParams()).resolved(mesh)
    report = GradationReport(max_iter=params.max_grad_iter)

    base = 0
    mesh.flag[:] = base
    _ridges_isotropic(mesh, field)

    tris = mesh.active_triangles()
    flag = mesh.flag
    nu = 0
    while True:
        base += 1
        nu = 0
        for k in tris:
            k = int(k)
            tri = mesh.tris[k]
            for i in range(3):
                np1 = tri[INXT[i]]
                np2 = tri[IPRV[i]]
                if flag[np1] < base - 1 and flag[np2] < base - 1:
                    continue
                ier = grad_two_metrics(mesh, field, params, k, i, report)
                if ier is not None:
                    flag[ier] = base
                    nu += 1
        report.updated += nu
        report.iterations += 1
        if report.iterations >= params.max_grad_iter or nu == 0:
            break

    report.converged = nu == 0
    report.time_total = time.perf_counter() - t0
    log.info('gradation: %d updated, %d iter.', report.updated, report.iterations)
    log.debug('gradation report:\n%s', format_stats_table(report.to_dict()))
    if not report.converged:
        log.warning('gradation stopped after %d sweeps without reaching a fixed point',
                    report.iterations)
    return report
