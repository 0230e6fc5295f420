"""Point metric estimators.

One estimator per vertex class. Each one reads the geometry around a single
vertex, turns curvature into a specific size through ``coef * kappa / hausd``
clamped to ``[isqhmax, isqhmin]`` and writes the result in the metric field.

They return True on success and False on a local failure (degenerate
projection, singular fit); the caller then falls back to a default tensor.
Inconsistent topology raises :class:`TopologyError`.
"""
from __future__ import annotations

import math
from typing import List, Optional, Tuple

import numpy as np

from .bezier import CORNER_UV, bezier_edge, bezier_patch, corner_param
from .config import AdaptParams
from .constants import EPSD, SIZE_COEF_CURVE, SIZE_COEF_QUADRIC
from .errors import TopologyError
from .linalg import eigensym2, embed_tangent, rotmatrix, sym2_from_eig, sys33sym
from .logging_utils import get_logger
from .mesh import INXT, IPRV, TAG_FEATURE_EDGE, TAG_REF, TAG_RIDGE, Ball, SurfaceMesh
from .metric import IsotropicMetric, MetricField, MetricKind, RidgeMetric

log = get_logger('anisosurf.defmet')

# Sample points of a ball triangle, as weights on the corners (i0, i1, i2):
# midpoint of the edge leaving the vertex, a face point and the opposite edge midpoint
_PATCH_SAMPLES = ((0.5, 0.5, 0.0), (0.5, 0.25, 0.25), (0.0, 0.5, 0.5))

__all__ = [
    'define_singular_metric', 'define_ridge_metric', 'define_ref_metric',
    'define_regular_metric', 'define_point_metric',
]


def _curve_size(kappa: float, params: AdaptParams) -> float:
    return params.truncate(SIZE_COEF_CURVE * kappa / params.hausd)


def _arc_curvature(p0, b0, b1) -> Optional[float]:
    """Curvature at ``p0`` of the cubic arc with inner control points b0, b1."""
    tau = 3.0 * (b0 - p0)
    ll = float(tau @ tau)
    if ll < EPSD:
        return None
    gammasec = 6.0 * p0 - 12.0 * b0 + 6.0 * b1
    c = gammasec - (float(gammasec @ tau) / ll) * tau
    return max(0.0, math.sqrt(float(c @ c)) / ll)


def define_singular_metric(mesh: SurfaceMesh, field: MetricField, params: AdaptParams,
                           it: int, ip: int) -> bool:
    """Isotropic size from the largest curvature of the edge curves around ``ip``."""
    idp = int(mesh.tris[it, ip])
    p0 = mesh.points[idp]
    ball = mesh.ball(it, ip)

    maxkappa = 0.0
    for iel, i0 in ball:
        i1, i2 = INXT[i0], IPRV[i0]
        nt = mesh.tri_normal(iel)
        feature = bool(mesh.edge_tags[iel, i2] & TAG_FEATURE_EDGE)
        if nt is None and not feature:
            continue
        b0, b1 = bezier_edge(mesh, idp, int(mesh.tris[iel, i1]), feature, nt)
        kappa = _arc_curvature(p0, b0, b1)
        if kappa is not None:
            maxkappa = max(maxkappa, kappa)

    field.set(idp, IsotropicMetric(_curve_size(maxkappa, params)))
    return True


def _find_sector(lispoi: np.ndarray, u: np.ndarray) -> Optional[int]:
    """First sector ``(lispoi[k], lispoi[k+1])`` strictly containing direction ``u``."""
    for k in range(lispoi.shape[0] - 1):
        detg = lispoi[k, 0] * u[1] - lispoi[k, 1] * u[0]
        detd = u[0] * lispoi[k + 1, 1] - u[1] * lispoi[k + 1, 0]
        if detg > 0.0 and detd > 0.0:
            return k
    return None


def _conormal_size(mesh: SurfaceMesh, params: AdaptParams, idp: int,
                   t: np.ndarray, n: np.ndarray, half: Ball) -> Optional[float]:
    """Size across the ridge on the sheet of normal ``n``; None if not computable."""
    p0 = mesh.points[idp]
    r = rotmatrix(n)
    lispoi = (mesh.points[half.boundary_points(mesh)] - p0) @ r.T

    trot = r @ t
    u = np.array([-trot[1], trot[0]])
    k = _find_sector(lispoi, u)
    if k is None:
        u = -u
        k = _find_sector(lispoi, u)
    if k is None:
        log.debug('ridge point %d: no triangle across the ridge tangent', idp)
        return None

    iel, i0 = half.entries[k]
    patch = bezier_patch(mesh, iel)
    if patch is None:
        return None

    detg = lispoi[k, 0] * u[1] - lispoi[k, 1] * u[0]
    detd = u[0] * lispoi[k + 1, 1] - u[1] * lispoi[k + 1, 0]
    det = detg + detd
    if det < EPSD:
        return None
    w1 = detd / det
    lam = corner_param(i0, (0.0, w1, 1.0 - w1)) - CORNER_UV[i0]

    tau = patch.corner_jacobian(i0) @ lam
    ll = float(tau @ tau)
    if ll < EPSD:
        return None
    d_uu, d_uv, d_vv = patch.hessian(*CORNER_UV[i0])
    gammasec = d_uu * lam[0] * lam[0] + 2.0 * d_uv * lam[0] * lam[1] + d_vv * lam[1] * lam[1]
    c = gammasec - (float(gammasec @ tau) / ll) * tau
    kappa = max(0.0, math.sqrt(float(c @ c)) / ll)
    return _curve_size(kappa, params)


def define_ridge_metric(mesh: SurfaceMesh, field: MetricField, params: AdaptParams,
                        it: int, ip: int) -> bool:
    """Sizes along the ridge tangent and across it on both sheets.

    A size that cannot be measured keeps the ``isqhmax`` seed.
    """
    idp = int(mesh.tris[it, ip])
    p0 = mesh.points[idp]
    t = mesh.n[idp]
    n1, n2 = mesh.xnormals(idp)
    sizes = [params.isqhmax] * 3

    half1, half2, ip1, ip2 = mesh.half_balls(it, ip)

    for ipr in (ip1, ip2):
        b0, b1 = bezier_edge(mesh, idp, ipr, True)
        kappa = _arc_curvature(p0, b0, b1)
        if kappa is not None:
            sizes[0] = max(sizes[0], _curve_size(kappa, params))

    for side, (n, half) in enumerate(((n1, half1), (n2, half2)), start=1):
        size = _conormal_size(mesh, params, idp, t, n, half)
        if size is not None:
            sizes[side] = max(sizes[side], size)

    field.set(idp, RidgeMetric(*sizes))
    return True


def _rotated_ball(mesh: SurfaceMesh, ball: Ball, p0: np.ndarray, r: np.ndarray) -> np.ndarray:
    return (mesh.points[ball.boundary_points(mesh)] - p0) @ r.T


def _projection_ok(lispoi: np.ndarray, closed: bool, strict: bool) -> bool:
    """Check the rotated ball stays a star-shaped fan around the origin."""
    nxt = np.roll(lispoi, -1, axis=0) if closed else lispoi[1:]
    cur = lispoi if closed else lispoi[:-1]
    det2d = cur[:, 0] * nxt[:, 1] - cur[:, 1] * nxt[:, 0]
    if strict:
        return bool(np.all(det2d > 0.0))
    return bool(np.all(det2d >= 0.0))


def _quadric_samples(mesh: SurfaceMesh, ball: Ball, p0: np.ndarray, r: np.ndarray,
                     lispoi: np.ndarray) -> np.ndarray:
    """Ball points and Bezier samples of each ball triangle in the tangent frame."""
    samples = [lispoi]
    for iel, i0 in ball:
        patch = bezier_patch(mesh, iel)
        if patch is None:
            continue
        patch = patch.rotated(p0, r)
        samples.append(np.array([patch.point(*corner_param(i0, w)) for w in _PATCH_SAMPLES]))
    return np.vstack(samples)


def _fit_curvature_tensor(samples: np.ndarray, params: AdaptParams) -> Tuple[Optional[np.ndarray], bool]:
    """Fit ``z = a x^2 + b y^2 + c xy`` and return the truncated 2x2 size tensor.

    Returns ``(mtan, flat)``: ``flat`` is True when the samples carry no
    height; ``mtan`` is None when the normal equations are singular.
    """
    x, y, z = samples[:, 0], samples[:, 1], samples[:, 2]
    xx, yy, xy = x * x, y * y, x * y
    tAA = np.array([
        np.sum(xx * xx), np.sum(xx * yy), np.sum(xx * xy),
        np.sum(yy * yy), np.sum(xy * yy), np.sum(xx * yy),
    ])
    tAb = np.array([np.sum(xx * z), np.sum(yy * z), np.sum(xy * z)])
    if float(tAb @ tAb) < EPSD:
        return None, True

    coefs = sys33sym(tAA, tAb)
    if coefs is None:
        return None, False
    intm = np.array([2.0 * coefs[0], coefs[2], 2.0 * coefs[1]])
    kappa, vp = eigensym2(intm)
    kappa = np.array([params.truncate(SIZE_COEF_QUADRIC * abs(k) / params.hausd) for k in kappa])
    return sym2_from_eig(kappa, vp), False


def _intersect_keep_directions(m, n, params: AdaptParams) -> np.ndarray:
    """Intersect 2x2 tensor ``n`` into ``m`` in the eigenbasis of ``m``."""
    lam, vp = eigensym2(m)
    lam = np.array(lam, dtype=float)
    for i in range(2):
        siz = n[0] * vp[i, 0] * vp[i, 0] + 2.0 * n[1] * vp[i, 0] * vp[i, 1] + n[2] * vp[i, 1] * vp[i, 1]
        lam[i] = min(max(lam[i], siz), params.isqhmin)
    return sym2_from_eig(lam, vp)


def _ref_neighbours(mesh: SurfaceMesh, ball: Ball) -> List[int]:
    ipref: List[int] = []
    for iel, i0 in ball:
        tri = mesh.tris[iel]
        i1, i2 = INXT[i0], IPRV[i0]
        # edge opposite i1 joins the vertex to tri[i2], and conversely
        for edge, other in ((i1, int(tri[i2])), (i2, int(tri[i1]))):
            if mesh.edge_tags[iel, edge] & TAG_REF and other not in ipref:
                ipref.append(other)
    if len(ipref) > 2:
        raise TopologyError(
            f"reference point {ball.vertex} is the end of {len(ipref)} reference edges", ball.vertex)
    return ipref


def _isotropic_max(field: MetricField, idp: int, params: AdaptParams) -> None:
    field.set_raw(idp, IsotropicMetric(params.isqhmax).to_sym6(), MetricKind.FULL)


def define_ref_metric(mesh: SurfaceMesh, field: MetricField, params: AdaptParams,
                      it: int, ip: int) -> bool:
    """Quadric fit in the tangent plane, refined along the reference curve."""
    idp = int(mesh.tris[it, ip])
    p0 = mesh.points[idp]
    ball = mesh.ball(it, ip)
    ipref = _ref_neighbours(mesh, ball)
    if len(ipref) < 2:
        log.debug('reference point %d: %d reference neighbours', idp, len(ipref))
        return False

    normal = mesh.xnormals(idp)[0]
    r = rotmatrix(normal)
    lispoi = _rotated_ball(mesh, ball, p0, r)
    if not _projection_ok(lispoi, ball.closed, strict=False):
        log.debug('reference point %d: bad projection over the tangent plane', idp)
        return False

    mtan, flat = _fit_curvature_tensor(_quadric_samples(mesh, ball, p0, r, lispoi), params)
    if flat:
        _isotropic_max(field, idp, params)
        return True
    if mtan is None:
        log.debug('reference point %d: singular quadric fit', idp)
        return False

    # curvature of the reference curve toward both neighbours
    t = mesh.n[idp]
    kappacur = 0.0
    for ipr in ipref:
        p1 = mesh.points[ipr]
        u = p1 - p0
        b0 = r @ ((float(u @ t) / 3.0) * t)
        if mesh.tags[ipr] & (TAG_REF | TAG_RIDGE) and not mesh.is_singular(ipr):
            t1 = mesh.n[ipr]
            c = p1 - (float(u @ t1) / 3.0) * t1
        else:
            c = p1 - u / 3.0
        b1 = r @ (c - p0)

        tau = 3.0 * b0[:2]
        ll = float(tau @ tau)
        if ll < EPSD:
            continue
        gammasec = -12.0 * b0 + 6.0 * b1
        kappacur = max(kappacur, abs(gammasec[2]) / ll)

    tau = (r @ t)[:2]
    kcur = _curve_size(kappacur, params)
    isqhmax = params.isqhmax
    mcurve = np.array([
        kcur * tau[0] * tau[0] + isqhmax * tau[1] * tau[1],
        (kcur - isqhmax) * tau[0] * tau[1],
        kcur * tau[1] * tau[1] + isqhmax * tau[0] * tau[0],
    ])
    mtan = _intersect_keep_directions(mcurve, mtan, params)
    field.set_raw(idp, embed_tangent(r, mtan, isqhmax), MetricKind.FULL)
    return True


def define_regular_metric(mesh: SurfaceMesh, field: MetricField, params: AdaptParams,
                          it: int, ip: int) -> bool:
    """Quadric fit of the surface in the tangent plane at a smooth vertex."""
    idp = int(mesh.tris[it, ip])
    p0 = mesh.points[idp]
    ball = mesh.ball(it, ip)

    r = rotmatrix(mesh.n[idp])
    lispoi = _rotated_ball(mesh, ball, p0, r)
    if not _projection_ok(lispoi, ball.closed, strict=True):
        log.debug('regular point %d: bad projection over the tangent plane', idp)
        return False

    mtan, flat = _fit_curvature_tensor(_quadric_samples(mesh, ball, p0, r, lispoi), params)
    if flat:
        _isotropic_max(field, idp, params)
        return True
    if mtan is None:
        log.debug('regular point %d: singular quadric fit', idp)
        return False

    field.set_raw(idp, embed_tangent(r, mtan, params.isqhmax), MetricKind.FULL)
    return True


def define_point_metric(mesh: SurfaceMesh, field: MetricField, params: AdaptParams,
                        it: int, ip: int) -> bool:
    """Dispatch local vertex ``ip`` of triangle ``it`` to its estimator."""
    idp = int(mesh.tris[it, ip])
    if mesh.is_singular(idp):
        return define_singular_metric(mesh, field, params, it, ip)
    if mesh.is_ridge(idp):
        return define_ridge_metric(mesh, field, params, it, ip)
    if mesh.is_ref(idp):
        return define_ref_metric(mesh, field, params, it, ip)
    if mesh.tags[idp]:
        log.debug('point %d: tag %d has no estimator', idp, int(mesh.tags[idp]))
        return False
    return define_regular_metric(mesh, field, params, it, ip)
