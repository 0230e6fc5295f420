"""Metric field builder: one estimate per vertex plus a deterministic fallback."""
from __future__ import annotations

import time
from typing import Optional, Set, Tuple, Union

import numpy as np

from .config import AdaptParams
from .defmet import define_point_metric
from .linalg import embed_tangent, rotmatrix
from .logging_utils import get_logger
from .mesh import SurfaceMesh
from .metric import IsotropicMetric, MetricField, MetricKind, RidgeMetric
from .stats import SizeMapStats, format_stats_table

log = get_logger('anisosurf.sizemap')

__all__ = ['define_size_map', 'fallback_metric']


def _prepare_field(mesh: SurfaceMesh, metric) -> Tuple[MetricField, bool]:
    if metric is None:
        return MetricField.allocate(mesh.capacity), False
    if isinstance(metric, MetricField):
        metric.ensure_capacity(mesh.capacity)
        return metric, True
    return MetricField.from_array(metric, mesh), True


def fallback_metric(mesh: SurfaceMesh, field: MetricField, params: AdaptParams, ip: int) -> None:
    """Store the ``hmax`` isotropic metric of vertex ``ip`` in its own storage form."""
    isqhmax = params.isqhmax
    if mesh.is_singular(ip):
        field.set(ip, IsotropicMetric(isqhmax))
    elif mesh.is_ridge(ip):
        field.set(ip, RidgeMetric(isqhmax, isqhmax, isqhmax))
    else:
        if mesh.is_ref(ip) and mesh.ig[ip] >= 0:
            n = mesh.xnormals(ip)[0]
        else:
            n = mesh.n[ip]
        r = rotmatrix(n)
        field.set_raw(ip, embed_tangent(r, (isqhmax, 0.0, isqhmax), isqhmax), MetricKind.FULL)


def _count(stats: SizeMapStats, mesh: SurfaceMesh, idp: int) -> None:
    if mesh.is_singular(idp):
        stats.singular += 1
    elif mesh.is_ridge(idp):
        stats.ridge += 1
    elif mesh.is_ref(idp):
        stats.ref += 1
    else:
        stats.regular += 1


def define_size_map(mesh: SurfaceMesh, params: Optional[AdaptParams] = None,
                    metric: Union[MetricField, np.ndarray, None] = None) -> Tuple[MetricField, SizeMapStats]:
    """Compute the geometric metric of every vertex of ``mesh``.

    Parameters
    ----------
    mesh : SurfaceMesh
        Surface with its feature tags and normals set.
    params : AdaptParams, optional
        Size bounds and tolerances; unset bounds are derived from the
        bounding-box diagonal.
    metric : MetricField or array, optional
        Caller metric. Vertices the estimators cannot resolve keep their
        supplied value instead of the isotropic ``hmax`` fallback.

    Returns
    -------
    (MetricField, SizeMapStats)

    Raises
    ------
    MetricAllocationError
        The metric storage could not be allocated.
    TopologyError
        The mesh topology around a vertex is inconsistent.
    """
    t0 = time.perf_counter()
    params = (params or AdaptParams()).resolved(mesh)
    field, supplied = _prepare_field(mesh, metric)
    log.info('** Defining map: hmin=%g hmax=%g hausd=%g', params.hmin, params.hmax, params.hausd)

    stats = SizeMapStats(n_points=mesh.n_points, hmin=params.hmin, hmax=params.hmax)
    base = int(mesh.flag.max(initial=0)) + 1
    failed: Set[int] = set()

    for it in mesh.active_triangles():
        it = int(it)
        for i in range(3):
            idp = int(mesh.tris[it, i])
            if mesh.flag[idp] == base or idp in failed or not mesh.vertex_ok(idp):
                continue
            if define_point_metric(mesh, field, params, it, i):
                mesh.flag[idp] = base
                _count(stats, mesh, idp)
            else:
                failed.add(idp)
    stats.failed = len(failed)

    for ip in range(mesh.n_points):
        if not mesh.vertex_ok(ip) or mesh.flag[ip] == base:
            continue
        if supplied and field.kinds[ip] != MetricKind.UNSET:
            stats.kept_supplied += 1
        else:
            fallback_metric(mesh, field, params, ip)
            stats.fallback_used += 1
        mesh.flag[ip] = base

    stats.time_total = time.perf_counter() - t0
    log.info('size map: %d estimated, %d fallback, %d supplied kept',
             stats.estimated, stats.fallback_used, stats.kept_supplied)
    log.debug('size map stats:\n%s', format_stats_table(stats.to_dict()))
    return field, stats
