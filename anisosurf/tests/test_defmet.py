import io
import logging
import math

import numpy as np
import pytest

from anisosurf.core.config import AdaptParams
from anisosurf.core.constants import SIZE_COEF_CURVE, SIZE_COEF_QUADRIC
from anisosurf.core.defmet import define_point_metric
from anisosurf.core.errors import TopologyError
from anisosurf.core.linalg import quadform6
from anisosurf.core.mesh import TAG_REF
from anisosurf.core.metric import MetricField, MetricKind
from anisosurf.core.sizemap import define_size_map
from anisosurf.tests.mesh_factories import (
    crease, cylinder, flat_grid, flat_square, grid_index, icosphere, tag_equator_ref, uv_sphere,
)

PARAMS = AdaptParams(hmin=0.01, hmax=1.0, hausd=0.01)


def _unit(v):
    v = np.asarray(v, dtype=float)
    return v / np.linalg.norm(v)


def test_flat_square_is_identity():
    mesh = flat_square()
    field, stats = define_size_map(mesh, AdaptParams(hmin=0.001, hmax=1.0, hausd=0.01))
    assert stats.regular == 4
    assert stats.fallback_used == 0
    for ip in range(4):
        assert field.kind(ip) == MetricKind.FULL
        assert np.allclose(field.tensor(ip), np.eye(3), atol=1e-12)


def test_sphere_curvature_sizes():
    mesh = icosphere(level=3)
    field, stats = define_size_map(mesh, PARAMS)
    assert stats.regular == mesh.n_points
    expected = SIZE_COEF_QUADRIC * 1.0 / PARAMS.hausd
    for ip in range(0, mesh.n_points, 37):
        lam = np.linalg.eigvalsh(field.tensor(ip))
        assert abs(lam[0] - PARAMS.isqhmax) < 1e-9
        assert lam[1] == pytest.approx(expected, rel=0.15)
        assert lam[2] == pytest.approx(expected, rel=0.15)
        # the smallest eigenvalue is along the normal
        assert quadform6(field.raw(ip), mesh.n[ip]) == pytest.approx(PARAMS.isqhmax)


def test_cylinder_is_anisotropic():
    n_theta = 32
    mesh = cylinder(n_theta=n_theta, n_z=6)
    field, _ = define_size_map(mesh, PARAMS)
    expected = SIZE_COEF_QUADRIC * 1.0 / PARAMS.hausd
    for i in range(0, n_theta, 5):
        ip = 3 * n_theta + i
        th = 2.0 * math.pi * i / n_theta
        circ = quadform6(field.raw(ip), [-math.sin(th), math.cos(th), 0.0])
        axial = quadform6(field.raw(ip), [0.0, 0.0, 1.0])
        assert circ == pytest.approx(expected, rel=0.15)
        assert axial < 3.0
        assert circ / axial > 10.0


def test_singular_point_is_clamped():
    mesh, line = crease()
    fine = AdaptParams(hmin=0.01, hmax=1.0, hausd=1e-9)
    field, stats = define_size_map(mesh, fine)
    assert stats.singular == 2
    assert field.kind(line[0]) == MetricKind.ISO
    assert np.allclose(field.tensor(line[0]), fine.isqhmin * np.eye(3))

    mesh, line = crease()
    coarse = AdaptParams(hmin=0.01, hmax=1.0, hausd=1e3)
    field, _ = define_size_map(mesh, coarse)
    assert np.allclose(field.tensor(line[-1]), coarse.isqhmax * np.eye(3))


def test_ridge_tangent_size_follows_crease_curvature():
    k = 0.5
    mesh, line = crease(k=k, n=10)
    field, stats = define_size_map(mesh, PARAMS)
    assert stats.ridge == len(line) - 2
    assert stats.singular == 2

    mid = line[len(line) // 2]
    assert field.kind(mid) == MetricKind.RIDGE
    m = field.raw(mid)
    # z = k x^2 has curvature 2k at x = 0
    assert m[0] == pytest.approx(SIZE_COEF_CURVE * 2.0 * k / PARAMS.hausd, rel=0.1)
    for ip in line[1:-1]:
        sizes = field.raw(ip)[:3]
        assert np.all(sizes >= PARAMS.isqhmax)
        assert np.all(sizes <= PARAMS.isqhmin)


def test_ridge_conormal_sizes_follow_sheet_curvature():
    slope, q = 0.5, 1.0
    mesh, line = crease(k=0.0, slope=slope, q=q, n=20, shift=0.3)
    field, stats = define_size_map(mesh, PARAMS)
    assert stats.ridge == len(line) - 2
    # normal curvature of z = slope*y + q*y^2 across the ridge
    kappa = 2.0 * q / (1.0 + slope * slope) ** 1.5
    expected = SIZE_COEF_CURVE * kappa / PARAMS.hausd
    for ip in line[2:-2]:
        m = field.raw(ip)
        assert m[0] == pytest.approx(PARAMS.isqhmax)
        assert m[1] == pytest.approx(expected, rel=0.1)
        assert m[2] == pytest.approx(expected, rel=0.1)


def test_ridge_conormal_needs_a_sector_across_the_ridge():
    # grid spokes lie exactly across the ridge: no sector strictly contains them
    mesh, line = crease(k=0.0, slope=0.5, q=1.0, n=20)
    field, _ = define_size_map(mesh, PARAMS)
    for ip in line[2:-2]:
        m = field.raw(ip)
        assert m[1] == pytest.approx(PARAMS.isqhmax)
        assert m[2] == pytest.approx(PARAMS.isqhmax)


def test_reference_curve_on_sphere():
    mesh, equator = uv_sphere(n_lat=8, n_lon=16)
    tag_equator_ref(mesh, equator)
    field, stats = define_size_map(mesh, PARAMS)
    assert stats.ref == len(equator)
    kcur = SIZE_COEF_CURVE * 1.0 / PARAMS.hausd
    for ip in equator:
        p = mesh.points[ip]
        m = field.raw(ip)
        assert field.kind(ip) == MetricKind.FULL
        assert quadform6(m, _unit(p)) == pytest.approx(PARAMS.isqhmax)
        assert quadform6(m, _unit([-p[1], p[0], 0.0])) >= kcur - 1e-9


def test_three_reference_edges_raise():
    mesh = flat_grid(4)
    ip = grid_index(4, 2, 2)
    mesh.set_ref(ip, [1.0, 0.0, 0.0], [0.0, 0.0, 1.0])
    for other in (grid_index(4, 1, 2), grid_index(4, 3, 2), grid_index(4, 2, 3)):
        mesh.set_edge_tag(ip, other, TAG_REF)
    with pytest.raises(TopologyError) as exc:
        define_size_map(mesh, PARAMS)
    assert exc.value.vertex == ip


def test_single_reference_edge_falls_back():
    mesh = flat_grid(4)
    ip = grid_index(4, 2, 2)
    mesh.set_ref(ip, [1.0, 0.0, 0.0], [0.0, 0.0, 1.0])
    mesh.set_edge_tag(ip, grid_index(4, 3, 2), TAG_REF)
    field, stats = define_size_map(mesh, PARAMS)
    assert stats.failed == 1
    assert stats.fallback_used == 1
    assert np.allclose(field.tensor(ip), PARAMS.isqhmax * np.eye(3))


def test_unknown_tag_keeps_supplied_metric():
    mesh = flat_grid(2)
    ip = grid_index(2, 1, 1)
    mesh.tags[ip] = 32
    field0 = MetricField(mesh.capacity)
    it = next(t for t in range(mesh.n_tris) if ip in mesh.tris[t])
    assert not define_point_metric(mesh, field0, PARAMS, it, mesh._local_index(it, ip))

    supplied = np.tile([3.0, 0.0, 0.0, 3.0, 0.0, 3.0], (mesh.n_points, 1))
    field, stats = define_size_map(mesh, PARAMS, metric=supplied)
    assert stats.kept_supplied == 1
    assert stats.fallback_used == 0
    assert np.array_equal(field.raw(ip), [3.0, 0.0, 0.0, 3.0, 0.0, 3.0])


def test_unknown_tag_without_supplied_metric_uses_hmax():
    mesh = flat_grid(2)
    ip = grid_index(2, 1, 1)
    mesh.tags[ip] = 32
    field, stats = define_size_map(mesh, PARAMS)
    assert stats.fallback_used == 1
    assert np.allclose(field.tensor(ip), PARAMS.isqhmax * np.eye(3))


def test_size_map_is_deterministic():
    mesh, _ = crease()
    field1, _ = define_size_map(mesh, PARAMS)
    field2, _ = define_size_map(mesh, PARAMS)
    assert np.array_equal(field1.values, field2.values)
    assert np.array_equal(field1.kinds, field2.kinds)


def test_eigenvalues_stay_in_bounds():
    mesh, _ = crease()
    field, _ = define_size_map(mesh, PARAMS)
    for ip in range(mesh.n_points):
        if field.kind(ip) == MetricKind.RIDGE:
            continue
        lam = np.linalg.eigvalsh(field.tensor(ip))
        assert lam[0] >= PARAMS.isqhmax * (1.0 - 1e-9)
        assert lam[-1] <= PARAMS.isqhmin * (1.0 + 1e-9)


def test_default_bounds_from_diagonal():
    mesh = flat_square()
    _, stats = define_size_map(mesh)
    assert stats.hmax == pytest.approx(0.5 * math.sqrt(2.0))
    assert stats.hmin == pytest.approx(0.01 * math.sqrt(2.0))
    assert stats.to_dict()['estimated'] == 4


def test_zero_supplied_rows_get_the_fallback():
    mesh = flat_grid(2)
    ip = grid_index(2, 1, 1)
    mesh.tags[ip] = 32
    supplied = np.zeros((mesh.n_points, 6))
    field, stats = define_size_map(mesh, PARAMS, metric=supplied)
    assert stats.kept_supplied == 0
    assert stats.fallback_used == 1
    assert np.allclose(field.tensor(ip), PARAMS.isqhmax * np.eye(3))


def test_stats_table_logged_at_debug():
    pkg = logging.getLogger('anisosurf')
    buf = io.StringIO()
    handler = logging.StreamHandler(buf)
    pkg.addHandler(handler)
    try:
        define_size_map(flat_square(), PARAMS)
    finally:
        pkg.removeHandler(handler)
    text = buf.getvalue()
    assert 'size map stats:' in text
    assert 'fallback_used' in text
