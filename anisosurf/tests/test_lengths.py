import math

import numpy as np
import pytest

from anisosurf.core.config import AdaptParams
from anisosurf.core.mesh import TAG_RIDGE, SurfaceMesh
from anisosurf.core.metric import FullMetric, IsotropicMetric, MetricField, RidgeMetric
from anisosurf.core.lengths import edge_length, edge_lengths, triangle_area
from anisosurf.core.sizemap import define_size_map
from anisosurf.tests.mesh_factories import crease, flat_square


def _uniform_field(mesh, size):
    field = MetricField(mesh.capacity)
    for ip in range(mesh.n_points):
        field.set(ip, FullMetric((size, 0.0, 0.0, size, 0.0, size)))
    return field


def test_identity_length_is_euclidean():
    mesh = flat_square()
    field = _uniform_field(mesh, 1.0)
    assert edge_length(mesh, field, 0, 1) == pytest.approx(1.0)
    assert edge_length(mesh, field, 0, 2) == pytest.approx(math.sqrt(2.0))


def test_scaled_metric_scales_length():
    mesh = flat_square()
    field = _uniform_field(mesh, 9.0)
    assert edge_length(mesh, field, 0, 1) == pytest.approx(3.0)
    assert edge_length(mesh, field, 1, 0) == pytest.approx(3.0)


def test_negative_form_is_clamped():
    mesh = flat_square()
    field = _uniform_field(mesh, 4.0)
    field.set(0, FullMetric((-4.0, 0.0, 0.0, -4.0, 0.0, -4.0)))
    assert edge_length(mesh, field, 0, 1) == pytest.approx(1.5)


def test_ridge_without_normals_has_no_length():
    mesh = flat_square()
    field = _uniform_field(mesh, 1.0)
    mesh.tags[0] |= TAG_RIDGE
    field.set(0, RidgeMetric(1.0, 1.0, 1.0))
    assert edge_length(mesh, field, 0, 1) == -1.0
    _, lengths = edge_lengths(mesh, field, [[0, 1], [1, 2]])
    assert lengths[0] == -1.0
    assert lengths[1] == pytest.approx(1.0)


def test_singular_end_uses_chord():
    mesh = flat_square()
    field = _uniform_field(mesh, 1.0)
    mesh.set_corner(0)
    field.set(0, IsotropicMetric(16.0))
    assert edge_length(mesh, field, 0, 1) == pytest.approx(0.5 * (4.0 + 1.0))


def test_triangle_area():
    mesh = SurfaceMesh.from_arrays([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [[0, 1, 2]])
    assert triangle_area(mesh, _uniform_field(mesh, 1.0), 0) == pytest.approx(1.0)
    assert triangle_area(mesh, _uniform_field(mesh, 3.0), 0) == pytest.approx(3.0)


def test_degenerate_triangle_area_is_zero():
    mesh = SurfaceMesh.from_arrays([[0, 0, 0], [1, 0, 0], [2, 0, 0]], [[0, 1, 2]],
                                   normals=[[0, 0, 1]] * 3)
    assert triangle_area(mesh, _uniform_field(mesh, 1.0), 0) == 0.0


def test_batch_lengths_match_single_edges():
    mesh, line = crease()
    field, _ = define_size_map(mesh, AdaptParams(hmin=0.01, hmax=1.0, hausd=0.01))
    edges, lengths = edge_lengths(mesh, field)
    assert edges.shape[0] == lengths.shape[0]
    assert np.all(lengths > 0.0)
    for (a, b), l in zip(edges, lengths):
        ridge = bool(mesh.edge_tag(int(a), int(b)) & TAG_RIDGE)
        assert l == pytest.approx(edge_length(mesh, field, int(a), int(b), ridge), rel=1e-12)


def test_ridge_edge_uses_curve_tangent():
    mesh, line = crease()
    field, _ = define_size_map(mesh, AdaptParams(hmin=0.01, hmax=1.0, hausd=0.01))
    a, b = line[4], line[5]
    u = mesh.points[b] - mesh.points[a]
    ta, tb = mesh.n[a], mesh.n[b]
    ma, mb = field.raw(a)[0], field.raw(b)[0]
    expected = 0.5 * (abs(u @ ta) * math.sqrt(ma) + abs(u @ tb) * math.sqrt(mb))
    assert edge_length(mesh, field, a, b, is_ridge=True) == pytest.approx(expected)
