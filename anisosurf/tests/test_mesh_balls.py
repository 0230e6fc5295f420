import math

import numpy as np
import pytest

import anisosurf.core.mesh as mesh_mod
from anisosurf.core.errors import BallOverflowError, TopologyError
from anisosurf.core.mesh import INXT, TAG_RIDGE, SurfaceMesh
from anisosurf.tests.mesh_factories import crease, flat_grid, flat_square, grid_index


def _first_tri(mesh, ip):
    for it in range(mesh.n_tris):
        for i in range(3):
            if mesh.tris[it, i] == ip:
                return it, i
    raise AssertionError("vertex not found")


def _cross2(a, b):
    return a[0] * b[1] - a[1] * b[0]


def test_closed_ball_is_counter_clockwise():
    mesh = flat_grid(4)
    ip = grid_index(4, 2, 2)
    it, i = _first_tri(mesh, ip)
    ball = mesh.ball(it, i)
    assert ball.closed
    assert len(ball) == 6
    assert ball.vertex == ip
    pts = mesh.points[ball.boundary_points(mesh)] - mesh.points[ip]
    assert len(pts) == 6
    for k in range(6):
        assert _cross2(pts[k], pts[(k + 1) % 6]) > 0.0


def test_open_ball_at_corner():
    mesh = flat_square()
    it, i = _first_tri(mesh, 2)
    ball = mesh.ball(it, i)
    assert not ball.closed
    assert len(ball) == 2
    assert ball.boundary_points(mesh) == [3, 0, 1]


def test_inactive_triangle_opens_ball():
    mesh = flat_grid(4)
    ip = grid_index(4, 2, 2)
    tris = [it for it in range(mesh.n_tris) if ip in mesh.tris[it]]
    mesh.refs[tris[0]] = 0
    it = tris[1]
    ball = mesh.ball(it, mesh._local_index(it, ip))
    assert not ball.closed
    assert len(ball) == 5
    with pytest.raises(TopologyError):
        mesh.ball(tris[0], mesh._local_index(tris[0], ip))


def test_ball_overflow(monkeypatch):
    n = 8
    pts = [(0.0, 0.0, 0.0)] + [(math.cos(2 * math.pi * k / n), math.sin(2 * math.pi * k / n), 0.0)
                               for k in range(n)]
    tris = [(0, 1 + k, 1 + (k + 1) % n) for k in range(n)]
    mesh = SurfaceMesh.from_arrays(pts, tris)
    assert len(mesh.ball(0, 0)) == n
    monkeypatch.setattr(mesh_mod, 'MAX_BALL_SIZE', 4)
    with pytest.raises(BallOverflowError) as exc:
        mesh.ball(0, 0)
    assert exc.value.vertex == 0


def test_half_balls_split_along_crease():
    mesh, line = crease(n=6)
    ip = line[3]
    it, i = _first_tri(mesh, ip)
    half1, half2, ip1, ip2 = mesh.half_balls(it, i)
    assert {ip1, ip2} == {line[2], line[4]}
    assert len(half1) + len(half2) == len(mesh.ball(it, i))
    for iel, _ in half1:
        assert mesh.points[mesh.tris[iel]].mean(axis=0)[1] > 0.0
    for iel, _ in half2:
        assert mesh.points[mesh.tris[iel]].mean(axis=0)[1] < 0.0
    # each half starts on the ridge
    iel, i0 = half1.entries[0]
    assert int(mesh.tris[iel, INXT[i0]]) == ip1


def test_edges_and_tags():
    mesh = flat_square()
    edges, ridge = mesh.edges()
    assert edges.shape == (5, 2)
    assert not ridge.any()
    assert mesh.set_edge_tag(0, 2, TAG_RIDGE) == 2
    edges, ridge = mesh.edges()
    assert ridge.sum() == 1
    assert mesh.edge_tag(2, 0) & TAG_RIDGE


def test_default_normals_and_diagonal():
    mesh = SurfaceMesh.from_arrays([[0, 0, 0], [2, 0, 0], [0, 2, 0]], [[0, 1, 2]])
    assert np.allclose(mesh.n, [[0, 0, 1]] * 3)
    assert abs(mesh.bounding_diagonal() - math.sqrt(8.0)) < 1e-12


def test_out_of_range_triangle_rejected():
    with pytest.raises(ValueError):
        SurfaceMesh.from_arrays([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [[0, 1, 3]])
