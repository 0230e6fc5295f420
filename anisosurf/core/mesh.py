"""Triangulated surface mesh store with feature tags and ball traversals.

Vertices carry a position, a tag bit set, a direction field ``n`` (surface
normal at regular points, curve tangent at ridge and reference points) and,
for ridge and reference points, an index ``ig`` into the extended records
``xn1``/``xn2`` holding the surface normals of the adjacent sheets.

Triangles carry three vertex ids, a tag per edge (edge ``i`` is opposite
local vertex ``i``), a region reference and a deleted flag. Only triangles
with a positive reference that are not deleted take part in traversals.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from .constants import EPSD, MAX_BALL_SIZE
from .errors import BallOverflowError, TopologyError
from .linalg import tri_normal
from .logging_utils import get_logger

log = get_logger('anisosurf.mesh')

# Vertex and edge tags
TAG_NONE = 0
TAG_RIDGE = 1       # sharp feature line between two sheets
TAG_REF = 2         # reference curve on a smooth surface
TAG_CORNER = 4
TAG_REQUIRED = 8
TAG_NOM = 16        # non-manifold
TAG_SINGULAR = TAG_CORNER | TAG_REQUIRED | TAG_NOM
TAG_FEATURE_EDGE = TAG_RIDGE | TAG_REF

# local index successor / predecessor in a triangle
INXT = (1, 2, 0)
IPRV = (2, 0, 1)

__all__ = [
    'TAG_NONE', 'TAG_RIDGE', 'TAG_REF', 'TAG_CORNER', 'TAG_REQUIRED', 'TAG_NOM',
    'TAG_SINGULAR', 'TAG_FEATURE_EDGE', 'INXT', 'IPRV', 'Ball', 'SurfaceMesh',
]


@dataclass
class Ball:
    """Triangles around a vertex in direct order.

    ``entries[k] = (iel, i0)`` with the vertex at local corner ``i0`` of
    triangle ``iel``. Consecutive entries share the edge towards
    ``tris[iel][IPRV[i0]]``. An open ball has ``len(entries) + 1`` boundary
    points, a closed one ``len(entries)``.
    """
    vertex: int
    entries: List[Tuple[int, int]]
    closed: bool

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        return iter(self.entries)

    def boundary_points(self, mesh: 'SurfaceMesh') -> List[int]:
        pts = [int(mesh.tris[iel, INXT[i0]]) for iel, i0 in self.entries]
        if not self.closed and self.entries:
            iel, i0 = self.entries[-1]
            pts.append(int(mesh.tris[iel, IPRV[i0]]))
        return pts


class SurfaceMesh:
    """Surface triangulation with the queries needed by the metric code."""

    def __init__(self, points, tris, normals=None, refs=None, capacity: Optional[int] = None):
        self.points = np.ascontiguousarray(np.asarray(points, dtype=np.float64).reshape(-1, 3))
        self.tris = np.ascontiguousarray(np.asarray(tris, dtype=np.int64).reshape(-1, 3))
        n_pts = self.points.shape[0]
        n_tris = self.tris.shape[0]
        if n_tris and (self.tris.min() < 0 or self.tris.max() >= n_pts):
            raise ValueError("triangle references a vertex out of range")
        self.capacity = max(int(capacity or 0), n_pts)

        self.tags = np.zeros(n_pts, dtype=np.int32)
        self.valid = np.ones(n_pts, dtype=bool)
        self.flag = np.zeros(n_pts, dtype=np.int64)
        self.ig = np.full(n_pts, -1, dtype=np.int64)
        self.xn1: List[np.ndarray] = []
        self.xn2: List[np.ndarray] = []

        self.edge_tags = np.zeros((n_tris, 3), dtype=np.int32)
        self.refs = np.ones(n_tris, dtype=np.int32) if refs is None else np.asarray(refs, dtype=np.int32).copy()
        self.deleted = np.zeros(n_tris, dtype=bool)

        self._build_adjacency()
        if normals is None:
            self.n = self.compute_vertex_normals()
        else:
            self.n = np.array(normals, dtype=np.float64).reshape(-1, 3)
            norms = np.linalg.norm(self.n, axis=1)
            ok = norms > 0.0
            self.n[ok] /= norms[ok, None]

    @classmethod
    def from_arrays(cls, points, tris, normals=None, refs=None, capacity=None) -> 'SurfaceMesh':
        return cls(points, tris, normals=normals, refs=refs, capacity=capacity)

    # ------------------------------------------------------------------
    # sizes and predicates
    # ------------------------------------------------------------------
    @property
    def n_points(self) -> int:
        return int(self.points.shape[0])

    @property
    def n_tris(self) -> int:
        return int(self.tris.shape[0])

    def tri_active(self, it: int) -> bool:
        return 0 <= it < self.n_tris and not self.deleted[it] and self.refs[it] > 0

    def active_triangles(self) -> np.ndarray:
        return np.nonzero(~self.deleted & (self.refs > 0))[0]

    def vertex_ok(self, ip: int) -> bool:
        return bool(self.valid[ip])

    def is_singular(self, ip: int) -> bool:
        return bool(self.tags[ip] & TAG_SINGULAR)

    def is_ridge(self, ip: int) -> bool:
        return bool(self.tags[ip] & TAG_RIDGE) and not self.is_singular(ip)

    def is_ref(self, ip: int) -> bool:
        return bool(self.tags[ip] & TAG_REF) and not (self.tags[ip] & (TAG_RIDGE | TAG_SINGULAR))

    def bounding_diagonal(self) -> float:
        pts = self.points[self.valid]
        if pts.size == 0:
            return 0.0
        ext = pts.max(axis=0) - pts.min(axis=0)
        return float(math.sqrt(ext @ ext))

    # ------------------------------------------------------------------
    # feature records
    # ------------------------------------------------------------------
    def _new_xpoint(self, ip: int, n1, n2) -> None:
        n1 = _unit(n1)
        n2 = _unit(n2)
        if self.ig[ip] >= 0:
            self.xn1[self.ig[ip]] = n1
            self.xn2[self.ig[ip]] = n2
            return
        self.ig[ip] = len(self.xn1)
        self.xn1.append(n1)
        self.xn2.append(n2)

    def set_ridge(self, ip: int, tangent, n1, n2) -> None:
        """Tag ``ip`` as a ridge point with its tangent and the two sheet normals."""
        self.tags[ip] |= TAG_RIDGE
        self.n[ip] = _unit(tangent)
        self._new_xpoint(ip, n1, n2)

    def set_ref(self, ip: int, tangent, normal) -> None:
        """Tag ``ip`` as a point of a reference curve on a smooth surface."""
        self.tags[ip] |= TAG_REF
        self.n[ip] = _unit(tangent)
        self._new_xpoint(ip, normal, normal)

    def set_corner(self, ip: int) -> None:
        self.tags[ip] |= TAG_CORNER

    def set_edge_tag(self, a: int, b: int, tag: int) -> int:
        """Tag edge (a, b) in every triangle sharing it; returns the count."""
        hits = self._edge_map.get((min(a, b), max(a, b)), [])
        for it, i in hits:
            self.edge_tags[it, i] |= tag
        return len(hits)

    def xnormals(self, ip: int) -> Tuple[np.ndarray, np.ndarray]:
        ig = int(self.ig[ip])
        if ig < 0:
            raise TopologyError(f"vertex {ip} has no extended normal record", ip)
        return self.xn1[ig], self.xn2[ig]

    def surface_normal(self, ip: int, nt: Optional[np.ndarray] = None) -> np.ndarray:
        """Normal to the surface at ``ip`` on the side of a triangle of normal ``nt``."""
        if self.is_singular(ip):
            if nt is None:
                raise ValueError(f"singular vertex {ip} needs a triangle normal")
            return nt
        if self.is_ridge(ip):
            n1, n2 = self.xnormals(ip)
            if nt is None:
                return n1
            return n2 if float(nt @ n2) > float(nt @ n1) else n1
        if self.is_ref(ip):
            return self.xnormals(ip)[0]
        return self.n[ip]

    # ------------------------------------------------------------------
    # geometry
    # ------------------------------------------------------------------
    def tri_normal(self, it: int) -> Optional[np.ndarray]:
        a, b, c = self.tris[it]
        return tri_normal(self.points[a], self.points[b], self.points[c])

    def compute_vertex_normals(self) -> np.ndarray:
        """Area-weighted vertex normals from active triangles."""
        pts = self.points
        act = self.active_triangles()
        tris = self.tris[act]
        normals = np.zeros_like(pts)
        if tris.size:
            fn = np.cross(pts[tris[:, 1]] - pts[tris[:, 0]], pts[tris[:, 2]] - pts[tris[:, 0]])
            for j in range(3):
                np.add.at(normals, tris[:, j], fn)
        norms = np.linalg.norm(normals, axis=1)
        ok = norms > math.sqrt(EPSD)
        normals[ok] /= norms[ok, None]
        return normals

    # ------------------------------------------------------------------
    # adjacency and balls
    # ------------------------------------------------------------------
    def _build_adjacency(self) -> None:
        self._edge_map: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
        for it in range(self.n_tris):
            tri = self.tris[it]
            for i in range(3):
                a, b = int(tri[INXT[i]]), int(tri[IPRV[i]])
                self._edge_map.setdefault((min(a, b), max(a, b)), []).append((it, i))

        self.adja = np.full((self.n_tris, 3), -1, dtype=np.int64)
        for (a, b), shared in self._edge_map.items():
            if len(shared) != 2:
                if len(shared) > 2:
                    log.debug('edge (%d,%d) shared by %d triangles: left unconnected', a, b, len(shared))
                continue
            (t0, i0), (t1, i1) = shared
            if self.tris[t0, INXT[i0]] == self.tris[t1, INXT[i1]]:
                log.debug('edge (%d,%d) has inconsistent orientation: left unconnected', a, b)
                continue
            self.adja[t0, i0] = t1
            self.adja[t1, i1] = t0

    def edge_tag(self, a: int, b: int) -> int:
        """Union of the tags of edge (a, b) over the active triangles sharing it."""
        tag = 0
        for it, i in self._edge_map.get((min(a, b), max(a, b)), []):
            if self.tri_active(it):
                tag |= int(self.edge_tags[it, i])
        return tag

    def edges(self) -> Tuple[np.ndarray, np.ndarray]:
        """Unique edges of active triangles and whether each one is a ridge."""
        out = []
        ridge = []
        for (a, b), shared in self._edge_map.items():
            if not any(self.tri_active(it) for it, _ in shared):
                continue
            out.append((a, b))
            ridge.append(bool(self.edge_tag(a, b) & TAG_RIDGE))
        if not out:
            return np.empty((0, 2), dtype=np.int64), np.empty(0, dtype=bool)
        return np.asarray(out, dtype=np.int64), np.asarray(ridge, dtype=bool)

    def _local_index(self, it: int, ip: int) -> int:
        tri = self.tris[it]
        for i in range(3):
            if tri[i] == ip:
                return i
        raise TopologyError(f"vertex {ip} not in triangle {it}", ip)

    def ball(self, it: int, ip: int) -> Ball:
        """Ball of local vertex ``ip`` of triangle ``it``."""
        if not self.tri_active(it):
            raise TopologyError(f"ball requested from inactive triangle {it}")
        p0 = int(self.tris[it, ip])
        entries = [(it, ip)]
        closed = False

        k, i0 = it, ip
        while True:
            nk = int(self.adja[k, INXT[i0]])
            if nk < 0 or not self.tri_active(nk):
                break
            if nk == it:
                closed = True
                break
            k, i0 = nk, self._local_index(nk, p0)
            entries.append((k, i0))
            if len(entries) > MAX_BALL_SIZE:
                raise BallOverflowError(f"ball of vertex {p0} exceeds {MAX_BALL_SIZE} triangles", p0)

        if not closed:
            back = []
            k, i0 = it, ip
            while True:
                pk = int(self.adja[k, IPRV[i0]])
                if pk < 0 or not self.tri_active(pk):
                    break
                k, i0 = pk, self._local_index(pk, p0)
                back.append((k, i0))
                if len(back) + len(entries) > MAX_BALL_SIZE:
                    raise BallOverflowError(f"ball of vertex {p0} exceeds {MAX_BALL_SIZE} triangles", p0)
            entries = back[::-1] + entries

        return Ball(p0, entries, closed)

    def half_balls(self, it: int, ip: int) -> Tuple[Ball, Ball, int, int]:
        """Split the ball of a ridge vertex along its ridge edges.

        Returns ``(ball1, ball2, ip1, ip2)`` where ``ball1`` lies on the sheet
        of the first stored normal, ``ball2`` on the second one, and ``ip1``,
        ``ip2`` are the two ridge neighbours. A ridge vertex on an open
        boundary with no interior ridge edge has a single sheet: both halves
        are the whole ball and the neighbours are its boundary points.
        """
        ball = self.ball(it, ip)
        p0 = ball.vertex
        entries = ball.entries
        # a half-ball starts at every entry whose leading edge is a ridge
        cuts = [k for k, (iel, i0) in enumerate(entries) if self.edge_tags[iel, IPRV[i0]] & TAG_RIDGE]

        if not ball.closed:
            interior = [k for k in cuts if k > 0]
            if interior:
                raise TopologyError(f"ridge vertex {p0} on an open boundary crossed by a ridge", p0)
            pts = ball.boundary_points(self)
            half = Ball(p0, list(entries), False)
            return half, Ball(p0, list(entries), False), pts[0], pts[-1]

        if len(cuts) != 2:
            raise TopologyError(f"ridge vertex {p0} has {len(cuts)} ridge edges instead of 2", p0)
        c0, c1 = cuts
        seg1 = entries[c0:c1]
        seg2 = entries[c1:] + entries[:c0]
        ip1 = int(self.tris[seg1[0][0], INXT[seg1[0][1]]])
        ip2 = int(self.tris[seg2[0][0], INXT[seg2[0][1]]])

        n1, n2 = self.xnormals(p0)
        nt = self.tri_normal(seg1[0][0])
        if nt is not None and float(nt @ n2) > float(nt @ n1):
            seg1, seg2 = seg2, seg1
            ip1, ip2 = ip2, ip1
        return Ball(p0, seg1, False), Ball(p0, seg2, False), ip1, ip2


def _unit(v) -> np.ndarray:
    v = np.asarray(v, dtype=np.float64)
    nv = float(np.linalg.norm(v))
    if nv <= 0.0:
        raise ValueError("zero direction vector")
    return v / nv
