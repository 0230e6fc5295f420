"""Per-vertex metric storage and the ridge tensor reconstruction.

Each vertex holds 6 values. Their meaning depends on the kind of metric:

- ``ISO``   : ``alpha * I`` stored as a full tensor (singular points)
- ``FULL``  : symmetric tensor ``[m00, m01, m02, m11, m12, m22]``
- ``RIDGE`` : ``[m_t, m_1, m_2, 0, 0, 0]``, the specific sizes along the
  ridge tangent and along the conormals of the two sheets

Ridge points never hold a general tensor: one is rebuilt for a given edge
direction by :func:`build_ridge_metric`.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union

import numpy as np

from .errors import MetricAllocationError
from .linalg import sym6_to_mat
from .mesh import SurfaceMesh

__all__ = [
    'MetricKind', 'IsotropicMetric', 'FullMetric', 'RidgeMetric', 'Metric',
    'MetricField', 'build_ridge_metric', 'metric_along',
]


class MetricKind(IntEnum):
    UNSET = 0
    ISO = 1
    FULL = 2
    RIDGE = 3


@dataclass(frozen=True)
class IsotropicMetric:
    size: float

    kind = MetricKind.ISO

    def to_sym6(self) -> np.ndarray:
        return np.array([self.size, 0.0, 0.0, self.size, 0.0, self.size])


@dataclass(frozen=True)
class FullMetric:
    m: tuple

    kind = MetricKind.FULL

    def __post_init__(self):
        if len(self.m) != 6:
            raise ValueError(f"a full metric needs 6 values, got {len(self.m)}")
        object.__setattr__(self, 'm', tuple(float(x) for x in self.m))

    def to_sym6(self) -> np.ndarray:
        return np.array(self.m, dtype=float)

    def matrix(self) -> np.ndarray:
        return sym6_to_mat(self.m)


@dataclass(frozen=True)
class RidgeMetric:
    t_size: float
    n1_size: float
    n2_size: float

    kind = MetricKind.RIDGE

    def to_sym6(self) -> np.ndarray:
        return np.array([self.t_size, self.n1_size, self.n2_size, 0.0, 0.0, 0.0])


Metric = Union[IsotropicMetric, FullMetric, RidgeMetric]


class MetricField:
    """Growable ``(capacity, 6)`` metric array with a kind per vertex."""

    def __init__(self, capacity: int):
        try:
            self.values = np.zeros((int(capacity), 6), dtype=np.float64)
            self.kinds = np.zeros(int(capacity), dtype=np.int8)
        except (MemoryError, ValueError) as e:
            raise MetricAllocationError(f"unable to allocate metric for {capacity} vertices: {e}") from e

    @classmethod
    def allocate(cls, capacity: int) -> 'MetricField':
        return cls(capacity)

    @classmethod
    def from_array(cls, values, mesh: SurfaceMesh) -> 'MetricField':
        """Wrap caller-supplied values; kinds are inferred from the vertex tags.

        An all-zero row carries no metric and stays ``UNSET``.
        """
        arr = np.asarray(values, dtype=np.float64).reshape(-1, 6)
        field = cls(max(mesh.capacity, arr.shape[0]))
        field.values[:arr.shape[0]] = arr
        for ip in range(min(arr.shape[0], mesh.n_points)):
            if not arr[ip].any():
                continue
            if mesh.is_singular(ip):
                field.kinds[ip] = MetricKind.ISO
            elif mesh.is_ridge(ip):
                field.kinds[ip] = MetricKind.RIDGE
            else:
                field.kinds[ip] = MetricKind.FULL
        return field

    @property
    def capacity(self) -> int:
        return int(self.values.shape[0])

    def __len__(self) -> int:
        return self.capacity

    def ensure_capacity(self, n: int) -> None:
        """Grow the storage to hold at least ``n`` vertices."""
        if n <= self.capacity:
            return
        new_cap = max(int(n), int(1.5 * self.capacity) + 1)
        try:
            values = np.zeros((new_cap, 6), dtype=np.float64)
            kinds = np.zeros(new_cap, dtype=np.int8)
        except MemoryError as e:
            raise MetricAllocationError(f"unable to grow metric to {new_cap} vertices") from e
        values[:self.capacity] = self.values
        kinds[:self.capacity] = self.kinds
        self.values, self.kinds = values, kinds

    def raw(self, ip: int) -> np.ndarray:
        """Writable view on the 6 stored values of ``ip``."""
        return self.values[ip]

    def kind(self, ip: int) -> MetricKind:
        return MetricKind(int(self.kinds[ip]))

    def get(self, ip: int) -> Optional[Metric]:
        m = self.values[ip]
        k = self.kinds[ip]
        if k == MetricKind.ISO:
            return IsotropicMetric(float(m[0]))
        if k == MetricKind.FULL:
            return FullMetric(tuple(m))
        if k == MetricKind.RIDGE:
            return RidgeMetric(float(m[0]), float(m[1]), float(m[2]))
        return None

    def set(self, ip: int, metric: Metric) -> None:
        self.values[ip] = metric.to_sym6()
        self.kinds[ip] = metric.kind

    def set_raw(self, ip: int, m6, kind: MetricKind) -> None:
        self.values[ip] = m6
        self.kinds[ip] = kind

    def tensor(self, ip: int) -> np.ndarray:
        """3x3 tensor of a non-ridge vertex."""
        if self.kinds[ip] == MetricKind.RIDGE:
            raise ValueError(f"vertex {ip} holds ridge sizes; use build_ridge_metric")
        return sym6_to_mat(self.values[ip])

    def copy(self) -> 'MetricField':
        out = MetricField(self.capacity)
        out.values[:] = self.values
        out.kinds[:] = self.kinds
        return out


def build_ridge_metric(mesh: SurfaceMesh, field: MetricField, ip: int, u) -> Optional[np.ndarray]:
    """Ambient tensor (6 values) at ridge vertex ``ip`` seen from edge direction ``u``.

    The sheet whose normal is the most orthogonal to ``u`` holds the edge;
    the tensor is ``m_t t⊗t + m_side c⊗c`` with ``c = n_side × t`` its conormal.
    Returns None when ``ip`` is not a ridge vertex or lacks its normals.
    """
    if not mesh.is_ridge(ip) or mesh.ig[ip] < 0:
        return None
    m = field.values[ip]
    t = mesh.n[ip]
    n1, n2 = mesh.xnormals(ip)
    u = np.asarray(u, dtype=float)
    ps1 = float(u @ n1)
    ps2 = float(u @ n2)
    if abs(ps2) < abs(ps1):
        n, side = n2, m[2]
    else:
        n, side = n1, m[1]
    c = np.cross(n, t)
    mr = m[0] * np.outer(t, t) + side * np.outer(c, c)
    return np.array([mr[0, 0], mr[0, 1], mr[0, 2], mr[1, 1], mr[1, 2], mr[2, 2]])


def metric_along(mesh: SurfaceMesh, field: MetricField, ip: int, u) -> Optional[np.ndarray]:
    """Tensor at ``ip`` relevant for an edge of direction ``u`` (6 values)."""
    if mesh.is_ridge(ip):
        return build_ridge_metric(mesh, field, ip, u)
    return field.values[ip].copy()
