"""Exception types raised by the size-map computation.

Local estimation failures never raise: they are reported as ``False`` by the
point estimators and recovered by the field builder. Only the conditions
below escape to the caller.
"""
from __future__ import annotations


class SizeMapError(Exception):
    """Base class for errors that abort a metric field computation."""


class TopologyError(SizeMapError):
    """Inconsistent mesh topology around a vertex (empty ball, too many
    reference curves through a regular point, unsplittable ridge ball)."""

    def __init__(self, message: str, vertex: int = -1):
        super().__init__(message)
        self.vertex = vertex


class BallOverflowError(TopologyError):
    """A vertex ball exceeds MAX_BALL_SIZE triangles."""


class MetricAllocationError(SizeMapError, MemoryError):
    """The metric array could not be allocated or grown."""


__all__ = ['SizeMapError', 'TopologyError', 'BallOverflowError', 'MetricAllocationError']
