"""Configuration objects for anisotropic size-map computation."""
from __future__ import annotations

from dataclasses import dataclass, replace, fields
from typing import Any, Dict, Optional

from .constants import (
    DEFAULT_HAUSD, DEFAULT_HGRAD, GRAD_MAX_ITER, HMAX_DIAG_FACTOR, HMIN_DIAG_FACTOR,
)

_GRAD_LENGTHS = ('chord', 'metric')


@dataclass
class AdaptParams:
    """Adaptation parameters.

    Attributes
    ----------
    hmin, hmax : float
        Bounds on the implied edge length. A negative value means "unset";
        ``resolved()`` replaces it by a fraction of the mesh bounding diagonal.
    hausd : float
        Hausdorff tolerance between the discrete mesh and the surface.
    hgrad : float
        Maximum relative growth of the specific size per unit length.
    max_grad_iter : int
        Cap on the number of gradation sweeps.
    grad_length : str
        Edge length used by the gradation bound: 'chord' (Euclidean chord)
        or 'metric' (average of the two anisotropic half-lengths).
    """
    hmin: float = -1.0
    hmax: float = -1.0
    hausd: float = DEFAULT_HAUSD
    hgrad: float = DEFAULT_HGRAD
    max_grad_iter: int = GRAD_MAX_ITER
    grad_length: str = 'chord'

    def __post_init__(self):
        if self.hausd <= 0.0:
            raise ValueError(f"hausd must be positive, got {self.hausd}")
        if self.grad_length not in _GRAD_LENGTHS:
            raise ValueError(f"unknown grad_length '{self.grad_length}'")
        if self.hmin > 0.0 and self.hmax > 0.0 and self.hmin > self.hmax:
            raise ValueError(f"hmin ({self.hmin}) larger than hmax ({self.hmax})")

    @property
    def isqhmin(self) -> float:
        """Largest admissible eigenvalue, ``1/hmin**2``."""
        return 1.0 / (self.hmin * self.hmin)

    @property
    def isqhmax(self) -> float:
        """Smallest admissible eigenvalue, ``1/hmax**2``."""
        return 1.0 / (self.hmax * self.hmax)

    def truncate(self, size: float) -> float:
        """Clamp an eigenvalue to ``[isqhmax, isqhmin]``."""
        return max(min(size, self.isqhmin), self.isqhmax)

    def resolved(self, mesh) -> 'AdaptParams':
        """Return a copy where unset size bounds are derived from the mesh."""
        hmin, hmax = self.hmin, self.hmax
        if hmax <= 0.0 or hmin <= 0.0:
            delta = mesh.bounding_diagonal()
            if hmax <= 0.0:
                hmax = HMAX_DIAG_FACTOR * delta
            if hmin <= 0.0:
                hmin = min(HMIN_DIAG_FACTOR * delta, hmax)
        return replace(self, hmin=hmin, hmax=hmax)

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]] = None, **overrides) -> 'AdaptParams':
        known = {f.name for f in fields(cls)}
        merged = dict(values or {})
        merged.update(overrides)
        unknown = set(merged) - known
        if unknown:
            raise ValueError(f"unknown adaptation parameters: {sorted(unknown)}")
        return cls(**merged)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


__all__ = ['AdaptParams']
