"""Run statistics of the size-map builder and the gradation enforcer."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Any


@dataclass
class SizeMapStats:
    n_points: int = 0
    singular: int = 0
    ridge: int = 0
    ref: int = 0
    regular: int = 0
    # estimator returned False, or the vertex class has no estimator
    failed: int = 0
    fallback_used: int = 0
    kept_supplied: int = 0
    hmin: float = 0.0
    hmax: float = 0.0
    time_total: float = 0.0

    @property
    def estimated(self) -> int:
        return self.singular + self.ridge + self.ref + self.regular

    def to_dict(self) -> Dict[str, Any]:
        return {
            'n_points': self.n_points,
            'singular': self.singular,
            'ridge': self.ridge,
            'ref': self.ref,
            'regular': self.regular,
            'estimated': self.estimated,
            'failed': self.failed,
            'fallback_used': self.fallback_used,
            'kept_supplied': self.kept_supplied,
            'fallback_rate': (self.fallback_used / self.n_points) if self.n_points else 0.0,
            'hmin': self.hmin,
            'hmax': self.hmax,
            'time_total': self.time_total,
        }


@dataclass
class GradationReport:
    updated: int = 0
    iterations: int = 0
    converged: bool = False
    max_iter: int = 0
    # edges skipped because a tensor could not be built or the chord degenerates
    skipped_edges: int = 0
    time_total: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'updated': self.updated,
            'iterations': self.iterations,
            'converged': self.converged,
            'max_iter': self.max_iter,
            'skipped_edges': self.skipped_edges,
            'time_total': self.time_total,
        }


def format_stats_table(stats: Dict[str, Any]) -> str:
    """Return a two-column table of a ``to_dict()`` mapping."""
    if not stats:
        return "<no stats>"
    rows = []
    for key in stats:
        value = stats[key]
        if isinstance(value, float):
            rows.append((key, f"{value:.6g}"))
        else:
            rows.append((key, str(value)))
    kw = max(len(k) for k, _ in rows)
    vw = max(len(v) for _, v in rows)
    lines = [f"{'field'.ljust(kw)} {'value'.rjust(vw)}", "-" * (kw + vw + 1)]
    lines += [f"{k.ljust(kw)} {v.rjust(vw)}" for k, v in rows]
    return "\n".join(lines)


__all__ = ["SizeMapStats", "GradationReport", "format_stats_table"]
