"""Central numerical tolerances and small geometry constants.

This module centralizes tiny numeric thresholds used across the size-map
code so they can be tuned consistently and referenced without scattering
literals.
"""
from __future__ import annotations

import math

# Numerical tolerances
EPSD: float = 1e-30     # near-zero squared lengths, flat right-hand sides, solve determinants
EPSD2: float = 1e-200   # degenerate chord projection in gradation
EPS: float = 1e-6       # gradation acceptance slack, near-axis normal in rotmatrix

# Relative threshold under which an off-diagonal term is treated as zero
EPS_OFFDIAG: float = 1e-6

# Curvature -> size laws
SIZE_COEF_CURVE: float = 1.0 / 8.0   # 1-D Bezier arcs (singular, ridge, reference curves)
SIZE_COEF_QUADRIC: float = 2.0 / 9.0 # quadric fit principal curvatures

# Hard cap on the number of triangles in a vertex ball
MAX_BALL_SIZE: int = 1024

# Gradation
GRAD_MAX_ITER: int = 100
DEFAULT_HGRAD: float = math.log(1.3)
DEFAULT_HAUSD: float = 0.01

# Default size bounds as fractions of the bounding-box diagonal
HMAX_DIAG_FACTOR: float = 0.5
HMIN_DIAG_FACTOR: float = 0.01

__all__ = [
    'EPSD',
    'EPSD2',
    'EPS',
    'EPS_OFFDIAG',
    'SIZE_COEF_CURVE',
    'SIZE_COEF_QUADRIC',
    'MAX_BALL_SIZE',
    'GRAD_MAX_ITER',
    'DEFAULT_HGRAD',
    'DEFAULT_HAUSD',
    'HMAX_DIAG_FACTOR',
    'HMIN_DIAG_FACTOR',
]
