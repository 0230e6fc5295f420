"""Public package API for anisosurf.

Anisotropic surface metric computation: per-vertex curvature-driven sizing
tensors on a triangulated surface, and their gradation.

Example
-------
    from anisosurf import SurfaceMesh, AdaptParams, define_size_map, gradate_metric

    mesh = SurfaceMesh.from_arrays(points, tris)
    field, stats = define_size_map(mesh, AdaptParams(hausd=0.01))
    report = gradate_metric(mesh, field, AdaptParams(hgrad=0.1))

The deeper modules (``anisosurf.core.*``) are considered internal and may
change; rely on this layer for public symbols.
"""
from importlib import import_module as _imp
import logging as _logging

try:  # Python 3.8+ runtime version export
    from importlib.metadata import version as _pkg_version
    __version__ = _pkg_version("anisosurf")  # populated when installed
except Exception:  # pragma: no cover - editable / unknown state
    __version__ = "0.0.0+dev"

_logging.getLogger(__name__).addHandler(_logging.NullHandler())

_const = _imp('anisosurf.core.constants')
_errors = _imp('anisosurf.core.errors')
_config = _imp('anisosurf.core.config')
_mesh = _imp('anisosurf.core.mesh')
_metric = _imp('anisosurf.core.metric')
_defmet = _imp('anisosurf.core.defmet')
_lengths = _imp('anisosurf.core.lengths')
_sizemap = _imp('anisosurf.core.sizemap')
_gradation = _imp('anisosurf.core.gradation')
_stats = _imp('anisosurf.core.stats')
_log = _imp('anisosurf.core.logging_utils')

# Mesh and parameters
SurfaceMesh = _mesh.SurfaceMesh
AdaptParams = _config.AdaptParams

# Metric storage
MetricField = _metric.MetricField
MetricKind = _metric.MetricKind
IsotropicMetric = _metric.IsotropicMetric
FullMetric = _metric.FullMetric
RidgeMetric = _metric.RidgeMetric
build_ridge_metric = _metric.build_ridge_metric

# Entry points
define_size_map = _sizemap.define_size_map
define_point_metric = _defmet.define_point_metric
gradate_metric = _gradation.gradate_metric
edge_length = _lengths.edge_length
edge_lengths = _lengths.edge_lengths
triangle_area = _lengths.triangle_area

# Reports
SizeMapStats = _stats.SizeMapStats
GradationReport = _stats.GradationReport

# Errors
SizeMapError = _errors.SizeMapError
TopologyError = _errors.TopologyError
BallOverflowError = _errors.BallOverflowError
MetricAllocationError = _errors.MetricAllocationError

configure_logging = _log.configure_logging

# Namespace submodules for exploratory users
constants = _const
mesh = _mesh
metric = _metric
stats = _stats

__all__ = [
    '__version__',
    'SurfaceMesh', 'AdaptParams',
    'MetricField', 'MetricKind', 'IsotropicMetric', 'FullMetric', 'RidgeMetric', 'build_ridge_metric',
    'define_size_map', 'define_point_metric', 'gradate_metric',
    'edge_length', 'edge_lengths', 'triangle_area',
    'SizeMapStats', 'GradationReport',
    'SizeMapError', 'TopologyError', 'BallOverflowError', 'MetricAllocationError',
    'configure_logging',
    'constants', 'mesh', 'metric', 'stats',
]
