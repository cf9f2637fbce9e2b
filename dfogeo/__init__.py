"""Interpolation-set geometry kernels for derivative-free trust-region methods."""

from .blocks.aux import NO_DROP, GeometryConfig, QGeoStatus
from .blocks.debug import GeometryContractError
from .dfo_geo import assess_geo, geostep, setdrop_geo, setdrop_tr, simplex_distances
from .dfo_qgeo import qgeostep
from .dfo_geo_manager import GeometryManager

__all__ = [
    "NO_DROP",
    "GeometryConfig",
    "GeometryContractError",
    "GeometryManager",
    "QGeoStatus",
    "assess_geo",
    "geostep",
    "qgeostep",
    "setdrop_geo",
    "setdrop_tr",
    "simplex_distances",
]
