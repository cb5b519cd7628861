"""polyfold: spatially grouped cross-validation and tiled prediction for raster classification."""

from __future__ import annotations

__version__ = "0.1.0"
