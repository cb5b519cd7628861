"""Tiled raster prediction."""
