"""GDAL/OGR adapters."""
