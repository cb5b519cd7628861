"""GDAL/OGR adapters: raster reading, polygon rasterisation and GeoTIFF output.

Requires the ``gdal`` extra (``pip install polyfold[gdal]``).
"""

from __future__ import annotations

import os
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
from osgeo import gdal, ogr

from polyfold.constants import CONFIDENCE_NODATA, NODATA_VALUE
from polyfold.domain.exceptions import DataLoadError, OutputError, ValidationError
from polyfold.domain.raster import Tile, cell_validity
from polyfold.domain.regions import LabeledRegion, label_sort_key, regions_from_label_rasters

gdal.UseExceptions()
ogr.UseExceptions()


def _open_raster(path: str):
    try:
        dataset = gdal.Open(str(path), gdal.GA_ReadOnly)
    except RuntimeError as exc:
        raise DataLoadError(str(path), str(exc)) from exc
    if dataset is None:
        raise DataLoadError(str(path), "GDAL could not open the raster")
    return dataset


def _open_vector(path: str):
    try:
        datasource = ogr.Open(str(path))
    except RuntimeError as exc:
        raise DataLoadError(str(path), str(exc)) from exc
    if datasource is None:
        raise DataLoadError(str(path), "OGR could not open the vector")
    return datasource


class GdalRasterSource:
    """Raster source reading blocks from any GDAL-readable file.

    Parameters
    ----------
    path : str
        Raster path.
    nodata : float, optional
        Missing-value marker. Defaults to the no-data value of the first band
        and finally to ``NODATA_VALUE``.
    use_band_descriptions : bool, default=False
        Report band descriptions as channel names. When False only the band
        count is checked against a trained model.
    mask_path : str, optional
        Raster of the same size whose zero cells are treated as missing.

    """

    def __init__(
        self,
        path: str,
        nodata: Optional[float] = None,
        use_band_descriptions: bool = False,
        mask_path: Optional[str] = None,
    ):
        self.path = str(path)
        self.dataset = _open_raster(self.path)
        if nodata is None:
            nodata = self.dataset.GetRasterBand(1).GetNoDataValue()
        self.nodata = NODATA_VALUE if nodata is None else nodata
        self._use_band_descriptions = use_band_descriptions
        self.mask = None
        if mask_path is not None:
            self.mask = _open_raster(mask_path)
            if (self.mask.RasterXSize, self.mask.RasterYSize) != (self.dataset.RasterXSize, self.dataset.RasterYSize):
                raise ValidationError("mask size", "image and mask should be of the same size")

    @property
    def shape(self) -> Tuple[int, int]:
        return self.dataset.RasterYSize, self.dataset.RasterXSize

    @property
    def band_count(self) -> int:
        return self.dataset.RasterCount

    @property
    def band_names(self) -> Optional[Sequence[str]]:
        if not self._use_band_descriptions:
            return None
        names = [self.dataset.GetRasterBand(i + 1).GetDescription() for i in range(self.band_count)]
        return names if all(names) else None

    @property
    def block_shape(self) -> Tuple[int, int]:
        x_block_size, y_block_size = self.dataset.GetRasterBand(1).GetBlockSize()
        return y_block_size, x_block_size

    @property
    def geotransform(self):
        return self.dataset.GetGeoTransform()

    @property
    def projection(self) -> str:
        return self.dataset.GetProjection()

    def read_block(self, row: int, col: int, rows: int, cols: int) -> Tuple[np.ndarray, np.ndarray]:
        values = np.empty((rows, cols, self.band_count), dtype=np.float64)
        for band_idx in range(self.band_count):
            band_data = self.dataset.GetRasterBand(band_idx + 1).ReadAsArray(col, row, cols, rows)
            if band_data is None:
                raise DataLoadError(self.path, f"error reading band {band_idx + 1}")
            values[:, :, band_idx] = band_data
        mask = None
        if self.mask is not None:
            mask = self.mask.GetRasterBand(1).ReadAsArray(col, row, cols, rows) != 0
        return values, cell_validity(values, self.nodata, mask)

    def close(self) -> None:
        self.dataset = None
        self.mask = None


def rasterize_field(raster_path: str, vector_path: str, field: Optional[str]) -> np.ndarray:
    """Burn ``field`` of every polygon of ``vector_path`` on the raster grid.

    ``field=None`` burns the feature id plus one, so every polygon gets a
    distinct non-zero value.
    """
    data = _open_raster(raster_path)
    shp = _open_vector(vector_path)
    lyr = shp.GetLayer()

    driver = gdal.GetDriverByName("MEM")
    dst_ds = driver.Create("", data.RasterXSize, data.RasterYSize, 1, gdal.GDT_Int32)
    dst_ds.SetGeoTransform(data.GetGeoTransform())
    dst_ds.SetProjection(data.GetProjection())

    if field is None:
        mem_ds, mem_layer = _layer_with_fid_field(lyr)
        gdal.RasterizeLayer(dst_ds, [1], mem_layer, options=["ATTRIBUTE=_group_id"])
        mem_ds, mem_layer = None, None
    else:
        defn = lyr.GetLayerDefn()
        names = [defn.GetFieldDefn(i).GetName() for i in range(defn.GetFieldCount())]
        if field not in names:
            raise ValidationError(
                "vector field",
                f"field '{field}' not found in {vector_path}",
                suggestions=[f"Available fields: {', '.join(names)}"],
            )
        gdal.RasterizeLayer(dst_ds, [1], lyr, options=[f"ATTRIBUTE={field}"])

    burnt = dst_ds.GetRasterBand(1).ReadAsArray()
    data, dst_ds, shp, lyr = None, None, None, None
    return burnt


def _layer_with_fid_field(layer):
    driver = ogr.GetDriverByName("Memory")
    mem_ds = driver.CreateDataSource("groups")
    mem_layer = mem_ds.CreateLayer("groups", layer.GetSpatialRef(), layer.GetGeomType())
    mem_layer.CreateField(ogr.FieldDefn("_group_id", ogr.OFTInteger))
    for position, feature in enumerate(layer):
        out = ogr.Feature(mem_layer.GetLayerDefn())
        out.SetGeometry(feature.GetGeometryRef().Clone())
        out.SetField("_group_id", position + 1)
        mem_layer.CreateFeature(out)
    layer.ResetReading()
    return mem_ds, mem_layer


def regions_from_vector(
    raster_path: str,
    vector_path: str,
    class_field: str,
    group_field: Optional[str] = None,
) -> List[LabeledRegion]:
    """Rasterise a training vector into one region per polygon (or per ``group_field`` value).

    Polygons that burn no cell (smaller than a pixel, outside the raster or
    hidden by a later polygon) are returned as empty regions, so the sample
    table drops them with a warning.
    """
    labels = rasterize_field(raster_path, vector_path, class_field)
    groups = rasterize_field(raster_path, vector_path, group_field)
    regions = regions_from_label_rasters(labels, groups, background=0)

    seen = {region.group_id for region in regions}
    for group_id, label in _feature_keys(vector_path, class_field, group_field):
        if group_id in seen:
            continue
        seen.add(group_id)
        regions.append(LabeledRegion(group_id, label, np.empty((0, 2), dtype=np.int64)))
    return sorted(regions, key=lambda region: label_sort_key(region.group_id))


def _feature_keys(vector_path: str, class_field: str, group_field: Optional[str]) -> List[Tuple[Any, Any]]:
    """``(group id, label)`` of every feature, numbered like :func:`rasterize_field` when ``group_field`` is None."""
    shp = _open_vector(vector_path)
    keys = []
    for position, feature in enumerate(shp.GetLayer()):
        label = feature.GetField(class_field)
        group_id = position + 1 if group_field is None else feature.GetField(group_field)
        if label is None or group_id is None:
            continue
        keys.append((group_id, label))
    shp = None
    return keys


def _gdal_type(dtype: np.dtype) -> int:
    if dtype.kind in "u" and dtype.itemsize == 1:
        return gdal.GDT_Byte
    if dtype.kind in "iub":
        return gdal.GDT_Int32
    return gdal.GDT_Float32


class GeoTiffSink:
    """Grid sink writing predicted tiles into a GeoTIFF with the source georeferencing."""

    def __init__(
        self,
        output_path: str,
        source: GdalRasterSource,
        classes: Sequence[Any],
        missing: float = NODATA_VALUE,
        confidence_path: Optional[str] = None,
    ):
        numeric = np.asarray(list(classes))
        if numeric.dtype.kind not in "biuf":
            raise ValidationError("GeoTIFF output", "class labels must be numeric to be written to a raster")
        self.output_path = str(output_path)
        self.missing = missing
        out_dir = os.path.dirname(self.output_path)
        try:
            if out_dir and not os.path.exists(out_dir):
                os.makedirs(out_dir)
            driver = gdal.GetDriverByName("GTiff")
            n_rows, n_cols = source.shape
            dtype = np.result_type(numeric.dtype, np.asarray(missing).dtype)
            self._dtype = dtype
            self.dst_ds = driver.Create(self.output_path, n_cols, n_rows, 1, _gdal_type(dtype))
            self.dst_ds.SetGeoTransform(source.geotransform)
            self.dst_ds.SetProjection(source.projection)
            self.out = self.dst_ds.GetRasterBand(1)
            self.out.SetNoDataValue(missing)
            self.dst_conf = None
            if confidence_path:
                self.dst_conf = driver.Create(str(confidence_path), n_cols, n_rows, 1, gdal.GDT_Int16)
                self.dst_conf.SetGeoTransform(source.geotransform)
                self.dst_conf.SetProjection(source.projection)
                self.dst_conf.GetRasterBand(1).SetNoDataValue(CONFIDENCE_NODATA)
        except RuntimeError as exc:
            raise OutputError(self.output_path, str(exc)) from exc

    def write_tile(self, tile: Tile, labels: Optional[np.ndarray], confidence: Optional[np.ndarray]) -> None:
        if labels is None:
            labels = np.full((tile.rows, tile.cols), self.missing, dtype=self._dtype)
        self.out.WriteArray(np.asarray(labels, dtype=self._dtype), tile.col, tile.row)
        if self.dst_conf is not None and confidence is not None:
            self.dst_conf.GetRasterBand(1).WriteArray(confidence, tile.col, tile.row)

    def close(self) -> None:
        self.out.FlushCache()
        if self.dst_conf is not None:
            self.dst_conf.FlushCache()
        self.out = None
        self.dst_ds = None
        self.dst_conf = None

