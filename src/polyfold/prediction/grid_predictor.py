"""Tiled prediction of a whole raster with a trained classifier."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import islice
from typing import Any, Iterator, List, Optional, Protocol, Tuple

import numpy as np
from joblib import Parallel, delayed

from polyfold.constants import CONFIDENCE_NODATA, MEMORY_LIMIT_MB, NODATA_VALUE
from polyfold.domain.exceptions import DimensionMismatchError
from polyfold.domain.model import TrainedClassifier
from polyfold.domain.raster import RasterSource, Tile, count_tiles, iter_tiles, optimal_tile_shape
from polyfold.logging import Reporter, ensure_reporter


class GridSink(Protocol):
    """Destination of predicted tiles.

    ``labels`` is None for a tile without a single valid cell.
    """

    def write_tile(self, tile: Tile, labels: Optional[np.ndarray], confidence: Optional[np.ndarray]) -> None: ...

    def close(self) -> None: ...


class ArrayGridSink:
    """Collect predicted tiles into in-memory arrays.

    The label array is allocated at the first tile holding predictions, with
    a dtype able to store both the predictions and the missing marker, and is
    widened if a later tile needs it.
    """

    def __init__(self, shape: Tuple[int, int], missing: Any = NODATA_VALUE, with_confidence: bool = False):
        self.shape = shape
        self.missing = missing
        self.labels: Optional[np.ndarray] = None
        self.confidence = np.full(shape, CONFIDENCE_NODATA, dtype=np.int16) if with_confidence else None

    def write_tile(self, tile: Tile, labels: Optional[np.ndarray], confidence: Optional[np.ndarray]) -> None:
        window = (slice(tile.row, tile.row + tile.rows), slice(tile.col, tile.col + tile.cols))
        if self.confidence is not None and confidence is not None:
            self.confidence[window] = confidence
        if labels is None:
            return
        dtype = output_dtype(labels.dtype, self.missing)
        if self.labels is None:
            self.labels = np.full(self.shape, self.missing, dtype=dtype)
        elif dtype != self.labels.dtype:
            self.labels = self.labels.astype(_widen(self.labels.dtype, dtype))
        self.labels[window] = labels

    def close(self) -> None:
        if self.labels is None:
            self.labels = np.full(self.shape, self.missing, dtype=output_dtype(None, self.missing))


def output_dtype(prediction_dtype: Optional[np.dtype], missing: Any) -> np.dtype:
    """Dtype able to hold predictions of ``prediction_dtype`` and the ``missing`` marker."""
    numeric_missing = isinstance(missing, (int, float, np.number)) and not isinstance(missing, bool)
    if prediction_dtype is None:
        return np.asarray(missing).dtype if numeric_missing else np.dtype(object)
    if prediction_dtype.kind in "biuf" and numeric_missing:
        return np.result_type(prediction_dtype, np.asarray(missing).dtype)
    return np.dtype(object)


def _widen(current: np.dtype, new: np.dtype) -> np.dtype:
    if current.kind in "biuf" and new.kind in "biuf":
        return np.result_type(current, new)
    return np.dtype(object)


@dataclass
class PredictionSummary:
    n_cells: int
    n_predicted: int
    n_missing: int
    n_tiles: int
    tile_shape: Tuple[int, int]

    def __str__(self) -> str:
        return (
            f"{self.n_predicted} of {self.n_cells} cells predicted, {self.n_missing} missing, "
            f"{self.n_tiles} tiles of {self.tile_shape[0]}x{self.tile_shape[1]}"
        )


@dataclass
class PredictionResult:
    grid: Optional[np.ndarray]
    summary: PredictionSummary
    confidence: Optional[np.ndarray] = None


class GridPredictor:
    """Apply a :class:`TrainedClassifier` to every cell of a raster, tile by tile.

    Parameters
    ----------
    classifier : TrainedClassifier
        Model and the feature layout it was trained with.
    tile_shape : tuple of int, optional
        Rows and columns per tile. Defaults to the source's natural block
        shape, shrunk to fit ``memory_limit_mb``.
    missing : scalar, default=NODATA_VALUE
        Marker written to cells that cannot be predicted.
    n_jobs : int, default=1
        Tiles predicted concurrently (threads sharing the read-only model).
    memory_limit_mb : int, default=MEMORY_LIMIT_MB
        Memory budget of one tile of predictor values.
    reporter : Reporter, optional
        Receives progress and the prediction summary.

    """

    def __init__(
        self,
        classifier: TrainedClassifier,
        tile_shape: Optional[Tuple[int, int]] = None,
        missing: Any = NODATA_VALUE,
        n_jobs: int = 1,
        memory_limit_mb: int = MEMORY_LIMIT_MB,
        reporter: Optional[Reporter] = None,
    ):
        self.classifier = classifier
        self.tile_shape = tile_shape
        self.missing = missing
        self.n_jobs = n_jobs
        self.memory_limit_mb = memory_limit_mb
        self.report = ensure_reporter(reporter)

    def check_source(self, source: RasterSource) -> None:
        """Fail before any work when the source channels differ from the model's."""
        expected = self.classifier.n_features
        if source.band_count != expected:
            raise DimensionMismatchError(expected, source.band_count)
        names = source.band_names
        if names and self.classifier.feature_names and tuple(names) != self.classifier.feature_names:
            raise DimensionMismatchError(list(self.classifier.feature_names), list(names))

    def resolve_tile_shape(self, source: RasterSource) -> Tuple[int, int]:
        if self.tile_shape is not None:
            return int(self.tile_shape[0]), int(self.tile_shape[1])
        tile_shape = optimal_tile_shape(source.block_shape, source.band_count, self.memory_limit_mb)
        if tuple(tile_shape) != tuple(source.block_shape):
            self.report.info(f"Adjusted block size to {tile_shape[0]}x{tile_shape[1]} for memory optimization")
        return tile_shape

    def _predict_tile(
        self,
        tile: Tile,
        values: np.ndarray,
        valid: np.ndarray,
        with_confidence: bool,
    ) -> Tuple[Tile, Optional[np.ndarray], np.ndarray, Optional[np.ndarray]]:
        X = values.reshape(tile.size, -1)
        t = np.flatnonzero(valid.reshape(tile.size))
        if t.size == 0:
            return tile, None, t, None
        predictions = self.classifier.predict(X[t, :])
        confidence = None
        if with_confidence:
            confidence = np.amax(self.classifier.predict_proba(X[t, :]), axis=1) * 100
        return tile, predictions, t, confidence

    def _tile_batches(self, tiles: Iterator[Tile], batch_size: int) -> Iterator[List[Tile]]:
        while True:
            batch = list(islice(tiles, batch_size))
            if not batch:
                return
            yield batch

    def predict(
        self,
        source: RasterSource,
        sink: Optional[GridSink] = None,
        with_confidence: bool = False,
    ) -> PredictionResult:
        """Predict every cell of ``source``.

        Missing cells get the ``missing`` marker (and confidence -1). The output
        does not depend on the tile shape.
        """
        self.check_source(source)
        if with_confidence and not self.classifier.supports_proba:
            self.report.warning(f"{self.classifier.classifier} has no probability output, confidence map skipped")
            with_confidence = False

        shape = source.shape
        tile_shape = self.resolve_tile_shape(source)
        n_tiles = count_tiles(shape, tile_shape)
        own_sink = sink is None
        if own_sink:
            sink = ArrayGridSink(shape, self.missing, with_confidence)

        self.report.info(f"Predicting {shape[0]}x{shape[1]} grid with {source.band_count} bands in {n_tiles} tiles")
        n_predicted = 0
        done = 0
        batch_size = max(1, self.n_jobs) * 4
        try:
            with Parallel(n_jobs=self.n_jobs, backend="threading") as parallel:
                for batch in self._tile_batches(iter_tiles(shape, tile_shape), batch_size):
                    # reads stay in this thread, GDAL dataset handles are not thread-safe
                    blocks = [(tile, *source.read_block(tile.row, tile.col, tile.rows, tile.cols)) for tile in batch]
                    outputs = parallel(
                        delayed(self._predict_tile)(tile, values, valid, with_confidence)
                        for tile, values, valid in blocks
                    )
                    for tile, predictions, t, confidence in outputs:
                        labels = self._fill(tile, predictions, t)
                        conf_tile = None
                        if with_confidence:
                            conf = np.full(tile.size, CONFIDENCE_NODATA, dtype=np.int16)
                            if confidence is not None:
                                conf[t] = confidence.astype(np.int16)
                            conf_tile = conf.reshape(tile.rows, tile.cols)
                        sink.write_tile(tile, labels, conf_tile)
                        n_predicted += int(t.size)
                        done += 1
                    self.report.progress(done / n_tiles * 100)
        finally:
            sink.close()

        n_cells = shape[0] * shape[1]
        summary = PredictionSummary(
            n_cells=n_cells,
            n_predicted=n_predicted,
            n_missing=n_cells - n_predicted,
            n_tiles=n_tiles,
            tile_shape=tuple(tile_shape),
        )
        self.report.info(f"Prediction done: {summary}")
        if own_sink:
            return PredictionResult(grid=sink.labels, summary=summary, confidence=sink.confidence)
        return PredictionResult(grid=None, summary=summary)

    def _fill(self, tile: Tile, predictions: Optional[np.ndarray], t: np.ndarray) -> Optional[np.ndarray]:
        if predictions is None:
            return None
        predictions = np.asarray(predictions)
        out = np.full(tile.size, self.missing, dtype=output_dtype(predictions.dtype, self.missing))
        out[t] = predictions
        return out.reshape(tile.rows, tile.cols)
