"""Raster classification use case."""

from __future__ import annotations

from typing import Optional

from polyfold.config import PredictionConfig
from polyfold.domain.model import TrainedClassifier
from polyfold.domain.raster import RasterSource
from polyfold.logging import FeedbackProtocol, Reporter
from polyfold.prediction.grid_predictor import GridPredictor, GridSink, PredictionResult


def make_predictor(
    classifier: TrainedClassifier,
    config: Optional[PredictionConfig] = None,
    reporter: Optional[Reporter] = None,
) -> GridPredictor:
    config = config or PredictionConfig()
    return GridPredictor(
        classifier,
        tile_shape=config.tile_shape,
        missing=config.missing,
        n_jobs=config.n_jobs,
        memory_limit_mb=config.memory_limit_mb,
        reporter=reporter,
    )


def predict_from_source(
    classifier: TrainedClassifier,
    source: RasterSource,
    config: Optional[PredictionConfig] = None,
    sink: Optional[GridSink] = None,
    with_confidence: bool = False,
    reporter: Optional[Reporter] = None,
) -> PredictionResult:
    predictor = make_predictor(classifier, config, reporter)
    return predictor.predict(source, sink=sink, with_confidence=with_confidence)


def run_classification(
    *,
    raster_path: str,
    model_path: str,
    output_path: str,
    confidence_path: Optional[str] = None,
    mask_path: Optional[str] = None,
    config: Optional[PredictionConfig] = None,
    feedback: Optional[FeedbackProtocol] = None,
) -> PredictionResult:
    """Classify a raster file with a saved model and write a GeoTIFF."""
    from polyfold.infrastructure.geo.gdal_sources import GdalRasterSource, GeoTiffSink
    from polyfold.infrastructure.model_store import load_model

    config = config or PredictionConfig()
    reporter = Reporter.from_feedback(feedback)
    classifier = load_model(model_path)
    reporter.info(f"Loaded {classifier.describe()}")

    source = GdalRasterSource(raster_path, nodata=config.nodata, mask_path=mask_path)
    try:
        predictor = make_predictor(classifier, config, reporter)
        # no output file is created for a raster the model cannot read
        predictor.check_source(source)
        sink = GeoTiffSink(
            output_path,
            source,
            classifier.classes,
            missing=config.missing,
            confidence_path=confidence_path,
        )
        result = predictor.predict(source, sink=sink, with_confidence=confidence_path is not None)
    finally:
        source.close()
    reporter.info(f"Classification written to {output_path}")
    return result
