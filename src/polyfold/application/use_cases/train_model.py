"""Train model use case."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from polyfold.config import TrainingConfig
from polyfold.domain.model import ModelFactory, TrainedClassifier
from polyfold.domain.raster import RasterSource
from polyfold.domain.regions import LabeledRegion
from polyfold.factories.classifier_factory import ClassifierFactory
from polyfold.logging import FeedbackProtocol, Reporter
from polyfold.sampling.sample_table import SampleTable, build_sample_table
from polyfold.validation.cross_validation import CrossValidatedTrainer, TrainingResult
from polyfold.validation.group_folds import FoldAssignment, assign_group_folds
from polyfold.validation.report import CrossValidationReport


@dataclass
class TrainingOutcome:
    table: SampleTable
    folds: FoldAssignment
    result: TrainingResult
    report: CrossValidationReport

    @property
    def classifier(self) -> TrainedClassifier:
        return self.result.classifier


def train_from_sources(
    raster: RasterSource,
    regions: Iterable[LabeledRegion],
    config: TrainingConfig,
    model_factory: Optional[ModelFactory] = None,
    reporter: Optional[Reporter] = None,
) -> TrainingOutcome:
    """Extract samples, assign grouped folds, sweep hyperparameters and fit the final model.

    ``model_factory`` replaces the registered classifier of ``config``; in
    that case a missing ``param_grid`` means a single run with empty params.
    """
    reporter = reporter or Reporter.from_feedback(None)
    table = build_sample_table(
        raster,
        regions,
        subsample=config.subsample,
        random_state=config.seed,
        reporter=reporter,
    )
    folds = assign_group_folds(
        table,
        config.n_folds,
        config.seed,
        policy=config.insufficient_groups_policy,
        reporter=reporter,
    )
    for line in folds.summary().to_string(index=False).splitlines():
        reporter.info(line)

    if model_factory is None:
        model_factory = ClassifierFactory.model_factory(config.classifier)
        grid = config.param_grid
        if grid is None:
            grid = ClassifierFactory.default_param_grid(config.classifier, table.n_features)
    else:
        grid = config.param_grid or {}

    trainer = CrossValidatedTrainer(model_factory, metric=config.metric, n_jobs=config.n_jobs, reporter=reporter)
    result = trainer.train(table, folds, grid, seed=config.seed)
    report = CrossValidationReport.from_result(table, result.cross_validation, result.sweep)
    return TrainingOutcome(table=table, folds=folds, result=result, report=report)


def run_training(
    *,
    raster_path: str,
    vector_path: str,
    model_path: str,
    config: TrainingConfig,
    report_dir: Optional[Union[str, Path]] = None,
    feedback: Optional[FeedbackProtocol] = None,
) -> TrainingOutcome:
    """Train from a raster and a polygon layer, then save the model (and report)."""
    from polyfold.infrastructure.geo.gdal_sources import GdalRasterSource, regions_from_vector
    from polyfold.infrastructure.model_store import save_model

    reporter = Reporter.from_feedback(feedback)
    regions = regions_from_vector(raster_path, vector_path, config.class_field, config.group_field)
    reporter.info(f"Loaded {len(regions)} regions from {vector_path}")
    source = GdalRasterSource(raster_path, nodata=config.nodata)
    try:
        outcome = train_from_sources(source, regions, config, reporter=reporter)
    finally:
        source.close()

    save_model(outcome.classifier, model_path)
    reporter.info(f"Model saved to {model_path}")
    if report_dir is not None:
        outcome.report.write(report_dir)
        reporter.info(f"Cross-validation report written to {report_dir}")
    return outcome
