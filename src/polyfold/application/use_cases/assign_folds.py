"""Fold preview use case: which polygon lands in which fold."""

from __future__ import annotations

from typing import Iterable, List, Optional

import pandas as pd

from polyfold.config import TrainingConfig
from polyfold.domain.regions import GroupInfo, LabeledRegion
from polyfold.logging import FeedbackProtocol, Reporter
from polyfold.validation.group_folds import FoldAssignment, assign_group_folds


def groups_from_regions(regions: Iterable[LabeledRegion]) -> List[GroupInfo]:
    """One group per distinct group id, sized by the number of cells it covers."""
    sizes: dict = {}
    labels: dict = {}
    for region in regions:
        labels.setdefault(region.group_id, region.label)
        sizes[region.group_id] = sizes.get(region.group_id, 0) + region.n_cells
    return [GroupInfo(group_id, labels[group_id], sizes[group_id]) for group_id in labels if sizes[group_id] > 0]


def fold_membership(folds: FoldAssignment) -> pd.DataFrame:
    return pd.DataFrame.from_records(
        [
            {"group": g.group_id, "label": g.label, "n_cells": g.n_rows, "fold": folds.folds[g.group_id]}
            for g in folds.groups
        ]
    )


def run_fold_assignment(
    *,
    raster_path: str,
    vector_path: str,
    config: TrainingConfig,
    output_path: Optional[str] = None,
    feedback: Optional[FeedbackProtocol] = None,
) -> FoldAssignment:
    """Assign the polygons of ``vector_path`` to folds without training anything."""
    from polyfold.infrastructure.geo.gdal_sources import regions_from_vector

    reporter = Reporter.from_feedback(feedback)
    regions = regions_from_vector(raster_path, vector_path, config.class_field, config.group_field)
    n_empty = sum(1 for region in regions if region.n_cells == 0)
    if n_empty:
        reporter.warning(f"{n_empty} polygon(s) cover no raster cell and are left out of the folds")
    folds = assign_group_folds(
        groups_from_regions(regions),
        config.n_folds,
        config.seed,
        policy=config.insufficient_groups_policy,
        reporter=reporter,
    )
    if output_path is not None:
        fold_membership(folds).to_csv(output_path, index=False)
        reporter.info(f"Fold membership written to {output_path}")
    return folds
