"""Extract per-cell training rows from a raster under labelled regions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from polyfold.domain.exceptions import ConfigurationError, ValidationError
from polyfold.domain.raster import RasterSource
from polyfold.domain.regions import GroupInfo, LabeledRegion, summarize_groups
from polyfold.logging import Reporter, ensure_reporter

RandomStateLike = Union[None, int, np.random.RandomState]


@dataclass
class SampleTable:
    """Training rows extracted from a raster.

    Rows are ordered by region, then row-major by cell within a region.
    """

    X: np.ndarray
    y: np.ndarray
    groups: np.ndarray
    coords: np.ndarray
    feature_names: Tuple[str, ...]
    dropped_regions: List[Any] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.X = np.asarray(self.X, dtype=np.float64)
        if self.X.ndim != 2:
            raise ValidationError("sample table", f"X must be 2D, got shape {self.X.shape}")
        self.y = np.asarray(self.y)
        self.groups = np.asarray(self.groups)
        self.coords = np.asarray(self.coords, dtype=np.int64).reshape(-1, 2)
        self.feature_names = tuple(self.feature_names)
        n = self.X.shape[0]
        if not (self.y.shape[0] == self.groups.shape[0] == self.coords.shape[0] == n):
            raise ValidationError("sample table", "X, y, groups and coords must have the same number of rows")
        if len(self.feature_names) != self.X.shape[1]:
            raise ValidationError(
                "sample table",
                f"{len(self.feature_names)} feature names for {self.X.shape[1]} columns",
            )

    @property
    def n_rows(self) -> int:
        return int(self.X.shape[0])

    @property
    def n_features(self) -> int:
        return int(self.X.shape[1])

    @property
    def classes(self) -> np.ndarray:
        return np.unique(self.y)

    def group_summary(self) -> List[GroupInfo]:
        return summarize_groups(self.y, self.groups)

    def class_counts(self) -> dict:
        labels, counts = np.unique(self.y, return_counts=True)
        return dict(zip(labels.tolist(), counts.tolist()))

    def take(self, indices: Sequence[int]) -> SampleTable:
        """Return the rows at ``indices`` as a new table."""
        idx = np.asarray(indices, dtype=np.int64)
        return SampleTable(
            X=self.X[idx],
            y=self.y[idx],
            groups=self.groups[idx],
            coords=self.coords[idx],
            feature_names=self.feature_names,
            dropped_regions=list(self.dropped_regions),
        )

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(self.X, columns=list(self.feature_names))
        frame.insert(0, "col", self.coords[:, 1])
        frame.insert(0, "row", self.coords[:, 0])
        frame.insert(0, "label", self.y)
        frame.insert(0, "group", self.groups)
        return frame


def _feature_names(raster: RasterSource) -> Tuple[str, ...]:
    names = raster.band_names
    if names:
        return tuple(str(name) for name in names)
    return tuple(f"band_{i + 1}" for i in range(raster.band_count))


def _as_random_state(random_state: RandomStateLike) -> np.random.RandomState:
    if isinstance(random_state, np.random.RandomState):
        return random_state
    return np.random.RandomState(random_state)


def subsample_per_group(
    groups: np.ndarray,
    fraction: float,
    random_state: RandomStateLike,
) -> np.ndarray:
    """Pick a seeded fraction of the rows of every group.

    Each group keeps ``max(1, round(n * fraction))`` rows so no group vanishes.
    The returned indices are sorted, preserving the original row order.
    """
    if not 0.0 < fraction <= 1.0:
        raise ConfigurationError(f"Subsample fraction must be in (0, 1], got {fraction}", config_key="subsample")
    if random_state is None:
        raise ConfigurationError("Subsampling requires an explicit random seed", config_key="seed")
    rng = _as_random_state(random_state)
    groups = np.asarray(groups)
    keep: List[np.ndarray] = []
    for info in summarize_groups(np.zeros(groups.shape[0]), groups):
        idx = np.flatnonzero(groups == info.group_id)
        n_keep = max(1, int(round(idx.size * fraction)))
        if n_keep >= idx.size:
            keep.append(idx)
        else:
            keep.append(rng.choice(idx, size=n_keep, replace=False))
    if not keep:
        return np.array([], dtype=np.int64)
    return np.sort(np.concatenate(keep))


def build_sample_table(
    raster: RasterSource,
    regions: Iterable[LabeledRegion],
    *,
    subsample: Optional[float] = None,
    random_state: RandomStateLike = None,
    reporter: Optional[Reporter] = None,
) -> SampleTable:
    """Build one training row per raster cell covered by a region.

    Parameters
    ----------
    raster : RasterSource
        Grid of predictor vectors. Only the bounding box of each region is read.
    regions : iterable of LabeledRegion
        Ground-truth regions. A cell claimed by several regions belongs to the
        first one; cells outside the grid or flagged missing are skipped.
    subsample : float, optional
        Fraction of rows to keep in every group.
    random_state : int or np.random.RandomState, optional
        Seed for subsampling. Required when ``subsample`` is below 1.
    reporter : Reporter, optional
        Receives progress and warnings.

    Returns
    -------
    SampleTable
        Extracted rows. ``dropped_regions`` lists the group ids of regions
        that contributed no usable cell.

    """
    report = ensure_reporter(reporter)
    if subsample is not None and not 0.0 < subsample <= 1.0:
        raise ConfigurationError(f"Subsample fraction must be in (0, 1], got {subsample}", config_key="subsample")
    if subsample is not None and subsample < 1.0 and random_state is None:
        raise ConfigurationError("Subsampling requires an explicit random seed", config_key="seed")

    regions = list(regions)
    n_rows, n_cols = raster.shape
    n_bands = raster.band_count
    feature_names = _feature_names(raster)

    label_of: dict = {}
    claimed: set = set()
    X_parts: List[np.ndarray] = []
    y_parts: List[np.ndarray] = []
    group_parts: List[np.ndarray] = []
    coord_parts: List[np.ndarray] = []
    dropped: List[Any] = []
    n_overlap = 0
    n_missing = 0

    report.info(f"Extracting samples from {len(regions)} regions ({n_bands} bands)")
    for position, region in enumerate(regions):
        previous = label_of.setdefault(region.group_id, region.label)
        if previous != region.label:
            raise ValidationError(
                "region labels",
                f"group {region.group_id!r} is used for classes {previous!r} and {region.label!r}",
                suggestions=["Give every polygon a unique group identifier"],
            )

        cells = region.cells
        inside = (cells[:, 0] >= 0) & (cells[:, 0] < n_rows) & (cells[:, 1] >= 0) & (cells[:, 1] < n_cols)
        cells = cells[inside]
        # row-major order, duplicates removed
        flat = np.unique(cells[:, 0] * n_cols + cells[:, 1]) if cells.size else np.array([], dtype=np.int64)
        if flat.size and claimed:
            free = np.fromiter((f not in claimed for f in flat.tolist()), dtype=bool, count=flat.size)
            n_overlap += int(flat.size - free.sum())
            flat = flat[free]

        if flat.size == 0:
            dropped.append(region.group_id)
            report.warning(f"Region {region.group_id!r} (class {region.label!r}) covers no usable cell, skipped")
            continue

        rows, cols = flat // n_cols, flat % n_cols
        r0, c0 = int(rows.min()), int(cols.min())
        values, valid = raster.read_block(r0, c0, int(rows.max()) - r0 + 1, int(cols.max()) - c0 + 1)
        values = values[rows - r0, cols - c0, :]
        valid = valid[rows - r0, cols - c0]
        n_missing += int(valid.size - valid.sum())
        claimed.update(flat.tolist())

        if not valid.any():
            dropped.append(region.group_id)
            report.warning(f"Region {region.group_id!r} (class {region.label!r}) covers only no-data cells, skipped")
            continue

        n = int(valid.sum())
        X_parts.append(values[valid])
        y_parts.append(np.full(n, region.label, dtype=object))
        group_parts.append(np.full(n, region.group_id, dtype=object))
        coord_parts.append(np.column_stack((rows[valid], cols[valid])))
        report.progress((position + 1) / len(regions) * 100)

    if dropped:
        report.warning(f"{len(dropped)} region(s) dropped because they cover no usable cell")
    if n_overlap:
        report.warning(f"{n_overlap} cell(s) claimed by several regions were kept in the first region only")
    if n_missing:
        report.info(f"{n_missing} no-data cell(s) skipped inside regions")

    if not X_parts:
        raise ValidationError(
            "sample extraction",
            "no region overlaps valid raster cells",
            suggestions=["Check that the regions and the raster share the same extent"],
        )

    table = SampleTable(
        X=np.concatenate(X_parts),
        y=_compact(np.concatenate(y_parts)),
        groups=_compact(np.concatenate(group_parts)),
        coords=np.concatenate(coord_parts),
        feature_names=feature_names,
        dropped_regions=dropped,
    )

    if subsample is not None and subsample < 1.0:
        keep = subsample_per_group(table.groups, subsample, random_state)
        report.info(f"Subsampled {keep.size} of {table.n_rows} rows ({subsample:.0%} per group)")
        table = table.take(keep)

    report.info(f"Sample table ready: {table.n_rows} rows, {len(table.group_summary())} groups")
    return table


def _compact(values: np.ndarray) -> np.ndarray:
    """Turn an object array of homogeneous scalars into a typed numpy array.

    Mixed types stay ``object`` so that ``1`` and ``"1"`` remain distinct.
    """
    items = values.tolist()
    if len({type(v) for v in items}) != 1:
        return values
    converted = np.array(items)
    if converted.dtype.kind in "biufU":
        return converted
    return values
