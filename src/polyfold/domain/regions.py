"""Labelled regions (ground-truth polygons) and the groups derived from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

import numpy as np

from polyfold.domain.exceptions import ValidationError


def as_python_scalar(value: Any) -> Any:
    """Convert numpy scalars to plain Python values so ids compare and hash predictably."""
    if isinstance(value, np.generic):
        return value.item()
    return value


def label_sort_key(value: Any) -> Tuple[str, Any]:
    """Sort key that orders mixed int/str labels without raising."""
    value = as_python_scalar(value)
    if isinstance(value, (bool, int, float)):
        return ("0", value)
    return ("1", str(value))


@dataclass
class LabeledRegion:
    """One digitised region: a group id, a class label and the cells it covers.

    ``cells`` is an ``(n, 2)`` integer array of ``(row, col)`` grid positions.
    """

    group_id: Hashable
    label: Hashable
    cells: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        self.group_id = as_python_scalar(self.group_id)
        self.label = as_python_scalar(self.label)
        cells = np.asarray(self.cells, dtype=np.int64)
        if cells.size == 0:
            cells = cells.reshape(0, 2)
        if cells.ndim != 2 or cells.shape[1] != 2:
            raise ValidationError("region cells", f"region {self.group_id!r} cells must be an (n, 2) array")
        self.cells = cells

    @property
    def n_cells(self) -> int:
        return int(self.cells.shape[0])

    def bounding_box(self) -> Optional[Tuple[int, int, int, int]]:
        """Return ``(row, col, rows, cols)`` enclosing every cell, or None when empty."""
        if self.n_cells == 0:
            return None
        rmin, cmin = self.cells.min(axis=0)
        rmax, cmax = self.cells.max(axis=0)
        return int(rmin), int(cmin), int(rmax - rmin + 1), int(cmax - cmin + 1)


@dataclass(frozen=True)
class GroupInfo:
    """Atomic unit of fold assignment."""

    group_id: Hashable
    label: Hashable
    n_rows: int


def summarize_groups(labels: Iterable[Any], groups: Iterable[Any]) -> List[GroupInfo]:
    """Collapse per-row labels and group ids into one :class:`GroupInfo` per group.

    Groups are returned in order of first appearance. A group whose rows carry
    more than one label raises :class:`ValidationError`.
    """
    label_of: Dict[Any, Any] = {}
    counts: Dict[Any, int] = {}
    for label, group in zip(labels, groups):
        label = as_python_scalar(label)
        group = as_python_scalar(group)
        previous = label_of.setdefault(group, label)
        if previous != label:
            raise ValidationError(
                "group labels",
                f"group {group!r} holds rows of class {previous!r} and {label!r}",
                suggestions=["Give every polygon a unique group identifier"],
            )
        counts[group] = counts.get(group, 0) + 1
    return [GroupInfo(group, label_of[group], counts[group]) for group in label_of]


def regions_from_label_rasters(
    labels: np.ndarray,
    groups: Optional[np.ndarray] = None,
    background: Any = 0,
) -> List[LabeledRegion]:
    """Build regions from a rasterised class map and an optional group map.

    Parameters
    ----------
    labels : np.ndarray
        ``(rows, cols)`` class raster; ``background`` cells are not sampled.
    groups : np.ndarray, optional
        ``(rows, cols)`` group raster, typically polygon ids burnt from the
        training vector. When omitted every class value forms one group.
    background : scalar, default=0
        Value marking unlabelled cells in both rasters.

    Returns
    -------
    list of LabeledRegion
        One region per group id, sorted by group id.

    """
    labels = np.asarray(labels)
    if labels.ndim != 2:
        raise ValidationError("label raster", f"expected a 2D array, got {labels.ndim} dimensions")
    if groups is None:
        groups = labels
    groups = np.asarray(groups)
    if groups.shape != labels.shape:
        raise ValidationError("group raster", f"shape {groups.shape} differs from label raster {labels.shape}")

    rows, cols = np.nonzero((labels != background) & (groups != background))
    if rows.size == 0:
        return []
    cell_groups = groups[rows, cols]
    cell_labels = labels[rows, cols]

    regions: List[LabeledRegion] = []
    for group_id in sorted(np.unique(cell_groups).tolist(), key=label_sort_key):
        t = np.flatnonzero(cell_groups == group_id)
        group_labels = np.unique(cell_labels[t])
        if group_labels.size > 1:
            raise ValidationError(
                "group labels",
                f"group {group_id!r} covers cells of classes {group_labels.tolist()}",
                suggestions=["Check that polygons do not overlap", "Use a unique id field per polygon"],
            )
        regions.append(LabeledRegion(group_id, group_labels[0], np.column_stack((rows[t], cols[t]))))
    return regions
