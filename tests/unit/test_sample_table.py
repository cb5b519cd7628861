"""Tests for sample-table extraction from labelled regions."""

from __future__ import annotations

import numpy as np
import pytest

from polyfold.domain.exceptions import ConfigurationError, ValidationError
from polyfold.domain.raster import ArrayRasterSource
from polyfold.domain.regions import LabeledRegion, regions_from_label_rasters
from polyfold.sampling.sample_table import SampleTable, build_sample_table, subsample_per_group


def _grid(rows: int = 4, cols: int = 5, bands: int = 2) -> np.ndarray:
    base = np.arange(rows * cols, dtype=float).reshape(rows, cols)
    return np.stack([base + 100 * b for b in range(bands)], axis=2)


class _SpyRaster(ArrayRasterSource):
    """Array source recording every window read."""

    def __post_init__(self) -> None:
        super().__post_init__()
        self.reads = []

    def read_block(self, row, col, rows, cols):
        self.reads.append((row, col, rows, cols))
        return super().read_block(row, col, rows, cols)


def test_rows_follow_region_then_row_major_order() -> None:
    raster = ArrayRasterSource(_grid(), band_names=("red", "nir"))
    regions = [
        LabeledRegion("b", 2, [(3, 4), (2, 0), (2, 1)]),
        LabeledRegion("a", 1, [(0, 1), (0, 0)]),
    ]

    table = build_sample_table(raster, regions)

    assert table.coords.tolist() == [[2, 0], [2, 1], [3, 4], [0, 0], [0, 1]]
    assert table.groups.tolist() == ["b", "b", "b", "a", "a"]
    assert table.y.tolist() == [2, 2, 2, 1, 1]
    assert table.X[:, 0].tolist() == [10.0, 11.0, 19.0, 0.0, 1.0]
    assert table.X[:, 1].tolist() == [110.0, 111.0, 119.0, 100.0, 101.0]
    assert table.feature_names == ("red", "nir")


def test_default_feature_names() -> None:
    table = build_sample_table(ArrayRasterSource(_grid(bands=3)), [LabeledRegion(1, 1, [(0, 0)])])

    assert table.feature_names == ("band_1", "band_2", "band_3")


def test_missing_cells_and_out_of_grid_cells_are_skipped() -> None:
    data = _grid()
    data[0, 1, 1] = -9999
    data[0, 2, 0] = np.nan
    raster = ArrayRasterSource(data, nodata=-9999)
    region = LabeledRegion(1, "water", [(0, 0), (0, 1), (0, 2), (0, 3), (-1, 0), (9, 9)])

    table = build_sample_table(raster, [region])

    assert table.coords.tolist() == [[0, 0], [0, 3]]
    assert not np.isnan(table.X).any()


def test_mask_excludes_cells() -> None:
    mask = np.ones((4, 5), dtype=bool)
    mask[1, :] = False
    raster = ArrayRasterSource(_grid(), valid_mask=mask)

    table = build_sample_table(raster, [LabeledRegion(1, 1, [(0, 0), (1, 0), (2, 0)])])

    assert table.coords[:, 0].tolist() == [0, 2]


def test_region_without_usable_cells_is_dropped(reporter, dummy_log) -> None:
    data = _grid()
    data[3, 3, :] = -9999
    raster = ArrayRasterSource(data, nodata=-9999)
    regions = [
        LabeledRegion(1, 1, [(0, 0), (0, 1)]),
        LabeledRegion(2, 1, [(3, 3)]),
        LabeledRegion(3, 2, [(50, 50)]),
        LabeledRegion(4, 2, np.empty((0, 2))),
        LabeledRegion(5, 2, [(1, 1)]),
    ]

    table = build_sample_table(raster, regions, reporter=reporter)

    assert table.dropped_regions == [2, 3, 4]
    assert sorted(set(table.groups.tolist())) == [1, 5]
    assert any("3 region(s) dropped" in message for message in dummy_log.messages("warning"))


def test_overlapping_cells_stay_with_first_region(reporter, dummy_log) -> None:
    raster = ArrayRasterSource(_grid())
    regions = [
        LabeledRegion(1, 1, [(0, 0), (0, 1)]),
        LabeledRegion(2, 2, [(0, 1), (0, 2)]),
    ]

    table = build_sample_table(raster, regions, reporter=reporter)

    assert table.coords.tolist() == [[0, 0], [0, 1], [0, 2]]
    assert table.groups.tolist() == [1, 1, 2]
    assert any("claimed by several regions" in message for message in dummy_log.messages("warning"))


def test_duplicate_cells_inside_a_region_count_once() -> None:
    table = build_sample_table(ArrayRasterSource(_grid()), [LabeledRegion(1, 1, [(1, 1), (1, 1), (1, 2)])])

    assert table.n_rows == 2


def test_group_id_with_two_labels_is_rejected() -> None:
    regions = [LabeledRegion(1, "a", [(0, 0)]), LabeledRegion(1, "b", [(1, 1)])]

    with pytest.raises(ValidationError):
        build_sample_table(ArrayRasterSource(_grid()), regions)


def test_regions_sharing_a_group_id_form_one_group() -> None:
    regions = [LabeledRegion(7, "a", [(0, 0)]), LabeledRegion(7, "a", [(3, 3), (3, 4)])]

    table = build_sample_table(ArrayRasterSource(_grid()), regions)

    assert [(g.group_id, g.n_rows) for g in table.group_summary()] == [(7, 3)]


def test_mixed_type_labels_and_group_ids_are_not_coerced() -> None:
    raster = ArrayRasterSource(_grid())
    regions = [
        LabeledRegion(1, 1, [(0, 0)]),
        LabeledRegion("1", "water", [(1, 0)]),
    ]

    table = build_sample_table(raster, regions)

    assert table.y.tolist() == [1, "water"]
    assert table.groups.tolist() == [1, "1"]
    assert len(table.group_summary()) == 2


def test_no_usable_cell_at_all_is_an_error() -> None:
    with pytest.raises(ValidationError):
        build_sample_table(ArrayRasterSource(_grid()), [LabeledRegion(1, 1, [(10, 10)])])


def test_only_region_windows_are_read() -> None:
    raster = _SpyRaster(np.zeros((100, 100, 1)))
    regions = [LabeledRegion(1, 1, [(10, 20), (12, 21)]), LabeledRegion(2, 2, [(90, 90)])]

    build_sample_table(raster, regions)

    assert raster.reads == [(10, 20, 3, 2), (90, 90, 1, 1)]


def test_subsample_keeps_a_fraction_of_every_group() -> None:
    groups = np.repeat([1, 2, 3], [10, 3, 1])

    keep = subsample_per_group(groups, 0.5, random_state=0)

    kept = groups[keep]
    assert (kept == 1).sum() == 5
    assert (kept == 2).sum() == 2
    assert (kept == 3).sum() == 1
    assert np.all(np.diff(keep) > 0)


def test_subsample_is_seeded() -> None:
    groups = np.repeat(np.arange(5), 40)

    first = subsample_per_group(groups, 0.3, random_state=7)
    second = subsample_per_group(groups, 0.3, random_state=7)
    other = subsample_per_group(groups, 0.3, random_state=8)

    assert np.array_equal(first, second)
    assert not np.array_equal(first, other)


@pytest.mark.parametrize("fraction", [0.0, -0.1, 1.5])
def test_subsample_fraction_must_be_in_range(fraction) -> None:
    with pytest.raises(ConfigurationError):
        subsample_per_group(np.array([1, 1]), fraction, random_state=0)


def test_subsample_requires_seed() -> None:
    raster = ArrayRasterSource(_grid())
    regions = [LabeledRegion(1, 1, [(0, 0), (0, 1)])]

    with pytest.raises(ConfigurationError):
        build_sample_table(raster, regions, subsample=0.5)


def test_build_with_subsample_keeps_row_order() -> None:
    data, regions = _checkerboard()
    raster = ArrayRasterSource(data)

    full = build_sample_table(raster, regions)
    sub = build_sample_table(raster, regions, subsample=0.4, random_state=3)

    assert sub.n_rows == 4 * 10
    positions = [np.flatnonzero((full.coords == c).all(axis=1))[0] for c in sub.coords]
    assert positions == sorted(positions)


def _checkerboard():
    data = np.random.RandomState(0).rand(10, 10, 1)
    regions = [
        LabeledRegion(
            i + 1,
            i % 2,
            [(r, c) for r in range(5 * (i // 2), 5 * (i // 2) + 5) for c in range(5 * (i % 2), 5 * (i % 2) + 5)],
        )
        for i in range(4)
    ]
    return data, regions


def test_table_helpers() -> None:
    table = SampleTable(
        X=np.arange(8, dtype=float).reshape(4, 2),
        y=np.array(["a", "a", "b", "b"]),
        groups=np.array([1, 1, 2, 3]),
        coords=np.array([[0, 0], [0, 1], [1, 0], [1, 1]]),
        feature_names=("f1", "f2"),
    )

    assert table.class_counts() == {"a": 2, "b": 2}
    assert [g.n_rows for g in table.group_summary()] == [2, 1, 1]
    assert table.take([3, 0]).coords.tolist() == [[1, 1], [0, 0]]
    assert list(table.to_frame().columns) == ["group", "label", "row", "col", "f1", "f2"]


def test_table_rejects_mismatched_lengths() -> None:
    with pytest.raises(ValidationError):
        SampleTable(X=np.zeros((3, 1)), y=[1, 2], groups=[1, 1, 1], coords=np.zeros((3, 2)), feature_names=("f",))


def test_regions_from_label_rasters() -> None:
    labels = np.array([[1, 1, 0], [2, 2, 0], [2, 0, 3]])
    groups = np.array([[10, 10, 0], [20, 21, 0], [21, 0, 30]])

    regions = regions_from_label_rasters(labels, groups)

    assert [(r.group_id, r.label, r.n_cells) for r in regions] == [(10, 1, 2), (20, 2, 1), (21, 2, 2), (30, 3, 1)]
    assert regions[2].bounding_box() == (1, 0, 2, 2)


def test_regions_from_label_raster_without_groups() -> None:
    regions = regions_from_label_rasters(np.array([[1, 2], [2, 0]]))

    assert [(r.group_id, r.label, r.n_cells) for r in regions] == [(1, 1, 1), (2, 2, 2)]


def test_group_spanning_two_classes_is_rejected() -> None:
    with pytest.raises(ValidationError):
        regions_from_label_rasters(np.array([[1, 2]]), np.array([[5, 5]]))
