"""Tests for the cross-validation report."""

from __future__ import annotations

import json

import pytest

from fakes import LabelColumnModel
from polyfold.validation.cross_validation import CrossValidatedTrainer
from polyfold.validation.group_folds import assign_group_folds
from polyfold.validation.report import CrossValidationReport


@pytest.fixture
def report(table_1000) -> CrossValidationReport:
    folds = assign_group_folds(table_1000, 5, seed=0)
    sweep = CrossValidatedTrainer(LabelColumnModel).sweep(table_1000, folds, {"cheat": [False, True]})
    return CrossValidationReport.from_result(table_1000, sweep.best.cv, sweep)


def test_report_tables(report, table_1000) -> None:
    assert list(report.folds["fold"]) == [0, 1, 2, 3, 4]
    assert report.folds["n_test"].sum() == table_1000.n_rows
    assert list(report.folds["kappa"]) == pytest.approx([1.0] * 5)

    aggregate = dict(zip(report.aggregate["statistic"], report.aggregate["value"]))
    assert aggregate["kappa_mean"] == pytest.approx(1.0)
    assert aggregate["overall_accuracy"] == pytest.approx(1.0)

    assert report.confusion.index.name == "true"
    assert report.confusion.to_numpy().trace() == table_1000.n_rows
    assert len(report.rows) == table_1000.n_rows
    assert report.rows["correct"].all()
    assert list(report.sweep["selected"]) == [False, True]
    assert report.params == {"cheat": True}


def test_per_class_recall(report) -> None:
    per_class = report.per_class()

    assert list(per_class.index) == [1, 2, 3, 4, 5, 6, 7]
    assert per_class["recall"].tolist() == pytest.approx([1.0] * 7)


def test_write(report, tmp_path) -> None:
    out_dir = report.write(tmp_path / "report")

    for name in ("folds.csv", "aggregate.csv", "confusion_matrix.csv", "oof_predictions.csv", "sweep.csv"):
        assert (out_dir / name).is_file()
    summary = json.loads((out_dir / "summary.json").read_text())
    assert summary["params"] == {"cheat": True}
    assert summary["aggregate"]["kappa_mean"] == pytest.approx(1.0)
