"""Tests for the command-line entry point."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pandas as pd
import pytest

from polyfold.cli import main as cli_main
from polyfold.prediction.grid_predictor import PredictionResult, PredictionSummary


class _FakeFolds:
    is_degraded = True
    degraded_classes = {7: 2}

    def summary(self):
        return pd.DataFrame({"fold": [0, 1], "n_groups": [3, 3]})


def _fake_outcome():
    cv = SimpleNamespace(metric="kappa", mean_score=0.81, std_score=0.05)
    return SimpleNamespace(
        result=SimpleNamespace(cross_validation=cv),
        classifier=SimpleNamespace(params={"n_estimators": 100}),
    )


def test_train_builds_config_from_file_and_flags(monkeypatch, tmp_path, capsys) -> None:
    config_path = tmp_path / "train.json"
    config_path.write_text(json.dumps({"n_folds": 4, "classifier": "ET", "seed": 1}))
    captured = {}

    def fake_run_training(**kwargs):
        captured.update(kwargs)
        return _fake_outcome()

    monkeypatch.setattr(cli_main, "run_training", fake_run_training)

    code = cli_main.main(
        [
            "train",
            "--raster",
            "in.tif",
            "--vector",
            "roi.shp",
            "--model",
            "model.pkl",
            "--config",
            f"@{config_path}",
            "--seed",
            "9",
            "--classifier",
            "svm",
            "--policy",
            "reduce",
            "--group-field",
            "poly_id",
        ]
    )

    assert code == 0
    config = captured["config"]
    assert config.n_folds == 4
    assert config.seed == 9
    assert config.classifier == "SVM"
    assert config.insufficient_groups_policy == "reduce"
    assert config.group_field == "poly_id"
    assert config.class_field == "class"
    assert captured["raster_path"] == "in.tif"
    assert "0.8100 +/- 0.0500" in capsys.readouterr().out


def test_classify_passes_prediction_settings(monkeypatch) -> None:
    captured = {}

    def fake_run_classification(**kwargs):
        captured.update(kwargs)
        return PredictionResult(grid=None, summary=PredictionSummary(4, 3, 1, 1, (2, 2)))

    monkeypatch.setattr(cli_main, "run_classification", fake_run_classification)

    code = cli_main.main(
        [
            "classify",
            "--raster",
            "in.tif",
            "--model",
            "model.pkl",
            "--output",
            "out.tif",
            "--tile-size",
            "128",
            "--missing",
            "0",
            "--confidence",
            "conf.tif",
        ]
    )

    assert code == 0
    config = captured["config"]
    assert config.tile_shape == (128, 128)
    assert config.missing == 0
    assert captured["confidence_path"] == "conf.tif"


def test_folds_prints_summary(monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli_main, "run_fold_assignment", lambda **kwargs: _FakeFolds())

    code = cli_main.main(["folds", "--raster", "in.tif", "--vector", "roi.shp", "--folds", "2"])

    out = capsys.readouterr().out
    assert code == 0
    assert "n_groups" in out
    assert "{7: 2}" in out


def test_errors_are_reported_with_exit_code(monkeypatch) -> None:
    shown = []

    def failing(**kwargs):
        raise RuntimeError("cannot open raster")

    monkeypatch.setattr(cli_main, "run_fold_assignment", failing)
    monkeypatch.setattr(cli_main, "show_error_dialog", lambda title, exc: shown.append((title, str(exc))))

    code = cli_main.main(["folds", "--raster", "in.tif", "--vector", "roi.shp"])

    assert code == 1
    assert shown == [("polyfold CLI Error", "cannot open raster")]


def test_invalid_settings_exit_with_error(monkeypatch) -> None:
    shown = []
    monkeypatch.setattr(cli_main, "show_error_dialog", lambda title, exc: shown.append(type(exc).__name__))

    code = cli_main.main(["folds", "--raster", "in.tif", "--vector", "roi.shp", "--folds", "1"])

    assert code == 1
    assert shown == ["ConfigurationError"]


def test_no_command_prints_help(capsys) -> None:
    assert cli_main.main([]) == 0
    assert "usage" in capsys.readouterr().out


def test_unknown_classifier_is_rejected_by_argparse() -> None:
    with pytest.raises(SystemExit):
        cli_main.main(["train", "--raster", "a", "--vector", "b", "--model", "c", "--classifier", "xgb"])
