"""Tests for training and prediction settings."""

from __future__ import annotations

import json

import pytest

from polyfold.config import PredictionConfig, TrainingConfig, load_mapping
from polyfold.domain.exceptions import ConfigurationError


def test_training_defaults() -> None:
    config = TrainingConfig()

    assert config.classifier == "RF"
    assert config.n_folds == 5
    assert config.seed == 42
    assert config.insufficient_groups_policy == "degrade"
    assert config.metric == "kappa"


def test_load_from_json_string_with_overrides() -> None:
    config = TrainingConfig.load('{"classifier": "svm", "n_folds": 3}', seed=7, subsample=None)

    assert config.classifier == "SVM"
    assert config.n_folds == 3
    assert config.seed == 7
    assert config.subsample is None


def test_load_from_file(tmp_path) -> None:
    path = tmp_path / "train.json"
    path.write_text(json.dumps({"param_grid": {"n_estimators": [10, 20]}, "group_field": "poly_id"}))

    from_reference = TrainingConfig.load(f"@{path}")
    from_path = TrainingConfig.load(path)

    assert from_reference.param_grid == {"n_estimators": [10, 20]}
    assert from_path.group_field == "poly_id"


@pytest.mark.parametrize(
    "values, key",
    [
        ({"seed": None}, "seed"),
        ({"n_folds": 1}, "n_folds"),
        ({"classifier": "XYZ"}, "classifier"),
        ({"metric": "auc"}, "metric"),
        ({"insufficient_groups_policy": "skip"}, "insufficient_groups_policy"),
        ({"subsample": 0}, "subsample"),
        ({"param_grid": {"C": []}}, "param_grid"),
        ({"colour": "red"}, "colour"),
    ],
)
def test_invalid_training_settings(values, key) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        TrainingConfig.from_mapping(values)
    assert excinfo.value.config_key == key


def test_load_mapping_errors(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        load_mapping("{not json")
    with pytest.raises(ConfigurationError):
        load_mapping("[1, 2]")
    with pytest.raises(ConfigurationError):
        load_mapping(f"@{tmp_path / 'missing.json'}")
    assert load_mapping(None) == {}
    assert load_mapping("  ") == {}


def test_to_dict_round_trips() -> None:
    config = TrainingConfig(classifier="knn", param_grid={"n_neighbors": [1, 3]})

    assert TrainingConfig.from_mapping(config.to_dict()) == config


def test_prediction_config() -> None:
    config = PredictionConfig.load('{"tile_rows": 64, "tile_cols": 32}', missing=0)

    assert config.tile_shape == (64, 32)
    assert config.missing == 0
    assert PredictionConfig().tile_shape is None


@pytest.mark.parametrize(
    "values",
    [{"tile_rows": 10}, {"tile_rows": 0, "tile_cols": 4}, {"memory_limit_mb": 0}, {"block": 3}],
)
def test_invalid_prediction_settings(values) -> None:
    with pytest.raises(ConfigurationError):
        PredictionConfig.from_mapping(values)
