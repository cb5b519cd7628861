"""Tests for model persistence."""

from __future__ import annotations

import pickle

import numpy as np
import pytest

from polyfold.domain.exceptions import DataLoadError
from polyfold.domain.model import TrainedClassifier
from polyfold.factories.classifier_factory import ClassifierFactory
from polyfold.infrastructure.model_store import load_model, save_model


def test_saved_model_predicts_the_same(tmp_path) -> None:
    X = np.random.RandomState(0).rand(30, 2)
    y = (X[:, 0] > 0.5).astype(int) + 1
    model = ClassifierFactory.create("RF", random_state=0, n_estimators=5).fit(X, y)
    classifier = TrainedClassifier(model, ("red", "nir"), "RF", {"n_estimators": 5}, (1, 2), seed=0, cv_score=0.8)

    path = save_model(classifier, tmp_path / "models" / "rf.pkl")
    loaded = load_model(path)

    assert loaded.feature_names == ("red", "nir")
    assert loaded.params == {"n_estimators": 5}
    assert loaded.cv_score == 0.8
    assert np.array_equal(loaded.predict(X), classifier.predict(X))


def test_missing_file(tmp_path) -> None:
    with pytest.raises(DataLoadError):
        load_model(tmp_path / "nope.pkl")


def test_corrupt_file(tmp_path) -> None:
    path = tmp_path / "broken.pkl"
    path.write_bytes(b"not a pickle")

    with pytest.raises(DataLoadError):
        load_model(path)


def test_other_pickled_object_is_rejected(tmp_path) -> None:
    path = tmp_path / "dict.pkl"
    path.write_bytes(pickle.dumps({"model": None}))

    with pytest.raises(DataLoadError) as excinfo:
        load_model(path)
    assert "TrainedClassifier" in str(excinfo.value)
