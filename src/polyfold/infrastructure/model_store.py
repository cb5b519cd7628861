"""Pickle persistence of trained classifier bundles."""

from __future__ import annotations

import pickle  # nosec B403
from pathlib import Path
from typing import Union

from polyfold.domain.exceptions import DataLoadError, OutputError
from polyfold.domain.model import TrainedClassifier

PathLike = Union[str, Path]


def save_model(classifier: TrainedClassifier, path: PathLike) -> Path:
    """Write ``classifier`` to ``path``, creating parent directories."""
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as fh:
            pickle.dump(classifier, fh, protocol=pickle.HIGHEST_PROTOCOL)
    except (OSError, pickle.PicklingError) as exc:
        raise OutputError(str(target), str(exc)) from exc
    return target


def load_model(path: PathLike) -> TrainedClassifier:
    """Read a classifier written by :func:`save_model`.

    Only load files you trust: unpickling runs arbitrary code.
    """
    source = Path(path)
    if not source.exists():
        raise DataLoadError(str(source), "file does not exist")
    try:
        with source.open("rb") as fh:
            classifier = pickle.load(fh)  # nosec B301
    except (OSError, pickle.UnpicklingError, EOFError, AttributeError, ImportError) as exc:
        raise DataLoadError(str(source), f"not a readable model file ({exc})") from exc
    if not isinstance(classifier, TrainedClassifier):
        raise DataLoadError(str(source), f"expected a TrainedClassifier, found {type(classifier).__name__}")
    return classifier
