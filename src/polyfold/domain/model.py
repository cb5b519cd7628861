"""Model interface and the trained classifier bundle handed to prediction."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np


@runtime_checkable
class Model(Protocol):
    """Anything with scikit-learn style ``fit``/``predict``."""

    def fit(self, X: np.ndarray, y: np.ndarray) -> Any: ...

    def predict(self, X: np.ndarray) -> np.ndarray: ...


# factory(params, random_state) -> fresh, unfitted model
ModelFactory = Callable[[Dict[str, Any], Optional[int]], Model]


@dataclass
class TrainedClassifier:
    """Final model plus the metadata needed to apply it to a new grid.

    Parameters
    ----------
    model : Model
        Estimator fitted on the whole sample table.
    feature_names : tuple of str
        Predictor channels the model was trained on, in column order.
    classifier : str
        Classifier code used to build the model (e.g., "RF").
    params : dict
        Hyperparameters selected by the sweep.
    classes : tuple
        Class labels seen during training.
    seed : int, optional
        Seed used for the final fit.
    cv_score : float, optional
        Mean cross-validated score of the selected configuration.

    """

    model: Any
    feature_names: Tuple[str, ...]
    classifier: str = "custom"
    params: Dict[str, Any] = field(default_factory=dict)
    classes: Tuple[Any, ...] = ()
    seed: Optional[int] = None
    cv_score: Optional[float] = None

    def __post_init__(self) -> None:
        self.feature_names = tuple(self.feature_names)
        self.classes = tuple(self.classes)

    @property
    def n_features(self) -> int:
        return len(self.feature_names)

    @property
    def supports_proba(self) -> bool:
        return callable(getattr(self.model, "predict_proba", None))

    def predict(self, X: np.ndarray) -> np.ndarray:
        return np.asarray(self.model.predict(X))

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        if not self.supports_proba:
            raise AttributeError(f"{type(self.model).__name__} does not expose predict_proba")
        return np.asarray(self.model.predict_proba(X))

    def describe(self) -> str:
        names: Sequence[str] = self.feature_names
        return (
            f"{self.classifier} model, {len(self.classes)} classes, "
            f"{len(names)} features ({', '.join(names)}), params={self.params}"
        )
