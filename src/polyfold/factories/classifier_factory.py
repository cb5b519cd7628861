"""Registry of the scikit-learn classifiers polyfold can train.

Each entry knows how to build a fresh estimator from a hyperparameter mapping
and a seed, and carries a default hyperparameter grid for the sweep. Built
estimators are wrapped in a pipeline that first min-max scales every feature
to ``[-1, 1]`` using the training rows only.

Example:
    >>> factory = ClassifierFactory.model_factory("RF")
    >>> model = factory({"n_estimators": 50}, 0)
    >>> ClassifierFactory.get_available_classifiers()
    ['ET', 'GBC', 'KNN', 'LR', 'MLP', 'NB', 'RF', 'SVM']

"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, List, Optional, Type

import numpy as np
from sklearn.ensemble import ExtraTreesClassifier, GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.naive_bayes import GaussianNB
from sklearn.neighbors import KNeighborsClassifier
from sklearn.neural_network import MLPClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import MinMaxScaler
from sklearn.svm import SVC

from polyfold.domain.exceptions import ConfigurationError
from polyfold.domain.model import Model


@dataclass
class ClassifierMetadata:
    """Metadata for a classifier.

    Attributes
    ----------
    code : str
        Short code (e.g., "RF", "SVM")
    name : str
        Full name (e.g., "Random Forest")
    description : str
        Human-readable description
    supports_probability : bool
        Whether classifier supports probability estimates
    scale_features : bool
        Whether features are min-max scaled before fitting

    """

    code: str
    name: str
    description: str
    supports_probability: bool = True
    scale_features: bool = True


# Grid values may be callables of the feature count, resolved at sweep time.
ParamGrid = Dict[str, Any]


class ClassifierFactory:
    """Registry-based factory for classifiers."""

    _registry: ClassVar[Dict[str, Dict[str, Any]]] = {}

    @classmethod
    def register(
        cls,
        code: str,
        classifier_class: Type,
        metadata: ClassifierMetadata,
        default_params: Optional[Dict[str, Any]] = None,
        param_grid: Optional[ParamGrid] = None,
    ) -> None:
        """Register a classifier.

        Parameters
        ----------
        code : str
            Classifier short code (e.g., "RF", "SVM")
        classifier_class : Type
            Class or callable that creates the estimator
        metadata : ClassifierMetadata
            Metadata describing the classifier
        default_params : dict, optional
            Parameters applied before the user's ones
        param_grid : dict, optional
            Default hyperparameter grid for the cross-validated sweep

        """
        cls._registry[code.upper()] = {
            "class": classifier_class,
            "metadata": metadata,
            "default_params": default_params or {},
            "param_grid": param_grid or {},
        }

    @classmethod
    def _entry(cls, code: str) -> Dict[str, Any]:
        key = str(code).upper()
        if key not in cls._registry:
            available = ", ".join(cls.get_available_classifiers())
            raise ConfigurationError(
                f"Unknown classifier code: {key}. Available classifiers: {available}", config_key="classifier"
            )
        return cls._registry[key]

    @classmethod
    def create(cls, code: str, random_state: Optional[int] = None, **params) -> Model:
        """Create an unfitted estimator.

        ``random_state`` is forwarded only to estimators that accept one.

        Raises
        ------
        ConfigurationError
            If the classifier code is unknown or the parameters are rejected

        """
        entry = cls._entry(code)
        metadata: ClassifierMetadata = entry["metadata"]
        final_params = {**entry["default_params"], **params}
        classifier_class = entry["class"]
        if random_state is not None and _accepts(classifier_class, "random_state"):
            final_params.setdefault("random_state", random_state)

        try:
            estimator = classifier_class(**final_params)
        except Exception as e:
            raise ConfigurationError(
                f"Failed to create classifier {metadata.code}: {e!s}", config_key="classifier_params"
            ) from e

        if not metadata.scale_features:
            return estimator
        return Pipeline([("scaler", MinMaxScaler(feature_range=(-1, 1))), ("classifier", estimator)])

    @classmethod
    def model_factory(cls, code: str, **fixed_params) -> Callable[[Dict[str, Any], Optional[int]], Model]:
        """Return ``factory(params, random_state)`` building fresh models of ``code``."""
        entry = cls._entry(code)
        metadata: ClassifierMetadata = entry["metadata"]

        def factory(params: Dict[str, Any], random_state: Optional[int]) -> Model:
            return cls.create(metadata.code, random_state=random_state, **{**fixed_params, **(params or {})})

        factory.code = metadata.code  # type: ignore[attr-defined]
        factory.__name__ = f"{metadata.code.lower()}_factory"
        return factory

    @classmethod
    def default_param_grid(cls, code: str, n_features: int) -> Dict[str, List[Any]]:
        """Default grid of ``code``, with feature-count dependent ranges resolved."""
        grid = {}
        for key, values in cls._entry(code)["param_grid"].items():
            if callable(values):
                values = values(n_features)
            grid[key] = [_as_python(v) for v in values]
        return grid

    @classmethod
    def get_available_classifiers(cls) -> List[str]:
        return sorted(cls._registry.keys())

    @classmethod
    def get_metadata(cls, code: str) -> Optional[ClassifierMetadata]:
        key = str(code).upper()
        if key not in cls._registry:
            return None
        return cls._registry[key]["metadata"]

    @classmethod
    def get_all_metadata(cls) -> Dict[str, ClassifierMetadata]:
        return {code: entry["metadata"] for code, entry in cls._registry.items()}


def _accepts(classifier_class: Type, name: str) -> bool:
    try:
        return name in inspect.signature(classifier_class).parameters
    except (TypeError, ValueError):
        return False


def _as_python(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    return value


def _max_features_range(step_divisor: int) -> Callable[[int], range]:
    def resolve(n_features: int) -> range:
        return range(1, max(2, n_features), max(1, int(n_features / step_divisor)))

    return resolve


def register_default_classifiers() -> None:
    """Register the scikit-learn classifiers.

    Grid values run from the simplest model to the most complex, so a sweep tie
    keeps the simplest one.
    """
    ClassifierFactory.register(
        "RF",
        RandomForestClassifier,
        ClassifierMetadata("RF", "Random Forest", "Ensemble of decision trees"),
        default_params={"n_jobs": 1},
        param_grid={"n_estimators": [100], "max_features": _max_features_range(3)},
    )
    ClassifierFactory.register(
        "ET",
        ExtraTreesClassifier,
        ClassifierMetadata("ET", "Extra Trees", "Ensemble of extremely randomized trees"),
        default_params={"n_jobs": 1},
        param_grid={"n_estimators": [50, 200], "max_features": _max_features_range(2)},
    )
    ClassifierFactory.register(
        "SVM",
        SVC,
        ClassifierMetadata("SVM", "Support Vector Machine", "RBF kernel support vector classifier"),
        default_params={"probability": True, "kernel": "rbf"},
        param_grid={"gamma": 2.0 ** np.arange(-2, 3), "C": 10.0 ** np.arange(-1, 3)},
    )
    ClassifierFactory.register(
        "KNN",
        KNeighborsClassifier,
        ClassifierMetadata("KNN", "K-Nearest Neighbors", "Majority vote of the nearest training samples"),
        param_grid={"n_neighbors": [10, 3, 1]},
    )
    ClassifierFactory.register(
        "GBC",
        GradientBoostingClassifier,
        ClassifierMetadata("GBC", "Gradient Boosting", "Boosted decision trees"),
        param_grid={"n_estimators": [50, 200], "max_depth": [3, 7], "learning_rate": [0.01, 0.2]},
    )
    ClassifierFactory.register(
        "LR",
        LogisticRegression,
        ClassifierMetadata("LR", "Logistic Regression", "Multinomial logistic regression"),
        default_params={"max_iter": 1000},
        param_grid={"C": 10.0 ** np.arange(-2, 3, 2)},
    )
    ClassifierFactory.register(
        "NB",
        GaussianNB,
        ClassifierMetadata("NB", "Gaussian Naive Bayes", "Independent Gaussian class likelihoods"),
        param_grid={"var_smoothing": 10.0 ** np.arange(-6, -10, -3)},
    )
    ClassifierFactory.register(
        "MLP",
        MLPClassifier,
        ClassifierMetadata("MLP", "Multi-layer Perceptron", "Feed-forward neural network"),
        default_params={"max_iter": 500},
        param_grid={"hidden_layer_sizes": [(50,), (100, 50)], "alpha": [0.01, 0.0001]},
    )


register_default_classifiers()
