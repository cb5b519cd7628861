"""Accuracy statistics computed from a confusion matrix.

Rows of every confusion matrix produced here are true classes and columns are
predicted classes, in the order of ``labels``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np
from sklearn.metrics import confusion_matrix as _sk_confusion_matrix

from polyfold.domain.exceptions import ConfigurationError
from polyfold.domain.regions import label_sort_key

MetricFunction = Callable[[np.ndarray, np.ndarray], float]


def sorted_labels(*arrays: np.ndarray) -> List[Any]:
    """Union of the labels found in ``arrays``, sorted."""
    seen = set()
    for values in arrays:
        seen.update(np.asarray(values).tolist())
    return sorted(seen, key=label_sort_key)


def confusion_matrix(y_true, y_pred, labels: Optional[Sequence[Any]] = None) -> np.ndarray:
    """Return the confusion matrix with a fixed label order."""
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if labels is None:
        labels = sorted_labels(y_true, y_pred)
    if y_true.size == 0:
        return np.zeros((len(labels), len(labels)), dtype=np.int64)
    return _sk_confusion_matrix(y_true, y_pred, labels=list(labels)).astype(np.int64)


@dataclass
class ConfusionStatistics:
    """Overall accuracy, Cohen's kappa and F1 scores of one confusion matrix."""

    labels: List[Any]
    matrix: np.ndarray
    overall_accuracy: float
    kappa: float
    f1: np.ndarray
    precision: np.ndarray
    recall: np.ndarray

    @property
    def f1_mean(self) -> float:
        return float(np.mean(self.f1)) if self.f1.size else 0.0

    @property
    def support(self) -> np.ndarray:
        return self.matrix.sum(axis=1)

    @classmethod
    def from_matrix(cls, matrix: np.ndarray, labels: Sequence[Any]) -> ConfusionStatistics:
        cm = np.asarray(matrix, dtype=float)
        tp = np.diag(cm)
        support = cm.sum(axis=1)
        pred_sum = cm.sum(axis=0)

        precision = np.divide(tp, pred_sum, out=np.zeros_like(tp), where=pred_sum != 0)
        recall = np.divide(tp, support, out=np.zeros_like(tp), where=support != 0)
        denom = precision + recall
        f1 = np.divide(2.0 * precision * recall, denom, out=np.zeros_like(tp), where=denom != 0)

        total = float(cm.sum())
        overall_accuracy = float(tp.sum() / total) if total else 0.0
        return cls(
            labels=list(labels),
            matrix=np.asarray(matrix, dtype=np.int64),
            overall_accuracy=overall_accuracy,
            kappa=_kappa_from_matrix(cm),
            f1=f1,
            precision=precision,
            recall=recall,
        )

    @classmethod
    def from_labels(cls, y_true, y_pred, labels: Optional[Sequence[Any]] = None) -> ConfusionStatistics:
        if labels is None:
            labels = sorted_labels(y_true, y_pred)
        return cls.from_matrix(confusion_matrix(y_true, y_pred, labels), labels)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "overall_accuracy": self.overall_accuracy,
            "kappa": self.kappa,
            "f1_mean": self.f1_mean,
            "f1_per_class": dict(zip(self.labels, self.f1.tolist())),
            "support_per_class": dict(zip(self.labels, self.support.astype(int).tolist())),
        }


def _kappa_from_matrix(cm: np.ndarray) -> float:
    total = float(cm.sum())
    if total == 0:
        return 0.0
    oa = float(np.trace(cm)) / total
    pe = float(np.sum(cm.sum(axis=0) * cm.sum(axis=1))) / total**2
    # a single class in both truth and prediction leaves no chance agreement to correct for
    if np.isclose(pe, 1.0):
        return 1.0 if np.isclose(oa, 1.0) else 0.0
    return (oa - pe) / (1.0 - pe)


def kappa_score(y_true, y_pred) -> float:
    """Cohen's kappa: agreement between labels corrected for chance."""
    return ConfusionStatistics.from_labels(y_true, y_pred).kappa


def overall_accuracy(y_true, y_pred) -> float:
    return ConfusionStatistics.from_labels(y_true, y_pred).overall_accuracy


def f1_mean(y_true, y_pred) -> float:
    return ConfusionStatistics.from_labels(y_true, y_pred).f1_mean


METRICS: Dict[str, MetricFunction] = {
    "kappa": kappa_score,
    "accuracy": overall_accuracy,
    "f1_mean": f1_mean,
}


def get_metric(metric: Union[str, MetricFunction]) -> MetricFunction:
    """Resolve a metric name (``kappa``, ``accuracy``, ``f1_mean``) or pass a callable through."""
    if callable(metric):
        return metric
    try:
        return METRICS[str(metric).lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown metric '{metric}'. Available: {', '.join(sorted(METRICS))}", config_key="metric"
        ) from None


def metric_name(metric: Union[str, MetricFunction]) -> str:
    if isinstance(metric, str):
        return metric.lower()
    for name, func in METRICS.items():
        if func is metric:
            return name
    return getattr(metric, "__name__", "custom")
