"""Deterministic fake models and synthetic data shared by the tests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from polyfold.domain.regions import GroupInfo, LabeledRegion
from polyfold.sampling.sample_table import SampleTable


class DummyLog:
    """Logger double keeping every message."""

    def __init__(self) -> None:
        self.records: List[Tuple[str, str]] = []

    def info(self, message: Any) -> None:
        self.records.append(("info", str(message)))

    def warning(self, message: Any) -> None:
        self.records.append(("warning", str(message)))

    def error(self, message: Any) -> None:
        self.records.append(("error", str(message)))

    def exception(self, message: Any, exc: Optional[BaseException] = None) -> None:
        self.records.append(("error", str(message)))

    def messages(self, level: str) -> List[str]:
        return [message for lvl, message in self.records if lvl == level]


class MajorityModel:
    """Predicts the most frequent training label (smallest label on ties)."""

    def __init__(self, params: Optional[Dict[str, Any]] = None, random_state: Optional[int] = None):
        self.params = dict(params or {})
        self.random_state = random_state
        self.label_ = None
        self.n_fit_rows = 0

    def fit(self, X, y):
        labels, counts = np.unique(y, return_counts=True)
        self.label_ = labels[np.argmax(counts)]
        self.n_fit_rows = len(y)
        return self

    def predict(self, X):
        return np.full(len(X), self.label_)


class GroupMemoryModel:
    """Predicts -1 for rows whose group code (column 0) was seen during fit.

    Any -1 in out-of-fold predictions therefore reveals a leak.
    """

    def __init__(self, params=None, random_state=None):
        self.seen = set()
        self.fallback = None

    def fit(self, X, y):
        self.seen = set(np.asarray(X)[:, 0].tolist())
        labels, counts = np.unique(y, return_counts=True)
        self.fallback = labels[np.argmax(counts)]
        return self

    def predict(self, X):
        codes = np.asarray(X)[:, 0]
        return np.array([-1 if code in self.seen else self.fallback for code in codes.tolist()])


class LabelColumnModel:
    """Reads the label from column 1 when ``params['cheat']`` is set, else predicts the majority."""

    def __init__(self, params=None, random_state=None):
        self.cheat = bool((params or {}).get("cheat", False))
        self.majority = MajorityModel()

    def fit(self, X, y):
        self.majority.fit(X, y)
        return self

    def predict(self, X):
        if self.cheat:
            return np.asarray(X)[:, 1].astype(int)
        return self.majority.predict(X)


class ThresholdModel:
    """Per-cell rule on band 0, with class probabilities; no state shared between cells."""

    classes_ = np.array([1, 2])

    def fit(self, X, y):
        return self

    def predict(self, X):
        return np.where(np.asarray(X)[:, 0] > 0.5, 2, 1)

    def predict_proba(self, X):
        p = np.clip(np.asarray(X)[:, 0], 0.0, 1.0)
        return np.column_stack((1.0 - p, p))


# class label -> number of regions; 33 regions over 7 classes
SCENARIO_CLASS_SIZES = {1: 9, 2: 6, 3: 5, 4: 4, 5: 4, 6: 3, 7: 2}


def scenario_groups() -> List[GroupInfo]:
    """33 groups of 10 rows over 7 classes."""
    groups = []
    group_id = 0
    for label, count in SCENARIO_CLASS_SIZES.items():
        for _ in range(count):
            group_id += 1
            groups.append(GroupInfo(group_id, label, 10))
    return groups


def make_table(n_rows: int = 1000, n_groups: int = 33, n_classes: int = 7, seed: int = 0) -> SampleTable:
    """Table whose column 0 is the group id and column 1 the label."""
    rng = np.random.RandomState(seed)
    sizes = np.full(n_groups, n_rows // n_groups)
    sizes[: n_rows - sizes.sum()] += 1
    groups = np.repeat(np.arange(1, n_groups + 1), sizes)
    group_labels = (np.arange(n_groups) % n_classes) + 1
    y = np.repeat(group_labels, sizes)
    X = np.column_stack((groups.astype(float), y.astype(float), rng.normal(size=n_rows)))
    coords = np.column_stack((np.arange(n_rows) // 50, np.arange(n_rows) % 50))
    return SampleTable(X=X, y=y, groups=groups, coords=coords, feature_names=("group_code", "label_code", "noise"))


def block_regions(n_side: int = 4, block: int = 5) -> Tuple[np.ndarray, List[LabeledRegion]]:
    """A ``(n_side*block)`` square raster split into ``n_side**2`` square regions.

    Band 0 separates the two classes cleanly; band 1 is noise.
    """
    size = n_side * block
    rng = np.random.RandomState(1)
    data = np.empty((size, size, 2))
    regions = []
    group_id = 0
    for i in range(n_side):
        for j in range(n_side):
            group_id += 1
            label = 1 if (i + j) % 2 == 0 else 2
            rows, cols = np.mgrid[i * block : (i + 1) * block, j * block : (j + 1) * block]
            base = 0.2 if label == 1 else 0.8
            data[rows, cols, 0] = base + rng.uniform(-0.1, 0.1, size=rows.shape)
            data[rows, cols, 1] = rng.normal(size=rows.shape)
            regions.append(LabeledRegion(group_id, label, np.column_stack((rows.ravel(), cols.ravel()))))
    return data, regions
