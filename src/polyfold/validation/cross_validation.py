"""Grouped k-fold training, out-of-fold evaluation and hyperparameter sweep."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
from joblib import Parallel, delayed
from sklearn.model_selection import ParameterGrid

from polyfold.domain.exceptions import ConfigurationError, LeakageError, ModelTrainingError, ValidationError
from polyfold.domain.model import ModelFactory, TrainedClassifier
from polyfold.logging import Reporter, ensure_reporter
from polyfold.sampling.sample_table import SampleTable
from polyfold.validation.group_folds import FoldAssignment
from polyfold.validation.metrics import (
    ConfusionStatistics,
    MetricFunction,
    confusion_matrix,
    get_metric,
    metric_name,
    sorted_labels,
)

Candidates = Union[Mapping[str, Sequence[Any]], Sequence[Mapping[str, Any]], None]


@dataclass
class FoldResult:
    """Evaluation of one held-out fold."""

    fold: int
    n_train: int
    n_test: int
    n_test_groups: int
    score: float
    confusion: np.ndarray
    test_indices: np.ndarray = field(repr=False)
    predictions: np.ndarray = field(repr=False)


@dataclass
class CrossValidationResult:
    """Outcome of one full k-fold loop for one hyperparameter configuration.

    ``oof_predictions[i]`` is the prediction for row ``i`` of the sample
    table, made by the model of the fold holding that row's group.
    """

    params: Dict[str, Any]
    folds: List[FoldResult]
    oof_predictions: np.ndarray
    labels: List[Any]
    metric: str
    oof_score: float
    statistics: ConfusionStatistics

    @property
    def scores(self) -> np.ndarray:
        return np.array([f.score for f in self.folds], dtype=float)

    @property
    def mean_score(self) -> float:
        return float(np.nanmean(self.scores)) if self.folds else float("nan")

    @property
    def std_score(self) -> float:
        return float(np.nanstd(self.scores)) if self.folds else float("nan")

    @property
    def fold_of_row(self) -> np.ndarray:
        out = np.full(self.oof_predictions.shape[0], -1, dtype=np.int64)
        for result in self.folds:
            out[result.test_indices] = result.fold
        return out


@dataclass
class CandidateResult:
    index: int
    params: Dict[str, Any]
    complexity: float
    cv: CrossValidationResult

    @property
    def mean_score(self) -> float:
        return self.cv.mean_score


@dataclass
class SweepResult:
    candidates: List[CandidateResult]
    best_index: int

    @property
    def best(self) -> CandidateResult:
        return self.candidates[self.best_index]

    @property
    def best_params(self) -> Dict[str, Any]:
        return dict(self.best.params)


@dataclass
class TrainingResult:
    classifier: TrainedClassifier
    sweep: SweepResult
    folds: FoldAssignment

    @property
    def cross_validation(self) -> CrossValidationResult:
        return self.sweep.best.cv


def expand_candidates(candidates: Candidates) -> List[Dict[str, Any]]:
    """Turn a parameter grid or a list of configurations into a list of dicts.

    A mapping is expanded with :class:`sklearn.model_selection.ParameterGrid`.
    ``None`` or an empty grid yields a single empty configuration.
    """
    if candidates is None:
        return [{}]
    if isinstance(candidates, Mapping):
        if not candidates:
            return [{}]
        return [dict(params) for params in ParameterGrid(dict(candidates))]
    expanded = [dict(params) for params in candidates]
    return expanded or [{}]


def _fit_predict_fold(
    factory: ModelFactory,
    X: np.ndarray,
    y: np.ndarray,
    train_idx: np.ndarray,
    test_idx: np.ndarray,
    params: Dict[str, Any],
    seed: Optional[int],
    fold: int,
    classifier_code: str,
) -> tuple:
    model = factory(dict(params), seed)
    try:
        model.fit(X[train_idx], y[train_idx])
        predictions = np.asarray(model.predict(X[test_idx]))
    except Exception as exc:
        raise ModelTrainingError(classifier_code, f"fold {fold} failed with params {params}", exc) from exc
    if predictions.shape[0] != test_idx.shape[0]:
        raise ModelTrainingError(
            classifier_code,
            f"fold {fold} returned {predictions.shape[0]} predictions for {test_idx.shape[0]} rows",
        )
    return fold, predictions


class CrossValidatedTrainer:
    """Train and evaluate a model family with spatially grouped folds.

    Parameters
    ----------
    model_factory : callable
        ``factory(params, random_state)`` returning a fresh unfitted model.
    metric : str or callable, default="kappa"
        Agreement score used for fold evaluation and model selection.
    n_jobs : int, default=1
        Number of folds trained concurrently (joblib).
    backend : str, optional
        joblib backend, e.g. ``"threading"``.
    reporter : Reporter, optional
        Receives progress and messages.

    """

    def __init__(
        self,
        model_factory: ModelFactory,
        metric: Union[str, MetricFunction] = "kappa",
        n_jobs: int = 1,
        backend: Optional[str] = None,
        reporter: Optional[Reporter] = None,
    ):
        self.model_factory = model_factory
        self.metric = get_metric(metric)
        self.metric_name = metric_name(metric)
        self.n_jobs = n_jobs
        self.backend = backend
        self.report = ensure_reporter(reporter)
        self.classifier_code = getattr(model_factory, "code", getattr(model_factory, "__name__", "custom"))

    def _check_folds(self, table: SampleTable, folds: FoldAssignment) -> List[tuple]:
        splits = list(folds.split(table.groups))
        for fold, (train_idx, test_idx) in enumerate(splits):
            if test_idx.size == 0 or train_idx.size == 0:
                raise ValidationError(
                    "cross-validation",
                    f"fold {fold} has {train_idx.size} training and {test_idx.size} held-out rows",
                )
            shared = np.intersect1d(np.unique(table.groups[train_idx]), np.unique(table.groups[test_idx]))
            if shared.size:
                raise LeakageError(fold, shared.tolist())
        return splits

    def cross_validate(
        self,
        table: SampleTable,
        folds: FoldAssignment,
        params: Optional[Mapping[str, Any]] = None,
        seed: Optional[int] = None,
    ) -> CrossValidationResult:
        """Run the k-fold loop for one configuration.

        Each fold trains a fresh model on the rows of every other fold and
        predicts its own rows. Results are merged by fold index, so the
        out-of-fold predictions follow the sample-table row order whatever the
        order in which parallel folds finish.
        """
        params = dict(params or {})
        seed = folds.seed if seed is None else seed
        splits = self._check_folds(table, folds)

        tasks = (
            delayed(_fit_predict_fold)(
                self.model_factory,
                table.X,
                table.y,
                train_idx,
                test_idx,
                params,
                seed,
                fold,
                self.classifier_code,
            )
            for fold, (train_idx, test_idx) in enumerate(splits)
        )
        outputs = Parallel(n_jobs=self.n_jobs, backend=self.backend)(tasks)
        by_fold = dict(outputs)

        labels = sorted_labels(table.y, *by_fold.values())
        oof = np.empty(table.n_rows, dtype=np.result_type(*[p.dtype for p in by_fold.values()]))
        seen = np.zeros(table.n_rows, dtype=np.int64)
        fold_results: List[FoldResult] = []
        for fold, (train_idx, test_idx) in enumerate(splits):
            predictions = by_fold[fold]
            oof[test_idx] = predictions
            seen[test_idx] += 1
            fold_results.append(
                FoldResult(
                    fold=fold,
                    n_train=int(train_idx.size),
                    n_test=int(test_idx.size),
                    n_test_groups=int(np.unique(table.groups[test_idx]).size),
                    score=float(self.metric(table.y[test_idx], predictions)),
                    confusion=confusion_matrix(table.y[test_idx], predictions, labels),
                    test_indices=test_idx,
                    predictions=predictions,
                )
            )
        if not np.all(seen == 1):
            raise ValidationError(
                "out-of-fold coverage",
                f"{int(np.sum(seen != 1))} row(s) were not predicted exactly once",
            )

        result = CrossValidationResult(
            params=params,
            folds=fold_results,
            oof_predictions=oof,
            labels=labels,
            metric=self.metric_name,
            oof_score=float(self.metric(table.y, oof)),
            statistics=ConfusionStatistics.from_labels(table.y, oof, labels),
        )
        self.report.info(
            f"{self.classifier_code} {params or '(defaults)'}: {self.metric_name} "
            f"{result.mean_score:.4f} +/- {result.std_score:.4f} over {len(fold_results)} folds"
        )
        return result

    def sweep(
        self,
        table: SampleTable,
        folds: FoldAssignment,
        candidates: Candidates = None,
        seed: Optional[int] = None,
        complexity: Optional[Callable[[Dict[str, Any]], float]] = None,
    ) -> SweepResult:
        """Cross-validate every candidate and select the best mean score.

        Ties are broken by lowest complexity; by default a candidate's
        complexity is its position in the sweep order.
        """
        configurations = expand_candidates(candidates)
        results: List[CandidateResult] = []
        for index, params in enumerate(configurations):
            cv = self.cross_validate(table, folds, params, seed)
            cost = float(complexity(params)) if complexity is not None else float(index)
            results.append(CandidateResult(index=index, params=params, complexity=cost, cv=cv))
            self.report.progress((index + 1) / len(configurations) * 100)

        def score_of(candidate: CandidateResult) -> float:
            score = candidate.mean_score
            return -np.inf if np.isnan(score) else score

        best_score = max(score_of(c) for c in results)
        tied = [c for c in results if np.isclose(score_of(c), best_score, rtol=0.0, atol=1e-12)]
        best = min(tied, key=lambda c: (c.complexity, c.index))
        if len(configurations) > 1:
            self.report.info(
                f"Best parameters: {best.params} ({self.metric_name} {best.mean_score:.4f}, "
                f"{len(configurations)} candidates)"
            )
        return SweepResult(candidates=results, best_index=best.index)

    def fit_final(self, table: SampleTable, params: Optional[Mapping[str, Any]] = None, seed: Optional[int] = None):
        """Fit one model on the whole table (no holdout)."""
        if seed is None:
            raise ConfigurationError("The final fit requires an explicit random seed", config_key="seed")
        params = dict(params or {})
        model = self.model_factory(params, seed)
        try:
            model.fit(table.X, table.y)
        except Exception as exc:
            raise ModelTrainingError(self.classifier_code, "final fit failed", exc) from exc
        return model

    def train(
        self,
        table: SampleTable,
        folds: FoldAssignment,
        candidates: Candidates = None,
        seed: Optional[int] = None,
        complexity: Optional[Callable[[Dict[str, Any]], float]] = None,
    ) -> TrainingResult:
        """Sweep the candidates, then fit the selected configuration on every row."""
        seed = folds.seed if seed is None else seed
        sweep = self.sweep(table, folds, candidates, seed, complexity)
        model = self.fit_final(table, sweep.best_params, seed)
        classifier = TrainedClassifier(
            model=model,
            feature_names=table.feature_names,
            classifier=str(self.classifier_code),
            params=sweep.best_params,
            classes=tuple(np.unique(table.y).tolist()),
            seed=seed,
            cv_score=sweep.best.mean_score,
        )
        self.report.info(f"Final model trained on {table.n_rows} rows")
        return TrainingResult(classifier=classifier, sweep=sweep, folds=folds)
