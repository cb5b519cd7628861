"""Tabular cross-validation report."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import pandas as pd

from polyfold.domain.exceptions import OutputError
from polyfold.sampling.sample_table import SampleTable
from polyfold.validation.cross_validation import CrossValidationResult, SweepResult


@dataclass
class CrossValidationReport:
    """Per-fold scores, aggregate scores, confusion counts and per-row predictions.

    Attributes
    ----------
    folds : pd.DataFrame
        One line per fold (rows, groups, score).
    aggregate : pd.DataFrame
        Mean and spread of fold scores plus pooled out-of-fold statistics.
    confusion : pd.DataFrame
        Pooled out-of-fold confusion counts; index is the true class, columns
        the predicted class.
    rows : pd.DataFrame
        One line per sample-table row with its group, fold, true and
        predicted label.
    sweep : pd.DataFrame, optional
        Mean score of every hyperparameter candidate.

    """

    folds: pd.DataFrame
    aggregate: pd.DataFrame
    confusion: pd.DataFrame
    rows: pd.DataFrame
    sweep: Optional[pd.DataFrame] = None
    params: Optional[Dict[str, Any]] = None

    @classmethod
    def from_result(
        cls,
        table: SampleTable,
        result: CrossValidationResult,
        sweep: Optional[SweepResult] = None,
    ) -> CrossValidationReport:
        folds = pd.DataFrame.from_records(
            [
                {
                    "fold": f.fold,
                    "n_train": f.n_train,
                    "n_test": f.n_test,
                    "n_test_groups": f.n_test_groups,
                    result.metric: f.score,
                }
                for f in result.folds
            ]
        )

        stats = result.statistics
        aggregate = pd.DataFrame.from_records(
            [
                {"statistic": f"{result.metric}_mean", "value": result.mean_score},
                {"statistic": f"{result.metric}_std", "value": result.std_score},
                {"statistic": f"{result.metric}_oof", "value": result.oof_score},
                {"statistic": "overall_accuracy", "value": stats.overall_accuracy},
                {"statistic": "kappa", "value": stats.kappa},
                {"statistic": "f1_mean", "value": stats.f1_mean},
            ]
        )

        confusion = pd.DataFrame(stats.matrix, index=stats.labels, columns=stats.labels)
        confusion.index.name = "true"
        confusion.columns.name = "predicted"

        rows = pd.DataFrame(
            {
                "row": table.coords[:, 0],
                "col": table.coords[:, 1],
                "group": table.groups,
                "fold": result.fold_of_row,
                "label": table.y,
                "prediction": result.oof_predictions,
            }
        )
        rows["correct"] = rows["label"] == rows["prediction"]

        sweep_frame = None
        if sweep is not None:
            sweep_frame = pd.DataFrame.from_records(
                [
                    {
                        "candidate": c.index,
                        "params": json.dumps(c.params, default=_json_default, sort_keys=True),
                        "complexity": c.complexity,
                        f"{result.metric}_mean": c.cv.mean_score,
                        f"{result.metric}_std": c.cv.std_score,
                        "selected": c.index == sweep.best_index,
                    }
                    for c in sweep.candidates
                ]
            )

        return cls(
            folds=folds,
            aggregate=aggregate,
            confusion=confusion,
            rows=rows,
            sweep=sweep_frame,
            params=dict(result.params),
        )

    def per_class(self) -> pd.DataFrame:
        """Confusion counts reduced to correct/total per true class."""
        matrix = self.confusion.to_numpy()
        support = matrix.sum(axis=1)
        correct = np.diag(matrix)
        return pd.DataFrame(
            {
                "support": support,
                "correct": correct,
                "recall": np.divide(correct, support, out=np.zeros(len(support)), where=support != 0),
            },
            index=self.confusion.index,
        )

    def write(self, directory: Union[str, Path]) -> Path:
        """Write every table as CSV plus a ``summary.json`` into ``directory``."""
        out_dir = Path(directory)
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            self.folds.to_csv(out_dir / "folds.csv", index=False)
            self.aggregate.to_csv(out_dir / "aggregate.csv", index=False)
            self.confusion.to_csv(out_dir / "confusion_matrix.csv")
            self.rows.to_csv(out_dir / "oof_predictions.csv", index=False)
            if self.sweep is not None:
                self.sweep.to_csv(out_dir / "sweep.csv", index=False)
            summary = {
                "params": self.params,
                "aggregate": dict(zip(self.aggregate["statistic"], self.aggregate["value"].astype(float))),
            }
            (out_dir / "summary.json").write_text(
                json.dumps(summary, indent=2, default=_json_default), encoding="utf-8"
            )
        except OSError as exc:
            raise OutputError(str(out_dir), str(exc)) from exc
        return out_dir


def _json_default(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (tuple, set)):
        return list(value)
    return str(value)
