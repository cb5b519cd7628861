"""Command-line interface for polyfold."""

from __future__ import annotations

import argparse
import sys
from argparse import ArgumentParser
from typing import Optional

from polyfold.application.use_cases.assign_folds import run_fold_assignment
from polyfold.application.use_cases.classify_raster import run_classification
from polyfold.application.use_cases.train_model import run_training
from polyfold.config import PredictionConfig, TrainingConfig
from polyfold.constants import INSUFFICIENT_GROUPS_POLICIES, NODATA_VALUE
from polyfold.factories.classifier_factory import ClassifierFactory
from polyfold.logging import show_error_dialog


class _CLIProgress:
    """Simple stdout progress helper for CLI users."""

    def __init__(self) -> None:
        self._last_text: str = ""
        self._last_percent: int = -1

    def setProgress(self, value: float | int) -> None:
        percent = max(0, min(100, int(float(value))))
        if percent != self._last_percent:
            self._last_percent = percent
            print(f"[polyfold] progress {percent}%", flush=True)

    def setProgressText(self, text: str) -> None:
        message = text.strip()
        if message and message != self._last_text:
            self._last_text = message
            print(f"[polyfold] {message}", flush=True)


def _training_config(args: argparse.Namespace) -> TrainingConfig:
    return TrainingConfig.load(
        args.config,
        classifier=getattr(args, "classifier", None),
        n_folds=args.folds,
        seed=args.seed,
        insufficient_groups_policy=args.policy,
        class_field=args.class_field,
        group_field=args.group_field,
        subsample=getattr(args, "subsample", None),
        n_jobs=getattr(args, "n_jobs", None),
    )


def _run_train(args: argparse.Namespace) -> int:
    progress = _CLIProgress()
    try:
        config = _training_config(args)
        outcome = run_training(
            raster_path=args.raster,
            vector_path=args.vector,
            model_path=args.model,
            config=config,
            report_dir=args.report_dir,
            feedback=progress,
        )
        cv = outcome.result.cross_validation
        print(f"Selected parameters: {outcome.classifier.params}")
        print(f"Cross-validated {cv.metric}: {cv.mean_score:.4f} +/- {cv.std_score:.4f}")
        print(f"Model trained and saved to {args.model}")
        return 0
    except Exception as exc:  # pragma: no cover - CLI error
        show_error_dialog("polyfold CLI Error", exc)
        return 1


def _run_classify(args: argparse.Namespace) -> int:
    progress = _CLIProgress()
    try:
        tile_rows = tile_cols = None
        if args.tile_size is not None:
            tile_rows = tile_cols = args.tile_size
        config = PredictionConfig.load(
            args.config,
            nodata=args.nodata,
            missing=args.missing,
            tile_rows=tile_rows,
            tile_cols=tile_cols,
            n_jobs=args.n_jobs,
        )
        result = run_classification(
            raster_path=args.raster,
            model_path=args.model,
            output_path=args.output,
            confidence_path=args.confidence,
            mask_path=args.mask,
            config=config,
            feedback=progress,
        )
        print(f"Classification output written to {args.output} ({result.summary})")
        return 0
    except Exception as exc:  # pragma: no cover - CLI error
        show_error_dialog("polyfold CLI Error", exc)
        return 1


def _run_folds(args: argparse.Namespace) -> int:
    progress = _CLIProgress()
    try:
        config = _training_config(args)
        folds = run_fold_assignment(
            raster_path=args.raster,
            vector_path=args.vector,
            config=config,
            output_path=args.output,
            feedback=progress,
        )
        print(folds.summary().to_string(index=False))
        if folds.is_degraded:
            print(f"Classes missing from some folds: {folds.degraded_classes}")
        return 0
    except Exception as exc:  # pragma: no cover - CLI error
        show_error_dialog("polyfold CLI Error", exc)
        return 1


def _add_fold_arguments(parser: ArgumentParser) -> None:
    parser.add_argument("--raster", required=True, help="Path to the raster defining the sampling grid")
    parser.add_argument("--vector", required=True, help="Path to training polygons")
    parser.add_argument("--class-field", default=None, help="Class field name (default: class)")
    parser.add_argument("--group-field", default=None, help="Group id field (default: one group per polygon)")
    parser.add_argument("--folds", type=int, default=None, help="Number of folds")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument(
        "--policy",
        choices=INSUFFICIENT_GROUPS_POLICIES,
        default=None,
        help="What to do with classes having fewer groups than folds",
    )
    parser.add_argument("--config", help="JSON string or @path to JSON file with training settings")


def _configure_cli() -> ArgumentParser:
    parser = argparse.ArgumentParser(prog="polyfold", description="Spatially grouped cross-validation for rasters")
    subparsers = parser.add_subparsers(dest="command")

    train_parser = subparsers.add_parser("train", help="Train and cross-validate a model")
    _add_fold_arguments(train_parser)
    train_parser.add_argument("--model", required=True, help="Path to save the trained model")
    train_parser.add_argument(
        "--classifier",
        type=str.upper,
        choices=ClassifierFactory.get_available_classifiers(),
        default=None,
        help="Classifier code",
    )
    train_parser.add_argument("--subsample", type=float, default=None, help="Fraction of rows kept per group")
    train_parser.add_argument("--n-jobs", type=int, default=None, help="Folds trained in parallel")
    train_parser.add_argument("--report-dir", help="Directory for the cross-validation report")
    train_parser.set_defaults(func=_run_train)

    classify_parser = subparsers.add_parser("classify", help="Classify a raster with a trained model")
    classify_parser.add_argument("--raster", required=True, help="Path to input raster")
    classify_parser.add_argument("--model", required=True, help="Path to trained model")
    classify_parser.add_argument("--output", required=True, help="Path to output raster")
    classify_parser.add_argument("--mask", help="Optional mask raster (0 = do not classify)")
    classify_parser.add_argument("--confidence", help="Optional confidence raster output")
    classify_parser.add_argument("--nodata", type=float, default=None, help="Input NODATA value")
    classify_parser.add_argument(
        "--missing",
        type=int,
        default=None,
        help=f"Output value of unclassified cells (default: {NODATA_VALUE})",
    )
    classify_parser.add_argument("--tile-size", type=int, default=None, help="Tile edge in cells")
    classify_parser.add_argument("--n-jobs", type=int, default=None, help="Tiles predicted in parallel")
    classify_parser.add_argument("--config", help="JSON string or @path to JSON file with prediction settings")
    classify_parser.set_defaults(func=_run_classify)

    folds_parser = subparsers.add_parser("folds", help="Preview the fold of every polygon")
    _add_fold_arguments(folds_parser)
    folds_parser.add_argument("--output", help="Optional CSV of group/fold membership")
    folds_parser.set_defaults(func=_run_folds)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _configure_cli()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
