"""Custom exception hierarchy for polyfold.

Every error raised on purpose by the library derives from
:class:`PolyfoldException`, so callers can catch the whole family at once
while still getting structured context (offending key, path, class counts).

Example:
    >>> try:
    ...     assign_group_folds(groups, n_folds=5, seed=0, policy="error")
    ... except InsufficientGroupsError as e:
    ...     print(e.class_counts)

"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence


class PolyfoldException(Exception):  # noqa: N818
    """Base exception for all polyfold-specific errors."""


class ConfigurationError(PolyfoldException):
    """Invalid configuration or parameters.

    Parameters
    ----------
    message : str
        Description of the configuration error
    config_key : str, optional
        The specific configuration key that caused the error

    """

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        super().__init__(message)


class DimensionMismatchError(ConfigurationError):
    """Channel layout of a grid does not match the one a model was trained on.

    Parameters
    ----------
    expected : int or sequence of str
        Channel count (or names) the model was trained with
    actual : int or sequence of str
        Channel count (or names) offered by the grid

    """

    def __init__(self, expected: Any, actual: Any):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Grid channels do not match the trained model: expected {expected}, got {actual}",
            config_key="band_count",
        )


class ValidationError(PolyfoldException):
    """Input data validation failed.

    Parameters
    ----------
    validation_type : str
        Type of validation that failed (e.g., "region labels", "sample table")
    reason : str
        Description of the validation failure
    suggestions : list, optional
        List of suggested fixes

    """

    def __init__(self, validation_type: str, reason: str, suggestions: Optional[Sequence[str]] = None):
        self.validation_type = validation_type
        self.reason = reason
        self.suggestions = list(suggestions) if suggestions else None

        message = f"{validation_type} failed: {reason}"

        if self.suggestions:
            message += "\nSuggestions:"
            for suggestion in self.suggestions:
                message += f"\n  - {suggestion}"

        super().__init__(message)


class InsufficientGroupsError(PolyfoldException):
    """Some classes own fewer groups than the requested number of folds.

    Parameters
    ----------
    class_counts : mapping
        Group count of every offending class
    n_folds : int
        Requested number of folds

    """

    def __init__(self, class_counts: Mapping[Any, int], n_folds: int):
        self.class_counts = dict(class_counts)
        self.n_folds = n_folds
        details = ", ".join(f"class {label}: {count}" for label, count in sorted(self.class_counts.items(), key=str))
        super().__init__(
            f"{len(self.class_counts)} class(es) have fewer than {n_folds} groups ({details}). "
            "Digitize more regions, lower the fold count or use the 'degrade' policy."
        )


class LeakageError(PolyfoldException):
    """A group was seen both for training and for evaluation in the same fold."""

    def __init__(self, fold: int, group_ids: Sequence[Any]):
        self.fold = fold
        self.group_ids = list(group_ids)
        shown = ", ".join(str(g) for g in self.group_ids[:10])
        super().__init__(f"Fold {fold} trains and evaluates on the same group(s): {shown}")


class DataLoadError(PolyfoldException):
    """Failed to load raster, vector or model data.

    Parameters
    ----------
    path : str
        Path to the file that failed to load
    reason : str
        Description of why loading failed

    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load {path}: {reason}")


class OutputError(PolyfoldException):
    """Failed to write an output file."""

    def __init__(self, output_path: str, reason: str):
        self.output_path = output_path
        self.reason = reason
        super().__init__(f"Failed to write output to {output_path}: {reason}")


class ModelTrainingError(PolyfoldException):
    """Model training failed.

    Parameters
    ----------
    classifier_code : str
        Classifier that failed to train (e.g., "RF", "SVM")
    reason : str
        Description of the failure
    original_exception : Exception, optional
        The original exception that caused the failure

    """

    def __init__(self, classifier_code: str, reason: str, original_exception: Optional[Exception] = None):
        self.classifier_code = classifier_code
        self.reason = reason
        self.original_exception = original_exception

        message = f"Training failed for {classifier_code}: {reason}"

        if original_exception:
            message += f"\nOriginal error: {type(original_exception).__name__}: {original_exception!s}"

        super().__init__(message)
