"""Training and prediction settings.

Settings are plain dataclasses built from mappings, JSON strings or
``@path/to/file.json`` references (the form accepted by the CLI ``--config``
option). Unknown keys and out-of-range values raise
:class:`~polyfold.domain.exceptions.ConfigurationError`.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from polyfold.constants import (
    DEFAULT_CLASSIFIER,
    DEFAULT_INSUFFICIENT_GROUPS_POLICY,
    DEFAULT_METRIC,
    DEFAULT_N_FOLDS,
    INSUFFICIENT_GROUPS_POLICIES,
    MEMORY_LIMIT_MB,
    NODATA_VALUE,
    RANDOM_STATE,
)
from polyfold.domain.exceptions import ConfigurationError
from polyfold.factories.classifier_factory import ClassifierFactory
from polyfold.validation.metrics import METRICS


def load_mapping(value: Union[str, Path, Mapping[str, Any], None]) -> Dict[str, Any]:
    """Parse a JSON string, an ``@file`` reference, a path or a mapping."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, Path):
        trimmed = f"@{value}"
    else:
        trimmed = value.strip()
    if not trimmed:
        return {}
    if trimmed.startswith("@"):
        file_path = Path(trimmed[1:])
        if not file_path.exists():
            raise ConfigurationError(f"Config file not found: {file_path}", config_key="config")
        trimmed = file_path.read_text(encoding="utf-8")
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON configuration: {exc}", config_key="config") from exc
    if not isinstance(parsed, dict):
        raise ConfigurationError("Configuration must be a JSON object", config_key="config")
    return parsed


def _from_mapping(cls, values: Mapping[str, Any]):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown {cls.__name__} key(s): {', '.join(unknown)}. Known keys: {', '.join(sorted(known))}",
            config_key=unknown[0],
        )
    return cls(**dict(values))


@dataclass
class TrainingConfig:
    """Settings of a cross-validated training run.

    ``param_grid`` of None uses the classifier's default grid; an empty
    mapping trains the classifier defaults only.
    """

    classifier: str = DEFAULT_CLASSIFIER
    n_folds: int = DEFAULT_N_FOLDS
    seed: Optional[int] = RANDOM_STATE
    param_grid: Optional[Dict[str, List[Any]]] = None
    metric: str = DEFAULT_METRIC
    insufficient_groups_policy: str = DEFAULT_INSUFFICIENT_GROUPS_POLICY
    subsample: Optional[float] = None
    n_jobs: int = 1
    class_field: str = "class"
    group_field: Optional[str] = None
    nodata: Optional[float] = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.seed is None:
            raise ConfigurationError("A random seed is required for reproducible training", config_key="seed")
        if isinstance(self.n_folds, bool) or not isinstance(self.n_folds, int) or self.n_folds < 2:
            raise ConfigurationError(f"n_folds must be an integer >= 2, got {self.n_folds!r}", config_key="n_folds")
        self.classifier = str(self.classifier).upper()
        if self.classifier not in ClassifierFactory.get_available_classifiers():
            raise ConfigurationError(
                f"Unknown classifier '{self.classifier}'. "
                f"Available: {', '.join(ClassifierFactory.get_available_classifiers())}",
                config_key="classifier",
            )
        if self.metric not in METRICS:
            raise ConfigurationError(
                f"Unknown metric '{self.metric}'. Available: {', '.join(sorted(METRICS))}", config_key="metric"
            )
        if self.insufficient_groups_policy not in INSUFFICIENT_GROUPS_POLICIES:
            raise ConfigurationError(
                f"insufficient_groups_policy must be one of {', '.join(INSUFFICIENT_GROUPS_POLICIES)}",
                config_key="insufficient_groups_policy",
            )
        if self.subsample is not None and not 0.0 < float(self.subsample) <= 1.0:
            raise ConfigurationError(f"subsample must be in (0, 1], got {self.subsample}", config_key="subsample")
        if self.param_grid is not None and not isinstance(self.param_grid, dict):
            raise ConfigurationError("param_grid must be a mapping of lists", config_key="param_grid")
        if self.param_grid:
            for key, values in self.param_grid.items():
                if not isinstance(values, list) or not values:
                    raise ConfigurationError(
                        f"param_grid['{key}'] must be a non-empty list", config_key="param_grid"
                    )

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> TrainingConfig:
        return _from_mapping(cls, values)

    @classmethod
    def load(cls, value: Union[str, Path, Mapping[str, Any], None], **overrides: Any) -> TrainingConfig:
        """Build from a JSON/``@file`` source, then apply non-None ``overrides``."""
        values = load_mapping(value)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_mapping(values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PredictionConfig:
    """Settings of a grid prediction run."""

    tile_rows: Optional[int] = None
    tile_cols: Optional[int] = None
    nodata: Optional[float] = None
    missing: float = NODATA_VALUE
    n_jobs: int = 1
    memory_limit_mb: int = MEMORY_LIMIT_MB

    def __post_init__(self) -> None:
        for name in ("tile_rows", "tile_cols"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or value < 1):
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}", config_key=name)
        if (self.tile_rows is None) != (self.tile_cols is None):
            raise ConfigurationError("tile_rows and tile_cols must be given together", config_key="tile_rows")
        if self.memory_limit_mb < 1:
            raise ConfigurationError("memory_limit_mb must be positive", config_key="memory_limit_mb")

    @property
    def tile_shape(self):
        if self.tile_rows is None:
            return None
        return self.tile_rows, self.tile_cols

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> PredictionConfig:
        return _from_mapping(cls, values)

    @classmethod
    def load(cls, value: Union[str, Path, Mapping[str, Any], None], **overrides: Any) -> PredictionConfig:
        values = load_mapping(value)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_mapping(values)
