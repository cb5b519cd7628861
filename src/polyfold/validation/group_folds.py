"""Spatially grouped, class-stratified fold assignment.

Every group (a digitised polygon and all the pixels sampled from it) is
assigned to exactly one fold. Within each class the groups are dealt over the
folds so every fold gets ``floor(n/k)`` or ``ceil(n/k)`` of them, and folds are
kept balanced in row count. Assignment only depends on the groups, ``k``, the
seed and the policy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from polyfold.constants import DEFAULT_INSUFFICIENT_GROUPS_POLICY, DEFAULT_N_FOLDS, INSUFFICIENT_GROUPS_POLICIES
from polyfold.domain.exceptions import ConfigurationError, InsufficientGroupsError, ValidationError
from polyfold.domain.regions import GroupInfo, as_python_scalar, label_sort_key, summarize_groups
from polyfold.logging import Reporter, ensure_reporter


@dataclass
class FoldAssignment:
    """Mapping from group id to fold index.

    Attributes
    ----------
    folds : dict
        Group id to fold index in ``[0, n_folds)``.
    n_folds : int
        Number of folds actually used (may be lower than requested under the
        ``reduce`` policy).
    seed : int
        Seed the assignment was drawn with.
    policy : str
        Insufficient-groups policy that was applied.
    degraded_classes : dict
        Class label to group count for classes with fewer groups than folds;
        those classes do not appear in every fold.
    requested_n_folds : int
        Number of folds asked for by the caller.

    """

    folds: Dict[Hashable, int]
    n_folds: int
    seed: int
    policy: str = DEFAULT_INSUFFICIENT_GROUPS_POLICY
    degraded_classes: Dict[Any, int] = field(default_factory=dict)
    requested_n_folds: Optional[int] = None
    groups: List[GroupInfo] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if self.requested_n_folds is None:
            self.requested_n_folds = self.n_folds

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded_classes)

    def fold_of(self, group_id: Hashable) -> int:
        return self.folds[as_python_scalar(group_id)]

    def groups_in(self, fold: int) -> List[Hashable]:
        return [group_id for group_id, f in self.folds.items() if f == fold]

    def row_folds(self, groups: Sequence[Any]) -> np.ndarray:
        """Fold index of every row, given the per-row group ids."""
        groups = np.asarray(groups)
        unique, inverse = np.unique(groups, return_inverse=True)
        missing = [g for g in unique.tolist() if g not in self.folds]
        if missing:
            raise ValidationError("fold lookup", f"{len(missing)} group(s) have no fold, e.g. {missing[:5]}")
        per_unique = np.array([self.folds[g] for g in unique.tolist()], dtype=np.int64)
        return per_unique[np.asarray(inverse).reshape(-1)]

    def split(self, groups: Sequence[Any]) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        """Yield ``(train_idx, test_idx)`` for every fold, in fold order."""
        row_folds = self.row_folds(groups)
        for fold in range(self.n_folds):
            test = row_folds == fold
            yield np.flatnonzero(~test), np.flatnonzero(test)

    def summary(self) -> pd.DataFrame:
        """One line per fold: group count, row count and groups per class."""
        records = []
        for fold in range(self.n_folds):
            members = [g for g in self.groups if self.folds[g.group_id] == fold]
            record: Dict[str, Any] = {
                "fold": fold,
                "n_groups": len(members),
                "n_rows": sum(g.n_rows for g in members),
            }
            for label in sorted({g.label for g in self.groups}, key=label_sort_key):
                record[f"groups_class_{label}"] = sum(1 for g in members if g.label == label)
            records.append(record)
        return pd.DataFrame.from_records(records)


def _validate_groups(groups: Sequence[GroupInfo]) -> None:
    if not groups:
        raise ValidationError("fold assignment", "no groups to assign")
    seen = set()
    for info in groups:
        if info.group_id in seen:
            raise ValidationError(
                "fold assignment",
                f"group {info.group_id!r} is listed more than once",
                suggestions=["Aggregate rows per group before assigning folds"],
            )
        seen.add(info.group_id)
        if info.n_rows < 1:
            raise ValidationError("fold assignment", f"group {info.group_id!r} has no rows")


def _coerce_groups(groups: Union[Iterable[GroupInfo], Any]) -> List[GroupInfo]:
    if hasattr(groups, "group_summary"):
        return groups.group_summary()
    coerced = []
    for info in groups:
        if not isinstance(info, GroupInfo):
            group_id, label, n_rows = info
            info = GroupInfo(as_python_scalar(group_id), as_python_scalar(label), int(n_rows))
        coerced.append(info)
    return coerced


def assign_group_folds(
    groups: Union[Iterable[GroupInfo], Any],
    n_folds: int = DEFAULT_N_FOLDS,
    seed: Optional[int] = None,
    *,
    policy: str = DEFAULT_INSUFFICIENT_GROUPS_POLICY,
    reporter: Optional[Reporter] = None,
) -> FoldAssignment:
    """Assign every group to one of ``n_folds`` folds, stratified by class.

    Parameters
    ----------
    groups : iterable of GroupInfo or SampleTable
        Groups to distribute, as ``GroupInfo`` records, ``(group_id, label,
        n_rows)`` tuples or anything exposing ``group_summary()``.
    n_folds : int
        Number of folds, at least 2 and at most the number of groups.
    seed : int
        Seed for the within-class shuffle. Mandatory.
    policy : {"degrade", "reduce", "error"}
        What to do with classes owning fewer groups than folds:
        ``degrade`` warns and places their groups by row balance only,
        ``reduce`` lowers the fold count to the smallest class group count,
        ``error`` raises :class:`InsufficientGroupsError`.
    reporter : Reporter, optional
        Receives warnings.

    Returns
    -------
    FoldAssignment

    """
    report = ensure_reporter(reporter)
    if seed is None:
        raise ConfigurationError("Fold assignment requires an explicit random seed", config_key="seed")
    if policy not in INSUFFICIENT_GROUPS_POLICIES:
        raise ConfigurationError(
            f"Unknown insufficient-groups policy '{policy}'. Use one of {', '.join(INSUFFICIENT_GROUPS_POLICIES)}",
            config_key="insufficient_groups_policy",
        )
    if isinstance(n_folds, bool) or not isinstance(n_folds, (int, np.integer)) or n_folds < 2:
        raise ConfigurationError(f"Number of folds must be an integer >= 2, got {n_folds!r}", config_key="n_folds")
    n_folds = int(n_folds)

    infos = _coerce_groups(groups)
    _validate_groups(infos)
    if n_folds > len(infos):
        raise ConfigurationError(
            f"Cannot build {n_folds} folds from {len(infos)} groups",
            config_key="n_folds",
        )

    by_class: Dict[Any, List[GroupInfo]] = {}
    for info in infos:
        by_class.setdefault(info.label, []).append(info)
    labels = sorted(by_class, key=label_sort_key)

    requested = n_folds
    short = {label: len(by_class[label]) for label in labels if len(by_class[label]) < n_folds}
    if short:
        if policy == "error":
            raise InsufficientGroupsError(short, n_folds)
        if policy == "reduce":
            smallest = min(len(members) for members in by_class.values())
            if smallest < 2:
                raise ConfigurationError(
                    f"Cannot reduce the fold count below 2 (smallest class has {smallest} group)",
                    config_key="n_folds",
                )
            report.warning(f"Reducing folds from {n_folds} to {smallest} so every class appears in every fold")
            n_folds = smallest
            short = {}
        else:
            details = ", ".join(f"{label}: {count}" for label, count in short.items())
            report.warning(
                f"{len(short)} class(es) have fewer than {n_folds} groups ({details}); "
                "they will be missing from some folds"
            )

    rng = np.random.RandomState(seed)
    fold_rows = np.zeros(n_folds, dtype=np.int64)
    assignment: Dict[Hashable, int] = {}

    stratified = [label for label in labels if label not in short]
    degraded = [label for label in labels if label in short]
    for label in stratified + degraded:
        members = by_class[label]
        shuffled = [members[i] for i in rng.permutation(len(members))]
        ordered = sorted(shuffled, key=lambda g: -g.n_rows)
        class_count = np.zeros(n_folds, dtype=np.int64)
        for info in ordered:
            if label in short:
                key = lambda f: (fold_rows[f], class_count[f], f)  # noqa: E731
            else:
                key = lambda f: (class_count[f], fold_rows[f], f)  # noqa: E731
            fold = min(range(n_folds), key=key)
            assignment[info.group_id] = fold
            class_count[fold] += 1
            fold_rows[fold] += info.n_rows

    report.info(
        f"Assigned {len(infos)} groups of {len(labels)} classes to {n_folds} folds "
        f"(rows per fold: {', '.join(str(int(r)) for r in fold_rows)})"
    )
    return FoldAssignment(
        folds=assignment,
        n_folds=n_folds,
        seed=seed,
        policy=policy,
        degraded_classes=short,
        requested_n_folds=requested,
        groups=infos,
    )


class StratifiedGroupFolds:
    """scikit-learn compatible splitter built on :func:`assign_group_folds`.

    Usable wherever scikit-learn accepts a ``cv`` object, e.g.
    ``GridSearchCV(estimator, grid, cv=StratifiedGroupFolds(3, seed=0))`` with
    ``fit(X, y, groups=groups)``.
    """

    def __init__(
        self,
        n_splits: int = DEFAULT_N_FOLDS,
        seed: Optional[int] = None,
        policy: str = DEFAULT_INSUFFICIENT_GROUPS_POLICY,
        reporter: Optional[Reporter] = None,
    ):
        self.n_splits = n_splits
        self.seed = seed
        self.policy = policy
        self.reporter = reporter

    def get_n_splits(self, X=None, y=None, groups=None) -> int:
        if self.policy == "reduce" and y is not None and groups is not None:
            return self._assign(y, groups).n_folds
        return self.n_splits

    def split(self, X, y, groups) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        if groups is None:
            raise ValidationError("group split", "groups must be provided")
        yield from self._assign(y, groups).split(groups)

    def _assign(self, y, groups) -> FoldAssignment:
        return assign_group_folds(
            summarize_groups(y, groups),
            self.n_splits,
            self.seed,
            policy=self.policy,
            reporter=self.reporter,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_splits={self.n_splits}, seed={self.seed}, policy={self.policy!r})"
