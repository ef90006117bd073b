"""
Feature matrix construction and schema reconciliation.

Numeric columns are optionally standardized and categorical columns are
expanded into one indicator column per observed level.  Because the
train and evaluation sets are sampled independently, their observed
levels differ; ``align_to_reference`` re-expresses an evaluation matrix
over exactly the training columns before any model sees it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from scipy import sparse
from sklearn.preprocessing import StandardScaler

from fraud_factors.config import LABEL, FeatureSet
from fraud_factors.errors import SchemaMismatchError

logger = logging.getLogger(__name__)

UNKNOWN_LEVEL = "unknown"


@dataclass(frozen=True)
class FeatureMatrix:
    """Encoded features keyed by record identifier, plus labels.

    Attributes:
        frame: Float features, one row per record, indexed by identifier.
        labels: Integer 0/1 labels on the same index.
        levels: Observed levels per categorical column at build time.
    """

    frame: pd.DataFrame
    labels: pd.Series
    levels: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def columns(self) -> list[str]:
        return list(self.frame.columns)

    @property
    def y(self) -> np.ndarray:
        return self.labels.to_numpy(dtype=int)

    @property
    def shape(self) -> tuple[int, int]:
        return self.frame.shape

    def to_csr(self) -> sparse.csr_matrix:
        """Features as a sparse CSR matrix (indicator columns are mostly zero)."""
        return sparse.csr_matrix(self.frame.to_numpy(dtype=np.float64))

    def __len__(self) -> int:
        return len(self.frame)


class CategoricalEncoder:
    """Builds feature matrices for one model family's feature set."""

    def __init__(
        self,
        feature_set: FeatureSet,
        id_column: str = "trans_num",
        label_column: str = LABEL,
    ) -> None:
        """
        Args:
            feature_set: Declared numeric and categorical columns.
            id_column: Record identifier used as the matrix index.
            label_column: Clean ``"0"``/``"1"`` label column.
        """
        self._features = feature_set
        self._id_column = id_column
        self._label_column = label_column

    @property
    def feature_set(self) -> FeatureSet:
        return self._features

    def build(
        self, df: pd.DataFrame, drop_reference: Optional[bool] = None
    ) -> FeatureMatrix:
        """Encode a derived table into a feature matrix.

        Numeric statistics (median fill, scaling) come from ``df`` alone.

        Args:
            df: Derived records.
            drop_reference: Override the feature set's reference-level
                policy.  ``False`` keeps one indicator per observed level.

        Returns:
            ``FeatureMatrix`` with numeric columns first, then indicator
            columns grouped by categorical column with sorted levels.

        Raises:
            KeyError: A declared column is missing from ``df``.
            ValueError: Two output columns share a name.
        """
        fs = self._features
        if drop_reference is None:
            drop_reference = fs.drop_reference
        declared = [self._id_column, self._label_column, *fs.numeric, *fs.categorical]
        missing = [c for c in declared if c not in df.columns]
        if missing:
            raise KeyError(f"Columns not found for encoding: {missing}")

        index = pd.Index(df[self._id_column].to_numpy(), name=self._id_column)
        blocks: list[pd.DataFrame] = []

        if fs.numeric:
            numeric = df[list(fs.numeric)].apply(pd.to_numeric, errors="coerce")
            numeric = numeric.fillna(numeric.median())
            values = numeric.to_numpy(dtype=np.float64)
            if fs.standardize:
                values = StandardScaler().fit_transform(values)
            blocks.append(pd.DataFrame(values, columns=list(fs.numeric), index=index))

        levels: dict[str, tuple[str, ...]] = {}
        for col in fs.categorical:
            values = df[col].fillna(UNKNOWN_LEVEL).astype(str)
            levels[col] = tuple(sorted(values.unique()))
            dummies = pd.get_dummies(
                values, prefix=col, prefix_sep="_",
                drop_first=drop_reference, dtype=np.float64,
            )
            dummies.index = index
            blocks.append(dummies)

        frame = pd.concat(blocks, axis=1) if blocks else pd.DataFrame(index=index)
        if frame.columns.duplicated().any():
            dupes = frame.columns[frame.columns.duplicated()].tolist()
            raise ValueError(f"Encoded column names collide: {dupes}")

        labels = pd.Series(
            df[self._label_column].astype(str).astype(int).to_numpy(),
            index=index,
            name=self._label_column,
        )
        logger.debug(
            "Encoded %d records into %d columns (%d numeric, %d indicator)",
            len(frame), frame.shape[1], len(fs.numeric),
            frame.shape[1] - len(fs.numeric),
        )
        return FeatureMatrix(frame=frame, labels=labels, levels=levels)

    def encode_pair(
        self, train_df: pd.DataFrame, eval_df: pd.DataFrame
    ) -> tuple[FeatureMatrix, FeatureMatrix]:
        """Build the training matrix and a reconciled evaluation matrix.

        The evaluation matrix is built with every level kept, so a level
        that serves as the training baseline is dropped by reconciliation
        instead of standing in for a different level.

        Returns:
            ``(train_matrix, eval_matrix)`` sharing one column sequence.
        """
        train = self.build(train_df)
        candidate = self.build(eval_df, drop_reference=False)
        aligned = align_to_reference(candidate, train.columns)
        verify_schema(aligned, train.columns)
        return train, aligned


def align_to_reference(
    matrix: FeatureMatrix, reference_columns: Sequence[str]
) -> FeatureMatrix:
    """Re-express ``matrix`` over exactly ``reference_columns``.

    Shared columns are copied unchanged, reference-only columns are
    zero-filled and columns absent from the reference are dropped.

    Raises:
        ValueError: ``reference_columns`` contains duplicates.
    """
    reference = list(reference_columns)
    if len(set(reference)) != len(reference):
        raise ValueError("Reference columns contain duplicates")

    present = set(matrix.frame.columns)
    wanted = set(reference)
    added = [c for c in reference if c not in present]
    dropped = [c for c in matrix.frame.columns if c not in wanted]
    if added or dropped:
        logger.debug(
            "Aligning matrix: %d zero-filled columns, %d dropped columns",
            len(added), len(dropped),
        )

    frame = matrix.frame.reindex(columns=reference, fill_value=0.0)
    return FeatureMatrix(frame=frame, labels=matrix.labels, levels=matrix.levels)


def verify_schema(matrix: FeatureMatrix, reference_columns: Sequence[str]) -> None:
    """Require the matrix column sequence to equal the reference exactly.

    Raises:
        SchemaMismatchError: On any difference in identity or order.
    """
    actual = matrix.columns
    expected = list(reference_columns)
    if actual == expected:
        return
    missing = [c for c in expected if c not in actual]
    unexpected = [c for c in actual if c not in expected]
    raise SchemaMismatchError(missing, unexpected, order_differs=True)
