"""
Balanced train/evaluation sampling.

Draws equal numbers of fraudulent and legitimate records for training,
then draws the evaluation set from what is left, so the two sets never
share a record.  A single seeded generator makes the split reproducible
for a given input ordering.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from fraud_factors.config import LABEL
from fraud_factors.errors import InsufficientDataError, SplitOverlapError

logger = logging.getLogger(__name__)

POSITIVE = "1"
NEGATIVE = "0"


@dataclass(frozen=True)
class BalancedSplit:
    """Disjoint, class-balanced train and evaluation identifiers."""

    train_ids: tuple
    eval_ids: tuple
    n_train: int
    n_eval: int
    seed: int
    id_column: str

    def train_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """Rows of ``df`` in the training set, in draw order."""
        return self._select(df, self.train_ids)

    def eval_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """Rows of ``df`` in the evaluation set, in draw order."""
        return self._select(df, self.eval_ids)

    def _select(self, df: pd.DataFrame, ids: tuple) -> pd.DataFrame:
        indexed = df.set_index(self.id_column, drop=False)
        return indexed.loc[list(ids)].reset_index(drop=True)


def balanced_split(
    df: pd.DataFrame,
    n_train: int,
    n_eval: int,
    seed: int,
    id_column: str = "trans_num",
    label_column: str = LABEL,
) -> BalancedSplit:
    """Partition derived records into balanced train and evaluation sets.

    Args:
        df: Derived records with a clean ``"0"``/``"1"`` label column.
        n_train: Records per class in the training set.
        n_eval: Records per class in the evaluation set.
        seed: Seed for the sampling generator.
        id_column: Unique record identifier column.
        label_column: Clean label column.

    Returns:
        ``BalancedSplit`` with ``n_train`` positives and negatives in
        train and ``n_eval`` of each in eval.

    Raises:
        ValueError: Non-positive sizes or duplicate identifiers.
        InsufficientDataError: A class has fewer than
            ``n_train + n_eval`` records.
        SplitOverlapError: Train and eval share an identifier.
    """
    if n_train <= 0 or n_eval <= 0:
        raise ValueError(
            f"Sample sizes must be positive, got n_train={n_train}, n_eval={n_eval}"
        )
    ids = df[id_column]
    if ids.duplicated().any():
        dupes = ids[ids.duplicated()].unique()[:5].tolist()
        raise ValueError(f"Record identifiers are not unique: {dupes}")

    labels = df[label_column].astype(str)
    pools = {
        POSITIVE: ids[labels == POSITIVE].to_numpy(),
        NEGATIVE: ids[labels == NEGATIVE].to_numpy(),
    }
    required = n_train + n_eval
    for label, pool in pools.items():
        if len(pool) < required:
            raise InsufficientDataError(label, len(pool), required)

    rng = np.random.default_rng(seed)

    # Train draws come first so eval sizes never change the training set
    train_draws = {
        label: rng.choice(pool, size=n_train, replace=False)
        for label, pool in pools.items()
    }
    eval_draws = {}
    for label, pool in pools.items():
        remaining = pool[~np.isin(pool, train_draws[label])]
        eval_draws[label] = rng.choice(remaining, size=n_eval, replace=False)

    train_ids = tuple(
        np.concatenate([train_draws[POSITIVE], train_draws[NEGATIVE]]).tolist()
    )
    eval_ids = tuple(
        np.concatenate([eval_draws[POSITIVE], eval_draws[NEGATIVE]]).tolist()
    )

    overlap = set(train_ids) & set(eval_ids)
    if overlap:
        raise SplitOverlapError(
            f"{len(overlap)} records appear in both train and eval sets"
        )

    logger.info(
        "Balanced split (seed=%d): train %d + %d, eval %d + %d",
        seed, n_train, n_train, n_eval, n_eval,
    )
    return BalancedSplit(
        train_ids=train_ids,
        eval_ids=eval_ids,
        n_train=n_train,
        n_eval=n_eval,
        seed=seed,
        id_column=id_column,
    )
