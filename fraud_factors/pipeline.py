"""
End-to-end fraud factor analysis.

Derives fields, draws one balanced split, then for each model family
encodes and reconciles its own train/eval matrices, fits the model and
evaluates it.  Run-level failures (too little data, schema mismatch)
abort the run; a degenerate evaluation set only skips that model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import pandas as pd

from fraud_factors.config import DEFAULT_THRESHOLDS, LABEL, AnalysisConfig
from fraud_factors.encoder import CategoricalEncoder
from fraud_factors.errors import DegenerateMatrixError
from fraud_factors.evaluator import EvaluationResult, evaluate
from fraud_factors.model import (
    BoostedTrainer,
    FittedModel,
    LassoTrainer,
    LinearRiskTrainer,
    ModelTrainer,
)
from fraud_factors.preprocessor import DerivationResult, FieldDeriver
from fraud_factors.sampler import BalancedSplit, balanced_split

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    """Everything one analysis run produced."""

    derivation: DerivationResult
    split: BalancedSplit
    results: dict[str, EvaluationResult] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    models: dict[str, FittedModel] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "records": {
                "input": self.derivation.n_input,
                "derived": len(self.derivation.frame),
                "dropped": dict(self.derivation.dropped_counts),
            },
            "split": {
                "seed": self.split.seed,
                "train_per_class": self.split.n_train,
                "eval_per_class": self.split.n_eval,
            },
            "results": {name: r.to_dict() for name, r in self.results.items()},
            "failures": dict(self.failures),
        }

    def summary(self) -> str:
        """Return a human-readable summary."""
        lines = [self.derivation.summary(), ""]
        for result in self.results.values():
            lines.append(result.summary())
            lines.append("")
        for name, reason in self.failures.items():
            lines.append(f"Model {name} not evaluated: {reason}")
        return "\n".join(lines).rstrip()


def build_trainer(name: str, config: AnalysisConfig) -> ModelTrainer:
    """Construct the trainer for a model family from the run settings."""
    seed = config.sampling.seed
    threshold = config.thresholds.get(name, DEFAULT_THRESHOLDS.get(name, 0.5))
    if name == "linear":
        return LinearRiskTrainer(
            threshold=threshold,
            significance=config.significance,
        )
    if name == "lasso":
        return LassoTrainer(
            threshold=threshold,
            cv_folds=config.cv_folds,
            n_jobs=config.n_jobs,
            seed=seed,
        )
    if name == "boosted":
        return BoostedTrainer(
            threshold=threshold,
            max_rounds=config.max_rounds,
            patience=config.patience,
            cv_folds=config.cv_folds,
            n_jobs=config.n_jobs,
            seed=seed,
        )
    raise ValueError(f"Unknown model {name!r}")


def run_analysis(
    raw: pd.DataFrame,
    config: Optional[AnalysisConfig] = None,
    trainers: Optional[dict[str, ModelTrainer]] = None,
) -> AnalysisReport:
    """Run the whole analysis on a raw transaction table.

    Args:
        raw: Raw transaction records.
        config: Run settings.  Defaults to ``AnalysisConfig()``.
        trainers: Trainer overrides keyed by model family name.

    Returns:
        ``AnalysisReport`` with one result per evaluated model.

    Raises:
        InsufficientDataError: Too few records per class for the split.
        SchemaMismatchError: Reconciliation produced a different schema.
    """
    config = config or AnalysisConfig()
    trainers = trainers or {}
    schema = config.schema

    deriver = FieldDeriver(
        schema=schema,
        reference_date=config.reference_date,
        on_error=config.on_error,
    )
    derivation = deriver.derive(raw)
    derived = derivation.frame

    split = balanced_split(
        derived,
        n_train=config.sampling.n_train,
        n_eval=config.sampling.n_eval,
        seed=config.sampling.seed,
        id_column=schema.record_id,
        label_column=LABEL,
    )
    train_df = split.train_frame(derived)
    eval_df = split.eval_frame(derived)

    report = AnalysisReport(derivation=derivation, split=split)
    for name in config.models:
        encoder = CategoricalEncoder(
            config.feature_set(name), id_column=schema.record_id, label_column=LABEL
        )
        train_matrix, eval_matrix = encoder.encode_pair(train_df, eval_df)
        trainer = trainers.get(name) or build_trainer(name, config)

        logger.info(
            "Fitting %s on %d records x %d features",
            name, len(train_matrix), train_matrix.shape[1],
        )
        model = trainer.fit(train_matrix)
        report.models[name] = model
        try:
            report.results[name] = evaluate(
                trainer, model, eval_matrix, top_n=config.top_n
            )
        except DegenerateMatrixError as exc:
            logger.error("Skipping evaluation of %s: %s", name, exc)
            report.failures[name] = str(exc)

    return report
