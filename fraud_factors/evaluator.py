"""
Model evaluation on a reconciled evaluation matrix.

Turns predicted probabilities into classes with a per-model threshold,
builds the confusion matrix and derives accuracy, sensitivity,
specificity and balanced accuracy, alongside the model's ranked
influential features.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from sklearn.metrics import confusion_matrix

from fraud_factors.encoder import FeatureMatrix
from fraud_factors.errors import DegenerateMatrixError
from fraud_factors.model import FittedModel, ModelTrainer, classify


@dataclass(frozen=True)
class ConfusionCounts:
    """2x2 confusion counts with fraud (1) as the positive class."""

    tp: int
    fp: int
    tn: int
    fn: int

    @property
    def total(self) -> int:
        return self.tp + self.fp + self.tn + self.fn

    def as_matrix(self) -> np.ndarray:
        """Rows are predicted (0, 1), columns are actual (0, 1)."""
        return np.array([[self.tn, self.fn], [self.fp, self.tp]])


@dataclass(frozen=True)
class EvaluationResult:
    """Metrics for one model on one evaluation set."""

    model_name: str
    accuracy: float
    sensitivity: float
    specificity: float
    balanced_accuracy: float
    ranked_features: tuple[tuple[str, float], ...]
    confusion: ConfusionCounts
    threshold: float
    n_records: int
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "model_name": self.model_name,
            "accuracy": round(self.accuracy, 4),
            "sensitivity": round(self.sensitivity, 4),
            "specificity": round(self.specificity, 4),
            "balanced_accuracy": round(self.balanced_accuracy, 4),
            "ranked_features": [
                [name, round(score, 6)] for name, score in self.ranked_features
            ],
            "confusion": {
                "tp": self.confusion.tp,
                "fp": self.confusion.fp,
                "tn": self.confusion.tn,
                "fn": self.confusion.fn,
            },
            "threshold": self.threshold,
            "n_records": self.n_records,
            "warnings": list(self.warnings),
        }

    def summary(self) -> str:
        """Return a human-readable summary."""
        lines = [
            f"Model: {self.model_name}",
            "=" * 40,
            f"Threshold:         {self.threshold:.2f}",
            f"Records:           {self.n_records:,}",
            f"Accuracy:          {self.accuracy:.4f}",
            f"Sensitivity:       {self.sensitivity:.4f}",
            f"Specificity:       {self.specificity:.4f}",
            f"Balanced accuracy: {self.balanced_accuracy:.4f}",
            f"Confusion:         TP={self.confusion.tp} FP={self.confusion.fp} "
            f"TN={self.confusion.tn} FN={self.confusion.fn}",
        ]
        for message in self.warnings:
            lines.append(f"Warning:           {message}")
        if self.ranked_features:
            lines.append("")
            lines.append("Influential features:")
            for name, score in self.ranked_features:
                lines.append(f"  {name:<40s} {score:+.4f}")
        return "\n".join(lines)


def confusion_counts(y_true: np.ndarray, y_pred: np.ndarray) -> ConfusionCounts:
    """Count true/false positives and negatives."""
    (tn, fp), (fn, tp) = confusion_matrix(y_true, y_pred, labels=[0, 1])
    return ConfusionCounts(tp=int(tp), fp=int(fp), tn=int(tn), fn=int(fn))


def compute_rates(counts: ConfusionCounts) -> dict[str, float]:
    """Accuracy, sensitivity, specificity and balanced accuracy.

    Raises:
        DegenerateMatrixError: The actual labels lack a class, so
            sensitivity or specificity is undefined.
    """
    positives = counts.tp + counts.fn
    negatives = counts.tn + counts.fp
    if positives == 0 or negatives == 0:
        missing = "fraud" if positives == 0 else "legitimate"
        raise DegenerateMatrixError(
            f"Evaluation set has no {missing} records; rates are undefined"
        )
    sensitivity = counts.tp / positives
    specificity = counts.tn / negatives
    return {
        "accuracy": (counts.tp + counts.tn) / counts.total,
        "sensitivity": sensitivity,
        "specificity": specificity,
        "balanced_accuracy": (sensitivity + specificity) / 2,
    }


def evaluate(
    trainer: ModelTrainer,
    model: FittedModel,
    matrix: FeatureMatrix,
    threshold: Optional[float] = None,
    top_n: Optional[int] = 10,
) -> EvaluationResult:
    """Score a fitted model against a reconciled evaluation matrix.

    Args:
        trainer: Trainer that produced ``model``.
        model: Fitted model.
        matrix: Evaluation matrix with the model's training columns.
        threshold: Decision threshold.  Defaults to the model's own.
        top_n: Influential features to keep (ignored by the lasso
            trainer, which reports every nonzero coefficient).

    Raises:
        SchemaMismatchError: ``matrix`` columns differ from training.
        DegenerateMatrixError: ``matrix`` labels lack a class.
    """
    cutoff = model.threshold if threshold is None else threshold
    y_true = matrix.y
    absent = {0, 1} - set(np.unique(y_true).tolist())
    if absent:
        raise DegenerateMatrixError(
            f"Evaluation set for {model.name} lacks class {sorted(absent)}"
        )

    y_pred = classify(trainer.predict_proba(model, matrix), cutoff)
    counts = confusion_counts(y_true, y_pred)
    rates = compute_rates(counts)

    return EvaluationResult(
        model_name=model.name,
        ranked_features=tuple(trainer.influence_ranking(model, top_n)),
        confusion=counts,
        threshold=cutoff,
        n_records=len(matrix),
        warnings=model.warnings,
        **rates,
    )
