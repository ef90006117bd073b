"""
Exception taxonomy for the fraud factor analysis pipeline.

Record-level errors (``ParseError``, ``LabelFormatError``) are isolated
by the field deriver and counted; run-level errors abort the run.
"""

from __future__ import annotations


class FraudAnalysisError(Exception):
    """Base class for every error raised by the pipeline."""


class ParseError(FraudAnalysisError, ValueError):
    """Malformed timestamp or date field on a single record."""


class LabelFormatError(FraudAnalysisError, ValueError):
    """Raw label does not start with ``0`` or ``1``."""


class InsufficientDataError(FraudAnalysisError):
    """Requested balanced sample sizes exceed the available class counts."""

    def __init__(self, label: str, available: int, required: int) -> None:
        self.label = label
        self.available = available
        self.required = required
        super().__init__(
            f"Class {label!r} has {available:,} records but "
            f"{required:,} are required for the balanced split"
        )


class SplitOverlapError(FraudAnalysisError):
    """Train and evaluation identifier sets intersect."""


class SchemaMismatchError(FraudAnalysisError):
    """A feature matrix column sequence differs from its reference."""

    def __init__(
        self,
        missing: list[str],
        unexpected: list[str],
        order_differs: bool = False,
    ) -> None:
        self.missing = missing
        self.unexpected = unexpected
        self.order_differs = order_differs
        parts = []
        if missing:
            parts.append(f"missing {missing[:5]}")
        if unexpected:
            parts.append(f"unexpected {unexpected[:5]}")
        if order_differs and not parts:
            parts.append("column order differs")
        super().__init__("Feature schema mismatch: " + ", ".join(parts))


class DegenerateMatrixError(FraudAnalysisError):
    """Evaluation labels contain only one class, so a rate is undefined."""
