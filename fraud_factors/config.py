"""
Configuration for the fraud factor analysis pipeline.

Column names, default feature sets per model family, sampling sizes and
model thresholds.  Everything is a frozen dataclass so a run's settings
can be passed around and logged without being mutated along the way.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date
from types import MappingProxyType
from typing import Mapping, Optional


@dataclass(frozen=True)
class RawSchema:
    """Column names of the raw transaction table."""

    record_id: str = "trans_num"
    timestamp: str = "trans_date_trans_time"
    amount: str = "amt"
    category: str = "category"
    merchant: str = "merchant"
    job: str = "job"
    city: str = "city"
    state: str = "state"
    birth_date: str = "dob"
    label: str = "is_fraud"
    latitude: str = "lat"
    longitude: str = "long"

    def required_columns(self) -> list[str]:
        """Columns every raw table must provide."""
        return [
            self.record_id,
            self.timestamp,
            self.amount,
            self.category,
            self.merchant,
            self.job,
            self.city,
            self.state,
            self.birth_date,
            self.label,
            self.latitude,
            self.longitude,
        ]

    def text_columns(self) -> list[str]:
        """Columns that must be read as raw strings (dirty fields)."""
        return [self.record_id, self.timestamp, self.birth_date, self.label]

    def column_map(self) -> dict[str, str]:
        """Default column name to the name configured here, for every field."""
        default = RawSchema()
        return {getattr(default, f.name): getattr(self, f.name) for f in fields(self)}


# Derived column names added by the field deriver
TRANS_DATE = "trans_date"
HOUR = "hour"
MINUTE = "minute"
TIME_OF_DAY = "time_of_day"
DAY_OF_WEEK = "day_of_week"
AGE = "age"
LABEL = "label"

DERIVED_COLUMNS = [TRANS_DATE, HOUR, MINUTE, TIME_OF_DAY, DAY_OF_WEEK, AGE, LABEL]


@dataclass(frozen=True)
class FeatureSet:
    """Declared feature columns for one model family.

    Attributes:
        numeric: Numeric columns, kept in this order.
        categorical: Categorical columns expanded into indicators.
        standardize: Scale numeric columns to zero mean / unit variance.
        drop_reference: Drop the first level of each categorical as the
            baseline.  Required by the linear variants; the tree ensemble
            keeps every level.
    """

    numeric: tuple[str, ...] = ()
    categorical: tuple[str, ...] = ()
    standardize: bool = True
    drop_reference: bool = True

    def renamed(self, mapping: Mapping[str, str]) -> FeatureSet:
        """Copy with every column looked up in ``mapping`` (unmapped names kept)."""
        return replace(
            self,
            numeric=tuple(mapping.get(c, c) for c in self.numeric),
            categorical=tuple(mapping.get(c, c) for c in self.categorical),
        )


# Default feature sets name raw columns by their ``RawSchema`` defaults;
# ``AnalysisConfig.feature_set`` maps them onto the configured schema.
_RAW = RawSchema()

LINEAR_FEATURES = FeatureSet(
    numeric=(_RAW.amount, AGE, TIME_OF_DAY),
    categorical=(_RAW.category, DAY_OF_WEEK),
)

LASSO_FEATURES = FeatureSet(
    numeric=(_RAW.amount, AGE, TIME_OF_DAY, _RAW.latitude, _RAW.longitude),
    categorical=(_RAW.category, DAY_OF_WEEK, _RAW.state, _RAW.job),
)

BOOSTED_FEATURES = FeatureSet(
    numeric=(_RAW.amount, AGE, TIME_OF_DAY, HOUR, _RAW.latitude, _RAW.longitude),
    categorical=(
        _RAW.category, DAY_OF_WEEK, _RAW.state, _RAW.job, _RAW.merchant, _RAW.city,
    ),
    standardize=False,
    drop_reference=False,
)

MODEL_NAMES = ("linear", "lasso", "boosted")

# Calibrated per variant on balanced evaluation samples
DEFAULT_THRESHOLDS: Mapping[str, float] = MappingProxyType({
    "linear": 0.5,
    "lasso": 0.48,
    "boosted": 0.5,
})


@dataclass(frozen=True)
class SamplingConfig:
    """Balanced sample sizes (per class) and the sampling seed."""

    n_train: int = 1000
    n_eval: int = 500
    seed: int = 42


@dataclass(frozen=True)
class AnalysisConfig:
    """Settings for one end-to-end analysis run.

    Attributes:
        schema: Raw column names.
        sampling: Balanced split sizes and seed.
        reference_date: Date ages are computed at.  ``None`` means today.
        on_error: ``"drop"`` to skip and count malformed records,
            ``"raise"`` to abort on the first one.
        models: Model families to train, from ``MODEL_NAMES``.
        cv_folds: Folds for the lasso penalty search and the ensemble
            round search.
        n_jobs: Parallel workers for cross-validation.
        top_n: Influential features to report per model.
        thresholds: Decision threshold per model family.
        significance: p-value cutoff for the linear risk model ranking.
        max_rounds: Boosting round budget.
        patience: Early-stopping window for the ensemble.
    """

    schema: RawSchema = field(default_factory=RawSchema)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    reference_date: Optional[date] = None
    on_error: str = "drop"
    models: tuple[str, ...] = MODEL_NAMES
    cv_folds: int = 5
    n_jobs: int = 1
    top_n: int = 10
    thresholds: Mapping[str, float] = field(
        default_factory=lambda: DEFAULT_THRESHOLDS
    )
    significance: float = 0.001
    max_rounds: int = 1000
    patience: int = 50
    linear_features: FeatureSet = LINEAR_FEATURES
    lasso_features: FeatureSet = LASSO_FEATURES
    boosted_features: FeatureSet = BOOSTED_FEATURES

    def __post_init__(self) -> None:
        # Read-only view over a private copy of the caller's mapping
        object.__setattr__(self, "thresholds", MappingProxyType(dict(self.thresholds)))

    def feature_set(self, model_name: str) -> FeatureSet:
        """Feature set for a model family, with raw columns named per ``schema``."""
        try:
            features = {
                "linear": self.linear_features,
                "lasso": self.lasso_features,
                "boosted": self.boosted_features,
            }[model_name]
        except KeyError:
            raise ValueError(
                f"Unknown model {model_name!r}; expected one of {MODEL_NAMES}"
            ) from None
        return features.renamed(self.schema.column_map())
