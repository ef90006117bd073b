"""
Fraud Factor Analysis
=====================

Surfaces factors associated with fraudulent card transactions by
fitting and comparing three classifiers on balanced samples: a
logistic risk model, an L1-regularized logistic model and a
gradient-boosted tree ensemble.

Not intended for production fraud decisions.
"""

__version__ = "1.0.0"

from fraud_factors.config import AnalysisConfig, FeatureSet, RawSchema, SamplingConfig
from fraud_factors.data_loader import generate_synthetic_transactions, load_transactions
from fraud_factors.encoder import (
    CategoricalEncoder,
    FeatureMatrix,
    align_to_reference,
    verify_schema,
)
from fraud_factors.errors import (
    DegenerateMatrixError,
    FraudAnalysisError,
    InsufficientDataError,
    LabelFormatError,
    ParseError,
    SchemaMismatchError,
    SplitOverlapError,
)
from fraud_factors.evaluator import EvaluationResult, evaluate
from fraud_factors.model import (
    BoostedTrainer,
    FittedModel,
    LassoTrainer,
    LinearRiskTrainer,
    ModelTrainer,
)
from fraud_factors.pipeline import AnalysisReport, run_analysis
from fraud_factors.preprocessor import FieldDeriver
from fraud_factors.sampler import BalancedSplit, balanced_split

__all__ = [
    "AnalysisConfig",
    "AnalysisReport",
    "BalancedSplit",
    "BoostedTrainer",
    "CategoricalEncoder",
    "DegenerateMatrixError",
    "EvaluationResult",
    "FeatureMatrix",
    "FeatureSet",
    "FieldDeriver",
    "FittedModel",
    "FraudAnalysisError",
    "InsufficientDataError",
    "LabelFormatError",
    "LassoTrainer",
    "LinearRiskTrainer",
    "ModelTrainer",
    "ParseError",
    "RawSchema",
    "SamplingConfig",
    "SchemaMismatchError",
    "SplitOverlapError",
    "align_to_reference",
    "balanced_split",
    "evaluate",
    "generate_synthetic_transactions",
    "load_transactions",
    "run_analysis",
    "verify_schema",
]
