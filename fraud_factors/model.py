"""
Model trainers for fraud factor analysis.

Three interchangeable trainers share one capability interface:

* ``LinearRiskTrainer``: unpenalized logistic regression with Wald
  standard errors and p-values per feature.
* ``LassoTrainer``: L1-penalized logistic regression whose penalty is
  chosen by k-fold cross-validation with the one-standard-error rule.
* ``BoostedTrainer``: gradient-boosted trees (XGBoost) whose round count
  is chosen by cross-validation with early stopping.

A fit that does not converge is still returned, with the optimizer's
warning recorded on the ``FittedModel``.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence

import numpy as np
import pandas as pd
import xgboost as xgb
from joblib import Parallel, delayed
from scipy import stats
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import log_loss
from sklearn.model_selection import StratifiedKFold

from fraud_factors.encoder import FeatureMatrix, verify_schema

logger = logging.getLogger(__name__)

INTERCEPT = "(intercept)"
CV_METRICS = ("deviance", "misclassification")
BOOSTING_METRICS = ("auc", "error")
IMPORTANCE_TYPES = {
    "gain": "total_gain",
    "cover": "total_cover",
    "frequency": "weight",
}


class ModelVariant(str, Enum):
    """Model family tag."""

    LINEAR = "linear"
    LASSO = "lasso"
    BOOSTED = "boosted"


@dataclass(frozen=True)
class FittedModel:
    """A fitted classifier plus everything needed to score and explain it.

    Attributes:
        name: Reporting name.
        variant: Model family.
        estimator: The fitted scikit-learn estimator or XGBoost booster.
        feature_columns: Training column sequence.  Scored matrices must
            match it exactly.
        threshold: Decision threshold on the predicted probability.
        influence: Per-feature influence table (variant specific).
        warnings: Non-fatal fit warnings, e.g. non-convergence.
        search: Hyperparameter search summary.
    """

    name: str
    variant: ModelVariant
    estimator: Any
    feature_columns: tuple[str, ...]
    threshold: float
    influence: pd.DataFrame
    warnings: tuple[str, ...] = ()
    search: dict[str, Any] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return not self.warnings


class ModelTrainer(Protocol):
    """Capability shared by every trainer."""

    name: str
    threshold: float

    def fit(self, matrix: FeatureMatrix) -> FittedModel: ...

    def predict_proba(self, model: FittedModel, matrix: FeatureMatrix) -> np.ndarray: ...

    def predict(
        self,
        model: FittedModel,
        matrix: FeatureMatrix,
        threshold: Optional[float] = None,
    ) -> np.ndarray: ...

    def influence_ranking(
        self, model: FittedModel, top_n: Optional[int] = None
    ) -> list[tuple[str, float]]: ...


# ----------------------------------------------------------------------
# Shared helpers
# ----------------------------------------------------------------------

def classify(proba: np.ndarray, threshold: float) -> np.ndarray:
    """``1`` where the probability exceeds the threshold, else ``0``."""
    return (np.asarray(proba) > threshold).astype(int)


def _fit_recording_convergence(
    fit: Callable[..., Any], *args: Any, **kwargs: Any
) -> tuple[Any, list[str]]:
    """Run ``fit`` and return its result with any convergence warnings.

    Other warnings are re-issued unchanged.
    """
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        result = fit(*args, **kwargs)
    messages = []
    for w in caught:
        if issubclass(w.category, ConvergenceWarning):
            messages.append(str(w.message).strip())
        else:
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)
    return result, messages


def _checked_features(model: FittedModel, matrix: FeatureMatrix) -> pd.DataFrame:
    verify_schema(matrix, model.feature_columns)
    return matrix.frame


def _log_fit(model: FittedModel) -> None:
    for message in model.warnings:
        logger.warning("%s did not converge: %s", model.name, message)


# ----------------------------------------------------------------------
# Linear risk model
# ----------------------------------------------------------------------

def wald_table(
    estimator: LogisticRegression, X: np.ndarray, columns: Sequence[str]
) -> pd.DataFrame:
    """Coefficient, standard error, z and two-sided p-value per term.

    Standard errors come from the inverse of the observed information
    matrix ``X' W X`` at the fitted coefficients (intercept included).
    """
    design = np.column_stack([np.ones(len(X)), X])
    params = np.concatenate([estimator.intercept_, estimator.coef_.ravel()])
    proba = estimator.predict_proba(X)[:, 1]
    weights = proba * (1 - proba)
    information = design.T @ (design * weights[:, None])
    covariance = np.linalg.pinv(information)
    std_error = np.sqrt(np.clip(np.diag(covariance), 0.0, None))
    with np.errstate(divide="ignore", invalid="ignore"):
        z_value = params / std_error
    p_value = 2 * stats.norm.sf(np.abs(z_value))
    return pd.DataFrame({
        "feature": [INTERCEPT, *columns],
        "coefficient": params,
        "std_error": std_error,
        "z_value": z_value,
        "p_value": p_value,
    })


class LinearRiskTrainer:
    """Logistic regression on an analyst-selected feature set."""

    variant = ModelVariant.LINEAR

    def __init__(
        self,
        threshold: float = 0.5,
        significance: float = 0.001,
        max_iter: int = 1000,
        name: str = "linear",
    ) -> None:
        """
        Args:
            threshold: Decision threshold on the fraud probability.
            significance: p-value cutoff for the influence ranking.
            max_iter: lbfgs iteration limit.
            name: Reporting name.
        """
        self.name = name
        self.threshold = threshold
        self._significance = significance
        self._max_iter = max_iter

    def fit(self, matrix: FeatureMatrix) -> FittedModel:
        X = matrix.frame.to_numpy(dtype=np.float64)
        y = matrix.y
        estimator = LogisticRegression(C=np.inf, solver="lbfgs", max_iter=self._max_iter)
        estimator, messages = _fit_recording_convergence(estimator.fit, X, y)

        model = FittedModel(
            name=self.name,
            variant=self.variant,
            estimator=estimator,
            feature_columns=tuple(matrix.columns),
            threshold=self.threshold,
            influence=wald_table(estimator, X, matrix.columns),
            warnings=tuple(messages),
            search={"n_iter": int(np.max(estimator.n_iter_))},
        )
        _log_fit(model)
        return model

    def predict_proba(self, model: FittedModel, matrix: FeatureMatrix) -> np.ndarray:
        X = _checked_features(model, matrix).to_numpy(dtype=np.float64)
        return model.estimator.predict_proba(X)[:, 1]

    def predict(
        self,
        model: FittedModel,
        matrix: FeatureMatrix,
        threshold: Optional[float] = None,
    ) -> np.ndarray:
        cutoff = model.threshold if threshold is None else threshold
        return classify(self.predict_proba(model, matrix), cutoff)

    def influence_ranking(
        self, model: FittedModel, top_n: Optional[int] = None
    ) -> list[tuple[str, float]]:
        """Significant terms by ascending p-value, scored by coefficient."""
        table = model.influence
        table = table[(table["feature"] != INTERCEPT) & (table["p_value"] < self._significance)]
        table = table.assign(magnitude=table["coefficient"].abs()).sort_values(
            ["p_value", "magnitude"], ascending=[True, False], kind="mergesort"
        )
        ranked = list(zip(table["feature"], table["coefficient"].astype(float)))
        return ranked if top_n is None else ranked[:top_n]


# ----------------------------------------------------------------------
# L1-regularized model
# ----------------------------------------------------------------------

def lambda_grid(
    X: Any, y: np.ndarray, n_lambdas: int = 30, min_ratio: float = 1e-3
) -> np.ndarray:
    """Ascending, log-spaced penalty grid ending at ``lambda_max``.

    ``lambda_max`` is the smallest penalty at which every coefficient
    is zero for a mean-loss objective: ``max |X' (y - mean(y))| / n``.
    """
    residual = y - y.mean()
    gradient = np.abs(np.asarray(X.T @ residual)).ravel() / len(y)
    lambda_max = float(gradient.max()) if gradient.size else 0.0
    if lambda_max <= 0:
        raise ValueError("Cannot build a penalty grid: no feature varies with the label")
    return np.sort(lambda_max * np.logspace(0, np.log10(min_ratio), n_lambdas))


def select_one_standard_error(
    lambdas: Sequence[float], cv_mean: Sequence[float], cv_se: Sequence[float]
) -> tuple[float, float]:
    """Pick ``lambda_min`` and the one-standard-error ``lambda_1se``.

    ``lambda_1se`` is the largest penalty whose mean CV error is within
    one standard error of the minimum.  Ties resolve toward the smaller
    penalty for ``lambda_min``.

    Returns:
        ``(lambda_min, lambda_1se)``.
    """
    lambdas = np.asarray(lambdas, dtype=float)
    order = np.argsort(lambdas, kind="mergesort")
    lambdas = lambdas[order]
    cv_mean = np.asarray(cv_mean, dtype=float)[order]
    cv_se = np.asarray(cv_se, dtype=float)[order]

    best = int(np.argmin(cv_mean))
    limit = cv_mean[best] + cv_se[best]
    within = np.flatnonzero(cv_mean <= limit)
    return float(lambdas[best]), float(lambdas[within.max()])


def _l1_estimator(lam: float, n: int, max_iter: int, seed: int) -> LogisticRegression:
    # Mean-loss penalty lambda expressed as scikit-learn's summed-loss C
    return LogisticRegression(
        l1_ratio=1.0,
        solver="liblinear",
        C=1.0 / (lam * n),
        max_iter=max_iter,
        random_state=seed,
    )


def _cv_error(y_true: np.ndarray, proba: np.ndarray, metric: str) -> float:
    if metric == "deviance":
        return 2.0 * log_loss(y_true, proba, labels=[0, 1])
    return float(np.mean(classify(proba, 0.5) != y_true))


def _score_fold(
    X: Any,
    y: np.ndarray,
    train_idx: np.ndarray,
    val_idx: np.ndarray,
    lambdas: np.ndarray,
    metric: str,
    max_iter: int,
    seed: int,
) -> tuple[np.ndarray, int]:
    """CV error per penalty (ascending) for one fold, plus non-converged fits."""
    errors = np.empty(len(lambdas))
    unconverged = 0
    X_train, y_train = X[train_idx], y[train_idx]
    X_val, y_val = X[val_idx], y[val_idx]
    for i, lam in enumerate(lambdas):
        estimator = _l1_estimator(lam, len(train_idx), max_iter, seed)
        estimator, messages = _fit_recording_convergence(estimator.fit, X_train, y_train)
        unconverged += bool(messages)
        errors[i] = _cv_error(y_val, estimator.predict_proba(X_val)[:, 1], metric)
    return errors, unconverged


class LassoTrainer:
    """L1 logistic regression with a cross-validated penalty."""

    variant = ModelVariant.LASSO

    def __init__(
        self,
        threshold: float = 0.48,
        lambdas: Optional[Sequence[float]] = None,
        n_lambdas: int = 30,
        lambda_min_ratio: float = 1e-3,
        cv_folds: int = 5,
        cv_metric: str = "deviance",
        max_iter: int = 1000,
        n_jobs: int = 1,
        seed: int = 42,
        name: str = "lasso",
    ) -> None:
        """
        Args:
            threshold: Decision threshold on the fraud probability.
            lambdas: Explicit penalty grid.  Built from the data if ``None``.
            n_lambdas: Grid size when building the grid.
            lambda_min_ratio: Smallest grid value as a fraction of
                ``lambda_max``.
            cv_folds: Stratified folds for the penalty search.
            cv_metric: ``"deviance"`` or ``"misclassification"``.
            max_iter: Solver iteration limit.
            n_jobs: Folds evaluated in parallel.
            seed: Seed for fold assignment and the solver.
            name: Reporting name.
        """
        if cv_metric not in CV_METRICS:
            raise ValueError(f"cv_metric must be one of {CV_METRICS}, got {cv_metric!r}")
        self.name = name
        self.threshold = threshold
        self._lambdas = None if lambdas is None else np.sort(np.asarray(lambdas, dtype=float))
        self._n_lambdas = n_lambdas
        self._lambda_min_ratio = lambda_min_ratio
        self._cv_folds = cv_folds
        self._cv_metric = cv_metric
        self._max_iter = max_iter
        self._n_jobs = n_jobs
        self._seed = seed

    def fit(self, matrix: FeatureMatrix) -> FittedModel:
        X = matrix.to_csr()
        y = matrix.y
        n = len(y)
        grid = self._lambdas
        if grid is None:
            grid = lambda_grid(X, y, self._n_lambdas, self._lambda_min_ratio)

        cv = StratifiedKFold(n_splits=self._cv_folds, shuffle=True, random_state=self._seed)
        folds = list(cv.split(np.zeros(n), y))
        fold_results = Parallel(n_jobs=self._n_jobs)(
            delayed(_score_fold)(
                X, y, train_idx, val_idx, grid,
                self._cv_metric, self._max_iter, self._seed,
            )
            for train_idx, val_idx in folds
        )
        errors = np.vstack([errs for errs, _ in fold_results])
        unconverged = sum(count for _, count in fold_results)
        cv_mean = errors.mean(axis=0)
        cv_se = errors.std(axis=0, ddof=1) / np.sqrt(len(folds))
        lambda_min, lambda_1se = select_one_standard_error(grid, cv_mean, cv_se)
        logger.info(
            "%s: lambda_min=%.3g, lambda_1se=%.3g over %d penalties x %d folds",
            self.name, lambda_min, lambda_1se, len(grid), len(folds),
        )

        estimator = _l1_estimator(lambda_1se, n, self._max_iter, self._seed)
        estimator, messages = _fit_recording_convergence(estimator.fit, X, y)
        if unconverged:
            messages.append(
                f"{unconverged} cross-validation fits did not converge"
            )

        coef = estimator.coef_.ravel()
        influence = pd.DataFrame({
            "feature": matrix.columns,
            "coefficient": coef,
            "magnitude": np.abs(coef),
        }).sort_values("magnitude", ascending=False, kind="mergesort").reset_index(drop=True)

        model = FittedModel(
            name=self.name,
            variant=self.variant,
            estimator=estimator,
            feature_columns=tuple(matrix.columns),
            threshold=self.threshold,
            influence=influence,
            warnings=tuple(messages),
            search={
                "lambda_min": lambda_min,
                "lambda_1se": lambda_1se,
                "cv_metric": self._cv_metric,
                "cv_results": pd.DataFrame({
                    "lambda": grid, "cv_mean": cv_mean, "cv_se": cv_se,
                }),
            },
        )
        _log_fit(model)
        return model

    def predict_proba(self, model: FittedModel, matrix: FeatureMatrix) -> np.ndarray:
        _checked_features(model, matrix)
        return model.estimator.predict_proba(matrix.to_csr())[:, 1]

    def predict(
        self,
        model: FittedModel,
        matrix: FeatureMatrix,
        threshold: Optional[float] = None,
    ) -> np.ndarray:
        cutoff = model.threshold if threshold is None else threshold
        return classify(self.predict_proba(model, matrix), cutoff)

    def influence_ranking(
        self, model: FittedModel, top_n: Optional[int] = None
    ) -> list[tuple[str, float]]:
        """Every nonzero coefficient by descending magnitude.

        ``top_n`` is accepted for interface compatibility; the penalty has
        already done the selection.
        """
        table = model.influence[model.influence["coefficient"] != 0]
        return list(zip(table["feature"], table["coefficient"].astype(float)))


# ----------------------------------------------------------------------
# Gradient-boosted ensemble
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class RoundSelection:
    """Outcome of the early-stopping rule over a validation curve."""

    best_round: int
    rounds_evaluated: int
    stopped_early: bool


def select_best_round(
    history: Sequence[float],
    patience: int,
    maximize: bool = True,
    max_rounds: Optional[int] = None,
) -> RoundSelection:
    """Apply early stopping to a per-round mean validation metric.

    Scanning stops once ``patience`` rounds pass without a strict
    improvement.  The selection is the best round seen, not the last one.

    Args:
        history: Mean validation metric per round, round 1 first.
        patience: Rounds without improvement before stopping.
        maximize: ``True`` for AUC-like metrics, ``False`` for errors.
        max_rounds: Round budget; later entries are ignored.

    Returns:
        ``RoundSelection`` with a 1-based ``best_round``.
    """
    scores = np.asarray(history, dtype=float)
    if max_rounds is not None:
        scores = scores[:max_rounds]
    if scores.size == 0:
        raise ValueError("Validation history is empty")

    best_index = 0
    for i in range(1, len(scores)):
        improved = scores[i] > scores[best_index] if maximize else scores[i] < scores[best_index]
        if improved:
            best_index = i
        elif i - best_index >= patience:
            return RoundSelection(best_index + 1, i + 1, True)
    return RoundSelection(best_index + 1, len(scores), False)


def _positional_names(n: int) -> list[str]:
    return [f"f{i}" for i in range(n)]


def _dmatrix(matrix: FeatureMatrix, with_label: bool = True) -> xgb.DMatrix:
    # Positional names keep arbitrary level strings out of XGBoost's name checks
    return xgb.DMatrix(
        matrix.to_csr(),
        label=matrix.y if with_label else None,
        feature_names=_positional_names(matrix.shape[1]),
    )


def importance_table(booster: xgb.Booster, columns: Sequence[str]) -> pd.DataFrame:
    """Gain, cover and frequency shares per feature, sorted by gain."""
    table = pd.DataFrame({"feature": list(columns)})
    names = _positional_names(len(columns))
    for label, importance_type in IMPORTANCE_TYPES.items():
        scores = booster.get_score(importance_type=importance_type)
        raw = np.array([scores.get(name, 0.0) for name in names], dtype=float)
        total = raw.sum()
        table[label] = raw / total if total > 0 else raw
    return table.sort_values("gain", ascending=False, kind="mergesort").reset_index(drop=True)


class BoostedTrainer:
    """XGBoost classifier with a cross-validated round count."""

    variant = ModelVariant.BOOSTED

    DEFAULT_PARAMS: dict[str, Any] = {
        "objective": "binary:logistic",
        "max_depth": 6,
        "eta": 0.3,
        "subsample": 1.0,
        "colsample_bytree": 1.0,
        "min_child_weight": 1,
    }

    def __init__(
        self,
        threshold: float = 0.5,
        max_rounds: int = 1000,
        patience: int = 50,
        cv_folds: int = 5,
        metric: str = "auc",
        params: Optional[dict[str, Any]] = None,
        n_jobs: int = 1,
        seed: int = 42,
        name: str = "boosted",
    ) -> None:
        """
        Args:
            threshold: Decision threshold on the fraud probability.
            max_rounds: Boosting round budget.
            patience: Rounds without validation improvement after which
                the round search stops.
            cv_folds: Stratified folds for the round search.
            metric: ``"auc"`` (maximized) or ``"error"`` (minimized).
            params: Booster parameters overriding ``DEFAULT_PARAMS``.
            n_jobs: XGBoost threads.
            seed: Seed for fold assignment and the booster.
            name: Reporting name.
        """
        if metric not in BOOSTING_METRICS:
            raise ValueError(f"metric must be one of {BOOSTING_METRICS}, got {metric!r}")
        if max_rounds <= 0 or patience <= 0:
            raise ValueError("max_rounds and patience must be positive")
        self.name = name
        self.threshold = threshold
        self._max_rounds = max_rounds
        self._patience = patience
        self._cv_folds = cv_folds
        self._metric = metric
        self._params = {
            **self.DEFAULT_PARAMS,
            **(params or {}),
            "eval_metric": metric,
            "seed": seed,
            "nthread": n_jobs,
        }
        self._seed = seed

    def fit(self, matrix: FeatureMatrix) -> FittedModel:
        dtrain = _dmatrix(matrix)
        y = matrix.y
        cv = StratifiedKFold(n_splits=self._cv_folds, shuffle=True, random_state=self._seed)
        folds = list(cv.split(np.zeros(len(y)), y))

        # Full curve up to the budget; the patience rule is applied below so
        # the rounds after the best one stay visible in the search summary
        cv_history = xgb.cv(
            self._params,
            dtrain,
            num_boost_round=self._max_rounds,
            folds=folds,
            seed=self._seed,
            verbose_eval=False,
        )
        history = cv_history[f"test-{self._metric}-mean"].to_numpy()
        selection = select_best_round(
            history,
            self._patience,
            maximize=self._metric == "auc",
            max_rounds=self._max_rounds,
        )
        logger.info(
            "%s: best round %d of %d evaluated (budget %d)",
            self.name, selection.best_round, selection.rounds_evaluated,
            self._max_rounds,
        )

        messages = []
        if not selection.stopped_early:
            messages.append(
                f"validation {self._metric} still improving after "
                f"{self._max_rounds} rounds"
            )

        booster = xgb.train(self._params, dtrain, num_boost_round=selection.best_round)

        model = FittedModel(
            name=self.name,
            variant=self.variant,
            estimator=booster,
            feature_columns=tuple(matrix.columns),
            threshold=self.threshold,
            influence=importance_table(booster, matrix.columns),
            warnings=tuple(messages),
            search={
                "best_round": selection.best_round,
                "rounds_evaluated": selection.rounds_evaluated,
                "stopped_early": selection.stopped_early,
                "metric": self._metric,
                "best_score": float(history[selection.best_round - 1]),
                "cv_results": cv_history.iloc[: selection.rounds_evaluated],
            },
        )
        _log_fit(model)
        return model

    def predict_proba(self, model: FittedModel, matrix: FeatureMatrix) -> np.ndarray:
        _checked_features(model, matrix)
        return model.estimator.predict(_dmatrix(matrix, with_label=False))

    def predict(
        self,
        model: FittedModel,
        matrix: FeatureMatrix,
        threshold: Optional[float] = None,
    ) -> np.ndarray:
        cutoff = model.threshold if threshold is None else threshold
        return classify(self.predict_proba(model, matrix), cutoff)

    def influence_ranking(
        self,
        model: FittedModel,
        top_n: Optional[int] = None,
        by: str = "gain",
    ) -> list[tuple[str, float]]:
        """Features with nonzero importance, ranked by gain, cover or frequency."""
        if by not in IMPORTANCE_TYPES:
            raise ValueError(f"by must be one of {tuple(IMPORTANCE_TYPES)}, got {by!r}")
        table = model.influence[model.influence[by] > 0].sort_values(
            by, ascending=False, kind="mergesort"
        )
        ranked = list(zip(table["feature"], table[by].astype(float)))
        return ranked if top_n is None else ranked[:top_n]
