"""Tests for the linear, lasso and boosted model trainers."""

import warnings

import numpy as np
import pandas as pd
import pytest

from fraud_factors.encoder import FeatureMatrix
from fraud_factors.errors import SchemaMismatchError
from fraud_factors.model import (
    INTERCEPT,
    BoostedTrainer,
    FittedModel,
    LassoTrainer,
    LinearRiskTrainer,
    ModelVariant,
    classify,
    lambda_grid,
    select_best_round,
    select_one_standard_error,
)


def _make_matrix(n: int = 240, seed: int = 0, signal: float = 3.0) -> FeatureMatrix:
    """Matrix where ``signal`` and ``level_c`` drive the label and ``noise`` does not."""
    rng = np.random.default_rng(seed)
    signal_x = rng.normal(size=n)
    noise_x = rng.normal(size=n)
    level = rng.choice(["a", "b", "c"], size=n)
    logit = signal * signal_x + 1.5 * (level == "c")
    y = (rng.random(n) < 1 / (1 + np.exp(-logit))).astype(int)
    index = pd.Index([f"r{i}" for i in range(n)], name="trans_num")
    frame = pd.DataFrame({
        "signal": signal_x,
        "noise": noise_x,
        "level_b": (level == "b").astype(float),
        "level_c": (level == "c").astype(float),
    }, index=index)
    return FeatureMatrix(frame=frame, labels=pd.Series(y, index=index, name="label"))


def _reordered(matrix: FeatureMatrix) -> FeatureMatrix:
    columns = list(reversed(matrix.columns))
    return FeatureMatrix(frame=matrix.frame[columns], labels=matrix.labels)


# ── Shared behaviour ────────────────────────────────────────────────


def test_classify_uses_strict_threshold():
    proba = np.array([0.5, 0.51, 0.49, 1.0, 0.0])
    assert classify(proba, 0.5).tolist() == [0, 1, 0, 1, 0]


@pytest.mark.parametrize(
    "trainer",
    [
        LinearRiskTrainer(),
        LassoTrainer(n_lambdas=5, cv_folds=3),
        BoostedTrainer(max_rounds=20, patience=5, cv_folds=3),
    ],
    ids=["linear", "lasso", "boosted"],
)
def test_every_trainer_returns_fitted_model_and_probabilities(trainer):
    matrix = _make_matrix()
    model = trainer.fit(matrix)
    assert isinstance(model, FittedModel)
    assert model.feature_columns == tuple(matrix.columns)
    assert model.threshold == trainer.threshold

    proba = trainer.predict_proba(model, matrix)
    assert proba.shape == (len(matrix),)
    assert ((proba >= 0) & (proba <= 1)).all()

    ranking = trainer.influence_ranking(model, 3)
    assert ranking and ranking[0][0] == "signal"


@pytest.mark.parametrize(
    "trainer",
    [
        LinearRiskTrainer(),
        LassoTrainer(n_lambdas=5, cv_folds=3),
        BoostedTrainer(max_rounds=10, patience=5, cv_folds=3),
    ],
    ids=["linear", "lasso", "boosted"],
)
def test_prediction_rejects_mismatched_schema(trainer):
    matrix = _make_matrix()
    model = trainer.fit(matrix)
    with pytest.raises(SchemaMismatchError):
        trainer.predict_proba(model, _reordered(matrix))


def test_predict_threshold_override():
    trainer = LinearRiskTrainer()
    matrix = _make_matrix()
    model = trainer.fit(matrix)
    assert trainer.predict(model, matrix, threshold=1.0).sum() == 0
    assert trainer.predict(model, matrix, threshold=-0.1).sum() == len(matrix)
    np.testing.assert_array_equal(
        trainer.predict(model, matrix),
        classify(trainer.predict_proba(model, matrix), model.threshold),
    )


# ── Linear risk model ───────────────────────────────────────────────


def test_linear_influence_table_has_wald_statistics():
    trainer = LinearRiskTrainer()
    model = trainer.fit(_make_matrix())
    table = model.influence
    assert model.variant == ModelVariant.LINEAR
    assert list(table["feature"]) == [INTERCEPT, "signal", "noise", "level_b", "level_c"]
    assert {"coefficient", "std_error", "z_value", "p_value"} <= set(table.columns)
    signal = table.set_index("feature").loc["signal"]
    assert signal["coefficient"] > 0
    assert signal["p_value"] < 0.001
    assert signal["z_value"] == pytest.approx(signal["coefficient"] / signal["std_error"])


def test_linear_ranking_filters_by_significance():
    model_strict = LinearRiskTrainer(significance=1e-300)
    fitted = model_strict.fit(_make_matrix())
    assert model_strict.influence_ranking(fitted) == []

    lenient = LinearRiskTrainer(significance=1.0)
    fitted = lenient.fit(_make_matrix())
    ranking = lenient.influence_ranking(fitted)
    assert INTERCEPT not in [name for name, _ in ranking]
    assert len(ranking) == 4
    p_values = fitted.influence.set_index("feature").loc[[n for n, _ in ranking], "p_value"]
    assert p_values.is_monotonic_increasing


def test_linear_ranking_scores_are_coefficients():
    trainer = LinearRiskTrainer(significance=1.0)
    model = trainer.fit(_make_matrix())
    coefficients = model.influence.set_index("feature")["coefficient"]
    for name, score in trainer.influence_ranking(model):
        assert score == pytest.approx(coefficients[name])


def test_linear_non_convergence_is_recorded_not_raised():
    trainer = LinearRiskTrainer(max_iter=1)
    model = trainer.fit(_make_matrix())
    assert not model.converged
    assert model.warnings
    assert trainer.predict_proba(model, _make_matrix()).shape == (240,)


def test_linear_fit_survives_perfect_separation():
    matrix = _make_matrix(signal=1.0)
    frame = matrix.frame.copy()
    frame["signal"] = matrix.y * 2.0 - 1.0
    separable = FeatureMatrix(frame=frame, labels=matrix.labels)
    trainer = LinearRiskTrainer(max_iter=50)
    model = trainer.fit(separable)
    accuracy = (trainer.predict(model, separable) == separable.y).mean()
    assert accuracy >= 0.95


# ── Lasso penalty search ────────────────────────────────────────────


def test_one_standard_error_rule_picks_largest_penalty_within_one_se():
    lambdas = [0.01, 0.1, 1.0, 10.0]
    cv_mean = [0.50, 0.40, 0.43, 0.80]
    cv_se = [0.02, 0.05, 0.01, 0.02]
    assert select_one_standard_error(lambdas, cv_mean, cv_se) == (0.1, 1.0)


def test_one_standard_error_rule_ignores_input_order():
    lambdas = [10.0, 0.01, 1.0, 0.1]
    cv_mean = [0.80, 0.50, 0.43, 0.40]
    cv_se = [0.02, 0.02, 0.01, 0.05]
    assert select_one_standard_error(lambdas, cv_mean, cv_se) == (0.1, 1.0)


def test_one_standard_error_rule_tie_prefers_smaller_minimum():
    lambda_min, lambda_1se = select_one_standard_error(
        [0.1, 0.2, 0.3], [0.4, 0.4, 0.9], [0.0, 0.0, 0.0]
    )
    assert lambda_min == 0.1
    assert lambda_1se == 0.2


def test_lambda_grid_is_ascending_and_spans_ratio():
    matrix = _make_matrix()
    grid = lambda_grid(matrix.to_csr(), matrix.y, n_lambdas=10, min_ratio=1e-2)
    assert len(grid) == 10
    assert np.all(np.diff(grid) > 0)
    assert grid[0] / grid[-1] == pytest.approx(1e-2)


def test_lambda_grid_rejects_constant_label():
    matrix = _make_matrix()
    with pytest.raises(ValueError):
        lambda_grid(matrix.to_csr(), np.ones(len(matrix)))


def test_lasso_search_summary():
    trainer = LassoTrainer(n_lambdas=8, cv_folds=3)
    model = trainer.fit(_make_matrix())
    search = model.search
    assert model.variant == ModelVariant.LASSO
    assert search["lambda_1se"] >= search["lambda_min"]
    assert len(search["cv_results"]) == 8
    assert search["cv_results"]["lambda"].is_monotonic_increasing


def test_lasso_ranking_lists_every_nonzero_coefficient():
    trainer = LassoTrainer(n_lambdas=8, cv_folds=3)
    model = trainer.fit(_make_matrix())
    ranking = trainer.influence_ranking(model, top_n=1)
    nonzero = (model.estimator.coef_.ravel() != 0).sum()
    assert len(ranking) == nonzero
    magnitudes = [abs(score) for _, score in ranking]
    assert magnitudes == sorted(magnitudes, reverse=True)


def test_lasso_large_penalty_zeroes_all_coefficients():
    trainer = LassoTrainer(lambdas=[1000.0], cv_folds=3)
    model = trainer.fit(_make_matrix())
    assert trainer.influence_ranking(model) == []


def test_lasso_is_reproducible():
    first = LassoTrainer(n_lambdas=6, cv_folds=3, seed=7).fit(_make_matrix())
    second = LassoTrainer(n_lambdas=6, cv_folds=3, seed=7).fit(_make_matrix())
    assert first.search["lambda_1se"] == second.search["lambda_1se"]


def test_lasso_parallel_folds_match_sequential():
    sequential = LassoTrainer(n_lambdas=5, cv_folds=3, n_jobs=1).fit(_make_matrix())
    parallel = LassoTrainer(n_lambdas=5, cv_folds=3, n_jobs=2).fit(_make_matrix())
    pd.testing.assert_frame_equal(
        sequential.search["cv_results"], parallel.search["cv_results"]
    )


def test_lasso_rejects_unknown_metric():
    with pytest.raises(ValueError, match="cv_metric"):
        LassoTrainer(cv_metric="auc")


def test_lasso_fit_uses_current_penalty_api():
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        model = LassoTrainer(n_lambdas=4, cv_folds=3).fit(_make_matrix())
    assert model.estimator.l1_ratio == 1.0
    deprecations = [
        w for w in caught
        if issubclass(w.category, (FutureWarning, DeprecationWarning))
        and "penalty" in str(w.message)
    ]
    assert deprecations == []


# ── Boosted round selection ─────────────────────────────────────────


def test_select_best_round_returns_best_not_last():
    history = [0.50, 0.60, 0.70, 0.65, 0.66, 0.64, 0.69, 0.68]
    selection = select_best_round(history, patience=3, maximize=True)
    assert selection.best_round == 3
    assert selection.rounds_evaluated == 6
    assert selection.stopped_early


def test_select_best_round_minimizing_error():
    history = [0.30, 0.20, 0.25, 0.22, 0.21]
    selection = select_best_round(history, patience=2, maximize=False)
    assert selection.best_round == 2
    assert selection.stopped_early


def test_select_best_round_respects_budget():
    history = np.linspace(0.5, 0.99, 100)
    selection = select_best_round(history, patience=10, max_rounds=40)
    assert selection.best_round == 40
    assert selection.rounds_evaluated == 40
    assert not selection.stopped_early


def test_select_best_round_plateau_is_not_improvement():
    selection = select_best_round([0.8, 0.8, 0.8, 0.8], patience=2)
    assert selection.best_round == 1
    assert selection.stopped_early


def test_select_best_round_rejects_empty_history():
    with pytest.raises(ValueError):
        select_best_round([], patience=5)


# ── Boosted ensemble ────────────────────────────────────────────────


def test_boosted_round_count_within_budget():
    trainer = BoostedTrainer(max_rounds=25, patience=5, cv_folds=3)
    model = trainer.fit(_make_matrix())
    assert model.variant == ModelVariant.BOOSTED
    assert 1 <= model.search["best_round"] <= 25
    assert model.search["rounds_evaluated"] <= 25
    assert model.estimator.num_boosted_rounds() == model.search["best_round"]


def test_boosted_search_keeps_rounds_after_the_best():
    trainer = BoostedTrainer(max_rounds=300, patience=10, cv_folds=3, metric="error")
    model = trainer.fit(_make_matrix())
    search = model.search
    assert search["stopped_early"]
    assert model.converged
    assert search["rounds_evaluated"] == search["best_round"] + 10
    assert len(search["cv_results"]) == search["rounds_evaluated"]
    curve = search["cv_results"]["test-error-mean"].to_numpy()
    assert curve[search["best_round"] - 1] == search["best_score"]
    assert (curve[search["best_round"]:] >= search["best_score"]).all()


def test_boosted_importance_shares_sum_to_one():
    trainer = BoostedTrainer(max_rounds=15, patience=5, cv_folds=3)
    model = trainer.fit(_make_matrix())
    table = model.influence
    assert list(table.columns) == ["feature", "gain", "cover", "frequency"]
    for column in ("gain", "cover", "frequency"):
        assert table[column].sum() == pytest.approx(1.0)
    assert table["gain"].is_monotonic_decreasing


@pytest.mark.parametrize("by", ["gain", "cover", "frequency"])
def test_boosted_rankings_are_sorted(by):
    trainer = BoostedTrainer(max_rounds=15, patience=5, cv_folds=3)
    model = trainer.fit(_make_matrix())
    scores = [score for _, score in trainer.influence_ranking(model, by=by)]
    assert scores == sorted(scores, reverse=True)
    assert all(score > 0 for score in scores)


def test_boosted_ranking_rejects_unknown_type():
    trainer = BoostedTrainer(max_rounds=5, patience=5, cv_folds=3)
    model = trainer.fit(_make_matrix())
    with pytest.raises(ValueError, match="by must be"):
        trainer.influence_ranking(model, by="shap")


def test_boosted_exhausted_budget_is_a_warning():
    trainer = BoostedTrainer(max_rounds=5, patience=50, cv_folds=3)
    model = trainer.fit(_make_matrix())
    assert model.search["best_round"] <= 5
    assert not model.converged
    assert "still improving" in model.warnings[0]


def test_boosted_rejects_bad_settings():
    with pytest.raises(ValueError):
        BoostedTrainer(metric="logloss")
    with pytest.raises(ValueError):
        BoostedTrainer(max_rounds=0)
