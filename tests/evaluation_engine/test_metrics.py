import pytest
import numpy as np
from sklearn.linear_model import LinearRegression, LogisticRegression

from fastml.modules.evaluation_engine import (
    MetricScorer,
    classification_metrics,
    full_proba,
    is_better,
    regression_metrics,
)
from fastml.modules.evaluation_engine.metrics import roc_auc, specificity
from fastml.utils import constants


def test_binary_metrics_for_positive_class():
    y_true = np.array([0, 0, 0, 1, 1, 1])
    y_pred = np.array([0, 0, 1, 1, 1, 0])
    results = classification_metrics(y_true, y_pred, None, n_classes=2, positive_index=0)

    assert results['accuracy'] == pytest.approx(4 / 6)
    # class 0 is the event: 2 of 3 found, 2 of 3 predicted zeros correct
    assert results['sens'] == pytest.approx(2 / 3)
    assert results['precision'] == pytest.approx(2 / 3)
    assert results['spec'] == pytest.approx(2 / 3)
    assert np.isnan(results['roc_auc'])
    assert np.isnan(results['logloss'])


def test_specificity_multiclass_macro():
    y_true = np.array([0, 1, 2, 0, 1, 2])
    assert specificity(y_true, y_true, n_classes=3) == pytest.approx(1.0)


def test_roc_auc_binary_uses_positive_column():
    y_true = np.array([0, 0, 1, 1])
    proba = np.array([[0.9, 0.1], [0.8, 0.2], [0.3, 0.7], [0.2, 0.8]])
    assert roc_auc(y_true, proba, 2, positive_index=1) == pytest.approx(1.0)
    assert roc_auc(y_true, proba, 2, positive_index=0) == pytest.approx(1.0)


def test_roc_auc_single_class_is_nan():
    proba = np.array([[0.9, 0.1], [0.8, 0.2]])
    assert np.isnan(roc_auc(np.array([0, 0]), proba, 2, positive_index=1))


def test_roc_auc_multiclass():
    y_true = np.array([0, 1, 2, 0, 1, 2])
    proba = np.eye(3)[y_true] * 0.8 + 0.2 / 3
    assert roc_auc(y_true, proba, 3) == pytest.approx(1.0)


def test_subset_of_metrics():
    results = classification_metrics(np.array([0, 1]), np.array([0, 1]), None, 2, 1, metrics=['kap'])
    assert list(results) == ['kap']
    assert results['kap'] == pytest.approx(1.0)


def test_unknown_metric():
    with pytest.raises(ValueError, match="Unknown classification metric"):
        classification_metrics(np.array([0, 1]), np.array([0, 1]), None, 2, 1, metrics=['gini'])


def test_regression_metrics():
    y_true = np.array([1.0, 2.0, 3.0, 4.0])
    y_pred = np.array([1.5, 2.0, 2.5, 4.0])
    results = regression_metrics(y_true, y_pred)
    assert results['rmse'] == pytest.approx(np.sqrt(0.125))
    assert results['mae'] == pytest.approx(0.25)
    assert results['rsq'] == pytest.approx(np.corrcoef(y_true, y_pred)[0, 1] ** 2)
    assert results['mape'] == pytest.approx(np.mean([0.5, 0.0, 1 / 6, 0.0]) * 100)


def test_rsq_constant_prediction_is_nan():
    assert np.isnan(regression_metrics(np.array([1.0, 2.0]), np.array([3.0, 3.0]), ['rsq'])['rsq'])


def test_is_better():
    assert is_better(0.9, 0.8, 'accuracy')
    assert not is_better(0.9, 0.8, 'rmse')
    assert is_better(0.1, np.nan, 'rmse')
    assert not is_better(np.nan, 0.1, 'rmse')


def test_full_proba_widens_missing_class():
    X = np.array([[0.0], [0.1], [1.0], [1.1]])
    model = LogisticRegression().fit(X, np.array([0, 0, 2, 2]))
    proba = full_proba(model, X, 3)
    assert proba.shape == (4, 3)
    assert np.allclose(proba[:, 1], 0)
    assert np.allclose(proba.sum(axis=1), 1)


def test_scorer_negates_lower_is_better():
    X = np.array([[0.0], [1.0], [2.0], [3.0]])
    y = np.array([0.0, 1.0, 2.0, 4.0])
    model = LinearRegression().fit(X, y)
    scorer = MetricScorer('rmse', constants.REGRESSION)
    raw = scorer.score(model, X, y)
    assert raw > 0
    assert scorer(model, X, y) == pytest.approx(-raw)
    assert scorer.sign * scorer(model, X, y) == pytest.approx(raw)


def test_scorer_probability_metric():
    X = np.array([[0.0], [0.2], [0.8], [1.0]])
    y = np.array([0, 0, 1, 1])
    model = LogisticRegression().fit(X, y)
    scorer = MetricScorer('roc_auc', constants.CLASSIFICATION, n_classes=2, positive_index=1)
    assert scorer(model, X, y) == pytest.approx(1.0)
