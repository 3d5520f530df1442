import pytest
import logging
import numpy as np
import pandas as pd
from unittest.mock import MagicMock
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeClassifier

from fastml.modules.config_manager import ConfigurationManager
from fastml.modules.evaluation_engine import MetricScorer
from fastml.modules.tuning_engine import TuningEngine
from fastml.utils.exceptions import TuningError
from fastml.utils import constants


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def data():
    rng = np.random.default_rng(0)
    X = pd.DataFrame({'a': rng.normal(size=80), 'b': rng.normal(size=80)})
    y = (X['a'] + 0.3 * rng.normal(size=80) > 0).astype(int).to_numpy()
    return X, y


@pytest.fixture
def workflow():
    return Pipeline([
        (constants.RECIPE_STEP, StandardScaler()),
        (constants.MODEL_STEP, DecisionTreeClassifier(random_state=0)),
    ])


@pytest.fixture
def scorer():
    return MetricScorer('accuracy', constants.CLASSIFICATION, n_classes=2, positive_index=1)


def make_engine(logger, overrides=None):
    base = {'resampling': {'folds': 3}}
    config = ConfigurationManager().build({**base, **(overrides or {})})
    return TuningEngine(config, logger)


def run(engine, workflow, data, scorer):
    X, y = data
    return engine.execute(workflow, X, y, scorer, 'decision_tree', 'sklearn', n_features=X.shape[1])


def test_no_search_space_resamples_default(mock_logger, workflow, data, scorer):
    outcome = run(make_engine(mock_logger), workflow, data, scorer)

    assert outcome['strategy'] == 'none'
    assert outcome['best_params'] == {}
    assert len(outcome['fold_scores']) == 3
    assert outcome['cv_score'] == pytest.approx(np.mean(outcome['fold_scores']))
    assert 0.0 <= outcome['cv_score'] <= 1.0
    assert outcome['n_candidates'] == 1
    assert hasattr(outcome['estimator'], 'predict')


def test_no_resampling_fits_once(mock_logger, workflow, data, scorer):
    engine = make_engine(mock_logger, {'resampling': {'method': 'none'}})
    outcome = run(engine, workflow, data, scorer)
    assert outcome['fold_scores'] == []
    assert np.isnan(outcome['cv_score'])
    outcome['estimator'].predict(data[0])


def test_grid_search_with_user_grid(mock_logger, workflow, data, scorer):
    engine = make_engine(mock_logger, {'tuning': {'tune_params': {'decision_tree': {
        'max_depth': [1, 2, 4], 'min_samples_leaf': [1, 5],
    }}}})
    outcome = run(engine, workflow, data, scorer)

    assert outcome['strategy'] == 'grid'
    assert outcome['n_candidates'] == 6
    assert set(outcome['best_params']) == {'max_depth', 'min_samples_leaf'}
    candidates = outcome['candidates']
    assert candidates['rank'].tolist() == list(range(1, 7))
    assert candidates['mean_score'].iloc[0] == pytest.approx(outcome['cv_score'])
    assert 'param_max_depth' in candidates.columns
    assert outcome['estimator'].named_steps[constants.MODEL_STEP].max_depth == outcome['best_params']['max_depth']


def test_unknown_tune_param_ignored(mock_logger, workflow, data, scorer):
    engine = make_engine(mock_logger, {'tuning': {'tune_params': {'decision_tree': {
        'max_depth': [1, 3], 'num_trees': [10],
    }}}})
    space = engine.resolve_space(constants.CLASSIFICATION, 'decision_tree', 'sklearn')
    assert list(space) == ['max_depth']
    assert space['max_depth'] == {'type': 'categorical', 'choices': [1, 3]}
    mock_logger.warning.assert_called()


def test_default_space_requires_flag(mock_logger):
    off = make_engine(mock_logger).resolve_space(constants.CLASSIFICATION, 'decision_tree', 'sklearn')
    on = make_engine(mock_logger, {'tuning': {'use_default_tuning': True}}).resolve_space(
        constants.CLASSIFICATION, 'decision_tree', 'sklearn')
    assert off == {}
    assert set(on) == {'max_depth', 'min_samples_split', 'ccp_alpha'}


def test_oversized_default_grid_is_sampled(mock_logger, workflow, data, scorer):
    engine = make_engine(mock_logger, {
        'tuning': {'use_default_tuning': True},
        'resources': {'max_tuning_configs': 4},
    })
    outcome = run(engine, workflow, data, scorer)
    assert outcome['n_candidates'] == 4


def test_random_search(mock_logger, workflow, data, scorer):
    engine = make_engine(mock_logger, {'tuning': {'strategy': 'random', 'iterations': 5, 'use_default_tuning': True}})
    outcome = run(engine, workflow, data, scorer)
    assert outcome['strategy'] == 'random'
    assert outcome['n_candidates'] == 5
    assert 2 <= outcome['best_params']['max_depth'] <= 15


def test_random_search_is_reproducible(mock_logger, workflow, data, scorer):
    overrides = {'tuning': {'strategy': 'random', 'iterations': 4, 'use_default_tuning': True}}
    a = run(make_engine(mock_logger, overrides), workflow, data, scorer)
    b = run(make_engine(mock_logger, overrides), workflow, data, scorer)
    assert a['best_params'] == b['best_params']


def test_bayes_search(mock_logger, workflow, data, scorer):
    engine = make_engine(mock_logger, {'tuning': {'strategy': 'bayes', 'iterations': 6, 'use_default_tuning': True}})
    outcome = run(engine, workflow, data, scorer)
    assert outcome['strategy'] == 'bayes'
    assert 1 <= outcome['n_candidates'] <= 6
    assert len(outcome['fold_scores']) == 3
    assert outcome['candidates']['mean_score'].iloc[0] == pytest.approx(outcome['cv_score'])


def test_bayes_early_stopping(mock_logger, workflow, data, scorer):
    engine = make_engine(mock_logger, {'tuning': {
        'strategy': 'bayes', 'iterations': 30, 'early_stopping': True, 'patience': 2,
        'tune_params': {'decision_tree': {'max_depth': [3]}},
    }})
    outcome = run(engine, workflow, data, scorer)
    # A single-value space cannot improve after the first trial
    assert outcome['n_candidates'] == 3


def test_adaptive_grid(mock_logger, workflow, data, scorer):
    engine = make_engine(mock_logger, {'tuning': {'adaptive': True, 'tune_params': {'decision_tree': {
        'max_depth': [1, 2, 3, 4, 5, 6],
    }}}})
    outcome = run(engine, workflow, data, scorer)
    assert outcome['strategy'] == 'grid'
    assert outcome['best_params']['max_depth'] in range(1, 7)


def test_lower_is_better_metric_sorted_ascending(mock_logger, workflow, data):
    scorer = MetricScorer('logloss', constants.CLASSIFICATION, n_classes=2, positive_index=1)
    engine = make_engine(mock_logger, {'tuning': {'tune_params': {'decision_tree': {'max_depth': [1, 2, 3]}}}})
    outcome = run(engine, workflow, data, scorer)
    scores = outcome['candidates']['mean_score'].tolist()
    assert scores == sorted(scores)
    assert outcome['cv_score'] == pytest.approx(scores[0])


def test_candidates_saved(mock_logger, workflow, data, scorer, tmp_path):
    engine = make_engine(mock_logger, {
        'tuning': {'tune_params': {'decision_tree': {'max_depth': [1, 2]}}},
        'outputs': {'save_artifacts': True, 'base_results_dir': str(tmp_path)},
    })
    run(engine, workflow, data, scorer)
    assert (tmp_path / constants.TUNING_DIR / "candidates_decision_tree__sklearn.parquet").exists()


def test_failed_folds_report_the_cause(mock_logger, data, scorer):
    broken = Pipeline([
        (constants.RECIPE_STEP, StandardScaler()),
        (constants.MODEL_STEP, DecisionTreeClassifier(max_depth=-1)),
    ])
    with pytest.raises(TuningError, match="First error: .*max_depth"):
        run(make_engine(mock_logger), broken, data, scorer)
    logged = [c.args[0] for c in mock_logger.debug.call_args_list]
    assert any(msg.startswith("Resampling fold 1 failed") for msg in logged)
