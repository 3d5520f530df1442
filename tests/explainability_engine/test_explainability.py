import pytest
import logging
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from unittest.mock import MagicMock
from sklearn.inspection import partial_dependence

from fastml import fastml
from fastml.modules.explainability_engine import ExplainabilityEngine
from fastml.modules.explainability_engine.explainability_engine import MAX_ICE_ROWS
from fastml.utils.exceptions import ExplanationError
from fastml.utils import constants


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


@pytest.fixture(scope="module")
def reg_result():
    rng = np.random.default_rng(11)
    n = 100
    df = pd.DataFrame({
        'signal': rng.normal(size=n),
        'noise': rng.normal(size=n),
        'site': rng.choice(['north', 'south'], size=n),
    })
    df['y'] = 4 * df['signal'] + 0.1 * rng.normal(size=n)
    return fastml(df, label='y', algorithms=['decision_tree', 'linear_reg'], folds=3, bootstrap_ci=False)


@pytest.fixture(scope="module")
def binary_result():
    rng = np.random.default_rng(12)
    n = 100
    x = rng.normal(size=n)
    df = pd.DataFrame({'x': x, 'z': rng.normal(size=n), 'y': np.where(x > 0, 'pos', 'neg')})
    return fastml(df, label='y', algorithms=['decision_tree'], folds=3, bootstrap_ci=False, event_class='second')


def make_engine(logger, save=False, base_dir="fastml_results"):
    config = {'outputs': {'save_artifacts': save, 'base_results_dir': str(base_dir)},
              'execution': {'n_jobs': 1}, '_internal_seeds': {'explain': 5}}
    return ExplainabilityEngine(config, logger)


def test_permutation_ranks_signal_first(reg_result, mock_logger):
    out = make_engine(mock_logger).execute(reg_result, method='permutation', model_name='decision_tree (sklearn)',
                                           vi_iterations=3)
    table = out['permutation_importance']
    assert list(table.columns) == ['feature', 'importance_mean', 'importance_std', 'n_repeats']
    assert table.iloc[0]['feature'] == 'signal'
    assert 'permutation' in out['figures']


def test_tree_shap_values(reg_result, mock_logger):
    out = make_engine(mock_logger).execute(reg_result, method='shap', model_name='decision_tree (sklearn)',
                                           shap_sample=30, plot=False)
    assert out['shap_values'].shape[0] == len(out['shap_data'])
    assert set(out['shap_importance']['class']) == {'all'}
    assert out['figures'] == {}


def test_kernel_shap_fallback(reg_result, mock_logger):
    out = make_engine(mock_logger).execute(reg_result, method='shap', model_name='linear_reg (sklearn)',
                                           shap_sample=10, plot=False)
    importance = out['shap_importance']
    assert importance.iloc[0]['feature'] == 'signal'


def test_shap_per_class_for_classification(binary_result, mock_logger):
    out = make_engine(mock_logger).execute(binary_result, method='shap', shap_sample=20, plot=False)
    assert set(out['shap_importance']['class']) <= {'neg', 'pos', 'all'}


def test_pdp_and_ice_numeric_only(reg_result, mock_logger):
    out = make_engine(mock_logger).execute(reg_result, method=['pdp', 'ice'], model_name='linear_reg (sklearn)',
                                           features=['signal', 'site'], grid_size=5)
    pdp = out['partial_dependence']
    assert set(pdp['feature']) == {'signal'}
    assert len(pdp) == 5
    # linear model: partial dependence increases with the signal
    assert pdp['average'].is_monotonic_increasing
    assert {'row', 'prediction'} <= set(out['ice'].columns)
    assert {'pdp', 'ice'} <= set(out['figures'])
    mock_logger.warning.assert_called()


def test_binary_pdp_describes_event_class(binary_result, mock_logger):
    out = make_engine(mock_logger).execute(binary_result, method='pdp', features=['x'], grid_size=5, plot=False)
    pdp = out['partial_dependence']
    assert set(pdp['class']) == {binary_result.positive_class}


@pytest.mark.parametrize("kwargs, message", [
    ({'method': 'lime'}, "Unknown explanation method"),
    ({'model_name': 'svm_rbf (sklearn)'}, "Unknown model name"),
    ({'method': 'pdp', 'features': ['missing']}, "Unknown feature"),
    ({'method': 'pdp', 'features': ['site']}, "No numeric predictors"),
    ({'vi_iterations': 0}, "vi_iterations"),
])
def test_invalid_requests(reg_result, mock_logger, kwargs, message):
    with pytest.raises(ExplanationError, match=message):
        make_engine(mock_logger).execute(reg_result, **kwargs)


def test_tables_saved(reg_result, mock_logger, tmp_path):
    make_engine(mock_logger, save=True, base_dir=tmp_path).execute(
        reg_result, method='permutation', model_name='decision_tree (sklearn)', vi_iterations=2
    )
    out_dir = tmp_path / constants.EXPLANATION_DIR
    assert (out_dir / "permutation_importance_decision_tree__sklearn.parquet").exists()
    assert (out_dir / "permutation_decision_tree__sklearn.png").exists()


def test_pdp_averages_use_every_row_when_ice_is_sampled(reg_result, mock_logger):
    rng = np.random.default_rng(13)
    X = pd.DataFrame({
        'signal': rng.normal(size=500),
        'noise': rng.normal(size=500),
        'site': rng.choice(['north', 'south'], size=500),
    })
    workflow = reg_result.models['decision_tree']['sklearn']
    engine = make_engine(mock_logger)

    alone = engine.dependence(workflow, X, ['signal'], reg_result, 5, ['pdp'])
    both = engine.dependence(workflow, X, ['signal'], reg_result, 5, ['pdp', 'ice'])

    pd.testing.assert_frame_equal(alone['partial_dependence'], both['partial_dependence'])
    expected = partial_dependence(workflow, X, ['signal'], kind='average', grid_resolution=5)['average'][0]
    np.testing.assert_allclose(both['partial_dependence']['average'], expected)
    assert both['ice']['row'].nunique() == MAX_ICE_ROWS
