import pytest
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import joblib
import numpy as np
import pandas as pd

import fastml as fm
from fastml import FastMLResult, ModelTrainingError
from fastml.utils.exceptions import ConfigurationError, DataValidationError
from fastml.utils import constants


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


@pytest.fixture(scope="module")
def iris_like():
    rng = np.random.default_rng(42)
    n = 150
    species = np.repeat(['setosa', 'versicolor', 'virginica'], n // 3)
    centers = {'setosa': 1.0, 'versicolor': 4.0, 'virginica': 6.0}
    petal = np.array([centers[s] for s in species]) + rng.normal(scale=0.4, size=n)
    return pd.DataFrame({
        'petal_length': petal,
        'petal_width': petal / 3 + rng.normal(scale=0.1, size=n),
        'sepal_length': rng.normal(5.8, 0.8, size=n),
        'species': species,
    })


@pytest.fixture(scope="module")
def iris_result(iris_like):
    return fm.fastml(iris_like, label='species', algorithms=['rand_forest', 'decision_tree'],
                     folds=3, bootstrap_samples=20, seed=7)


@pytest.fixture(scope="module")
def housing():
    rng = np.random.default_rng(3)
    n = 120
    df = pd.DataFrame({
        'rooms': rng.integers(1, 8, size=n).astype(float),
        'area': rng.normal(90, 20, size=n),
        'district': rng.choice(['old_town', 'harbour', 'hills'], size=n),
    })
    df['price'] = 20 * df['rooms'] + 2 * df['area'] + rng.normal(scale=5, size=n)
    return df


def test_fastml_classification(iris_result, iris_like):
    assert isinstance(iris_result, FastMLResult)
    assert iris_result.task == constants.CLASSIFICATION
    assert iris_result.metric == 'accuracy'
    assert iris_result.classes == ['setosa', 'versicolor', 'virginica']
    assert set(iris_result.flat_models()) == {'rand_forest (sklearn)', 'decision_tree (sklearn)'}
    assert len(iris_result.train_data) + len(iris_result.test_data) == len(iris_like)
    assert set(iris_result.best_model) <= set(iris_result.flat_models())
    assert iris_result.resampling_results['fold'].max() == 3
    assert set(iris_result.confusion_matrices) == set(iris_result.flat_models())


def test_stratified_split_keeps_class_balance(iris_result):
    counts = iris_result.test_data['species'].value_counts()
    assert counts.max() - counts.min() <= 1


def test_fastml_is_reproducible(iris_like):
    kwargs = dict(label='species', algorithms=['decision_tree'], folds=3, bootstrap_ci=False, seed=99)
    a = fm.fastml(iris_like, **kwargs)
    b = fm.fastml(iris_like, **kwargs)
    pd.testing.assert_frame_equal(a.test_data, b.test_data)
    pd.testing.assert_frame_equal(a.performance['decision_tree']['sklearn'],
                                  b.performance['decision_tree']['sklearn'])


def test_fastml_regression_with_tuning(housing):
    result = fm.fastml(housing, label='price', algorithms=['ridge_reg', 'decision_tree'],
                       tune_params={'ridge_reg': {'alpha': [0.1, 1.0]}}, folds=3, bootstrap_ci=False)
    assert result.task == constants.REGRESSION
    assert result.metric == 'rmse'
    assert result.best_params['ridge_reg (sklearn)']['alpha'] in (0.1, 1.0)
    assert result.best_params['decision_tree (sklearn)'] == {}
    assert not result.tuning_results['ridge_reg (sklearn)'].empty


def test_fastml_with_explicit_train_and_test(housing):
    result = fm.fastml(train_data=housing.iloc[:90], test_data=housing.iloc[90:], label='price',
                       algorithms='linear_reg', resampling_method='none', bootstrap_ci=False)
    assert len(result.test_data) == 30
    assert result.resampling_results.empty


def test_fastml_exclude_columns(housing):
    result = fm.fastml(housing, label='price', algorithms='linear_reg', exclude='district',
                       folds=3, bootstrap_ci=False)
    assert 'district' not in result.feature_names


def test_fastml_errors(housing):
    with pytest.raises(DataValidationError):
        fm.fastml(housing, label='missing_column', algorithms='linear_reg')
    with pytest.raises(ValueError, match="alias"):
        fm.fastml(housing, label='price', n_cores=2, n_jobs=4)
    with pytest.raises(ConfigurationError):
        fm.fastml(housing, label='price', metric='accuracy_typo')
    with pytest.raises(ValueError, match="nfolds is an alias"):
        fm.fastml(housing, label='price', folds=3, nfolds=5)
    with pytest.raises(ValueError, match="contradicts"):
        fm.fastml(housing, label='price', tune=False, tuning_strategy='grid')


def test_fastml_nfolds_alias(housing):
    result = fm.fastml(housing, label='price', algorithms='linear_reg', nfolds=4, bootstrap_ci=False)
    assert result.config['resampling']['folds'] == 4
    assert result.resampling_results['fold'].max() == 4


def test_fastml_tune_false_skips_search(housing):
    result = fm.fastml(housing, label='price', algorithms='ridge_reg', tune=False,
                       tune_params={'ridge_reg': {'alpha': [0.1, 1.0]}}, folds=3, bootstrap_ci=False)
    assert result.config['tuning']['strategy'] == 'none'
    assert result.best_params['ridge_reg (sklearn)'] == {}
    assert len(result.tuning_results['ridge_reg (sklearn)']) == 1


def test_fastml_tune_true_searches_default_space(housing):
    result = fm.fastml(housing, label='price', algorithms='decision_tree', tune=True,
                       folds=3, bootstrap_ci=False)
    assert result.config['tuning']['use_default_tuning'] is True
    assert result.best_params['decision_tree (sklearn)']
    assert len(result.tuning_results['decision_tree (sklearn)']) > 1


def test_fastml_writes_artifacts(housing, tmp_path):
    fm.fastml(housing, label='price', algorithms='linear_reg', folds=3, bootstrap_ci=False,
              save_artifacts=True, output_dir=tmp_path)
    assert (tmp_path / constants.MODELS_DIR / "linear_reg__sklearn.joblib").exists()
    assert (tmp_path / constants.EVALUATION_DIR / "performance_linear_reg__sklearn.parquet").exists()


def test_summary_and_method(iris_result, capsys):
    table = fm.summary(iris_result, algorithm='all')
    assert 'accuracy' in table.columns
    assert len(iris_result.summary(type='metrics')) == len(iris_result.best_model)
    assert "fastml model summary" in capsys.readouterr().out


def test_plot(iris_result, tmp_path):
    figures = fm.plot(iris_result, type=['bar', 'confusion_matrix', 'residual'], output_dir=tmp_path)
    assert set(figures) == {'bar', 'confusion_matrix'}
    assert (tmp_path / constants.PLOTS_DIR / "bar.png").exists()
    with pytest.raises(ConfigurationError, match="Unknown plot type"):
        fm.plot(iris_result, type='lift')


def test_predict(iris_result, iris_like):
    newdata = iris_like.drop(columns='species').head(6)
    preds = fm.predict(iris_result, newdata, model_name='decision_tree (sklearn)')
    assert len(preds) == 6
    proba = iris_result.predict(newdata, type='prob', model_name='rand_forest (sklearn)')
    assert list(proba.columns) == ['setosa', 'versicolor', 'virginica']


def test_save_and_load_model(iris_result, iris_like, tmp_path):
    path = fm.save_model(iris_result, tmp_path / "models" / "iris.joblib")
    loaded = fm.load_model(path)
    newdata = iris_like.drop(columns='species').head(4)
    original = fm.predict(iris_result, newdata, model_name='decision_tree (sklearn)')
    assert list(fm.predict(loaded, newdata, model_name='decision_tree (sklearn)')) == list(original)


def test_load_model_errors(tmp_path):
    with pytest.raises(ModelTrainingError, match="not found"):
        fm.load_model(tmp_path / "nope.joblib")
    joblib.dump({'not': 'a result'}, tmp_path / "dict.joblib")
    with pytest.raises(ModelTrainingError, match="FastMLResult"):
        fm.load_model(tmp_path / "dict.joblib")


def test_functions_reject_non_results():
    with pytest.raises(ModelTrainingError):
        fm.summary({'models': {}})
    with pytest.raises(ModelTrainingError):
        fm.predict("model", pd.DataFrame({'a': [1]}))


def test_save_report(iris_result, tmp_path):
    path = fm.save_report(iris_result, tmp_path / "report.pdf", include_plots=False)
    assert path.exists()


def test_fastexplore(iris_like, tmp_path):
    results = fm.fastexplore(iris_like, label='species', visualize=['histogram'], save_plots=True,
                             output_dir=tmp_path, generate_report=True)
    assert results['overview']['rows'] == 150
    assert set(results['figures']) == {'histogram'}
    assert results['report_path'].exists()
    assert (tmp_path / constants.EXPLORATION_DIR / "plots" / "histogram.png").exists()


def test_fastexplain(iris_result):
    out = fm.fastexplain(iris_result, method='permutation', model_name='rand_forest (sklearn)',
                         vi_iterations=2, plot=False)
    assert out['model_name'] == 'rand_forest (sklearn)'
    assert out['permutation_importance'].iloc[0]['feature'] in ('petal_length', 'petal_width')
