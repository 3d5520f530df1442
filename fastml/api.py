"""
Public entry points: fastml(), fastexplore(), fastexplain(), summary(), plot(),
predict() and model persistence.
"""
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import joblib
import pandas as pd

from fastml.modules.config_manager import ConfigurationManager, deep_merge
from fastml.modules.data_manager import DataManager
from fastml.modules.evaluation_engine import EvaluationEngine, MetricScorer
from fastml.modules.explainability_engine import ExplainabilityEngine
from fastml.modules.exploration_engine import ExplorationEngine
from fastml.modules.logging_config import LoggingConfigurator
from fastml.modules.prediction_engine import PredictionEngine
from fastml.modules.reporting_engine import ReportingEngine
from fastml.modules.training_engine import TrainingEngine
from fastml.modules.tuning_engine import TuningEngine
from fastml.modules.visualization import ModelPlotter
from fastml.result import FastMLResult
from fastml.utils.exceptions import ModelTrainingError
from fastml.utils import constants


def _as_list(value: Any) -> Optional[List[Any]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return list(value)


def _drop_none(section: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in section.items() if v is not None}


def _setup(overrides: Dict[str, Any], base: Optional[Dict[str, Any]] = None):
    """Validated configuration, its manager and the configured package logger."""
    manager = ConfigurationManager()
    user_config = deep_merge(_strip_internal(base or {}), overrides)
    config = manager.build(user_config)
    logger = LoggingConfigurator(config).setup()
    return config, manager, logger


def _strip_internal(config: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in config.items() if not k.startswith('_')}


def _output_overrides(output_dir: Optional[Union[str, Path]], save: bool) -> Dict[str, Any]:
    outputs: Dict[str, Any] = {'save_artifacts': bool(save)}
    if output_dir is not None:
        outputs['base_results_dir'] = str(output_dir)
    return {'outputs': outputs}


def fastml(data: Optional[pd.DataFrame] = None, label: Optional[str] = None,
           algorithms: Optional[Union[str, Sequence[str]]] = None, task: Optional[str] = None,
           test_size: Optional[float] = None, resampling_method: Optional[str] = None,
           folds: Optional[int] = None, nfolds: Optional[int] = None, repeats: Optional[int] = None,
           group_cols: Optional[Union[str, Sequence[str]]] = None, event_class: Optional[str] = None,
           exclude: Optional[Union[str, Sequence[str]]] = None, recipe: Any = None,
           tune_params: Optional[Dict[str, Dict[str, Sequence[Any]]]] = None, metric: Optional[str] = None,
           algorithm_engines: Optional[Dict[str, Union[str, Sequence[str]]]] = None,
           n_cores: Optional[int] = None, n_jobs: Optional[int] = None, stratify: Optional[bool] = None,
           impute_method: Optional[str] = None, encode_categoricals: Optional[bool] = None,
           scaling_methods: Optional[Sequence[str]] = None, balance_method: Optional[str] = None,
           tune: Optional[bool] = None,
           tuning_strategy: Optional[str] = None, tuning_iterations: Optional[int] = None,
           adaptive: Optional[bool] = None, early_stopping: Optional[bool] = None,
           patience: Optional[int] = None, use_default_tuning: Optional[bool] = None,
           learning_curve: Optional[bool] = None, bootstrap_ci: Optional[bool] = None,
           bootstrap_samples: Optional[int] = None, bootstrap_alpha: Optional[float] = None,
           seed: Optional[int] = None, verbose: Optional[bool] = None,
           train_data: Optional[pd.DataFrame] = None, test_data: Optional[pd.DataFrame] = None,
           save_artifacts: Optional[bool] = None, output_dir: Optional[Union[str, Path]] = None,
           config: Optional[Dict[str, Any]] = None) -> FastMLResult:
    """
    Train, tune and evaluate several algorithms in one call.

    Any argument left as None takes its value from ``config`` (if given) and then
    from the packaged defaults: 80/20 stratified split, 5-fold CV, grid strategy
    (only used when ``tune_params`` names an algorithm or ``use_default_tuning``
    is set), accuracy / rmse as metric, seed 123.

    Args:
        data: Full dataset, split internally. Alternatively pass train_data and test_data.
        label: Outcome column.
        algorithms: 'all' or a list such as ['rand_forest', 'xgboost'].
        resampling_method: cv, repeatedcv, boot, grouped_cv, blocked_cv, rolling_origin or none.
        tune_params: {algorithm: {parameter: [values]}} user grids.
        algorithm_engines: {algorithm: engine or [engines]}.
        folds: Number of resampling folds. nfolds is accepted as an alias.
        tune: False resamples each default configuration without a search. True searches the
            packaged default space for algorithms that have no tune_params grid.
        n_cores: Alias of n_jobs.
        recipe: Unfitted scikit-learn transformer replacing the default preprocessing.
        config: Configuration dictionary (same layout as the JSON config file).

    Returns:
        FastMLResult
    """
    if n_cores is not None and n_jobs is not None and n_cores != n_jobs:
        raise ValueError("n_cores is an alias of n_jobs; pass only one of them.")
    if folds is not None and nfolds is not None and folds != nfolds:
        raise ValueError("nfolds is an alias of folds; pass only one of them.")
    folds = folds if folds is not None else nfolds
    if tune is not None:
        if tuning_strategy is not None and (tuning_strategy == 'none') == tune:
            raise ValueError(f"tune={tune} contradicts tuning_strategy='{tuning_strategy}'.")
        if not tune:
            tuning_strategy = 'none'
        elif use_default_tuning is None:
            use_default_tuning = True
    overrides = {
        'data': _drop_none({
            'label': label, 'task': task, 'exclude': _as_list(exclude), 'test_size': test_size,
            'stratify': stratify, 'event_class': event_class,
        }),
        'preprocessing': _drop_none({
            'impute_method': impute_method, 'encode_categoricals': encode_categoricals,
            'scaling_methods': _as_list(scaling_methods), 'balance_method': balance_method,
        }),
        'models': _drop_none({
            'algorithms': _as_list(algorithms), 'metric': metric,
            'algorithm_engines': {k: (v if isinstance(v, str) else list(v)) for k, v in algorithm_engines.items()}
            if algorithm_engines else None,
        }),
        'resampling': _drop_none({
            'method': resampling_method, 'folds': folds, 'repeats': repeats, 'group_cols': _as_list(group_cols),
        }),
        'tuning': _drop_none({
            'strategy': tuning_strategy, 'iterations': tuning_iterations, 'adaptive': adaptive,
            'early_stopping': early_stopping, 'patience': patience, 'use_default_tuning': use_default_tuning,
            'tune_params': {a: {p: list(v) for p, v in grid.items()} for a, grid in tune_params.items()}
            if tune_params else None,
        }),
        'evaluation': _drop_none({
            'learning_curve': learning_curve, 'bootstrap_ci': bootstrap_ci,
            'bootstrap_samples': bootstrap_samples, 'bootstrap_alpha': bootstrap_alpha,
        }),
        'execution': _drop_none({'n_jobs': n_cores if n_cores is not None else n_jobs, 'seed': seed,
                                 'verbose': verbose}),
        'outputs': _drop_none({'save_artifacts': save_artifacts,
                               'base_results_dir': str(output_dir) if output_dir is not None else None}),
    }
    cfg, manager, logger = _setup(overrides, config)
    run_id = manager.generate_run_id()
    if cfg['outputs'].get('save_artifacts'):
        manager.save_artifacts(cfg['outputs']['base_results_dir'])

    label = cfg['data'].get('label')
    logger.info(f"fastml run {run_id} started (label='{label}').")

    # 1. Data
    prepared = DataManager(cfg, logger).execute(data, label, train_data=train_data, test_data=test_data)
    metric = cfg['models'].get('metric') or constants.DEFAULT_METRIC[prepared.task]
    n_classes = len(prepared.classes) if prepared.classes else None
    scorer = MetricScorer(metric, prepared.task, n_classes, prepared.positive_index)

    # 2. Training (resampling + tuning inside)
    training = TrainingEngine(cfg, logger).execute(prepared, scorer, recipe=recipe)

    # 3. Evaluation
    evaluator = EvaluationEngine(cfg, logger)
    evaluation = evaluator.execute(training['models'], prepared, metric)
    resampling = evaluator.summarize_resampling(training['outcomes'], metric, evaluation['scores'])

    flat = {constants.model_key(a, e): wf for a, engines in training['models'].items() for e, wf in engines.items()}
    best_model = {k: flat[k] for k in evaluation['best_keys']}

    curve = None
    if cfg['evaluation'].get('learning_curve'):
        best_key = evaluation['best_keys'][0]
        try:
            splitter = None
            if cfg['resampling'].get('method') != 'none':
                splitter = TuningEngine(cfg, logger).build_splitter(prepared.task, prepared.y_train)
            curve = evaluator.compute_learning_curve(flat[best_key], prepared, scorer, splitter)
        except Exception as e:
            logger.warning(f"Learning curve for {best_key} could not be computed: {e}")

    result = FastMLResult(
        models=training['models'],
        performance=evaluation['performance'],
        predictions=evaluation['predictions'],
        resampling_results=resampling['resampling'],
        tuning_results={k: o['candidates'] for k, o in training['outcomes'].items()},
        best_params={k: o['best_params'] for k, o in training['outcomes'].items()},
        best_model_name=evaluation['best_model_name'],
        best_model=best_model,
        task=prepared.task,
        label=label,
        metric=metric,
        feature_names=prepared.feature_names,
        train_data=prepared.train_data,
        test_data=prepared.test_data,
        classes=prepared.classes,
        positive_class=prepared.positive_class,
        confusion_matrices=evaluation['confusion_matrices'],
        resampling_summary=resampling['consistency'],
        learning_curve=curve,
        failures=training['failures'],
        config=cfg,
        run_id=run_id,
    )
    logger.info(f"fastml run {run_id} finished. Best model(s): {list(best_model)}")
    return result


def fastexplore(data: pd.DataFrame, label: Optional[str] = None, visualize: Optional[Sequence[str]] = None,
                save_plots: bool = False, output_dir: Optional[Union[str, Path]] = None,
                sample_size: Optional[int] = None, interactive: bool = False, corr_threshold: float = 0.75,
                outlier_method: str = "iqr", normality_test: bool = True, generate_report: bool = False,
                seed: Optional[int] = None, verbose: bool = False) -> Dict[str, Any]:
    """
    Exploratory data analysis. Tables and figures are returned; with
    ``save_plots``/``interactive``/``generate_report`` they are also written
    below ``output_dir``.
    """
    save = bool(save_plots or interactive or generate_report)
    overrides = deep_merge(_output_overrides(output_dir, save), {'execution': _drop_none({'verbose': verbose, 'seed': seed})})
    cfg, _, logger = _setup(overrides)

    engine = ExplorationEngine(cfg, logger)
    results = engine.execute(
        data, label=label, visualize=_as_list(visualize), sample_size=sample_size, interactive=interactive,
        corr_threshold=corr_threshold, outlier_method=outlier_method, normality_test=normality_test,
    )
    results['report_path'] = None
    if generate_report:
        results['report_path'] = ReportingEngine(cfg, logger).build_exploration_report(
            results, engine.output_dir / "exploration_report.pdf", label=label
        )
    return results


def fastexplain(result: FastMLResult, method: Union[str, Sequence[str]] = ("permutation", "shap"),
                model_name: Optional[str] = None, features: Optional[Sequence[str]] = None,
                vi_iterations: int = 10, shap_sample: int = 100, grid_size: int = 20, plot: bool = True,
                output_dir: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Explain a fitted model (default: the best one) with permutation importance,
    SHAP values and partial dependence / ICE curves.
    """
    _check_result(result)
    cfg, _, logger = _setup(_output_overrides(output_dir, output_dir is not None), result.config)
    return ExplainabilityEngine(cfg, logger).execute(
        result, method=_as_list(method), model_name=model_name, features=_as_list(features),
        vi_iterations=vi_iterations, shap_sample=shap_sample, grid_size=grid_size, plot=plot,
    )


def summary(result: FastMLResult, algorithm: Union[str, Sequence[str]] = "best", type: str = "all",
            sort_metric: Optional[str] = None, show_ci: bool = False) -> pd.DataFrame:
    """Print the model summary and return the comparison table."""
    _check_result(result)
    logger = logging.getLogger("fastml")
    algorithm = algorithm if isinstance(algorithm, str) else list(algorithm)
    return ReportingEngine(result.config, logger).summary(
        result, algorithm=algorithm, type=type, sort_metric=sort_metric, show_ci=show_ci
    )


def plot(result: FastMLResult, type: Union[str, Sequence[str]] = "all",
         output_dir: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Diagnostic figures (bar, roc, confusion_matrix, calibration, residual, learning_curve or all)."""
    _check_result(result)
    logger = logging.getLogger("fastml")
    plot_type = type if isinstance(type, str) else list(type)
    target = Path(output_dir) / constants.PLOTS_DIR if output_dir is not None else None
    return ModelPlotter(result.config, logger).plot(result, type=plot_type, output_dir=target)


def predict(result: FastMLResult, newdata: pd.DataFrame, type: str = "auto",
            model_name: Optional[Union[str, Sequence[str]]] = None,
            postprocess_fn: Optional[Callable[[Any], Any]] = None) -> Any:
    """Predict new data with the best (or named) model(s)."""
    _check_result(result)
    cfg = deep_merge(result.config, {'outputs': {'save_artifacts': False}})
    model_name = model_name if model_name is None or isinstance(model_name, str) else list(model_name)
    return PredictionEngine(cfg, logging.getLogger("fastml")).execute(
        result, newdata, type=type, model_name=model_name, postprocess_fn=postprocess_fn
    )


def save_model(result: FastMLResult, path: Union[str, Path]) -> Path:
    """Serialize a fitted result with joblib."""
    _check_result(result)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(result, path)
    logging.getLogger("fastml").info(f"Model saved to {path}")
    return path


def load_model(path: Union[str, Path]) -> FastMLResult:
    """Load a result written by save_model()."""
    path = Path(path)
    if not path.exists():
        raise ModelTrainingError(f"Model file not found: {path}")
    obj = joblib.load(path)
    if not isinstance(obj, FastMLResult):
        raise ModelTrainingError(f"{path} does not contain a FastMLResult (found {obj.__class__.__name__}).")
    return obj


def save_report(result: FastMLResult, path: Union[str, Path], include_plots: bool = True) -> Path:
    """Write a PDF report of a fitted result."""
    _check_result(result)
    logger = logging.getLogger("fastml")
    figures = ModelPlotter(result.config, logger).plot(result, type="all") if include_plots else None
    return ReportingEngine(result.config, logger).build_model_report(result, Path(path), figures=figures)


def _check_result(result: Any) -> None:
    if not isinstance(result, FastMLResult):
        raise ModelTrainingError(f"Expected a FastMLResult, got {result.__class__.__name__}.")
