import logging
import time
import warnings
from typing import Any, Dict, List, Optional

import numpy as np
import optuna
import pandas as pd
from joblib import Parallel, delayed
from scipy import stats
from sklearn.base import clone
from sklearn.experimental import enable_halving_search_cv  # noqa: F401
from sklearn.model_selection import (
    GridSearchCV,
    HalvingGridSearchCV,
    ParameterGrid,
    RandomizedSearchCV,
    cross_val_score,
)

from fastml.modules.base.base_engine import BaseEngine
from fastml.modules.evaluation_engine.metrics import MetricScorer
from fastml.modules.model_factory import ModelFactory, regular_grid
from fastml.utils.exceptions import TuningError
from fastml.utils.file_io import save_dataframe
from fastml.utils import constants
from .resampling import build_splitter, check_stratified_folds

PREFIX = f"{constants.MODEL_STEP}__"
_PRIMITIVES = (type(None), bool, int, float, str)


def _run_single_fold(workflow, X, y, train_idx, test_idx, scorer):
    """Helper for parallel fold execution. Returns (signed score, error message or None)."""
    try:
        model = clone(workflow)
        model.fit(X.iloc[train_idx], y[train_idx])
        return scorer(model, X.iloc[test_idx], y[test_idx]), None
    except Exception as e:
        return np.nan, f"{e.__class__.__name__}: {e}"


class TuningEngine(BaseEngine):
    """
    Scores candidate configurations of one workflow by resampling and refits the winner.

    Strategies:
    - grid: exhaustive GridSearchCV (HalvingGridSearchCV when adaptive racing is enabled).
    - random: RandomizedSearchCV over distributions derived from the search space.
    - bayes: optuna TPE study, optionally stopped early after `patience` stale trials.
    - none: the default configuration is resampled and refit without a search.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.tuning_cfg = config.get('tuning', {})
        self.resampling_cfg = config.get('resampling', {})
        self.n_jobs = config.get('execution', {}).get('n_jobs', 1)
        self.max_configs = config.get('resources', {}).get('max_tuning_configs', 1000)
        seeds = config.get('_internal_seeds', {})
        self.cv_seed = seeds.get('cv')
        self.tuning_seed = seeds.get('tuning')

    def _get_engine_directory_name(self) -> str:
        return constants.TUNING_DIR

    def build_splitter(self, task: str, y: np.ndarray):
        splitter = build_splitter(
            self.resampling_cfg.get('method', 'cv'),
            self.resampling_cfg.get('folds', 5),
            self.resampling_cfg.get('repeats', 1),
            task,
            self.cv_seed,
        )
        return check_stratified_folds(splitter, y, task, self.logger)

    def resolve_space(self, task: str, algorithm: str, engine: str,
                      n_features: Optional[int] = None) -> Dict[str, Any]:
        """
        Return the search space for a model: user-supplied grids win over the default
        spaces; an empty dict means the model is not tuned.
        """
        if self.tuning_cfg.get('strategy', 'grid') == 'none' or self.resampling_cfg.get('method') == 'none':
            return {}
        user_grid = (self.tuning_cfg.get('tune_params') or {}).get(algorithm)
        if user_grid:
            filtered = ModelFactory.filter_params(task, algorithm, engine, user_grid)
            ignored = sorted(set(user_grid) - set(filtered))
            if ignored:
                self.logger.warning(f"Ignoring tune_params {ignored} not accepted by {algorithm} ({engine}).")
            return {name: {'type': 'categorical', 'choices': list(values)} for name, values in filtered.items()}
        if self.tuning_cfg.get('use_default_tuning', False):
            return ModelFactory.search_space(task, algorithm, engine, n_features)
        return {}

    def execute(self, workflow, X: pd.DataFrame, y: np.ndarray, scorer: MetricScorer,
                algorithm: str, engine: str, groups: Optional[np.ndarray] = None,
                n_features: Optional[int] = None) -> Dict[str, Any]:
        """
        Tune (or simply resample) a workflow and return the refit winner.

        Returns:
            dict with keys: estimator, best_params, cv_score, cv_std, fold_scores,
            candidates (DataFrame), strategy, n_candidates, duration_sec.
        """
        name = constants.model_key(algorithm, engine)
        task = scorer.task
        space = self.resolve_space(task, algorithm, engine, n_features)
        splitter = self.build_splitter(task, y) if self.resampling_cfg.get('method') != 'none' else None
        strategy = self.tuning_cfg.get('strategy', 'grid') if space else 'none'

        start = time.time()
        try:
            if strategy == 'none':
                outcome = self._evaluate_default(workflow, X, y, scorer, splitter, groups)
            elif strategy == 'bayes':
                outcome = self._bayes_search(workflow, X, y, scorer, splitter, groups, space)
            elif strategy == 'random':
                outcome = self._random_search(workflow, X, y, scorer, splitter, groups, space)
            else:
                outcome = self._grid_search(workflow, X, y, scorer, splitter, groups, space)
        except TuningError:
            raise
        except Exception as e:
            raise TuningError(f"Tuning failed for {name}: {e}") from e

        outcome['strategy'] = strategy
        outcome['duration_sec'] = time.time() - start
        outcome['n_candidates'] = len(outcome['candidates'])

        score_txt = f"{outcome['cv_score']:.4f}" if not np.isnan(outcome['cv_score']) else "n/a"
        self.logger.info(
            f"{name}: strategy={strategy}, candidates={outcome['n_candidates']}, "
            f"cv {scorer.metric}={score_txt} ({outcome['duration_sec']:.1f}s)"
        )
        if self.save_artifacts and not outcome['candidates'].empty:
            safe_name = f"{algorithm}__{engine}"
            save_dataframe(outcome['candidates'], self.output_dir / f"candidates_{safe_name}.parquet",
                           excel_copy=self.excel_copy, index=False)
        return outcome

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _evaluate_default(self, workflow, X, y, scorer, splitter, groups) -> Dict[str, Any]:
        fold_scores: List[float] = []
        if splitter is not None:
            splits = list(splitter.split(X, y, groups))
            results = Parallel(n_jobs=self.n_jobs)(
                delayed(_run_single_fold)(workflow, X, y, train_idx, test_idx, scorer)
                for train_idx, test_idx in splits
            )
            fold_scores = [scorer.sign * s for s, _ in results]
            errors = [err for _, err in results if err is not None]
            for fold, (_, err) in enumerate(results, start=1):
                if err is not None:
                    self.logger.debug(f"Resampling fold {fold} failed: {err}")
            if all(np.isnan(fold_scores)):
                detail = f" First error: {errors[0]}" if errors else ""
                raise TuningError(f"Every resampling fold failed to fit or score.{detail}")

        estimator = clone(workflow)
        estimator.fit(X, y)

        cv_score = float(np.nanmean(fold_scores)) if fold_scores else np.nan
        cv_std = float(np.nanstd(fold_scores)) if fold_scores else np.nan
        candidates = pd.DataFrame([{'params': '{}', 'mean_score': cv_score, 'std_score': cv_std, 'rank': 1}])
        return {
            'estimator': estimator,
            'best_params': {},
            'cv_score': cv_score,
            'cv_std': cv_std,
            'fold_scores': fold_scores,
            'candidates': candidates,
        }

    def _grid_search(self, workflow, X, y, scorer, splitter, groups, space) -> Dict[str, Any]:
        grid = self._prefixed(regular_grid(space, self.tuning_cfg.get('grid_levels', 3)))
        n_grid = len(ParameterGrid(grid))

        if n_grid > self.max_configs:
            self.logger.warning(
                f"Grid has {n_grid} candidates (> {self.max_configs}); sampling {self.max_configs} at random."
            )
            search = RandomizedSearchCV(
                workflow, grid, n_iter=self.max_configs, scoring=scorer, cv=splitter,
                n_jobs=self.n_jobs, refit=True, random_state=self.tuning_seed,
            )
            return self._fit_search(search, X, y, groups, scorer)

        if self.tuning_cfg.get('adaptive', False):
            search = HalvingGridSearchCV(
                workflow, grid, factor=3, scoring=scorer, cv=splitter,
                n_jobs=self.n_jobs, refit=True, random_state=self.tuning_seed,
            )
            try:
                return self._fit_search(search, X, y, groups, scorer)
            except Exception as e:
                self.logger.warning(f"Adaptive racing failed ({e}); running the full grid instead.")

        search = GridSearchCV(workflow, grid, scoring=scorer, cv=splitter, n_jobs=self.n_jobs, refit=True)
        return self._fit_search(search, X, y, groups, scorer)

    def _random_search(self, workflow, X, y, scorer, splitter, groups, space) -> Dict[str, Any]:
        distributions = self._prefixed({name: self._distribution(bounds) for name, bounds in space.items()})
        search = RandomizedSearchCV(
            workflow, distributions, n_iter=self.tuning_cfg.get('iterations', 10), scoring=scorer,
            cv=splitter, n_jobs=self.n_jobs, refit=True, random_state=self.tuning_seed,
        )
        return self._fit_search(search, X, y, groups, scorer)

    def _bayes_search(self, workflow, X, y, scorer, splitter, groups, space) -> Dict[str, Any]:
        optuna.logging.set_verbosity(optuna.logging.WARNING)
        fold_log: Dict[int, List[float]] = {}

        def objective(trial: optuna.Trial) -> float:
            params = {name: self._suggest(trial, name, bounds) for name, bounds in space.items()}
            candidate = clone(workflow).set_params(**self._prefixed(params))
            signed = cross_val_score(candidate, X, y, groups=groups, scoring=scorer, cv=splitter,
                                     n_jobs=self.n_jobs, error_score=np.nan)
            fold_log[trial.number] = [scorer.sign * s for s in signed]
            value = float(np.nanmean(signed)) if not np.all(np.isnan(signed)) else float('nan')
            if np.isnan(value):
                raise optuna.TrialPruned("All folds failed for this configuration.")
            trial.set_user_attr('params', params)
            return value

        study = optuna.create_study(direction='maximize', sampler=optuna.samplers.TPESampler(seed=self.tuning_seed))
        callbacks = []
        if self.tuning_cfg.get('early_stopping', False):
            callbacks.append(self._early_stopping_callback(self.tuning_cfg.get('patience', 5)))

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=UserWarning)
            study.optimize(objective, n_trials=self.tuning_cfg.get('iterations', 10), callbacks=callbacks)

        completed = [t for t in study.trials if t.state == optuna.trial.TrialState.COMPLETE]
        if not completed:
            raise TuningError("No Bayesian search trial completed successfully.")

        best = study.best_trial
        best_params = best.user_attrs['params']
        estimator = clone(workflow).set_params(**self._prefixed(best_params))
        estimator.fit(X, y)

        rows = []
        for trial in completed:
            folds = fold_log.get(trial.number, [])
            rows.append({
                'params': str(trial.user_attrs['params']),
                **{f"param_{k}": v for k, v in trial.user_attrs['params'].items()},
                'mean_score': scorer.sign * trial.value,
                'std_score': float(np.nanstd(folds)) if folds else np.nan,
                'trial': trial.number,
            })
        candidates = self._rank(pd.DataFrame(rows), scorer.metric)

        return {
            'estimator': estimator,
            'best_params': best_params,
            'cv_score': scorer.sign * best.value,
            'cv_std': float(np.nanstd(fold_log.get(best.number, [np.nan]))),
            'fold_scores': fold_log.get(best.number, []),
            'candidates': candidates,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fit_search(self, search, X, y, groups, scorer) -> Dict[str, Any]:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=UserWarning)
            search.fit(X, y, groups=groups)

        results = pd.DataFrame(search.cv_results_)
        if results['mean_test_score'].isna().all():
            raise TuningError("Every candidate configuration failed during resampling.")

        best_index = search.best_index_
        split_cols = [c for c in results.columns if c.startswith('split') and c.endswith('_test_score')]
        fold_scores = [scorer.sign * results.loc[best_index, c] for c in split_cols]
        best_params = {k[len(PREFIX):]: v for k, v in search.best_params_.items()}

        candidates = pd.DataFrame({
            'params': [str({k[len(PREFIX):]: v for k, v in p.items()}) for p in results['params']],
            'mean_score': scorer.sign * results['mean_test_score'],
            'std_score': results['std_test_score'],
        })
        for col in results.columns:
            if col.startswith(f"param_{PREFIX}"):
                candidates[f"param_{col[len('param_') + len(PREFIX):]}"] = results[col].astype(str).values
        if 'iter' in results.columns:
            candidates['race_iteration'] = results['iter'].values

        return {
            'estimator': search.best_estimator_,
            'best_params': best_params,
            'cv_score': scorer.sign * float(search.best_score_),
            'cv_std': float(results.loc[best_index, 'std_test_score']),
            'fold_scores': fold_scores,
            'candidates': self._rank(candidates, scorer.metric),
        }

    @staticmethod
    def _rank(candidates: pd.DataFrame, metric: str) -> pd.DataFrame:
        ascending = metric in constants.LOWER_IS_BETTER
        ranked = candidates.sort_values('mean_score', ascending=ascending, na_position='last').reset_index(drop=True)
        ranked['rank'] = np.arange(1, len(ranked) + 1)
        return ranked

    @staticmethod
    def _prefixed(params: Dict[str, Any]) -> Dict[str, Any]:
        return {f"{PREFIX}{k}": v for k, v in params.items()}

    @staticmethod
    def _distribution(bounds: Dict[str, Any]):
        kind = bounds['type']
        if kind == 'categorical':
            return list(bounds['choices'])
        if kind == 'int':
            return stats.randint(bounds['low'], bounds['high'] + 1)
        if bounds.get('log') and bounds['low'] > 0:
            return stats.loguniform(bounds['low'], bounds['high'])
        return stats.uniform(bounds['low'], bounds['high'] - bounds['low'])

    @staticmethod
    def _suggest(trial: "optuna.Trial", name: str, bounds: Dict[str, Any]) -> Any:
        kind = bounds['type']
        if kind == 'int':
            return trial.suggest_int(name, bounds['low'], bounds['high'])
        if kind == 'float':
            log = bool(bounds.get('log')) and bounds['low'] > 0
            return trial.suggest_float(name, bounds['low'], bounds['high'], log=log)
        choices = list(bounds['choices'])
        if all(isinstance(c, _PRIMITIVES) for c in choices):
            return trial.suggest_categorical(name, choices)
        # optuna only stores primitive choices; tuples etc. are picked by label
        labels = [str(c) for c in choices]
        return choices[labels.index(trial.suggest_categorical(name, labels))]

    @staticmethod
    def _early_stopping_callback(patience: int):
        def callback(study: "optuna.Study", trial: "optuna.trial.FrozenTrial") -> None:
            completed = [t for t in study.trials if t.state == optuna.trial.TrialState.COMPLETE]
            if not completed:
                return
            best_number = study.best_trial.number
            stale = sum(1 for t in completed if t.number > best_number)
            if stale >= patience:
                study.stop()
        return callback
