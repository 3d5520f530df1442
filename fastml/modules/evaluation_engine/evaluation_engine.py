import logging
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix
from sklearn.model_selection import learning_curve

from fastml.modules.base.base_engine import BaseEngine
from fastml.modules.data_manager import PreparedData
from fastml.modules.evaluation_engine.cv_analysis import cv_fold_consistency, overfitting_gaps
from fastml.modules.evaluation_engine.metrics import (
    MetricScorer,
    classification_metrics,
    full_proba,
    regression_metrics,
)
from fastml.utils.error_handling import handle_engine_errors
from fastml.utils.exceptions import ModelTrainingError
from fastml.utils.file_io import save_dataframe
from fastml.utils import constants


class EvaluationEngine(BaseEngine):
    """
    Computes held-out performance for every fitted workflow.
    Includes bootstrap confidence intervals, confusion matrices, best-model
    selection (ties kept), resampling summaries and an optional learning curve.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        eval_cfg = config.get("evaluation", {})
        self.bootstrap_ci = eval_cfg.get("bootstrap_ci", True)
        self.bootstrap_samples = eval_cfg.get("bootstrap_samples", 500)
        self.bootstrap_alpha = eval_cfg.get("bootstrap_alpha", 0.05)
        self.bootstrap_seed = config.get("_internal_seeds", {}).get("bootstrap")

    def _get_engine_directory_name(self) -> str:
        return constants.EVALUATION_DIR

    @handle_engine_errors("Evaluation")
    def execute(self, models: Dict[str, Dict[str, Any]], prepared: PreparedData, metric: str) -> Dict[str, Any]:
        """
        Evaluate every workflow on the test split.

        Parameters:
            models: {algorithm: {engine: fitted workflow}}.
            prepared: Output of DataManager.
            metric: Metric used to select the best model.

        Returns:
            dict with performance, predictions, confusion_matrices, best_model_name, best_keys.
        """
        self.logger.info(f"Starting evaluation of {sum(len(e) for e in models.values())} workflow(s) on the test set...")

        performance: Dict[str, Dict[str, pd.DataFrame]] = {}
        predictions: Dict[str, Dict[str, pd.DataFrame]] = {}
        confusion: Dict[str, pd.DataFrame] = {}
        scores: Dict[str, float] = {}

        for algorithm, engines in models.items():
            for engine, workflow in engines.items():
                name = constants.model_key(algorithm, engine)
                pred_df, y_pred, proba = self.predict_test(workflow, prepared)
                perf_df = self.compute_performance(prepared, y_pred, proba)

                performance.setdefault(algorithm, {})[engine] = perf_df
                predictions.setdefault(algorithm, {})[engine] = pred_df
                scores[name] = float(perf_df.loc[perf_df['metric'] == metric, 'estimate'].iloc[0])

                if prepared.task == constants.CLASSIFICATION:
                    confusion[name] = self.confusion_table(prepared, y_pred)

                if self.save_artifacts:
                    stem = f"{algorithm}__{engine}"
                    save_dataframe(perf_df, self.output_dir / f"performance_{stem}.parquet",
                                   excel_copy=self.excel_copy, index=False)
                    save_dataframe(pred_df, self.base_dir / constants.PREDICTIONS_DIR / f"predictions_{stem}.parquet",
                                   excel_copy=self.excel_copy, index=False)
                    if name in confusion:
                        save_dataframe(confusion[name], self.output_dir / f"confusion_matrix_{stem}.parquet",
                                       excel_copy=self.excel_copy, index=True)

        best_keys = self.select_best(scores, metric)
        best_model_name: Dict[str, Any] = {}
        for key in best_keys:
            algorithm, engine = self._split_key(key, models)
            if algorithm in best_model_name:
                existing = best_model_name[algorithm]
                best_model_name[algorithm] = (existing if isinstance(existing, list) else [existing]) + [engine]
            else:
                best_model_name[algorithm] = engine

        best_txt = ", ".join(f"{k} ({metric}={scores[k]:.4f})" for k in best_keys)
        self.logger.info(f"Evaluation complete. Best model(s): {best_txt}")
        return {
            'performance': performance,
            'predictions': predictions,
            'confusion_matrices': confusion,
            'scores': scores,
            'best_keys': best_keys,
            'best_model_name': best_model_name,
        }

    def predict_test(self, workflow, prepared: PreparedData):
        """Return (prediction frame, raw predictions, class probabilities or None)."""
        X_test = prepared.X_test
        if prepared.task == constants.CLASSIFICATION:
            n_classes = len(prepared.classes)
            y_pred = np.asarray(workflow.predict(X_test)).astype(int)
            proba = full_proba(workflow, X_test, n_classes) if hasattr(workflow, 'predict_proba') else None
            pred_df = pd.DataFrame({
                'truth': prepared.decode(prepared.y_test),
                'estimate': prepared.decode(y_pred),
            })
            if proba is not None:
                for idx, cls in enumerate(prepared.classes):
                    pred_df[f"prob_{cls}"] = proba[:, idx]
            return pred_df, y_pred, proba

        y_pred = np.asarray(workflow.predict(X_test), dtype=float).ravel()
        pred_df = pd.DataFrame({'truth': prepared.y_test, 'estimate': y_pred})
        return pred_df, y_pred, None

    def compute_performance(self, prepared: PreparedData, y_pred: np.ndarray,
                            proba: Optional[np.ndarray]) -> pd.DataFrame:
        """
        Test-set metrics as a tidy frame [metric, estimate, lower, upper].
        """
        point = self._metrics(prepared, prepared.y_test, y_pred, proba)
        lower = {m: np.nan for m in point}
        upper = {m: np.nan for m in point}

        if self.bootstrap_ci and self.bootstrap_samples and self.bootstrap_samples > 0:
            boot_df = self._bootstrap_metrics(prepared, y_pred, proba)
            if not boot_df.empty:
                alpha = self.bootstrap_alpha
                for col in boot_df.columns:
                    values = boot_df[col].dropna()
                    if values.empty:
                        continue
                    lower[col] = float(values.quantile(alpha / 2))
                    upper[col] = float(values.quantile(1 - alpha / 2))

        return pd.DataFrame({
            'metric': list(point.keys()),
            'estimate': list(point.values()),
            'lower': [lower[m] for m in point],
            'upper': [upper[m] for m in point],
        })

    def _metrics(self, prepared: PreparedData, y_true, y_pred, proba) -> Dict[str, float]:
        if prepared.task == constants.CLASSIFICATION:
            return classification_metrics(y_true, y_pred, proba, len(prepared.classes), prepared.positive_index)
        return regression_metrics(y_true, y_pred)

    def _bootstrap_metrics(self, prepared: PreparedData, y_pred: np.ndarray,
                           proba: Optional[np.ndarray]) -> pd.DataFrame:
        """
        Percentile bootstrap over test rows.
        """
        y_true = np.asarray(prepared.y_test)
        n = len(y_true)
        if n == 0:
            self.logger.warning("Bootstrap skipped: empty test set.")
            return pd.DataFrame()

        rng = np.random.default_rng(self.bootstrap_seed)
        metrics_list = []
        for _ in range(self.bootstrap_samples):
            idx = rng.integers(0, n, size=n)
            sample_proba = proba[idx] if proba is not None else None
            metrics_list.append(self._metrics(prepared, y_true[idx], y_pred[idx], sample_proba))
        return pd.DataFrame(metrics_list)

    def confusion_table(self, prepared: PreparedData, y_pred: np.ndarray) -> pd.DataFrame:
        """Confusion matrix with truth in rows and predictions in columns, original labels."""
        codes = list(range(len(prepared.classes)))
        cm = confusion_matrix(prepared.y_test, y_pred, labels=codes)
        labels = [str(c) for c in prepared.classes]
        return pd.DataFrame(
            cm,
            index=pd.Index(labels, name='truth'),
            columns=pd.Index(labels, name='prediction'),
        )

    def select_best(self, scores: Dict[str, float], metric: str) -> List[str]:
        """
        Keys of the best model(s) on `metric`; every tied model is kept.
        """
        valid = {k: v for k, v in scores.items() if v is not None and not np.isnan(v)}
        if not valid:
            if not scores:
                raise ModelTrainingError("No evaluated models to choose from.")
            self.logger.warning(f"Metric '{metric}' is undefined for every model; keeping all models as best.")
            return list(scores.keys())

        values = np.array(list(valid.values()))
        target = values.min() if metric in constants.LOWER_IS_BETTER else values.max()
        return [k for k, v in valid.items() if np.isclose(v, target, rtol=1e-12, atol=1e-12)]

    @staticmethod
    def _split_key(key: str, models: Dict[str, Dict[str, Any]]):
        for algorithm, engines in models.items():
            for engine in engines:
                if constants.model_key(algorithm, engine) == key:
                    return algorithm, engine
        raise KeyError(key)

    def summarize_resampling(self, outcomes: Dict[str, Dict[str, Any]], metric: str,
                             test_scores: Optional[Dict[str, float]] = None) -> Dict[str, pd.DataFrame]:
        """
        Long-format resampling table (one row per model and fold) plus fold
        consistency and resampled-vs-test gap summaries.
        """
        rows = []
        for name, outcome in outcomes.items():
            for fold, score in enumerate(outcome.get('fold_scores') or [], start=1):
                rows.append({
                    'model': name,
                    'algorithm': outcome.get('algorithm'),
                    'engine': outcome.get('engine'),
                    'fold': fold,
                    'metric': metric,
                    'estimate': float(score),
                })
        resampling = pd.DataFrame(rows, columns=['model', 'algorithm', 'engine', 'fold', 'metric', 'estimate'])

        consistency = cv_fold_consistency(
            {name: outcome.get('fold_scores') or [] for name, outcome in outcomes.items()}, metric
        )
        gaps = pd.DataFrame()
        if test_scores:
            gaps = overfitting_gaps({n: o.get('cv_score', np.nan) for n, o in outcomes.items()}, test_scores, metric)

        if self.save_artifacts:
            if not resampling.empty:
                save_dataframe(resampling, self.output_dir / constants.RESAMPLING_FILE,
                               excel_copy=self.excel_copy, index=False)
            if not consistency.empty:
                save_dataframe(consistency, self.output_dir / "cv_fold_consistency.parquet",
                               excel_copy=self.excel_copy, index=False)
            if not gaps.empty:
                save_dataframe(gaps, self.output_dir / "overfitting_gaps.parquet",
                               excel_copy=self.excel_copy, index=False)
        return {'resampling': resampling, 'consistency': consistency, 'gaps': gaps}

    def compute_learning_curve(self, workflow, prepared: PreparedData, scorer: MetricScorer,
                               splitter=None, n_points: int = 5) -> pd.DataFrame:
        """
        Resampled score of `workflow` at increasing training-set sizes.
        """
        cv = splitter if splitter is not None else 5
        n_jobs = self.config.get('execution', {}).get('n_jobs', 1)
        sizes, train_scores, test_scores = learning_curve(
            workflow, prepared.X_train, prepared.y_train,
            groups=prepared.groups_train,
            train_sizes=np.linspace(0.2, 1.0, n_points),
            cv=cv, scoring=scorer, n_jobs=n_jobs,
            shuffle=True, random_state=self.bootstrap_seed,
            error_score=np.nan,
        )
        train_scores = scorer.sign * train_scores
        test_scores = scorer.sign * test_scores
        curve = pd.DataFrame({
            'train_size': sizes,
            'metric': scorer.metric,
            'train_mean': np.nanmean(train_scores, axis=1),
            'train_std': np.nanstd(train_scores, axis=1),
            'test_mean': np.nanmean(test_scores, axis=1),
            'test_std': np.nanstd(test_scores, axis=1),
        })
        if self.save_artifacts:
            save_dataframe(curve, self.output_dir / "learning_curve.parquet", excel_copy=self.excel_copy, index=False)
        return curve
