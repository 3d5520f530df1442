import logging
import warnings
from typing import Any, Dict, List, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import shap
from sklearn.inspection import partial_dependence, permutation_importance

from fastml.modules.base.base_engine import BaseEngine
from fastml.modules.evaluation_engine.metrics import MetricScorer
from fastml.modules.visualization import BasePlotter
from fastml.utils.error_handling import handle_engine_errors
from fastml.utils.exceptions import ExplanationError
from fastml.utils.file_io import save_dataframe
from fastml.utils import constants

MAX_PDP_FEATURES = 4
MAX_ICE_ROWS = 200
KERNEL_BACKGROUND = 50


class ExplainabilityEngine(BaseEngine):
    """
    Model explanations for a fitted workflow.

    Methods:
    - permutation: drop in the selected metric when a predictor is shuffled (test set).
    - shap: TreeExplainer on the model and recipe-transformed features, with a
      KernelExplainer fallback for non-tree models.
    - pdp / ice: partial dependence and individual conditional expectation curves
      for numeric predictors.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.seed = config.get('_internal_seeds', {}).get('explain', 0)
        self.n_jobs = config.get('execution', {}).get('n_jobs', 1)
        self.plotter = BasePlotter(config, logger)

    def _get_engine_directory_name(self) -> str:
        return constants.EXPLANATION_DIR

    @handle_engine_errors("Explanation", ExplanationError)
    def execute(self, result: Any, method: Union[str, List[str]] = ("permutation", "shap"),
                model_name: Optional[str] = None, features: Optional[List[str]] = None,
                vi_iterations: int = 10, shap_sample: int = 100, grid_size: int = 20,
                plot: bool = True) -> Dict[str, Any]:
        """
        Explain one fitted workflow of `result`.

        Returns:
            dict with the model name, one table per method and the matplotlib figures.
        """
        methods = [method] if isinstance(method, str) else list(method)
        unknown = [m for m in methods if m not in constants.EXPLAIN_METHODS]
        if unknown:
            raise ExplanationError(f"Unknown explanation method(s) {unknown}. Available: {constants.EXPLAIN_METHODS}")
        if vi_iterations < 1 or shap_sample < 1 or grid_size < 2:
            raise ExplanationError("vi_iterations and shap_sample must be >= 1 and grid_size >= 2.")

        name, workflow = self._resolve_model(result, model_name)
        feature_names = list(result.feature_names)
        if len(feature_names) < 2:
            self.logger.warning(
                f"Only {len(feature_names)} feature(s) available; ensure enough features/variation "
                "for stable explanations."
            )

        X_test = result.test_data[feature_names]
        y_test = result.encode_labels(result.test_data[result.label])
        self.logger.info(f"Explaining {name} with {methods} on {len(X_test)} test rows...")

        output: Dict[str, Any] = {'model_name': name, 'figures': {}}
        if 'permutation' in methods:
            scorer = MetricScorer(result.metric, result.task,
                                  len(result.classes) if result.classes else None, result.positive_index)
            output['permutation_importance'] = self.permutation(workflow, X_test, y_test, scorer, vi_iterations)
            if plot:
                output['figures']['permutation'] = self._bar_figure(
                    output['permutation_importance'], 'importance_mean', f"Permutation importance ({result.metric})"
                )
        if 'shap' in methods:
            shap_out = self.shap_values(workflow, result.train_data[feature_names], X_test, result, shap_sample)
            output.update(shap_out)
            if plot:
                overall = shap_out['shap_importance'].groupby('feature', sort=False)['mean_abs_shap'].mean()
                overall = overall.sort_values(ascending=False).reset_index()
                output['figures']['shap'] = self._bar_figure(overall, 'mean_abs_shap', "Mean |SHAP value|")
        if 'pdp' in methods or 'ice' in methods:
            pd_features = self._pdp_features(result, features, output.get('permutation_importance'))
            kinds = [k for k in ('pdp', 'ice') if k in methods]
            curves = self.dependence(workflow, X_test, pd_features, result, grid_size, kinds)
            output.update(curves)
            if plot:
                for kind in kinds:
                    table = curves['partial_dependence' if kind == 'pdp' else 'ice']
                    if not table.empty:
                        output['figures'][kind] = self._dependence_figure(table, kind)

        if self.save_artifacts:
            self._save_tables(output, name)
        self.logger.info(f"Explanation of {name} complete.")
        return output

    def _resolve_model(self, result: Any, model_name: Optional[str]):
        flat = result.flat_models()
        if model_name is None:
            model_name = next(iter(result.best_model))
        if model_name not in flat:
            raise ExplanationError(f"Unknown model name '{model_name}'. Available: {list(flat)}")
        return model_name, flat[model_name]

    def permutation(self, workflow, X: pd.DataFrame, y: np.ndarray, scorer: MetricScorer,
                    n_repeats: int) -> pd.DataFrame:
        """Permutation importance on held-out data; positive values mean the predictor helps."""
        try:
            perm = permutation_importance(
                workflow, X, y,
                n_repeats=n_repeats,
                scoring=scorer,
                random_state=self.seed,
                n_jobs=self.n_jobs,
            )
        except Exception as e:
            raise ExplanationError(f"Permutation importance failed: {e}") from e

        return pd.DataFrame({
            "feature": X.columns,
            "importance_mean": perm.importances_mean,
            "importance_std": perm.importances_std,
            "n_repeats": n_repeats,
        }).sort_values("importance_mean", ascending=False).reset_index(drop=True)

    def shap_values(self, workflow, X_train: pd.DataFrame, X_test: pd.DataFrame, result: Any,
                    shap_sample: int) -> Dict[str, Any]:
        """
        SHAP values of the model on recipe-transformed features.

        Returns shap_values (array), shap_data (transformed explained rows) and
        shap_importance (long table of mean |SHAP| per feature and class).
        """
        recipe = workflow.named_steps[constants.RECIPE_STEP]
        model = workflow.named_steps[constants.MODEL_STEP]
        classification = result.task == constants.CLASSIFICATION

        background = self._transformed(recipe, X_train.sample(n=min(shap_sample, len(X_train)), random_state=self.seed))
        explained = self._transformed(recipe, X_test.sample(n=min(shap_sample, len(X_test)), random_state=self.seed))

        values = None
        try:
            explainer = shap.TreeExplainer(model)
            values = explainer.shap_values(explained)
            self.logger.info("SHAP values computed with TreeExplainer.")
        except Exception as tree_error:
            self.logger.info(f"TreeExplainer not applicable ({tree_error}); using KernelExplainer.")
            columns = list(explained.columns)

            def model_fn(a):
                frame = pd.DataFrame(a, columns=columns)
                if classification:
                    return model.predict_proba(frame)
                return np.asarray(model.predict(frame), dtype=float).ravel()

            try:
                data = background
                if len(data) > KERNEL_BACKGROUND:
                    data = shap.kmeans(data, KERNEL_BACKGROUND)
                explainer = shap.KernelExplainer(model_fn, data)
                with warnings.catch_warnings():
                    warnings.simplefilter("ignore")
                    values = explainer.shap_values(explained, silent=True)
            except Exception as e:
                raise ExplanationError(f"SHAP explanation failed: {e}") from e

        if isinstance(values, list):
            # combine the per-class shap values into a single array, along an additional axis
            values = np.stack(values, axis=-1)
        values = np.asarray(values)

        rows = []
        if values.ndim == 3:
            class_labels = self._output_labels(result, values.shape[-1])
            for k, cls in enumerate(class_labels):
                mean_abs = np.abs(values[:, :, k]).mean(axis=0)
                rows.extend({'feature': f, 'class': cls, 'mean_abs_shap': float(v)}
                            for f, v in zip(explained.columns, mean_abs))
        else:
            mean_abs = np.abs(values).mean(axis=0)
            rows.extend({'feature': f, 'class': 'all', 'mean_abs_shap': float(v)}
                        for f, v in zip(explained.columns, mean_abs))
        importance = pd.DataFrame(rows).sort_values(['class', 'mean_abs_shap'], ascending=[True, False])

        return {
            'shap_values': values,
            'shap_data': explained,
            'shap_importance': importance.reset_index(drop=True),
        }

    @staticmethod
    def _transformed(recipe, X: pd.DataFrame) -> pd.DataFrame:
        out = recipe.transform(X)
        if isinstance(out, pd.DataFrame):
            return out.reset_index(drop=True)
        out = np.asarray(out)
        try:
            names = [str(n) for n in recipe.get_feature_names_out()]
        except Exception:
            names = [f"x{i}" for i in range(out.shape[1])]
        return pd.DataFrame(out, columns=names)

    @staticmethod
    def _output_labels(result: Any, n_outputs: int) -> List[str]:
        if result.classes and len(result.classes) == n_outputs:
            return [str(c) for c in result.classes]
        return [f"output_{k}" for k in range(n_outputs)]

    def _pdp_features(self, result: Any, features: Optional[List[str]],
                      importance: Optional[pd.DataFrame]) -> List[str]:
        train = result.train_data
        numeric = [f for f in result.feature_names
                   if pd.api.types.is_numeric_dtype(train[f]) and not pd.api.types.is_bool_dtype(train[f])]
        if features:
            unknown = [f for f in features if f not in result.feature_names]
            if unknown:
                raise ExplanationError(f"Unknown feature(s) {unknown}. Available: {list(result.feature_names)}")
            skipped = [f for f in features if f not in numeric]
            if skipped:
                self.logger.warning(f"Partial dependence supports numeric predictors only; skipping {skipped}.")
            selected = [f for f in features if f in numeric]
        elif importance is not None:
            selected = [f for f in importance['feature'] if f in numeric][:MAX_PDP_FEATURES]
        else:
            selected = numeric[:MAX_PDP_FEATURES]
        if not selected:
            raise ExplanationError("No numeric predictors available for partial dependence.")
        return selected

    def dependence(self, workflow, X: pd.DataFrame, features: List[str], result: Any,
                   grid_size: int, kinds: List[str]) -> Dict[str, pd.DataFrame]:
        """
        Partial dependence (average) and ICE (individual) curves as long tables.

        Averages use every row of X. ICE curves use a sample of at most
        MAX_ICE_ROWS rows, so their grid can differ slightly from the PDP grid.
        """
        want_pdp, want_ice = 'pdp' in kinds, 'ice' in kinds
        X_ice = X.sample(n=min(MAX_ICE_ROWS, len(X)), random_state=self.seed) if want_ice else None
        labels = self._dependence_labels(result)

        pdp_rows, ice_rows = [], []
        for feat in features:
            if want_pdp:
                grid, average = self._curves(workflow, X, feat, grid_size, 'average', result)
                for k, cls in enumerate(labels[:average.shape[0]]):
                    pdp_rows.extend({'feature': feat, 'class': cls, 'grid_value': float(g), 'average': float(v)}
                                    for g, v in zip(grid, average[k]))
            if want_ice:
                grid, individual = self._curves(workflow, X_ice, feat, grid_size, 'individual', result)
                for k, cls in enumerate(labels[:individual.shape[0]]):
                    for row_id, curve in enumerate(individual[k]):
                        ice_rows.extend({'feature': feat, 'class': cls, 'row': row_id,
                                         'grid_value': float(g), 'prediction': float(v)}
                                        for g, v in zip(grid, curve))

        out: Dict[str, pd.DataFrame] = {}
        if want_pdp:
            out['partial_dependence'] = pd.DataFrame(pdp_rows)
        if want_ice:
            out['ice'] = pd.DataFrame(ice_rows)
        return out

    def _curves(self, workflow, X: pd.DataFrame, feat: str, grid_size: int, kind: str, result: Any):
        try:
            curves = partial_dependence(workflow, X, [feat], kind=kind, grid_resolution=grid_size)
        except Exception as e:
            raise ExplanationError(f"Partial dependence failed for '{feat}': {e}") from e
        grid = curves['grid_values'][0] if 'grid_values' in curves else curves['values'][0]
        return grid, self._orient(np.asarray(curves[kind]), result)

    @staticmethod
    def _dependence_labels(result: Any) -> List[str]:
        if result.task != constants.CLASSIFICATION:
            return ['prediction']
        if len(result.classes) == 2:
            return [str(result.positive_class)]
        return [str(c) for c in result.classes]

    @staticmethod
    def _orient(values: np.ndarray, result: Any) -> np.ndarray:
        # Binary curves describe classes_[1]; flip them when the event class is code 0
        if result.task == constants.CLASSIFICATION and len(result.classes) == 2 and result.positive_index == 0:
            return 1.0 - values
        return values

    def _bar_figure(self, table: pd.DataFrame, column: str, title: str):
        top = table.head(20)
        fig, ax = plt.subplots(figsize=(8, 0.35 * len(top) + 1.5))
        ax.barh(top['feature'].astype(str), top[column], color='#1f77b4')
        if 'importance_std' in top.columns and column == 'importance_mean':
            ax.errorbar(top[column], top['feature'].astype(str), xerr=top['importance_std'],
                        fmt='none', ecolor='black', capsize=3)
        ax.invert_yaxis()
        ax.set_title(title)
        fig.tight_layout()
        return fig

    def _dependence_figure(self, table: pd.DataFrame, kind: str):
        features = list(dict.fromkeys(table['feature']))
        fig, axes = self.plotter._grid(len(features), ncols=2, size=(6.0, 4.0))
        value_col = 'average' if kind == 'pdp' else 'prediction'
        for ax, feat in zip(axes, features):
            sub = table[table['feature'] == feat]
            for cls, cls_df in sub.groupby('class', sort=False):
                if kind == 'ice':
                    for _, curve in cls_df.groupby('row'):
                        ax.plot(curve['grid_value'], curve[value_col], color='grey', alpha=0.15, linewidth=0.7)
                    mean_curve = cls_df.groupby('grid_value')[value_col].mean()
                    ax.plot(mean_curve.index, mean_curve.values, linewidth=2.5, label=f"{cls} (average)")
                else:
                    ax.plot(cls_df['grid_value'], cls_df[value_col], marker='o', markersize=3, label=str(cls))
            ax.set_title(feat)
            ax.set_xlabel(feat)
            ax.set_ylabel("Predicted value" if value_col == 'average' else "Prediction")
            ax.legend(fontsize=8)
        fig.suptitle("Partial dependence" if kind == 'pdp' else "Individual conditional expectation")
        fig.tight_layout()
        return fig

    def _save_tables(self, output: Dict[str, Any], name: str) -> None:
        stem = name.replace(' (', '__').rstrip(')')
        for key in ('permutation_importance', 'shap_importance', 'partial_dependence', 'ice'):
            table = output.get(key)
            if isinstance(table, pd.DataFrame) and not table.empty:
                save_dataframe(table, self.output_dir / f"{key}_{stem}.parquet", excel_copy=self.excel_copy, index=False)
        for fig_name, fig in output['figures'].items():
            self.plotter._save(fig, self.output_dir / f"{fig_name}_{stem}.png")
