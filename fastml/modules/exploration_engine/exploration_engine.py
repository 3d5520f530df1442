import logging
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from scipy import stats

from fastml.modules.base.base_engine import BaseEngine
from fastml.modules.visualization import ExplorationPlotter, build_dashboard
from fastml.utils.error_handling import handle_engine_errors
from fastml.utils.exceptions import DataValidationError
from fastml.utils.file_io import save_dataframe, save_json
from fastml.utils import constants

SHAPIRO_MAX_ROWS = 5000
OUTLIER_METHODS = ["iqr", "zscore"]


class ExplorationEngine(BaseEngine):
    """
    Exploratory data analysis ahead of modeling.

    Produces summary tables (overview, numeric and categorical summaries, missing
    values, correlations, outliers, normality, label distribution), the static plot
    suite and, optionally, an interactive dashboard.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.seed = config.get('execution', {}).get('seed', 123)
        self.plotter = ExplorationPlotter(config, logger)

    def _get_engine_directory_name(self) -> str:
        return constants.EXPLORATION_DIR

    @handle_engine_errors("Exploration")
    def execute(self, data: pd.DataFrame, label: Optional[str] = None,
                visualize: Optional[List[str]] = None, sample_size: Optional[int] = None,
                interactive: bool = False, corr_threshold: float = 0.75,
                outlier_method: str = "iqr", normality_test: bool = True) -> Dict[str, Any]:
        """
        Run the analysis.

        Args:
            data: Raw DataFrame.
            label: Optional outcome column; enables the label distribution.
            visualize: Plot names (default all of EXPLORE_PLOTS); an empty list disables plots.
            sample_size: Rows sampled for plotting and normality tests.
            interactive: Also write a plotly HTML dashboard (requires saving enabled).
            corr_threshold: Absolute correlation above which pairs are reported.
            outlier_method: 'iqr' (1.5 x IQR fences) or 'zscore' (|z| > 3).
            normality_test: Run Shapiro-Wilk on numeric columns.

        Returns:
            dict of tables, a list of zero-variance columns and the matplotlib figures.
        """
        if not isinstance(data, pd.DataFrame) or data.empty:
            raise DataValidationError("data must be a non-empty pandas DataFrame.")
        if label is not None and label not in data.columns:
            raise DataValidationError(f"Label column '{label}' not found in data.")
        if outlier_method not in OUTLIER_METHODS:
            raise DataValidationError(f"Unknown outlier_method '{outlier_method}'. Available: {OUTLIER_METHODS}")
        if not 0 < corr_threshold <= 1:
            raise DataValidationError("corr_threshold must be in (0, 1].")

        self.logger.info(f"Starting exploration of {data.shape[0]} rows x {data.shape[1]} columns...")
        numeric_cols = data.select_dtypes(include=np.number).columns.tolist()
        sample = self._sample(data, sample_size)

        results: Dict[str, Any] = {
            'overview': self.overview(data),
            'numeric_summary': self.numeric_summary(data[numeric_cols]),
            'categorical_summary': self.categorical_summary(data.drop(columns=numeric_cols)),
            'missing': self.missing_values(data),
            'zero_variance': [c for c in data.columns if data[c].nunique(dropna=True) <= 1],
            'label_distribution': self.label_distribution(data[label]) if label is not None else None,
        }
        correlation, high_pairs = self.correlations(data[numeric_cols], corr_threshold)
        results['correlation'] = correlation
        results['high_correlations'] = high_pairs
        results['outliers'] = self.outliers(data[numeric_cols], outlier_method)
        results['normality'] = self.normality(sample[numeric_cols]) if normality_test else pd.DataFrame()

        if results['zero_variance']:
            self.logger.warning(f"Zero-variance columns: {results['zero_variance']}")
        if not high_pairs.empty:
            self.logger.info(f"{len(high_pairs)} column pair(s) with |r| >= {corr_threshold}.")

        plots_dir = self.output_dir / "plots" if self.save_artifacts else None
        plots = constants.EXPLORE_PLOTS if visualize is None else visualize
        results['figures'] = self.plotter.plot(sample, label=label, plots=plots, output_dir=plots_dir) if plots else {}

        results['dashboard_path'] = None
        if interactive:
            if self.save_artifacts:
                results['dashboard_path'] = build_dashboard(
                    sample, self.output_dir / "exploration_dashboard.html", label=label
                )
                self.logger.info(f"Interactive dashboard saved to {results['dashboard_path']}")
            else:
                self.logger.warning("interactive=True needs an output directory; dashboard skipped.")

        if self.save_artifacts:
            self._save_tables(results)

        self.logger.info("Exploration complete.")
        return results

    def _sample(self, data: pd.DataFrame, sample_size: Optional[int]) -> pd.DataFrame:
        if sample_size is None or sample_size >= len(data):
            return data
        if sample_size < 1:
            raise DataValidationError("sample_size must be a positive integer.")
        self.logger.info(f"Sampling {sample_size} of {len(data)} rows for plots and normality tests.")
        return data.sample(n=sample_size, random_state=self.seed)

    @staticmethod
    def overview(data: pd.DataFrame) -> Dict[str, Any]:
        return {
            'rows': int(data.shape[0]),
            'columns': int(data.shape[1]),
            'numeric_columns': int(data.select_dtypes(include=np.number).shape[1]),
            'categorical_columns': int(data.shape[1] - data.select_dtypes(include=np.number).shape[1]),
            'memory_mb': float(data.memory_usage(deep=True).sum() / 1024 ** 2),
            'duplicate_rows': int(data.duplicated().sum()),
            'dtypes': {str(c): str(t) for c, t in data.dtypes.items()},
        }

    @staticmethod
    def numeric_summary(numeric_df: pd.DataFrame) -> pd.DataFrame:
        if numeric_df.shape[1] == 0:
            return pd.DataFrame()
        summary = numeric_df.describe().T
        with warnings.catch_warnings():
            # Constant columns make skew/kurtosis undefined
            warnings.simplefilter("ignore", category=RuntimeWarning)
            summary['skewness'] = [stats.skew(numeric_df[c].dropna()) if numeric_df[c].notna().sum() > 2 else np.nan
                                   for c in numeric_df.columns]
            summary['kurtosis'] = [stats.kurtosis(numeric_df[c].dropna()) if numeric_df[c].notna().sum() > 3 else np.nan
                                   for c in numeric_df.columns]
        summary['missing'] = numeric_df.isna().sum()
        summary.index.name = 'column'
        return summary.reset_index()

    @staticmethod
    def categorical_summary(categorical_df: pd.DataFrame) -> pd.DataFrame:
        rows = []
        for col in categorical_df.columns:
            values = categorical_df[col].dropna().astype(str)
            counts = values.value_counts()
            rows.append({
                'column': col,
                'dtype': str(categorical_df[col].dtype),
                'unique': int(counts.size),
                'top': counts.index[0] if not counts.empty else None,
                'top_freq': int(counts.iloc[0]) if not counts.empty else 0,
                'top_pct': float(counts.iloc[0] / len(values) * 100) if len(values) else np.nan,
                'missing': int(categorical_df[col].isna().sum()),
            })
        return pd.DataFrame(rows)

    @staticmethod
    def missing_values(data: pd.DataFrame) -> pd.DataFrame:
        counts = data.isna().sum()
        table = pd.DataFrame({
            'column': counts.index,
            'missing': counts.values,
            'missing_pct': counts.values / len(data) * 100,
        })
        return table.sort_values('missing', ascending=False).reset_index(drop=True)

    @staticmethod
    def correlations(numeric_df: pd.DataFrame, threshold: float):
        if numeric_df.shape[1] < 2:
            return pd.DataFrame(), pd.DataFrame(columns=['var1', 'var2', 'correlation'])
        corr = numeric_df.corr()
        cols = corr.columns
        pairs = []
        for i in range(len(cols)):
            for j in range(i + 1, len(cols)):
                value = corr.iloc[i, j]
                if pd.notna(value) and abs(value) >= threshold:
                    pairs.append({'var1': cols[i], 'var2': cols[j], 'correlation': float(value)})
        high = pd.DataFrame(pairs, columns=['var1', 'var2', 'correlation'])
        if not high.empty:
            high = high.reindex(high['correlation'].abs().sort_values(ascending=False).index).reset_index(drop=True)
        return corr, high

    @staticmethod
    def outliers(numeric_df: pd.DataFrame, method: str = "iqr") -> pd.DataFrame:
        rows = []
        for col in numeric_df.columns:
            values = numeric_df[col].dropna()
            if values.empty:
                continue
            if method == 'iqr':
                q1, q3 = values.quantile([0.25, 0.75])
                iqr = q3 - q1
                lower, upper = q1 - 1.5 * iqr, q3 + 1.5 * iqr
                n_out = int(((values < lower) | (values > upper)).sum())
            else:
                std = values.std()
                lower, upper = values.mean() - 3 * std, values.mean() + 3 * std
                n_out = int((np.abs(values - values.mean()) > 3 * std).sum()) if std > 0 else 0
            rows.append({
                'column': col,
                'method': method,
                'lower_fence': float(lower),
                'upper_fence': float(upper),
                'outliers': n_out,
                'outlier_pct': n_out / len(values) * 100,
            })
        return pd.DataFrame(rows)

    def normality(self, numeric_df: pd.DataFrame) -> pd.DataFrame:
        """Shapiro-Wilk test per numeric column on at most SHAPIRO_MAX_ROWS rows."""
        rows = []
        for col in numeric_df.columns:
            values = numeric_df[col].dropna()
            if len(values) < 3 or values.nunique() < 2:
                continue
            if len(values) > SHAPIRO_MAX_ROWS:
                values = values.sample(n=SHAPIRO_MAX_ROWS, random_state=self.seed)
            statistic, p_value = stats.shapiro(values)
            rows.append({
                'column': col,
                'statistic': float(statistic),
                'p_value': float(p_value),
                'normal_at_5pct': bool(p_value > 0.05),
            })
        return pd.DataFrame(rows)

    @staticmethod
    def label_distribution(y: pd.Series) -> pd.DataFrame:
        if pd.api.types.is_numeric_dtype(y) and not pd.api.types.is_bool_dtype(y) \
                and y.nunique() > constants.MAX_INTEGER_CLASSES:
            described = y.describe()
            return pd.DataFrame({'statistic': described.index, 'value': described.values})
        counts = y.value_counts(dropna=False)
        return pd.DataFrame({
            'level': counts.index.astype(str),
            'count': counts.values,
            'pct': counts.values / len(y) * 100,
        })

    def _save_tables(self, results: Dict[str, Any]) -> None:
        save_json(results['overview'], self.output_dir / "overview.json")
        for key in ('numeric_summary', 'categorical_summary', 'missing', 'high_correlations',
                    'outliers', 'normality', 'label_distribution'):
            table = results.get(key)
            if isinstance(table, pd.DataFrame) and not table.empty:
                save_dataframe(table, self.output_dir / f"{key}.parquet", excel_copy=self.excel_copy, index=False)
        if isinstance(results.get('correlation'), pd.DataFrame) and not results['correlation'].empty:
            save_dataframe(results['correlation'], self.output_dir / "correlation.parquet",
                           excel_copy=self.excel_copy, index=True)
        self.logger.info(f"Exploration tables saved to {self.output_dir}")
