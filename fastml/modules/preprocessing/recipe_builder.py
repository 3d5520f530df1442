import logging
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.base import clone
from sklearn.compose import ColumnTransformer
from sklearn.ensemble import ExtraTreesRegressor
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer, KNNImputer, SimpleImputer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import FunctionTransformer, MinMaxScaler, OneHotEncoder, OrdinalEncoder, StandardScaler

from fastml.utils.exceptions import ConfigurationError


def _as_object(X):
    """Cast categorical inputs (bool, category) to object so the imputer accepts them."""
    # None is not seen as missing by SimpleImputer
    return X.astype(object).where(pd.notna(X), np.nan)


class RecipeBuilder:
    """
    Creates the preprocessing recipe for a set of predictors.

    A user-supplied recipe is cloned and used untouched. Otherwise numeric and
    categorical columns each get an imputation -> transformation chain combined in a
    ColumnTransformer that emits pandas frames, so downstream explainers see
    readable feature names.
    """

    def __init__(self, config: Dict[str, Any], logger: logging.Logger):
        self.config = config
        self.logger = logger
        self.prep_cfg = config.get('preprocessing', {})
        self.seed = config.get('_internal_seeds', {}).get('model', 0)

    def build(self, X: pd.DataFrame, recipe: Optional[Any] = None) -> Any:
        """
        Return an unfitted recipe for the predictor frame ``X``.
        """
        if recipe is not None:
            if not (hasattr(recipe, 'fit') and hasattr(recipe, 'transform')):
                raise ConfigurationError("recipe must be an unfitted scikit-learn transformer with fit/transform.")
            self.logger.info(f"Using user-supplied recipe: {recipe.__class__.__name__}")
            return clone(recipe)

        numeric_cols, categorical_cols = self.split_columns(X)
        transformers = []
        if numeric_cols:
            transformers.append(('numeric', self._numeric_pipeline(), numeric_cols))
        if categorical_cols:
            transformers.append(('categorical', self._categorical_pipeline(), categorical_cols))

        self.logger.debug(
            f"Recipe: {len(numeric_cols)} numeric, {len(categorical_cols)} categorical predictors."
        )
        column_transformer = ColumnTransformer(
            transformers=transformers,
            remainder='drop',
            verbose_feature_names_out=False,
        )
        return column_transformer.set_output(transform="pandas")

    @staticmethod
    def split_columns(X: pd.DataFrame):
        """Partition predictors into numeric and categorical column lists."""
        numeric_cols: List[str] = []
        categorical_cols: List[str] = []
        for col in X.columns:
            if pd.api.types.is_numeric_dtype(X[col]) and not pd.api.types.is_bool_dtype(X[col]):
                numeric_cols.append(col)
            else:
                categorical_cols.append(col)
        return numeric_cols, categorical_cols

    def _numeric_pipeline(self) -> Pipeline:
        steps = [('impute', self._numeric_imputer())]

        methods = set(self.prep_cfg.get('scaling_methods', ['center', 'scale']) or [])
        if 'range' in methods:
            steps.append(('range', MinMaxScaler()))
        elif methods & {'center', 'scale'}:
            steps.append(('standardize', StandardScaler(with_mean='center' in methods, with_std='scale' in methods)))
        return Pipeline(steps)

    def _numeric_imputer(self):
        method = self.prep_cfg.get('impute_method', 'error')
        if method == 'meanImpute':
            return SimpleImputer(strategy='mean')
        if method == 'knnImpute':
            return KNNImputer(n_neighbors=self.prep_cfg.get('knn_neighbors', 5))
        if method in ('bagImpute', 'missForest'):
            return IterativeImputer(
                estimator=ExtraTreesRegressor(n_estimators=25, random_state=self.seed),
                max_iter=10,
                random_state=self.seed,
            )
        if method == 'mice':
            return IterativeImputer(sample_posterior=True, max_iter=10, random_state=self.seed)
        # medianImpute, and a guard for NaNs that only show up in new data
        return SimpleImputer(strategy='median')

    def _categorical_pipeline(self) -> Pipeline:
        steps = [
            ('as_object', FunctionTransformer(_as_object, feature_names_out='one-to-one')),
            ('impute', SimpleImputer(strategy='most_frequent')),
        ]
        if self.prep_cfg.get('encode_categoricals', True):
            # K-1 dummies per factor keep the design matrix full rank
            steps.append(('encode', OneHotEncoder(drop='first', handle_unknown='ignore', sparse_output=False)))
        else:
            steps.append(('encode', OrdinalEncoder(handle_unknown='use_encoded_value', unknown_value=-1)))
        return Pipeline(steps)
