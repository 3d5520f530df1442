import pytest
import logging
import numpy as np
import pandas as pd
from unittest.mock import MagicMock
from sklearn.compose import ColumnTransformer
from sklearn.impute import IterativeImputer, KNNImputer, SimpleImputer
from sklearn.preprocessing import MinMaxScaler, StandardScaler

from fastml.modules.preprocessing import RecipeBuilder
from fastml.utils.exceptions import ConfigurationError


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def mixed_df():
    return pd.DataFrame({
        'num': [1.0, 2.0, np.nan, 4.0, 5.0, 6.0],
        'count': [10, 20, 30, 40, 50, 60],
        'flag': [True, False, True, False, True, False],
        'color': ['red', 'blue', None, 'red', 'blue', 'red'],
    })


def numeric_steps(recipe):
    return dict(recipe.transformers[0][1].steps)


def test_split_columns(mixed_df):
    numeric, categorical = RecipeBuilder.split_columns(mixed_df)
    assert numeric == ['num', 'count']
    assert categorical == ['flag', 'color']


def test_default_recipe_transforms_to_frame(mixed_df, mock_logger):
    builder = RecipeBuilder({'preprocessing': {'impute_method': 'medianImpute'}}, mock_logger)
    recipe = builder.build(mixed_df)
    out = recipe.fit_transform(mixed_df)

    assert isinstance(out, pd.DataFrame)
    assert not out.isna().any().any()
    assert {'num', 'count', 'color_red', 'flag_True'} <= set(out.columns)
    # first level of each factor is the reference level
    assert 'color_blue' not in out.columns
    assert 'flag_False' not in out.columns
    # Centred and scaled numeric columns
    assert abs(out['count'].mean()) < 1e-9


def test_range_scaling(mixed_df, mock_logger):
    recipe = RecipeBuilder({'preprocessing': {'scaling_methods': ['range']}}, mock_logger).build(mixed_df)
    assert isinstance(numeric_steps(recipe)['range'], MinMaxScaler)


def test_center_only(mixed_df, mock_logger):
    recipe = RecipeBuilder({'preprocessing': {'scaling_methods': ['center']}}, mock_logger).build(mixed_df)
    scaler = numeric_steps(recipe)['standardize']
    assert isinstance(scaler, StandardScaler)
    assert scaler.with_mean is True
    assert scaler.with_std is False


def test_no_scaling(mixed_df, mock_logger):
    recipe = RecipeBuilder({'preprocessing': {'scaling_methods': []}}, mock_logger).build(mixed_df)
    assert list(numeric_steps(recipe)) == ['impute']


@pytest.mark.parametrize("method, expected", [
    ('medianImpute', SimpleImputer),
    ('meanImpute', SimpleImputer),
    ('knnImpute', KNNImputer),
    ('bagImpute', IterativeImputer),
    ('missForest', IterativeImputer),
    ('mice', IterativeImputer),
])
def test_imputer_choice(method, expected, mixed_df, mock_logger):
    recipe = RecipeBuilder({'preprocessing': {'impute_method': method}}, mock_logger).build(mixed_df)
    assert isinstance(numeric_steps(recipe)['impute'], expected)


def test_ordinal_encoding_when_not_one_hot(mixed_df, mock_logger):
    builder = RecipeBuilder({'preprocessing': {'encode_categoricals': False}}, mock_logger)
    out = builder.build(mixed_df).fit_transform(mixed_df)
    assert 'color' in out.columns
    assert 'color_red' not in out.columns


def test_unknown_category_at_predict_time(mixed_df, mock_logger):
    recipe = RecipeBuilder({}, mock_logger).build(mixed_df)
    recipe.fit(mixed_df)
    new = mixed_df.head(2).assign(color='purple')
    out = recipe.transform(new)
    assert (out['color_red'] == 0).all()


def test_user_recipe_is_cloned(mixed_df, mock_logger):
    user = ColumnTransformer([('scale', StandardScaler(), ['count'])])
    recipe = RecipeBuilder({}, mock_logger).build(mixed_df, recipe=user)
    assert recipe is not user
    assert isinstance(recipe, ColumnTransformer)


def test_invalid_user_recipe(mixed_df, mock_logger):
    with pytest.raises(ConfigurationError, match="recipe must be"):
        RecipeBuilder({}, mock_logger).build(mixed_df, recipe="center")


def test_dummies_are_not_collinear(mock_logger):
    df = pd.DataFrame({
        'x': np.linspace(0, 1, 12),
        'shape': ['circle', 'square', 'triangle'] * 4,
    })
    out = RecipeBuilder({}, mock_logger).build(df).fit_transform(df)
    dummies = out[[c for c in out.columns if c.startswith('shape_')]]
    assert dummies.shape[1] == 2
    design = np.column_stack([np.ones(len(out)), out.to_numpy()])
    assert np.linalg.matrix_rank(design) == design.shape[1]
