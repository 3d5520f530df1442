"""
Default hyperparameter search spaces.

Each parameter is described once as a range; regular grids (grid search) and
sampling distributions (random / Bayesian search) are both derived from it.

    {'type': 'int', 'low': 1, 'high': 20}
    {'type': 'float', 'low': 1e-3, 'high': 10.0, 'log': True}
    {'type': 'categorical', 'choices': [...]}
"""
from typing import Any, Dict, List

import numpy as np

from fastml.utils import constants


def _int(low: int, high: int) -> Dict[str, Any]:
    return {'type': 'int', 'low': low, 'high': high}


def _float(low: float, high: float, log: bool = False) -> Dict[str, Any]:
    return {'type': 'float', 'low': low, 'high': high, 'log': log}


def _cat(*choices: Any) -> Dict[str, Any]:
    return {'type': 'categorical', 'choices': list(choices)}


_TREE = {
    'max_depth': _int(2, 15),
    'min_samples_split': _int(2, 40),
    'ccp_alpha': _float(1e-5, 1e-1, log=True),
}
_FOREST = {
    'n_estimators': _int(100, 500),
    'max_features': _float(0.1, 1.0),
    'min_samples_leaf': _int(1, 20),
}
# Union of GradientBoosting* and HistGradientBoosting* arguments; each engine keeps its own
_BOOST = {
    'n_estimators': _int(50, 300),
    'max_iter': _int(50, 300),
    'learning_rate': _float(0.01, 0.3, log=True),
    'max_depth': _int(2, 8),
}
_XGBOOST = {
    'n_estimators': _int(50, 500),
    'max_depth': _int(2, 10),
    'learning_rate': _float(0.01, 0.3, log=True),
    'subsample': _float(0.5, 1.0),
}
_LIGHTGBM = {
    'n_estimators': _int(50, 500),
    'num_leaves': _int(15, 127),
    'learning_rate': _float(0.01, 0.3, log=True),
}
_KNN = {
    'n_neighbors': _int(3, 25),
    'weights': _cat('uniform', 'distance'),
}
_MLP = {
    'hidden_layer_sizes': _cat((50,), (100,), (50, 50)),
    'alpha': _float(1e-5, 1e-1, log=True),
    'learning_rate_init': _float(1e-4, 1e-2, log=True),
}
_BAG = {
    'n_estimators': _int(10, 100),
    'max_samples': _float(0.5, 1.0),
}

SEARCH_SPACES: Dict[str, Dict[str, Dict[str, Dict[str, Any]]]] = {
    constants.CLASSIFICATION: {
        'logistic_reg': {'C': _float(1e-3, 1e2, log=True)},
        'multinom_reg': {'C': _float(1e-3, 1e2, log=True)},
        'decision_tree': _TREE,
        'rand_forest': _FOREST,
        'boost_tree': _BOOST,
        'xgboost': _XGBOOST,
        'lightgbm': _LIGHTGBM,
        'svm_linear': {'C': _float(1e-2, 1e2, log=True)},
        'svm_rbf': {'C': _float(1e-2, 1e2, log=True), 'gamma': _float(1e-4, 1.0, log=True)},
        'nearest_neighbor': _KNN,
        'naive_Bayes': {'var_smoothing': _float(1e-11, 1e-5, log=True)},
        'mlp': _MLP,
        'discrim_linear': {},
        'discrim_quad': {'reg_param': _float(0.0, 1.0)},
        'bag_tree': _BAG,
    },
    constants.REGRESSION: {
        'linear_reg': {},
        'ridge_reg': {'alpha': _float(1e-3, 1e2, log=True)},
        'lasso_reg': {'alpha': _float(1e-4, 1e1, log=True)},
        'elastic_net': {'alpha': _float(1e-4, 1e1, log=True), 'l1_ratio': _float(0.1, 0.9)},
        'bayes_glm': {},
        'pls': {'n_components': _int(1, 5)},
        'decision_tree': _TREE,
        'rand_forest': _FOREST,
        'boost_tree': _BOOST,
        'xgboost': _XGBOOST,
        'lightgbm': _LIGHTGBM,
        'svm_linear': {'C': _float(1e-2, 1e2, log=True), 'epsilon': _float(1e-3, 1.0, log=True)},
        'svm_rbf': {'C': _float(1e-2, 1e2, log=True), 'gamma': _float(1e-4, 1.0, log=True)},
        'nearest_neighbor': _KNN,
        'mlp': _MLP,
        'bag_tree': _BAG,
    },
}


def regular_grid(space: Dict[str, Dict[str, Any]], levels: int = 3) -> Dict[str, List[Any]]:
    """
    Turn a search space into a regular grid with ``levels`` values per numeric parameter.
    Log-scaled floats are spaced geometrically; integer levels are de-duplicated.
    """
    grid: Dict[str, List[Any]] = {}
    for name, bounds in space.items():
        kind = bounds['type']
        if kind == 'categorical':
            grid[name] = list(bounds['choices'])
        elif kind == 'int':
            values = np.linspace(bounds['low'], bounds['high'], levels)
            grid[name] = sorted({int(round(v)) for v in values})
        elif kind == 'float':
            if bounds.get('log') and bounds['low'] > 0:
                values = np.geomspace(bounds['low'], bounds['high'], levels)
            else:
                values = np.linspace(bounds['low'], bounds['high'], levels)
            grid[name] = [float(v) for v in values]
        else:
            raise ValueError(f"Unknown search space type '{kind}' for parameter '{name}'")
    return grid
