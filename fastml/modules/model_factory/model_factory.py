import importlib
import inspect
from typing import Dict, Any, List, Optional, Union

from sklearn.discriminant_analysis import LinearDiscriminantAnalysis, QuadraticDiscriminantAnalysis
from sklearn.ensemble import (
    BaggingClassifier,
    BaggingRegressor,
    ExtraTreesClassifier,
    ExtraTreesRegressor,
    GradientBoostingClassifier,
    GradientBoostingRegressor,
    HistGradientBoostingClassifier,
    HistGradientBoostingRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)
from sklearn.cross_decomposition import PLSRegression
from sklearn.linear_model import (
    BayesianRidge,
    ElasticNet,
    Lasso,
    LinearRegression,
    LogisticRegression,
    Ridge,
)
from sklearn.naive_bayes import GaussianNB
from sklearn.neighbors import KNeighborsClassifier, KNeighborsRegressor
from sklearn.neural_network import MLPClassifier, MLPRegressor
from sklearn.svm import SVC, SVR
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor

from fastml.utils.exceptions import ConfigurationError
from fastml.utils import constants
from .search_spaces import SEARCH_SPACES

EstimatorRef = Union[type, str]


class ModelFactory:
    """
    Factory for creating estimators from an (algorithm, engine) pair.

    Algorithms are named after the model type ('rand_forest', 'svm_rbf', ...); engines
    name the library implementation backing it. The first engine listed for an
    algorithm is its default. Third-party engines are referenced by dotted path and
    imported on first use.
    """

    CLASSIFICATION_MODELS: Dict[str, Dict[str, EstimatorRef]] = {
        'logistic_reg': {'sklearn': LogisticRegression},
        'multinom_reg': {'sklearn': LogisticRegression},
        'decision_tree': {'sklearn': DecisionTreeClassifier},
        'rand_forest': {'sklearn': RandomForestClassifier, 'extra_trees': ExtraTreesClassifier},
        'boost_tree': {'sklearn': GradientBoostingClassifier, 'hist': HistGradientBoostingClassifier},
        'xgboost': {'xgboost': 'xgboost.XGBClassifier'},
        'lightgbm': {'lightgbm': 'lightgbm.LGBMClassifier'},
        'svm_linear': {'sklearn': SVC},
        'svm_rbf': {'sklearn': SVC},
        'nearest_neighbor': {'sklearn': KNeighborsClassifier},
        'naive_Bayes': {'sklearn': GaussianNB},
        'mlp': {'sklearn': MLPClassifier},
        'discrim_linear': {'sklearn': LinearDiscriminantAnalysis},
        'discrim_quad': {'sklearn': QuadraticDiscriminantAnalysis},
        'bag_tree': {'sklearn': BaggingClassifier},
    }

    REGRESSION_MODELS: Dict[str, Dict[str, EstimatorRef]] = {
        'linear_reg': {'sklearn': LinearRegression},
        'ridge_reg': {'sklearn': Ridge},
        'lasso_reg': {'sklearn': Lasso},
        'elastic_net': {'sklearn': ElasticNet},
        'bayes_glm': {'sklearn': BayesianRidge},
        'pls': {'sklearn': PLSRegression},
        'decision_tree': {'sklearn': DecisionTreeRegressor},
        'rand_forest': {'sklearn': RandomForestRegressor, 'extra_trees': ExtraTreesRegressor},
        'boost_tree': {'sklearn': GradientBoostingRegressor, 'hist': HistGradientBoostingRegressor},
        'xgboost': {'xgboost': 'xgboost.XGBRegressor'},
        'lightgbm': {'lightgbm': 'lightgbm.LGBMRegressor'},
        'svm_linear': {'sklearn': SVR},
        'svm_rbf': {'sklearn': SVR},
        'nearest_neighbor': {'sklearn': KNeighborsRegressor},
        'mlp': {'sklearn': MLPRegressor},
        'bag_tree': {'sklearn': BaggingRegressor},
    }

    # Fixed constructor arguments that turn a generic estimator into the named algorithm
    DEFAULT_PARAMS: Dict[str, Dict[str, Dict[str, Any]]] = {
        constants.CLASSIFICATION: {
            'logistic_reg': {'max_iter': 1000},
            'multinom_reg': {'max_iter': 1000},
            'svm_linear': {'kernel': 'linear', 'probability': True},
            'svm_rbf': {'kernel': 'rbf', 'probability': True},
            'mlp': {'max_iter': 500},
            'lightgbm': {'verbose': -1},
        },
        constants.REGRESSION: {
            'svm_linear': {'kernel': 'linear'},
            'svm_rbf': {'kernel': 'rbf'},
            'mlp': {'max_iter': 500},
            'lasso_reg': {'max_iter': 5000},
            'elastic_net': {'max_iter': 5000},
            'pls': {'n_components': 2},
            'lightgbm': {'verbose': -1},
        },
    }

    # Algorithms that only make sense for one flavour of classification
    BINARY_ONLY = {'logistic_reg'}
    MULTICLASS_ONLY = {'multinom_reg'}

    @classmethod
    def registry(cls, task: str) -> Dict[str, Dict[str, EstimatorRef]]:
        if task == constants.CLASSIFICATION:
            return cls.CLASSIFICATION_MODELS
        if task == constants.REGRESSION:
            return cls.REGRESSION_MODELS
        raise ConfigurationError(f"Unknown task '{task}'. Available: {constants.TASKS}")

    @classmethod
    def get_available_models(cls, task: str, n_classes: Optional[int] = None) -> List[str]:
        """Return the algorithms valid for a task (and number of classes)."""
        algorithms = list(cls.registry(task).keys())
        if task == constants.CLASSIFICATION and n_classes is not None:
            if n_classes > 2:
                algorithms = [a for a in algorithms if a not in cls.BINARY_ONLY]
            else:
                algorithms = [a for a in algorithms if a not in cls.MULTICLASS_ONLY]
        return algorithms

    @classmethod
    def get_engines(cls, task: str, algorithm: str) -> List[str]:
        """Return the engines for an algorithm; the first is the default."""
        registry = cls.registry(task)
        if algorithm not in registry:
            raise ConfigurationError(
                f"Unknown algorithm '{algorithm}' for {task}. Available: {list(registry.keys())}"
            )
        return list(registry[algorithm].keys())

    @classmethod
    def resolve_algorithms(cls, task: str, algorithms: List[str], n_classes: Optional[int] = None) -> List[str]:
        """Expand 'all' and validate requested algorithm names against the task."""
        available = cls.get_available_models(task, n_classes)
        if not algorithms or 'all' in algorithms:
            return available

        resolved = []
        for algorithm in algorithms:
            cls.get_engines(task, algorithm)
            if algorithm not in available:
                raise ConfigurationError(
                    f"Algorithm '{algorithm}' is not applicable to this {task} problem. Available: {available}"
                )
            if algorithm not in resolved:
                resolved.append(algorithm)
        return resolved

    @classmethod
    def resolve_engines(cls, task: str, algorithm: str,
                        algorithm_engines: Optional[Dict[str, Any]] = None) -> List[str]:
        """Return the engine(s) requested for an algorithm, defaulting to its first engine."""
        engines = cls.get_engines(task, algorithm)
        requested = (algorithm_engines or {}).get(algorithm)
        if requested is None:
            return engines[:1]
        if isinstance(requested, str):
            requested = [requested]
        unknown = [e for e in requested if e not in engines]
        if unknown:
            raise ConfigurationError(f"Unknown engine(s) {unknown} for '{algorithm}'. Available: {engines}")
        return list(dict.fromkeys(requested))

    @classmethod
    def get_model_class(cls, task: str, algorithm: str, engine: str) -> type:
        cls.resolve_engines(task, algorithm, {algorithm: engine})
        ref = cls.registry(task)[algorithm][engine]
        if isinstance(ref, str):
            module_name, class_name = ref.rsplit('.', 1)
            try:
                module = importlib.import_module(module_name)
            except ImportError as e:
                raise ConfigurationError(
                    f"Engine '{engine}' for '{algorithm}' requires the '{module_name}' package: {e}"
                ) from e
            return getattr(module, class_name)
        return ref

    @classmethod
    def create(cls, task: str, algorithm: str, engine: Optional[str] = None,
               params: Optional[Dict[str, Any]] = None, random_state: Optional[int] = None,
               n_features: Optional[int] = None) -> Any:
        """
        Create and return an instantiated estimator.
        """
        engine = engine or cls.get_engines(task, algorithm)[0]
        model_class = cls.get_model_class(task, algorithm, engine)

        merged = dict(cls.DEFAULT_PARAMS.get(task, {}).get(algorithm, {}))
        merged.update(params or {})
        if random_state is not None:
            merged.setdefault('random_state', random_state)
        if n_features is not None and 'n_components' in merged:
            merged['n_components'] = max(1, min(int(merged['n_components']), n_features))

        valid_params = cls._filter_params(model_class, merged)
        return model_class(**valid_params)

    @classmethod
    def search_space(cls, task: str, algorithm: str, engine: str,
                     n_features: Optional[int] = None) -> Dict[str, Dict[str, Any]]:
        """
        Default hyperparameter search space for an (algorithm, engine) pair, restricted
        to parameters the engine's estimator accepts.
        """
        space = SEARCH_SPACES.get(task, {}).get(algorithm, {})
        model_class = cls.get_model_class(task, algorithm, engine)
        space = cls._filter_params(model_class, space)
        if n_features is not None and 'n_components' in space:
            bounded = dict(space['n_components'])
            bounded['high'] = max(1, min(bounded['high'], n_features))
            bounded['low'] = min(bounded['low'], bounded['high'])
            space = {**space, 'n_components': bounded}
        return space

    @classmethod
    def filter_params(cls, task: str, algorithm: str, engine: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Drop user parameters the engine's estimator does not accept."""
        return cls._filter_params(cls.get_model_class(task, algorithm, engine), params)

    @staticmethod
    def _filter_params(model_class, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Remove parameters from `params` that are not accepted by `model_class` constructor.
        """
        sig = inspect.signature(model_class.__init__)

        valid_keys = [
            p.name for p in sig.parameters.values()
            if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
        ]

        # Always allow **kwargs if the model supports it
        has_kwargs = any(p.kind == p.VAR_KEYWORD for p in sig.parameters.values())

        if has_kwargs:
            return dict(params)

        return {k: v for k, v in params.items() if k in valid_keys}
