from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from fastml.utils import constants


class FastMLResult:
    """
    Everything produced by one fastml() call.

    Workflows are keyed twice: nested as ``models[algorithm][engine]`` and flat as
    ``"algorithm (engine)"`` (see ``flat_models``). Classification workflows are fitted
    on label codes ``0..K-1``; ``classes`` maps codes back to the original labels.
    """

    def __init__(self, models: Dict[str, Dict[str, Any]], performance: Dict[str, Dict[str, pd.DataFrame]],
                 predictions: Dict[str, Dict[str, pd.DataFrame]], resampling_results: pd.DataFrame,
                 tuning_results: Dict[str, pd.DataFrame], best_params: Dict[str, Dict[str, Any]],
                 best_model_name: Dict[str, Any], best_model: Dict[str, Any], task: str, label: str,
                 metric: str, feature_names: List[str], train_data: pd.DataFrame, test_data: pd.DataFrame,
                 classes: Optional[List[Any]] = None, positive_class: Any = None,
                 confusion_matrices: Optional[Dict[str, pd.DataFrame]] = None,
                 resampling_summary: Optional[pd.DataFrame] = None,
                 learning_curve: Optional[pd.DataFrame] = None,
                 failures: Optional[Dict[str, str]] = None,
                 config: Optional[Dict[str, Any]] = None, run_id: Optional[str] = None):
        self.models = models
        self.performance = performance
        self.predictions = predictions
        self.resampling_results = resampling_results
        self.tuning_results = tuning_results
        self.best_params = best_params
        self.best_model_name = best_model_name
        self.best_model = best_model
        self.task = task
        self.label = label
        self.metric = metric
        self.feature_names = feature_names
        self.train_data = train_data
        self.test_data = test_data
        self.classes = classes
        self.positive_class = positive_class
        self.confusion_matrices = confusion_matrices or {}
        self.resampling_summary = resampling_summary if resampling_summary is not None else pd.DataFrame()
        self.learning_curve = learning_curve
        self.failures = failures or {}
        self.config = config or {}
        self.run_id = run_id

    @property
    def positive_index(self) -> Optional[int]:
        if self.classes is None or self.positive_class is None:
            return None
        return list(self.classes).index(self.positive_class)

    def flat_models(self) -> Dict[str, Any]:
        return {constants.model_key(a, e): wf for a, engines in self.models.items() for e, wf in engines.items()}

    def flat_predictions(self) -> Dict[str, pd.DataFrame]:
        return {constants.model_key(a, e): df for a, engines in self.predictions.items() for e, df in engines.items()}

    def performance_table(self) -> pd.DataFrame:
        """Long table [model, algorithm, engine, metric, estimate, lower, upper]."""
        frames = []
        for algorithm, engines in self.performance.items():
            for engine, df in engines.items():
                frame = df.copy()
                frame.insert(0, 'engine', engine)
                frame.insert(0, 'algorithm', algorithm)
                frame.insert(0, 'model', constants.model_key(algorithm, engine))
                frames.append(frame)
        if not frames:
            return pd.DataFrame(columns=['model', 'algorithm', 'engine', 'metric', 'estimate', 'lower', 'upper'])
        return pd.concat(frames, ignore_index=True)

    def encode_labels(self, values) -> np.ndarray:
        """Original labels to the integer codes the workflows were fitted on."""
        if self.task != constants.CLASSIFICATION:
            return np.asarray(values, dtype=float)
        lookup = {c: i for i, c in enumerate(self.classes)}
        codes = pd.Series(values).map(lookup)
        if codes.isna().any():
            unseen = sorted(set(pd.Series(values)[codes.isna()].astype(str)))
            raise ValueError(f"Labels not seen during training: {unseen}")
        return codes.astype(int).to_numpy()

    def summary(self, **kwargs) -> pd.DataFrame:
        from fastml.api import summary
        return summary(self, **kwargs)

    def plot(self, **kwargs):
        from fastml.api import plot
        return plot(self, **kwargs)

    def predict(self, newdata: pd.DataFrame, **kwargs):
        from fastml.api import predict
        return predict(self, newdata, **kwargs)

    def explain(self, **kwargs) -> Dict[str, Any]:
        from fastml.api import fastexplain
        return fastexplain(self, **kwargs)

    def __repr__(self) -> str:
        return (f"FastMLResult(task={self.task!r}, label={self.label!r}, metric={self.metric!r}, "
                f"models={list(self.flat_models())}, best={list(self.best_model)})")
