import logging
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from fastml.modules.base.base_engine import BaseEngine
from fastml.modules.evaluation_engine.metrics import full_proba
from fastml.utils.error_handling import handle_engine_errors
from fastml.utils.exceptions import PredictionError
from fastml.utils.file_io import save_dataframe
from fastml.utils import constants

PREDICTION_TYPES = ["auto", "class", "prob", "numeric"]


class PredictionEngine(BaseEngine):
    """
    Generates predictions for new data from the workflows of a fitted result.
    Ensures feature consistency between training and inference.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)

    def _get_engine_directory_name(self) -> str:
        return constants.PREDICTIONS_DIR

    @handle_engine_errors("Prediction", PredictionError)
    def execute(self, result: Any, newdata: pd.DataFrame, type: str = "auto",
                model_name: Optional[Union[str, List[str]]] = None,
                postprocess_fn: Optional[Callable[[Any], Any]] = None) -> Any:
        """
        Predict with one or several fitted workflows.

        Parameters:
            result: FastMLResult.
            newdata: DataFrame holding (at least) the training predictors.
            type: 'auto', 'class', 'prob' or 'numeric'.
            model_name: None/'best' for the best model(s), 'all', one key or a list of keys
                        such as 'rand_forest (sklearn)'.
            postprocess_fn: Optional callable applied to every output.

        Returns:
            Predictions for a single model (array, or DataFrame for 'prob'), or a dict keyed
            by model name when several models are requested.
        """
        if type not in PREDICTION_TYPES:
            raise PredictionError(f"Unknown prediction type '{type}'. Available: {PREDICTION_TYPES}")
        self._check_type(result.task, type)

        X = self.prepare_features(result.feature_names, newdata)
        names = self.resolve_models(result, model_name)
        flat = result.flat_models()

        self.logger.info(f"Generating {type} predictions for {len(X)} rows with {len(names)} model(s)...")
        outputs: Dict[str, Any] = {}
        for name in names:
            try:
                output = self._predict_one(flat[name], X, result, type)
            except Exception as e:
                self.logger.error(f"Prediction failed for {name}: {e}")
                raise PredictionError(f"Prediction failed for {name}: {e}") from e
            if postprocess_fn is not None:
                output = postprocess_fn(output)
            outputs[name] = output

            if self.save_artifacts:
                frame = output if isinstance(output, pd.DataFrame) else pd.DataFrame({'prediction': np.asarray(output)})
                stem = name.replace(' (', '__').rstrip(')')
                save_dataframe(frame, self.output_dir / f"new_predictions_{stem}.parquet",
                               excel_copy=self.excel_copy, index=False)

        if len(outputs) == 1:
            return next(iter(outputs.values()))
        return outputs

    @staticmethod
    def _check_type(task: str, type: str) -> None:
        if task == constants.CLASSIFICATION and type == 'numeric':
            raise PredictionError("type='numeric' applies to regression models; use 'class' or 'prob'.")
        if task == constants.REGRESSION and type in ('class', 'prob'):
            raise PredictionError(f"type='{type}' applies to classification models; use 'numeric'.")

    def prepare_features(self, feature_names: List[str], newdata: pd.DataFrame) -> pd.DataFrame:
        """Validate `newdata` and return its predictor columns in training order."""
        if not isinstance(newdata, pd.DataFrame):
            raise PredictionError(f"newdata must be a pandas DataFrame, got {newdata.__class__.__name__}.")
        if newdata.empty:
            raise PredictionError("newdata is empty.")
        missing = [c for c in feature_names if c not in newdata.columns]
        if missing:
            raise PredictionError(f"Missing features required by the model: {missing}")
        return newdata[list(feature_names)]

    @staticmethod
    def resolve_models(result: Any, model_name: Optional[Union[str, List[str]]]) -> List[str]:
        """Translate a model selection into flat model keys."""
        available = list(result.flat_models().keys())
        if model_name is None or model_name == 'best':
            return list(result.best_model.keys())
        if model_name == 'all':
            return available
        requested = [model_name] if isinstance(model_name, str) else list(model_name)
        unknown = [n for n in requested if n not in available]
        if unknown:
            raise PredictionError(f"Unknown model name(s) {unknown}. Available: {available}")
        return requested

    @staticmethod
    def _predict_one(workflow: Any, X: pd.DataFrame, result: Any, type: str) -> Any:
        if result.task == constants.REGRESSION:
            return np.asarray(workflow.predict(X), dtype=float).ravel()

        classes = list(result.classes)
        if type == 'prob':
            if not hasattr(workflow, 'predict_proba'):
                raise PredictionError("This model does not provide class probabilities.")
            proba = full_proba(workflow, X, len(classes))
            return pd.DataFrame(proba, columns=[str(c) for c in classes], index=X.index)

        codes = np.asarray(workflow.predict(X)).astype(int)
        return np.asarray(classes, dtype=object)[codes]
