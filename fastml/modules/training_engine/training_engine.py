import gc
import logging
import time
from typing import Any, Dict, Optional

import joblib
from sklearn.pipeline import Pipeline

from fastml.modules.base.base_engine import BaseEngine
from fastml.modules.data_manager import PreparedData
from fastml.modules.evaluation_engine.metrics import MetricScorer
from fastml.modules.model_factory import ModelFactory
from fastml.modules.preprocessing import RecipeBuilder
from fastml.modules.tuning_engine import TuningEngine
from fastml.utils.error_handling import handle_engine_errors
from fastml.utils.exceptions import FastMLException, ModelTrainingError
from fastml.utils.file_io import save_json
from fastml.utils import constants


class TrainingEngine(BaseEngine):
    """
    Fits one workflow per requested (algorithm, engine) pair.

    Improvements:
    - A failing model is logged and skipped instead of aborting the run.
    - Explicit garbage collection between models (Memory Optimization).
    - Timing metrics and JSON metadata next to every serialized workflow.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.models_cfg = config.get('models', {})
        self.model_seed = config.get('_internal_seeds', {}).get('model')
        self.recipe_builder = RecipeBuilder(config, logger)
        self.tuner = TuningEngine(config, logger)

    def _get_engine_directory_name(self) -> str:
        return constants.MODELS_DIR

    @handle_engine_errors("Training", ModelTrainingError)
    def execute(self, prepared: PreparedData, scorer: MetricScorer, recipe: Optional[Any] = None) -> Dict[str, Any]:
        """
        Train, tune and refit every requested model on the training split.

        Args:
            prepared: Output of DataManager.
            scorer: Scorer for the selected metric.
            recipe: Optional user-supplied (unfitted) preprocessing transformer.

        Returns:
            dict with keys:
              models: {algorithm: {engine: fitted Pipeline}}
              outcomes: {"algorithm (engine)": tuning outcome dict}
              failures: {"algorithm (engine)": error message}
        """
        task = prepared.task
        n_classes = len(prepared.classes) if prepared.classes else None
        algorithms = ModelFactory.resolve_algorithms(task, self.models_cfg.get('algorithms', ['all']), n_classes)
        self.logger.info(f"Starting training of {len(algorithms)} algorithm(s): {algorithms}")

        n_features = prepared.X_train.shape[1]
        models: Dict[str, Dict[str, Pipeline]] = {}
        outcomes: Dict[str, Dict[str, Any]] = {}
        failures: Dict[str, str] = {}

        for algorithm in algorithms:
            engines = ModelFactory.resolve_engines(task, algorithm, self.models_cfg.get('algorithm_engines'))
            for engine in engines:
                name = constants.model_key(algorithm, engine)
                try:
                    outcome = self._train_one(prepared, scorer, algorithm, engine, recipe, n_features)
                except FastMLException as e:
                    self.logger.warning(f"Skipping {name}: {e}")
                    failures[name] = str(e)
                    continue
                except Exception as e:
                    self.logger.warning(f"Skipping {name}: {e}", exc_info=True)
                    failures[name] = str(e)
                    continue
                finally:
                    # Memory Cleanup: searches keep fold copies and candidate estimators alive
                    gc.collect()

                models.setdefault(algorithm, {})[engine] = outcome['estimator']
                outcomes[name] = outcome
                if self.save_artifacts:
                    self._save_workflow(outcome, algorithm, engine, prepared)

        if not models:
            raise ModelTrainingError(f"All models failed to train: {failures}")

        self.logger.info(f"Training complete: {len(outcomes)} workflow(s) fitted, {len(failures)} skipped.")
        return {'models': models, 'outcomes': outcomes, 'failures': failures}

    def _train_one(self, prepared: PreparedData, scorer: MetricScorer, algorithm: str, engine: str,
                   recipe: Optional[Any], n_features: int) -> Dict[str, Any]:
        estimator = ModelFactory.create(
            prepared.task, algorithm, engine, random_state=self.model_seed, n_features=n_features
        )
        workflow = Pipeline([
            (constants.RECIPE_STEP, self.recipe_builder.build(prepared.X_train, recipe)),
            (constants.MODEL_STEP, estimator),
        ])

        self.logger.info(f"Training {constants.model_key(algorithm, engine)} on {len(prepared.X_train)} samples.")
        start_time = time.time()
        outcome = self.tuner.execute(
            workflow, prepared.X_train, prepared.y_train, scorer, algorithm, engine,
            groups=prepared.groups_train, n_features=n_features,
        )
        outcome['training_time_sec'] = time.time() - start_time
        outcome['algorithm'] = algorithm
        outcome['engine'] = engine
        return outcome

    def _save_workflow(self, outcome: Dict[str, Any], algorithm: str, engine: str, prepared: PreparedData) -> None:
        stem = f"{algorithm}__{engine}"
        try:
            model_path = self.output_dir / f"{stem}.joblib"
            joblib.dump(outcome['estimator'], model_path)

            # Include exact features for reproducibility checks later
            metadata = {
                'algorithm': algorithm,
                'engine': engine,
                'task': prepared.task,
                'params': {k: str(v) for k, v in outcome.get('best_params', {}).items()},
                'features': prepared.feature_names,
                'classes': [str(c) for c in prepared.classes] if prepared.classes else None,
                'input_shape': list(prepared.X_train.shape),
                'cv_score': outcome.get('cv_score'),
                'strategy': outcome.get('strategy'),
                'training_time_sec': outcome.get('training_time_sec'),
                'timestamp': time.strftime("%Y-%m-%d %H:%M:%S"),
            }
            save_json(metadata, self.output_dir / f"{stem}_metadata.json")
            self.logger.info(f"Workflow saved to {model_path}")
        except Exception as e:
            self.logger.warning(f"Failed to save workflow artifacts for {stem}. Error: {e}")
