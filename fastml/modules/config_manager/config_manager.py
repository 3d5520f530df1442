import copy
import json
import os
import hashlib
import sys
import logging
import jsonschema
import psutil  # Required for memory awareness
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional
from sklearn.model_selection import ParameterGrid

from fastml.utils.exceptions import ConfigurationError
from fastml.utils import constants

PACKAGE_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
DEFAULT_CONFIG_PATH = PACKAGE_CONFIG_DIR / "default_config.json"
DEFAULT_SCHEMA_PATH = PACKAGE_CONFIG_DIR / "schema.json"


def deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``overrides`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict) and merged[key]:
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ConfigurationManager:
    """
    Manages configuration loading, validation, and access.
    Acts as the single source of truth and safety guard for a fastml run.

    A configuration is always the packaged defaults with user values merged on top,
    whether the user values come from a JSON file (CLI) or from keyword
    arguments (Python API).
    """

    # Default Resource Limits (Safety Guardrails)
    DEFAULT_MAX_TUNING_CONFIGS = 1000  # Prevent accidental combinatoric explosions

    def __init__(self, config_path: Optional[str] = None,
                 schema_path: Optional[str] = None):
        """
        Initialize the ConfigurationManager.

        Args:
            config_path (str): Path to a user configuration JSON (optional).
            schema_path (str): Path to the JSON schema definition. Defaults to the packaged schema.
        """
        self.config_path = config_path
        self.schema_path = schema_path or str(DEFAULT_SCHEMA_PATH)
        self.config: Dict[str, Any] = {}
        self.schema: Dict[str, Any] = {}
        self.run_id: Optional[str] = None
        self.logger = logging.getLogger("fastml.config_manager")

    def load_and_validate(self) -> Dict[str, Any]:
        """
        Load the user config file, merge it over the defaults and validate.

        Returns:
            Dict[str, Any]: The fully validated and hydrated configuration.

        Raises:
            ConfigurationError: If any validation step fails.
        """
        if not self.config_path:
            raise ConfigurationError("No configuration file path was provided.")
        user_config = self._load_json(self.config_path)
        return self.build(user_config)

    def build(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Main entry point. Applies defaults, validates schema/logic/resources,
        and propagates seeds.
        """
        defaults = self._load_json(str(DEFAULT_CONFIG_PATH))
        self.config = deep_merge(defaults, overrides or {})
        self.schema = self._load_json(self.schema_path)

        # 1. Structural Validation (Schema)
        self._validate_schema()

        # 2. Logical Validation (Business Rules & Bounds)
        self._validate_logic()

        # 3. Resource Validation (Prevent Exhaustion)
        self._validate_resources()

        # 4. Internal Seed Propagation (Reproducibility)
        self._propagate_seeds()

        return self.config

    def generate_run_id(self) -> str:
        """
        Generate or retrieve a unique run identifier based on timestamp.
        Used for directory naming and metadata.
        """
        if not self.run_id:
            # Format: YYYYMMDD_HHMMSS
            self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.run_id

    def save_artifacts(self, output_dir: str) -> None:
        """
        Save configuration artifacts to the run directory for full reproducibility.

        Saves:
        1. config_used.json: The exact config object in memory.
        2. config_hash.txt: SHA256 hash for versioning.
        3. run_metadata.json: Environment details (Python version, Platform, etc.).
        """
        config_dir = Path(output_dir) / constants.CONFIG_DIR
        config_dir.mkdir(parents=True, exist_ok=True)

        with open(config_dir / constants.CONFIG_USED_FILE, 'w') as f:
            json.dump(self.config, f, indent=2, default=str)

        config_str = json.dumps(self.config, sort_keys=True, default=str)
        config_hash = hashlib.sha256(config_str.encode()).hexdigest()

        with open(config_dir / constants.CONFIG_HASH_FILE, 'w') as f:
            f.write(config_hash)

        metadata = {
            'run_id': self.run_id,
            'start_time': datetime.now().isoformat(),
            'python_version': sys.version,
            'platform': sys.platform,
            'config_hash': config_hash,
            'working_directory': os.getcwd()
        }

        with open(config_dir / constants.RUN_METADATA_FILE, 'w') as f:
            json.dump(metadata, f, indent=2)

    def _load_json(self, path: str) -> Dict[str, Any]:
        """Safely load a JSON file."""
        if not os.path.exists(path):
            raise ConfigurationError(f"File not found: {path}")
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {str(e)}")

    def _validate_schema(self) -> None:
        """Validate config structure against JSON schema."""
        try:
            jsonschema.validate(instance=self.config, schema=self.schema)
        except jsonschema.ValidationError as e:
            location = ".".join(str(p) for p in e.absolute_path)
            raise ConfigurationError(f"Schema validation failed at '{location}': {e.message}")

    def _validate_logic(self) -> None:
        """Comprehensive logical validation."""
        # --- Data Section ---
        data = self.config['data']
        test_size = data.get('test_size', 0.2)
        if not (0.0 < test_size < 1.0):
            raise ConfigurationError(f"test_size must be between 0 and 1 (exclusive), got {test_size}")

        # --- Choice Sets ---
        preprocessing = self.config['preprocessing']
        self._check_choice("preprocessing.impute_method", preprocessing.get('impute_method', 'error'),
                           constants.IMPUTE_METHODS)
        self._check_choice("preprocessing.balance_method", preprocessing.get('balance_method', 'none'),
                           constants.BALANCE_METHODS)
        for scaling in preprocessing.get('scaling_methods') or []:
            self._check_choice("preprocessing.scaling_methods", scaling, constants.SCALING_METHODS)
        self._check_choice("resampling.method", self.config['resampling'].get('method', 'cv'),
                           constants.RESAMPLING_METHODS)
        self._check_choice("tuning.strategy", self.config['tuning'].get('strategy', 'grid'),
                           constants.TUNING_STRATEGIES)

        # --- Models Section ---
        models = self.config['models']
        metric = models.get('metric')
        known_metrics = constants.CLASSIFICATION_METRICS + constants.REGRESSION_METRICS
        if metric is not None and metric not in known_metrics:
            raise ConfigurationError(f"Unknown metric '{metric}'. Available: {known_metrics}")

        # --- Resampling Section ---
        resampling = self.config['resampling']
        method = resampling.get('method', 'cv')
        folds = resampling.get('folds', 5)
        if method != 'none' and folds < 2:
            raise ConfigurationError(f"folds must be >= 2, got {folds}.")
        if resampling.get('repeats', 1) < 1:
            raise ConfigurationError(f"repeats must be >= 1, got {resampling.get('repeats')}.")
        if method == 'grouped_cv' and not resampling.get('group_cols'):
            raise ConfigurationError("grouped_cv resampling requires 'group_cols'.")

        # --- Tuning Section ---
        tuning = self.config['tuning']
        iterations = tuning.get('iterations', 10)
        if iterations < 1:
            raise ConfigurationError(f"tuning iterations must be >= 1, got {iterations}.")
        tune_params = tuning.get('tune_params') or {}
        for algorithm, grid in tune_params.items():
            if not isinstance(grid, dict) or not grid:
                raise ConfigurationError(f"tune_params for '{algorithm}' must be a non-empty mapping of parameter -> values.")
            for param, values in grid.items():
                if not isinstance(values, list) or not values:
                    raise ConfigurationError(
                        f"tune_params['{algorithm}']['{param}'] must be a non-empty list of candidate values."
                    )
        if method == 'none' and tuning.get('strategy') != 'none' and (tune_params or tuning.get('use_default_tuning')):
            raise ConfigurationError("Tuning requires resampling; set resampling method to something other than 'none'.")

        # --- Evaluation Section ---
        evaluation = self.config['evaluation']
        alpha = evaluation.get('bootstrap_alpha', 0.05)
        if not (0 < alpha < 1):
            raise ConfigurationError(f"bootstrap_alpha must be in (0, 1), got {alpha}")

        # --- Execution Section ---
        n_jobs = self.config['execution'].get('n_jobs', 1)
        if n_jobs == 0 or n_jobs < -1:
            raise ConfigurationError(f"execution.n_jobs must be -1 (all cores) or a positive integer, got {n_jobs}")

    @staticmethod
    def _check_choice(key: str, value: Any, choices: List[str]) -> None:
        if value not in choices:
            raise ConfigurationError(f"Unknown {key} '{value}'. Available: {choices}")

    def _validate_resources(self) -> None:
        """
        Validate against system resources.
        Calculates total user grid size and ensures it fits within safe limits.
        """
        resources = self.config.setdefault('resources', {})
        max_configs = resources.get('max_tuning_configs', self.DEFAULT_MAX_TUNING_CONFIGS)

        # 1. Grid Explosion Check (user-supplied grids only; default grids are capped at search time)
        total_configs = 0
        for algorithm, grid in (self.config['tuning'].get('tune_params') or {}).items():
            try:
                total_configs += len(ParameterGrid(grid))
            except Exception as e:
                raise ConfigurationError(f"Invalid parameter grid for {algorithm}: {str(e)}")

        if self.config['tuning'].get('strategy') == 'grid' and total_configs > max_configs:
            raise ConfigurationError(
                f"Tuning grid explosion detected! Total configurations ({total_configs}) exceeds "
                f"safety limit ({max_configs}). Reduce tune_params or increase 'resources.max_tuning_configs'."
            )
        if total_configs:
            self.logger.info(f"Tuning grid size validated: {total_configs} combinations (Limit: {max_configs})")

        # 2. Memory Limits Check
        system_ram_mb = int(psutil.virtual_memory().total / (1024 * 1024))
        # Default safety buffer: 80% of system RAM
        safe_ram_limit = int(system_ram_mb * 0.8)
        config_max_ram = resources.get('max_memory_mb', safe_ram_limit)

        if config_max_ram > system_ram_mb:
            self.logger.warning(
                f"Configured max_memory_mb ({config_max_ram}MB) exceeds physical system RAM ({system_ram_mb}MB). "
                "This may lead to instability."
            )

        resources['max_memory_mb'] = config_max_ram
        resources['max_tuning_configs'] = max_configs

    def _propagate_seeds(self) -> None:
        """
        Propagate master seed to internal components to ensure full reproducibility.
        Uses large, non-overlapping offsets to avoid correlation between components.
        """
        master_seed = self.config['execution']['seed']

        self.config['_internal_seeds'] = {
            'split': master_seed,
            'cv': master_seed + 1000,
            'model': master_seed + 2000,
            'tuning': master_seed + 3000,
            'bootstrap': master_seed + 4000,
            'explain': master_seed + 5000,
        }
        self.logger.debug(f"Seeds propagated from master ({master_seed}): {self.config['_internal_seeds']}")
