# fastml/utils/constants.py

# --- Result Directories ---
# Sequentially numbered for proper sorting with clear, self-explanatory names

CONFIG_DIR = "01_RunConfiguration"            # Run config, metadata, seeds
DATA_DIR = "02_DataPreparation"               # Split sizes, dropped columns, class balance
TUNING_DIR = "03_HyperparameterTuning"        # Candidate tables per model
MODELS_DIR = "04_TrainedWorkflows"            # Serialized workflows + metadata
EVALUATION_DIR = "05_PerformanceMetrics"      # Test-set metrics, confusion matrices
PREDICTIONS_DIR = "06_TestPredictions"        # Per-model test predictions
PLOTS_DIR = "07_Plots"                        # plot() output
EXPLORATION_DIR = "08_Exploration"            # fastexplore() output
EXPLANATION_DIR = "09_Explanations"           # fastexplain() output
REPORTING_DIR = "10_Reports"                  # PDF reports

# --- File Names ---
CONFIG_USED_FILE = "config_used.json"
CONFIG_HASH_FILE = "config_hash.txt"
RUN_METADATA_FILE = "run_metadata.json"
RESAMPLING_FILE = "resampling_results.parquet"

# --- Tasks ---
CLASSIFICATION = "classification"
REGRESSION = "regression"
TASKS = [CLASSIFICATION, REGRESSION]

# --- Metrics ---
CLASSIFICATION_METRICS = ["accuracy", "kap", "sens", "spec", "precision", "f_meas", "roc_auc", "logloss"]
REGRESSION_METRICS = ["rmse", "rsq", "mae", "mape"]
LOWER_IS_BETTER = {"rmse", "mae", "mape", "logloss"}
PROBABILITY_METRICS = {"roc_auc", "logloss"}
DEFAULT_METRIC = {CLASSIFICATION: "accuracy", REGRESSION: "rmse"}

# --- Label-derived integer classification threshold ---
MAX_INTEGER_CLASSES = 5

# --- Workflow step names ---
RECIPE_STEP = "recipe"
MODEL_STEP = "model"

# --- Choice sets (mirrored in config/schema.json, checked by ConfigurationManager) ---
IMPUTE_METHODS = ["error", "remove", "medianImpute", "meanImpute", "knnImpute", "bagImpute", "missForest", "mice"]
SCALING_METHODS = ["center", "scale", "range"]
BALANCE_METHODS = ["none", "upsample", "downsample"]
RESAMPLING_METHODS = ["cv", "repeatedcv", "boot", "grouped_cv", "blocked_cv", "rolling_origin", "none"]
TUNING_STRATEGIES = ["grid", "random", "bayes", "none"]
EXPLORE_PLOTS = ["histogram", "boxplot", "barplot", "heatmap", "scatterplot", "missing"]
MODEL_PLOTS = ["bar", "roc", "confusion_matrix", "calibration", "residual", "learning_curve"]
EXPLAIN_METHODS = ["permutation", "shap", "pdp", "ice"]


def model_key(algorithm: str, engine: str) -> str:
    """Flat name of a fitted workflow, e.g. 'rand_forest (sklearn)'."""
    return f"{algorithm} ({engine})"
