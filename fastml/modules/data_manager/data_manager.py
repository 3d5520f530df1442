import pandas as pd
import numpy as np
import logging
from typing import Optional, List, Any, Dict
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import LabelEncoder
from sklearn.utils import resample

from fastml.utils.exceptions import DataValidationError, ConfigurationError
from fastml.utils.error_handling import handle_engine_errors
from fastml.utils.file_io import save_json
from fastml.modules.base.base_engine import BaseEngine
from fastml.utils import constants


def detect_task(y: pd.Series) -> str:
    """
    Infer the learning task from the label column.

    Categorical, string and boolean labels are classification targets. Integer labels
    with at most ``MAX_INTEGER_CLASSES`` distinct values are treated as class codes.
    Everything else numeric is regression.
    """
    if (pd.api.types.is_bool_dtype(y) or pd.api.types.is_object_dtype(y)
            or isinstance(y.dtype, pd.CategoricalDtype) or pd.api.types.is_string_dtype(y)):
        return constants.CLASSIFICATION
    if pd.api.types.is_integer_dtype(y) and y.nunique(dropna=True) <= constants.MAX_INTEGER_CLASSES:
        return constants.CLASSIFICATION
    if pd.api.types.is_numeric_dtype(y):
        return constants.REGRESSION
    raise DataValidationError(f"Cannot infer a task from label dtype '{y.dtype}'.")


class PreparedData:
    """
    Model-ready view of the user's data.

    ``train_data``/``test_data`` keep the raw predictors plus the label with original
    values; ``y_train``/``y_test`` hold integer class codes for classification.
    """

    def __init__(self, X_train: pd.DataFrame, X_test: pd.DataFrame, y_train: np.ndarray, y_test: np.ndarray,
                 train_data: pd.DataFrame, test_data: pd.DataFrame, task: str, label: str,
                 feature_names: List[str], classes: Optional[List[Any]] = None,
                 positive_class: Any = None, groups_train: Optional[np.ndarray] = None,
                 dropped_columns: Optional[Dict[str, List[str]]] = None):
        self.X_train = X_train
        self.X_test = X_test
        self.y_train = y_train
        self.y_test = y_test
        self.train_data = train_data
        self.test_data = test_data
        self.task = task
        self.label = label
        self.feature_names = feature_names
        self.classes = classes
        self.positive_class = positive_class
        self.groups_train = groups_train
        self.dropped_columns = dropped_columns or {}

    @property
    def positive_index(self) -> Optional[int]:
        if self.classes is None or self.positive_class is None:
            return None
        return self.classes.index(self.positive_class)

    @property
    def is_binary(self) -> bool:
        return self.classes is not None and len(self.classes) == 2

    def decode(self, codes: np.ndarray) -> np.ndarray:
        """Map integer class codes back to the original labels."""
        if self.classes is None:
            return np.asarray(codes)
        return np.asarray(self.classes, dtype=object)[np.asarray(codes, dtype=int)]


class DataManager(BaseEngine):
    """
    Validates user data and prepares train/test splits.

    Improvements over a bare train_test_split:
    - Label, exclusion and grouping columns are checked up front.
    - Degenerate predictors (datetime, zero variance) are dropped with a warning.
    - Stratification falls back gracefully when a class is too small.
    - Class balancing touches the training portion only.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.data_cfg = config.get('data', {})
        self.prep_cfg = config.get('preprocessing', {})
        self.seed = config.get('_internal_seeds', {}).get('split', config.get('execution', {}).get('seed', 123))

    def _get_engine_directory_name(self) -> str:
        return constants.DATA_DIR

    @handle_engine_errors("Data Preparation", DataValidationError)
    def execute(self, data: Optional[pd.DataFrame], label: str,
                train_data: Optional[pd.DataFrame] = None,
                test_data: Optional[pd.DataFrame] = None) -> PreparedData:
        """
        Validate the inputs and build the model-ready splits.

        Args:
            data: Full dataset, split internally (ignored when train_data/test_data are given).
            label: Name of the outcome column.
            train_data, test_data: Optional pre-split frames.

        Returns:
            PreparedData
        """
        self.logger.info("Starting data preparation...")
        dropped: Dict[str, List[str]] = {}

        presplit = train_data is not None or test_data is not None
        if presplit:
            if train_data is None or test_data is None:
                raise DataValidationError("Both train_data and test_data must be provided together.")
            train_df = self._validate_frame(train_data, label, "train_data")
            test_df = self._validate_frame(test_data, label, "test_data")
            full = pd.concat([train_df, test_df], axis=0)
            n_train = len(train_df)
        else:
            if data is None:
                raise DataValidationError("Either data or train_data/test_data must be provided.")
            full = self._validate_frame(data, label, "data")
            n_train = None

        # 1. Label checks
        full, n_train = self._drop_missing_labels(full, label, n_train)
        task = self._resolve_task(full[label])

        # 2. Column selection
        group_cols = self._group_columns(full)
        predictors = self._select_predictors(full, label, group_cols, dropped)

        # 3. Missing values
        full, n_train = self._handle_missing(full, predictors, n_train)

        # 4. Split
        if presplit:
            train_df, test_df = full.iloc[:n_train], full.iloc[n_train:]
        else:
            train_df, test_df = self._split(full, label, task)

        if len(train_df) == 0 or len(test_df) == 0:
            raise DataValidationError("Train/test split produced an empty partition; provide more rows.")

        # 5. Label encoding
        classes, positive_class = None, None
        if task == constants.CLASSIFICATION:
            encoder = LabelEncoder()
            encoder.fit(full[label].astype(object).values)
            classes = encoder.classes_.tolist()
            positive_class = self._positive_class(classes)
            y_train = encoder.transform(train_df[label].astype(object).values)
            y_test = encoder.transform(test_df[label].astype(object).values)
        else:
            y_train = train_df[label].astype(float).values
            y_test = test_df[label].astype(float).values

        # 6. Balancing (training data only)
        train_df, y_train = self._balance(train_df, y_train, task)

        groups_train = None
        if group_cols:
            groups_train = train_df[group_cols].astype(str).agg("|".join, axis=1).values

        prepared = PreparedData(
            X_train=train_df[predictors].reset_index(drop=True),
            X_test=test_df[predictors].reset_index(drop=True),
            y_train=y_train,
            y_test=y_test,
            train_data=train_df[predictors + [label]].reset_index(drop=True),
            test_data=test_df[predictors + [label]].reset_index(drop=True),
            task=task,
            label=label,
            feature_names=predictors,
            classes=classes,
            positive_class=positive_class,
            groups_train=groups_train,
            dropped_columns=dropped,
        )

        self.logger.info(
            f"Prepared {task} data: {len(prepared.X_train)} train rows, {len(prepared.X_test)} test rows, "
            f"{len(predictors)} predictors."
        )
        if self.save_artifacts:
            self._save_summary(prepared)
        return prepared

    def _validate_frame(self, df: Any, label: str, name: str) -> pd.DataFrame:
        if not isinstance(df, pd.DataFrame):
            raise DataValidationError(f"{name} must be a pandas DataFrame, got {type(df).__name__}.")
        if df.empty:
            raise DataValidationError(f"{name} is empty.")
        if not label:
            raise DataValidationError("A label column must be specified.")
        if label not in df.columns:
            raise DataValidationError(f"Label column '{label}' not found in {name}.")
        return df

    def _drop_missing_labels(self, full: pd.DataFrame, label: str, n_train: Optional[int]):
        missing = full[label].isna().to_numpy()
        if missing.any():
            self.logger.warning(f"Dropping {int(missing.sum())} rows with a missing label.")
            if n_train is not None:
                n_train -= int(missing[:n_train].sum())
            full = full.loc[~missing]
        if full.empty:
            raise DataValidationError("No rows left after removing missing labels.")
        return full, n_train

    def _resolve_task(self, y: pd.Series) -> str:
        requested = self.data_cfg.get('task', 'auto')
        task = detect_task(y) if requested == 'auto' else requested

        if task == constants.CLASSIFICATION and y.nunique() < 2:
            raise DataValidationError("Classification requires at least two distinct label values.")
        if task == constants.REGRESSION and (not pd.api.types.is_numeric_dtype(y) or pd.api.types.is_bool_dtype(y)):
            raise DataValidationError("Regression requires a numeric label.")

        metric = self.config.get('models', {}).get('metric')
        valid = constants.CLASSIFICATION_METRICS if task == constants.CLASSIFICATION else constants.REGRESSION_METRICS
        if metric is not None and metric not in valid:
            raise ConfigurationError(f"Metric '{metric}' is not valid for {task}. Available: {valid}")

        self.logger.info(f"Task: {task}" + (" (detected)" if requested == 'auto' else ""))
        return task

    def _group_columns(self, full: pd.DataFrame) -> List[str]:
        if self.config.get('resampling', {}).get('method') != 'grouped_cv':
            return []
        group_cols = self.config['resampling'].get('group_cols', [])
        missing = [c for c in group_cols if c not in full.columns]
        if missing:
            raise DataValidationError(f"Group columns not found in data: {missing}")
        return list(group_cols)

    def _select_predictors(self, full: pd.DataFrame, label: str, group_cols: List[str],
                           dropped: Dict[str, List[str]]) -> List[str]:
        exclude = list(self.data_cfg.get('exclude', []) or [])
        missing_exclude = [c for c in exclude if c not in full.columns]
        if missing_exclude:
            self.logger.warning(f"Excluded columns not present in data: {missing_exclude}")
        dropped['excluded'] = [c for c in exclude if c in full.columns]

        predictors = [c for c in full.columns if c != label and c not in exclude and c not in group_cols]

        datetime_cols = [c for c in predictors if pd.api.types.is_datetime64_any_dtype(full[c])]
        if datetime_cols:
            self.logger.warning(f"Dropping datetime predictors (encode them as numeric features first): {datetime_cols}")
            dropped['datetime'] = datetime_cols
            predictors = [c for c in predictors if c not in datetime_cols]

        zero_var = [c for c in predictors if full[c].nunique(dropna=True) <= 1]
        if zero_var:
            self.logger.warning(f"Dropping zero-variance predictors: {zero_var}")
            dropped['zero_variance'] = zero_var
            predictors = [c for c in predictors if c not in zero_var]

        if not predictors:
            raise DataValidationError("No predictors remain after removing the label, excluded and degenerate columns.")
        return predictors

    def _handle_missing(self, full: pd.DataFrame, predictors: List[str], n_train: Optional[int]):
        impute_method = self.prep_cfg.get('impute_method', 'error')
        incomplete = full[predictors].isna().any(axis=1).to_numpy()
        if not incomplete.any():
            return full, n_train

        n_missing = int(incomplete.sum())
        if impute_method == 'error':
            columns = full[predictors].columns[full[predictors].isna().any()].tolist()
            raise DataValidationError(
                f"Missing values found in {n_missing} rows (columns: {columns}). "
                "Set impute_method to 'remove' or an imputation method such as 'medianImpute'."
            )
        if impute_method == 'remove':
            self.logger.warning(f"Removing {n_missing} rows with missing predictor values.")
            if n_train is not None:
                n_train -= int(incomplete[:n_train].sum())
            full = full.loc[~incomplete]
            if full.empty:
                raise DataValidationError("No rows left after removing incomplete cases.")
        else:
            self.logger.info(f"{n_missing} rows with missing predictors will be imputed with '{impute_method}'.")
        return full, n_train

    def _split(self, full: pd.DataFrame, label: str, task: str):
        test_size = self.data_cfg.get('test_size', 0.2)
        stratify = None
        if task == constants.CLASSIFICATION and self.data_cfg.get('stratify', True):
            counts = full[label].value_counts()
            n_rows, n_classes = len(full), counts.size
            # train_test_split rounds the test partition up
            n_test = int(np.ceil(test_size * n_rows))
            if counts.min() < 2:
                self.logger.warning(
                    f"Class '{counts.idxmin()}' has fewer than 2 rows; falling back to an unstratified split."
                )
            elif n_test < n_classes or n_rows - n_test < n_classes:
                self.logger.warning(
                    f"A {n_test}/{n_rows - n_test} test/train split cannot hold all {n_classes} classes; "
                    "falling back to an unstratified split."
                )
            else:
                stratify = full[label].astype(str)
        train_df, test_df = train_test_split(
            full, test_size=test_size, random_state=self.seed, stratify=stratify
        )
        return train_df, test_df

    def _positive_class(self, classes: List[Any]) -> Any:
        if len(classes) != 2:
            return None
        event_class = self.data_cfg.get('event_class', 'first')
        return classes[0] if event_class == 'first' else classes[1]

    def _balance(self, train_df: pd.DataFrame, y_train: np.ndarray, task: str):
        method = self.prep_cfg.get('balance_method', 'none')
        if method == 'none':
            return train_df, y_train
        if task != constants.CLASSIFICATION:
            self.logger.warning(f"balance_method '{method}' only applies to classification; ignoring.")
            return train_df, y_train

        positions = np.arange(len(y_train))
        counts = pd.Series(y_train).value_counts()
        target = counts.max() if method == 'upsample' else counts.min()

        sampled = []
        for code in sorted(counts.index):
            members = positions[y_train == code]
            replace = len(members) < target
            sampled.append(resample(members, replace=replace, n_samples=target, random_state=self.seed))
        order = np.concatenate(sampled)

        self.logger.info(f"Balanced training classes by {method}: {counts.to_dict()} -> {target} rows each.")
        return train_df.iloc[order], y_train[order]

    def _save_summary(self, prepared: PreparedData) -> None:
        summary = {
            'task': prepared.task,
            'label': prepared.label,
            'n_train': len(prepared.X_train),
            'n_test': len(prepared.X_test),
            'features': prepared.feature_names,
            'classes': [str(c) for c in prepared.classes] if prepared.classes else None,
            'positive_class': None if prepared.positive_class is None else str(prepared.positive_class),
            'dropped_columns': prepared.dropped_columns,
        }
        save_json(summary, self.output_dir / "data_summary.json")
