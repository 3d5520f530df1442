import pytest
import json
from unittest.mock import Mock, patch

from fastml.modules.config_manager import ConfigurationManager, deep_merge
from fastml.utils.exceptions import ConfigurationError
from fastml.utils import constants


@pytest.fixture(autouse=True)
def mock_memory():
    """Pins system RAM so resource validation is deterministic."""
    with patch('fastml.modules.config_manager.config_manager.psutil.virtual_memory') as mock_vm:
        mock_vm.return_value = Mock(total=8 * (1024 ** 3))
        yield mock_vm


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "data": {"label": "y", "test_size": 0.3},
        "models": {"algorithms": ["rand_forest"]},
        "execution": {"seed": 42},
    }))
    return path


# --- deep_merge ---

def test_deep_merge_keeps_untouched_keys():
    base = {"a": {"x": 1, "y": 2}, "b": 3}
    merged = deep_merge(base, {"a": {"y": 20}})
    assert merged == {"a": {"x": 1, "y": 20}, "b": 3}
    assert base["a"]["y"] == 2


def test_deep_merge_replaces_empty_mapping():
    merged = deep_merge({"tune_params": {}}, {"tune_params": {"rand_forest": {"max_depth": [2, 4]}}})
    assert merged["tune_params"] == {"rand_forest": {"max_depth": [2, 4]}}


# --- build ---

def test_build_defaults():
    config = ConfigurationManager().build()
    assert config['data']['test_size'] == 0.2
    assert config['resampling']['method'] == 'cv'
    assert config['resampling']['folds'] == 5
    assert config['tuning']['strategy'] == 'grid'
    assert config['execution']['seed'] == 123
    assert config['outputs']['save_artifacts'] is False


def test_build_propagates_seeds():
    config = ConfigurationManager().build({"execution": {"seed": 7}})
    seeds = config['_internal_seeds']
    assert seeds['split'] == 7
    assert seeds['cv'] == 1007
    assert seeds['model'] == 2007
    assert seeds['tuning'] == 3007
    assert seeds['bootstrap'] == 4007
    assert seeds['explain'] == 5007


def test_build_sets_memory_limit():
    config = ConfigurationManager().build()
    assert config['resources']['max_memory_mb'] == int(8 * 1024 * 0.8)
    assert config['resources']['max_tuning_configs'] == 1000


def test_load_and_validate_from_file(config_file):
    config = ConfigurationManager(config_path=str(config_file)).load_and_validate()
    assert config['data']['label'] == 'y'
    assert config['data']['test_size'] == 0.3
    assert config['models']['algorithms'] == ['rand_forest']
    # Defaults survive for untouched keys
    assert config['data']['stratify'] is True
    assert config['_internal_seeds']['split'] == 42


def test_load_and_validate_requires_path():
    with pytest.raises(ConfigurationError, match="No configuration file path"):
        ConfigurationManager().load_and_validate()


def test_load_and_validate_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="File not found"):
        ConfigurationManager(config_path=str(tmp_path / "missing.json")).load_and_validate()


def test_load_and_validate_invalid_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("this is not valid json")
    with pytest.raises(ConfigurationError, match="Invalid JSON"):
        ConfigurationManager(config_path=str(path)).load_and_validate()


# --- schema & logic ---

@pytest.mark.parametrize("overrides, message", [
    ({"resampling": {"method": "loo"}}, "Schema validation failed at 'resampling.method'"),
    ({"tuning": {"strategy": "genetic"}}, "Schema validation failed"),
    ({"preprocessing": {"impute_method": "zeros"}}, "Schema validation failed"),
    ({"data": {"test_size": 1.5}}, "test_size"),
    ({"models": {"metric": "auc_pr"}}, "Unknown metric"),
    ({"resampling": {"folds": 1}}, "folds must be >= 2"),
    ({"resampling": {"method": "grouped_cv"}}, "grouped_cv resampling requires 'group_cols'"),
    ({"evaluation": {"bootstrap_alpha": 1.0}}, "bootstrap_alpha"),
    ({"execution": {"n_jobs": 0}}, "n_jobs"),
])
def test_build_rejects_invalid_settings(overrides, message):
    with pytest.raises(ConfigurationError, match=message):
        ConfigurationManager().build(overrides)


def test_tune_params_values_must_be_lists():
    with pytest.raises(ConfigurationError):
        ConfigurationManager().build({"tuning": {"tune_params": {"rand_forest": {"max_depth": 3}}}})


def test_tuning_without_resampling_is_rejected():
    overrides = {
        "resampling": {"method": "none"},
        "tuning": {"tune_params": {"rand_forest": {"max_depth": [2, 4]}}},
    }
    with pytest.raises(ConfigurationError, match="Tuning requires resampling"):
        ConfigurationManager().build(overrides)


def test_grid_explosion_detected():
    overrides = {
        "tuning": {"tune_params": {"rand_forest": {
            "max_depth": list(range(20)), "min_samples_leaf": list(range(20)),
        }}},
        "resources": {"max_tuning_configs": 100},
    }
    with pytest.raises(ConfigurationError, match="grid explosion"):
        ConfigurationManager().build(overrides)


def test_grid_size_ignored_for_random_strategy():
    overrides = {
        "tuning": {"strategy": "random", "tune_params": {"rand_forest": {
            "max_depth": list(range(20)), "min_samples_leaf": list(range(20)),
        }}},
        "resources": {"max_tuning_configs": 100},
    }
    config = ConfigurationManager().build(overrides)
    assert config['tuning']['strategy'] == 'random'


# --- artifacts ---

def test_save_artifacts(tmp_path):
    manager = ConfigurationManager()
    manager.build({"execution": {"seed": 1}})
    run_id = manager.generate_run_id()
    manager.save_artifacts(str(tmp_path))

    config_dir = tmp_path / constants.CONFIG_DIR
    saved = json.loads((config_dir / constants.CONFIG_USED_FILE).read_text())
    assert saved['execution']['seed'] == 1
    assert len((config_dir / constants.CONFIG_HASH_FILE).read_text()) == 64
    metadata = json.loads((config_dir / constants.RUN_METADATA_FILE).read_text())
    assert metadata['run_id'] == run_id


def test_run_id_is_stable():
    manager = ConfigurationManager()
    assert manager.generate_run_id() == manager.generate_run_id()


@pytest.mark.parametrize("key, value, choices", [
    ("preprocessing.impute_method", "zeroImpute", constants.IMPUTE_METHODS),
    ("preprocessing.balance_method", "smote", constants.BALANCE_METHODS),
    ("preprocessing.scaling_methods", "robust", constants.SCALING_METHODS),
    ("tuning.strategy", "hyperband", constants.TUNING_STRATEGIES),
])
def test_check_choice_rejects_unknown_values(key, value, choices):
    with pytest.raises(ConfigurationError, match=f"Unknown {key} '{value}'"):
        ConfigurationManager._check_choice(key, value, choices)


def test_defaults_are_valid_choices():
    config = ConfigurationManager().build()
    assert config['preprocessing']['impute_method'] in constants.IMPUTE_METHODS
    assert config['tuning']['strategy'] in constants.TUNING_STRATEGIES
