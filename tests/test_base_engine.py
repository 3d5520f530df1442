import pytest
from unittest.mock import Mock
from fastml.modules.base.base_engine import BaseEngine

# Concrete implementation for testing purposes
class ConcreteTestEngine(BaseEngine):
    def __init__(self, config, logger, engine_dir_name):
        self._engine_dir_name_value = engine_dir_name
        super().__init__(config, logger)

    def _get_engine_directory_name(self) -> str:
        return self._engine_dir_name_value

    def execute(self, *args, **kwargs):
        pass # Not relevant for BaseEngine tests

@pytest.fixture
def mock_logger():
    """Provides a mock logger instance."""
    return Mock()

@pytest.fixture
def base_config(tmp_path):
    """Provides a base configuration dictionary with a temporary results directory."""
    return {
        'outputs': {
            'base_results_dir': str(tmp_path),
            'save_artifacts': True,
        }
    }

def test_base_engine_directory_creation(base_config, mock_logger, tmp_path):
    """
    Tests that BaseEngine creates its output directory when saving is enabled.
    """
    engine = ConcreteTestEngine(base_config, mock_logger, "05_PerformanceMetrics")

    expected_dir = tmp_path / "05_PerformanceMetrics"
    assert engine.output_dir == expected_dir
    assert expected_dir.is_dir()
    mock_logger.info.assert_called_with(f"Output directory for ConcreteTestEngine: {expected_dir}")

def test_base_engine_in_memory_run(mock_logger, tmp_path):
    """
    Tests that nothing is written when saving is disabled.
    """
    config = {'outputs': {'base_results_dir': str(tmp_path / "results")}}
    engine = ConcreteTestEngine(config, mock_logger, "04_TrainedWorkflows")

    assert engine.save_artifacts is False
    assert not (tmp_path / "results").exists()
    mock_logger.info.assert_not_called()

def test_base_engine_defaults(mock_logger):
    engine = ConcreteTestEngine({}, mock_logger, "03_HyperparameterTuning")
    assert str(engine.base_dir) == "fastml_results"
    assert engine.excel_copy is False

def test_base_engine_is_abstract(base_config, mock_logger):
    with pytest.raises(TypeError):
        BaseEngine(base_config, mock_logger)
