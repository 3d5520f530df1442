import pytest
import logging
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from unittest.mock import MagicMock

from fastml.modules.visualization import ExplorationPlotter
from fastml.utils.exceptions import ConfigurationError


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


@pytest.fixture
def frame():
    rng = np.random.default_rng(2)
    return pd.DataFrame({
        'height': rng.normal(170, 10, size=60),
        'weight': rng.normal(70, 8, size=60),
        'colour': rng.choice(['red', 'blue'], size=60),
        'label': rng.choice(['a', 'b'], size=60),
    })


def test_only_categorical_data(mock_logger):
    df = pd.DataFrame({'colour': ['red', 'blue'] * 10})
    figures = ExplorationPlotter({}, mock_logger).plot(df, plots=['histogram', 'barplot'])
    assert list(figures) == ['barplot']


def test_heatmap_needs_two_numeric_columns(frame, mock_logger):
    figures = ExplorationPlotter({}, mock_logger).plot(frame[['height', 'colour']], plots=['heatmap'])
    assert figures == {}
    mock_logger.warning.assert_called()


def test_grouped_plots_with_label(frame, mock_logger, tmp_path):
    figures = ExplorationPlotter({}, mock_logger).plot(
        frame, label='label', plots=['boxplot', 'scatterplot'], output_dir=tmp_path
    )
    assert set(figures) == {'boxplot', 'scatterplot'}
    assert (tmp_path / "boxplot.png").exists()


def test_unknown_plot(frame, mock_logger):
    with pytest.raises(ConfigurationError, match="Unknown plot"):
        ExplorationPlotter({}, mock_logger).plot(frame, plots=['violin'])
