import pytest
import numpy as np

from fastml.modules.model_factory import SEARCH_SPACES, regular_grid
from fastml.utils import constants


def test_regular_grid_int_levels():
    grid = regular_grid({'max_depth': {'type': 'int', 'low': 2, 'high': 10}}, levels=3)
    assert grid == {'max_depth': [2, 6, 10]}


def test_regular_grid_int_deduplicates():
    grid = regular_grid({'k': {'type': 'int', 'low': 1, 'high': 2}}, levels=5)
    assert grid == {'k': [1, 2]}


def test_regular_grid_log_float_is_geometric():
    grid = regular_grid({'C': {'type': 'float', 'low': 0.01, 'high': 100.0, 'log': True}}, levels=5)
    assert np.allclose(grid['C'], [0.01, 0.1, 1.0, 10.0, 100.0])


def test_regular_grid_linear_float():
    grid = regular_grid({'l1_ratio': {'type': 'float', 'low': 0.0, 'high': 1.0}}, levels=3)
    assert grid['l1_ratio'] == [0.0, 0.5, 1.0]


def test_regular_grid_categorical_kept():
    grid = regular_grid({'weights': {'type': 'categorical', 'choices': ['uniform', 'distance']}})
    assert grid == {'weights': ['uniform', 'distance']}


def test_regular_grid_unknown_type():
    with pytest.raises(ValueError, match="Unknown search space type"):
        regular_grid({'x': {'type': 'bool'}})


@pytest.mark.parametrize("task", constants.TASKS)
def test_every_space_is_well_formed(task):
    for algorithm, space in SEARCH_SPACES[task].items():
        for name, bounds in space.items():
            assert bounds['type'] in ('int', 'float', 'categorical'), (algorithm, name)
            if bounds['type'] != 'categorical':
                assert bounds['low'] <= bounds['high'], (algorithm, name)
