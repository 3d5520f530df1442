import pytest
import logging
import numpy as np
from unittest.mock import MagicMock
from sklearn.model_selection import (
    GroupKFold,
    KFold,
    RepeatedKFold,
    RepeatedStratifiedKFold,
    StratifiedKFold,
    TimeSeriesSplit,
)

from fastml.modules.tuning_engine import BootstrapSplit, build_splitter, check_stratified_folds
from fastml.utils.exceptions import ConfigurationError
from fastml.utils import constants

CLS = constants.CLASSIFICATION
REG = constants.REGRESSION


@pytest.mark.parametrize("method, task, expected", [
    ('cv', CLS, StratifiedKFold),
    ('cv', REG, KFold),
    ('repeatedcv', CLS, RepeatedStratifiedKFold),
    ('repeatedcv', REG, RepeatedKFold),
    ('boot', REG, BootstrapSplit),
    ('grouped_cv', CLS, GroupKFold),
    ('blocked_cv', REG, KFold),
    ('rolling_origin', REG, TimeSeriesSplit),
])
def test_build_splitter(method, task, expected):
    splitter = build_splitter(method, 4, 2, task, seed=1)
    assert isinstance(splitter, expected)


def test_build_splitter_none():
    assert build_splitter('none', 5, 1, REG) is None


def test_build_splitter_unknown():
    with pytest.raises(ConfigurationError, match="Unknown resampling method"):
        build_splitter('loo', 5, 1, REG)


def test_blocked_cv_keeps_order():
    splitter = build_splitter('blocked_cv', 3, 1, REG)
    first_test = next(splitter.split(np.zeros((9, 1))))[1]
    assert first_test.tolist() == [0, 1, 2]


def test_repeated_cv_split_count():
    splitter = build_splitter('repeatedcv', 3, 2, REG, seed=0)
    assert splitter.get_n_splits() == 6


def test_bootstrap_split_out_of_bag():
    X = np.zeros((30, 2))
    splits = list(BootstrapSplit(n_splits=5, random_state=0).split(X))
    assert len(splits) == 5
    for in_bag, oob in splits:
        assert len(in_bag) == 30
        assert len(oob) > 0
        assert not set(oob) & set(in_bag)


def test_bootstrap_split_reproducible():
    X = np.zeros((20, 1))
    a = [oob.tolist() for _, oob in BootstrapSplit(3, random_state=4).split(X)]
    b = [oob.tolist() for _, oob in BootstrapSplit(3, random_state=4).split(X)]
    assert a == b


def test_stratified_fallback_on_rare_class():
    logger = MagicMock(spec=logging.Logger)
    y = np.array([0] * 10 + [1] * 2)
    splitter = check_stratified_folds(StratifiedKFold(5, shuffle=True, random_state=0), y, CLS, logger)
    assert isinstance(splitter, KFold)
    logger.warning.assert_called_once()


def test_stratified_fallback_repeated():
    y = np.array([0] * 10 + [1] * 2)
    splitter = check_stratified_folds(RepeatedStratifiedKFold(n_splits=5, n_repeats=2, random_state=0), y, CLS)
    assert isinstance(splitter, RepeatedKFold)
    assert splitter.get_n_splits() == 10


def test_stratified_kept_when_classes_large_enough():
    y = np.array([0] * 10 + [1] * 10)
    original = StratifiedKFold(5)
    assert check_stratified_folds(original, y, CLS) is original
