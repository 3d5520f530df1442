"""
Resampling schemes used to score candidate configurations.
"""
from typing import Optional

import numpy as np
from sklearn.model_selection import (
    GroupKFold,
    KFold,
    RepeatedKFold,
    RepeatedStratifiedKFold,
    StratifiedKFold,
    TimeSeriesSplit,
)

from fastml.utils.exceptions import ConfigurationError
from fastml.utils import constants


class BootstrapSplit:
    """
    Bootstrap resampling: each split trains on a sample drawn with replacement and
    assesses on the out-of-bag rows.
    """

    def __init__(self, n_splits: int = 25, random_state: Optional[int] = None):
        self.n_splits = n_splits
        self.random_state = random_state

    def split(self, X, y=None, groups=None):
        n = len(X)
        rng = np.random.default_rng(self.random_state)
        produced = 0
        while produced < self.n_splits:
            in_bag = rng.integers(0, n, size=n)
            out_of_bag = np.setdiff1d(np.arange(n), in_bag)
            if out_of_bag.size == 0:
                continue
            produced += 1
            yield in_bag, out_of_bag

    def get_n_splits(self, X=None, y=None, groups=None) -> int:
        return self.n_splits

    def __repr__(self) -> str:
        return f"BootstrapSplit(n_splits={self.n_splits}, random_state={self.random_state})"


def build_splitter(method: str, folds: int, repeats: int, task: str, seed: Optional[int] = None):
    """
    Create the cross-validation splitter for a resampling method.

    Returns None for method 'none'.
    """
    classification = task == constants.CLASSIFICATION
    if method == 'none':
        return None
    if method == 'cv':
        if classification:
            return StratifiedKFold(n_splits=folds, shuffle=True, random_state=seed)
        return KFold(n_splits=folds, shuffle=True, random_state=seed)
    if method == 'repeatedcv':
        if classification:
            return RepeatedStratifiedKFold(n_splits=folds, n_repeats=repeats, random_state=seed)
        return RepeatedKFold(n_splits=folds, n_repeats=repeats, random_state=seed)
    if method == 'boot':
        return BootstrapSplit(n_splits=folds, random_state=seed)
    if method == 'grouped_cv':
        return GroupKFold(n_splits=folds)
    if method == 'blocked_cv':
        return KFold(n_splits=folds, shuffle=False)
    if method == 'rolling_origin':
        return TimeSeriesSplit(n_splits=folds)
    raise ConfigurationError(f"Unknown resampling method '{method}'. Available: {constants.RESAMPLING_METHODS}")


def check_stratified_folds(splitter, y: np.ndarray, task: str, logger=None):
    """
    Fall back to plain (repeated) KFold when a class has fewer members than folds.
    """
    if task != constants.CLASSIFICATION or not isinstance(splitter, (StratifiedKFold, RepeatedStratifiedKFold)):
        return splitter
    folds = splitter.get_n_splits() if isinstance(splitter, StratifiedKFold) else splitter.cvargs['n_splits']
    counts = np.bincount(np.asarray(y, dtype=int))
    smallest = int(counts[counts > 0].min()) if counts.size else 0
    if smallest >= folds:
        return splitter
    if logger is not None:
        logger.warning(
            f"Smallest class has {smallest} training rows (< {folds} folds); using unstratified folds."
        )
    if isinstance(splitter, RepeatedStratifiedKFold):
        return RepeatedKFold(n_splits=folds, n_repeats=splitter.n_repeats, random_state=splitter.random_state)
    return KFold(n_splits=folds, shuffle=True, random_state=splitter.random_state)
