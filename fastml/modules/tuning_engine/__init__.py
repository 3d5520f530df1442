from .tuning_engine import TuningEngine
from .resampling import BootstrapSplit, build_splitter, check_stratified_folds

__all__ = ['TuningEngine', 'BootstrapSplit', 'build_splitter', 'check_stratified_folds']
