import functools
import logging
from typing import Type

from fastml.utils.exceptions import FastMLException


def handle_engine_errors(operation_name: str, error_cls: Type[FastMLException] = FastMLException):
    """
    Decorator for consistent error handling in engines.

    Package exceptions propagate unchanged. Anything else (a scikit-learn
    ValueError, a pandas KeyError, ...) is logged with its traceback and
    re-raised as ``error_cls`` so callers only have to catch FastMLException.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except FastMLException:
                raise
            except Exception as e:
                owner = args[0] if args else None
                logger = getattr(owner, 'logger', None) or logging.getLogger("fastml")
                where = f" in {owner.__class__.__name__}" if owner is not None else ""
                logger.error(f"{operation_name} failed{where}: {e}", exc_info=True)
                raise error_cls(f"{operation_name} failed: {e}") from e
        return wrapper
    return decorator
