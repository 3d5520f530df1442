import pytest
from unittest.mock import Mock

from fastml.utils.error_handling import handle_engine_errors
from fastml.utils.exceptions import ConfigurationError, FastMLException, PredictionError


class DummyEngine:
    def __init__(self):
        self.logger = Mock()

    @handle_engine_errors("Dummy step")
    def run(self, exc=None):
        if exc is not None:
            raise exc
        return "done"


def test_exception_inheritance():
    err = ConfigurationError("Test error")
    assert isinstance(err, FastMLException)
    assert isinstance(err, Exception)
    assert str(err) == "Test error"


def test_passes_through_result():
    assert DummyEngine().run() == "done"


def test_package_errors_are_reraised_unchanged():
    engine = DummyEngine()
    with pytest.raises(PredictionError, match="bad type"):
        engine.run(PredictionError("bad type"))
    engine.logger.error.assert_not_called()


def test_unexpected_errors_are_wrapped():
    engine = DummyEngine()
    with pytest.raises(FastMLException, match="Dummy step failed: boom") as info:
        engine.run(RuntimeError("boom"))
    assert isinstance(info.value.__cause__, RuntimeError)
    engine.logger.error.assert_called_once()


def test_wrapped_error_class_is_configurable():
    @handle_engine_errors("Scoring", PredictionError)
    def score():
        raise ValueError("shape mismatch")

    with pytest.raises(PredictionError, match="Scoring failed: shape mismatch"):
        score()
