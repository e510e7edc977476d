"""Sandboxed evaluation of user-written task functions using RestrictedPython."""

from .evaluator import (
    EvaluationError,
    EvaluationResult,
    InputRecord,
    RestrictedPythonEvaluator,
)

__all__ = ["RestrictedPythonEvaluator", "EvaluationError", "EvaluationResult", "InputRecord"]
