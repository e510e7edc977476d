"""Restricted Python function evaluator for user-supplied task code.

This module runs the body of a user-written function inside RestrictedPython.
The body is wrapped as ``def task_function(inputs):`` and called once with the
task's resolved inputs; whatever it returns becomes the task result.
"""

import logging
import operator
import textwrap
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from RestrictedPython import compile_restricted_exec, safe_builtins, safe_globals
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr_raise,
)
from RestrictedPython.PrintCollector import PrintCollector

logger = logging.getLogger(__name__)

FUNCTION_NAME = "task_function"

_INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
}


class EvaluationError(Exception):
    """Exception raised when function evaluation fails."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


@dataclass
class EvaluationResult:
    """Result of a restricted function evaluation."""

    result: Any
    execution_time_ms: float
    success: bool
    error_message: Optional[str] = None
    original_error: Optional[Exception] = None

    def raise_for_error(self) -> None:
        """Raise EvaluationError if the evaluation failed."""
        if not self.success:
            raise EvaluationError(self.error_message or "Unknown error", self.original_error)


class InputRecord(dict):
    """Task inputs readable both as ``inputs["key"]`` and ``inputs.key``.

    Nested mappings are wrapped on access so ``inputs.user.name`` works.
    Keys that collide with dict methods (``items``, ``keys`` ...) need the
    subscript form.
    """

    _guarded_writes = True

    def __getitem__(self, key):
        return _wrap(super().__getitem__(key))

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"inputs has no key '{name}'") from None


def _wrap(value: Any) -> Any:
    if isinstance(value, dict) and not isinstance(value, InputRecord):
        return InputRecord(value)
    return value


def _unwrap(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _unwrap(item) for key, item in dict.items(value)}
    if isinstance(value, list):
        return [_unwrap(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_unwrap(item) for item in value)
    return value


def _inplace_var(op: str, target: Any, value: Any) -> Any:
    return _INPLACE_OPERATORS[op](target, value)


def _apply(func, *args, **kwargs):
    return func(*args, **kwargs)


class RestrictedPythonEvaluator:
    """Secure evaluator for user-provided function bodies using RestrictedPython.

    Attribute names starting with an underscore, imports and writes to
    foreign objects are rejected by the restricted compiler and guards.
    """

    def __init__(self):
        """Initialize the evaluator."""
        self._logger = logger.getChild(self.__class__.__name__)

    def _create_safe_builtins(self) -> Dict[str, Any]:
        """Create a dictionary of safe built-in functions for the function body.

        Returns:
            Dictionary containing safe built-in functions.
        """
        builtins = safe_builtins.copy()
        builtins.update({
            # Mathematical functions
            'max': max,
            'min': min,
            'sum': sum,

            # Collection functions
            'enumerate': enumerate,
            'map': map,
            'filter': filter,
            'reversed': reversed,
            'any': any,
            'all': all,

            # Type constructors
            'list': list,
            'dict': dict,
            'set': set,
        })
        return builtins

    def _create_restricted_globals(self) -> Dict[str, Any]:
        """Create the restricted globals dictionary for execution."""
        restricted_globals = safe_globals.copy()
        restricted_globals.update({
            '__builtins__': self._create_safe_builtins(),
            '__name__': 'restricted_task',
            '__metaclass__': type,
            '_getattr_': safer_getattr_raise,
            '_getitem_': default_guarded_getitem,
            '_getiter_': default_guarded_getiter,
            '_iter_unpack_sequence_': guarded_iter_unpack_sequence,
            '_unpack_sequence_': guarded_unpack_sequence,
            '_write_': full_write_guard,
            '_inplacevar_': _inplace_var,
            '_apply_': _apply,
            '_print_': PrintCollector,
        })
        return restricted_globals

    @staticmethod
    def wrap_function_body(body: str) -> str:
        """Turn a bare function body into a ``task_function(inputs)`` definition."""
        body = textwrap.dedent(body).strip("\n")
        if not body.strip():
            body = "return None"
        return f"def {FUNCTION_NAME}(inputs):\n{textwrap.indent(body, '    ')}\n"

    def evaluate_function_body(
        self,
        body: str,
        inputs: Optional[Mapping[str, Any]] = None,
    ) -> EvaluationResult:
        """Run a function body in a restricted environment.

        Args:
            body: Statements of the function, e.g. ``return inputs.text.upper()``
            inputs: Values bound to the ``inputs`` argument

        Returns:
            EvaluationResult containing the return value, execution time, and success status.
            A body without a return statement succeeds with a result of None.

        Example:
            >>> evaluator = RestrictedPythonEvaluator()
            >>> evaluator.evaluate_function_body("return inputs.a + 1", {"a": 1}).result
            2
        """
        start_time = time.perf_counter()
        source = self.wrap_function_body(body)

        code = compile_restricted_exec(source, filename="<task_function>")
        if code.errors:
            error_msg = "; ".join(code.errors)
            self._logger.error(f"Compilation errors in function body: {code.errors}")
            return EvaluationResult(
                result=None,
                execution_time_ms=0.0,
                success=False,
                error_message=error_msg
            )

        restricted_globals = self._create_restricted_globals()
        try:
            exec(code.code, restricted_globals)
            task_function = restricted_globals[FUNCTION_NAME]
            result = task_function(InputRecord(inputs or {}))
        except Exception as e:
            self._logger.error(f"Runtime error in function body: {type(e).__name__}: {e}")
            return EvaluationResult(
                result=None,
                execution_time_ms=(time.perf_counter() - start_time) * 1000,
                success=False,
                error_message=str(e),
                original_error=e,
            )

        execution_time_ms = (time.perf_counter() - start_time) * 1000
        self._logger.debug(f"Evaluated function body in {execution_time_ms:.2f}ms")

        return EvaluationResult(
            result=_unwrap(result),
            execution_time_ms=execution_time_ms,
            success=True
        )
