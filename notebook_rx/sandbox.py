"""
Sandboxed evaluation of cell expressions.

A definition body is compiled once into a CompiledExpression: a callable
taking one positional argument per dependency. Evaluation goes through
asteval's Interpreter, so no host eval/exec is involved.
"""

import io
import time
from typing import Any, Optional, Sequence

from asteval import Interpreter

DEFAULT_MAX_STATEMENT_LENGTH = 50000


class _InterpreterDefault:
    """Stands in for a builtin bound to the interpreter that evaluates it."""

    def __repr__(self) -> str:
        return "INTERPRETER_DEFAULT"


INTERPRETER_DEFAULT = _InterpreterDefault()


def sandbox_builtins() -> dict[str, Any]:
    """
    The names asteval provides, as fallback bindings.

    Entries bound to a particular interpreter (print writes to that
    interpreter's output) map to INTERPRETER_DEFAULT, and each
    CompiledExpression substitutes its own.
    """
    interpreter = Interpreter(use_numpy=False)
    builtins = {}
    for name, value in interpreter.symtable.items():
        if getattr(value, "__self__", None) is interpreter:
            value = INTERPRETER_DEFAULT
        builtins[name] = value
    return builtins


def _clean_error(error: Exception) -> Exception:
    """
    Strip asteval's source excerpt from an error message.

    asteval re-raises with a multi-line message ending in
    "ExcName: message"; keep only that message.
    """
    lines = [line for line in str(error).splitlines() if line.strip()]
    if len(lines) <= 1:
        return error
    message = lines[-1].strip()
    prefix = f"{type(error).__name__}: "
    if message.startswith(prefix):
        message = message[len(prefix):]
    try:
        return type(error)(message)
    except Exception:
        return error


class CompiledExpression:
    """
    An expression parameterized over named dependencies.

    Calling it binds the arguments to the dependency names, in order,
    and evaluates the body. Errors raised by the body propagate with
    their original exception type.
    """

    def __init__(
        self,
        dependencies: Sequence[str],
        body: str,
        max_statement_length: int = DEFAULT_MAX_STATEMENT_LENGTH,
    ):
        self.dependencies = tuple(dependencies)
        self.body = body
        self.output = io.StringIO()
        self._interpreter = Interpreter(
            use_numpy=False,
            writer=self.output,
            err_writer=io.StringIO(),
            max_statement_length=max_statement_length,
        )
        symtable = self._interpreter.symtable
        self._defaults = {name: symtable[name] for name in self.dependencies if name in symtable}
        # Syntax errors surface here, at definition time.
        self.node = self._interpreter.parse(body)

    def __call__(self, *args: Any) -> Any:
        if len(args) != len(self.dependencies):
            raise TypeError(
                f"expected {len(self.dependencies)} arguments, got {len(args)}"
            )
        symtable = self._interpreter.symtable
        for name, value in zip(self.dependencies, args):
            if value is INTERPRETER_DEFAULT:
                value = self._defaults.get(name)
            symtable[name] = value
        try:
            return self._run()
        except Exception as e:
            raise _clean_error(e) from None

    def _run(self) -> Any:
        # Interpreter.eval() would parse the body again; run the stored tree instead.
        interpreter = self._interpreter
        interpreter.error = []
        interpreter.error_msg = None
        interpreter.code_text = []
        interpreter.start_time = time.time()
        try:
            result = interpreter.run(self.node, expr=self.body, with_raise=True)
        except Exception:
            if not interpreter.error:
                raise
        if interpreter.error:
            interpreter._remove_duplicate_errors()
            error = interpreter.error[-1]
            raise error.exc(error.get_error()[1])
        return result

    @property
    def printed(self) -> str:
        """Text written by print() calls inside the body."""
        return self.output.getvalue()

    def __repr__(self) -> str:
        params = ", ".join(self.dependencies)
        return f"CompiledExpression(({params}) => {self.body})"


def compile_expression(
    dependencies: Sequence[str],
    body: str,
    max_statement_length: Optional[int] = None,
) -> CompiledExpression:
    """
    Compile a body into a callable over its dependencies.

    Args:
        dependencies: Parameter names, in call order
        body: Expression source
        max_statement_length: Upper bound on body length

    Returns:
        CompiledExpression
    """
    return CompiledExpression(
        dependencies,
        body,
        max_statement_length or DEFAULT_MAX_STATEMENT_LENGTH,
    )


def safe_eval(expr: str, variables: Optional[dict[str, Any]] = None) -> Any:
    """Evaluate a one-off expression against a mapping of names."""
    variables = variables or {}
    return compile_expression(list(variables), expr)(*variables.values())
