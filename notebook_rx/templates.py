"""
Templates for markdown and HTML cells.

Embedded expressions ({expr} or ${expr}) split the cell text into literal
segments. The expressions compile into a single definition over the union
of their free variables; at render time each expression is evaluated and
its result joined back between the literal segments, which are never
scanned again.
"""

import re
from functools import lru_cache
from typing import Any, Callable, Optional

from markdown_it import MarkdownIt

from notebook_rx.parser import Assignment, Import, ParseException, Parser
from notebook_rx.sandbox import CompiledExpression, compile_expression

_EXPRESSION = re.compile(r"\$\{([^}]+)\}|\{([^}]+)\}")


def extract_expressions(content: str) -> tuple[list[str], list[str]]:
    """
    Split text around its embedded expressions.

    Returns:
        Tuple of (literals, expressions), with one more literal than
        expressions: literals[i] precedes expressions[i]
    """
    literals: list[str] = []
    expressions: list[str] = []
    position = 0
    for match in _EXPRESSION.finditer(content):
        literals.append(content[position:match.start()])
        expressions.append((match.group(1) or match.group(2)).strip())
        position = match.end()
    literals.append(content[position:])
    return literals, expressions


def error_marker(error: BaseException) -> str:
    return f"[Error: {error}]"


@lru_cache(maxsize=None)
def _markdown(preset: str) -> MarkdownIt:
    return MarkdownIt(preset)


def render_markdown(text: str, preset: str = "commonmark") -> str:
    """Render markdown to HTML."""
    return _markdown(preset).render(text)


def render_html(text: str) -> str:
    return text


class TemplateDefinition:
    """Callable that evaluates a template's expressions and renders it."""

    def __init__(
        self,
        literals: list[str],
        parts: list[tuple[Optional[CompiledExpression], Optional[BaseException]]],
        dependencies: list[str],
        render: Callable[[str], str],
    ):
        self.literals = literals
        self.parts = parts
        self.dependencies = dependencies
        self.render = render

    def __call__(self, *args: Any) -> str:
        scope = dict(zip(self.dependencies, args))
        pieces = [self.literals[0]]
        for (expression, error), literal in zip(self.parts, self.literals[1:]):
            pieces.append(self._evaluate(expression, error, scope))
            pieces.append(literal)
        return self.render("".join(pieces))

    @staticmethod
    def _evaluate(
        expression: Optional[CompiledExpression],
        error: Optional[BaseException],
        scope: dict[str, Any],
    ) -> str:
        if expression is None:
            return error_marker(error)
        try:
            value = expression(*(scope[name] for name in expression.dependencies))
        except Exception as e:
            return error_marker(e)
        return str(value)


def compile_template(
    content: str,
    parser: Parser,
    render: Callable[[str], str],
    max_statement_length: Optional[int] = None,
) -> TemplateDefinition:
    """
    Compile cell text with embedded expressions into one definition.

    An expression that fails to parse or compile is kept as an error
    marker instead of failing the whole template.
    """
    literals, expressions = extract_expressions(content)
    dependencies: list[str] = []
    parts: list[tuple[Optional[CompiledExpression], Optional[BaseException]]] = []

    for source in expressions:
        result = parser.parse(source)
        if isinstance(result, ParseException):
            parts.append((None, result.exception))
            continue
        if isinstance(result, Import) or not isinstance(result, Assignment):
            parts.append((None, SyntaxError("imports are not allowed in templates")))
            continue
        try:
            compiled = compile_expression(result.dependencies, result.body, max_statement_length)
        except Exception as e:
            parts.append((None, e))
            continue
        parts.append((compiled, None))
        for name in result.dependencies:
            if name not in dependencies:
                dependencies.append(name)

    return TemplateDefinition(literals, parts, dependencies, render)
