"""
Parser: turns cell source text into statement descriptors.

The engine only relies on the ParseResult shapes defined here; any object
with a compatible parse() method can replace PythonParser.

PythonParser understands a small cell language:
- a single Python expression:             x + 1
- a named assignment:                     x = 1 + 2   (let/const/var allowed)
- an interactive view:                    viewof n = Inputs.range((0, 10))
- an import from another notebook:        import {a, b as c} from "nb-id"
                                          from "nb-id" import a, b as c
"""

import ast
import re
from typing import Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field


class ImportName(BaseModel):
    """One imported name and the local alias it is bound to."""
    name: str
    alias: Optional[str] = None

    @property
    def local_name(self) -> str:
        return self.alias or self.name


class Assignment(BaseModel):
    """An expression, optionally bound to a name."""
    type: Literal["assignment"] = "assignment"
    name: Optional[str] = None
    dependencies: list[str] = Field(default_factory=list)
    body: str
    viewof: bool = False


class Import(BaseModel):
    """Names imported from another notebook."""
    type: Literal["import"] = "import"
    urn: str
    names: list[ImportName]


class ParseException(BaseModel):
    """The source could not be parsed."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: Literal["exception"] = "exception"
    exception: Exception


ParseResult = Union[Assignment, Import, ParseException]


class Parser(Protocol):
    def parse(self, source: str) -> ParseResult: ...


_DECLARATION = re.compile(r"^(?:let|const|var)\s+")
_VIEWOF = re.compile(r"^viewof\s+")
_BRACE_IMPORT = re.compile(
    r"""^import\s*\{(?P<names>[^}]*)\}\s*from\s*(?P<q>["'])(?P<urn>.+?)(?P=q)\s*;?\s*$""",
    re.DOTALL,
)
_FROM_IMPORT = re.compile(
    r"""^from\s+(?:(?P<q>["'])(?P<quoted>.+?)(?P=q)|(?P<bare>[\w.\-/:]+))\s+import\s+(?P<names>.+?)\s*;?\s*$""",
    re.DOTALL,
)
_IMPORT_NAME = re.compile(r"^(?P<name>[A-Za-z_]\w*)(?:\s+as\s+(?P<alias>[A-Za-z_]\w*))?$")


def free_names(node: ast.AST) -> list[str]:
    """
    Names an expression reads but does not bind, in source order.

    Names bound inside the expression (comprehension targets, lambda
    parameters, walrus targets) are excluded. Builtins such as len are
    included, so a module variable of the same name takes precedence.
    """
    loaded: list[ast.Name] = []
    bound: set[str] = set()
    for child in ast.walk(node):
        if isinstance(child, ast.Name):
            if isinstance(child.ctx, ast.Load):
                loaded.append(child)
            else:
                bound.add(child.id)
        elif isinstance(child, ast.arg):
            bound.add(child.arg)

    names: list[str] = []
    for child in sorted(loaded, key=lambda n: (n.lineno, n.col_offset)):
        if child.id in bound or child.id in names:
            continue
        names.append(child.id)
    return names


def _parse_import_names(text: str) -> list[ImportName]:
    text = text.strip()
    if text.startswith("(") and text.endswith(")"):
        text = text[1:-1]
    names = []
    for part in text.split(","):
        part = " ".join(part.split())
        if not part:
            continue
        match = _IMPORT_NAME.match(part)
        if match is None:
            raise SyntaxError(f"invalid import name: {part!r}")
        names.append(ImportName(name=match.group("name"), alias=match.group("alias")))
    if not names:
        raise SyntaxError("import must name at least one variable")
    return names


class PythonParser:
    """Default parser for Python-expression cells."""

    def parse(self, source: str) -> ParseResult:
        try:
            return self._parse(source)
        except (SyntaxError, ValueError) as e:
            return ParseException(exception=e)

    def _parse(self, source: str) -> ParseResult:
        text = source.strip()

        match = _BRACE_IMPORT.match(text)
        if match:
            return Import(urn=match.group("urn"), names=_parse_import_names(match.group("names")))
        match = _FROM_IMPORT.match(text)
        if match:
            urn = match.group("quoted") or match.group("bare")
            return Import(urn=urn, names=_parse_import_names(match.group("names")))
        if text.startswith("import ") or text.startswith("import{"):
            raise SyntaxError("imports must use: import {name} from \"notebook\"")

        viewof = False
        if _VIEWOF.match(text):
            viewof = True
            text = _VIEWOF.sub("", text, count=1)
        text = _DECLARATION.sub("", text, count=1)

        if not text:
            if viewof:
                raise SyntaxError("viewof requires an assignment")
            return Assignment(body="None")

        tree = ast.parse(text, mode="exec")
        if len(tree.body) != 1:
            raise SyntaxError("a cell must contain a single expression or assignment")

        stmt = tree.body[0]
        name = None
        if isinstance(stmt, ast.Assign) and len(stmt.targets) == 1 and isinstance(stmt.targets[0], ast.Name):
            name = stmt.targets[0].id
            value = stmt.value
        elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name) and stmt.value is not None:
            name = stmt.target.id
            value = stmt.value
        elif isinstance(stmt, ast.Expr):
            value = stmt.value
        else:
            raise SyntaxError(
                f"unsupported statement: {type(stmt).__name__}; "
                "use an expression or name = expression"
            )

        if viewof and name is None:
            raise SyntaxError("viewof requires an assignment")

        body = ast.get_source_segment(text, value)
        return Assignment(
            name=name,
            dependencies=free_names(value),
            body=body,
            viewof=viewof,
        )


def parse(source: str) -> ParseResult:
    """Parse with the default PythonParser."""
    return PythonParser().parse(source)
