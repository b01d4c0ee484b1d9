# conditions.py
"""
Condition evaluator for job and step `if` gates.

The grammar is the small subset of GitHub Actions expressions that CI
workflows actually gate on:

    expr    := or
    or      := and ("||" and)*
    and     := unary ("&&" unary)*
    unary   := "!" unary | compare
    compare := primary (("==" | "!=") primary)?
    primary := literal | path | call | "(" expr ")"
    call    := always() | success() | failure() | cancelled()

An expression that calls none of the status functions is evaluated as
`success() && (expr)`, so `github.ref == 'refs/heads/master'` still skips when
a needed job failed, and `always()` is the explicit override.

Evaluation is pure: it only reads the Context it is given.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, List, Optional

from .context import Context
from .errors import ConditionError

STATUS_FUNCTIONS = ("always", "success", "failure", "cancelled")

_WRAPPED = re.compile(r"^\s*\$\{\{(.*)\}\}\s*$", re.DOTALL)
_PLACEHOLDER = re.compile(r"\$\{\{(.*?)\}\}", re.DOTALL)

_ESCAPE = re.compile(r"\\(.)", re.DOTALL)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}

_TOKEN = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<op>==|!=|&&|\|\||!|\(|\)|\[|\]|\.)
  | (?P<str>'(?:[^']|'')*'|"(?:[^"\\]|\\.)*")
  | (?P<num>-?\d+(?:\.\d+)?)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_\-]*)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    pos: int


def _tokenize(source: str) -> List[_Token]:
    tokens: List[_Token] = []
    pos = 0
    while pos < len(source):
        m = _TOKEN.match(source, pos)
        if not m:
            raise ConditionError(
                f"Unexpected character {source[pos]!r}", expression=source, position=pos
            )
        kind = m.lastgroup or ""
        if kind != "ws":
            tokens.append(_Token(kind, m.group(kind), pos))
        pos = m.end()
    tokens.append(_Token("end", "", len(source)))
    return tokens


# ---------------------------------------------------------------------
# AST: every node is a callable(ctx) -> value
# ---------------------------------------------------------------------

Node = Callable[[Context], Any]


def _truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def _coerce(value: Any) -> Any:
    # comparisons are loose and case-insensitive for strings
    if isinstance(value, str):
        return value.lower()
    return value


def _equal(left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        return left.lower() == right.lower()
    if left is None or right is None:
        return left is right or ("" in (left, right))
    if isinstance(left, bool) or isinstance(right, bool):
        return _truthy(left) == _truthy(right)
    try:
        return float(left) == float(right)
    except (TypeError, ValueError):
        return _coerce(left) == _coerce(right)


class _Parser:
    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.i = 0
        self.uses_status = False

    def _peek(self) -> _Token:
        return self.tokens[self.i]

    def _next(self) -> _Token:
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def _expect(self, value: str) -> None:
        tok = self._next()
        if tok.value != value or tok.kind not in ("op",):
            raise self._error(f"Expected {value!r}", tok)

    def _error(self, message: str, tok: _Token) -> ConditionError:
        found = tok.value or "end of expression"
        return ConditionError(f"{message}, found {found!r}", expression=self.source, position=tok.pos)

    def parse(self) -> Node:
        if self._peek().kind == "end":
            raise ConditionError("Empty expression", expression=self.source, position=0)
        node = self._or()
        tok = self._peek()
        if tok.kind != "end":
            raise self._error("Unexpected token", tok)
        return node

    def _or(self) -> Node:
        left = self._and()
        while self._peek().value == "||" and self._peek().kind == "op":
            self._next()
            right = self._and()
            left = (lambda a, b: lambda ctx: _truthy(a(ctx)) or _truthy(b(ctx)))(left, right)
        return left

    def _and(self) -> Node:
        left = self._unary()
        while self._peek().value == "&&" and self._peek().kind == "op":
            self._next()
            right = self._unary()
            left = (lambda a, b: lambda ctx: _truthy(a(ctx)) and _truthy(b(ctx)))(left, right)
        return left

    def _unary(self) -> Node:
        if self._peek().value == "!" and self._peek().kind == "op":
            self._next()
            operand = self._unary()
            return lambda ctx: not _truthy(operand(ctx))
        return self._compare()

    def _compare(self) -> Node:
        left = self._primary()
        tok = self._peek()
        if tok.kind == "op" and tok.value in ("==", "!="):
            self._next()
            right = self._primary()
            if tok.value == "==":
                return lambda ctx: _equal(left(ctx), right(ctx))
            return lambda ctx: not _equal(left(ctx), right(ctx))
        return left

    def _primary(self) -> Node:
        tok = self._next()
        if tok.kind == "op" and tok.value == "(":
            node = self._or()
            self._expect(")")
            return node
        if tok.kind == "str":
            value = _unquote(tok.value)
            return lambda ctx: value
        if tok.kind == "num":
            num = float(tok.value) if "." in tok.value else int(tok.value)
            return lambda ctx: num
        if tok.kind == "ident":
            lowered = tok.value.lower()
            if lowered in ("true", "false"):
                flag = lowered == "true"
                return lambda ctx: flag
            if lowered == "null":
                return lambda ctx: None
            if self._peek().value == "(" and self._peek().kind == "op":
                return self._call(tok)
            return self._path(tok)
        raise self._error("Expected a value", tok)

    def _call(self, name: _Token) -> Node:
        fn = name.value.lower()
        if fn not in STATUS_FUNCTIONS:
            raise self._error(f"Unknown function {name.value!r}", name)
        self._expect("(")
        self._expect(")")
        self.uses_status = True
        if fn == "always":
            return lambda ctx: True
        if fn == "success":
            return lambda ctx: ctx.checks.success and not ctx.checks.cancelled
        if fn == "failure":
            return lambda ctx: ctx.checks.failure
        return lambda ctx: ctx.checks.cancelled

    def _path(self, first: _Token) -> Node:
        parts = [first.value]
        while True:
            tok = self._peek()
            if tok.kind == "op" and tok.value == ".":
                self._next()
                ident = self._next()
                if ident.kind not in ("ident", "num"):
                    raise self._error("Expected a property name", ident)
                parts.append(ident.value)
            elif tok.kind == "op" and tok.value == "[":
                self._next()
                key = self._next()
                if key.kind not in ("str", "num"):
                    raise self._error("Expected a string index", key)
                parts.append(_unquote(key.value) if key.kind == "str" else key.value)
                self._expect("]")
            else:
                break
        path = ".".join(parts)
        return lambda ctx: ctx.lookup(path)


def _unquote(raw: str) -> str:
    if raw.startswith("'"):
        return raw[1:-1].replace("''", "'")
    return _ESCAPE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), raw[1:-1])


def _strip_wrapper(expression: str) -> str:
    m = _WRAPPED.match(expression)
    return m.group(1) if m else expression


@dataclass(frozen=True)
class CompiledCondition:
    source: str
    uses_status: bool
    _node: Node

    def __call__(self, ctx: Context) -> bool:
        value = _truthy(self._node(ctx))
        if self.uses_status:
            return value
        # implicit success() guard
        return ctx.checks.success and not ctx.checks.cancelled and value


@lru_cache(maxsize=512)
def compile_expression(expression: str) -> CompiledCondition:
    """Parse an `if` expression; raises ConditionError if it is malformed."""
    if not isinstance(expression, str):
        raise ConditionError("Condition must be a string", expression=repr(expression))
    source = _strip_wrapper(expression)
    parser = _Parser(source.strip())
    node = parser.parse()
    return CompiledCondition(source=expression, uses_status=parser.uses_status, _node=node)


DEFAULT_CONDITION = "success()"


def evaluate(expression: Optional[str], context: Context) -> bool:
    """
    Evaluate a gate. A missing expression means `success()`.
    """
    return compile_expression(expression or DEFAULT_CONDITION)(context)


def resolve(expression: str, context: Context) -> Any:
    """Evaluate an expression for its value instead of its truthiness."""
    source = _strip_wrapper(expression).strip()
    return _Parser(source).parse()(context)


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def interpolate(text: str, context: Context) -> str:
    """Expand every `${{ expr }}` placeholder in `text`."""
    if not text or "${{" not in text:
        return text
    return _PLACEHOLDER.sub(lambda m: _render(resolve(m.group(1), context)), text)
