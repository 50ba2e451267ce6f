"""Template interpolation and arithmetic formulas.

Templates reference variables as `{name}` or `{{dotted.path}}`; both forms
accept dotted paths and list indexes (`{{customers.0.name}}`,
`{customers[0].name}`). Brace groups that do not form a valid reference are
literal text, so JSON bodies pass through untouched.

Formulas (data_transformation) are parsed by a small recursive-descent
parser:

    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := NUMBER | REFERENCE | '(' expr ')' | '-' factor

Nothing here mutates the store, so resolving twice against an unchanged store
gives the same result.
"""

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Optional, Union

import structlog

from core.constants import DEFAULT_FORMULA_PRECISION
from core.exceptions import ResolutionError
from core.utils import utc_now
from workflow.dates import DATE_PLACEHOLDERS, date_placeholders
from workflow.variables import VariableStore

logger = structlog.get_logger(__name__)

_PATH_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+|\[\d+\])*$")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


# ─── Template Parsing ─────────────────────────────────────────

@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Reference:
    path: tuple[str, ...]
    raw: str
    position: int

    @property
    def root(self) -> str:
        return self.path[0]


Segment = Union[Literal, Reference]


def parse_path(text: str) -> Optional[tuple[str, ...]]:
    """Split `a.b[0].c` into ("a", "b", "0", "c"). None if not a valid path."""
    if not _PATH_PATTERN.match(text):
        return None
    return tuple(_INDEX_PATTERN.sub(r".\1", text).split("."))


@lru_cache(maxsize=2048)
def parse_template(template: str) -> tuple[Segment, ...]:
    """Tokenize a template into literal text and variable references."""
    segments: list[Segment] = []
    buffer: list[str] = []
    i = 0
    n = len(template)

    def flush() -> None:
        if buffer:
            segments.append(Literal("".join(buffer)))
            buffer.clear()

    while i < n:
        if template.startswith("{{", i):
            end = template.find("}}", i + 2)
            if end != -1:
                inner = template[i + 2:end].strip()
                path = parse_path(inner)
                if path is not None:
                    flush()
                    segments.append(Reference(path, template[i:end + 2], i))
                    i = end + 2
                    continue
        if template[i] == "{":
            end = template.find("}", i + 1)
            if end != -1:
                path = parse_path(template[i + 1:end])
                if path is not None:
                    flush()
                    segments.append(Reference(path, template[i:end + 1], i))
                    i = end + 1
                    continue
        buffer.append(template[i])
        i += 1

    flush()
    return tuple(segments)


def references(template: str) -> list[Reference]:
    return [s for s in parse_template(template) if isinstance(s, Reference)]


# ─── Resolution ───────────────────────────────────────────────

def lookup(ref: Reference, store: VariableStore, now: Optional[datetime] = None) -> Any:
    """Resolve one reference against the store.

    Raises:
        ResolutionError: If the root variable or any path segment is missing
    """
    root = ref.root
    if root in store:
        value = store[root]
    elif root in DATE_PLACEHOLDERS and len(ref.path) == 1:
        return date_placeholders(now or utc_now())[root]
    else:
        raise ResolutionError(f"Unknown variable '{root}' in {ref.raw}", ref.position)

    walked = root
    for segment in ref.path[1:]:
        if isinstance(value, dict):
            if segment not in value:
                raise ResolutionError(
                    f"'{walked}' has no field '{segment}' in {ref.raw}", ref.position
                )
            value = value[segment]
        elif isinstance(value, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(value):
                raise ResolutionError(
                    f"Index {index} out of range for '{walked}' ({len(value)} items) in {ref.raw}",
                    ref.position,
                )
            value = value[index]
        else:
            raise ResolutionError(
                f"Cannot read '{segment}' from {type(value).__name__} '{walked}' in {ref.raw}",
                ref.position,
            )
        walked = f"{walked}.{segment}"
    return value


def to_text(value: Any) -> str:
    """Stringify a resolved value for embedding in surrounding text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def _lookup_or_literal(
    ref: Reference, store: VariableStore, now: Optional[datetime], strict: bool
) -> Any:
    try:
        return lookup(ref, store, now)
    except ResolutionError as exc:
        if strict:
            raise
        logger.warning("Unresolved template reference", reference=ref.raw, reason=exc.message)
        return ref.raw


def resolve(
    template: Any,
    store: VariableStore,
    now: Optional[datetime] = None,
    strict: bool = False,
) -> Any:
    """Resolve a template.

    A template that is exactly one reference yields the referenced value with
    its type intact (number, list, record). Anything else yields a string.
    Non-string inputs are returned unchanged.

    Missing variables and path segments leave the reference text in place
    unless `strict` is set, in which case they raise ResolutionError. Callers
    that need a typed value (numbers, ids, lists) resolve strictly.
    """
    if not isinstance(template, str):
        return template
    segments = parse_template(template)
    if len(segments) == 1 and isinstance(segments[0], Reference):
        return _lookup_or_literal(segments[0], store, now, strict)
    parts = []
    for segment in segments:
        if isinstance(segment, Literal):
            parts.append(segment.text)
        else:
            parts.append(to_text(_lookup_or_literal(segment, store, now, strict)))
    return "".join(parts)


def resolve_text(
    template: Any, store: VariableStore, now: Optional[datetime] = None, strict: bool = False
) -> str:
    return to_text(resolve(template, store, now, strict))


def resolve_value(
    value: Any, store: VariableStore, now: Optional[datetime] = None, strict: bool = False
) -> Any:
    """Resolve every string inside a nested dict/list structure."""
    if isinstance(value, str):
        return resolve(value, store, now, strict)
    if isinstance(value, dict):
        return {k: resolve_value(v, store, now, strict) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, store, now, strict) for v in value]
    return value


def coerce_number(value: Any, label: str = "value", position: Optional[int] = None) -> float:
    """Explicitly parse a resolved value as a number.

    Booleans, None, records and non-numeric strings are rejected instead of
    silently becoming 0.
    """
    if isinstance(value, bool) or value is None:
        raise ResolutionError(f"{label} is not a number: {to_text(value) or 'empty'}", position)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            raise ResolutionError(f"{label} is not a number: '{value}'", position) from None
        if not number.is_finite():
            raise ResolutionError(f"{label} is not a finite number: '{value}'", position)
        return float(number)
    raise ResolutionError(f"{label} is not a number: {type(value).__name__}", position)


# ─── Formula Evaluation ───────────────────────────────────────

@dataclass(frozen=True)
class _Token:
    kind: str  # number | ref | op | lparen | rparen
    value: Any
    position: int


def _tokenize(formula: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    n = len(formula)
    while i < n:
        ch = formula[i]
        if ch.isspace():
            i += 1
        elif ch.isdigit() or (ch == "." and i + 1 < n and formula[i + 1].isdigit()):
            start = i
            while i < n and (formula[i].isdigit() or formula[i] == "."):
                i += 1
            text = formula[start:i]
            if text.count(".") > 1:
                raise ResolutionError(f"Malformed number '{text}'", start)
            tokens.append(_Token("number", float(text), start))
        elif ch == "{":
            double = formula.startswith("{{", i)
            closer = "}}" if double else "}"
            end = formula.find(closer, i)
            if end == -1:
                raise ResolutionError("Unterminated variable reference", i)
            inner = formula[i + (2 if double else 1):end]
            path = parse_path(inner.strip() if double else inner)
            if path is None:
                raise ResolutionError(f"Invalid variable reference '{formula[i:end + len(closer)]}'", i)
            raw = formula[i:end + len(closer)]
            tokens.append(_Token("ref", Reference(path, raw, i), i))
            i = end + len(closer)
        elif ch in "+-*/":
            tokens.append(_Token("op", ch, i))
            i += 1
        elif ch == "(":
            tokens.append(_Token("lparen", ch, i))
            i += 1
        elif ch == ")":
            tokens.append(_Token("rparen", ch, i))
            i += 1
        else:
            raise ResolutionError(f"Unexpected character '{ch}' in formula", i)
    return tokens


class _FormulaParser:
    """Evaluates tokens while parsing them."""

    def __init__(self, tokens: list[_Token], store: VariableStore, now: Optional[datetime], length: int):
        self._tokens = tokens
        self._pos = 0
        self._store = store
        self._now = now
        self._length = length

    def parse(self) -> float:
        if not self._tokens:
            raise ResolutionError("Formula is empty")
        value = self._expr()
        if self._pos < len(self._tokens):
            token = self._tokens[self._pos]
            raise ResolutionError(f"Unexpected '{self._describe(token)}' in formula", token.position)
        return value

    def _peek(self) -> Optional[_Token]:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _advance(self) -> _Token:
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _at_operator(self, symbols: str) -> bool:
        token = self._peek()
        return token is not None and token.kind == "op" and token.value in symbols

    def _expr(self) -> float:
        value = self._term()
        while self._at_operator("+-"):
            token = self._advance()
            right = self._term()
            value = value + right if token.value == "+" else value - right
        return value

    def _term(self) -> float:
        value = self._factor()
        while self._at_operator("*/"):
            token = self._advance()
            right = self._factor()
            if token.value == "*":
                value = value * right
            else:
                if right == 0:
                    raise ResolutionError("Division by zero", token.position)
                value = value / right
        return value

    def _factor(self) -> float:
        token = self._peek()
        if token is None:
            raise ResolutionError("Formula ended unexpectedly", self._length)
        if token.kind == "number":
            self._advance()
            return token.value
        if token.kind == "ref":
            self._advance()
            ref: Reference = token.value
            resolved = lookup(ref, self._store, self._now)
            return coerce_number(resolved, ref.raw, ref.position)
        if token.kind == "op" and token.value == "-":
            self._advance()
            return -self._factor()
        if token.kind == "lparen":
            self._advance()
            value = self._expr()
            closing = self._peek()
            if closing is None or closing.kind != "rparen":
                raise ResolutionError("Missing closing parenthesis", token.position)
            self._advance()
            return value
        raise ResolutionError(f"Unexpected '{self._describe(token)}' in formula", token.position)

    @staticmethod
    def _describe(token: _Token) -> str:
        if token.kind == "ref":
            return token.value.raw
        if token.kind == "number":
            return to_text(token.value)
        return token.value


def evaluate_formula(
    formula: str,
    store: VariableStore,
    now: Optional[datetime] = None,
    precision: int = DEFAULT_FORMULA_PRECISION,
) -> float:
    """Evaluate an arithmetic formula and round the result to `precision` places.

    Raises:
        ResolutionError: On syntax errors, unresolved or non-numeric
            references, and division by zero
    """
    tokens = _tokenize(formula)
    result = _FormulaParser(tokens, store, now, len(formula)).parse()
    return round(result, precision)
