"""Condition expression language — tokenizer, parser and expression tree.

Ruleset documents embed small boolean predicates as free text (``ask_if``,
``set_when``, ``enable_if``, ``required_if``, handoff ``when``...).  This
module turns that text into an immutable expression tree; evaluation lives
in :mod:`intake_rulesets.evaluator`.

Grammar (lowest to highest precedence)::

    expr        := or_expr
    or_expr     := and_expr (("||" | "OR") and_expr)*
    and_expr    := unary (("&&" | "AND") unary)*
    unary       := ("!" | "NOT") unary | comparison
    comparison  := primary (cmp_op primary | "includes" primary)?
    primary     := literal | identifier | "(" expr ")"
    cmp_op      := "==" | "=" | "!=" | "<" | "<=" | ">" | ">="
    literal     := number | 'string' | "string" | true | false | null

Keywords (``AND``, ``OR``, ``NOT``, ``includes``, literals) are
case-insensitive.  ``=`` is accepted as equality because authored content
uses it far more often than ``==``; ``===`` / ``!==`` are tolerated as
aliases.  There are no function calls, arithmetic, assignment or member
access — identifiers name keys of a flat variable namespace.

Usage::

    tree = parse_condition("ch2_building_selected = true AND property_sum > 0")
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Union

from intake_rulesets.errors import ConditionSyntaxError


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Literal:
    """A constant: bool, number, string or None."""

    value: Any


@dataclass(frozen=True, slots=True)
class Var:
    """A reference to a variable in the bindings mapping."""

    name: str


@dataclass(frozen=True, slots=True)
class Not:
    operand: "Expr"


@dataclass(frozen=True, slots=True)
class And:
    operands: tuple["Expr", ...]


@dataclass(frozen=True, slots=True)
class Or:
    operands: tuple["Expr", ...]


@dataclass(frozen=True, slots=True)
class Compare:
    """Binary comparison; ``op`` is one of ``== != < <= > >=``."""

    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True, slots=True)
class Includes:
    """``container includes needle`` — list membership or substring."""

    container: "Expr"
    needle: "Expr"


Expr = Union[Literal, Var, Not, And, Or, Compare, Includes]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Token:
    kind: str   # NUMBER, STRING, IDENT, OP, AND, OR, NOT, INCLUDES, LPAREN, RPAREN, EOF
    text: str
    pos: int
    value: Any = None


# Order matters: longer operators first.
_OPERATORS: tuple[tuple[str, str], ...] = (
    ("===", "=="),
    ("!==", "!="),
    ("==", "=="),
    ("!=", "!="),
    ("<=", "<="),
    (">=", ">="),
    ("&&", "&&"),
    ("||", "||"),
    ("<", "<"),
    (">", ">"),
    ("=", "=="),
    ("!", "!"),
)

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_KEYWORDS: dict[str, str] = {
    "and": "AND",
    "or": "OR",
    "not": "NOT",
    "includes": "INCLUDES",
}

_LITERAL_WORDS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
}


def tokenize(text: str) -> list[Token]:
    """Split *text* into tokens; raises ConditionSyntaxError on stray characters."""
    tokens: list[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue

        if ch in "'\"":
            end = text.find(ch, i + 1)
            if end == -1:
                raise ConditionSyntaxError("unterminated string literal", expression=text, position=i)
            tokens.append(Token("STRING", text[i:end + 1], i, text[i + 1:end]))
            i = end + 1
            continue

        if ch == "(":
            tokens.append(Token("LPAREN", ch, i))
            i += 1
            continue
        if ch == ")":
            tokens.append(Token("RPAREN", ch, i))
            i += 1
            continue

        # A leading minus is only meaningful as part of a number literal
        m = _NUMBER_RE.match(text, i)
        if m and (ch != "-" or _minus_starts_number(tokens)):
            raw = m.group(0)
            value: float | int = float(raw) if "." in raw else int(raw)
            tokens.append(Token("NUMBER", raw, i, value))
            i = m.end()
            continue

        m = _IDENT_RE.match(text, i)
        if m:
            word = m.group(0)
            lowered = word.lower()
            if lowered in _KEYWORDS:
                tokens.append(Token(_KEYWORDS[lowered], word, i))
            elif lowered in _LITERAL_WORDS:
                tokens.append(Token("LITERAL", word, i, _LITERAL_WORDS[lowered]))
            else:
                tokens.append(Token("IDENT", word, i, word))
            i = m.end()
            continue

        for raw_op, op in _OPERATORS:
            if text.startswith(raw_op, i):
                if op == "&&":
                    tokens.append(Token("AND", raw_op, i))
                elif op == "||":
                    tokens.append(Token("OR", raw_op, i))
                elif op == "!":
                    tokens.append(Token("NOT", raw_op, i))
                else:
                    tokens.append(Token("OP", raw_op, i, op))
                i += len(raw_op)
                break
        else:
            raise ConditionSyntaxError(f"unexpected character {ch!r}", expression=text, position=i)

    tokens.append(Token("EOF", "", n))
    return tokens


def _minus_starts_number(tokens: list[Token]) -> bool:
    """A '-' begins a negative number unless it follows a value token."""
    if not tokens:
        return True
    return tokens[-1].kind not in ("NUMBER", "STRING", "IDENT", "LITERAL", "RPAREN")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = tokenize(text)
        self._pos = 0

    def parse(self) -> Expr:
        expr = self._or()
        tok = self._peek()
        if tok.kind != "EOF":
            self._fail(f"unexpected {tok.text!r}", tok)
        return expr

    # --- helpers ---

    def _peek(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        tok = self._tokens[self._pos]
        self._pos += 1
        return tok

    def _fail(self, message: str, tok: Token) -> None:
        raise ConditionSyntaxError(message, expression=self._text, position=tok.pos)

    # --- grammar rules ---

    def _or(self) -> Expr:
        operands = [self._and()]
        while self._peek().kind == "OR":
            self._advance()
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _and(self) -> Expr:
        operands = [self._unary()]
        while self._peek().kind == "AND":
            self._advance()
            operands.append(self._unary())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _unary(self) -> Expr:
        if self._peek().kind == "NOT":
            self._advance()
            return Not(self._unary())
        return self._comparison()

    def _comparison(self) -> Expr:
        left = self._primary()
        tok = self._peek()
        if tok.kind == "OP":
            self._advance()
            right = self._primary()
            return Compare(tok.value, left, right)
        if tok.kind == "INCLUDES":
            self._advance()
            needle = self._primary()
            return Includes(left, needle)
        return left

    def _primary(self) -> Expr:
        tok = self._advance()
        if tok.kind in ("NUMBER", "STRING", "LITERAL"):
            return Literal(tok.value)
        if tok.kind == "IDENT":
            return Var(tok.value)
        if tok.kind == "LPAREN":
            inner = self._or()
            closing = self._advance()
            if closing.kind != "RPAREN":
                self._fail("missing closing parenthesis", closing)
            return inner
        if tok.kind == "EOF":
            self._fail("unexpected end of expression", tok)
        self._fail(f"unexpected {tok.text!r}", tok)
        raise AssertionError("unreachable")


def parse_condition(text: str) -> Expr:
    """Parse *text* into an expression tree.

    Raises:
        ConditionSyntaxError: if the text is not a valid expression.
    """
    if not text or not text.strip():
        raise ConditionSyntaxError("empty expression", expression=text or "")
    return _Parser(text).parse()

