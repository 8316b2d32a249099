"""ConditionEvaluator — evaluates condition expressions against a variable snapshot.

Every branching decision in the intake flow goes through this module:
process ``ask_if`` predicates (router), stage/question ``ask_if`` and
``required_if`` (questionnaire), derived-rule ``set_when`` guards,
module ``enable_if``, handoff triggers and attachment checklist ``when``.

Evaluation is a pure visitor over the immutable tree produced by
:func:`intake_rulesets.expression.parse_condition`:

  - a missing variable resolves to ``None`` and is falsy; it never raises
  - equality against ``true`` / ``false`` literals is token-tolerant so that
    values persisted as strings ("כן", "1", "yes") still match
  - ordering comparisons only hold between numeric operands
  - ``includes`` tests list membership (by string) or substring

Parsed trees are memoised in a :class:`ConditionCache` that is injected
through the constructor.  The cache is populate-on-miss and never evicts;
entries are keyed by the expression text and never mutated, so a single
cache can be shared by every conversation in the process.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Mapping

from intake_rulesets.constants import (
    ABSENT_STRING_VALUES,
    CONDITION_FALSE_TOKENS,
    CONDITION_TRUE_TOKENS,
)
from intake_rulesets.errors import ConditionSyntaxError
from intake_rulesets.expression import (
    And,
    Compare,
    Expr,
    Includes,
    Literal,
    Not,
    Or,
    Var,
    parse_condition,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value helpers (shared with the questionnaire engine and router)
# ---------------------------------------------------------------------------

def is_present(value: Any) -> bool:
    """True when *value* counts as an answer.

    ``None``, blank strings, the strings "null"/"undefined" and empty lists
    are absent.  ``False`` and ``0`` are present.
    """
    if value is None:
        return False
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return False
        return s.lower() not in ABSENT_STRING_VALUES
    if isinstance(value, (list, tuple, set)):
        return len(value) > 0
    return True


def _token(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().lower()


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if not s:
            return None
        try:
            return float(s)
        except ValueError:
            return None
    return None


# ---------------------------------------------------------------------------
# Parse cache
# ---------------------------------------------------------------------------

class ConditionCache:
    """Load-once store of parsed expression trees keyed by expression text."""

    def __init__(self) -> None:
        self._trees: dict[str, Expr] = {}
        self._lock = threading.Lock()

    def get(self, expression: str) -> Expr | None:
        return self._trees.get(expression)

    def get_or_parse(self, expression: str) -> Expr:
        tree = self._trees.get(expression)
        if tree is not None:
            return tree
        tree = parse_condition(expression)
        with self._lock:
            return self._trees.setdefault(expression, tree)

    def __len__(self) -> int:
        return len(self._trees)

    def __contains__(self, expression: object) -> bool:
        return expression in self._trees


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

class ConditionEvaluator:
    """Evaluates condition expressions against a flat bindings mapping.

    Args:
        cache: parsed-tree cache; a fresh private cache is created when
            omitted (tests typically do this).
    """

    def __init__(self, cache: ConditionCache | None = None) -> None:
        self._cache = cache if cache is not None else ConditionCache()

    @property
    def cache(self) -> ConditionCache:
        return self._cache

    def compile(self, expression: str | None, label: str | None = None) -> Expr | None:
        """Parse (or fetch from cache) the tree for *expression*.

        Returns ``None`` for empty expressions, which always hold.

        Raises:
            ConditionSyntaxError: labelled with *label* when given.
        """
        if expression is None or not str(expression).strip():
            return None
        text = str(expression).strip()
        try:
            return self._cache.get_or_parse(text)
        except ConditionSyntaxError as exc:
            raise exc.with_label(label) if label else exc

    def evaluate(
        self,
        expression: str | None,
        bindings: Mapping[str, Any],
        label: str | None = None,
    ) -> bool:
        """Evaluate *expression* against *bindings*.

        Empty or ``None`` expressions evaluate to ``True``.

        Raises:
            ConditionSyntaxError: if the expression is malformed — a ruleset
                defect that ``RulesetStore.validate_conditions`` reports at
                load time.
        """
        tree = self.compile(expression, label)
        if tree is None:
            return True
        return evaluate_tree(tree, bindings)

    def validate_all(
        self, expressions: Iterable[tuple[str | None, str]]
    ) -> list[ConditionSyntaxError]:
        """Compile every ``(expression, label)`` pair, collecting all errors."""
        errors: list[ConditionSyntaxError] = []
        for expression, label in expressions:
            try:
                self.compile(expression, label)
            except ConditionSyntaxError as exc:
                errors.append(exc)
        return errors


def evaluate_tree(tree: Expr, bindings: Mapping[str, Any]) -> bool:
    """Evaluate a parsed tree to a boolean."""
    return _truthy(_visit(tree, bindings))


def _visit(node: Expr, bindings: Mapping[str, Any]) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Var):
        return bindings.get(node.name)
    if isinstance(node, Not):
        return not _truthy(_visit(node.operand, bindings))
    if isinstance(node, And):
        return all(_truthy(_visit(op, bindings)) for op in node.operands)
    if isinstance(node, Or):
        return any(_truthy(_visit(op, bindings)) for op in node.operands)
    if isinstance(node, Compare):
        return _compare(node, bindings)
    if isinstance(node, Includes):
        return _includes(_visit(node.container, bindings), _visit(node.needle, bindings))
    raise TypeError(f"Unknown expression node: {type(node).__name__}")


def _truthy(value: Any) -> bool:
    if not is_present(value):
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() not in CONDITION_FALSE_TOKENS
    return bool(value)


def _bool_literal(node: Expr) -> bool | None:
    if isinstance(node, Literal) and isinstance(node.value, bool):
        return node.value
    return None


def _matches_bool(value: Any, expected: bool) -> bool:
    """Tolerant ``value == true/false`` used for persisted string flags."""
    if not is_present(value):
        return False
    tokens = CONDITION_TRUE_TOKENS if expected else CONDITION_FALSE_TOKENS
    return _token(value) in tokens


def _equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return not is_present(left) and not is_present(right)
    ln, rn = _to_number(left), _to_number(right)
    if ln is not None and rn is not None:
        return ln == rn
    if isinstance(left, bool) or isinstance(right, bool):
        return _token(left) == _token(right)
    return str(left).strip() == str(right).strip()


def _compare(node: Compare, bindings: Mapping[str, Any]) -> bool:
    op = node.op
    if op in ("==", "!="):
        # `field = true` / `true = field`
        expected = _bool_literal(node.right)
        other = node.left
        if expected is None:
            expected = _bool_literal(node.left)
            other = node.right
        if expected is not None and not isinstance(other, Literal):
            result = _matches_bool(_visit(other, bindings), expected)
        else:
            result = _equals(_visit(node.left, bindings), _visit(node.right, bindings))
        return result if op == "==" else not result

    left = _to_number(_visit(node.left, bindings))
    right = _to_number(_visit(node.right, bindings))
    if left is None or right is None:
        return False
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right

    logger.warning("Unknown comparison operator: %s", op)
    return False


def _includes(container: Any, needle: Any) -> bool:
    if container is None or needle is None:
        return False
    n = str(needle)
    if not n:
        return False
    if isinstance(container, (list, tuple, set)):
        return n in [str(item) for item in container]
    if isinstance(container, str):
        return n in container
    return False
