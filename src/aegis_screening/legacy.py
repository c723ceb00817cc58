"""One-time conversion of legacy ordered-rule questionnaires.

Older screener definitions express their logic as an ordered list of
``(condition string, outcome, message)`` rules plus a default outcome::

    logic:
      rules:
        - condition: "pregnant === 'Yes'"
          outcome: do_not_use
        - condition: "age >= 18 && pregnant == 'No'"
          outcome: ok_to_use
      defaultOutcome: ask_a_doctor

Condition strings are never evaluated.  They are tokenized and parsed by
a closed recursive-descent parser into a small AST::

    Comparison(identifier, operator, value)
    And(items) | Or(items) | Not(operand)

and the AST is then lowered into the canonical condition-bucket ruleset.
Only rulesets that have an exact bucket equivalent are accepted:

  - every rule must reduce to a conjunction of comparisons
    (``!`` is pushed into a single comparison; ``||`` is rejected)
  - at most one rule per bucket outcome
  - ``default_outcome`` must be ``ask_a_doctor``, which maps to the
    fail-safe ``consult_professional``
  - an ``ask_a_doctor`` rule before ``ok_to_use`` must be a single
    comparison; its negation is added to the eligible bucket

Anything else raises ``LegacyMigrationError`` naming the rule index.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Union

from aegis_screening.constants import LEGACY_OUTCOME_MAP
from aegis_screening.errors import LegacyExpressionError, LegacyMigrationError
from aegis_screening.models.questionnaire import QuestionnaireDefinition
from aegis_screening.questionnaire import parse_definition

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Comparison:
    identifier: str
    operator: str  # canonical operator name
    value: Any


@dataclass(frozen=True)
class And:
    items: tuple["Node", ...]


@dataclass(frozen=True)
class Or:
    items: tuple["Node", ...]


@dataclass(frozen=True)
class Not:
    operand: "Node"


Node = Union[Comparison, And, Or, Not]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Token:
    kind: str  # ident | number | string | bool | cmp | and | or | not | lparen | rparen | end
    text: str
    pos: int
    value: Any = None


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>-?\d+(?:\.\d+)?)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<cmp>===|!==|==|!=|<=|>=|<|>)
  | (?P<and>&&)
  | (?P<or>\|\|)
  | (?P<not>!)
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and": "and", "or": "or", "not": "not"}

_CMP_OPERATORS = {
    "==": "equals",
    "===": "equals",
    "!=": "not_equals",
    "!==": "not_equals",
    "<": "less_than",
    ">": "greater_than",
    "<=": "less_than_or_equal",
    ">=": "greater_than_or_equal",
}

# Operator to use when the identifier is on the right: ``18 < age``.
_MIRRORED = {
    "equals": "equals",
    "not_equals": "not_equals",
    "less_than": "greater_than",
    "greater_than": "less_than",
    "less_than_or_equal": "greater_than_or_equal",
    "greater_than_or_equal": "less_than_or_equal",
}

# Operator that a leading ``!`` turns a comparison into.
_NEGATED = {
    "equals": "not_equals",
    "not_equals": "equals",
    "less_than": "greater_than_or_equal",
    "greater_than_or_equal": "less_than",
    "greater_than": "less_than_or_equal",
    "less_than_or_equal": "greater_than",
}


def tokenize(expression: str) -> list[Token]:
    """Split *expression* into tokens; anything unrecognised is an error."""
    if not isinstance(expression, str):
        raise LegacyExpressionError("condition must be a string")

    tokens: list[Token] = []
    pos = 0
    while pos < len(expression):
        m = _TOKEN_RE.match(expression, pos)
        if m is None:
            raise LegacyExpressionError(
                f"unexpected character {expression[pos]!r}", position=pos,
            )
        kind = m.lastgroup
        text = m.group()
        if kind == "ws":
            pass
        elif kind == "number":
            value = float(text) if "." in text else int(text)
            tokens.append(Token("number", text, pos, value))
        elif kind == "string":
            body = re.sub(r"\\(.)", r"\1", text[1:-1])
            tokens.append(Token("string", text, pos, body))
        elif kind == "ident":
            lowered = text.lower()
            if lowered in ("true", "false"):
                tokens.append(Token("bool", text, pos, lowered == "true"))
            elif lowered in _KEYWORDS:
                tokens.append(Token(_KEYWORDS[lowered], text, pos))
            else:
                tokens.append(Token("ident", text, pos, text))
        else:
            tokens.append(Token(kind, text, pos))
        pos = m.end()

    tokens.append(Token("end", "", len(expression)))
    return tokens


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class _Parser:
    """Recursive descent over the token list.

    Grammar::

        expr       := or_expr
        or_expr    := and_expr (("||" | "or") and_expr)*
        and_expr   := unary (("&&" | "and") unary)*
        unary      := ("!" | "not") unary | primary
        primary    := "(" expr ")" | comparison
        comparison := operand CMP operand | IDENT
        operand    := IDENT | NUMBER | STRING | BOOL
    """

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._i = 0

    def _peek(self) -> Token:
        return self._tokens[self._i]

    def _take(self) -> Token:
        tok = self._tokens[self._i]
        self._i += 1
        return tok

    def parse(self) -> Node:
        node = self._or()
        tok = self._peek()
        if tok.kind != "end":
            raise LegacyExpressionError(f"unexpected token {tok.text!r}", position=tok.pos)
        return node

    def _or(self) -> Node:
        items = [self._and()]
        while self._peek().kind == "or":
            self._take()
            items.append(self._and())
        return items[0] if len(items) == 1 else Or(tuple(items))

    def _and(self) -> Node:
        items = [self._unary()]
        while self._peek().kind == "and":
            self._take()
            items.append(self._unary())
        return items[0] if len(items) == 1 else And(tuple(items))

    def _unary(self) -> Node:
        if self._peek().kind == "not":
            self._take()
            return Not(self._unary())
        return self._primary()

    def _primary(self) -> Node:
        tok = self._peek()
        if tok.kind == "lparen":
            self._take()
            node = self._or()
            closing = self._take()
            if closing.kind != "rparen":
                raise LegacyExpressionError("expected ')'", position=closing.pos)
            return node
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._operand()
        if self._peek().kind != "cmp":
            # Bare identifier: truthiness test
            if left.kind == "ident":
                return Comparison(left.value, "equals", True)
            raise LegacyExpressionError(
                f"expected a comparison after {left.text!r}", position=left.pos,
            )
        op_tok = self._take()
        right = self._operand()
        op = _CMP_OPERATORS[op_tok.text]

        if left.kind == "ident" and right.kind != "ident":
            return Comparison(left.value, op, right.value)
        if right.kind == "ident" and left.kind != "ident":
            return Comparison(right.value, _MIRRORED[op], left.value)
        raise LegacyExpressionError(
            "a comparison needs exactly one question identifier and one literal",
            position=op_tok.pos,
        )

    def _operand(self) -> Token:
        tok = self._take()
        if tok.kind not in ("ident", "number", "string", "bool"):
            what = tok.text or "end of expression"
            raise LegacyExpressionError(f"unexpected {what!r}", position=tok.pos)
        return tok


def parse_expression(expression: str) -> Node:
    """Parse a legacy condition string into an AST."""
    return _Parser(tokenize(expression)).parse()


# ---------------------------------------------------------------------------
# Lowering
# ---------------------------------------------------------------------------

def to_conjunction(node: Node) -> list[Comparison]:
    """Flatten *node* into a list of comparisons that must all hold.

    Raises ``LegacyMigrationError`` when the node is not a pure
    conjunction (any disjunction, or a negated compound).
    """
    if isinstance(node, Comparison):
        return [node]
    if isinstance(node, And):
        out: list[Comparison] = []
        for item in node.items:
            out.extend(to_conjunction(item))
        return out
    if isinstance(node, Not):
        inner = node.operand
        if isinstance(inner, Not):
            return to_conjunction(inner.operand)
        if isinstance(inner, Comparison):
            return [Comparison(inner.identifier, _NEGATED[inner.operator], inner.value)]
        raise LegacyMigrationError("negated compound conditions have no bucket equivalent")
    raise LegacyMigrationError("'||' conditions have no bucket equivalent")


_LEGACY_QUESTION_TYPES = {
    "yes_no": "boolean",
    "multiple_choice": "single_choice",
}


def _convert_question(raw: dict[str, Any]) -> dict[str, Any]:
    """Rewrite a legacy question dict into the canonical shape."""
    q = dict(raw)
    qtype = q.get("type")
    if qtype == "text":
        raise LegacyMigrationError(
            f"question '{q.get('id')}': free-text questions have no canonical type"
        )
    if qtype in _LEGACY_QUESTION_TYPES:
        q["type"] = _LEGACY_QUESTION_TYPES[qtype]
    validation = q.pop("validation", None) or {}
    if q.get("type") == "numeric":
        if "min" in validation and "min_value" not in q:
            q["min_value"] = validation["min"]
        if "max" in validation and "max_value" not in q:
            q["max_value"] = validation["max"]
    return q


def _convert_value(question: dict[str, Any] | None, value: Any) -> Any:
    """Coerce a legacy literal to the type the target question answers with."""
    if question is None:
        return value
    qtype = question.get("type")
    if qtype == "boolean" and isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "yes":
            return True
        if lowered == "no":
            return False
    if qtype == "numeric" and isinstance(value, str):
        try:
            num = float(value)
        except ValueError:
            return value
        return int(num) if num.is_integer() else num
    return value


def _negated_guards(pending: list[tuple[int, Node]]) -> list[Comparison]:
    """Negate each ``ask_a_doctor`` rule that precedes the ``ok_to_use`` rule.

    Under first-match those rules block eligibility, so their negation
    joins the eligible conjunction.  Only a single comparison negates to
    a comparison.
    """
    guards: list[Comparison] = []
    for index, node in pending:
        try:
            comparisons = to_conjunction(node)
        except LegacyMigrationError as exc:
            raise LegacyMigrationError(str(exc), rule_index=index) from exc
        if len(comparisons) != 1:
            raise LegacyMigrationError(
                "an 'ask_a_doctor' rule before the 'ok_to_use' rule must be a "
                "single comparison",
                rule_index=index,
            )
        c = comparisons[0]
        guards.append(Comparison(c.identifier, _NEGATED[c.operator], c.value))
    return guards


def migrate_legacy_ruleset(raw: dict[str, Any]) -> QuestionnaireDefinition:
    """Convert a legacy ordered-rule definition into a checked canonical one.

    Accepts the logic block under ``logic`` or ``ruleset`` and either
    ``defaultOutcome`` or ``default_outcome``.  The result has passed
    :func:`~aegis_screening.questionnaire.parse_definition`.

    ``ask_a_doctor`` rules after the ``ok_to_use`` rule are dropped.  Earlier
    ones are negated into the eligible conjunction, so a patient they
    matched is never made eligible.
    """
    if not isinstance(raw, dict):
        raise LegacyMigrationError("definition must be a mapping")

    logic = raw.get("logic") or raw.get("ruleset")
    if not isinstance(logic, dict) or "rules" not in logic:
        raise LegacyMigrationError("definition has no legacy 'rules' list")

    default = logic.get("default_outcome", logic.get("defaultOutcome"))
    if default != "ask_a_doctor":
        raise LegacyMigrationError(
            f"default_outcome must be 'ask_a_doctor', got {default!r}"
        )

    questions = [_convert_question(q) for q in raw.get("questions") or []]
    by_id = {q.get("id"): q for q in questions}

    buckets: dict[str, list[dict[str, Any]]] = {"ineligible": [], "eligible": []}
    messages: dict[str, str] = {}
    seen_outcomes: dict[str, int] = {}
    # ask_a_doctor rules that precede the ok_to_use rule, as (index, node)
    pending_guards: list[tuple[int, Node]] = []

    for i, rule in enumerate(logic.get("rules") or []):
        if not isinstance(rule, dict):
            raise LegacyMigrationError("rule must be a mapping", rule_index=i)
        legacy_outcome = rule.get("outcome")
        outcome = LEGACY_OUTCOME_MAP.get(legacy_outcome)
        if outcome is None:
            raise LegacyMigrationError(f"unknown outcome {legacy_outcome!r}", rule_index=i)

        try:
            node = parse_expression(rule.get("condition", ""))
        except LegacyExpressionError as exc:
            raise LegacyMigrationError(str(exc), rule_index=i) from exc

        if outcome == "consult_professional":
            if "eligible" in seen_outcomes:
                logger.info("Dropping legacy rule %d: shadowed by the ok_to_use rule", i)
            else:
                pending_guards.append((i, node))
            continue
        if outcome in seen_outcomes:
            raise LegacyMigrationError(
                f"second rule for outcome {legacy_outcome!r} "
                f"(first is rules[{seen_outcomes[outcome]}])",
                rule_index=i,
            )
        seen_outcomes[outcome] = i

        try:
            comparisons = to_conjunction(node)
        except LegacyMigrationError as exc:
            raise LegacyMigrationError(str(exc), rule_index=i) from exc

        if outcome == "eligible":
            for guard in _negated_guards(pending_guards):
                if guard not in comparisons:
                    comparisons.append(guard)

        buckets[outcome] = [
            {
                "question_id": c.identifier,
                "operator": c.operator,
                "value": _convert_value(by_id.get(c.identifier), c.value),
            }
            for c in comparisons
        ]
        if rule.get("message"):
            messages[outcome] = rule["message"]

    canonical = {
        "title": raw.get("title"),
        "description": raw.get("description"),
        "questions": questions,
        "ruleset": {**buckets, "messages": messages},
        "disclaimers": raw.get("disclaimers") or [],
        "notes": raw.get("notes"),
    }
    definition = parse_definition(canonical)
    logger.info(
        "Migrated legacy ruleset: ineligible=%d conditions, eligible=%d conditions",
        len(definition.ruleset.ineligible),
        len(definition.ruleset.eligible),
    )
    return definition
