#!/usr/bin/env python3
"""
Expression evaluation.

The runner consumes expressions through two capabilities only: interpolate
``${{ ... }}`` placeholders in a string, and evaluate a condition to a
boolean. ContextEvaluator is a small default implementation over a dict of
named contexts (github, env, matrix, steps, job, inputs, secrets, runner).
It supports dotted and indexed lookups, literals, ``==``, ``!=``, ``!``,
``&&``, ``||``, parentheses and the status functions. A lookup that misses
or hits a value of the wrong shape yields null, never an error.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from localci.core.errors import ExpressionError

_PLACEHOLDER = re.compile(r"\$\{\{(.*?)\}\}", re.DOTALL)
_TOKEN = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>'(?:[^']|'')*')
  | (?P<number>-?\d+(?:\.\d+)?)
  | (?P<op>==|!=|&&|\|\||!|\(|\)|\[|\]|\.|,)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_-]*)
    """,
    re.VERBOSE,
)
_STATUS_FUNCTIONS = ("success", "failure", "always", "cancelled")


class ExpressionEvaluator(ABC):
    """Capability consumed by the runner."""

    @abstractmethod
    def interpolate(self, value: str) -> str:
        """Replace every ``${{ expr }}`` in ``value``."""

    @abstractmethod
    def evaluate_bool(self, expression: str) -> bool:
        """Evaluate a condition."""


def eval_bool(evaluator: ExpressionEvaluator, expression: str, default: str = "success()") -> bool:
    """Evaluate an ``if:`` condition.

    An empty condition falls back to ``default``; a condition without a
    status function is implicitly combined with ``success()``.
    """
    expression = (expression or "").strip()
    whole = _PLACEHOLDER.fullmatch(expression)
    if whole:
        expression = whole.group(1).strip()
    if not expression:
        expression = default
    if not any(re.search(rf"\b{name}\s*\(", expression) for name in _STATUS_FUNCTIONS):
        expression = f"success() && ({expression})"
    return evaluator.evaluate_bool(expression)


def to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2)
    return str(value)


def truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def _loose_equals(left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        return left.lower() == right.lower()
    if isinstance(left, (int, float)) or isinstance(right, (int, float)):
        try:
            return float(left) == float(right)
        except (TypeError, ValueError):
            return False
    return left == right


class _Parser:
    def __init__(self, expression: str, evaluator: "ContextEvaluator"):
        self.tokens = self._tokenize(expression)
        self.pos = 0
        self.evaluator = evaluator
        self.expression = expression

    def _tokenize(self, expression: str) -> List[Tuple[str, str]]:
        tokens = []
        pos = 0
        while pos < len(expression):
            match = _TOKEN.match(expression, pos)
            if not match:
                raise ExpressionError(f"Unexpected character at {pos} in: {expression}")
            pos = match.end()
            kind = match.lastgroup
            if kind != "ws":
                tokens.append((kind, match.group(kind)))
        return tokens

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, op: str) -> bool:
        token = self._peek()
        if token is not None and token[0] == "op" and token[1] == op:
            self.pos += 1
            return True
        return False

    def _expect(self, op: str) -> None:
        if not self._accept(op):
            raise ExpressionError(f"Expected '{op}' in: {self.expression}")

    def parse(self) -> Any:
        value = self._or()
        if self._peek() is not None:
            raise ExpressionError(f"Unexpected token {self._peek()[1]!r} in: {self.expression}")
        return value

    def _or(self) -> Any:
        value = self._and()
        while self._accept("||"):
            right = self._and()
            value = value if truthy(value) else right
        return value

    def _and(self) -> Any:
        value = self._not()
        while self._accept("&&"):
            right = self._not()
            value = right if truthy(value) else value
        return value

    def _not(self) -> Any:
        if self._accept("!"):
            return not truthy(self._not())
        return self._compare()

    def _compare(self) -> Any:
        left = self._primary()
        if self._accept("=="):
            return _loose_equals(left, self._primary())
        if self._accept("!="):
            return not _loose_equals(left, self._primary())
        return left

    def _primary(self) -> Any:
        token = self._peek()
        if token is None:
            raise ExpressionError(f"Unexpected end of expression: {self.expression}")
        kind, text = token
        self.pos += 1
        if kind == "string":
            return text[1:-1].replace("''", "'")
        if kind == "number":
            return float(text) if "." in text else int(text)
        if kind == "op" and text == "(":
            value = self._or()
            self._expect(")")
            return value
        if kind != "ident":
            raise ExpressionError(f"Unexpected token {text!r} in: {self.expression}")

        lowered = text.lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        if lowered == "null":
            return None
        if self._accept("("):
            args = []
            if not self._accept(")"):
                args.append(self._or())
                while self._accept(","):
                    args.append(self._or())
                self._expect(")")
            return self.evaluator.call(lowered, args)

        value = self.evaluator.lookup(text)
        while True:
            if self._accept("."):
                kind, name = self._peek() or ("", "")
                if kind != "ident":
                    raise ExpressionError(f"Expected property name in: {self.expression}")
                self.pos += 1
                value = _index(value, name)
            elif self._accept("["):
                key = self._or()
                self._expect("]")
                value = _index(value, key)
            else:
                return value


def _index(value: Any, key: Any) -> Any:
    if isinstance(value, dict):
        if key in value:
            return value[key]
        if isinstance(key, str):
            for candidate, item in value.items():
                if isinstance(candidate, str) and candidate.lower() == key.lower():
                    return item
        return None
    if isinstance(value, list) and isinstance(key, (int, float)) and not isinstance(key, bool):
        index = int(key)
        return value[index] if 0 <= index < len(value) else None
    return None


class ContextEvaluator(ExpressionEvaluator):
    """Evaluates expressions against named contexts.

    Args:
        contexts: Mapping of context name to (nested) values.
        job_status: Callable returning the current job status string.
        is_cancelled: Callable reporting whether the run was cancelled.
    """

    def __init__(
        self,
        contexts: Dict[str, Any],
        job_status: Optional[Callable[[], str]] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ):
        self.contexts = contexts
        self.job_status = job_status or (lambda: "success")
        self.is_cancelled = is_cancelled or (lambda: False)

    def lookup(self, name: str) -> Any:
        return _index(self.contexts, name)

    def call(self, name: str, args: List[Any]) -> Any:
        if name == "success":
            return self.job_status() != "failure" and not self.is_cancelled()
        if name == "failure":
            return self.job_status() == "failure"
        if name == "always":
            return True
        if name == "cancelled":
            return self.is_cancelled()
        if name == "contains" and len(args) == 2:
            haystack, needle = args
            if isinstance(haystack, list):
                return any(_loose_equals(item, needle) for item in haystack)
            return to_string(needle).lower() in to_string(haystack).lower()
        if name == "startswith" and len(args) == 2:
            return to_string(args[0]).lower().startswith(to_string(args[1]).lower())
        if name == "endswith" and len(args) == 2:
            return to_string(args[0]).lower().endswith(to_string(args[1]).lower())
        if name == "format" and args:
            result = to_string(args[0])
            for i, arg in enumerate(args[1:]):
                result = result.replace(f"{{{i}}}", to_string(arg))
            return result
        if name == "tojson" and len(args) == 1:
            return json.dumps(args[0], indent=2)
        raise ExpressionError(f"Unknown function: {name}()")

    def evaluate(self, expression: str) -> Any:
        return _Parser(expression, self).parse()

    def interpolate(self, value: str) -> str:
        if not value or "${{" not in value:
            return value
        return _PLACEHOLDER.sub(lambda m: to_string(self.evaluate(m.group(1).strip())), value)

    def evaluate_bool(self, expression: str) -> bool:
        return truthy(self.evaluate(expression))
