# conditions.py
"""
Tiny condition language used to gate commands and deploys.

Examples:
    $TRAVIS_OS_NAME = linux && $HOST != $TARGET
    [[ $CI_CHANNEL == stable && $TARGET != "" ]]

Only comparisons between variables and literals are supported, joined by
`&&`. There is deliberately no `||`, no negation and no grouping.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Mapping, Tuple

from .errors import ConditionSyntaxError, UnboundVariable


_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<and>&&)
      | (?P<op>==|!=|=)
      | \$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}
      | \$(?P<var>[A-Za-z_][A-Za-z0-9_]*)
      | "(?P<dq>[^"]*)"
      | '(?P<sq>[^']*)'
      | (?P<word>[^\s"'=!&$]+)
    )
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class Operand:
    value: str
    is_var: bool

    def resolve(self, env: Mapping[str, str]) -> str:
        if not self.is_var:
            return self.value
        if self.value not in env:
            raise UnboundVariable(self.value)
        return env[self.value]


@dataclass(frozen=True)
class Comparison:
    left: Operand
    op: str
    right: Operand

    def evaluate(self, env: Mapping[str, str]) -> bool:
        lhs = self.left.resolve(env)
        rhs = self.right.resolve(env)
        if self.op == "!=":
            return lhs != rhs
        return lhs == rhs


# `[[ expr ]]` or `[ expr ]`, as in a shell test; the spaces are required there too
_BRACKETS_RE = re.compile(r"^(?:\[\[\s(?P<double>.*)\s\]\]|\[\s(?P<single>.*)\s\])$", re.DOTALL)


def _strip_brackets(expression: str) -> str:
    text = expression.strip()
    m = _BRACKETS_RE.match(text)
    if not m:
        return text
    inner = m.group("double") if m.group("double") is not None else m.group("single")
    return inner.strip()


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        if text[pos:].strip() == "":
            break
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ConditionSyntaxError(f"unexpected input at column {pos + 1}: {text[pos:]!r}")
        kind = m.lastgroup
        value = m.group(kind)
        if kind == "braced":
            kind = "var"
        elif kind in ("dq", "sq"):
            kind = "word"
        tokens.append((kind, value))
        pos = m.end()
    return tokens


@lru_cache(maxsize=256)
def parse(expression: str) -> Tuple[Comparison, ...]:
    """Parse an expression into the comparisons it ANDs together."""
    text = _strip_brackets(expression)
    tokens = _tokenize(text)
    if not tokens:
        raise ConditionSyntaxError("empty condition")

    comparisons: List[Comparison] = []
    i = 0
    while True:
        if i + 3 > len(tokens):
            raise ConditionSyntaxError(f"incomplete comparison in {expression!r}")
        (lk, lv), (ok, ov), (rk, rv) = tokens[i:i + 3]
        if lk not in ("var", "word") or ok != "op" or rk not in ("var", "word"):
            raise ConditionSyntaxError(f"expected '<operand> <op> <operand>' in {expression!r}")
        comparisons.append(
            Comparison(Operand(lv, lk == "var"), "!=" if ov == "!=" else "=", Operand(rv, rk == "var"))
        )
        i += 3
        if i == len(tokens):
            break
        if tokens[i][0] != "and":
            raise ConditionSyntaxError(f"expected '&&' in {expression!r}, got {tokens[i][1]!r}")
        i += 1

    return tuple(comparisons)


def evaluate(expression: str, env: Mapping[str, str]) -> bool:
    """
    Evaluate `expression` against `env`.

    Comparisons are evaluated left to right and evaluation stops at the first
    false one, so a variable referenced only after a false comparison is never
    looked up.

    Raises:
        UnboundVariable: a referenced variable is missing from env
        ConditionSyntaxError: the expression is not valid
    """
    for comparison in parse(expression):
        if not comparison.evaluate(env):
            return False
    return True
