"""Tests for the condition language."""

import pytest

from matrixci import conditions
from matrixci.errors import ConditionSyntaxError, UnboundVariable

from conftest import LINUX_GNU, LINUX_MUSL


class TestEvaluate:
    def test_host_differs_from_target(self):
        env = {"HOST": LINUX_GNU, "TARGET": LINUX_MUSL}
        assert conditions.evaluate("$HOST != $TARGET", env) is True

    def test_host_equals_target(self):
        env = {"HOST": LINUX_GNU, "TARGET": LINUX_GNU}
        assert conditions.evaluate("$HOST != $TARGET", env) is False

    def test_and_with_literal(self):
        expr = "$TRAVIS_OS_NAME = linux && $HOST != $TARGET"
        env = {"TRAVIS_OS_NAME": "linux", "HOST": LINUX_GNU, "TARGET": LINUX_MUSL}
        assert conditions.evaluate(expr, env) is True

        env["TRAVIS_OS_NAME"] = "osx"
        assert conditions.evaluate(expr, env) is False

    def test_double_equals_and_brackets(self):
        assert conditions.evaluate("[[ $A == x ]]", {"A": "x"}) is True
        assert conditions.evaluate("[ $A = y ]", {"A": "x"}) is False

    def test_empty_quoted_literal(self):
        expr = '$TRAVIS_RUST_VERSION = stable && $TARGET != ""'
        assert conditions.evaluate(expr, {"TRAVIS_RUST_VERSION": "stable", "TARGET": "t"}) is True
        assert conditions.evaluate(expr, {"TRAVIS_RUST_VERSION": "stable", "TARGET": ""}) is False

    def test_braced_variable_and_single_quotes(self):
        assert conditions.evaluate("${CHANNEL} = 'beta'", {"CHANNEL": "beta"}) is True

    def test_unbound_variable(self):
        with pytest.raises(UnboundVariable) as exc:
            conditions.evaluate("$MISSING = x", {})
        assert exc.value.name == "MISSING"

    def test_and_short_circuits(self):
        # right side would raise if it were evaluated
        assert conditions.evaluate("$A = yes && $MISSING = x", {"A": "no"}) is False

    def test_and_evaluates_right_when_left_true(self):
        with pytest.raises(UnboundVariable):
            conditions.evaluate("$A = yes && $MISSING = x", {"A": "yes"})


class TestParse:
    @pytest.mark.parametrize(
        "expr",
        [
            "",
            "$A",
            "$A =",
            "$A = b &&",
            "$A = b || $C = d",
            "$A = b $C = d",
            "= b",
        ],
    )
    def test_syntax_errors(self, expr):
        with pytest.raises(ConditionSyntaxError):
            conditions.parse(expr)

    def test_brackets_inside_literals_are_kept(self):
        assert conditions.evaluate("[x] = [x]", {}) is True
        assert conditions.evaluate("$A = [x]", {"A": "[x]"}) is True

    def test_wrapper_needs_spaces(self):
        with pytest.raises(ConditionSyntaxError):
            conditions.parse("[[$A = x]]")
