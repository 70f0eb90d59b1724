"""z3 bounded self-check of synthesized monitors"""

from dataclasses import replace

import pytest

from veriman.ptltl import parse_formula, synthesize
from veriman.ptltl.monitor import Const
from veriman.verification.monitor_check import CheckResult, MonitorChecker


@pytest.fixture
def checker():
    return MonitorChecker(timeout_ms=5000)


@pytest.mark.parametrize("text", [
    "totalSupply == sum_of_balances",
    "Prev(a)",
    "Once(a) -> Hist(b)",
    "a Since (b && !c)",
    "Hist(Prev(a) -> Once(b))",
    "!Once(a) <-> Hist(!a)",
    "Prev(Prev(a)) || true",
])
def test_synthesized_monitors_are_valid(checker, text):
    formula = parse_formula(text)
    outcome = checker.check(formula, depth=4)
    assert outcome.result == CheckResult.VALID
    assert outcome.valid
    assert outcome.step is None


def test_wrong_initial_value_is_caught(checker):
    formula = parse_formula("Hist(p)")
    schema = synthesize(formula)
    broken = replace(schema, history=tuple(replace(h, initial=False) for h in schema.history))

    outcome = checker.check(formula, broken, depth=3)

    assert outcome.result == CheckResult.MISMATCH
    assert not outcome.valid
    assert outcome.step == 0
    assert outcome.model["p"][0] is True


def test_wrong_update_is_caught(checker):
    formula = parse_formula("Once(p)")
    schema = synthesize(formula)
    never = replace(schema, updates=tuple((name, Const(False)) for name, _ in schema.updates))

    outcome = checker.check(formula, never, depth=3)

    assert outcome.result == CheckResult.MISMATCH
    assert outcome.step is not None and outcome.step > 0


def test_check_with_explicit_schema_matches_default(checker):
    formula = parse_formula("a Since b")
    assert checker.check(formula, synthesize(formula)).valid
    assert checker.check(formula).valid


def test_direct_encoding_of_prev_at_zero(checker):
    formula = parse_formula("Prev(a)")
    checker.check(formula, depth=1)
    assert str(checker.direct(formula, 0)) == "False"
