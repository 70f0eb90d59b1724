"""past-time ltl: parser, monitor synthesis and reference semantics"""
from .ast import (
    Formula, Atom, Not, And, Or, Implies, Iff, Prev, Once, Hist, Since, Span,
    NOT_CONSTRUCTOR, to_text, has_not_constructor_guard, guard_with_not_constructor,
)
from .parser import parse_formula, parse_formulas
from .monitor import MonitorSchema, HistoryVar, synthesize, synthesize_all

__all__ = [
    "Formula",
    "Atom",
    "Not",
    "And",
    "Or",
    "Implies",
    "Iff",
    "Prev",
    "Once",
    "Hist",
    "Since",
    "Span",
    "NOT_CONSTRUCTOR",
    "to_text",
    "has_not_constructor_guard",
    "guard_with_not_constructor",
    "parse_formula",
    "parse_formulas",
    "MonitorSchema",
    "HistoryVar",
    "synthesize",
    "synthesize_all",
]
