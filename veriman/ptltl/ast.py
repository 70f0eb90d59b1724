"""past-time ltl formula tree"""

from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple


NOT_CONSTRUCTOR = "notConstructor"


@dataclass(frozen=True)
class Span:
    """character offsets of a node inside its predicate string"""
    start: int
    end: int


class Formula:
    """base class for formula nodes; equality is structural, spans are ignored"""

    symbol = ""
    temporal = False

    def children(self) -> Tuple["Formula", ...]:
        return ()

    def walk(self) -> Iterator["Formula"]:
        """pre-order traversal, shared subformulas visited once"""
        seen = set()
        stack = [self]
        while stack:
            node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            yield node
            stack.extend(reversed(node.children()))

    def atoms(self) -> Tuple["Atom", ...]:
        return tuple(n for n in self.walk() if isinstance(n, Atom))


@dataclass(frozen=True)
class Atom(Formula):
    """host-language boolean expression, kept verbatim"""
    text: str
    olds: Tuple[str, ...] = ()
    calls: Tuple[str, ...] = ()
    span: Optional[Span] = field(default=None, compare=False, repr=False)

    @property
    def is_not_constructor(self) -> bool:
        return self.text == NOT_CONSTRUCTOR


@dataclass(frozen=True)
class Not(Formula):
    operand: Formula
    span: Optional[Span] = field(default=None, compare=False, repr=False)
    symbol = "!"

    def children(self):
        return (self.operand,)


@dataclass(frozen=True)
class And(Formula):
    left: Formula
    right: Formula
    span: Optional[Span] = field(default=None, compare=False, repr=False)
    symbol = "&&"

    def children(self):
        return (self.left, self.right)


@dataclass(frozen=True)
class Or(Formula):
    left: Formula
    right: Formula
    span: Optional[Span] = field(default=None, compare=False, repr=False)
    symbol = "||"

    def children(self):
        return (self.left, self.right)


@dataclass(frozen=True)
class Implies(Formula):
    left: Formula
    right: Formula
    span: Optional[Span] = field(default=None, compare=False, repr=False)
    symbol = "->"

    def children(self):
        return (self.left, self.right)


@dataclass(frozen=True)
class Iff(Formula):
    left: Formula
    right: Formula
    span: Optional[Span] = field(default=None, compare=False, repr=False)
    symbol = "<->"

    def children(self):
        return (self.left, self.right)


@dataclass(frozen=True)
class Prev(Formula):
    """operand held at the previous transaction"""
    operand: Formula
    span: Optional[Span] = field(default=None, compare=False, repr=False)
    symbol = "Prev"
    temporal = True

    def children(self):
        return (self.operand,)


@dataclass(frozen=True)
class Once(Formula):
    """operand held at some transaction up to and including the current one"""
    operand: Formula
    span: Optional[Span] = field(default=None, compare=False, repr=False)
    symbol = "Once"
    temporal = True

    def children(self):
        return (self.operand,)


@dataclass(frozen=True)
class Hist(Formula):
    """operand held at every transaction up to now"""
    operand: Formula
    span: Optional[Span] = field(default=None, compare=False, repr=False)
    symbol = "Hist"
    temporal = True

    def children(self):
        return (self.operand,)


@dataclass(frozen=True)
class Since(Formula):
    """left has held ever since right last held"""
    left: Formula
    right: Formula
    span: Optional[Span] = field(default=None, compare=False, repr=False)
    symbol = "Since"
    temporal = True

    def children(self):
        return (self.left, self.right)


UNARY = (Not, Prev, Once, Hist)
BINARY = (And, Or, Implies, Iff, Since)


def to_text(formula: Formula) -> str:
    """canonical ascii rendering; parses back to an equal formula"""
    if isinstance(formula, Atom):
        return formula.text
    if isinstance(formula, UNARY):
        inner = to_text(formula.operand)
        if formula.symbol == "!":
            return f"!({inner})"
        return f"{formula.symbol}({inner})"
    if isinstance(formula, BINARY):
        sep = f" {formula.symbol} "
        return f"({to_text(formula.left)}{sep}{to_text(formula.right)})"
    raise TypeError(f"not a formula node: {formula!r}")


def is_past_free(formula: Formula) -> bool:
    return not any(n.temporal for n in formula.walk())


def has_not_constructor_guard(formula: Formula) -> bool:
    """true when the formula is `notConstructor -> phi` or `!notConstructor || phi` at top level"""
    if isinstance(formula, Implies):
        return isinstance(formula.left, Atom) and formula.left.is_not_constructor
    if isinstance(formula, Or):
        for side in (formula.left, formula.right):
            if isinstance(side, Not) and isinstance(side.operand, Atom) and side.operand.is_not_constructor:
                return True
    return False


def guard_with_not_constructor(formula: Formula) -> Formula:
    if has_not_constructor_guard(formula):
        return formula
    return Implies(Atom(NOT_CONSTRUCTOR), formula, span=getattr(formula, "span", None))
