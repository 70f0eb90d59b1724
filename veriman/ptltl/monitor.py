"""monitor synthesis - turn a ptltl formula into history booleans plus a per-transaction step

Every past-time operator gets one boolean that persists across transactions.
The step at the end of a transaction runs in two passes:

    read pass    temporaries for every temporal node, computed from the
                 old history values and the current atoms; goal computed
    update pass  history := temporaries

`Prev` reads its variable before the update pass, so it sees the value the
operand had at the previous transaction.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import networkx as nx

from veriman.ptltl.ast import (
    And, Atom, Formula, Hist, Iff, Implies, Not, Once, Or, Prev, Since,
)

logger = logging.getLogger(__name__)


# expression ir


class Expr:
    pass


@dataclass(frozen=True)
class Const(Expr):
    value: bool


@dataclass(frozen=True)
class AtomRef(Expr):
    atom: Atom


@dataclass(frozen=True)
class VarRef(Expr):
    """history variable, value before the update pass"""
    name: str


@dataclass(frozen=True)
class TempRef(Expr):
    """read-pass temporary"""
    name: str


@dataclass(frozen=True)
class NotE(Expr):
    operand: Expr


@dataclass(frozen=True)
class AndE(Expr):
    left: Expr
    right: Expr


@dataclass(frozen=True)
class OrE(Expr):
    left: Expr
    right: Expr


@dataclass(frozen=True)
class ImpliesE(Expr):
    left: Expr
    right: Expr


@dataclass(frozen=True)
class IffE(Expr):
    left: Expr
    right: Expr


KIND_PREV = "prev"
KIND_ONCE = "once"
KIND_HIST = "hist"
KIND_SINCE = "since"

INITIAL_VALUES = {
    KIND_PREV: False,
    KIND_ONCE: False,
    KIND_HIST: True,
    KIND_SINCE: False,
}

_KIND_OF = {Prev: KIND_PREV, Once: KIND_ONCE, Hist: KIND_HIST, Since: KIND_SINCE}


@dataclass(frozen=True)
class HistoryVar:
    name: str
    kind: str
    initial: bool
    node: Formula = field(compare=False, repr=False)


@dataclass
class MonitorSchema:
    """(H, upd, goal) for one predicate"""
    index: int
    formula: Formula
    history: Tuple[HistoryVar, ...]
    steps: Tuple[Tuple[str, Expr], ...]
    updates: Tuple[Tuple[str, Expr], ...]
    goal: Expr

    @property
    def goal_name(self) -> str:
        return f"__vmGoal{self.index}"

    @property
    def history_names(self) -> Tuple[str, ...]:
        return tuple(h.name for h in self.history)

    def atoms(self) -> Tuple[Atom, ...]:
        return self.formula.atoms()

    def temp(self, name: str) -> Expr:
        for temp_name, expr in self.steps:
            if temp_name == name:
                return expr
        raise KeyError(name)

    def inline(self, expr: Expr) -> Expr:
        """replace temporaries by their read-pass definitions"""
        temps = dict(self.steps)
        return _substitute(expr, lambda e: temps.get(e.name) if isinstance(e, TempRef) else None, recurse=True)

    def pure_updates(self) -> Dict[str, Expr]:
        """upd: each history variable as a function of old history values and atoms"""
        return {name: self.inline(expr) for name, expr in self.updates}

    def pure_goal(self) -> Expr:
        return self.inline(self.goal)

    def goal_formula(self) -> Formula:
        """the goal as a past-free formula, history variables read as atoms"""
        return expr_to_formula(self.pure_goal())


def _substitute(expr: Expr, fn: Callable[[Expr], Optional[Expr]], recurse: bool = False) -> Expr:
    replacement = fn(expr)
    if replacement is not None:
        return _substitute(replacement, fn, recurse) if recurse else replacement
    if isinstance(expr, NotE):
        return NotE(_substitute(expr.operand, fn, recurse))
    if isinstance(expr, (AndE, OrE, ImpliesE, IffE)):
        return type(expr)(_substitute(expr.left, fn, recurse), _substitute(expr.right, fn, recurse))
    return expr


def expr_to_formula(expr: Expr) -> Formula:
    if isinstance(expr, AtomRef):
        return expr.atom
    if isinstance(expr, (VarRef, TempRef)):
        return Atom(expr.name)
    if isinstance(expr, Const):
        return Atom("true" if expr.value else "false")
    if isinstance(expr, NotE):
        return Not(expr_to_formula(expr.operand))
    pairs = {AndE: And, OrE: Or, ImpliesE: Implies, IffE: Iff}
    for expr_type, node_type in pairs.items():
        if isinstance(expr, expr_type):
            return node_type(expr_to_formula(expr.left), expr_to_formula(expr.right))
    raise TypeError(f"not an expression: {expr!r}")


def render(expr: Expr, atom: Callable[[Atom], str], var: Optional[Callable[[str], str]] = None) -> str:
    """host-language text for an expression; implication and equivalence are desugared"""
    var = var or (lambda name: name)
    if isinstance(expr, Const):
        return "true" if expr.value else "false"
    if isinstance(expr, AtomRef):
        return f"({atom(expr.atom)})"
    if isinstance(expr, (VarRef, TempRef)):
        return var(expr.name)
    if isinstance(expr, NotE):
        return f"!{render(expr.operand, atom, var)}"
    left = render(expr.left, atom, var)
    right = render(expr.right, atom, var)
    if isinstance(expr, AndE):
        return f"({left} && {right})"
    if isinstance(expr, OrE):
        return f"({left} || {right})"
    if isinstance(expr, ImpliesE):
        return f"(!{left} || {right})"
    if isinstance(expr, IffE):
        return f"({left} == {right})"
    raise TypeError(f"not an expression: {expr!r}")


def subformula_graph(formula: Formula) -> nx.DiGraph:
    """dag of subformulas keyed by object identity; edges point child -> parent"""
    graph = nx.DiGraph()
    for rank, node in enumerate(formula.walk()):
        graph.add_node(id(node), formula=node, rank=rank)
    for node in formula.walk():
        for child in node.children():
            graph.add_edge(id(child), id(node))
    return graph


def bottom_up(formula: Formula) -> List[Formula]:
    """subformulas with every child before its parents, each shared node once"""
    graph = subformula_graph(formula)
    ranks = nx.get_node_attributes(graph, "rank")
    order = nx.lexicographical_topological_sort(graph, key=lambda n: -ranks[n])
    return [graph.nodes[n]["formula"] for n in order]


class MonitorSynthesizer:
    """builds the monitor schema of one formula"""

    def __init__(self, formula: Formula, index: int = 0):
        self.formula = formula
        self.index = index
        self._now: Dict[int, Expr] = {}
        self._history: List[HistoryVar] = []
        self._steps: List[Tuple[str, Expr]] = []
        self._updates: List[Tuple[str, Expr]] = []
        self._counter = 0

    def _fresh(self, prefix: str) -> str:
        name = f"__vm{prefix}{self.index}_{self._counter}"
        self._counter += 1
        return name

    def _capture(self, expr: Expr) -> Expr:
        """stable read-pass value of an expression"""
        if isinstance(expr, (Const, AtomRef, TempRef)):
            return expr
        temp = self._fresh("T")
        self._steps.append((temp, expr))
        return TempRef(temp)

    def synthesize(self) -> MonitorSchema:
        for node in bottom_up(self.formula):
            self._now[id(node)] = self._step(node)
        goal = self._now[id(self.formula)]
        schema = MonitorSchema(
            index=self.index,
            formula=self.formula,
            history=tuple(self._history),
            steps=tuple(self._steps),
            updates=tuple(self._updates),
            goal=goal,
        )
        logger.debug(
            "predicate %d: %d history variables, %d read-pass temporaries",
            self.index, len(schema.history), len(schema.steps),
        )
        return schema

    def _step(self, node: Formula) -> Expr:
        now = self._now
        if isinstance(node, Atom):
            if node.text in ("true", "false"):
                return Const(node.text == "true")
            return AtomRef(node)
        if isinstance(node, Not):
            return NotE(now[id(node.operand)])
        if isinstance(node, And):
            return AndE(now[id(node.left)], now[id(node.right)])
        if isinstance(node, Or):
            return OrE(now[id(node.left)], now[id(node.right)])
        if isinstance(node, Implies):
            return ImpliesE(now[id(node.left)], now[id(node.right)])
        if isinstance(node, Iff):
            return IffE(now[id(node.left)], now[id(node.right)])

        kind = _KIND_OF[type(node)]
        name = self._fresh(kind.capitalize())
        self._history.append(HistoryVar(name, kind, INITIAL_VALUES[kind], node))
        h = VarRef(name)

        if isinstance(node, Prev):
            self._updates.append((name, self._capture(now[id(node.operand)])))
            return h
        if isinstance(node, Once):
            value = OrE(h, now[id(node.operand)])
        elif isinstance(node, Hist):
            value = AndE(h, now[id(node.operand)])
        else:
            value = OrE(now[id(node.right)], AndE(h, now[id(node.left)]))
        temp = self._capture(value)
        self._updates.append((name, temp))
        return temp


def synthesize(formula: Formula, index: int = 0) -> MonitorSchema:
    return MonitorSynthesizer(formula, index).synthesize()


def synthesize_all(formulas: List[Formula]) -> List[MonitorSchema]:
    return [synthesize(f, i) for i, f in enumerate(formulas)]
