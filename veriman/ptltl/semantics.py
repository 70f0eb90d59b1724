"""reference semantics: direct ptltl evaluation and step-by-step monitor simulation"""

from typing import Dict, List, Mapping, Sequence

from veriman.ptltl.ast import (
    And, Atom, Formula, Hist, Iff, Implies, Not, Once, Or, Prev, Since,
)
from veriman.ptltl.monitor import (
    AndE, AtomRef, Const, Expr, IffE, ImpliesE, MonitorSchema, NotE, OrE, TempRef, VarRef,
)

Valuation = Mapping[str, bool]


def evaluate(formula: Formula, trace: Sequence[Valuation]) -> List[bool]:
    """truth value of the formula after each transaction of the trace"""
    return [holds(formula, trace, t) for t in range(len(trace))]


def holds(formula: Formula, trace: Sequence[Valuation], t: int) -> bool:
    if isinstance(formula, Atom):
        if formula.text in ("true", "false"):
            return formula.text == "true"
        return bool(trace[t][formula.text])
    if isinstance(formula, Not):
        return not holds(formula.operand, trace, t)
    if isinstance(formula, And):
        return holds(formula.left, trace, t) and holds(formula.right, trace, t)
    if isinstance(formula, Or):
        return holds(formula.left, trace, t) or holds(formula.right, trace, t)
    if isinstance(formula, Implies):
        return (not holds(formula.left, trace, t)) or holds(formula.right, trace, t)
    if isinstance(formula, Iff):
        return holds(formula.left, trace, t) == holds(formula.right, trace, t)
    if isinstance(formula, Prev):
        return t > 0 and holds(formula.operand, trace, t - 1)
    if isinstance(formula, Once):
        return any(holds(formula.operand, trace, i) for i in range(t + 1))
    if isinstance(formula, Hist):
        return all(holds(formula.operand, trace, i) for i in range(t + 1))
    if isinstance(formula, Since):
        for j in range(t, -1, -1):
            if holds(formula.right, trace, j):
                return True
            if not holds(formula.left, trace, j):
                return False
        return False
    raise TypeError(f"not a formula node: {formula!r}")


def eval_expr(expr: Expr, atoms: Valuation, env: Mapping[str, bool]) -> bool:
    if isinstance(expr, Const):
        return expr.value
    if isinstance(expr, AtomRef):
        return bool(atoms[expr.atom.text])
    if isinstance(expr, (VarRef, TempRef)):
        return env[expr.name]
    if isinstance(expr, NotE):
        return not eval_expr(expr.operand, atoms, env)
    left = eval_expr(expr.left, atoms, env)
    right = eval_expr(expr.right, atoms, env)
    if isinstance(expr, AndE):
        return left and right
    if isinstance(expr, OrE):
        return left or right
    if isinstance(expr, ImpliesE):
        return (not left) or right
    if isinstance(expr, IffE):
        return left == right
    raise TypeError(f"not an expression: {expr!r}")


def simulate(schema: MonitorSchema, trace: Sequence[Valuation]) -> List[bool]:
    """run the synthesized read pass / update pass once per transaction"""
    history: Dict[str, bool] = {h.name: h.initial for h in schema.history}
    verdicts: List[bool] = []
    for atoms in trace:
        env: Dict[str, bool] = dict(history)
        for temp, expr in schema.steps:
            env[temp] = eval_expr(expr, atoms, env)
        verdicts.append(eval_expr(schema.goal, atoms, env))
        for name, expr in schema.updates:
            history[name] = eval_expr(expr, atoms, env)
    return verdicts
