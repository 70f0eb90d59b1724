"""bounded monitor self-check - prove the synthesized monitor equals the direct semantics with z3"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import z3
from z3 import Solver, Bool, BoolVal, And, Or, Not, Implies, sat, unsat

from veriman.ptltl.ast import (
    And as AndF, Atom, Formula, Hist, Iff, Implies as ImpliesF, Not as NotF, Once, Or as OrF, Prev, Since,
)
from veriman.ptltl.monitor import (
    AndE, AtomRef, Const, Expr, IffE, ImpliesE, MonitorSchema, NotE, OrE, TempRef, VarRef, synthesize,
)

logger = logging.getLogger(__name__)


class CheckResult(Enum):
    VALID = "valid"
    MISMATCH = "mismatch"
    UNKNOWN = "unknown"


@dataclass
class MonitorCheckResult:
    """outcome of one bounded equivalence check"""
    result: CheckResult
    depth: int
    step: Optional[int] = None
    model: Dict[str, List[bool]] = field(default_factory=dict)
    solver_time: float = 0.0

    @property
    def valid(self) -> bool:
        return self.result == CheckResult.VALID


def _conj(terms: List[z3.BoolRef]) -> z3.BoolRef:
    if not terms:
        return BoolVal(True)
    return terms[0] if len(terms) == 1 else And(*terms)


def _disj(terms: List[z3.BoolRef]) -> z3.BoolRef:
    if not terms:
        return BoolVal(False)
    return terms[0] if len(terms) == 1 else Or(*terms)


class MonitorChecker:
    """
    Symbolic unrolling of both sides over `depth` transactions

    Atoms become free booleans per step. The direct side follows the PTLTL
    definition; the monitor side replays read pass and update pass. The
    disequality of the two goal sequences is handed to the solver: UNSAT
    means the monitor is correct for every trace up to that length.
    """

    def __init__(self, timeout_ms: int = 10000):
        self.timeout_ms = timeout_ms
        self._atoms: Dict[Tuple[str, int], z3.BoolRef] = {}
        self._memo: Dict[Tuple[int, int], z3.BoolRef] = {}
        self._names: Dict[str, int] = {}

    def _atom(self, text: str, t: int) -> z3.BoolRef:
        if text in ("true", "false"):
            return BoolVal(text == "true")
        key = (text, t)
        if key not in self._atoms:
            number = self._names.setdefault(text, len(self._names))
            self._atoms[key] = Bool(f"a{number}_t{t}")
        return self._atoms[key]

    def direct(self, formula: Formula, t: int) -> z3.BoolRef:
        key = (id(formula), t)
        if key in self._memo:
            return self._memo[key]
        if isinstance(formula, Atom):
            value = self._atom(formula.text, t)
        elif isinstance(formula, NotF):
            value = Not(self.direct(formula.operand, t))
        elif isinstance(formula, AndF):
            value = And(self.direct(formula.left, t), self.direct(formula.right, t))
        elif isinstance(formula, OrF):
            value = Or(self.direct(formula.left, t), self.direct(formula.right, t))
        elif isinstance(formula, ImpliesF):
            value = Implies(self.direct(formula.left, t), self.direct(formula.right, t))
        elif isinstance(formula, Iff):
            value = self.direct(formula.left, t) == self.direct(formula.right, t)
        elif isinstance(formula, Prev):
            value = self.direct(formula.operand, t - 1) if t > 0 else BoolVal(False)
        elif isinstance(formula, Once):
            value = _disj([self.direct(formula.operand, i) for i in range(t + 1)])
        elif isinstance(formula, Hist):
            value = _conj([self.direct(formula.operand, i) for i in range(t + 1)])
        elif isinstance(formula, Since):
            value = _disj([
                _conj([self.direct(formula.right, j)] + [self.direct(formula.left, k) for k in range(j + 1, t + 1)])
                for j in range(t + 1)
            ])
        else:
            raise TypeError(f"not a formula node: {formula!r}")
        self._memo[key] = value
        return value

    def _expr(self, expr: Expr, t: int, env: Dict[str, z3.BoolRef]) -> z3.BoolRef:
        if isinstance(expr, Const):
            return BoolVal(expr.value)
        if isinstance(expr, AtomRef):
            return self._atom(expr.atom.text, t)
        if isinstance(expr, (VarRef, TempRef)):
            return env[expr.name]
        if isinstance(expr, NotE):
            return Not(self._expr(expr.operand, t, env))
        left = self._expr(expr.left, t, env)
        right = self._expr(expr.right, t, env)
        if isinstance(expr, AndE):
            return And(left, right)
        if isinstance(expr, OrE):
            return Or(left, right)
        if isinstance(expr, ImpliesE):
            return Implies(left, right)
        if isinstance(expr, IffE):
            return left == right
        raise TypeError(f"not an expression: {expr!r}")

    def monitor(self, schema: MonitorSchema, depth: int) -> List[z3.BoolRef]:
        history: Dict[str, z3.BoolRef] = {h.name: BoolVal(h.initial) for h in schema.history}
        goals = []
        for t in range(depth):
            env = dict(history)
            for temp, expr in schema.steps:
                env[temp] = self._expr(expr, t, env)
            goals.append(self._expr(schema.goal, t, env))
            for name, expr in schema.updates:
                history[name] = self._expr(expr, t, env)
        return goals

    def check(self, formula: Formula, schema: Optional[MonitorSchema] = None, depth: int = 4) -> MonitorCheckResult:
        schema = schema or synthesize(formula)
        self._atoms = {}
        self._memo = {}
        self._names = {}

        direct = [self.direct(formula, t) for t in range(depth)]
        monitored = self.monitor(schema, depth)
        differs = [d != m for d, m in zip(direct, monitored)]

        solver = Solver()
        solver.set("timeout", self.timeout_ms)
        solver.add(_disj(differs))

        start = time.time()
        answer = solver.check()
        elapsed = time.time() - start

        if answer == unsat:
            logger.debug(f"monitor for predicate {schema.index} matches up to depth {depth}")
            return MonitorCheckResult(CheckResult.VALID, depth, solver_time=elapsed)
        if answer == sat:
            model = solver.model()
            step = next(
                (t for t, diff in enumerate(differs) if z3.is_true(model.eval(diff, model_completion=True))),
                None,
            )
            trace: Dict[str, List[bool]] = {}
            for text, number in self._names.items():
                trace[text] = [
                    z3.is_true(model.eval(self._atom(text, t), model_completion=True)) for t in range(depth)
                ]
            logger.warning(f"monitor for predicate {schema.index} disagrees with the formula at step {step}")
            return MonitorCheckResult(CheckResult.MISMATCH, depth, step=step, model=trace, solver_time=elapsed)
        logger.warning(f"monitor check for predicate {schema.index} inconclusive: {solver.reason_unknown()}")
        return MonitorCheckResult(CheckResult.UNKNOWN, depth, solver_time=elapsed)
