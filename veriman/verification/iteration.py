"""iteration controller - classify counter-examples and retry vacuous ones"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set, Tuple, TYPE_CHECKING

from veriman.errors import VacuousCounterexample
from veriman.models.results import Outcome, RunResult, Trace, Verdict
from veriman.ptltl.ast import Formula, guard_with_not_constructor, has_not_constructor_guard, to_text
from veriman.utils.logging import RunLogger

if TYPE_CHECKING:
    from veriman.instrumentation import InstrumentationResult

logger = logging.getLogger(__name__)


class State(Enum):
    INITIAL = "initial"
    RUNNING = "running"
    VACUOUS_CE = "vacuous_ce"
    REAL_CE = "real_ce"
    PROVEN = "proven"
    EXHAUSTED = "exhausted"


TERMINAL = (State.REAL_CE, State.PROVEN, State.EXHAUSTED)


@dataclass
class Observation:
    """one attempt: the normalized trace and the instrumentation it ran against"""
    trace: Trace
    instrumentation: Optional["InstrumentationResult"] = None

    def failing_formula(self, count: int) -> Optional[int]:
        if self.trace.formula_index is not None:
            return self.trace.formula_index
        site = self.trace.site
        if site is not None and self.instrumentation is not None:
            index = self.instrumentation.formula_at_line(site.line)
            if index is not None:
                return index
        if count == 1:
            return 0
        return None

    @property
    def in_constructor(self) -> bool:
        if self.trace.only_constructor:
            return True
        site = self.trace.site
        return site is not None and self.instrumentation is not None and self.instrumentation.in_constructor(site.line)


Step = Callable[[List[Formula], int], Observation]


class IterationController:
    """
    Drives INITIAL -> RUNNING -> {PROVEN, EXHAUSTED, REAL_CE, VACUOUS_CE -> RUNNING}

    A counter-example that only exercises deployment, for a formula that is
    not yet guarded, rewrites that formula to `notConstructor -> phi` and
    runs again. Each formula is rewritten at most once, always from its
    original parse, so the loop ends after at most len(formulas) + 1 runs.
    """

    def __init__(
        self,
        formulas: List[Formula],
        step: Step,
        contract: str = "",
        run_logger: Optional[RunLogger] = None,
    ):
        self.original = list(formulas)
        self.current = list(formulas)
        self.step = step
        self.contract = contract
        self.run_logger = run_logger
        self.rewritten: Set[int] = set()
        self.state = State.INITIAL
        self.attempts = 0
        self.transitions: List[Tuple[int, State]] = [(0, State.INITIAL)]
        self.last_trace: Optional[Trace] = None

    @property
    def formulas(self) -> List[str]:
        return [to_text(f) for f in self.current]

    def _transition(self, state: State, **metadata) -> None:
        self.state = state
        self.transitions.append((self.attempts, state))
        logger.debug(f"attempt {self.attempts}: {state.value}")
        if self.run_logger:
            self.run_logger.log_iteration(self.contract, self.attempts, state.value, self.formulas, metadata=metadata)

    def _unguarded(self) -> List[int]:
        return [i for i, f in enumerate(self.current) if not has_not_constructor_guard(f)]

    def _classify(self, observation: Observation, index: Optional[int]) -> bool:
        """raise VacuousCounterexample to retry; otherwise return the vacuous flag of a real one"""
        if not observation.in_constructor:
            return False
        if index is None:
            if self._unguarded():
                raise VacuousCounterexample(None, observation.trace)
            return bool(self.rewritten)
        if not has_not_constructor_guard(self.current[index]):
            raise VacuousCounterexample(index, observation.trace)
        return index in self.rewritten

    def _rewrite(self, index: Optional[int]) -> None:
        indices = [index] if index is not None else self._unguarded()
        for i in indices:
            self.current[i] = guard_with_not_constructor(self.original[i])
            self.rewritten.add(i)
            logger.info(f"predicate {i} failed only at deployment; retrying as {to_text(self.current[i])}")

    def _result(self, outcome: Outcome, trace: Optional[Trace], vacuous: bool = False) -> RunResult:
        result = RunResult(
            outcome=outcome,
            trace=trace,
            vacuous=vacuous,
            attempts=self.attempts,
            formulas=self.formulas,
            contract=self.contract,
            backend=trace.backend if trace else "",
        )
        if self.run_logger:
            self.run_logger.log_verdict(
                self.contract,
                outcome.value,
                vacuous=vacuous,
                attempt=self.attempts,
                formula_index=trace.formula_index if trace else None,
                trace=trace.to_dict() if trace else None,
            )
        return result

    def run(self) -> RunResult:
        while True:
            self.attempts += 1
            self._transition(State.RUNNING)
            observation = self.step(list(self.current), self.attempts)
            trace = observation.trace

            if trace.verdict == Verdict.TIMEOUT:
                self._transition(State.EXHAUSTED)
                return self._result(Outcome.EXHAUSTED, self.last_trace)

            self.last_trace = trace
            if trace.verdict == Verdict.PROOF:
                self._transition(State.PROVEN)
                return self._result(Outcome.PROVEN, trace)

            index = observation.failing_formula(len(self.current))
            trace.formula_index = index
            try:
                vacuous = self._classify(observation, index)
            except VacuousCounterexample as signal:
                self._transition(State.VACUOUS_CE, formula_index=signal.formula_index)
                self._rewrite(signal.formula_index)
                continue

            self._transition(State.REAL_CE, formula_index=index, vacuous=vacuous)
            return self._result(Outcome.REAL_CE, trace, vacuous=vacuous)
