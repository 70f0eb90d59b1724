from enum import Enum
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime, UTC


class Verdict(Enum):
    """back-end verdict after normalization"""
    PROOF = "proof"
    COUNTEREXAMPLE = "counterexample"
    TIMEOUT = "timeout"


class Outcome(Enum):
    """terminal outcome of one driver run"""
    PROVEN = "proven"
    REAL_CE = "real_counterexample"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass
class TxRecord:
    """one transaction of a counter-example"""
    index: int
    function: str
    args: Dict[str, str] = field(default_factory=dict)
    caller: Optional[str] = None
    value: Optional[str] = None
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    @property
    def is_constructor(self) -> bool:
        return self.function == "Constructor"

    def describe(self) -> str:
        parts = [f"{k}={v}" for k, v in self.args.items()]
        if self.caller is not None:
            parts.append(f"caller={self.caller}")
        if self.value is not None:
            parts.append(f"value={self.value}")
        return f"{self.function}({', '.join(parts)})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "function": self.function,
            "args": dict(self.args),
            "caller": self.caller,
            "value": self.value,
            "file": self.file,
            "line": self.line,
            "column": self.column,
        }


@dataclass
class FailureSite:
    file: Optional[str]
    line: int
    column: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.file, "line": self.line, "column": self.column}


@dataclass
class Trace:
    """normalized back-end result"""
    records: List[TxRecord] = field(default_factory=list)
    site: Optional[FailureSite] = None
    verdict: Verdict = Verdict.COUNTEREXAMPLE
    backend: str = ""
    formula_index: Optional[int] = None

    @property
    def functions(self) -> List[str]:
        return [r.function for r in self.records]

    @property
    def only_constructor(self) -> bool:
        return bool(self.records) and all(r.is_constructor for r in self.records)

    def describe(self) -> str:
        return " -> ".join(r.describe() for r in self.records) or "(empty trace)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "backend": self.backend,
            "formula_index": self.formula_index,
            "site": self.site.to_dict() if self.site else None,
            "records": [r.to_dict() for r in self.records],
        }


@dataclass
class RunResult:
    """what the driver reports for one analyze call"""
    outcome: Outcome
    trace: Optional[Trace] = None
    vacuous: bool = False
    attempts: int = 0
    formulas: List[str] = field(default_factory=list)
    run_id: Optional[str] = None
    contract: str = ""
    backend: str = ""
    elapsed: float = 0.0
    message: str = ""
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def proof_found(self) -> bool:
        return self.outcome == Outcome.PROVEN

    @property
    def exit_code(self) -> int:
        if self.outcome == Outcome.PROVEN:
            return 0
        if self.outcome == Outcome.REAL_CE:
            return 2 if self.vacuous else 1
        return 3

    def as_tuple(self) -> Tuple[bool, str]:
        """(proof_found, counter-example text)"""
        return self.proof_found, self.trace.describe() if self.trace and not self.proof_found else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "vacuous": self.vacuous,
            "attempts": self.attempts,
            "formulas": list(self.formulas),
            "run_id": self.run_id,
            "contract": self.contract,
            "backend": self.backend,
            "elapsed": round(self.elapsed, 3),
            "message": self.message,
            "started_at": self.started_at,
            "trace": self.trace.to_dict() if self.trace else None,
        }
