from .contract import (
    ContractView, FunctionInfo, FunctionKind, Visibility, Mutability,
    Parameter, StateVariable, ReturnStatement,
)
from .results import Verdict, Outcome, TxRecord, FailureSite, Trace, RunResult

__all__ = [
    "ContractView",
    "FunctionInfo",
    "FunctionKind",
    "Visibility",
    "Mutability",
    "Parameter",
    "StateVariable",
    "ReturnStatement",
    "Verdict",
    "Outcome",
    "TxRecord",
    "FailureSite",
    "Trace",
    "RunResult",
]
