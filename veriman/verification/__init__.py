"""back-ends, trace normalization, retry loop and monitor self-check"""
from .backends import Backend, BackendDriver, RawOutput, SymbolicExec, Verifier, run_workspace
from .traces import normalize, parse_symbolic_output, parse_verifier_output, format_verifier_trace
from .iteration import IterationController, Observation, State
from .monitor_check import CheckResult, MonitorChecker, MonitorCheckResult

__all__ = [
    "Backend",
    "BackendDriver",
    "RawOutput",
    "SymbolicExec",
    "Verifier",
    "run_workspace",
    "normalize",
    "parse_symbolic_output",
    "parse_verifier_output",
    "format_verifier_trace",
    "IterationController",
    "Observation",
    "State",
    "CheckResult",
    "MonitorChecker",
    "MonitorCheckResult",
]
