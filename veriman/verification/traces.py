"""trace normalizer - turn back-end output into a Trace"""

import logging
import re
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from veriman.errors import BackendOutputError
from veriman.models.contract import ContractView
from veriman.models.results import FailureSite, Trace, TxRecord, Verdict
from veriman.verification.backends import RawOutput, SYMBOLIC_EXEC, VERIFIER

logger = logging.getLogger(__name__)

PROOF_FOUND = "Proof found"
COUNTEREXAMPLE_FOUND = "Found a counterexample"
ASSERTION_FAILS = "ASSERTION FAILS"
CONSTRUCTOR = "Constructor"

_TRACE_LINE = re.compile(
    r"^\s*(?:(?P<file>[^\s(][^(]*?)?\((?P<line>\d+),(?P<column>\d+)\):\s*:?\s*)?"
    r"(?P<contract>[\w$]+)::(?P<function>[\w$]+)\s*(?:\((?P<args>.*)\))?\s*$"
)
_FAILS_LINE = re.compile(
    r"^\s*(?P<file>[^\s(][^(]*?)?\((?P<line>\d+),(?P<column>\d+)\):.*" + ASSERTION_FAILS
)

_TX_HEADER = re.compile(r"^\s*Transactions No\.\s*(\d+)\s*$", re.MULTILINE)
_FUNCTION_CALL = re.compile(r"^\s*(?P<name>[\w$]+)\s*\((?P<args>.*)\)\s*(?:->\s*(?P<status>\w+))?")
_PREDICATE_INDEX = re.compile(r"predicate (\d+) violated")
_SYMBOLIC_FAILURE = ("AssertionFailed", "THROW", "INVALID")
_RESULTS_IN = "Results in"


def _split_args(text: str) -> List[str]:
    """split on top-level commas"""
    parts: List[str] = []
    depth = 0
    current = []
    for ch in text:
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


def _function_name(name: str, contract: str) -> str:
    if name in (contract, "constructor", CONSTRUCTOR):
        return CONSTRUCTOR
    return name


def _record_from_args(index: int, function: str, args_text: str) -> TxRecord:
    record = TxRecord(index=index, function=function)
    for part in _split_args(args_text or ""):
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        name = name.strip()
        value = value.strip()
        if name == "msg.sender":
            record.caller = value
        elif name == "msg.value":
            record.value = value
        elif name == "this" or name.startswith("__"):
            continue
        else:
            record.args[name] = value
    return record


def parse_verifier_output(text: str, contract: str) -> Trace:
    """
    Parse bounded verifier output

    Proof: "Proof found" and no failure. Counter-example: one trace line per
    transaction, `<file>(<line>,<col>): : <Contract>::<Function> (<name>=<value>, ...)`,
    and the failing site on the `ASSERTION FAILS` line. Calls into the
    instrumentation's own helpers are not transactions and are skipped.
    """
    failed = COUNTEREXAMPLE_FOUND in text or ASSERTION_FAILS in text
    if not failed:
        if PROOF_FOUND in text:
            return Trace(verdict=Verdict.PROOF, backend=VERIFIER)
        raise BackendOutputError("verifier output has no verdict", output=text)

    records: List[TxRecord] = []
    site: Optional[FailureSite] = None
    for line in text.splitlines():
        fails = _FAILS_LINE.match(line)
        if fails:
            file = fails.group("file")
            site = FailureSite(file.strip() if file else None, int(fails.group("line")), int(fails.group("column")))
            continue
        m = _TRACE_LINE.match(line)
        if not m:
            continue
        function = m.group("function")
        if function.startswith("__"):
            continue
        record = _record_from_args(len(records), _function_name(function, contract), m.group("args"))
        if m.group("file"):
            record.file = m.group("file").strip()
        if m.group("line") is not None:
            record.line = int(m.group("line"))
            record.column = int(m.group("column"))
        records.append(record)

    if not records:
        raise BackendOutputError("counter-example without transactions", output=text)
    return Trace(records=records, site=site, verdict=Verdict.COUNTEREXAMPLE, backend=VERIFIER)


def format_verifier_trace(trace: Trace, contract: str) -> str:
    """canonical verifier rendering; parse_verifier_output inverts it"""
    if trace.verdict == Verdict.PROOF:
        return f"{PROOF_FOUND}\n"
    lines = [f"{COUNTEREXAMPLE_FOUND}:"]
    for record in trace.records:
        args = [f"{name}={value}" for name, value in record.args.items()]
        if record.caller is not None:
            args.append(f"msg.sender={record.caller}")
        if record.value is not None:
            args.append(f"msg.value={record.value}")
        location = ""
        if record.line is not None:
            location = f"{record.file or ''}({record.line},{record.column or 0}): : "
        lines.append(f"{location}{contract}::{record.function} ({', '.join(args)})")
    if trace.site is not None:
        lines.append(f"{trace.site.file or ''}({trace.site.line},{trace.site.column}): : {ASSERTION_FAILS}")
    return "\n".join(lines) + "\n"


def _symbolic_blocks(text: str) -> List[Tuple[int, str]]:
    headers = list(_TX_HEADER.finditer(text))
    blocks = []
    for i, m in enumerate(headers):
        end = headers[i + 1].start() if i + 1 < len(headers) else len(text)
        blocks.append((int(m.group(1)), text[m.end():end]))
    return blocks


def _testcases(blocks: List[Tuple[int, str]]) -> List[List[str]]:
    """a transaction number that does not increase starts a new test case"""
    cases: List[List[str]] = []
    last = None
    for number, body in blocks:
        if last is None or number <= last:
            cases.append([])
        cases[-1].append(body)
        last = number
    return cases


def _field(body: str, name: str) -> Optional[str]:
    m = re.search(rf"^\s*{name}:\s*(.+?)\s*$", body, re.MULTILINE)
    return m.group(1) if m else None


def _address(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    m = re.search(r"\((0x[0-9a-fA-F]+)\)", value)
    return m.group(1) if m else value


def _symbolic_record(index: int, body: str, contract: str, view: Optional[ContractView]) -> TxRecord:
    call = re.search(r"Function call:\s*\n\s*(.+)", body)
    if call:
        m = _FUNCTION_CALL.match(call.group(1))
        name, args_text = (m.group("name"), m.group("args")) if m else (call.group(1).strip(), "")
    else:
        name, args_text = CONSTRUCTOR, ""
    kind = _field(body, "Type") or ""
    function = CONSTRUCTOR if kind.startswith("CREATE") else _function_name(name, contract)

    record = TxRecord(index=index, function=function, caller=_address(_field(body, "From")), value=_field(body, "Value"))
    values = _split_args(args_text)
    names: List[str] = []
    if view is not None:
        fn = view.constructor if function == CONSTRUCTOR else view.get_function(function)
        if fn is not None:
            names = fn.param_names
    for i, value in enumerate(values):
        record.args[names[i] if i < len(names) and names[i] else f"arg{i}"] = value
    return record


def _is_failure(body: str) -> bool:
    return any(marker in body for marker in _SYMBOLIC_FAILURE)


def parse_symbolic_output(text: str, contract: str, view: Optional[ContractView] = None) -> Trace:
    """
    Parse symbolic executor output

    Test cases are runs of `Transactions No. <n>` blocks; the first test case
    whose last transaction fails (AssertionFailed, THROW or INVALID) is the
    counter-example. A run that never printed `Results in` did not finish.
    """
    if _RESULTS_IN not in text:
        raise BackendOutputError("symbolic executor did not complete", output=text)

    for case in _testcases(_symbolic_blocks(text)):
        if not case or not _is_failure(case[-1]):
            continue
        records = [_symbolic_record(i, body, contract, view) for i, body in enumerate(case)]
        trace = Trace(records=records, verdict=Verdict.COUNTEREXAMPLE, backend=SYMBOLIC_EXEC)
        m = _PREDICATE_INDEX.search(case[-1])
        if m:
            trace.formula_index = int(m.group(1))
        return trace
    return Trace(verdict=Verdict.PROOF, backend=SYMBOLIC_EXEC)


def normalize(raw: RawOutput, contract: str, view: Optional[ContractView] = None) -> Trace:
    """dispatch on the back-end variant; a timeout is a verdict, not an error"""
    if raw.timed_out:
        return Trace(verdict=Verdict.TIMEOUT, backend=raw.backend)
    try:
        if raw.backend == VERIFIER:
            return parse_verifier_output(raw.text, contract)
        if raw.backend == SYMBOLIC_EXEC:
            return parse_symbolic_output(raw.text, contract, view)
    except BackendOutputError as e:
        if raw.returncode:
            raise BackendOutputError(f"{raw.backend} exited with status {raw.returncode}: {e}", output=raw.text) from e
        raise
    raise BackendOutputError(f"unknown back-end {raw.backend!r}")


def suppress_constant_transactions(trace: Trace, view: ContractView) -> Trace:
    """drop view/pure transactions except the constructor and the failing one"""
    if len(trace.records) < 2:
        return trace
    constant: Dict[str, bool] = {fn.name: fn.is_constant for fn in reversed(view.all_functions)}
    kept: List[TxRecord] = []
    last = len(trace.records) - 1
    for i, record in enumerate(trace.records):
        if i != last and not record.is_constructor and constant.get(record.function, False):
            continue
        kept.append(record)
    dropped = len(trace.records) - len(kept)
    if dropped:
        logger.debug(f"dropped {dropped} constant transactions from trace")
    return Trace(
        records=[replace(record, index=i, args=dict(record.args)) for i, record in enumerate(kept)],
        site=trace.site,
        verdict=trace.verdict,
        backend=trace.backend,
        formula_index=trace.formula_index,
    )
