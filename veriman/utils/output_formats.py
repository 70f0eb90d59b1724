"""output formatters for run results: text, json, sarif"""

from enum import Enum
from typing import Protocol, Dict, Any, List
import json

from veriman import __version__
from veriman.models.results import Outcome, RunResult


class OutputFormat(Enum):
    """supported output formats"""
    TEXT = "text"
    JSON = "json"
    SARIF = "sarif"


class OutputFormatter(Protocol):
    def format(self, result: RunResult) -> str:
        ...


OUTCOME_TITLES = {
    Outcome.PROVEN: "PROOF FOUND",
    Outcome.REAL_CE: "COUNTER-EXAMPLE FOUND",
    Outcome.EXHAUSTED: "BOUND EXHAUSTED",
    Outcome.CANCELLED: "RUN CANCELLED",
}


class TextFormatter:
    """human-readable text output (default terminal format)"""

    def format(self, result: RunResult) -> str:
        lines = []

        lines.append("=" * 80)
        title = OUTCOME_TITLES[result.outcome]
        if result.outcome == Outcome.REAL_CE and result.vacuous:
            title += " (VACUOUS AFTER RETRY)"
        lines.append(title)
        lines.append("=" * 80)

        lines.append(f"Contract: {result.contract}")
        if result.backend:
            lines.append(f"Back-end: {result.backend}")
        if result.run_id:
            lines.append(f"Run ID: {result.run_id}")
        lines.append(f"Attempts: {result.attempts}")

        if result.formulas:
            lines.append("\nPREDICATES:")
            for i, formula in enumerate(result.formulas):
                marker = "*" if result.trace and result.trace.formula_index == i else " "
                lines.append(f" {marker} [{i}] {formula}")

        if result.message:
            lines.append(f"\n{result.message}")

        if result.trace and result.outcome != Outcome.PROVEN and result.trace.records:
            lines.append("\nTRACE:")
            for record in result.trace.records:
                lines.append(f"  {record.index}. {record.describe()}")
            if result.trace.site:
                site = result.trace.site
                lines.append(f"  failing assertion at {site.file or '?'}:{site.line}:{site.column}")

        lines.append(f"\n{'─' * 80}")
        lines.append(f"Total Time: {result.elapsed:.1f}s")
        lines.append("=" * 80)
        return "\n".join(lines)


class JSONFormatter:
    """json output for programmatic consumption"""

    def format(self, result: RunResult) -> str:
        return json.dumps(result.to_dict(), indent=2, default=str)


class SARIFFormatter:
    """sarif 2.1.0 formatter; a counter-example becomes one result at the failing assertion"""

    def format(self, result: RunResult) -> str:
        sarif = {
            "$schema": "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json",
            "version": "2.1.0",
            "runs": [self._build_run(result)]
        }
        return json.dumps(sarif, indent=2)

    def _build_run(self, result: RunResult) -> Dict[str, Any]:
        return {
            "tool": self._build_tool(),
            "results": self._build_results(result),
            "invocations": [self._build_invocation(result)],
            "properties": {
                "runId": result.run_id,
                "outcome": result.outcome.value,
                "attempts": result.attempts,
                "vacuous": result.vacuous,
            }
        }

    def _build_tool(self) -> Dict[str, Any]:
        return {
            "driver": {
                "name": "VeriMan",
                "version": __version__,
                "semanticVersion": __version__,
                "shortDescription": {
                    "text": "Temporal property verification driver for Solidity contracts"
                },
                "rules": [{
                    "id": "ptltl-violation",
                    "shortDescription": {"text": "PTLTL predicate violated"},
                    "defaultConfiguration": {"level": "error"},
                }],
            }
        }

    def _build_results(self, result: RunResult) -> List[Dict[str, Any]]:
        if result.outcome != Outcome.REAL_CE or result.trace is None:
            return []
        trace = result.trace
        index = trace.formula_index
        predicate = result.formulas[index] if index is not None and index < len(result.formulas) else None
        message = f"predicate violated: {predicate}" if predicate else "predicate violated"
        entry: Dict[str, Any] = {
            "ruleId": "ptltl-violation",
            "level": "warning" if result.vacuous else "error",
            "message": {"text": f"{message}; trace: {trace.describe()}"},
            "properties": {
                "formulaIndex": index,
                "vacuous": result.vacuous,
                "trace": [r.to_dict() for r in trace.records],
            },
        }
        if trace.site is not None:
            entry["locations"] = [{
                "physicalLocation": {
                    "artifactLocation": {"uri": trace.site.file or result.contract},
                    "region": {"startLine": max(trace.site.line, 1), "startColumn": max(trace.site.column, 1)},
                }
            }]
        return [entry]

    def _build_invocation(self, result: RunResult) -> Dict[str, Any]:
        return {
            "executionSuccessful": result.outcome in (Outcome.PROVEN, Outcome.REAL_CE),
            "startTimeUtc": result.started_at,
            "properties": {"totalTime": result.elapsed},
        }


def get_formatter(format_type: OutputFormat) -> OutputFormatter:
    formatters = {
        OutputFormat.TEXT: TextFormatter(),
        OutputFormat.JSON: JSONFormatter(),
        OutputFormat.SARIF: SARIFFormatter(),
    }
    return formatters[format_type]
