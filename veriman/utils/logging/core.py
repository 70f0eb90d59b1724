"""
Run Logger Core Implementation

Dual-layer logging (JSON + SQLite) for one driver run.

The logger captures:
- instrumentation summaries (history variables, snapshots, entry points)
- back-end invocations (command, exit status, timing, timeout)
- verdicts and the counter-example traces behind them
- iteration steps of the retry state machine
- errors surfaced to the operator
"""

import json
import sqlite3
import sys
from dataclasses import asdict
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional, List, TextIO

from veriman.config import VeriManSettings, settings as default_settings
from veriman.utils.logging.types import LogCategory, LogEntry
from veriman.utils.correlation import get_run_id


class RunLogger:
    """
    Dual-layer logging system

    Usage:
        logger = RunLogger()
        logger.log_backend_run("Token", "verifier", command=[...], returncode=0, elapsed=1.2)
        logger.log_verdict("Token", "proven", attempt=1)
    """

    def __init__(
        self,
        logs_dir: Optional[Path] = None,
        settings: Optional[VeriManSettings] = None,
        verbose: bool = False,
        stream: Optional[TextIO] = None
    ):
        self.settings = settings or default_settings
        self.logs_dir = Path(logs_dir) if logs_dir else self.settings.LOGS_DIR
        self.raw_dir = self.logs_dir / "raw"
        self.db_path = self.logs_dir / "runs.db"
        self.enabled = self.settings.ENABLE_LOGGING
        self.to_sqlite = self.settings.LOG_TO_SQLITE
        self.verbose = verbose
        self.stream = stream
        self._sequence = 0

        if self.enabled:
            for category in LogCategory:
                (self.raw_dir / category.value).mkdir(parents=True, exist_ok=True)

        if self.enabled and self.to_sqlite:
            self._init_database()

    def _init_database(self):
        """Initialize SQLite database with tables"""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS backend_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    run_id TEXT,
                    contract_name TEXT NOT NULL,
                    backend TEXT NOT NULL,
                    command TEXT,
                    returncode INTEGER,
                    timed_out INTEGER,
                    duration_seconds REAL,
                    attempt INTEGER,
                    metadata TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS verdicts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    run_id TEXT,
                    contract_name TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    vacuous INTEGER,
                    attempt INTEGER,
                    formula_index INTEGER,
                    trace TEXT,
                    metadata TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS errors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    run_id TEXT,
                    contract_name TEXT,
                    error_type TEXT NOT NULL,
                    error_message TEXT NOT NULL,
                    context TEXT
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_backend_runs_contract ON backend_runs(contract_name)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_verdicts_contract ON verdicts(contract_name)")

            conn.commit()

    def _now(self) -> str:
        return datetime.now().isoformat()

    def _get_run_id(self) -> Optional[str]:
        return get_run_id()

    def _filename(self, contract_name: Optional[str], event_type: str) -> str:
        self._sequence += 1
        run_id = self._get_run_id() or "norun"
        label = contract_name or "unknown_contract"
        return f"{datetime.now().strftime('%Y-%m-%d')}_{run_id}_{label}_{event_type}_{self._sequence:03d}.json"

    def _save_json(self, category: LogCategory, entry: LogEntry) -> Optional[Path]:
        """Save raw JSON log file with run_id"""
        if not self.enabled:
            return None
        data = asdict(entry)
        run_id = self._get_run_id()
        if run_id and "run_id" not in data:
            data["run_id"] = run_id

        filepath = self.raw_dir / category.value / self._filename(entry.contract_name, entry.event_type)
        with open(filepath, 'w', encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        return filepath

    def _insert(self, sql: str, values: tuple) -> None:
        if not (self.enabled and self.to_sqlite):
            return
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute(sql, values)
            conn.commit()

    def log_instrumentation(
        self,
        contract_name: str,
        entry_points: List[str],
        history_vars: List[str],
        snapshots: List[str],
        call_flags: List[str],
        attempt: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        entry = LogEntry(
            timestamp=self._now(),
            category=LogCategory.INSTRUMENTATION.value,
            event_type="instrumented",
            contract_name=contract_name,
            attempt=attempt,
            data={
                "entry_points": entry_points,
                "history_vars": history_vars,
                "snapshots": snapshots,
                "call_flags": call_flags,
            },
            metadata=metadata or {},
        )
        self._save_json(LogCategory.INSTRUMENTATION, entry)

    def log_backend_run(
        self,
        contract_name: str,
        backend: str,
        command: List[str],
        returncode: Optional[int],
        elapsed: float,
        timed_out: bool = False,
        attempt: Optional[int] = None,
        output: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """
        Log one back-end invocation

        Saves to:
        - JSON: <logs>/raw/backend/YYYY-MM-DD_<run>_<Contract>_<backend>_NNN.json
        - SQLite: backend_runs table
        """
        timestamp = self._now()
        entry = LogEntry(
            timestamp=timestamp,
            category=LogCategory.BACKEND.value,
            event_type=backend,
            contract_name=contract_name,
            attempt=attempt,
            data={
                "command": command,
                "returncode": returncode,
                "timed_out": timed_out,
                "duration_seconds": elapsed,
                "output": output,
            },
            metadata=metadata or {},
        )
        self._save_json(LogCategory.BACKEND, entry)
        self._insert(
            """
            INSERT INTO backend_runs
            (timestamp, run_id, contract_name, backend, command, returncode, timed_out,
             duration_seconds, attempt, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                timestamp, self._get_run_id(), contract_name, backend, " ".join(command),
                returncode, int(timed_out), elapsed, attempt, json.dumps(metadata or {}),
            ),
        )

    def log_iteration(
        self,
        contract_name: str,
        attempt: int,
        state: str,
        formulas: List[str],
        metadata: Optional[Dict[str, Any]] = None
    ):
        entry = LogEntry(
            timestamp=self._now(),
            category=LogCategory.ITERATION.value,
            event_type=state,
            contract_name=contract_name,
            attempt=attempt,
            data={"formulas": formulas},
            metadata=metadata or {},
        )
        self._save_json(LogCategory.ITERATION, entry)
        self.debug(f"attempt {attempt}: {state}")

    def log_verdict(
        self,
        contract_name: str,
        outcome: str,
        vacuous: bool = False,
        attempt: Optional[int] = None,
        formula_index: Optional[int] = None,
        trace: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        timestamp = self._now()
        entry = LogEntry(
            timestamp=timestamp,
            category=LogCategory.VERDICT.value,
            event_type=outcome,
            contract_name=contract_name,
            attempt=attempt,
            data={"vacuous": vacuous, "formula_index": formula_index, "trace": trace},
            metadata=metadata or {},
        )
        self._save_json(LogCategory.VERDICT, entry)
        self._insert(
            """
            INSERT INTO verdicts
            (timestamp, run_id, contract_name, outcome, vacuous, attempt, formula_index, trace, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                timestamp, self._get_run_id(), contract_name, outcome, int(vacuous), attempt,
                formula_index, json.dumps(trace) if trace else None, json.dumps(metadata or {}),
            ),
        )

    def log_error(
        self,
        contract_name: Optional[str],
        error_type: str,
        error_message: str,
        context: Optional[Dict[str, Any]] = None
    ):
        """structured error record; also echoed to stdout"""
        timestamp = self._now()
        contract_label = contract_name or "unknown_contract"

        entry = LogEntry(
            timestamp=timestamp,
            category=LogCategory.ERROR.value,
            event_type=error_type,
            contract_name=contract_label,
            attempt=None,
            data={"error_type": error_type, "error_message": error_message},
            metadata=context or {},
        )
        self._save_json(LogCategory.ERROR, entry)
        self._insert(
            """
            INSERT INTO errors
            (timestamp, run_id, contract_name, error_type, error_message, context)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (timestamp, self._get_run_id(), contract_label, error_type, error_message, json.dumps(context or {})),
        )

        self.error(f"{error_type}: {error_message}")

    def query_verdicts(self, contract_name: Optional[str] = None) -> List[Dict[str, Any]]:
        if not (self.enabled and self.to_sqlite):
            return []
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.row_factory = sqlite3.Row
            if contract_name:
                rows = conn.execute(
                    "SELECT * FROM verdicts WHERE contract_name = ? ORDER BY id", (contract_name,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM verdicts ORDER BY id").fetchall()
        return [dict(row) for row in rows]

    # Convenience methods (no-op if logging disabled)
    def _print(self, level: str, message: str):
        run_id = self._get_run_id()
        prefix = f"[{level}] [run:{run_id}]" if run_id else f"[{level}]"
        stream = self.stream or sys.stdout
        print(f"{prefix} {message}", file=stream, flush=True)

    def debug(self, message: str):
        if self.enabled and self.verbose:
            self._print("DEBUG", message)

    def info(self, message: str):
        if self.enabled:
            self._print("INFO", message)

    def warning(self, message: str):
        if self.enabled:
            self._print("WARN", message)

    def error(self, message: str):
        self._print("ERROR", message)
