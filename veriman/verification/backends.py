"""back-end driver - run the bounded verifier or the symbolic executor as opaque subprocesses"""

import logging
import shutil
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

from veriman.cal.compiler import split_command
from veriman.errors import BackendSpawnError, ConfigError
from veriman.utils.logging import RunLogger
from veriman.utils.shutdown import register_cleanup, unregister_cleanup

logger = logging.getLogger(__name__)

VERIFIER = "verifier"
SYMBOLIC_EXEC = "symbolic"


@dataclass
class RawOutput:
    """
    Result of one back-end invocation

    Attributes:
        backend: variant name ("verifier" or "symbolic")
        command: argv that was spawned
        stdout, stderr: fully drained child output
        returncode: exit status (None when the child was killed)
        elapsed: wall-clock seconds
        timed_out: the wall-clock limit was hit
        workspace: directory the child ran in
    """
    backend: str
    command: List[str]
    stdout: str
    stderr: str
    returncode: Optional[int]
    elapsed: float
    timed_out: bool = False
    workspace: Optional[Path] = None

    @property
    def text(self) -> str:
        if self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout


class Backend(ABC):
    """shared capability: invoke(source, contract, flags, bound) -> RawOutput"""

    name = ""

    def __init__(self, command: str, timeout: int, run_logger: Optional[RunLogger] = None):
        self.command = command
        self.timeout = timeout
        self.run_logger = run_logger
        self.workspace: Optional[Path] = None

    @abstractmethod
    def flags(self, bound: Optional[int] = None) -> List[str]:
        """back-end specific flags for one invocation"""

    def build_command(self, source_path: Path, contract: str, flags: List[str]) -> List[str]:
        argv = split_command(self.command)
        if not argv:
            raise ConfigError(f"{self.name} command is empty")
        return argv + [str(source_path), contract] + list(flags)

    def invoke(
        self,
        source_path: Path,
        contract: str,
        flags: Optional[List[str]] = None,
        bound: Optional[int] = None,
        attempt: Optional[int] = None,
    ) -> RawOutput:
        flags = self.flags(bound) if flags is None else flags
        argv = self.build_command(source_path, contract, flags)
        logger.debug(f"spawning {self.name}: {' '.join(argv)}")

        start = time.time()
        try:
            proc = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=str(self.workspace) if self.workspace else None,
            )
        except OSError as e:
            raise BackendSpawnError(f"cannot start {self.name} '{argv[0]}': {e}") from e

        timed_out = False
        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            stdout, stderr = proc.communicate()
            timed_out = True
        except (KeyboardInterrupt, SystemExit):
            proc.kill()
            proc.communicate()
            logger.warning(f"{self.name} interrupted, child process killed")
            raise

        elapsed = time.time() - start
        raw = RawOutput(
            backend=self.name,
            command=argv,
            stdout=stdout or "",
            stderr=stderr or "",
            returncode=None if timed_out else proc.returncode,
            elapsed=elapsed,
            timed_out=timed_out,
            workspace=self.workspace,
        )
        if timed_out:
            logger.warning(f"{self.name} exceeded {self.timeout}s")
        if self.run_logger:
            self.run_logger.log_backend_run(
                contract, self.name, argv, raw.returncode, elapsed, timed_out=timed_out, attempt=attempt,
                output=raw.text,
            )
        return raw


class Verifier(Backend):
    """bounded verifier, VeriSol-style command line"""

    name = VERIFIER

    def __init__(
        self,
        command: str = "VeriSol",
        tx_bound: int = 5,
        modular_arithmetic: bool = False,
        timeout: int = 600,
        run_logger: Optional[RunLogger] = None,
    ):
        super().__init__(command, timeout, run_logger)
        self.tx_bound = tx_bound
        self.modular_arithmetic = modular_arithmetic

    def flags(self, bound: Optional[int] = None) -> List[str]:
        flags = [f"/txBound:{bound or self.tx_bound}"]
        if self.modular_arithmetic:
            flags.append("/useModularArithmetic")
        return flags


class SymbolicExec(Backend):
    """symbolic executor, Manticore-style command line"""

    name = SYMBOLIC_EXEC

    def __init__(
        self,
        command: str = "manticore",
        tx_limit: int = 5,
        procs: int = 1,
        accounts: int = 2,
        initial_balance: int = 10 ** 18,
        contract_args: str = "()",
        loop_delimiter: Optional[int] = None,
        timeout: int = 1800,
        run_logger: Optional[RunLogger] = None,
    ):
        super().__init__(command, timeout, run_logger)
        self.tx_limit = tx_limit
        self.procs = procs
        self.accounts = accounts
        self.initial_balance = initial_balance
        self.contract_args = contract_args
        if loop_delimiter is not None:
            logger.warning("symbolicExec.loopDelimiter is deprecated and ignored")

    def flags(self, bound: Optional[int] = None) -> List[str]:
        flags = [
            "--txlimit", str(bound or self.tx_limit),
            "--core.procs", str(self.procs),
            "--accounts", str(self.accounts),
            "--initial-balance", str(self.initial_balance),
        ]
        if self.workspace is not None:
            flags += ["--workspace", str(self.workspace / "mcore")]
        if self.contract_args.strip() not in ("", "()"):
            flags += ["--contract-args", self.contract_args]
        return flags


class BackendDriver:
    """picks the back-end from the configuration: verifier first, symbolic executor only without it"""

    def __init__(self, config, workspace: Path, run_logger: Optional[RunLogger] = None, default_timeout: int = 600):
        self.config = config
        self.workspace = Path(workspace)
        self.run_logger = run_logger
        self.default_timeout = default_timeout
        self.backend = self._select()
        self.backend.workspace = self.workspace

    def _select(self) -> Backend:
        verification = self.config.verification
        verifier = verification.verifier
        symbolic = verification.symbolic_exec
        if verifier.enabled:
            if symbolic.enabled:
                logger.info("verifier enabled; symbolic executor not used")
            return Verifier(
                command=verifier.command,
                tx_bound=verifier.tx_bound,
                modular_arithmetic=verifier.modular_arithmetic,
                timeout=verifier.timeout or self.default_timeout,
                run_logger=self.run_logger,
            )
        if symbolic.enabled:
            return SymbolicExec(
                command=symbolic.command,
                tx_limit=verifier.tx_bound,
                procs=symbolic.procs,
                accounts=symbolic.accounts,
                initial_balance=symbolic.initial_balance,
                contract_args=self.config.contract.args,
                loop_delimiter=symbolic.loop_delimiter,
                timeout=symbolic.timeout or self.default_timeout,
                run_logger=self.run_logger,
            )
        raise ConfigError("no back-end enabled")

    @property
    def name(self) -> str:
        return self.backend.name

    def run(self, source_path: Path, contract: str, attempt: Optional[int] = None) -> RawOutput:
        return self.backend.invoke(source_path, contract, attempt=attempt)


@contextmanager
def run_workspace(cleanup: bool = True, prefix: str = "veriman_") -> Iterator[Path]:
    """unique scratch directory for one run; removed on every exit path when cleanup is on"""
    path = Path(tempfile.mkdtemp(prefix=prefix))

    def remove_workspace():
        shutil.rmtree(path, ignore_errors=True)

    if cleanup:
        register_cleanup(remove_workspace, name=f"workspace {path.name}")
    try:
        yield path
    finally:
        if cleanup:
            remove_workspace()
            unregister_cleanup(remove_workspace)
        else:
            logger.info(f"keeping working directory {path}")
