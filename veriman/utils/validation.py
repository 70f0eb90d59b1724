"""input validation utilities"""

from pathlib import Path
from typing import List, TYPE_CHECKING
from dataclasses import dataclass, field
import re
import os
import shutil
import stat

if TYPE_CHECKING:
    from veriman.config import VeriManConfig


@dataclass
class ValidationResult:
    """result of input validation."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid

    def __str__(self) -> str:
        lines = []
        if self.errors:
            lines.append("ERRORS:")
            for error in self.errors:
                lines.append(f"  - {error}")
        if self.warnings:
            lines.append("WARNINGS:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")
        return "\n".join(lines) if lines else "Validation passed"

    def add_error(self, error: str) -> None:
        """add an error and mark as invalid."""
        self.errors.append(error)
        self.valid = False

    def add_warning(self, warning: str) -> None:
        """add a warning without invalidating."""
        self.warnings.append(warning)

    def merge(self, other: "ValidationResult") -> None:
        for error in other.errors:
            self.add_error(error)
        for warning in other.warnings:
            self.add_warning(warning)


class ConfigValidator:
    """checks a parsed configuration against the filesystem and the tools before a run."""

    CONTRACT_NAME_PATTERN = re.compile(r'^[A-Za-z_$][A-Za-z0-9_$]*$')

    MAX_FILE_SIZE = 10 * 1024 * 1024

    def validate_contract_path(self, path: Path) -> ValidationResult:
        result = ValidationResult(valid=True)
        try:
            p = Path(path).resolve()
        except (ValueError, OSError) as e:
            result.add_error(f"Invalid path format: {e}")
            return result

        # open once so the checks see the same file
        try:
            fd = os.open(str(p), os.O_RDONLY)
            try:
                stat_info = os.fstat(fd)
                if not stat.S_ISREG(stat_info.st_mode):
                    result.add_error(f"Path is not a regular file: {path}")
                    return result

                size = stat_info.st_size
                if size > self.MAX_FILE_SIZE:
                    result.add_error(f"File too large: {size} bytes (max {self.MAX_FILE_SIZE})")
                    return result
                if size == 0:
                    result.add_error("File is empty")
                    return result
            finally:
                os.close(fd)
        except OSError as e:
            result.add_error(f"Cannot access file: {e}")
            return result

        if p.suffix != '.sol':
            result.add_warning(f"File does not have .sol extension: {path}")
        return result

    def validate_command(self, command: str, label: str) -> ValidationResult:
        result = ValidationResult(valid=True)
        if not command or not command.strip():
            result.add_error(f"{label} command is empty")
            return result
        executable = command.split()[0]
        if shutil.which(executable) is None and not Path(executable).exists():
            result.add_warning(f"{label} executable not found on PATH: {executable}")
        return result

    def validate(self, config: "VeriManConfig") -> ValidationResult:
        result = ValidationResult(valid=True)
        result.merge(self.validate_contract_path(config.contract_path))

        if config.contract.name and not self.CONTRACT_NAME_PATTERN.match(config.contract.name):
            result.add_error(f"Invalid contract name: {config.contract.name!r}")

        instrumentation = config.instrumentation
        if instrumentation.instrument and not instrumentation.predicates:
            result.add_error("instrumentation.predicates is empty")
        for i, predicate in enumerate(instrumentation.predicates):
            if not predicate.strip():
                result.add_error(f"instrumentation.predicates[{i}] is blank")

        verifier = config.verification.verifier
        symbolic = config.verification.symbolic_exec
        if not verifier.enabled and not symbolic.enabled:
            result.add_error("no back-end enabled (verification.verifier / verification.symbolicExec)")
        if verifier.enabled:
            result.merge(self.validate_command(verifier.command, "verifier"))
            if symbolic.enabled:
                result.add_warning("symbolic executor is only used when the verifier is disabled")
        elif symbolic.enabled:
            result.merge(self.validate_command(symbolic.command, "symbolic executor"))
            if not instrumentation.for_symbolic_exec and instrumentation.instrument:
                result.add_warning("symbolic executor selected but instrumentation.forSymbolicExec is false")
        if symbolic.loop_delimiter is not None:
            result.add_warning("verification.symbolicExec.loopDelimiter is deprecated and ignored")
        if instrumentation.compiler_command:
            result.merge(self.validate_command(instrumentation.compiler_command, "compiler"))
        return result


def validate_config(config: "VeriManConfig") -> ValidationResult:
    return ConfigValidator().validate(config)
