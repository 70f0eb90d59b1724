import json
import os
import warnings
from pathlib import Path
from typing import List, Literal, Optional, Union
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from veriman.errors import ConfigError


def safe_int(value: Optional[str], default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    if value is None:
        return default
    try:
        result = int(value)
        if min_val is not None and result < min_val:
            warnings.warn(
                f"Value {result} is below minimum {min_val}, using default {default}",
                RuntimeWarning,
                stacklevel=2
            )
            return default
        if max_val is not None and result > max_val:
            warnings.warn(
                f"Value {result} exceeds maximum {max_val}, using default {default}",
                RuntimeWarning,
                stacklevel=2
            )
            return default
        return result
    except (ValueError, TypeError):
        return default


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class VeriManSettings:
    """process-level settings from the environment"""
    ROOT: Path = field(default_factory=lambda: Path(os.getenv("VERIMAN_ROOT") or Path.cwd()))
    LOGS_DIR_OVERRIDE: Optional[str] = field(default_factory=lambda: os.getenv("VERIMAN_LOGS_DIR"))
    ENABLE_LOGGING: bool = field(default_factory=lambda: env_flag("VERIMAN_ENABLE_LOGGING", True))
    LOG_TO_SQLITE: bool = field(default_factory=lambda: env_flag("VERIMAN_LOG_TO_SQLITE", False))
    BACKEND_TIMEOUT: int = field(
        default_factory=lambda: safe_int(os.getenv("VERIMAN_BACKEND_TIMEOUT"), default=600, min_val=1, max_val=86400)
    )

    @property
    def LOGS_DIR(self) -> Path:
        if self.LOGS_DIR_OVERRIDE:
            return Path(self.LOGS_DIR_OVERRIDE)
        return self.ROOT / ".veriman" / "logs"

    @property
    def LOGS_RAW_DIR(self) -> Path:
        return self.LOGS_DIR / "raw"

    @property
    def LOGS_DB_PATH(self) -> Path:
        return self.LOGS_DIR / "runs.db"


settings = VeriManSettings()


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ContractSection(_Section):
    name: str = ""
    path: str
    args: str = "()"

    @field_validator("args")
    @classmethod
    def _parenthesized(cls, value: str) -> str:
        value = value.strip() or "()"
        if not (value.startswith("(") and value.endswith(")")):
            raise ValueError("constructor arguments must be a parenthesized list")
        return value


class OutputSection(_Section):
    verbose: bool = False
    cleanup: bool = True
    format: Literal["text", "json", "sarif"] = "text"


class InstrumentationSection(_Section):
    instrument: bool = True
    for_symbolic_exec: bool = False
    compiler_command: str = ""
    predicates: List[str] = Field(default_factory=list)
    check_monitors: bool = False
    precheck_identifiers: bool = False


class VerifierSection(_Section):
    enabled: bool = True
    command: str = "VeriSol"
    tx_bound: int = Field(default=5, ge=1)
    modular_arithmetic: bool = False
    timeout: Optional[int] = Field(default=None, ge=1)


class SymbolicExecSection(_Section):
    enabled: bool = False
    command: str = "manticore"
    procs: int = Field(default=1, ge=1)
    accounts: int = Field(default=2, ge=1)
    initial_balance: int = Field(default=10 ** 18, ge=0)
    timeout: Optional[int] = Field(default=None, ge=1)
    loop_delimiter: Optional[int] = None


class VerificationSection(_Section):
    avoid_constant_txs: bool = False
    verifier: VerifierSection = Field(default_factory=VerifierSection)
    symbolic_exec: SymbolicExecSection = Field(default_factory=SymbolicExecSection)


class VeriManConfig(_Section):
    """one driver run, as read from the json configuration"""
    contract: ContractSection
    output: OutputSection = Field(default_factory=OutputSection)
    instrumentation: InstrumentationSection = Field(default_factory=InstrumentationSection)
    verification: VerificationSection = Field(default_factory=VerificationSection)
    _base_dir: Optional[Path] = PrivateAttr(default=None)

    @property
    def contract_path(self) -> Path:
        path = Path(self.contract.path).expanduser()
        if not path.is_absolute() and self._base_dir is not None:
            path = self._base_dir / path
        return path

    @property
    def contract_name(self) -> str:
        return self.contract.name or Path(self.contract.path).stem


def _describe(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        lines.append(f"{location}: {item.get('msg')}")
    return "; ".join(lines)


def config_from_dict(data: dict, base_dir: Optional[Path] = None) -> VeriManConfig:
    try:
        config = VeriManConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {_describe(e)}") from e
    if base_dir is not None:
        config._base_dir = Path(base_dir)
    return config


def load_config(path: Union[str, Path]) -> VeriManConfig:
    """read and validate a json configuration file; relative contract paths resolve against its directory"""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read configuration {path}: {e}") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"configuration {path} is not valid json: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"configuration {path} must be a json object")
    return config_from_dict(data, base_dir=path.parent.resolve())
