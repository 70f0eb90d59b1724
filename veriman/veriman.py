"""pipeline facade: configuration -> contract -> monitors -> back-end -> verdict

usage:
    veriman = VeriMan()
    config = veriman.parse_config("config.json")
    result = veriman.analyze_contract(config)
    proof_found, counterexample = result.as_tuple()
"""
import logging
import shutil
import time
from pathlib import Path
from typing import List, Optional, TextIO, Union

from veriman.cal.compiler import check_compiler_compatibility, compile_check
from veriman.cal.contract_reader import check_identifiers, read_contract
from veriman.config import VeriManConfig, VeriManSettings, load_config, settings as default_settings
from veriman.errors import ConfigError, InstrumentationError, VeriManError
from veriman.instrumentation import InstrumentationResult, instrument
from veriman.models.contract import ContractView
from veriman.models.results import Outcome, RunResult
from veriman.ptltl import Formula, parse_formulas, synthesize_all, to_text
from veriman.utils.correlation import runcontext
from veriman.utils.logging import RunLogger
from veriman.utils.validation import validate_config
from veriman.verification.backends import BackendDriver, run_workspace
from veriman.verification.iteration import IterationController, Observation
from veriman.verification.monitor_check import CheckResult, MonitorChecker
from veriman.verification.traces import normalize, suppress_constant_transactions

logger = logging.getLogger(__name__)


class VeriMan:
    """wires parser, synthesizer, reader, instrumenter, back-end and retry loop together"""

    def __init__(
        self,
        settings: Optional[VeriManSettings] = None,
        run_logger: Optional[RunLogger] = None,
        verbose: bool = False,
        stream: Optional[TextIO] = None,
    ):
        self.settings = settings or default_settings
        self.logger = run_logger or RunLogger(settings=self.settings, verbose=verbose, stream=stream)
        self.config: Optional[VeriManConfig] = None
        self.view: Optional[ContractView] = None
        self.formulas: List[Formula] = []

    def parse_config(self, path: Union[str, Path]) -> VeriManConfig:
        self.config = load_config(path)
        return self.config

    def _require_config(self, config: Optional[VeriManConfig]) -> VeriManConfig:
        config = config or self.config
        if config is None:
            raise ConfigError("no configuration loaded")
        self.config = config
        return config

    def pre_process_contract(self, config: Optional[VeriManConfig] = None) -> ContractView:
        """
        Validate the configuration, read the contract and parse the predicates

        Raises:
            ConfigError: invalid configuration
            UnsupportedContract: contract cannot be recovered
            ParseError: malformed predicate
        """
        config = self._require_config(config)

        validation = validate_config(config)
        for warning in validation.warnings:
            self.logger.warning(warning)
        if not validation.valid:
            raise ConfigError("; ".join(validation.errors))

        path = config.contract_path
        try:
            source = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"cannot read contract {path}: {e}") from e

        self.view = read_contract(source, config.contract.name or None, path)
        section = config.instrumentation
        self.formulas = parse_formulas(section.predicates) if section.instrument else []
        self.logger.info(f"contract {self.view.name}: {len(self.formulas)} predicates")

        if section.precheck_identifiers and self.formulas:
            check_identifiers(self.view, self.formulas)

        if section.check_monitors:
            self.check_monitors(self.formulas)

        if section.compiler_command:
            compatible, message = check_compiler_compatibility(source, section.compiler_command)
            if not compatible:
                self.logger.warning(message)
        return self.view

    def check_monitors(self, formulas: List[Formula], depth: int = 4) -> None:
        checker = MonitorChecker()
        for schema in synthesize_all(formulas):
            outcome = checker.check(schema.formula, schema, depth)
            if outcome.result == CheckResult.MISMATCH:
                raise InstrumentationError(
                    f"monitor for predicate {schema.index} disagrees with {to_text(schema.formula)} at step {outcome.step}"
                )

    def instrument(self, formulas: Optional[List[Formula]] = None, for_symbolic_exec: Optional[bool] = None) -> InstrumentationResult:
        if self.view is None:
            raise ConfigError("contract not pre-processed")
        formulas = self.formulas if formulas is None else formulas
        if for_symbolic_exec is None:
            for_symbolic_exec = bool(self.config and self.config.instrumentation.for_symbolic_exec)
        result = instrument(self.view, synthesize_all(formulas), for_symbolic_exec)
        self.logger.log_instrumentation(
            self.view.name,
            entry_points=[name for names in result.scopes.values() for name in names],
            history_vars=[var.name for var in result.history],
            snapshots=[s.name for s in result.snapshots],
            call_flags=list(result.call_flags),
        )
        return result

    def analyze_contract(self, config: Optional[VeriManConfig] = None) -> RunResult:
        """
        Run the whole pipeline once, retrying vacuous counter-examples

        KeyboardInterrupt ends the run as CANCELLED after the back-end child
        and the working directory are cleaned up. VeriManError subclasses
        propagate to the caller after being logged.
        """
        config = self._require_config(config)
        with runcontext() as run_id:
            start = time.time()
            self.logger.info(f"analysis started for {config.contract_path}")
            try:
                result = self._analyze(config)
            except KeyboardInterrupt:
                self.logger.warning("analysis cancelled")
                result = RunResult(
                    outcome=Outcome.CANCELLED,
                    contract=config.contract_name,
                    formulas=[to_text(f) for f in self.formulas],
                    message="cancelled by user",
                )
            except VeriManError as e:
                self.logger.log_error(config.contract_name, type(e).__name__, str(e))
                raise
            result.run_id = run_id
            result.elapsed = time.time() - start
            self.logger.info(f"analysis finished: {result.outcome.value} after {result.attempts} attempt(s)")
            return result

    def _analyze(self, config: VeriManConfig) -> RunResult:
        view = self.pre_process_contract(config)
        section = config.instrumentation

        with run_workspace(cleanup=config.output.cleanup) as workspace:
            driver = BackendDriver(
                config, workspace, run_logger=self.logger, default_timeout=self.settings.BACKEND_TIMEOUT
            )

            def step(formulas: List[Formula], attempt: int) -> Observation:
                target_dir = workspace / f"attempt_{attempt}"
                target_dir.mkdir(parents=True, exist_ok=True)
                target = target_dir / config.contract_path.name
                result = None
                if section.instrument:
                    result = self.instrument(formulas)
                    result.write(target)
                    if section.compiler_command:
                        compile_check(target, section.compiler_command)
                else:
                    shutil.copyfile(config.contract_path, target)

                raw = driver.run(target, view.name, attempt=attempt)
                trace = normalize(raw, view.name, view)
                if config.verification.avoid_constant_txs:
                    trace = suppress_constant_transactions(trace, view)
                return Observation(trace, result)

            controller = IterationController(self.formulas, step, contract=view.name, run_logger=self.logger)
            result = controller.run()
            result.backend = driver.name
            return result
