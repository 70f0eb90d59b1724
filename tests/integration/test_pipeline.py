"""end-to-end runs of the driver against a scripted back-end executable"""

import json
import re
from pathlib import Path

import pytest

from conftest import MINTABLE_SOURCE, TOKEN_SOURCE
from veriman import cli
from veriman.errors import BackendOutputError, BackendSpawnError, ConfigError, ParseError
from veriman.instrumentation import strip_instrumentation
from veriman.models.results import Outcome
from veriman.veriman import VeriMan
from veriman.verification.backends import BackendDriver


PROOF = "... running Boogie\nProof found for {contract} up to 3 transactions\n"

CONSTRUCTOR_ONLY = """Found a counterexample:
{contract}.sol(9,5): : {contract}::Constructor ()
{contract}.sol(1,1): : ASSERTION FAILS!
"""

TWO_TRANSACTIONS = """Found a counterexample:
{contract}.sol(9,5): : {contract}::Constructor ()
{contract}.sol(16,5): : {contract}::__vmInner_{function} (this=T@{contract}, {args})
{contract}.sol(15,5): : {contract}::{function} (this=T@{contract}, {args}, msg.sender=0xB, msg.value=0)
{contract}.sol(1,1): : ASSERTION FAILS!
"""

FORGETFUL_TOKEN = TOKEN_SOURCE.replace("        balances[sender] -= amt;\n", "")

SYMBOLIC_RUN = """m.main:INFO: Beginning analysis
m.ethereum.manticore:INFO: Results in /tmp/mcore_1
Transactions No. 0
Type: CREATE (0)
From: owner(0x10000)
Value: 0

Transactions No. 1
Type: CALL (0)
From: normal0(0x30000)
Value: 0
Function call:
mint(0x41, 583) -> STOP
Events:
AssertionFailed(predicate 0 violated: totalSupply == sum_of_balances)
"""


def proof(contract="Token"):
    return PROOF.format(contract=contract)


def constructor_only(contract="Token"):
    return CONSTRUCTOR_ONLY.format(contract=contract)


def two_transactions(function, args, contract="Token"):
    return TWO_TRANSACTIONS.format(contract=contract, function=function, args=args)


@pytest.fixture
def driver(isolated_settings, log_stream):
    return VeriMan(settings=isolated_settings, stream=log_stream)


def analyze(driver, config_path):
    return driver.analyze_contract(driver.parse_config(config_path))


class TestScenarios:

    def test_proof_round_trip(self, driver, fake_backend, write_config):
        fake_backend.respond([proof()])
        config = write_config(TOKEN_SOURCE, ["Hist(totalSupply == sum_of_balances)"], fake_backend.command)

        result = analyze(driver, config)

        assert result.outcome == Outcome.PROVEN
        assert result.as_tuple() == (True, "")
        assert result.exit_code == 0
        assert result.backend == "verifier"
        [call] = fake_backend.calls
        assert call["argv"][1:] == ["Token", "/txBound:3"]
        assert Path(call["argv"][0]).name == "Token.sol"
        assert Path(call["argv"][0]).parent.name == "attempt_1"
        assert strip_instrumentation(call["source"]) == TOKEN_SOURCE
        assert "bool notConstructor = false;" in call["source"]

    def test_forgot_to_debit_sender(self, driver, fake_backend, write_config):
        fake_backend.respond([two_transactions("transfer", "to=0xA, amt=142")])
        predicate = "Old(balances[msg.sender] + balances[to]) == balances[msg.sender] + balances[to]"
        config = write_config(FORGETFUL_TOKEN, [predicate], fake_backend.command)

        result = analyze(driver, config)

        assert result.outcome == Outcome.REAL_CE
        assert not result.vacuous
        assert result.exit_code == 1
        assert result.trace.functions == ["Constructor", "transfer"]
        assert result.trace.records[1].args == {"to": "0xA", "amt": "142"}
        assert result.trace.records[1].caller == "0xB"
        assert result.trace.formula_index == 0
        assert result.as_tuple()[1] == "Constructor() -> transfer(to=0xA, amt=142, caller=0xB, value=0)"
        source = fake_backend.calls[0]["source"]
        assert source.count("assert(__vmGoal0);") == 1

    def test_mint_without_supply_update(self, driver, fake_backend, write_config):
        fake_backend.respond([two_transactions("mint", "to=0xA, amt=583", contract="Mintable")])
        config = write_config(MINTABLE_SOURCE, ["totalSupply == sum_of_balances"], fake_backend.command,
                              filename="Mintable.sol")

        result = analyze(driver, config)

        assert result.outcome == Outcome.REAL_CE
        assert result.contract == "Mintable"
        assert result.trace.functions == ["Constructor", "mint"]
        assert result.trace.records[1].args["amt"] == "583"

    def test_modular_arithmetic_flag(self, driver, fake_backend, write_config):
        fake_backend.respond([proof()])
        config = write_config(TOKEN_SOURCE, ["balances[msg.sender] <= Old(balances[msg.sender])"],
                              fake_backend.command, **{"verification.verifier": {"modularArithmetic": True}})
        analyze(driver, config)
        assert fake_backend.calls[0]["argv"][-2:] == ["/txBound:3", "/useModularArithmetic"]

    def test_vacuous_counterexample_retried(self, driver, fake_backend, write_config):
        fake_backend.respond([
            constructor_only("Mintable"),
            two_transactions("burn", "amt=1", contract="Mintable"),
        ])
        config = write_config(MINTABLE_SOURCE, ["Old(totalSupply) == totalSupply || mintCalled"],
                              fake_backend.command, filename="Mintable.sol")

        result = analyze(driver, config)

        assert result.outcome == Outcome.REAL_CE
        assert not result.vacuous
        assert result.attempts == 2
        assert result.trace.functions == ["Constructor", "burn"]
        assert result.formulas == ["(notConstructor -> (Old(totalSupply) == totalSupply || mintCalled))"]
        first, second = fake_backend.calls
        assert Path(second["argv"][0]).parent.name == "attempt_2"
        assert not re.search(r"bool __vmGoal0 = .*notConstructor", first["source"])
        assert re.search(r"bool __vmGoal0 = .*notConstructor", second["source"])

    def test_vacuous_fixed_by_extending_disjunction(self, driver, fake_backend, write_config):
        fake_backend.respond([constructor_only("Mintable"), proof("Mintable")])
        config = write_config(MINTABLE_SOURCE, ["Old(totalSupply) == totalSupply || mintCalled || burnCalled"],
                              fake_backend.command, filename="Mintable.sol")
        result = analyze(driver, config)
        assert result.outcome == Outcome.PROVEN
        assert result.attempts == 2

    def test_vacuous_twice(self, driver, fake_backend, write_config):
        fake_backend.respond([constructor_only(), constructor_only()])
        config = write_config(TOKEN_SOURCE, ["totalSupply == 0"], fake_backend.command)
        result = analyze(driver, config)
        assert result.outcome == Outcome.REAL_CE
        assert result.vacuous
        assert result.exit_code == 2
        assert len(fake_backend.calls) == 2

    def test_since_with_call_flag(self, driver, fake_backend, write_config):
        fake_backend.respond([proof()])
        config = write_config(TOKEN_SOURCE, ["(balances[msg.sender] > 0) Since (Old(transferCalled))"],
                              fake_backend.command)
        result = analyze(driver, config)
        assert result.outcome == Outcome.PROVEN
        source = fake_backend.calls[0]["source"]
        assert "bool __vmLast_transferCalled = false;" in source
        assert "bool transferCalled = true;" in source


    def test_inherited_entry_point_is_monitored(self, driver, fake_backend, write_config):
        source = (
            "pragma solidity ^0.8.0;\n\n"
            "contract Base {\n"
            "    uint256 totalSupply;\n\n"
            "    function mint(uint256 amt) public {\n"
            "        totalSupply += amt;\n"
            "    }\n"
            "}\n\n"
            "contract Token is Base {\n"
            "    function noop() public {}\n"
            "}\n"
        )
        fake_backend.respond([two_transactions("mint", "amt=11")])
        config = write_config(source, ["Hist(totalSupply < 10)"], fake_backend.command)

        result = analyze(driver, config)

        assert result.outcome == Outcome.REAL_CE
        assert result.trace.functions == ["Constructor", "mint"]
        sent = fake_backend.calls[0]["source"]
        derived = sent.index("contract Token is Base")
        assert sent.index("function mint(uint256 amt) public {") > derived
        assert sent.count("assert(__vmGoal0);") == 3
        assert strip_instrumentation(sent) == source


class TestSymbolicExecutor:

    def test_symbolic_run(self, driver, fake_backend, write_config):
        fake_backend.respond([SYMBOLIC_RUN])
        config = write_config(
            MINTABLE_SOURCE, ["totalSupply == sum_of_balances"], fake_backend.command, filename="Mintable.sol",
            **{
                "instrumentation": {"forSymbolicExec": True},
                "verification.verifier": {"enabled": False},
                "verification.symbolicExec": {"enabled": True, "command": fake_backend.command, "accounts": 3},
            },
        )

        result = analyze(driver, config)

        assert result.backend == "symbolic"
        assert result.outcome == Outcome.REAL_CE
        assert result.trace.functions == ["Constructor", "mint"]
        assert result.trace.records[1].args == {"to": "0x41", "amt": "583"}
        [call] = fake_backend.calls
        argv = call["argv"]
        assert argv[argv.index("--txlimit") + 1] == "3"
        assert argv[argv.index("--accounts") + 1] == "3"
        assert "--contract-args" not in argv
        assert 'emit AssertionFailed("predicate 0 violated: totalSupply == sum_of_balances");' in call["source"]


class TestFailures:

    def test_timeout_is_exhausted(self, driver, fake_backend, write_config):
        fake_backend.respond([{"sleep": 30, "stdout": proof()}])
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command,
                              **{"verification.verifier": {"timeout": 1}})
        result = analyze(driver, config)
        assert result.outcome == Outcome.EXHAUSTED
        assert result.exit_code == 3
        assert result.trace is None

    def test_backend_missing(self, driver, write_config, tmp_path):
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], str(tmp_path / "missing-verifier"))
        with pytest.raises(BackendSpawnError):
            analyze(driver, config)

    def test_malformed_output(self, driver, fake_backend, write_config):
        fake_backend.respond([{"stdout": "Unhandled exception\n", "exit": 1}])
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command)
        with pytest.raises(BackendOutputError, match="exited with status 1"):
            analyze(driver, config)

    def test_bad_predicate(self, driver, fake_backend, write_config):
        config = write_config(TOKEN_SOURCE, ["Once(totalSupply > 0"], fake_backend.command)
        with pytest.raises(ParseError):
            analyze(driver, config)
        assert fake_backend.calls == []
        errors = list((driver.logger.raw_dir / "errors").glob("*_ParseError_*.json"))
        assert len(errors) == 1

    def test_no_backend_enabled(self, driver, fake_backend, write_config):
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command,
                              **{"verification.verifier": {"enabled": False}})
        with pytest.raises(ConfigError, match="no back-end"):
            analyze(driver, config)

    def test_interrupt_cancels_and_cleans_up(self, driver, fake_backend, write_config, monkeypatch):
        seen = []

        def interrupted(self, source_path, contract, attempt=None):
            seen.append(Path(source_path))
            raise KeyboardInterrupt

        monkeypatch.setattr(BackendDriver, "run", interrupted)
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command)

        result = analyze(driver, config)

        assert result.outcome == Outcome.CANCELLED
        assert result.exit_code == 3
        assert result.formulas == ["totalSupply > 0"]
        assert not seen[0].parent.parent.exists()


class TestOptions:

    def test_constant_transactions_suppressed(self, driver, fake_backend, write_config):
        output = """Found a counterexample:
Token.sol(9,5): : Token::Constructor ()
Token.sol(30,5): : Token::balanceOf (this=T@Token, who=0x1, msg.sender=0xB, msg.value=0)
Token.sol(15,5): : Token::transfer (this=T@Token, to=0xA, amt=1, msg.sender=0xB, msg.value=0)
Token.sol(1,1): : ASSERTION FAILS!
"""
        fake_backend.respond([output, output])
        predicate = ["totalSupply == sum_of_balances"]

        plain = analyze(driver, write_config(TOKEN_SOURCE, predicate, fake_backend.command))
        assert plain.trace.functions == ["Constructor", "balanceOf", "transfer"]

        config = write_config(TOKEN_SOURCE, predicate, fake_backend.command,
                              **{"verification": {"avoidConstantTxs": True}})
        suppressed = analyze(driver, config)
        assert suppressed.trace.functions == ["Constructor", "transfer"]

    def test_without_instrumentation(self, driver, fake_backend, write_config):
        fake_backend.respond([constructor_only()])
        config = write_config(TOKEN_SOURCE, [], fake_backend.command, **{"instrumentation": {"instrument": False}})
        result = analyze(driver, config)
        assert fake_backend.calls[0]["source"] == TOKEN_SOURCE
        assert result.outcome == Outcome.REAL_CE
        assert result.attempts == 1

    def test_keep_working_directory(self, driver, fake_backend, write_config):
        import shutil
        fake_backend.respond([proof()])
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command, **{"output": {"cleanup": False}})
        analyze(driver, config)
        target = Path(fake_backend.calls[0]["argv"][0])
        try:
            assert target.exists()
        finally:
            shutil.rmtree(target.parent.parent)

    def test_run_records(self, driver, fake_backend, write_config):
        fake_backend.respond([proof()])
        result = analyze(driver, write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command))
        raw_dir = driver.logger.raw_dir
        for category in ("instrumentation", "backend", "iterations", "verdicts"):
            assert list((raw_dir / category).glob("*.json")), category
        [verdict] = (raw_dir / "verdicts").glob("*.json")
        data = json.loads(verdict.read_text())
        assert data["event_type"] == "proven"
        assert data["run_id"] == result.run_id


class TestCommandLine:

    @pytest.fixture(autouse=True)
    def isolate(self, monkeypatch, isolated_settings):
        monkeypatch.setattr("veriman.veriman.default_settings", isolated_settings)
        monkeypatch.setattr(cli, "get_shutdown_manager", lambda: None)

    def test_json_report(self, fake_backend, write_config, capsys):
        fake_backend.respond([proof()])
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command)
        code = cli.main(["--config", str(config), "--format", "json"])
        assert code == 0
        report = json.loads(capsys.readouterr().out)
        assert report["outcome"] == "proven"
        assert report["formulas"] == ["totalSupply > 0"]

    @pytest.mark.parametrize("responses,expected", [
        ([proof()], 0),
        ([two_transactions("transfer", "to=0xA, amt=1")], 1),
        ([constructor_only(), constructor_only()], 2),
        (["no verdict here"], 3),
    ])
    def test_exit_codes(self, fake_backend, write_config, responses, expected):
        fake_backend.respond(responses)
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command)
        assert cli.main(["--config", str(config), "--output", str(config.parent / "report.txt")]) == expected

    def test_bad_predicate_exit_code(self, fake_backend, write_config, capsys):
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0 &&"], fake_backend.command)
        assert cli.main(["--config", str(config)]) == 4
        assert "invalid predicate" in capsys.readouterr().err

    def test_predicate_and_bound_overrides(self, fake_backend, write_config, tmp_path):
        fake_backend.respond([proof()])
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command)
        report = tmp_path / "report.sarif"
        code = cli.main(["--config", str(config), "-p", "Once(totalSupply > 0)", "--tx-bound", "8",
                         "--format", "sarif", "-o", str(report)])
        assert code == 0
        assert fake_backend.calls[0]["argv"][-1] == "/txBound:8"
        sarif = json.loads(report.read_text())
        assert sarif["runs"][0]["properties"]["outcome"] == "proven"

    def test_instrument_only(self, fake_backend, write_config, tmp_path):
        config = write_config(TOKEN_SOURCE, ["totalSupply > 0"], fake_backend.command)
        out = tmp_path / "Token.instrumented.sol"
        assert cli.main(["--config", str(config), "--instrument-only", str(out)]) == 0
        assert strip_instrumentation(out.read_text()) == TOKEN_SOURCE
        assert fake_backend.calls == []

    def test_validate_only(self, fake_backend, write_config, capsys):
        config = write_config(TOKEN_SOURCE, [], fake_backend.command)
        assert cli.main(["--config", str(config), "--validate-only"]) == 4
        assert "predicates is empty" in capsys.readouterr().err

    def test_missing_config(self, tmp_path):
        assert cli.main(["--config", str(tmp_path / "nope.json")]) == 4
