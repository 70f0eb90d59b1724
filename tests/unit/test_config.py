"""json configuration loading and environment settings"""

import json

import pytest

from veriman.config import VeriManSettings, config_from_dict, env_flag, load_config, safe_int
from veriman.errors import ConfigError


def write(tmp_path, data, name="config.json"):
    path = tmp_path / name
    path.write_text(data if isinstance(data, str) else json.dumps(data))
    return path


class TestLoadConfig:

    def test_defaults(self, tmp_path):
        config = load_config(write(tmp_path, {"contract": {"path": "Token.sol"}}))
        assert config.contract.args == "()"
        assert config.output.format == "text"
        assert config.output.cleanup is True
        assert config.instrumentation.instrument is True
        assert config.instrumentation.predicates == []
        assert config.verification.verifier.enabled is True
        assert config.verification.verifier.tx_bound == 5
        assert config.verification.verifier.timeout is None
        assert config.verification.symbolic_exec.enabled is False
        assert config.verification.avoid_constant_txs is False

    def test_camel_case_keys(self, tmp_path):
        config = load_config(write(tmp_path, {
            "contract": {"path": "Token.sol"},
            "instrumentation": {"forSymbolicExec": True, "predicates": ["x > 0"], "checkMonitors": True},
            "verification": {
                "avoidConstantTxs": True,
                "verifier": {"txBound": 9, "modularArithmetic": True},
                "symbolicExec": {"initialBalance": 5, "loopDelimiter": 2},
            },
        }))
        assert config.instrumentation.for_symbolic_exec is True
        assert config.instrumentation.check_monitors is True
        assert config.verification.avoid_constant_txs is True
        assert config.verification.verifier.tx_bound == 9
        assert config.verification.verifier.modular_arithmetic is True
        assert config.verification.symbolic_exec.initial_balance == 5
        assert config.verification.symbolic_exec.loop_delimiter == 2

    def test_contract_path_relative_to_config(self, tmp_path):
        nested = tmp_path / "conf"
        nested.mkdir()
        config = load_config(write(nested, {"contract": {"path": "../contracts/Token.sol"}}))
        assert config.contract_path == (nested / "../contracts/Token.sol")
        assert config.contract_name == "Token"

    def test_absolute_contract_path(self, tmp_path):
        target = tmp_path / "Wallet.sol"
        config = load_config(write(tmp_path, {"contract": {"path": str(target), "name": "MultiSig"}}))
        assert config.contract_path == target
        assert config.contract_name == "MultiSig"

    def test_unknown_key_rejected(self, tmp_path):
        with pytest.raises(ConfigError, match="txbound"):
            load_config(write(tmp_path, {"contract": {"path": "a.sol"}, "verification": {"verifier": {"txbound": 3}}}))

    def test_missing_contract_path(self, tmp_path):
        with pytest.raises(ConfigError, match="contract.path"):
            load_config(write(tmp_path, {"contract": {}}))

    @pytest.mark.parametrize("args", ["1, 2", "[1]"])
    def test_constructor_args_must_be_parenthesized(self, tmp_path, args):
        with pytest.raises(ConfigError, match="parenthesized"):
            load_config(write(tmp_path, {"contract": {"path": "a.sol", "args": args}}))

    def test_blank_constructor_args(self, tmp_path):
        config = load_config(write(tmp_path, {"contract": {"path": "a.sol", "args": "  "}}))
        assert config.contract.args == "()"

    def test_bad_output_format(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(write(tmp_path, {"contract": {"path": "a.sol"}, "output": {"format": "xml"}}))

    def test_tx_bound_positive(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(write(tmp_path, {"contract": {"path": "a.sol"}, "verification": {"verifier": {"txBound": 0}}}))

    def test_invalid_json(self, tmp_path):
        with pytest.raises(ConfigError, match="not valid json"):
            load_config(write(tmp_path, "{contract: "))

    def test_not_an_object(self, tmp_path):
        with pytest.raises(ConfigError, match="json object"):
            load_config(write(tmp_path, "[1, 2]"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="cannot read"):
            load_config(tmp_path / "absent.json")


def test_config_from_dict_without_base():
    config = config_from_dict({"contract": {"path": "x/Token.sol"}})
    assert str(config.contract_path) == "x/Token.sol"


def test_safe_int():
    assert safe_int(None, 7) == 7
    assert safe_int("12", 7) == 12
    assert safe_int("abc", 7) == 7
    with pytest.warns(RuntimeWarning):
        assert safe_int("0", 7, min_val=1) == 7
    with pytest.warns(RuntimeWarning):
        assert safe_int("100", 7, max_val=50) == 7


@pytest.mark.parametrize("value,expected", [("1", True), ("TRUE", True), (" on ", True), ("0", False), ("no", False)])
def test_env_flag(monkeypatch, value, expected):
    monkeypatch.setenv("VERIMAN_TEST_FLAG", value)
    assert env_flag("VERIMAN_TEST_FLAG", not expected) is expected


def test_env_flag_default(monkeypatch):
    monkeypatch.delenv("VERIMAN_TEST_FLAG", raising=False)
    assert env_flag("VERIMAN_TEST_FLAG", True) is True


def test_settings_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("VERIMAN_ROOT", str(tmp_path))
    monkeypatch.delenv("VERIMAN_LOGS_DIR", raising=False)
    monkeypatch.setenv("VERIMAN_BACKEND_TIMEOUT", "30")
    monkeypatch.setenv("VERIMAN_LOG_TO_SQLITE", "yes")
    settings = VeriManSettings()
    assert settings.LOGS_DIR == tmp_path / ".veriman" / "logs"
    assert settings.LOGS_DB_PATH == tmp_path / ".veriman" / "logs" / "runs.db"
    assert settings.BACKEND_TIMEOUT == 30
    assert settings.LOG_TO_SQLITE is True


def test_settings_logs_override(monkeypatch, tmp_path):
    monkeypatch.setenv("VERIMAN_LOGS_DIR", str(tmp_path / "elsewhere"))
    monkeypatch.setenv("VERIMAN_BACKEND_TIMEOUT", "-5")
    with pytest.warns(RuntimeWarning):
        settings = VeriManSettings()
    assert settings.LOGS_RAW_DIR == tmp_path / "elsewhere" / "raw"
    assert settings.BACKEND_TIMEOUT == 600
