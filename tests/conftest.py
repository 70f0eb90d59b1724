"""shared fixtures: sample contracts, isolated logging, a scriptable fake back-end"""

import io
import json
import shlex
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from veriman.config import VeriManSettings  # noqa: E402
from veriman.utils.logging import RunLogger  # noqa: E402


TOKEN_SOURCE = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.0;

contract Token {
    mapping(address => uint256) balances;
    uint256 totalSupply;
    uint256 sum_of_balances;

    constructor() {
        totalSupply = 1;
        balances[msg.sender] = 1;
        sum_of_balances = 1;
    }

    function transfer(address to, uint256 amt) public {
        _transfer(msg.sender, to, amt);
    }

    function _transfer(address sender, address recipient, uint256 amt) internal {
        require(balances[sender] >= amt, "insufficient {balance}");
        balances[sender] -= amt;
        balances[recipient] += amt;
    }

    function balanceOf(address who) public view returns (uint256) {
        return balances[who];
    }
}
"""

MINTABLE_SOURCE = """pragma solidity ^0.8.0;

contract Mintable {
    mapping(address => uint256) balances;
    uint256 totalSupply;
    uint256 sum_of_balances;

    constructor() {
        totalSupply = 1;
        balances[msg.sender] = 1;
        sum_of_balances = 1;
    }

    function transfer(address to, uint256 amt) public {
        balances[msg.sender] -= amt;
        balances[to] += amt;
    }

    function mint(address to, uint256 amt) public {
        balances[to] += amt;
        sum_of_balances += amt;
    }

    function burn(uint256 amt) public {
        balances[msg.sender] -= amt;
        sum_of_balances -= amt;
        totalSupply -= amt;
    }
}
"""

FAKE_BACKEND = '''
import json
import pathlib
import sys
import time

here = pathlib.Path(__file__).parent
state = here / "fake_state.json"
responses = json.loads((here / "fake_responses.json").read_text())
count = json.loads(state.read_text())["count"] if state.exists() else 0
state.write_text(json.dumps({"count": count + 1}))

source = pathlib.Path(sys.argv[1]).read_text() if len(sys.argv) > 1 else ""
with open(here / "fake_calls.jsonl", "a") as log:
    log.write(json.dumps({"argv": sys.argv[1:], "source": source}) + "\\n")

response = responses[min(count, len(responses) - 1)]
time.sleep(response.get("sleep", 0))
sys.stdout.write(response.get("stdout", ""))
sys.stderr.write(response.get("stderr", ""))
sys.exit(response.get("exit", 0))
'''


class FakeBackend:
    """python script that replays canned outputs, one per invocation, and records its calls"""

    def __init__(self, directory: Path):
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self.script = directory / "fake_backend.py"
        self.script.write_text(FAKE_BACKEND)
        self.respond([{"stdout": ""}])

    @property
    def command(self) -> str:
        return f"{shlex.quote(sys.executable)} {shlex.quote(str(self.script))}"

    def respond(self, responses):
        normalized = [r if isinstance(r, dict) else {"stdout": r} for r in responses]
        (self.directory / "fake_responses.json").write_text(json.dumps(normalized))

    @property
    def calls(self):
        log = self.directory / "fake_calls.jsonl"
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text().splitlines() if line.strip()]


@pytest.fixture
def token_source():
    return TOKEN_SOURCE


@pytest.fixture
def mintable_source():
    return MINTABLE_SOURCE


@pytest.fixture
def isolated_settings(tmp_path):
    return VeriManSettings(
        ROOT=tmp_path,
        LOGS_DIR_OVERRIDE=str(tmp_path / "logs"),
        ENABLE_LOGGING=True,
        LOG_TO_SQLITE=False,
        BACKEND_TIMEOUT=60,
    )


@pytest.fixture
def log_stream():
    return io.StringIO()


@pytest.fixture
def run_logger(isolated_settings, log_stream):
    return RunLogger(settings=isolated_settings, stream=log_stream)


@pytest.fixture
def fake_backend(tmp_path):
    return FakeBackend(tmp_path / "backend")


@pytest.fixture
def write_config(tmp_path):
    """write a contract and a json configuration next to it; returns the config path"""

    def _write(source: str, predicates, command: str, filename: str = "Token.sol", **overrides):
        contract_path = tmp_path / filename
        contract_path.write_text(source)
        config = {
            "contract": {"name": "", "path": filename, "args": "()"},
            "output": {"verbose": False, "cleanup": True, "format": "text"},
            "instrumentation": {"instrument": True, "forSymbolicExec": False, "predicates": list(predicates)},
            "verification": {
                "verifier": {"enabled": True, "command": command, "txBound": 3, "modularArithmetic": False},
                "symbolicExec": {"enabled": False},
            },
        }
        for section, values in overrides.items():
            target = config
            for key in section.split("."):
                target = target.setdefault(key, {})
            target.update(values)
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps(config))
        return config_path

    return _write
