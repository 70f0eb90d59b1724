"""contract reader: members, spans, versions and unsupported shapes"""

import unittest

import pytest

from conftest import TOKEN_SOURCE
from veriman.cal.contract_reader import (
    check_identifiers, identifiers, mask_source, parse_parameter, read_contract, read_contract_file,
    split_top_level,
)
from veriman.errors import UnsupportedContract
from veriman.models.contract import FunctionKind, Mutability, Visibility
from veriman.ptltl import parse_formulas


LEGACY_SOURCE = """pragma solidity ^0.4.24;

contract Base {
    uint x;
}

contract Wallet is Base {
    address owner;
    uint constant LIMIT = 10;

    function Wallet() {
        owner = msg.sender;
    }

    function deposit() payable {
        x += msg.value;
    }

    function total() constant returns (uint) {
        return x;
    }

    function () payable { }
}
"""


class TestTokenView(unittest.TestCase):

    def setUp(self):
        self.source = TOKEN_SOURCE
        self.view = read_contract(TOKEN_SOURCE)

    def test_name_and_pragma(self):
        self.assertEqual(self.view.name, "Token")
        self.assertEqual(self.view.pragma, "^0.8.0")
        self.assertEqual(self.view.pragma_version(), (0, 8, 0))

    def test_state_variables(self):
        types = self.view.state_variable_types()
        self.assertEqual(types["balances"], "mapping(address => uint256)")
        self.assertEqual(types["totalSupply"], "uint256")
        self.assertEqual(types["sum_of_balances"], "uint256")

    def test_functions(self):
        names = [fn.name for fn in self.view.functions]
        self.assertEqual(names, ["constructor", "transfer", "_transfer", "balanceOf"])
        self.assertEqual([fn.name for fn in self.view.public_functions], ["transfer", "balanceOf"])

    def test_constructor(self):
        ctor = self.view.constructor
        self.assertIsNotNone(ctor)
        self.assertEqual(ctor.kind, FunctionKind.CONSTRUCTOR)
        self.assertEqual(ctor.label, "Constructor")
        self.assertFalse(ctor.is_public)

    def test_params_and_returns(self):
        transfer = self.view.get_function("transfer")
        self.assertEqual(transfer.param_names, ["to", "amt"])
        self.assertEqual(transfer.params[0].type, "address")
        balance_of = self.view.get_function("balanceOf")
        self.assertEqual(balance_of.mutability, Mutability.VIEW)
        self.assertTrue(balance_of.is_constant)
        self.assertEqual(len(balance_of.returns), 1)
        self.assertEqual(balance_of.returns[0].type, "uint256")
        self.assertIsNone(balance_of.returns[0].name)
        self.assertEqual(len(balance_of.return_statements), 1)
        self.assertEqual(balance_of.return_statements[0].expression, "balances[who]")

    def test_internal_function_not_public(self):
        helper = self.view.get_function("_transfer")
        self.assertEqual(helper.visibility, Visibility.INTERNAL)
        self.assertFalse(helper.is_public)

    def test_body_spans_index_original_source(self):
        transfer = self.view.get_function("transfer")
        self.assertEqual(self.source[transfer.body_start], "{")
        self.assertEqual(self.source[transfer.body_end - 1], "}")
        self.assertTrue(self.source[transfer.header_start:].startswith("function transfer"))

    def test_braces_in_strings_do_not_confuse_bodies(self):
        helper = self.view.get_function("_transfer")
        body = self.source[helper.body_start:helper.body_end]
        self.assertIn('"insufficient {balance}"', body)
        self.assertTrue(body.rstrip().endswith("}"))

    def test_line_of(self):
        self.assertEqual(self.view.line_of(0), 1)
        transfer = self.view.get_function("transfer")
        self.assertEqual(transfer.line, self.source[:transfer.header_start].count("\n") + 1)


class TestLegacyContract(unittest.TestCase):

    def setUp(self):
        self.view = read_contract(LEGACY_SOURCE)

    def test_picks_last_contract(self):
        self.assertEqual(self.view.name, "Wallet")
        self.assertEqual(self.view.pragma_version(), (0, 4, 24))

    def test_same_name_function_is_constructor(self):
        ctor = self.view.constructor
        self.assertIsNotNone(ctor)
        self.assertEqual(ctor.kind, FunctionKind.CONSTRUCTOR)

    def test_missing_visibility_defaults_public(self):
        deposit = self.view.get_function("deposit")
        self.assertEqual(deposit.visibility, Visibility.PUBLIC)
        self.assertEqual(deposit.mutability, Mutability.PAYABLE)

    def test_constant_function(self):
        total = self.view.get_function("total")
        self.assertTrue(total.legacy_constant)
        self.assertTrue(total.is_constant)

    def test_unnamed_function_is_fallback(self):
        fallback = self.view.get_function("fallback")
        self.assertEqual(fallback.kind, FunctionKind.FALLBACK)
        self.assertTrue(fallback.is_public)

    def test_constant_state_variable(self):
        limit = self.view.get_state_variable("LIMIT")
        self.assertTrue(limit.is_constant)
        self.assertEqual(limit.initial_value, "10")

    def test_select_by_name(self):
        base = read_contract(LEGACY_SOURCE, "Base")
        self.assertEqual(base.name, "Base")
        self.assertEqual(base.state_variable_types(), {"x": "uint"})


def test_missing_contract_name():
    with pytest.raises(UnsupportedContract, match="Nope"):
        read_contract(LEGACY_SOURCE, "Nope")


def test_no_contract():
    with pytest.raises(UnsupportedContract, match="no contract"):
        read_contract("pragma solidity ^0.8.0;\ninterface I { function f() external; }\n")


def test_missing_visibility_modern_rejected():
    source = "pragma solidity ^0.6.0;\ncontract C {\n    function f() { }\n}\n"
    with pytest.raises(UnsupportedContract, match="visibility"):
        read_contract(source)


def test_unbalanced_body():
    with pytest.raises(UnsupportedContract):
        read_contract("pragma solidity ^0.8.0;\ncontract C {\n    function f() public {\n")


def test_modifiers_keep_arguments():
    source = """pragma solidity ^0.8.0;
contract C {
    modifier only(address who) { require(msg.sender == who); _; }
    address owner;
    function f(uint a) external only(owner) virtual returns (uint out) { out = a; }
}
"""
    view = read_contract(source)
    fn = view.get_function("f")
    assert fn.modifiers == ["only(owner)"]
    assert fn.is_virtual
    assert fn.visibility == Visibility.EXTERNAL
    assert fn.returns[0].name == "out"
    assert view.modifiers_declared == ["only"]


def test_assembly_exit_and_selfdestruct_detected():
    source = """pragma solidity ^0.8.0;
contract C {
    function f() public { assembly { return(0, 0) } }
    function g() public { selfdestruct(payable(msg.sender)); }
}
"""
    view = read_contract(source)
    assert view.get_function("f").assembly_exits == ["return"]
    assert view.get_function("f").return_statements == []
    assert view.get_function("g").self_destructs


def test_structs_events_enums():
    source = """pragma solidity ^0.8.0;
contract C {
    struct Pos { uint x; }
    enum Side { A, B }
    event Moved(uint x);
    Pos pos;
    function f() public { }
}
"""
    view = read_contract(source)
    assert view.structs == ["Pos"]
    assert view.enums == ["Side"]
    assert view.events == ["Moved"]
    assert view.get_state_variable("pos").type == "Pos"


def test_read_contract_file(tmp_path):
    path = tmp_path / "Wallet.sol"
    path.write_text(LEGACY_SOURCE)
    view = read_contract_file(path)
    assert view.path == path
    with pytest.raises(UnsupportedContract):
        read_contract_file(tmp_path / "missing.sol")


def test_mask_source_keeps_offsets():
    source = 'a = "x;{" // c {\n/* } */ b'
    masked = mask_source(source)
    assert len(masked) == len(source)
    assert "{" not in masked and "}" not in masked
    assert masked.count("\n") == 1


def test_split_top_level():
    assert split_top_level("uint a, mapping(uint => uint) m, f(x, y)") == [
        "uint a", "mapping(uint => uint) m", "f(x, y)",
    ]
    assert split_top_level("  ") == []


def test_parse_parameter():
    param = parse_parameter("uint256 [ ] memory values")
    assert (param.type, param.location, param.name) == ("uint256[]", "memory", "values")
    assert parse_parameter("address payable to").type == "address payable"


def test_identifiers_skip_members_and_builtins():
    assert identifiers("balances[msg.sender] + address(this).balance > uint256(limit)") == ["balances", "limit"]


def test_check_identifiers(token_source):
    view = read_contract(token_source)
    formulas = parse_formulas(["totalSupply == sum_of_balances", "Old(missing) == 1 || transferCalled"])
    warnings = check_identifiers(view, formulas)
    assert warnings == ["predicate 1: 'missing' is not bound by contract Token"]


INHERITANCE_SOURCE = """pragma solidity ^0.8.0;

interface IMintable {
    function mint(uint256 amt) external;
}

contract A {
    uint256 totalSupply;
    uint256 private secret;

    function f() public virtual { }
}

contract B is A {
    function f() public virtual override { totalSupply += 1; }
}

contract C is A, IMintable {
    function mint(uint256 amt) public { totalSupply += amt; }
    function _burn(uint256 amt) internal { totalSupply -= amt; }
}

contract D is B, C {
    function g() public { }
}
"""


class TestInheritance(unittest.TestCase):

    def setUp(self):
        self.view = read_contract(INHERITANCE_SOURCE, "D")

    def test_linearization_most_derived_first(self):
        self.assertEqual(self.view.linearization, ["D", "C", "IMintable", "B", "A"])
        self.assertEqual([base.name for base in self.view.bases], ["C", "B", "A"])

    def test_inherited_entry_points_skip_overridden(self):
        inherited = self.view.inherited_functions
        self.assertEqual([(fn.name, fn.contract) for fn in inherited], [("mint", "C"), ("f", "B")])
        self.assertEqual([fn.name for fn in self.view.entry_points], ["g", "mint", "f"])

    def test_base_state_visible_except_private(self):
        types = self.view.state_variable_types()
        self.assertEqual(types["totalSupply"], "uint256")
        self.assertNotIn("secret", types)

    def test_base_functions_resolvable(self):
        self.assertEqual(self.view.get_function("_burn").contract, "C")
        self.assertEqual(self.view.functions[0].contract, "D")

    def test_base_identifiers_bound(self):
        formulas = parse_formulas(["totalSupply >= 0 || mintCalled", "secret == 0"])
        warnings = check_identifiers(self.view, formulas)
        self.assertEqual(warnings, ["predicate 1: 'secret' is not bound by contract D"])


def test_undeclared_base_rejected():
    source = "pragma solidity ^0.8.0;\ncontract T is Ownable {\n    function f() public { }\n}\n"
    with pytest.raises(UnsupportedContract, match="'Ownable' of T"):
        read_contract(source)


def test_unlinearizable_inheritance_rejected():
    source = """pragma solidity ^0.8.0;
contract X { }
contract Y is X { }
contract Z is Y, X { }
"""
    with pytest.raises(UnsupportedContract, match="linearized"):
        read_contract(source, "Z")


def test_modifier_bodies_recorded():
    source = "pragma solidity ^0.8.0;\ncontract C {\n    modifier m() { _; }\n    function f() public m { }\n}\n"
    view = read_contract(source)
    [(start, end)] = view.modifier_spans
    assert source[start:end] == "{ _; }"
