"""solidity types for snapshot temporaries"""
import logging
import re
from typing import Dict, Optional

from veriman.errors import InstrumentationError
from veriman.models.contract import ContractView, FunctionInfo

logger = logging.getLogger(__name__)

FALLBACK_TYPE = "uint256"

BUILTINS: Dict[str, str] = {
    "msg.sender": "address",
    "msg.value": "uint256",
    "msg.data": "bytes",
    "msg.sig": "bytes4",
    "msg.gas": "uint256",
    "tx.origin": "address",
    "tx.gasprice": "uint256",
    "block.timestamp": "uint256",
    "block.number": "uint256",
    "block.coinbase": "address",
    "block.difficulty": "uint256",
    "block.prevrandao": "uint256",
    "block.gaslimit": "uint256",
    "block.chainid": "uint256",
    "block.basefee": "uint256",
    "now": "uint256",
    "this": "address",
}
BOOL_OPERATORS = ("==", "!=", "<=", ">=", "&&", "||", "<", ">")
ARITH_OPERATORS = ("**", "<<", ">>", "+", "-", "*", "/", "%", "&", "|", "^")
CONVERSION = re.compile(r"^(u?int\d*|bytes\d*|address|bool|string)\s*\(")


def _strip_parens(expr: str) -> str:
    expr = expr.strip()
    while expr.startswith("(") and _closing(expr, 0) == len(expr) - 1:
        expr = expr[1:-1].strip()
    return expr


def _closing(expr: str, open_at: int) -> int:
    pairs = {"(": ")", "[": "]"}
    opening = expr[open_at]
    closing = pairs[opening]
    depth = 0
    for i in range(open_at, len(expr)):
        if expr[i] == opening:
            depth += 1
        elif expr[i] == closing:
            depth -= 1
            if depth == 0:
                return i
    return -1


def _top_level_operator(expr: str, operators) -> Optional[int]:
    """offset of the first operator outside brackets, skipping unary prefixes"""
    depth = 0
    i = 0
    while i < len(expr):
        ch = expr[i]
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif ch in "\"'":
            end = expr.find(ch, i + 1)
            i = len(expr) if end == -1 else end + 1
            continue
        elif depth == 0 and i > 0:
            prev = expr[:i].rstrip()[-1:]
            for op in operators:
                if expr.startswith(op, i):
                    if op in ("<", ">") and (expr.startswith(op * 2, i) or expr[i - 1] == op or expr[i - 1] == "="):
                        break
                    if op in ("&", "|") and (expr.startswith(op * 2, i) or expr[i - 1] == op):
                        break
                    if op == "*" and (expr.startswith("**", i) or expr[i - 1] == "*"):
                        break
                    if op in ("-", "+") and (not prev or prev in "+-*/%(<>=!&|^"):
                        break
                    return i
        i += 1
    return None


def element_type(container: str) -> Optional[str]:
    """value type of a mapping or element type of an array"""
    container = container.strip()
    if container.startswith("mapping"):
        open_at = container.index("(")
        close_at = _closing(container, open_at)
        inner = container[open_at + 1:close_at]
        depth = 0
        for i in range(len(inner) - 1):
            if inner[i] == "(":
                depth += 1
            elif inner[i] == ")":
                depth -= 1
            elif depth == 0 and inner.startswith("=>", i):
                return inner[i + 2:].strip()
        return None
    if container.endswith("]"):
        return container[:container.rindex("[")].strip()
    if container in ("bytes", "string"):
        return "bytes1"
    return None


def _identifier_type(name: str, view: ContractView, fn: Optional[FunctionInfo]) -> Optional[str]:
    if name.startswith("__vmLast_") or name.endswith("Called"):
        return "bool"
    if fn is not None:
        for p in list(fn.params) + list(fn.returns):
            if p.name == name:
                return p.type
    var = view.get_state_variable(name)
    if var is not None:
        return var.type
    return None


def infer_type(expr: str, view: ContractView, fn: Optional[FunctionInfo] = None) -> Optional[str]:
    """best-effort static type of a host expression; None when unknown"""
    expr = _strip_parens(expr)
    if not expr:
        return None
    if expr in ("true", "false"):
        return "bool"
    if expr.startswith("!"):
        return "bool"
    if re.match(r"^(0x[0-9a-fA-F]+|\d[\d_]*(e\d+)?)(\s+(wei|gwei|ether|seconds|minutes|hours|days|weeks))?$", expr):
        return "uint256"
    if expr[0] in "\"'":
        return "string"

    if _top_level_operator(expr, BOOL_OPERATORS) is not None:
        return "bool"
    op_at = _top_level_operator(expr, ARITH_OPERATORS)
    if op_at is not None:
        return infer_type(expr[:op_at], view, fn)
    if expr.startswith("-"):
        return infer_type(expr[1:], view, fn)

    if expr in BUILTINS:
        return BUILTINS[expr]
    if expr.endswith(".balance"):
        return "uint256"
    if expr.endswith(".length"):
        return "uint256"
    if re.match(r"^gasleft\s*\(\s*\)$", expr):
        return "uint256"

    conversion = CONVERSION.match(expr)
    if conversion and _closing(expr, conversion.end() - 1) == len(expr) - 1:
        return conversion.group(1)

    if expr.endswith("]"):
        open_at = len(expr) - 1
        depth = 0
        while open_at >= 0:
            if expr[open_at] == "]":
                depth += 1
            elif expr[open_at] == "[":
                depth -= 1
                if depth == 0:
                    break
            open_at -= 1
        container = infer_type(expr[:open_at], view, fn)
        return element_type(container) if container else None

    call = re.match(r"^([A-Za-z_$][\w$]*)\s*\(", expr)
    if call and _closing(expr, call.end() - 1) == len(expr) - 1:
        callee = view.get_function(call.group(1))
        if callee is not None and len(callee.returns) == 1:
            return callee.returns[0].type
        return None

    if re.match(r"^[A-Za-z_$][\w$]*$", expr):
        return _identifier_type(expr, view, fn)
    return None


def snapshot_type(expr: str, view: ContractView, fn: Optional[FunctionInfo] = None) -> str:
    inferred = infer_type(expr, view, fn)
    if inferred is None:
        logger.warning(f"cannot infer the type of Old({expr}), using {FALLBACK_TYPE}")
        return FALLBACK_TYPE
    if inferred.startswith("mapping"):
        raise InstrumentationError(f"cannot snapshot a mapping: Old({expr})", function=fn.label if fn else None)
    return inferred


def local_declaration(type_name: str, name: str, view: Optional[ContractView] = None) -> str:
    """local variable declaration with a data location for reference types"""
    type_name = re.sub(r"\s+", " ", type_name.strip())
    reference = type_name.endswith("]") or type_name in ("string", "bytes")
    if view is not None and any(type_name in contract.structs for contract in view.lineage):
        reference = True
    if reference:
        return f"{type_name} memory {name}"
    return f"{type_name} {name}"
