"""contract access layer: source reader and host compiler"""
from .contract_reader import ContractReader, read_contract, read_contract_file, check_identifiers
from .compiler import get_compiler_version, check_compiler_compatibility, compile_check

__all__ = [
    "ContractReader",
    "read_contract",
    "read_contract_file",
    "check_identifiers",
    "get_compiler_version",
    "check_compiler_compatibility",
    "compile_check",
]
