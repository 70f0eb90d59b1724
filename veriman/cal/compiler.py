"""host compiler service: version detection and compile checks of instrumented sources"""
from __future__ import annotations

import logging
import re
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from veriman.errors import InstrumentationError

logger = logging.getLogger(__name__)

_version_cache: Dict[str, Optional[Tuple[int, int, int]]] = {}
MIN_SUPPORTED_SOLC = (0, 4, 0)


def split_command(command: str) -> List[str]:
    return shlex.split(command) if command else []


def find_compiler(command: str = "solc") -> Optional[str]:
    argv = split_command(command)
    if not argv:
        return None
    return shutil.which(argv[0])


def get_compiler_version(command: str = "solc", timeout: int = 10) -> Optional[Tuple[int, int, int]]:
    if command in _version_cache:
        return _version_cache[command]

    version = None
    argv = split_command(command)
    if argv:
        try:
            result = subprocess.run(argv + ["--version"], capture_output=True, text=True, timeout=timeout)
            if result.returncode == 0:
                match = re.search(r"Version:\s*(\d+)\.(\d+)\.(\d+)", result.stdout)
                if match:
                    version = (int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"could not query compiler version with '{command}': {e}")
    _version_cache[command] = version
    return version


def parse_pragma_version(source: str) -> Optional[Tuple[int, int, int]]:
    match = re.search(r'pragma\s+solidity\s+[\^~>=<]*\s*(\d+)\.(\d+)(?:\.(\d+))?', source)
    if match:
        return (int(match.group(1)), int(match.group(2)), int(match.group(3) or 0))
    return None


def is_version_compatible(contract_version: Tuple[int, int, int], compiler_version: Tuple[int, int, int]) -> bool:
    if contract_version[0] != compiler_version[0]:
        return False
    if contract_version[0] == 0 and contract_version[1] != compiler_version[1]:
        return False
    return compiler_version >= contract_version


def check_compiler_compatibility(source: str, command: str = "solc") -> Tuple[bool, str]:
    """check whether the configured compiler can build this source"""
    contract_version = parse_pragma_version(source)
    if not contract_version:
        return True, "no pragma, assuming compatible"

    compiler_version = get_compiler_version(command)
    if not compiler_version:
        return False, f"compiler '{command}' not found"

    if contract_version < MIN_SUPPORTED_SOLC:
        return False, f"version {'.'.join(map(str, contract_version))} too old"

    if not is_version_compatible(contract_version, compiler_version):
        return False, (
            f"version mismatch: pragma {contract_version[0]}.{contract_version[1]}.x "
            f"vs compiler {'.'.join(map(str, compiler_version))}"
        )

    return True, "compatible"


def compile_check(source_path: Path, command: str = "solc", timeout: int = 120) -> str:
    """run the host compiler on an instrumented file; raises InstrumentationError on failure"""
    argv = split_command(command)
    if not argv:
        raise InstrumentationError("no compiler command configured")

    cmd = argv + [str(source_path)]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as exc:
        raise InstrumentationError(f"compiler not found: {argv[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise InstrumentationError(f"compiler timed out after {timeout}s") from exc

    if result.returncode != 0:
        raise InstrumentationError(
            f"instrumented source does not compile:\n{result.stderr.strip() or result.stdout.strip()}"
        )
    return result.stdout
