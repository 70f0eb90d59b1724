"""VeriMan - past-time LTL property verification for Solidity contracts"""

__version__ = "1.0.0"

from veriman.veriman import VeriMan
from veriman.models.results import Outcome, RunResult

__all__ = ["VeriMan", "Outcome", "RunResult", "__version__"]
