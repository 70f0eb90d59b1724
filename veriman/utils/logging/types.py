"""logging types: categories of raw json records and the sqlite row shape"""

from enum import Enum
from dataclasses import dataclass
from typing import Dict, Any, Optional


class LogCategory(Enum):
    """one raw json directory per category"""
    INSTRUMENTATION = "instrumentation"
    BACKEND = "backend"
    VERDICT = "verdicts"
    ITERATION = "iterations"
    ERROR = "errors"


@dataclass
class LogEntry:
    """structured record of one run event"""
    timestamp: str
    category: str
    event_type: str
    contract_name: Optional[str]
    attempt: Optional[int]
    data: Dict[str, Any]
    metadata: Dict[str, Any]
