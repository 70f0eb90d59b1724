"""instrumentation: monitor state, prologues, epilogues and assertions"""
from .instrumenter import Instrumenter, InstrumentationResult, Snapshot, instrument
from .markers import strip_instrumentation, same_source
from .types import infer_type

__all__ = [
    "Instrumenter",
    "InstrumentationResult",
    "Snapshot",
    "instrument",
    "strip_instrumentation",
    "same_source",
    "infer_type",
]
