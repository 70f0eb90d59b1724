"""error taxonomy for the verification driver"""

from typing import Optional


class VeriManError(Exception):
    """base class for every error the driver surfaces."""


class ConfigError(VeriManError):
    """raised on missing keys, invalid values or an unreadable source file."""


class ParseError(VeriManError):
    """ptltl syntax error with a caret-pointed excerpt of the predicate."""

    def __init__(self, message: str, source: str = "", offset: int = 0):
        self.message = message
        self.source = source
        self.offset = max(0, min(offset, len(source)))
        super().__init__(self.render())

    def render(self) -> str:
        if not self.source:
            return self.message
        return f"{self.message}\n  {self.source}\n  {' ' * self.offset}^"


class UnsupportedContract(VeriManError):
    """the contract reader cannot recover the structure the instrumenter needs."""


class InstrumentationError(VeriManError):
    """a construct cannot be routed through a single epilogue."""

    def __init__(self, message: str, function: Optional[str] = None):
        self.function = function
        if function:
            message = f"{function}: {message}"
        super().__init__(message)


class BackendSpawnError(VeriManError):
    """the back-end executable could not be started."""


class BackendOutputError(VeriManError):
    """the back-end output carries no recognizable verdict."""

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)


class VacuousCounterexample(VeriManError):
    """internal signal: the counter-example only exercises deployment."""

    def __init__(self, formula_index: Optional[int], trace=None):
        self.formula_index = formula_index
        self.trace = trace
        super().__init__(f"vacuous counter-example for predicate {formula_index}")
