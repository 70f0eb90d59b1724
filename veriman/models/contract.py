from enum import Enum
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Tuple
from pathlib import Path
import bisect


class FunctionKind(Enum):
    """entry point classification"""
    FUNCTION = "function"
    CONSTRUCTOR = "constructor"
    FALLBACK = "fallback"
    RECEIVE = "receive"


class Visibility(Enum):
    PUBLIC = "public"
    EXTERNAL = "external"
    INTERNAL = "internal"
    PRIVATE = "private"


class Mutability(Enum):
    NONPAYABLE = "nonpayable"
    PAYABLE = "payable"
    VIEW = "view"
    PURE = "pure"


DATA_LOCATIONS = ("memory", "storage", "calldata")


@dataclass
class Parameter:
    """function parameter or return slot"""
    type: str
    name: Optional[str] = None
    location: Optional[str] = None

    def declaration(self, name: Optional[str] = None, location: Optional[str] = None) -> str:
        parts = [self.type]
        loc = location if location is not None else self.location
        if loc:
            parts.append(loc)
        label = name if name is not None else self.name
        if label:
            parts.append(label)
        return " ".join(parts)


@dataclass
class StateVariable:
    """state variable declaration"""
    name: str
    type: str
    visibility: str = "internal"
    location: str = "storage"
    is_constant: bool = False
    is_immutable: bool = False
    initial_value: Optional[str] = None
    start: int = 0
    end: int = 0


@dataclass
class ReturnStatement:
    """explicit `return` inside a function body (offsets into the contract source)"""
    start: int
    end: int
    expression: Optional[str] = None


@dataclass
class FunctionInfo:
    """function metadata with header/body spans into the source"""
    name: str
    kind: FunctionKind
    visibility: Visibility
    mutability: Mutability = Mutability.NONPAYABLE
    modifiers: List[str] = field(default_factory=list)
    params: List[Parameter] = field(default_factory=list)
    returns: List[Parameter] = field(default_factory=list)
    is_virtual: bool = False
    override: Optional[str] = None
    legacy_constant: bool = False
    header_start: int = 0
    header_end: int = 0
    body_start: Optional[int] = None
    body_end: Optional[int] = None
    return_statements: List[ReturnStatement] = field(default_factory=list)
    assembly_exits: List[str] = field(default_factory=list)
    self_destructs: bool = False
    line: int = 0
    contract: Optional[str] = None

    @property
    def signature(self) -> Tuple[str, Tuple[str, ...]]:
        return self.name, tuple(p.type for p in self.params)

    @property
    def has_body(self) -> bool:
        return self.body_start is not None

    @property
    def is_constructor(self) -> bool:
        return self.kind == FunctionKind.CONSTRUCTOR

    @property
    def is_public(self) -> bool:
        """externally callable entry point (a transaction in the temporal sense)"""
        if self.kind in (FunctionKind.FALLBACK, FunctionKind.RECEIVE):
            return True
        if self.kind == FunctionKind.CONSTRUCTOR:
            return False
        return self.visibility in (Visibility.PUBLIC, Visibility.EXTERNAL)

    @property
    def is_constant(self) -> bool:
        return self.mutability in (Mutability.VIEW, Mutability.PURE) or self.legacy_constant

    @property
    def param_names(self) -> List[str]:
        return [p.name for p in self.params if p.name]

    @property
    def label(self) -> str:
        if self.kind == FunctionKind.CONSTRUCTOR:
            return "Constructor"
        return self.name

    def __repr__(self) -> str:
        return f"{self.name}({len(self.params)} params) {self.visibility.value} {self.mutability.value}"


@dataclass
class ContractView:
    """read-only structural view of one contract inside a source file"""
    name: str
    source: str
    kind: str
    pragma: Optional[str]
    body_start: int
    body_end: int
    state_variables: List[StateVariable] = field(default_factory=list)
    functions: List[FunctionInfo] = field(default_factory=list)
    modifiers_declared: List[str] = field(default_factory=list)
    events: List[str] = field(default_factory=list)
    structs: List[str] = field(default_factory=list)
    enums: List[str] = field(default_factory=list)
    modifier_spans: List[Tuple[int, int]] = field(default_factory=list)
    linearization: List[str] = field(default_factory=list)
    bases: List["ContractView"] = field(default_factory=list, repr=False)
    path: Optional[Path] = None
    _line_starts: Optional[List[int]] = field(default=None, repr=False)

    @property
    def constructor(self) -> Optional[FunctionInfo]:
        for fn in self.functions:
            if fn.is_constructor:
                return fn
        return None

    @property
    def public_functions(self) -> List[FunctionInfo]:
        return [fn for fn in self.functions if fn.is_public and fn.has_body]

    @property
    def lineage(self) -> List["ContractView"]:
        """this contract followed by its bases, most derived first"""
        return [self] + self.bases

    @property
    def all_functions(self) -> List[FunctionInfo]:
        return [fn for view in self.lineage for fn in view.functions]

    @property
    def inherited_functions(self) -> List[FunctionInfo]:
        """public functions of base contracts that no more derived contract redefines"""
        seen = {fn.signature for fn in self.functions}
        inherited: List[FunctionInfo] = []
        for base in self.bases:
            for fn in base.functions:
                if fn.signature in seen:
                    continue
                seen.add(fn.signature)
                if fn.is_public and fn.has_body:
                    inherited.append(fn)
        return inherited

    @property
    def entry_points(self) -> List[FunctionInfo]:
        return self.public_functions + self.inherited_functions

    def get_function(self, name: str) -> Optional[FunctionInfo]:
        for fn in self.all_functions:
            if fn.name == name:
                return fn
        return None

    def visible_state_variables(self) -> List[StateVariable]:
        """own state variables, then non-private ones of the bases"""
        visible = list(self.state_variables)
        names = {v.name for v in visible}
        for base in self.bases:
            for var in base.state_variables:
                if var.visibility != "private" and var.name not in names:
                    names.add(var.name)
                    visible.append(var)
        return visible

    def get_state_variable(self, name: str) -> Optional[StateVariable]:
        for var in self.visible_state_variables():
            if var.name == name:
                return var
        return None

    def state_variable_types(self) -> Dict[str, str]:
        return {v.name: v.type for v in self.visible_state_variables()}

    def line_of(self, offset: int) -> int:
        """1-based line number of a source offset"""
        if self._line_starts is None:
            starts = [0]
            for i, ch in enumerate(self.source):
                if ch == "\n":
                    starts.append(i + 1)
            self._line_starts = starts
        return bisect.bisect_right(self._line_starts, offset)

    def pragma_version(self) -> Optional[Tuple[int, int, int]]:
        from veriman.cal.compiler import parse_pragma_version
        return parse_pragma_version(self.source)

    def __repr__(self) -> str:
        return f"ContractView({self.name}, {len(self.functions)} functions, {len(self.state_variables)} state vars)"
