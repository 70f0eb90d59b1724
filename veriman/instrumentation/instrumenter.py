"""instrumenter - weave monitor state and assertions into a contract

Every externally callable function is split in two. The original body moves
to an internal `__vmInner_<fn>` and a wrapper with the original signature
runs prologue, inner call, epilogue, return. Any `return` of the original
body lands back in the wrapper, so each transaction runs exactly one
epilogue. The constructor is transaction 0: it gets the prologue at body
start and `notConstructor = false` plus the epilogue at its end.

Entry points inherited from a base contract in the same source are split the
same way: the base keeps the renamed inner function and the wrapper is added
to the instrumented contract. Calls to an entry point from any function or
modifier body are renamed to its inner variant.

All inserted text is wrapped in markers (see `markers`), so the rewrite can
be undone with `strip_instrumentation`.
"""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from veriman.errors import InstrumentationError
from veriman.models.contract import ContractView, FunctionInfo, FunctionKind, Mutability
from veriman.ptltl.ast import NOT_CONSTRUCTOR, to_text
from veriman.ptltl.monitor import HistoryVar, MonitorSchema, render
from veriman.ptltl.parser import scan_calls, substitute_olds
from veriman.cal.contract_reader import identifiers, mask_source
from veriman.instrumentation import markers
from veriman.instrumentation.types import local_declaration, snapshot_type

logger = logging.getLogger(__name__)

INNER_PREFIX = "__vmInner_"
SNAPSHOT_PREFIX = "__vmOld"
LAST_FLAG_PREFIX = "__vmLast_"
RETURN_PREFIX = "__vmRet"
ARG_PREFIX = "__vmArg"
ASSERTION_EVENT = "AssertionFailed"

INDENT = "    "
BODY_INDENT = INDENT * 2

_ASSERT_LINE = re.compile(r"assert\(__vmGoal(\d+)\);")
_EMIT_LINE = re.compile(r"if \(!__vmGoal(\d+)\) \{")


@dataclass
class Snapshot:
    """one Old(e) expression and the local that holds its prologue value"""
    expression: str
    name: str
    type: str


@dataclass
class InstrumentationResult:
    contract: str
    source: str
    schemas: List[MonitorSchema]
    history: List[HistoryVar] = field(default_factory=list)
    snapshots: List[Snapshot] = field(default_factory=list)
    call_flags: List[str] = field(default_factory=list)
    assertion_lines: Dict[int, List[int]] = field(default_factory=dict)
    constructor_lines: Tuple[int, int] = (0, 0)
    scopes: Dict[int, List[str]] = field(default_factory=dict)
    for_symbolic_exec: bool = False

    @property
    def source_bytes(self) -> bytes:
        return self.source.encode("utf-8")

    def formula_at_line(self, line: int) -> Optional[int]:
        """index of the predicate whose assertion sits on `line`"""
        for index, lines in self.assertion_lines.items():
            if line in lines:
                return index
        return None

    def in_constructor(self, line: int) -> bool:
        first, last = self.constructor_lines
        return first <= line <= last

    def write(self, path: Path) -> Path:
        path = Path(path)
        path.write_bytes(self.source_bytes)
        return path


def _escape_string(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", " ")


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


class Instrumenter:
    """rewrites one contract for a set of monitor schemas"""

    def __init__(self, view: ContractView, schemas: Sequence[MonitorSchema], for_symbolic_exec: bool = False):
        self.view = view
        self.schemas = list(schemas)
        self.for_symbolic_exec = for_symbolic_exec
        self.version = view.pragma_version()
        self.entry_points = view.entry_points
        self.inherited_wrappers: List[str] = []
        self.masked = mask_source(view.source)
        self.snapshots: List[Snapshot] = []
        self.call_flags: List[str] = []
        self.last_flags: List[str] = []
        self.scoped_params: Dict[int, List[str]] = {}

    # obligations

    def _collect(self) -> None:
        all_params = set()
        for fn in self.entry_points + [f for f in self.view.functions if f.is_constructor]:
            all_params.update(fn.param_names)
        state_names = set(self.view.state_variable_types())

        for schema in self.schemas:
            scoped: List[str] = []
            for atom in schema.atoms():
                for name in atom.calls:
                    if name not in self.call_flags:
                        self.call_flags.append(name)
                for expr in atom.olds:
                    if all(s.expression != expr for s in self.snapshots):
                        self.snapshots.append(Snapshot(expr, f"{SNAPSHOT_PREFIX}{len(self.snapshots)}", ""))
                    for name in scan_calls(expr):
                        if name not in self.last_flags:
                            self.last_flags.append(name)
                for name in identifiers(atom.text):
                    if name in all_params and name not in state_names and name not in scoped:
                        scoped.append(name)
            self.scoped_params[schema.index] = scoped

        known = {fn.name for fn in self.entry_points}
        for name in self.call_flags:
            if name not in known:
                logger.warning(f"'{name}Called' does not name a public function of {self.view.name}; it is always false")

    def _active(self, fn: Optional[FunctionInfo]) -> List[MonitorSchema]:
        """schemas stepped in this entry point; parameter-scoped predicates need the parameters bound"""
        bound = set(fn.param_names) if fn is not None else set()
        return [s for s in self.schemas if set(self.scoped_params[s.index]) <= bound]

    def _snapshots_for(self, schemas: List[MonitorSchema]) -> List[Snapshot]:
        wanted = set()
        for schema in schemas:
            for atom in schema.atoms():
                wanted.update(atom.olds)
        return [s for s in self.snapshots if s.expression in wanted]

    # checks

    def _check(self, fn: FunctionInfo) -> None:
        if fn.assembly_exits:
            raise InstrumentationError(
                f"inline assembly {', '.join(sorted(set(fn.assembly_exits)))} bypasses the epilogue", function=fn.label
            )
        if fn.self_destructs:
            raise InstrumentationError("selfdestruct bypasses the epilogue", function=fn.label)
        if fn.is_constructor and fn.return_statements:
            raise InstrumentationError("return inside the constructor bypasses the epilogue", function=fn.label)

    # fragments

    def _atom_text(self, atom) -> str:
        names = {s.expression: s.name for s in self.snapshots}
        return substitute_olds(atom.text, lambda expr: names[expr])

    def _snapshot_value(self, expression: str) -> str:
        for name in self.last_flags:
            expression = re.sub(rf"\b{re.escape(name)}Called\b", f"{LAST_FLAG_PREFIX}{name}Called", expression)
        return expression

    def _prologue(self, fn: Optional[FunctionInfo], schemas: List[MonitorSchema]) -> List[str]:
        lines = []
        for name in self.call_flags:
            own = fn is not None and not fn.is_constructor and fn.name == name
            lines.append(f"bool {name}Called = {'true' if own else 'false'};")
        for snap in self._snapshots_for(schemas):
            type_name = snapshot_type(snap.expression, self.view, fn)
            if not snap.type:
                snap.type = type_name
            declaration = local_declaration(type_name, snap.name, self.view)
            lines.append(f"{declaration} = ({self._snapshot_value(snap.expression)});")
        return lines

    def _epilogue(self, schemas: List[MonitorSchema], in_constructor: bool) -> List[str]:
        lines = [f"{NOT_CONSTRUCTOR} = {'false' if in_constructor else 'true'};"]
        for schema in schemas:
            for temp, expr in schema.steps:
                lines.append(f"bool {temp} = {render(expr, self._atom_text)};")
            lines.append(f"bool {schema.goal_name} = {render(schema.goal, self._atom_text)};")
        for schema in schemas:
            for name, expr in schema.updates:
                lines.append(f"{name} = {render(expr, self._atom_text)};")
        for name in self.last_flags:
            lines.append(f"{LAST_FLAG_PREFIX}{name}Called = {name}Called;")
        for schema in schemas:
            lines.append(self._assertion(schema))
        return lines

    def _assertion(self, schema: MonitorSchema) -> str:
        if not self.for_symbolic_exec:
            return f"assert({schema.goal_name});"
        message = _escape_string(f"predicate {schema.index} violated: {to_text(schema.formula)}")
        emit = "emit " if self.version is None or self.version >= (0, 4, 21) else ""
        return f"if (!{schema.goal_name}) {{ {emit}{ASSERTION_EVENT}(\"{message}\"); }}"

    def _declarations(self) -> List[str]:
        lines = [f"bool {NOT_CONSTRUCTOR} = false;"]
        for schema in self.schemas:
            for var in schema.history:
                lines.append(f"bool {var.name} = {'true' if var.initial else 'false'};")
        for name in self.last_flags:
            lines.append(f"bool {LAST_FLAG_PREFIX}{name}Called = false;")
        if self.for_symbolic_exec:
            lines.append(f"event {ASSERTION_EVENT}(string message);")
        return lines

    def _block(self, lines: List[str], indent: str) -> str:
        return "".join(f"\n{indent}{line}" for line in lines)

    # constructor

    def _constructor_header(self) -> str:
        if self.version is not None and self.version < (0, 4, 22):
            return f"function {self.view.name}() public {{"
        if self.version is not None and self.version < (0, 7, 0):
            return "constructor() public {"
        return "constructor() {"

    def _synthesized_constructor(self) -> str:
        schemas = self._active(None)
        lines = self._prologue(None, schemas) + self._epilogue(schemas, in_constructor=True)
        return f"\n{INDENT}{self._constructor_header()}{self._block(lines, BODY_INDENT)}\n{INDENT}}}"

    def _constructor_edits(self, fn: FunctionInfo) -> List[Tuple[int, int, str]]:
        self._check(fn)
        schemas = self._active(fn)
        prologue = self._block(self._prologue(fn, schemas), BODY_INDENT)
        epilogue = self._block(self._epilogue(schemas, in_constructor=True), BODY_INDENT) + f"\n{INDENT}"
        edits = [
            (fn.body_start + 1, fn.body_start + 1, markers.inserted(prologue)),
            (fn.body_end - 1, fn.body_end - 1, markers.inserted(epilogue)),
        ]
        return edits

    # entry points

    def _inner_name(self, fn: FunctionInfo) -> str:
        return f"{INNER_PREFIX}{fn.name}"

    def _wrapper(self, fn: FunctionInfo) -> str:
        params = []
        args = []
        for i, p in enumerate(fn.params):
            name = p.name or f"{ARG_PREFIX}{i}"
            params.append(p.declaration(name=name))
            args.append(name)

        attributes = [fn.visibility.value]
        if fn.mutability == Mutability.PAYABLE:
            attributes.append("payable")
        if fn.is_virtual:
            attributes.append("virtual")
        if fn.override:
            attributes.append(fn.override)

        rets = []
        for i, p in enumerate(fn.returns):
            location = "memory" if p.location == "calldata" else None
            rets.append(p.declaration(name=f"{RETURN_PREFIX}{i}", location=location))
        if rets:
            attributes.append(f"returns ({', '.join(rets)})")

        if fn.kind == FunctionKind.FUNCTION:
            head = f"function {fn.name}({', '.join(params)})"
        elif fn.kind == FunctionKind.FALLBACK and self.version is not None and self.version < (0, 6, 0):
            head = f"function ({', '.join(params)})"
        else:
            head = f"{fn.kind.value}({', '.join(params)})"

        call = f"{self._inner_name(fn)}({', '.join(args)});"
        ret_names = [f"{RETURN_PREFIX}{i}" for i in range(len(fn.returns))]
        if len(ret_names) == 1:
            call = f"{ret_names[0]} = {call}"
        elif ret_names:
            call = f"({', '.join(ret_names)}) = {call}"

        schemas = self._active(fn)
        lines = self._prologue(fn, schemas) + [call] + self._epilogue(schemas, in_constructor=False)
        if len(ret_names) == 1:
            lines.append(f"return {ret_names[0]};")
        elif ret_names:
            lines.append(f"return ({', '.join(ret_names)});")

        return f"{head} {' '.join(attributes)} {{{self._block(lines, BODY_INDENT)}\n{INDENT}}}"

    def _inner_header(self, fn: FunctionInfo) -> str:
        params = []
        for p in fn.params:
            location = "memory" if p.location == "calldata" else None
            params.append(p.declaration(location=location))
        attributes = ["internal"]
        if fn.mutability in (Mutability.VIEW, Mutability.PURE) and not fn.legacy_constant:
            attributes.append(fn.mutability.value)
        attributes.extend(fn.modifiers)
        if fn.returns:
            rets = [p.declaration(location="memory" if p.location == "calldata" else None) for p in fn.returns]
            attributes.append(f"returns ({', '.join(rets)})")
        return f"function {self._inner_name(fn)}({', '.join(params)}) {' '.join(attributes)} "

    def _entry_edits(self, fn: FunctionInfo) -> List[Tuple[int, int, str]]:
        """own entry points get the wrapper in place; inherited ones get it in this contract"""
        self._check(fn)
        original_header = self.view.source[fn.header_start:fn.body_start]
        inner = markers.replaced(original_header, self._inner_header(fn))
        if fn.contract in (None, self.view.name):
            text = markers.inserted(self._wrapper(fn) + f"\n\n{INDENT}") + inner
        else:
            self.inherited_wrappers.append(self._wrapper(fn))
            text = inner
        return [(fn.header_start, fn.body_start, text)]

    def _redirects(self) -> List[Tuple[int, int, str]]:
        """calls to entry points from any function or modifier body go to their inner variant"""
        renamed = {f.name for f in self.entry_points if f.contract not in (None, self.view.name)}
        edits = []
        for contract in self.view.lineage:
            names = sorted({
                f.name for f in self.entry_points
                if f.kind == FunctionKind.FUNCTION and (f.contract in contract.linearization or f.contract is None)
            })
            if not names:
                continue
            qualifiers = ["super"] + contract.linearization
            pattern = re.compile(
                r"(?<![\w$.])(?:(?P<qualifier>" + "|".join(map(re.escape, qualifiers)) + r")\s*\.\s*)?"
                r"(?P<name>" + "|".join(map(re.escape, names)) + r")\s*\("
            )
            spans = [(f.body_start, f.body_end) for f in contract.functions if f.has_body]
            for start, end in spans + contract.modifier_spans:
                for m in pattern.finditer(self.masked, start, end):
                    name = m.group("name")
                    if m.group("qualifier") and name not in renamed:
                        continue
                    edits.append((m.start("name"), m.end("name"), markers.replaced(name, f"{INNER_PREFIX}{name}")))
        return edits

    # driver

    def instrument(self) -> InstrumentationResult:
        self._collect()
        view = self.view
        edits: List[Tuple[int, int, str]] = []

        declarations = self._block(self._declarations(), INDENT)
        constructor = view.constructor
        synthesized = ""
        if constructor is None or not constructor.has_body:
            synthesized = self._synthesized_constructor()
        elif constructor is not None:
            edits.extend(self._constructor_edits(constructor))
        edits.append((view.body_start + 1, view.body_start + 1, markers.inserted(declarations + synthesized + "\n")))

        for fn in self.entry_points:
            edits.extend(self._entry_edits(fn))
        if self.inherited_wrappers:
            wrappers = "".join(f"\n{INDENT}{wrapper}\n" for wrapper in self.inherited_wrappers)
            edits.append((view.body_end - 1, view.body_end - 1, markers.inserted(wrappers)))
        edits.extend(self._redirects())

        source, anchors = self._apply(edits, [
            view.body_start + 1,
            constructor.header_start if constructor is not None and constructor.has_body else None,
            constructor.body_end if constructor is not None and constructor.has_body else None,
        ])

        if synthesized:
            start = anchors[0] + len(markers.INSERT_OPEN) + len(declarations)
            end = start + len(synthesized)
        else:
            start, end = anchors[1], anchors[2]
        constructor_lines = (_line_of(source, start + 1), _line_of(source, max(start, end - 1)))

        result = InstrumentationResult(
            contract=view.name,
            source=source,
            schemas=self.schemas,
            history=[var for schema in self.schemas for var in schema.history],
            snapshots=list(self.snapshots),
            call_flags=list(self.call_flags),
            assertion_lines=self._assertion_lines(source),
            constructor_lines=constructor_lines,
            scopes={
                schema.index: [fn.label for fn in self.entry_points if schema in self._active(fn)]
                for schema in self.schemas
            },
            for_symbolic_exec=self.for_symbolic_exec,
        )
        logger.info(
            f"instrumented {view.name}: {len(self.entry_points)} entry points, "
            f"{len(result.history)} history variables, {len(self.snapshots)} snapshots"
        )
        return result

    def _apply(self, edits: List[Tuple[int, int, str]], anchors: List[Optional[int]]):
        """splice edits (ascending, non-overlapping) and map anchor offsets into the new text"""
        edits = sorted(edits, key=lambda e: (e[0], e[1]))
        source = self.view.source
        out: List[str] = []
        pos = 0
        length = 0
        mapped: List[Optional[int]] = [None] * len(anchors)
        for start, end, text in edits:
            if start < pos:
                raise InstrumentationError(f"overlapping rewrite at offset {start}")
            chunk = source[pos:start]
            for i, anchor in enumerate(anchors):
                if anchor is not None and mapped[i] is None and pos <= anchor <= start:
                    mapped[i] = length + (anchor - pos)
            out.append(chunk)
            length += len(chunk)
            out.append(text)
            length += len(text)
            pos = end
        for i, anchor in enumerate(anchors):
            if anchor is not None and mapped[i] is None:
                mapped[i] = length + (anchor - pos)
        out.append(source[pos:])
        return "".join(out), mapped

    def _assertion_lines(self, source: str) -> Dict[int, List[int]]:
        pattern = _EMIT_LINE if self.for_symbolic_exec else _ASSERT_LINE
        lines: Dict[int, List[int]] = {schema.index: [] for schema in self.schemas}
        for m in pattern.finditer(source):
            index = int(m.group(1))
            lines.setdefault(index, []).append(_line_of(source, m.start()))
        return lines


def instrument(view: ContractView, schemas: Sequence[MonitorSchema], for_symbolic_exec: bool = False) -> InstrumentationResult:
    return Instrumenter(view, schemas, for_symbolic_exec).instrument()
