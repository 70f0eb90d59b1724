"""contract reader - recover the structure of one solidity contract

The reader never rewrites anything. It masks comments and string literals
(offsets are preserved) and then walks the contract body member by member,
matching braces, so every span it reports indexes the original source.
"""
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from veriman.errors import UnsupportedContract
from veriman.models.contract import (
    ContractView,
    DATA_LOCATIONS,
    FunctionInfo,
    FunctionKind,
    Mutability,
    Parameter,
    ReturnStatement,
    StateVariable,
    Visibility,
)
from veriman.cal.compiler import parse_pragma_version

logger = logging.getLogger(__name__)

CONTRACT_PATTERN = re.compile(r'\b(abstract\s+contract|contract|interface|library)\s+([A-Za-z_$][\w$]*)')
VISIBILITIES = {v.value: v for v in Visibility}
MUTABILITIES = {"pure": Mutability.PURE, "view": Mutability.VIEW, "payable": Mutability.PAYABLE}
STATE_VAR_KEYWORDS = ("public", "private", "internal", "constant", "immutable", "override", "transient")
NON_STATE_MEMBERS = ("event", "using", "error", "struct", "enum", "modifier", "type")


def mask_source(source: str) -> str:
    """blank out comments and string contents, keeping offsets and newlines"""
    out = list(source)
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        if source.startswith("//", i):
            j = source.find("\n", i)
            j = n if j == -1 else j
            for k in range(i, j):
                out[k] = " "
            i = j
        elif source.startswith("/*", i):
            j = source.find("*/", i + 2)
            j = n if j == -1 else j + 2
            for k in range(i, j):
                if out[k] != "\n":
                    out[k] = " "
            i = j
        elif ch in "\"'":
            j = i + 1
            while j < n and source[j] != ch:
                if source[j] == "\\":
                    j += 1
                j += 1
            for k in range(i + 1, min(j, n)):
                if out[k] != "\n":
                    out[k] = "_"
            i = j + 1
        else:
            i += 1
    return "".join(out)


def match_brace(masked: str, open_at: int, opening: str = "{", closing: str = "}") -> int:
    """offset just past the bracket that closes `open_at`"""
    depth = 0
    for i in range(open_at, len(masked)):
        ch = masked[i]
        if ch == opening:
            depth += 1
        elif ch == closing:
            depth -= 1
            if depth == 0:
                return i + 1
    raise UnsupportedContract(f"unbalanced '{opening}' at offset {open_at}")


def split_top_level(text: str, sep: str = ",") -> List[str]:
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in text:
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    tail = "".join(current)
    if tail.strip() or parts:
        parts.append(tail)
    return [p.strip() for p in parts if p.strip()]


def _c3_merge(sequences: List[List[str]], name: str) -> List[str]:
    merged: List[str] = []
    sequences = [list(s) for s in sequences if s]
    while sequences:
        for seq in sequences:
            head = seq[0]
            if not any(head in other[1:] for other in sequences):
                break
        else:
            raise UnsupportedContract(f"inheritance graph of {name} cannot be linearized")
        merged.append(head)
        sequences = [[n for n in seq if n != head] for seq in sequences]
        sequences = [seq for seq in sequences if seq]
    return merged


def parse_parameter(text: str) -> Parameter:
    text = re.sub(r"\s+", " ", text.strip())
    text = re.sub(r"\s*\[\s*", "[", text)
    text = re.sub(r"\s*\]", "]", text)
    if text.startswith("mapping"):
        close = match_brace(text, text.index("("), "(", ")")
        type_part, rest = text[:close], text[close:].split()
    else:
        tokens = text.split(" ")
        type_part, rest = tokens[0], tokens[1:]
    location = None
    name = None
    type_tokens = [type_part]
    for tok in rest:
        if tok in DATA_LOCATIONS:
            location = tok
        elif tok in ("payable", "indexed"):
            type_tokens.append(tok)
        else:
            name = tok
    return Parameter(type=" ".join(type_tokens), name=name, location=location)


class ContractReader:
    """reads a solidity source and returns a structural view of one contract"""

    def __init__(self, source: str, path: Union[str, Path, None] = None):
        self.source = source
        self.path = Path(path) if path else None
        self.masked = mask_source(source)
        self.pragma = self._find_pragma()
        self.version = parse_pragma_version(source)

    def _find_pragma(self) -> Optional[str]:
        match = re.search(r'pragma\s+solidity\s+([^;]+);', self.masked)
        return match.group(1).strip() if match else None

    def _declarations(self) -> Dict[str, Tuple[str, re.Match]]:
        """contract and interface declarations by name; a later one wins"""
        declared = {}
        for match in CONTRACT_PATTERN.finditer(self.masked):
            kind = re.sub(r"\s+", " ", match.group(1))
            if kind != "library":
                declared[match.group(2)] = (kind, match)
        return declared

    def _declared_bases(self, match) -> List[str]:
        """names after `is`, in declaration order (most base-like first)"""
        open_at = self.masked.find("{", match.end())
        header = self.masked[match.end():open_at if open_at != -1 else len(self.masked)]
        inherits = re.match(r"\s*is\b(.*)$", header, re.S)
        if not inherits:
            return []
        names = []
        for part in split_top_level(inherits.group(1)):
            name = re.match(r"\s*([A-Za-z_$][\w$.]*)", part)
            if name:
                names.append(name.group(1).split(".")[-1])
        return names

    def linearize(self, name: str, declared=None, visiting: Tuple[str, ...] = ()) -> List[str]:
        """C3 linearization, most derived first; the right-most base is the closest"""
        declared = declared if declared is not None else self._declarations()
        if name in visiting:
            raise UnsupportedContract(f"cyclic inheritance through '{name}'")
        if name not in declared:
            raise UnsupportedContract(
                f"base contract '{name}' of {visiting[-1]} is not declared in this source"
            )
        bases = list(reversed(self._declared_bases(declared[name][1])))
        sequences = [self.linearize(base, declared, visiting + (name,)) for base in bases]
        sequences.append(bases)
        return [name] + _c3_merge(sequences, name)

    def read(self, name: Optional[str] = None) -> ContractView:
        declared = self._declarations()
        candidates = [(n, kind) for n, (kind, _) in declared.items() if kind != "interface"]
        if not candidates:
            raise UnsupportedContract("no contract declaration found")

        if name:
            if name not in declared or declared[name][0] == "interface":
                raise UnsupportedContract(f"contract '{name}' not found in source")
        else:
            name = max(candidates, key=lambda c: declared[c[0]][1].start())[0]

        view = self._read_view(name, declared)
        for base in view.linearization[1:]:
            if declared[base][0] != "interface":
                view.bases.append(self._read_view(base, declared))

        inherited = view.inherited_functions
        logger.info(
            f"read contract {view.name}: {len(view.state_variables)} state variables, "
            f"{len(view.functions)} functions ({len(view.public_functions)} public), "
            f"{len(view.bases)} bases ({len(inherited)} inherited entry points)",
            extra={"contract": view.name},
        )
        return view

    def _read_view(self, name: str, declared) -> ContractView:
        kind, match = declared[name]
        open_at = self.masked.find("{", match.end())
        if open_at == -1:
            raise UnsupportedContract(f"contract '{name}' has no body")
        close_at = match_brace(self.masked, open_at)

        view = ContractView(
            name=name,
            source=self.source,
            kind=kind,
            pragma=self.pragma,
            body_start=open_at,
            body_end=close_at,
            path=self.path,
            linearization=self.linearize(name, declared),
        )
        self._read_members(view)
        return view

    # members

    def _read_members(self, view: ContractView) -> None:
        masked = self.masked
        pos = view.body_start + 1
        end = view.body_end - 1
        while pos < end:
            while pos < end and masked[pos].isspace():
                pos += 1
            if pos >= end:
                break

            stop = pos
            depth = 0
            while stop < end:
                ch = masked[stop]
                if ch in "([":
                    depth += 1
                elif ch in ")]":
                    depth -= 1
                elif depth == 0 and ch in ";{":
                    break
                stop += 1
            if stop >= end:
                raise UnsupportedContract(f"unterminated declaration at line {view.line_of(pos)}")

            header = masked[pos:stop]
            if masked[stop] == "{":
                block_end = match_brace(masked, stop)
                self._read_block_member(view, header, pos, stop, block_end)
                pos = block_end
            else:
                self._read_statement_member(view, header, pos, stop + 1)
                pos = stop + 1

    def _first_word(self, header: str) -> str:
        match = re.match(r"\s*([A-Za-z_$][\w$]*)", header)
        return match.group(1) if match else ""

    def _read_block_member(self, view: ContractView, header: str, start: int, brace: int, block_end: int) -> None:
        word = self._first_word(header)
        if word in ("function", "constructor", "fallback", "receive"):
            view.functions.append(self._read_function(view, header, start, brace, block_end))
        elif word == "modifier":
            view.modifiers_declared.append(self._first_word(header[len("modifier"):].lstrip()) or "")
            view.modifier_spans.append((brace, block_end))
        elif word == "struct":
            view.structs.append(self._first_word(header[len("struct"):].lstrip()))
        elif word == "enum":
            view.enums.append(self._first_word(header[len("enum"):].lstrip()))
        else:
            logger.debug(f"skipping member at line {view.line_of(start)}: {header.strip()[:40]}")

    def _read_statement_member(self, view: ContractView, header: str, start: int, end: int) -> None:
        word = self._first_word(header)
        if word in ("function", "constructor", "fallback", "receive"):
            fn = self._read_function(view, header, start, None, None)
            view.functions.append(fn)
            return
        if word == "event":
            view.events.append(self._first_word(header[len("event"):].lstrip()))
            return
        if word in NON_STATE_MEMBERS or word == "pragma":
            return
        var = self._read_state_variable(header, start, end)
        if var is not None:
            view.state_variables.append(var)

    def _read_state_variable(self, header: str, start: int, end: int) -> Optional[StateVariable]:
        text = self.source[start:end - 1]
        masked = header
        eq = self._top_level_assignment(masked)
        left_masked = masked if eq is None else masked[:eq]
        initial = None if eq is None else text[eq + 1:].strip()

        left = re.sub(r"\s+", " ", left_masked.strip())
        name_match = re.search(r"([A-Za-z_$][\w$]*)\s*$", left)
        if not name_match:
            return None
        name = name_match.group(1)
        rest = left[:name_match.start()].strip()

        is_constant = bool(re.search(r"\bconstant\b", rest))
        is_immutable = bool(re.search(r"\bimmutable\b", rest))
        visibility = "internal"
        for vis in ("public", "private", "internal"):
            if re.search(rf"\b{vis}\b", rest):
                visibility = vis
        var_type = re.sub(r"\boverride\s*(\([^)]*\))?", "", rest)
        for kw in STATE_VAR_KEYWORDS:
            var_type = re.sub(rf"\b{kw}\b", "", var_type)
        var_type = re.sub(r"\s+", " ", var_type).strip()
        var_type = re.sub(r"\s*=>\s*", " => ", var_type)
        if not var_type:
            return None

        return StateVariable(
            name=name,
            type=var_type,
            visibility=visibility,
            is_constant=is_constant,
            is_immutable=is_immutable,
            initial_value=initial,
            start=start,
            end=end,
        )

    def _top_level_assignment(self, text: str) -> Optional[int]:
        depth = 0
        for i, ch in enumerate(text):
            if ch in "([{":
                depth += 1
            elif ch in ")]}":
                depth -= 1
            elif ch == "=" and depth == 0:
                nxt = text[i + 1] if i + 1 < len(text) else ""
                prev = text[i - 1] if i > 0 else ""
                if nxt in "=>" or prev in "=!<>":
                    continue
                return i
        return None

    # functions

    def _read_function(
        self,
        view: ContractView,
        header: str,
        start: int,
        brace: Optional[int],
        block_end: Optional[int],
    ) -> FunctionInfo:
        word = self._first_word(header)
        rest_offset = header.index(word) + len(word)
        name = word
        kind = FunctionKind.FUNCTION

        if word == "function":
            after = header[rest_offset:]
            fn_name = re.match(r"\s*([A-Za-z_$][\w$]*)?\s*\(", after)
            if fn_name is None:
                raise UnsupportedContract(f"cannot read function header at line {view.line_of(start)}")
            name = fn_name.group(1) or ""
            if not name:
                kind = FunctionKind.FALLBACK
                name = "fallback"
            elif name == view.name:
                kind = FunctionKind.CONSTRUCTOR
                name = "constructor"
            elif name in ("fallback", "receive"):
                raise UnsupportedContract(f"'{name}' cannot be declared with the function keyword")
        elif word == "constructor":
            kind = FunctionKind.CONSTRUCTOR
        elif word == "fallback":
            kind = FunctionKind.FALLBACK
        elif word == "receive":
            kind = FunctionKind.RECEIVE

        paren_open = header.index("(", rest_offset)
        paren_close = match_brace(header, paren_open, "(", ")")
        params = [parse_parameter(p) for p in split_top_level(header[paren_open + 1:paren_close - 1])]

        attrs = header[paren_close:]
        returns: List[Parameter] = []
        ret_match = re.search(r"\breturns\s*\(", attrs)
        if ret_match:
            ret_open = ret_match.end() - 1
            ret_close = match_brace(attrs, ret_open, "(", ")")
            returns = [parse_parameter(p) for p in split_top_level(attrs[ret_open + 1:ret_close - 1])]
            attrs = attrs[:ret_match.start()] + " " * (ret_close - ret_match.start()) + attrs[ret_close:]

        visibility, mutability, modifiers, is_virtual, override, legacy_constant = self._read_attributes(
            attrs, self.source[start + paren_close:start + len(header)]
        )

        if visibility is None:
            if kind in (FunctionKind.FALLBACK, FunctionKind.RECEIVE):
                visibility = Visibility.EXTERNAL
            elif kind == FunctionKind.CONSTRUCTOR:
                visibility = Visibility.PUBLIC
            elif self.version is not None and self.version < (0, 5, 0):
                visibility = Visibility.PUBLIC
            else:
                raise UnsupportedContract(f"cannot recover visibility of '{name}' at line {view.line_of(start)}")

        fn = FunctionInfo(
            name=name,
            kind=kind,
            visibility=visibility,
            mutability=mutability,
            modifiers=modifiers,
            params=params,
            returns=returns,
            is_virtual=is_virtual,
            override=override,
            legacy_constant=legacy_constant,
            header_start=start,
            header_end=brace if brace is not None else start + len(header),
            body_start=brace,
            body_end=block_end,
            line=view.line_of(start),
            contract=view.name,
        )
        if brace is not None and block_end is not None:
            self._scan_body(fn)
        return fn

    def _read_attributes(self, attrs: str, original: str):
        """attributes from the masked text; modifier arguments are taken from the original"""
        visibility = None
        mutability = Mutability.NONPAYABLE
        modifiers: List[str] = []
        is_virtual = False
        override = None
        legacy_constant = False

        pos = 0
        pattern = re.compile(r"\s*([A-Za-z_$][\w$.]*)")
        while pos < len(attrs):
            match = pattern.match(attrs, pos)
            if not match:
                pos += 1
                continue
            word = match.group(1)
            pos = match.end()
            args = ""
            rest = attrs[pos:]
            stripped = rest.lstrip()
            if stripped.startswith("("):
                open_at = pos + (len(rest) - len(stripped))
                close_at = match_brace(attrs, open_at, "(", ")")
                args = original[open_at:close_at]
                pos = close_at

            if word in VISIBILITIES:
                visibility = VISIBILITIES[word]
            elif word in MUTABILITIES:
                mutability = MUTABILITIES[word]
            elif word == "constant":
                mutability = Mutability.VIEW
                legacy_constant = True
            elif word == "virtual":
                is_virtual = True
            elif word == "override":
                override = "override" + args
            else:
                modifiers.append(word + args)
        return visibility, mutability, modifiers, is_virtual, override, legacy_constant

    def _scan_body(self, fn: FunctionInfo) -> None:
        masked = self.masked
        body_start, body_end = fn.body_start, fn.body_end
        body = masked[body_start:body_end]

        assembly_spans: List[Tuple[int, int]] = []
        for m in re.finditer(r"\bassembly\b[^{;]*\{", body):
            open_at = body_start + m.end() - 1
            close_at = match_brace(masked, open_at)
            assembly_spans.append((open_at, close_at))
            block = masked[open_at:close_at]
            for exit_op in ("return", "stop", "selfdestruct", "suicide"):
                if re.search(rf"\b{exit_op}\s*\(", block):
                    fn.assembly_exits.append(exit_op)

        def in_assembly(offset: int) -> bool:
            return any(a <= offset < b for a, b in assembly_spans)

        for m in re.finditer(r"\b(selfdestruct|suicide)\s*\(", body):
            if not in_assembly(body_start + m.start()):
                fn.self_destructs = True

        for m in re.finditer(r"\breturn\b", body):
            at = body_start + m.start()
            if in_assembly(at):
                continue
            semi = self._statement_end(at + len("return"), body_end)
            expression = self.source[at + len("return"):semi].strip() or None
            fn.return_statements.append(ReturnStatement(start=at, end=semi + 1, expression=expression))

    def _statement_end(self, pos: int, limit: int) -> int:
        depth = 0
        masked = self.masked
        for i in range(pos, limit):
            ch = masked[i]
            if ch in "([{":
                depth += 1
            elif ch in ")]}":
                depth -= 1
            elif ch == ";" and depth == 0:
                return i
        raise UnsupportedContract(f"unterminated return statement at offset {pos}")


def read_contract(source: str, name: Optional[str] = None, path: Union[str, Path, None] = None) -> ContractView:
    """parse `source` and return the view of contract `name` (last contract when omitted)"""
    return ContractReader(source, path=path).read(name)


def read_contract_file(path: Union[str, Path], name: Optional[str] = None) -> ContractView:
    path = Path(path)
    try:
        source = path.read_text(encoding="utf-8")
    except OSError as e:
        raise UnsupportedContract(f"cannot read {path}: {e}") from e
    return read_contract(source, name=name or None, path=path)


SOLIDITY_WORDS = {
    "true", "false", "this", "msg", "block", "tx", "now", "abi", "super", "type",
    "address", "bool", "string", "bytes", "payable", "memory", "storage", "calldata",
    "keccak256", "sha256", "ecrecover", "gasleft", "blockhash", "addmod", "mulmod",
    "wei", "gwei", "ether", "seconds", "minutes", "hours", "days", "weeks", "Old",
}
_IDENTIFIER = re.compile(r"(?<![\w$.])([A-Za-z_$][\w$]*)")
_ELEMENTARY_NAME = re.compile(r"^(u?int\d*|bytes\d+|u?fixed[\dx]*)$")


def identifiers(text: str) -> List[str]:
    """free identifiers of a host expression (member names after '.' excluded)"""
    names: List[str] = []
    for m in _IDENTIFIER.finditer(mask_source(text)):
        name = m.group(1)
        if not name.strip("_") or name in SOLIDITY_WORDS or _ELEMENTARY_NAME.match(name):
            continue
        if name not in names:
            names.append(name)
    return names


def check_identifiers(view: ContractView, formulas) -> List[str]:
    """warnings for atom identifiers the contract does not bind"""
    bound = set(view.state_variable_types())
    for contract in view.lineage:
        bound.add(contract.name)
        bound.update(fn.name for fn in contract.functions)
        bound.update(contract.structs)
        bound.update(contract.enums)
        bound.update(contract.modifiers_declared)
    for fn in view.all_functions:
        bound.update(fn.param_names)
        bound.update(p.name for p in fn.returns if p.name)
    bound.add("notConstructor")

    warnings: List[str] = []
    for index, formula in enumerate(formulas):
        for atom in formula.atoms():
            for name in identifiers(atom.text):
                if name in bound or name.endswith("Called"):
                    continue
                message = f"predicate {index}: '{name}' is not bound by contract {view.name}"
                if message not in warnings:
                    warnings.append(message)
    for message in warnings:
        logger.warning(message)
    return warnings
