"""ptltl parser - recursive descent over predicate strings with opaque host atoms

Grammar (loose -> tight):

    iff     := implies ('<->' implies)*
    implies := or ('->' implies)?
    or      := and ('||' and)*
    and     := not ('&&' not)*
    not     := '!' not | since
    since   := prefix ('Since' prefix)*
    prefix  := ('Once' | 'Hist' | 'Prev') operand | primary
    operand := '!' operand | prefix
    primary := '(' iff ')' | atom

Atoms are host-language expressions. They are never tokenized as host
syntax; the scanner only has to find the connectives that sit outside
brackets, strings and call parentheses.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from veriman.errors import ParseError
from veriman.ptltl.ast import (
    Atom, Formula, Hist, Iff, Implies, Not, Once, Or, And, Prev, Since, Span,
)

logger = logging.getLogger(__name__)


TEXT = "TEXT"
OP = "OP"
KW = "KW"
LPAREN = "LPAREN"
RPAREN = "RPAREN"
END = "END"

OPERATORS = {
    "<->": "<->", "↔": "<->",
    "->": "->", "→": "->",
    "||": "||", "∨": "||",
    "&&": "&&", "∧": "&&",
    "!": "!", "¬": "!",
}

KEYWORDS = {
    "Since": "Since", "since": "Since",
    "Once": "Once", "once": "Once",
    "Hist": "Hist", "always": "Hist", "historically": "Hist",
    "Prev": "Prev", "previously": "Prev",
}

PREFIX_KEYWORDS = {"Once": Once, "Hist": Hist, "Prev": Prev}

_OP_ORDER = sorted(OPERATORS, key=len, reverse=True)
_WORD = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_OLD = re.compile(r"\bOld\s*\(")
_CALLED = re.compile(r"\b([A-Za-z_$][A-Za-z0-9_$]*?)Called\b")


@dataclass
class Token:
    kind: str
    value: str
    start: int
    end: int


def tokenize(source: str) -> List[Token]:
    """split a predicate into connectives, keywords, grouping parens and host text"""
    tokens: List[Token] = []
    i = 0
    n = len(source)
    text_start: Optional[int] = None

    def flush(end: int) -> None:
        nonlocal text_start
        if text_start is not None:
            raw = source[text_start:end]
            if raw.strip():
                lead = len(raw) - len(raw.lstrip())
                trail = len(raw.rstrip())
                tokens.append(Token(TEXT, raw.strip(), text_start + lead, text_start + trail))
            text_start = None

    while i < n:
        ch = source[i]

        if ch in "\"'":
            close = _skip_string(source, i)
            if text_start is None:
                text_start = i
            i = close
            continue

        if ch == "[":
            close = _skip_balanced(source, i, "[", "]")
            if text_start is None:
                text_start = i
            i = close
            continue

        if ch == "(":
            word = _word_before(source, i)
            if word and word not in KEYWORDS:
                # call parentheses belong to the host expression
                close = _skip_balanced(source, i, "(", ")")
                if text_start is None:
                    text_start = i
                i = close
                continue
            flush(i)
            tokens.append(Token(LPAREN, "(", i, i + 1))
            i += 1
            continue

        if ch == ")":
            flush(i)
            tokens.append(Token(RPAREN, ")", i, i + 1))
            i += 1
            continue

        op = _match_operator(source, i)
        if op is not None:
            flush(i)
            tokens.append(Token(OP, OPERATORS[op], i, i + len(op)))
            i += len(op)
            continue

        m = _WORD.match(source, i)
        if m and (i == 0 or not (source[i - 1].isalnum() or source[i - 1] in "_$.")):
            word = m.group(0)
            if word in KEYWORDS:
                flush(i)
                tokens.append(Token(KW, KEYWORDS[word], i, m.end()))
                i = m.end()
                continue
            if text_start is None:
                text_start = i
            i = m.end()
            continue

        if text_start is None and not ch.isspace():
            text_start = i
        i += 1

    flush(n)
    tokens.append(Token(END, "", n, n))
    return tokens


def _match_operator(source: str, i: int) -> Optional[str]:
    for op in _OP_ORDER:
        if source.startswith(op, i):
            if op == "!" and source.startswith("!=", i):
                return None
            if op == "->" and i > 0 and source[i - 1] in "<-":
                return None
            return op
    return None


def _word_before(source: str, i: int) -> Optional[str]:
    j = i - 1
    while j >= 0 and source[j] in " \t":
        j -= 1
    end = j + 1
    while j >= 0 and (source[j].isalnum() or source[j] in "_$"):
        j -= 1
    word = source[j + 1:end]
    return word or None


def _skip_string(source: str, i: int) -> int:
    quote = source[i]
    j = i + 1
    while j < len(source):
        if source[j] == "\\":
            j += 2
            continue
        if source[j] == quote:
            return j + 1
        j += 1
    raise ParseError("unterminated string literal", source, i)


def _skip_balanced(source: str, i: int, opening: str, closing: str) -> int:
    depth = 0
    j = i
    while j < len(source):
        ch = source[j]
        if ch in "\"'":
            j = _skip_string(source, j)
            continue
        if ch == opening:
            depth += 1
        elif ch == closing:
            depth -= 1
            if depth == 0:
                return j + 1
        j += 1
    raise ParseError(f"unbalanced '{opening}'", source, i)


def scan_olds(text: str, source: str = "", offset: int = 0) -> Tuple[str, ...]:
    """inner expressions of every Old(...) in an atom"""
    olds: List[str] = []
    for m in _OLD.finditer(text):
        open_at = m.end() - 1
        try:
            close = _skip_balanced(text, open_at, "(", ")")
        except ParseError:
            raise ParseError("unbalanced Old(", source or text, offset + m.start())
        inner = text[open_at + 1:close - 1].strip()
        if not inner:
            raise ParseError("Old() needs an expression", source or text, offset + m.start())
        if _OLD.search(inner):
            raise ParseError("nested Old() is not supported", source or text, offset + m.start())
        if inner not in olds:
            olds.append(inner)
    return tuple(olds)


def substitute_olds(text: str, replace) -> str:
    """rewrite every Old(e) in an atom as replace(e)"""
    out: List[str] = []
    pos = 0
    for m in _OLD.finditer(text):
        if m.start() < pos:
            continue
        open_at = m.end() - 1
        close = _skip_balanced(text, open_at, "(", ")")
        out.append(text[pos:m.start()])
        out.append(replace(text[open_at + 1:close - 1].strip()))
        pos = close
    out.append(text[pos:])
    return "".join(out)


def scan_calls(text: str) -> Tuple[str, ...]:
    calls: List[str] = []
    for m in _CALLED.finditer(text):
        name = m.group(1)
        if name and name not in calls:
            calls.append(name)
    return tuple(calls)


class FormulaParser:
    """parses one predicate string; equal subformulas come back as one object"""

    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.pos = 0
        self._interned: Dict[Formula, Formula] = {}

    def parse(self) -> Formula:
        if self._peek().kind == END:
            raise ParseError("empty predicate", self.source, 0)
        formula = self._parse_iff()
        tok = self._peek()
        if tok.kind != END:
            raise ParseError(f"unexpected '{tok.value}'", self.source, tok.start)
        return formula

    def _peek(self, ahead: int = 0) -> Token:
        idx = min(self.pos + ahead, len(self.tokens) - 1)
        return self.tokens[idx]

    def _advance(self) -> Token:
        tok = self._peek()
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return tok

    def _at(self, kind: str, value: Optional[str] = None) -> bool:
        tok = self._peek()
        return tok.kind == kind and (value is None or tok.value == value)

    def _intern(self, node: Formula) -> Formula:
        existing = self._interned.get(node)
        if existing is not None:
            return existing
        self._interned[node] = node
        return node

    def _span_from(self, start: int) -> Span:
        prev = self.tokens[self.pos - 1] if self.pos > 0 else self._peek()
        return Span(start, prev.end)

    # binary levels

    def _parse_iff(self) -> Formula:
        start = self._peek().start
        left = self._parse_implies()
        while self._at(OP, "<->"):
            self._advance()
            right = self._parse_implies()
            left = self._intern(Iff(left, right, span=self._span_from(start)))
        return left

    def _parse_implies(self) -> Formula:
        start = self._peek().start
        left = self._parse_or()
        if self._at(OP, "->"):
            self._advance()
            right = self._parse_implies()
            return self._intern(Implies(left, right, span=self._span_from(start)))
        return left

    def _parse_or(self) -> Formula:
        start = self._peek().start
        left = self._parse_and()
        while self._at(OP, "||"):
            self._advance()
            right = self._parse_and()
            left = self._intern(Or(left, right, span=self._span_from(start)))
        return left

    def _parse_and(self) -> Formula:
        start = self._peek().start
        left = self._parse_not()
        while self._at(OP, "&&"):
            self._advance()
            right = self._parse_not()
            left = self._intern(And(left, right, span=self._span_from(start)))
        return left

    def _parse_not(self) -> Formula:
        if self._at(OP, "!"):
            start = self._advance().start
            operand = self._parse_not()
            return self._intern(Not(operand, span=self._span_from(start)))
        return self._parse_since()

    def _parse_since(self) -> Formula:
        start = self._peek().start
        left = self._parse_prefix()
        while self._at(KW, "Since"):
            self._advance()
            right = self._parse_prefix()
            left = self._intern(Since(left, right, span=self._span_from(start)))
        return left

    # unary levels

    def _parse_prefix(self) -> Formula:
        tok = self._peek()
        if tok.kind == KW and tok.value in PREFIX_KEYWORDS:
            self._advance()
            operand = self._parse_operand()
            node_type = PREFIX_KEYWORDS[tok.value]
            return self._intern(node_type(operand, span=self._span_from(tok.start)))
        return self._parse_primary(after_prefix=False)

    def _parse_operand(self) -> Formula:
        if self._at(OP, "!"):
            start = self._advance().start
            operand = self._parse_operand()
            return self._intern(Not(operand, span=self._span_from(start)))
        tok = self._peek()
        if tok.kind == KW and tok.value in PREFIX_KEYWORDS:
            return self._parse_prefix()
        return self._parse_primary(after_prefix=True)

    def _parse_primary(self, after_prefix: bool) -> Formula:
        tok = self._peek()
        if tok.kind == LPAREN:
            close = self._matching_paren(self.pos)
            if after_prefix or self._group_has_connective(self.pos, close):
                self._advance()
                inner = self._parse_iff()
                if not self._at(RPAREN):
                    bad = self._peek()
                    raise ParseError(f"expected ')' but found '{bad.value or 'end of input'}'", self.source, bad.start)
                self._advance()
                nxt = self._peek()
                if nxt.kind in (TEXT, LPAREN):
                    raise ParseError("host expression continues after a formula group", self.source, nxt.start)
                return inner
            return self._parse_atom()
        if tok.kind == TEXT:
            return self._parse_atom()
        if tok.kind == END:
            raise ParseError("unexpected end of predicate", self.source, tok.start)
        raise ParseError(f"unexpected '{tok.value}'", self.source, tok.start)

    def _parse_atom(self) -> Formula:
        start_tok = self._peek()
        end = start_tok.end
        while True:
            tok = self._peek()
            if tok.kind == TEXT:
                end = tok.end
                self._advance()
            elif tok.kind == LPAREN:
                close = self._matching_paren(self.pos)
                if self._group_has_connective(self.pos, close):
                    raise ParseError("connective inside a host expression group", self.source, tok.start)
                end = self.tokens[close].end
                self.pos = close + 1
            else:
                break
        text = self.source[start_tok.start:end].strip()
        if not text:
            raise ParseError("empty atom", self.source, start_tok.start)
        olds = scan_olds(text, self.source, start_tok.start)
        calls = scan_calls(text)
        return self._intern(Atom(text, olds=olds, calls=calls, span=Span(start_tok.start, end)))

    def _matching_paren(self, idx: int) -> int:
        depth = 0
        for j in range(idx, len(self.tokens)):
            kind = self.tokens[j].kind
            if kind == LPAREN:
                depth += 1
            elif kind == RPAREN:
                depth -= 1
                if depth == 0:
                    return j
        raise ParseError("unbalanced '('", self.source, self.tokens[idx].start)

    def _group_has_connective(self, open_idx: int, close_idx: int) -> bool:
        depth = 0
        for j in range(open_idx + 1, close_idx):
            tok = self.tokens[j]
            if tok.kind == LPAREN:
                depth += 1
            elif tok.kind == RPAREN:
                depth -= 1
            elif depth == 0 and tok.kind in (OP, KW):
                return True
        return False


def parse_formula(source: str) -> Formula:
    """parse a single ptltl predicate"""
    if not isinstance(source, str):
        raise ParseError(f"predicate must be a string, got {type(source).__name__}")
    formula = FormulaParser(source).parse()
    logger.debug("parsed predicate %r", source)
    return formula


def parse_formulas(sources: List[str]) -> List[Formula]:
    return [parse_formula(s) for s in sources]
