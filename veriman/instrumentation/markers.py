"""fragment markers that make every rewrite reversible

    /*@vm+*/ inserted text /*@vm-*/
    /*@vm~removed original text*/
"""
import re

INSERT_OPEN = "/*@vm+*/"
INSERT_CLOSE = "/*@vm-*/"
REMOVED_OPEN = "/*@vm~"
REMOVED_CLOSE = "*/"

# a removed fragment may itself contain a block comment terminator
_ESCAPED_CLOSE = "*@vm/"


def inserted(text: str) -> str:
    return f"{INSERT_OPEN}{text}{INSERT_CLOSE}"


def removed(text: str) -> str:
    return f"{REMOVED_OPEN}{text.replace(REMOVED_CLOSE, _ESCAPED_CLOSE)}{REMOVED_CLOSE}"


def replaced(original: str, replacement: str) -> str:
    return removed(original) + inserted(replacement)


def strip_instrumentation(source: str) -> str:
    """drop every inserted fragment and restore every removed one"""
    out = []
    pos = 0
    n = len(source)
    while pos < n:
        ins = source.find(INSERT_OPEN, pos)
        rem = source.find(REMOVED_OPEN, pos)
        candidates = [i for i in (ins, rem) if i != -1]
        if not candidates:
            out.append(source[pos:])
            break
        at = min(candidates)
        out.append(source[pos:at])
        if at == ins:
            end = source.find(INSERT_CLOSE, at + len(INSERT_OPEN))
            if end == -1:
                raise ValueError(f"unterminated inserted fragment at offset {at}")
            pos = end + len(INSERT_CLOSE)
        else:
            end = source.find(REMOVED_CLOSE, at + len(REMOVED_OPEN))
            if end == -1:
                raise ValueError(f"unterminated removed fragment at offset {at}")
            out.append(source[at + len(REMOVED_OPEN):end].replace(_ESCAPED_CLOSE, REMOVED_CLOSE))
            pos = end + len(REMOVED_CLOSE)
    return "".join(out)


def normalize_whitespace(source: str) -> str:
    return re.sub(r"\s+", " ", source).strip()


def same_source(a: str, b: str) -> bool:
    """syntactic equality modulo whitespace"""
    return normalize_whitespace(a) == normalize_whitespace(b)
