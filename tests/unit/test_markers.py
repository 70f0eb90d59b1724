"""reversible fragment markers"""

import pytest

from veriman.instrumentation.markers import (
    inserted, removed, replaced, same_source, strip_instrumentation,
)


def test_inserted_fragment_is_dropped():
    assert strip_instrumentation("a" + inserted("\n    bool x = true;") + "b") == "ab"


def test_removed_fragment_is_restored():
    assert strip_instrumentation("x " + replaced("transfer", "__vmInner_transfer") + "(1)") == "x transfer(1)"


def test_removed_text_with_comment_terminator():
    original = "uint a; /* note */ uint b;"
    marked = removed(original)
    assert marked.count("*/") == 1
    assert strip_instrumentation(marked) == original


def test_multiple_fragments():
    source = inserted("A") + "keep" + replaced("old", "new") + inserted("B") + " tail"
    assert strip_instrumentation(source) == "keepold tail"


@pytest.mark.parametrize("broken", ["x /*@vm+*/ never closed", "x /*@vm~ never closed"])
def test_unterminated_fragment(broken):
    with pytest.raises(ValueError, match="unterminated"):
        strip_instrumentation(broken)


def test_plain_comments_untouched():
    source = "/* regular */ uint x; // note"
    assert strip_instrumentation(source) == source


def test_same_source_ignores_whitespace():
    assert same_source("contract  C {\n}", "contract C { }")
    assert not same_source("contract C {}", "contract D {}")
