# itfstack/grammar.py
from __future__ import annotations

from pathlib import Path

from lark import Lark

# Statement keywords the grammar parser recognizes as block heads.
BLOCK_KEYWORDS = frozenset({"DIELECTRIC", "CONDUCTOR", "VIA"})

# Top-level keys with a typed meaning; anything else is kept as an opaque extra.
TECHNOLOGY_KEYS = frozenset({
    "TECHNOLOGY",
    "GLOBAL_TEMPERATURE",
    "REFERENCE_DIRECTION",
    "BACKGROUND_ER",
    "HALF_NODE_SCALE_FACTOR",
    "USE_SI_DENSITY",
    "DROP_FACTOR_LATERAL_SPACING",
})


# ---------- Load grammar ----------
def _load_grammar() -> str:
    # itf.lark sits next to this file
    path = Path(__file__).with_name("itf.lark")
    return path.read_text(encoding="utf-8")


_GRAMMAR = _load_grammar()

# One shared instance: the basic lexer tokenizes whole documents and the LALR
# tables drive the per-statement interactive parsers. Neither keeps state
# between calls, so concurrent parses can share it.
ITF_LARK = Lark(
    _GRAMMAR,
    start="statement",
    parser="lalr",
    lexer="basic",
    propagate_positions=True,
)
