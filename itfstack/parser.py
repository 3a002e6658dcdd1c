# itfstack/parser.py
from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

from lark import Token as LarkToken
from lark import Transformer, v_args
from lark.exceptions import UnexpectedInput

from .errors import ErrorCollector, ErrorKind, ItfError
from .grammar import BLOCK_KEYWORDS, ITF_LARK
from .ir_types import (
    AssignmentNode,
    BlockNode,
    GridSection,
    Loc,
    ParseTree,
    Statement,
    TableNode,
    ValueNode,
)
from .lexer import Token, TokenKind

logger = logging.getLogger(__name__)

_NAME_KINDS = (TokenKind.IDENTIFIER, TokenKind.STRING, TokenKind.NUMBER)
_LAYER_KEYWORDS = frozenset({"CONDUCTOR", "DIELECTRIC"})


# ---------- Helpers ----------
def _unquote(tok: LarkToken) -> str:
    text = str(tok)
    if tok.type == "STRING":
        return text[1:-1]
    return text


def _loc(meta) -> Loc:
    return (meta.line, meta.column)


class _TupleRow:
    """One ``( n, n, ... )`` group; always becomes a row of its own."""

    def __init__(self, values: List[float], loc: Loc):
        self.values = values
        self.loc = loc


def _rows_from_cells(cells: List[Any]) -> List[List[float]]:
    """Group numeric cells into rows: numbers sharing a source line form one row, each tuple is a row."""
    rows: List[List[float]] = []
    current_line: Optional[int] = None
    for cell in cells:
        if isinstance(cell, _TupleRow):
            rows.append(cell.values)
            current_line = None
        elif cell.line == current_line:
            rows[-1].append(float(cell))
        else:
            rows.append([float(cell)])
            current_line = cell.line
    return rows


def _sections_from_items(items: List[Any]) -> List[GridSection]:
    """Keep labelled sections as they are; gather loose numbers/tuples into unlabelled ones."""
    sections: List[GridSection] = []
    loose: List[Any] = []

    def flush() -> None:
        if loose:
            first = loose[0]
            loc = first.loc if isinstance(first, _TupleRow) else (first.line, first.column)
            sections.append(GridSection(label=None, rows=_rows_from_cells(loose), loc=loc))
            loose.clear()

    for item in items:
        if isinstance(item, GridSection):
            flush()
            sections.append(item)
        else:
            loose.append(item)
    flush()
    return sections


def _is_punct(child: Any) -> bool:
    return isinstance(child, LarkToken) and child.type in ("LBRACE", "RBRACE", "EQUALS", "LPAREN", "RPAREN", "COMMA")


# ---------- Transformer ----------
@v_args(meta=True)  # pass node metadata (line/col) into rule methods
class ToParseTree(Transformer):
    def statement(self, meta, children):
        return children[0]

    def assignment(self, meta, children):
        key, _eq, value = children
        node = ValueNode(kind=value.type, text=_unquote(value), loc=(value.line, value.column))
        return AssignmentNode(key=str(key), value=node, loc=_loc(meta))

    def block(self, meta, children):
        keyword, name = children[0], children[1]
        entries = [c for c in children[2:] if not _is_punct(c)]
        return BlockNode(keyword=str(keyword), name=_unquote(name), entries=entries, loc=_loc(meta))

    def modifier(self, meta, children):
        # plain str, not a lark Token, so table() can tell it apart
        return str(children[0])

    def table(self, meta, children):
        name = children[0]
        modifiers = [c for c in children[1:] if isinstance(c, str) and not isinstance(c, LarkToken)]
        items = [c for c in children[1:] if not _is_punct(c) and not (isinstance(c, str) and not isinstance(c, LarkToken))]
        return TableNode(name=str(name), modifiers=modifiers, sections=_sections_from_items(items), loc=_loc(meta))

    def orphan_table(self, meta, children):
        items = [c for c in children[1:] if not _is_punct(c)]
        return TableNode(name=str(children[0]), modifiers=[], sections=_sections_from_items(items), loc=_loc(meta))

    def labeled(self, meta, children):
        label = children[0]
        cells = [c for c in children[1:] if not _is_punct(c)]
        return GridSection(label=str(label), rows=_rows_from_cells(cells), loc=_loc(meta))

    def tuple(self, meta, children):
        values = [float(c) for c in children if isinstance(c, LarkToken) and c.type == "NUMBER"]
        return _TupleRow(values, _loc(meta))


# ---------- Statement splitting ----------
def _kind_at(tokens: List[Token], i: int) -> Optional[TokenKind]:
    return tokens[i].kind if i < len(tokens) else None


def _starts_statement(tokens: List[Token], i: int, depth: int) -> bool:
    tok = tokens[i]
    if tok.kind is not TokenKind.IDENTIFIER:
        return False
    # KEYWORD NAME { opens a block at any depth, which also closes a block left open
    if (tok.literal.upper() in BLOCK_KEYWORDS
            and _kind_at(tokens, i + 1) in _NAME_KINDS
            and _kind_at(tokens, i + 2) is TokenKind.LBRACE):
        return True
    return depth == 0 and _kind_at(tokens, i + 1) is TokenKind.EQUALS


def _is_complete_assignment(chunk: List[Token]) -> bool:
    return (len(chunk) == 3
            and chunk[0].kind is TokenKind.IDENTIFIER
            and chunk[1].kind is TokenKind.EQUALS
            and chunk[2].kind in _NAME_KINDS)


def split_statements(tokens: List[Token]) -> List[List[Token]]:
    """Cut the token stream at statement boundaries; each chunk is parsed on its own."""
    chunks: List[List[Token]] = []
    current: List[Token] = []
    depth = 0
    complete = False
    for i, tok in enumerate(tokens):
        if current and (complete or _starts_statement(tokens, i, depth)):
            chunks.append(current)
            current, depth, complete = [], 0, False
        current.append(tok)
        if tok.kind is TokenKind.LBRACE:
            depth += 1
        elif tok.kind is TokenKind.RBRACE and depth > 0:
            depth -= 1
            complete = depth == 0
        elif depth == 0 and _is_complete_assignment(current):
            complete = True
    if current:
        chunks.append(current)
    return chunks


def _dropped_layer(chunk: List[Token]) -> Optional[Tuple[str, Loc]]:
    """Name and position of a layer block that failed to parse, if the chunk is one."""
    if (len(chunk) < 2
            or chunk[0].literal.upper() not in _LAYER_KEYWORDS
            or chunk[1].kind not in _NAME_KINDS):
        return None
    name = chunk[1].literal
    if chunk[1].kind is TokenKind.STRING:
        name = name[1:-1]
    return name, chunk[0].loc


def _describe(tok: LarkToken) -> str:
    if tok.type == "$END":
        return "end of statement"
    return f"'{tok}'"


def _parse_statement(chunk: List[Token], errors: ErrorCollector) -> Optional[Statement]:
    interactive = ITF_LARK.parse_interactive(start="statement")
    last: Optional[LarkToken] = None
    try:
        for tok in chunk:
            last = tok.to_lark()
            interactive.feed_token(last)
        tree = interactive.feed_eof(last)
    except UnexpectedInput as e:
        # $END is an empty, falsy token
        tok = getattr(e, "token", None)
        bad = tok if tok is not None else last
        expected = sorted(getattr(e, "expected", None) or [])
        msg = f"unexpected {_describe(bad)}"
        if expected:
            msg += f"; expected one of: {', '.join(expected)}"
        errors.add(ErrorKind.SYNTAX_ERROR, (bad.line, bad.column), msg, subject=str(bad) or None)
        return None
    return ToParseTree().transform(tree)


# ---------- Public API ----------
def parse(tokens: List[Token]) -> Tuple[ParseTree, List[ItfError]]:
    """
    Parse a token stream into a generic parse tree.

    Malformed statements are reported and skipped; parsing resumes at the next
    statement boundary, so the returned errors cover the whole document.
    """
    errors = ErrorCollector()
    clean: List[Token] = []
    for tok in tokens:
        if tok.kind is TokenKind.UNKNOWN:
            errors.add(ErrorKind.LEX_ERROR, tok.loc, f"unrecognized character {tok.literal!r}",
                       subject=tok.literal)
        else:
            clean.append(tok)

    tree = ParseTree()
    for chunk in split_statements(clean):
        stmt = _parse_statement(chunk, errors)
        if stmt is None:
            dropped = _dropped_layer(chunk)
            if dropped is not None:
                tree.dropped_layers.append(dropped)
            continue
        if isinstance(stmt, BlockNode) and stmt.keyword.upper() not in BLOCK_KEYWORDS:
            errors.add(ErrorKind.SYNTAX_ERROR, stmt.loc,
                       f"unknown block keyword '{stmt.keyword}'; expected one of: "
                       f"{', '.join(sorted(BLOCK_KEYWORDS))}",
                       subject=stmt.keyword)
            continue
        tree.statements.append(stmt)

    logger.debug("parsed %d statements with %d errors", len(tree.statements), len(errors))
    return tree, sorted(errors, key=lambda e: (e.line, e.column))
