# itfstack/lexer.py
from __future__ import annotations

import logging
from enum import Enum
from typing import List, NamedTuple

from lark import Token as LarkToken

from .grammar import ITF_LARK

logger = logging.getLogger(__name__)


class TokenKind(str, Enum):
    # values are the terminal names in itf.lark
    IDENTIFIER = "IDENTIFIER"
    NUMBER = "NUMBER"
    STRING = "STRING"
    EQUALS = "EQUALS"
    LBRACE = "LBRACE"
    RBRACE = "RBRACE"
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    COMMA = "COMMA"
    UNKNOWN = "UNKNOWN"


class Token(NamedTuple):
    kind: TokenKind
    literal: str
    line: int
    column: int

    @property
    def loc(self):
        return (self.line, self.column)

    def to_lark(self) -> LarkToken:
        """Rebuild the lark token the LALR parser consumes."""
        return LarkToken(
            self.kind.value,
            self.literal,
            line=self.line,
            column=self.column,
            end_line=self.line,
            end_column=self.column + len(self.literal),
        )


# whitespace and comments only move the line/column counters
_SKIPPED = frozenset({"WS", "COMMENT"})


def tokenize(text: str) -> List[Token]:
    """
    Split ITF text into position-annotated tokens. Never fails: characters no
    terminal accepts come back as UNKNOWN tokens for the parser to report.
    """
    tokens: List[Token] = []
    for tok in ITF_LARK.lex(text, dont_ignore=True):
        if tok.type in _SKIPPED:
            continue
        tokens.append(Token(TokenKind(tok.type), str(tok), tok.line, tok.column))
    logger.debug("tokenized %d characters into %d tokens", len(text), len(tokens))
    return tokens
