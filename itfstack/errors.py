# itfstack/errors.py
"""
Structured errors shared by every pipeline stage.

Stages never raise for problems in the input text: they append an ``ItfError``
to an ``ErrorCollector`` and keep going, so a caller sees every problem of a
document in one list. ``StackParseError`` exists only for callers that want an
exception at the edge (see ``ParseResult.unwrap``).
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple


class ErrorKind(str, Enum):
    LEX_ERROR = "LexError"
    SYNTAX_ERROR = "SyntaxError"
    MISSING_FIELD = "MissingField"
    TYPE_MISMATCH = "TypeMismatch"
    DUPLICATE_LAYER = "DuplicateLayer"
    DANGLING_VIA_REFERENCE = "DanglingViaReference"


@dataclass(frozen=True)
class ItfError:
    kind: ErrorKind
    line: int
    column: int
    message: str
    subject: Optional[str] = None  # key, layer or block name the error is about

    def __str__(self) -> str:
        return f"{self.kind.value} at line {self.line}, column {self.column}: {self.message}"


class ErrorCollector:
    """Append-only list of ``ItfError`` filled by one pipeline stage."""

    def __init__(self) -> None:
        self._errors: List[ItfError] = []

    def add(self, kind: ErrorKind, loc: Tuple[int, int], message: str,
            subject: Optional[str] = None) -> ItfError:
        err = ItfError(kind=kind, line=loc[0], column=loc[1], message=message, subject=subject)
        self._errors.append(err)
        return err

    def extend(self, errors: Iterable[ItfError]) -> None:
        self._errors.extend(errors)

    @property
    def errors(self) -> List[ItfError]:
        return list(self._errors)

    def __iter__(self) -> Iterator[ItfError]:
        return iter(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def __bool__(self) -> bool:
        return bool(self._errors)


def format_error(error: ItfError, text: Optional[str] = None) -> str:
    """Render one error, with the offending source line and a caret when text is given."""
    msg = str(error)
    if text is None:
        return msg
    lines = text.splitlines()
    if 1 <= error.line <= len(lines):
        src_line = lines[error.line - 1]
        caret = " " * (error.column - 1 if error.column > 0 else 0) + "^"
        msg = f"{msg}\n    {src_line}\n    {caret}"
    return msg


class StackParseError(Exception):
    def __init__(self, errors: Sequence[ItfError], text: Optional[str] = None):
        self.errors = tuple(errors)
        head = f"{len(self.errors)} error(s) in ITF document"
        body = "\n".join(format_error(e, text) for e in self.errors)
        super().__init__(f"{head}\n{body}" if body else head)
