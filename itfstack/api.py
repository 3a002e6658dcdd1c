# itfstack/api.py
"""
Public entry points.

    result = parse_from_text(text)
    if result.ok:
        print(result.stack.get_process_summary())
    else:
        for err in result.errors:
            print(err)

Every stage runs even after an earlier one reported errors, so ``errors`` lists
all problems of the document in pipeline order. ``stack`` is set only when that
list is empty.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .builder import build
from .config import DEFAULT_OPTIONS, ParseOptions
from .errors import ErrorCollector, ErrorKind, ItfError, StackParseError
from .lexer import tokenize
from .parser import parse
from .stack import Stack
from .validator import validate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParseResult:
    stack: Optional[Stack]
    errors: Tuple[ItfError, ...] = ()
    text: Optional[str] = None  # kept so errors can be rendered against the source

    @property
    def ok(self) -> bool:
        return self.stack is not None and not self.errors

    def unwrap(self) -> Stack:
        if not self.ok:
            raise StackParseError(self.errors, self.text)
        return self.stack


def parse_from_text(text: str, options: Optional[ParseOptions] = None) -> ParseResult:
    options = options or DEFAULT_OPTIONS
    errors = ErrorCollector()

    tokens = tokenize(text)
    tree, parse_errors = parse(tokens)
    errors.extend(parse_errors)

    draft, build_errors = build(tree, options)
    errors.extend(build_errors)

    stack, check_errors = validate(draft)
    errors.extend(check_errors)

    if errors:
        logger.info("parse failed with %d error(s)", len(errors))
        return ParseResult(stack=None, errors=tuple(errors), text=text)
    return ParseResult(stack=stack, errors=(), text=text)


def _decode_error(data: bytes, exc: UnicodeDecodeError) -> ItfError:
    prefix = data[:exc.start]
    line = prefix.count(b"\n") + 1
    column = exc.start - (prefix.rfind(b"\n") + 1) + 1
    return ItfError(kind=ErrorKind.LEX_ERROR, line=line, column=column,
                    message=f"cannot decode byte 0x{data[exc.start]:02x}: {exc.reason}")


def parse_from_source(source: Union[str, bytes], options: Optional[ParseOptions] = None) -> ParseResult:
    """Like ``parse_from_text`` but also accepts undecoded bytes read by the caller."""
    options = options or DEFAULT_OPTIONS
    if isinstance(source, bytes):
        try:
            source = source.decode(options.encoding)
        except UnicodeDecodeError as e:
            return ParseResult(stack=None, errors=(_decode_error(source, e),))
    return parse_from_text(source, options)
