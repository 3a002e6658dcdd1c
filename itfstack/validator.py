# itfstack/validator.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from .errors import ErrorCollector, ErrorKind, ItfError
from .stack import ConductorLayer, DielectricLayer, DraftStack, LookupTable, PiecewiseTable, Stack

logger = logging.getLogger(__name__)


def _check_increasing(axis, label: str, owner: str, subject: str, loc, errors: ErrorCollector) -> None:
    # interpolation bisects the breakpoints, so they must be strictly increasing
    for i in range(1, len(axis)):
        if axis[i] <= axis[i - 1]:
            errors.add(ErrorKind.TYPE_MISMATCH, loc,
                       f"{owner}: {label} breakpoints must increase, got {axis[i - 1]:g} then {axis[i]:g}",
                       subject=subject)
            return


def _check_lookup(table: LookupTable, owner: str, subject: str, errors: ErrorCollector) -> None:
    _check_increasing(table.widths, "WIDTH", owner, subject, table.loc, errors)
    _check_increasing(table.spacings, table.spacing_axis, owner, subject, table.loc, errors)
    rows, cols = table.shape
    if rows != len(table.spacings):
        errors.add(ErrorKind.TYPE_MISMATCH, table.loc,
                   f"{owner}: VALUES has {rows} row(s) but {len(table.spacings)} "
                   f"{table.spacing_axis.lower()} value(s)", subject=subject)
    for i, n in enumerate(cols):
        if n != len(table.widths):
            errors.add(ErrorKind.TYPE_MISMATCH, table.loc,
                       f"{owner}: VALUES row {i + 1} has {n} value(s) but {len(table.widths)} width(s)",
                       subject=subject)


def _check_piecewise(table: PiecewiseTable, owner: str, subject: str, errors: ErrorCollector) -> None:
    _check_increasing(table.keys, table.columns[0], owner, subject, table.loc, errors)
    for i, row in enumerate(table.rows):
        if len(row) != len(table.columns):
            errors.add(ErrorKind.TYPE_MISMATCH, table.loc,
                       f"{owner}: row {i + 1} has {len(row)} value(s), expected "
                       f"({', '.join(table.columns)})", subject=subject)


def _check_non_negative(value: Optional[float], what: str, owner: str, subject: str, loc,
                        errors: ErrorCollector) -> None:
    if value is not None and value < 0:
        errors.add(ErrorKind.TYPE_MISMATCH, loc, f"{what} of {owner} must not be negative, got {value:g}",
                   subject=subject)


def validate(draft: DraftStack) -> Tuple[Optional[Stack], List[ItfError]]:
    """
    Cross-entity checks on a built draft. Every check runs; a Stack is returned
    only when none of them found anything.
    """
    errors = ErrorCollector()

    # 1) layer names are unique; each repeat is reported against the first declaration.
    # Omitted layers count too, so a collision shows up alongside their own errors.
    declared = [(layer.name, layer.loc) for layer in draft.layers] + list(draft.omitted_layers)
    first_seen: Dict[str, Tuple[int, int]] = {}
    for name, loc in sorted(declared, key=lambda item: item[1]):
        if name in first_seen:
            line, col = first_seen[name]
            errors.add(ErrorKind.DUPLICATE_LAYER, loc,
                       f"layer '{name}' already declared at line {line}, column {col}",
                       subject=name)
        else:
            first_seen[name] = loc

    # 2) via endpoints resolve to declared layers
    for via in draft.vias:
        for end in (via.from_layer, via.to_layer):
            if end in first_seen:
                # includes omitted layers, already reported when they failed
                continue
            errors.add(ErrorKind.DANGLING_VIA_REFERENCE, via.loc,
                       f"via '{via.name}' references undeclared layer '{end}'", subject=end)

    # 3) structure: table shapes and physical ranges
    background_er = draft.technology.background_er
    if background_er is not None and background_er < 0:
        errors.add(ErrorKind.TYPE_MISMATCH, (1, 1), f"BACKGROUND_ER must not be negative, got {background_er:g}",
                   subject="BACKGROUND_ER")

    for layer in draft.layers:
        owner = f"{layer.kind.value} {layer.name}"
        _check_non_negative(layer.thickness, "THICKNESS", owner, layer.name, layer.loc, errors)
        if isinstance(layer, DielectricLayer):
            _check_non_negative(layer.er, "ER", owner, layer.name, layer.loc, errors)
        elif isinstance(layer, ConductorLayer):
            _check_non_negative(layer.rpsq, "RPSQ", owner, layer.name, layer.loc, errors)
        for table in layer.lookup_tables():
            _check_lookup(table, owner, layer.name, errors)
        for table in layer.piecewise_tables():
            _check_piecewise(table, owner, layer.name, errors)

    for via in draft.vias:
        owner = f"VIA {via.name}"
        if via.area is not None and via.area <= 0:
            errors.add(ErrorKind.TYPE_MISMATCH, via.loc, f"AREA of {owner} must be positive, got {via.area:g}",
                       subject=via.name)
        _check_non_negative(via.rpv, "RPV", owner, via.name, via.loc, errors)
        for table in via.piecewise_tables():
            _check_piecewise(table, owner, via.name, errors)

    if errors:
        logger.info("validation found %d problem(s)", len(errors))
        return None, errors.errors

    stack = Stack(technology=draft.technology, _layers=tuple(draft.layers), _vias=tuple(draft.vias))
    logger.debug("validated stack '%s' with %d layers", stack.technology.name, len(draft.layers))
    return stack, []
