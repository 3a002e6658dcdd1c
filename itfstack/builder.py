# itfstack/builder.py
from __future__ import annotations

import dataclasses
import logging
from itertools import chain
from typing import Callable, Dict, List, Optional, Tuple

from .config import DEFAULT_OPTIONS, ParseOptions
from .errors import ErrorCollector, ErrorKind, ItfError
from .grammar import TECHNOLOGY_KEYS
from .ir_types import AssignmentNode, BlockNode, GridSection, Loc, ParseTree, TableNode, ValueNode
from .stack import (
    ConductorLayer,
    DielectricLayer,
    DraftStack,
    Extras,
    LookupTable,
    PiecewiseTable,
    RawTable,
    ReferenceDirection,
    TechnologyParameters,
    Via,
)

logger = logging.getLogger(__name__)

_WIDTH_AXIS = ("WIDTHS", "WIDTH")
_SPACING_AXIS = ("SPACINGS", "SPACING")
_THICKNESS_AXIS = ("THICKNESS", "THICKNESSES")

# conductor table name -> (ConductorLayer field, labels of the second axis)
_CONDUCTOR_GRIDS = {
    "RHO_VS_WIDTH_AND_SPACING": ("rho_vs_width_spacing", _SPACING_AXIS),
    "ETCH_VS_WIDTH_AND_SPACING": ("etch_vs_width_spacing", _SPACING_AXIS),
    "THICKNESS_VS_WIDTH_AND_SPACING": ("thickness_vs_width_spacing", _SPACING_AXIS),
    "RHO_VS_SI_WIDTH_AND_THICKNESS": ("rho_vs_si_width_thickness", _THICKNESS_AXIS),
}

# table name -> (owner field, column names)
_CONDUCTOR_PIECEWISE = {
    "CRT_VS_SI_WIDTH": ("crt_vs_si_width", ("WIDTH", "CRT1", "CRT2")),
}
_VIA_PIECEWISE = {
    "RPV_VS_AREA": ("rpv_vs_area", ("AREA", "RPV")),
    "CRT_VS_AREA": ("crt_vs_area", ("AREA", "CRT1", "CRT2")),
}

_CONDUCTOR_KEYS = frozenset({"THICKNESS", "RPSQ", "CRT1", "CRT2", "WMIN", "SMIN", "SIDE_TANGENT"})
_DIELECTRIC_KEYS = frozenset({"THICKNESS", "ER", "CRT1", "MEASURED_FROM", "SW_T", "TW_T"})
_VIA_KEYS = frozenset({"FROM", "TO", "AREA", "RPV", "CRT1", "CRT2"})


# ---------- Helpers ----------
class _BlockReader:
    """
    Typed access to the assignments and tables of one block.

    Every failed lookup is recorded in the shared collector and flips ``ok``,
    which tells the caller to leave the block out of the draft.
    """

    def __init__(self, block: BlockNode, errors: ErrorCollector, options: ParseOptions):
        self.block = block
        self.errors = errors
        self.options = options
        self.ok = True
        self.values: Dict[str, AssignmentNode] = {}
        self.tables: Dict[str, TableNode] = {}
        for entry in block.entries:
            target = self.values if isinstance(entry, AssignmentNode) else self.tables
            key = (entry.key if isinstance(entry, AssignmentNode) else entry.name).upper()
            if key in target:
                # later keys override earlier ones
                logger.warning("%s: %s given more than once (line %d); using the last value",
                               self.owner, key, entry.loc[0])
            target[key] = entry

    @property
    def owner(self) -> str:
        return f"{self.block.keyword.upper()} {self.block.name}"

    def fail(self, kind: ErrorKind, loc: Loc, message: str, subject: Optional[str] = None) -> None:
        self.ok = False
        self.errors.add(kind, loc, message, subject=subject)

    def _node(self, key: str, required: bool) -> Optional[AssignmentNode]:
        node = self.values.get(key)
        if node is None and required:
            self.fail(ErrorKind.MISSING_FIELD, self.block.loc,
                      f"{self.owner} is missing required field {key}", subject=key)
        return node

    def number(self, key: str, required: bool = False) -> Optional[float]:
        node = self._node(key, required)
        if node is None:
            return None
        value = _as_number(node.value)
        if value is None:
            self.fail(ErrorKind.TYPE_MISMATCH, node.value.loc,
                      f"{key} of {self.owner} expects a number, got '{node.value.text}'", subject=key)
        return value

    def text(self, key: str, required: bool = False) -> Optional[str]:
        node = self._node(key, required)
        return node.value.text if node is not None else None

    def extras(self, known: frozenset) -> Extras:
        out = []
        for key, node in self.values.items():
            if key in known:
                continue
            if not self.options.retain_unknown_keys:
                self.fail(ErrorKind.SYNTAX_ERROR, node.loc,
                          f"unknown key {node.key} in {self.owner}", subject=node.key)
                continue
            out.append((node.key, node.value.text))
        return tuple(out)


def _as_number(value: ValueNode) -> Optional[float]:
    if value.kind != "NUMBER":
        return None
    return float(value.text)


def _flatten(section: GridSection) -> Tuple[float, ...]:
    # an axis may be wrapped over several source lines
    return tuple(chain.from_iterable(section.rows))


def _grid_table(table: TableNode, second_axis: Tuple[str, ...], reader: _BlockReader) -> Optional[LookupTable]:
    """Bind a generic grid to width and spacing (or thickness) axes; shape is checked later."""
    sections = {
        _WIDTH_AXIS[0]: table.section(*_WIDTH_AXIS),
        second_axis[0]: table.section(*second_axis),
        "VALUES": table.section("VALUES"),
    }
    missing = [label for label, sec in sections.items() if sec is None]
    for label in missing:
        reader.fail(ErrorKind.MISSING_FIELD, table.loc,
                    f"table {table.name} in {reader.owner} has no {label} section", subject=label)
    if missing:
        return None
    return LookupTable(
        widths=_flatten(sections[_WIDTH_AXIS[0]]),
        spacings=_flatten(sections[second_axis[0]]),
        values=tuple(tuple(row) for row in sections["VALUES"].rows),
        spacing_axis="SPACING" if second_axis is _SPACING_AXIS else "THICKNESS",
        modifiers=tuple(m.upper() for m in table.modifiers),
        loc=table.loc,
    )


def _piecewise_table(table: TableNode, columns: Tuple[str, ...], reader: _BlockReader) -> Optional[PiecewiseTable]:
    rows = [tuple(row) for sec in table.sections if sec.label is None for row in sec.rows]
    if not rows:
        reader.fail(ErrorKind.MISSING_FIELD, table.loc,
                    f"table {table.name} in {reader.owner} has no rows", subject=table.name)
        return None
    return PiecewiseTable(columns=columns, rows=tuple(rows), loc=table.loc)


def _raw_table(table: TableNode) -> RawTable:
    return RawTable(
        name=table.name,
        modifiers=tuple(table.modifiers),
        sections=tuple((sec.label, tuple(tuple(r) for r in sec.rows)) for sec in table.sections),
        loc=table.loc,
    )


def _read_tables(reader: _BlockReader, grids: Dict, piecewise: Dict) -> Tuple[Dict, Tuple[RawTable, ...]]:
    fields: Dict = {}
    other: List[RawTable] = []
    for key, table in reader.tables.items():
        if key in grids:
            attr, axis = grids[key]
            fields[attr] = _grid_table(table, axis, reader)
        elif key in piecewise:
            attr, columns = piecewise[key]
            fields[attr] = _piecewise_table(table, columns, reader)
        else:
            other.append(_raw_table(table))
    return fields, tuple(other)


# ---------- per-kind builders ----------
def _build_dielectric(reader: _BlockReader) -> DielectricLayer:
    _, other = _read_tables(reader, {}, {})
    return DielectricLayer(
        name=reader.block.name,
        thickness=reader.number("THICKNESS", required=True),
        er=reader.number("ER", required=True),
        crt1=reader.number("CRT1"),
        measured_from=reader.text("MEASURED_FROM"),
        sw_t=reader.number("SW_T"),
        tw_t=reader.number("TW_T"),
        other_tables=other,
        extras=reader.extras(_DIELECTRIC_KEYS),
        loc=reader.block.loc,
    )


def _build_conductor(reader: _BlockReader) -> ConductorLayer:
    tables, other = _read_tables(reader, _CONDUCTOR_GRIDS, _CONDUCTOR_PIECEWISE)
    # a resistivity table stands in for the scalar sheet resistance
    has_rho_table = "RHO_VS_WIDTH_AND_SPACING" in reader.tables or "RHO_VS_SI_WIDTH_AND_THICKNESS" in reader.tables
    return ConductorLayer(
        name=reader.block.name,
        thickness=reader.number("THICKNESS", required=True),
        rpsq=reader.number("RPSQ", required=not has_rho_table),
        crt1=reader.number("CRT1"),
        crt2=reader.number("CRT2"),
        wmin=reader.number("WMIN"),
        smin=reader.number("SMIN"),
        side_tangent=reader.number("SIDE_TANGENT"),
        other_tables=other,
        extras=reader.extras(_CONDUCTOR_KEYS),
        loc=reader.block.loc,
        **tables,
    )


def _build_via(reader: _BlockReader) -> Via:
    tables, other = _read_tables(reader, {}, _VIA_PIECEWISE)
    scalar_required = "RPV_VS_AREA" not in reader.tables
    return Via(
        name=reader.block.name,
        from_layer=reader.text("FROM", required=True),
        to_layer=reader.text("TO", required=True),
        area=reader.number("AREA", required=scalar_required),
        rpv=reader.number("RPV", required=scalar_required),
        crt1=reader.number("CRT1"),
        crt2=reader.number("CRT2"),
        other_tables=other,
        extras=reader.extras(_VIA_KEYS),
        loc=reader.block.loc,
        **tables,
    )


_BUILDERS: Dict[str, Callable[[_BlockReader], object]] = {
    "DIELECTRIC": _build_dielectric,
    "CONDUCTOR": _build_conductor,
    "VIA": _build_via,
}


# ---------- technology ----------
def _build_technology(assignments: Dict[str, AssignmentNode], errors: ErrorCollector,
                      options: ParseOptions) -> TechnologyParameters:
    def number(key: str) -> Optional[float]:
        node = assignments.get(key)
        if node is None:
            return None
        value = _as_number(node.value)
        if value is None:
            errors.add(ErrorKind.TYPE_MISMATCH, node.value.loc,
                       f"{key} expects a number, got '{node.value.text}'", subject=key)
        return value

    def choice(key: str, allowed: Dict[str, object]):
        node = assignments.get(key)
        if node is None:
            return None
        value = allowed.get(node.value.text.upper())
        if value is None:
            errors.add(ErrorKind.TYPE_MISMATCH, node.value.loc,
                       f"{key} expects one of {', '.join(allowed)}, got '{node.value.text}'", subject=key)
        return value

    name_node = assignments.get("TECHNOLOGY")
    if name_node is not None:
        name = name_node.value.text
    elif options.default_technology is not None:
        name = options.default_technology
    else:
        name = ""
        errors.add(ErrorKind.MISSING_FIELD, (1, 1), "document is missing required field TECHNOLOGY",
                   subject="TECHNOLOGY")

    return TechnologyParameters(
        name=name,
        global_temperature=number("GLOBAL_TEMPERATURE"),
        reference_direction=choice("REFERENCE_DIRECTION", {d.value: d for d in ReferenceDirection}),
        background_er=number("BACKGROUND_ER"),
        half_node_scale_factor=number("HALF_NODE_SCALE_FACTOR"),
        use_si_density=choice("USE_SI_DENSITY", {"YES": True, "NO": False}),
        drop_factor_lateral_spacing=number("DROP_FACTOR_LATERAL_SPACING"),
        extras=tuple((node.key, node.value.text) for key, node in assignments.items()
                     if key not in TECHNOLOGY_KEYS),
    )


# ---------- Public API ----------
def build(tree: ParseTree, options: Optional[ParseOptions] = None) -> Tuple[DraftStack, List[ItfError]]:
    """
    Turn parse-tree statements into typed entities.

    A block with a missing or mistyped field is reported and left out of the
    draft; the rest of the document is still built.
    """
    options = options or DEFAULT_OPTIONS
    errors = ErrorCollector()
    top: Dict[str, AssignmentNode] = {}
    layers: List = []
    vias: List[Via] = []
    # layers left out of the draft, seeded with those the parser already dropped
    omitted: List[Tuple[str, Loc]] = list(tree.dropped_layers)
    last_block: Optional[str] = None  # keyword of the previous block statement
    last_block_built = False

    for stmt in tree.statements:
        if isinstance(stmt, AssignmentNode):
            key = stmt.key.upper()
            if key in top:
                logger.warning("%s given more than once (line %d); using the last value", key, stmt.loc[0])
            top[key] = stmt
        elif isinstance(stmt, BlockNode):
            keyword = stmt.keyword.upper()
            reader = _BlockReader(stmt, errors, options)
            entity = _BUILDERS[keyword](reader)
            last_block, last_block_built = keyword, reader.ok
            if not reader.ok:
                logger.debug("omitting %s", reader.owner)
                if keyword != "VIA":
                    omitted.append((stmt.name, stmt.loc))
                continue
            (vias if keyword == "VIA" else layers).append(entity)
        else:
            _attach_orphan_table(stmt, last_block, last_block_built, layers, errors)

    technology = _build_technology(top, errors, options)
    draft = DraftStack(technology=technology, layers=layers, vias=vias, omitted_layers=omitted)
    logger.debug("built %d layers and %d vias with %d errors", len(layers), len(vias), len(errors))
    return draft, errors.errors


def _attach_orphan_table(table: TableNode, last_block: Optional[str], last_block_built: bool,
                         layers: List, errors: ErrorCollector) -> None:
    key = table.name.upper()
    if key not in _CONDUCTOR_PIECEWISE or last_block != "CONDUCTOR":
        errors.add(ErrorKind.SYNTAX_ERROR, table.loc,
                   f"table {table.name} must appear inside a CONDUCTOR block", subject=table.name)
        return
    if not last_block_built:
        # the conductor was already reported and dropped
        return
    conductor = layers[-1]
    attr, columns = _CONDUCTOR_PIECEWISE[key]
    rows = tuple(tuple(row) for sec in table.sections if sec.label is None for row in sec.rows)
    if not rows:
        errors.add(ErrorKind.MISSING_FIELD, table.loc, f"table {table.name} has no rows", subject=table.name)
        return
    layers[-1] = dataclasses.replace(conductor, **{attr: PiecewiseTable(columns, rows, loc=table.loc)})
    logger.warning("attaching stray %s table to conductor '%s'", table.name, conductor.name)
