# itfstack/stack.py
"""
Typed process-stack model.

Entities are frozen dataclasses built only by ``builder.build``. A ``Stack`` is
created by ``validator.validate`` once every cross-entity check has passed, so
code holding a ``Stack`` can rely on unique layer names and resolvable vias.

``Layer`` is a closed union of ``ConductorLayer`` and ``DielectricLayer``;
consumers dispatch with ``isinstance`` and treat anything else as a bug.
"""
from __future__ import annotations

import math
from bisect import bisect_right
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Sequence, Tuple, Union

Loc = Tuple[int, int]
Extras = Tuple[Tuple[str, str], ...]  # unknown KEY = VALUE pairs, in source order


class LayerKind(str, Enum):
    CONDUCTOR = "CONDUCTOR"
    DIELECTRIC = "DIELECTRIC"


class ReferenceDirection(str, Enum):
    VERTICAL = "VERTICAL"
    HORIZONTAL = "HORIZONTAL"


class ViaType(str, Enum):
    CONTACT = "CONTACT"
    METAL = "METAL"
    OTHER = "OTHER"


def _extra(extras: Extras, key: str) -> Optional[str]:
    key = key.upper()
    for k, v in extras:
        if k.upper() == key:
            return v
    return None


# layer naming conventions, matched case-insensitively
_CONTACT_MARKERS = ("diff", "poly", "substrate")
_METAL_PREFIXES = ("metal", "alpa")


def _is_metal_name(name: str) -> bool:
    return name.lower().startswith(_METAL_PREFIXES)


def _interval(axis: Sequence[float], x: float) -> Tuple[int, int, float]:
    """Bracketing indices and interpolation weight for x, clamped to the axis ends."""
    if x <= axis[0]:
        return 0, 0, 0.0
    last = len(axis) - 1
    if x >= axis[last]:
        return last, last, 0.0
    hi = bisect_right(axis, x)
    lo = hi - 1
    span = axis[hi] - axis[lo]
    t = (x - axis[lo]) / span if span else 0.0
    return lo, hi, t


# ---------- tables ----------
@dataclass(frozen=True)
class LookupTable:
    """Width/spacing indexed grid. ``values`` has one row per spacing breakpoint, one column per width."""

    widths: Tuple[float, ...]
    spacings: Tuple[float, ...]
    values: Tuple[Tuple[float, ...], ...]
    spacing_axis: str = "SPACING"  # THICKNESS for RHO_VS_SI_WIDTH_AND_THICKNESS
    modifiers: Tuple[str, ...] = ()
    loc: Loc = field(default=(0, 0), compare=False)

    @property
    def shape(self) -> Tuple[int, Tuple[int, ...]]:
        return len(self.values), tuple(len(row) for row in self.values)

    def has_valid_shape(self) -> bool:
        return (len(self.values) == len(self.spacings)
                and all(len(row) == len(self.widths) for row in self.values))

    def value_at(self, width_index: int, spacing_index: int) -> float:
        return self.values[spacing_index][width_index]

    def lookup(self, width: float, spacing: float) -> Optional[float]:
        """Bilinear interpolation, clamped to the table edges."""
        if not self.widths or not self.spacings or not self.has_valid_shape():
            return None
        w0, w1, wt = _interval(self.widths, width)
        s0, s1, st = _interval(self.spacings, spacing)
        v00, v10 = self.value_at(w0, s0), self.value_at(w1, s0)
        v01, v11 = self.value_at(w0, s1), self.value_at(w1, s1)
        lower = v00 + wt * (v10 - v00)
        upper = v01 + wt * (v11 - v01)
        return lower + st * (upper - lower)


@dataclass(frozen=True)
class PiecewiseTable:
    """
    Rows keyed by their first column, e.g. CRT_VS_SI_WIDTH rows of
    (width, crt1, crt2) or RPV_VS_AREA rows of (area, rpv).
    """

    columns: Tuple[str, ...]
    rows: Tuple[Tuple[float, ...], ...]
    loc: Loc = field(default=(0, 0), compare=False)

    def has_valid_shape(self) -> bool:
        return bool(self.rows) and all(len(row) == len(self.columns) for row in self.rows)

    @property
    def keys(self) -> Tuple[float, ...]:
        return tuple(row[0] for row in self.rows)

    def lookup(self, x: float) -> Optional[Tuple[float, ...]]:
        """Linear interpolation of every non-key column; no extrapolation past the ends."""
        if not self.has_valid_shape():
            return None
        lo, hi, t = _interval(self.keys, x)
        a, b = self.rows[lo], self.rows[hi]
        return tuple(a[i] + t * (b[i] - a[i]) for i in range(1, len(self.columns)))


@dataclass(frozen=True)
class RawTable:
    """Table kept as written because nothing interprets it yet."""

    name: str
    modifiers: Tuple[str, ...]
    sections: Tuple[Tuple[Optional[str], Tuple[Tuple[float, ...], ...]], ...]
    loc: Loc = field(default=(0, 0), compare=False)


# ---------- technology ----------
@dataclass(frozen=True)
class TechnologyParameters:
    name: str
    global_temperature: Optional[float] = None
    reference_direction: Optional[ReferenceDirection] = None
    background_er: Optional[float] = None
    half_node_scale_factor: Optional[float] = None
    use_si_density: Optional[bool] = None
    drop_factor_lateral_spacing: Optional[float] = None
    extras: Extras = ()

    def extra(self, key: str) -> Optional[str]:
        return _extra(self.extras, key)


# ---------- layers ----------
@dataclass(frozen=True)
class ConductorLayer:
    kind: ClassVar[LayerKind] = LayerKind.CONDUCTOR

    name: str
    thickness: float
    rpsq: Optional[float] = None
    crt1: Optional[float] = None
    crt2: Optional[float] = None
    wmin: Optional[float] = None
    smin: Optional[float] = None
    side_tangent: Optional[float] = None
    rho_vs_width_spacing: Optional[LookupTable] = None
    rho_vs_si_width_thickness: Optional[LookupTable] = None
    etch_vs_width_spacing: Optional[LookupTable] = None
    thickness_vs_width_spacing: Optional[LookupTable] = None
    crt_vs_si_width: Optional[PiecewiseTable] = None
    other_tables: Tuple[RawTable, ...] = ()
    extras: Extras = ()
    loc: Loc = field(default=(0, 0), compare=False)

    def lookup_tables(self) -> List[LookupTable]:
        return [t for t in (self.rho_vs_width_spacing, self.rho_vs_si_width_thickness,
                            self.etch_vs_width_spacing, self.thickness_vs_width_spacing)
                if t is not None]

    def piecewise_tables(self) -> List[PiecewiseTable]:
        return [self.crt_vs_si_width] if self.crt_vs_si_width is not None else []

    @property
    def is_trapezoid(self) -> bool:
        return self.side_tangent is not None

    @property
    def trapezoid_angle(self) -> float:
        # SIDE_TANGENT is tan(theta) of the etched sidewall
        return math.atan(self.side_tangent) if self.side_tangent is not None else 0.0

    def extra(self, key: str) -> Optional[str]:
        return _extra(self.extras, key)


@dataclass(frozen=True)
class DielectricLayer:
    kind: ClassVar[LayerKind] = LayerKind.DIELECTRIC

    name: str
    thickness: float
    er: float
    crt1: Optional[float] = None  # temperature coefficient of ER
    measured_from: Optional[str] = None
    sw_t: Optional[float] = None
    tw_t: Optional[float] = None
    other_tables: Tuple[RawTable, ...] = ()
    extras: Extras = ()
    loc: Loc = field(default=(0, 0), compare=False)

    def lookup_tables(self) -> List[LookupTable]:
        return []

    def piecewise_tables(self) -> List[PiecewiseTable]:
        return []

    def extra(self, key: str) -> Optional[str]:
        return _extra(self.extras, key)


Layer = Union[ConductorLayer, DielectricLayer]


# ---------- vias ----------
@dataclass(frozen=True)
class Via:
    name: str
    from_layer: str  # layer name, resolved against the stack, never owned
    to_layer: str
    area: Optional[float] = None  # None only when rpv_vs_area is given
    rpv: Optional[float] = None
    crt1: Optional[float] = None
    crt2: Optional[float] = None
    rpv_vs_area: Optional[PiecewiseTable] = None
    crt_vs_area: Optional[PiecewiseTable] = None
    other_tables: Tuple[RawTable, ...] = ()
    extras: Extras = ()
    loc: Loc = field(default=(0, 0), compare=False)

    def piecewise_tables(self) -> List[PiecewiseTable]:
        return [t for t in (self.rpv_vs_area, self.crt_vs_area) if t is not None]

    def connects(self, a: str, b: str) -> bool:
        return {self.from_layer, self.to_layer} == {a, b}

    def resistance(self, count: int = 1) -> Optional[float]:
        """Resistance of ``count`` identical vias in parallel."""
        if self.rpv is None or count <= 0:
            return None
        return self.rpv / count

    @property
    def is_contact_via(self) -> bool:
        """True when either end is a diffusion, poly or substrate layer."""
        return any(marker in end.lower()
                   for end in (self.from_layer, self.to_layer)
                   for marker in _CONTACT_MARKERS)

    @property
    def is_metal_via(self) -> bool:
        return _is_metal_name(self.from_layer) and _is_metal_name(self.to_layer)

    @property
    def via_type(self) -> ViaType:
        # contact wins over metal when both match
        if self.is_contact_via:
            return ViaType.CONTACT
        if self.is_metal_via:
            return ViaType.METAL
        return ViaType.OTHER

    def other_end(self, name: str) -> str:
        return self.to_layer if name == self.from_layer else self.from_layer

    def extra(self, key: str) -> Optional[str]:
        return _extra(self.extras, key)


# ---------- aggregates ----------
@dataclass
class DraftStack:
    """Builder output: typed but not yet cross-checked."""

    technology: TechnologyParameters
    layers: List[Layer] = field(default_factory=list)
    vias: List[Via] = field(default_factory=list)
    # (name, loc) of layers dropped by the parser or builder; they still take part
    # in the name-uniqueness check, and vias naming them are not reported again
    omitted_layers: List[Tuple[str, Loc]] = field(default_factory=list)


@dataclass(frozen=True)
class Stack:
    """Validated, read-only process stack. Layer order is declaration order."""

    technology: TechnologyParameters
    _layers: Tuple[Layer, ...]
    _vias: Tuple[Via, ...]
    _index: Dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {layer.name: i for i, layer in enumerate(self._layers)})

    def layers(self) -> Tuple[Layer, ...]:
        return self._layers

    def vias(self) -> Tuple[Via, ...]:
        return self._vias

    def find_layer(self, name: str) -> Optional[Layer]:
        i = self._index.get(name)
        return self._layers[i] if i is not None else None

    def conductors(self) -> List[ConductorLayer]:
        return [layer for layer in self._layers if isinstance(layer, ConductorLayer)]

    def dielectrics(self) -> List[DielectricLayer]:
        return [layer for layer in self._layers if isinstance(layer, DielectricLayer)]

    def vias_for_layer(self, name: str) -> List[Via]:
        return [v for v in self._vias if name in (v.from_layer, v.to_layer)]

    def via_between(self, a: str, b: str) -> Optional[Via]:
        for v in self._vias:
            if v.connects(a, b):
                return v
        return None

    def layer_bounds(self, name: str) -> Optional[Tuple[float, float]]:
        """(bottom, top) elevation, stacking from the first declared layer at 0."""
        i = self._index.get(name)
        if i is None:
            return None
        bottom = 0.0
        for layer in self._layers[:i]:
            bottom += layer.thickness
        return bottom, bottom + self._layers[i].thickness

    def layers_in_z_range(self, z_min: float, z_max: float) -> List[Layer]:
        """Layers overlapping the open interval (z_min, z_max); touching an end does not count."""
        found = []
        bottom = 0.0
        for layer in self._layers:
            top = bottom + layer.thickness
            if bottom < z_max and top > z_min:
                found.append(layer)
            bottom = top
        return found

    def metal_layers(self) -> List[ConductorLayer]:
        return [c for c in self.conductors() if _is_metal_name(c.name)]

    def connection_path(self, start: str, end: str) -> Optional[List[Via]]:
        """
        Fewest vias leading from one layer to another, walking vias in either
        direction. Returns [] when start == end and None when no path exists.
        """
        if start == end:
            return []
        parent: Dict[str, Tuple[Via, str]] = {}
        seen = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            if current == end:
                path = []
                while current in parent:
                    via, current = parent[current]
                    path.append(via)
                path.reverse()
                return path
            for via in self.vias_for_layer(current):
                nxt = via.other_end(current)
                if nxt not in seen:
                    seen.add(nxt)
                    parent[nxt] = (via, current)
                    queue.append(nxt)
        return None

    def get_process_summary(self):
        from .summary import summarize

        return summarize(self)
