# itfstack/summary.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .stack import ConductorLayer, DielectricLayer, Stack


@dataclass(frozen=True)
class ProcessSummary:
    technology_name: str
    total_layers: int
    conductor_layers: int
    dielectric_layers: int
    metal_layers: int
    poly_layers: int
    via_count: int
    total_height: float
    global_temperature: Optional[float] = None


def summarize(stack: Stack) -> ProcessSummary:
    """Aggregate counts and total height of an already validated stack."""
    conductors = dielectrics = 0
    total_height = 0.0
    # plain running sum in declaration order, so the result is reproducible
    for layer in stack.layers():
        total_height += layer.thickness
        if isinstance(layer, ConductorLayer):
            conductors += 1
        elif isinstance(layer, DielectricLayer):
            dielectrics += 1
        else:
            raise TypeError(f"unexpected layer type {type(layer).__name__}")

    return ProcessSummary(
        technology_name=stack.technology.name,
        total_layers=len(stack.layers()),
        conductor_layers=conductors,
        dielectric_layers=dielectrics,
        metal_layers=len(stack.metal_layers()),
        poly_layers=sum(1 for layer in stack.layers() if "poly" in layer.name.lower()),
        via_count=len(stack.vias()),
        total_height=total_height,
        global_temperature=stack.technology.global_temperature,
    )
