#!/usr/bin/env python3
"""
Demonstration of the ITF stack parser
Parses a few interconnect process stacks and prints their summaries
"""

import logging
import os
import sys
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from itfstack.api import parse_from_text
from itfstack.errors import format_error
from itfstack.stack import ConductorLayer


def demonstrate_stack(name, itf_text):
    """Parse and display information about a process stack"""
    print(f"\n{'=' * 60}")
    print(f"🧱 {name.upper()}")
    print('=' * 60)

    result = parse_from_text(itf_text)
    if not result.ok:
        print(f"❌ {len(result.errors)} error(s):")
        for err in result.errors:
            print("  " + format_error(err, itf_text).replace("\n", "\n  "))
        return

    stack = result.stack
    summary = stack.get_process_summary()
    print(f"✅ Successfully parsed technology '{summary.technology_name}'")
    print(f"📊 Layers: {summary.total_layers} "
          f"({summary.conductor_layers} conductor, {summary.dielectric_layers} dielectric)")
    print(f"🔩 Metal layers: {summary.metal_layers}, poly layers: {summary.poly_layers}")
    print(f"🔗 Vias: {summary.via_count}")
    print(f"📏 Total height: {summary.total_height:.4f} um")

    print("\n📋 Layers, bottom to top:")
    for layer in stack.layers():
        bottom, top = stack.layer_bounds(layer.name)
        detail = f"RPSQ={layer.rpsq}" if isinstance(layer, ConductorLayer) else f"ER={layer.er}"
        print(f"  {layer.name:10} {layer.kind.value:10} {bottom:7.3f} .. {top:7.3f}  {detail}")

    for via in stack.vias():
        print(f"  via {via.name:6} {via.from_layer} -> {via.to_layer}  RPV={via.rpv}  [{via.via_type.value.lower()}]")

    metals = stack.metal_layers()
    if len(metals) > 1:
        path = stack.connection_path(metals[0].name, metals[-1].name)
        if path:
            print(f"\n🧭 {metals[0].name} to {metals[-1].name}: " + " -> ".join(v.name for v in path))

    for conductor in stack.conductors():
        if conductor.rho_vs_width_spacing is not None:
            rho = conductor.rho_vs_width_spacing.lookup(0.15, 0.15)
            print(f"\n🔧 {conductor.name}: rho at w=0.15, s=0.15 is {rho:.5f}")


def main():
    """Parse a clean stack and one with mistakes"""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("🌟 ITF PROCESS STACK SHOWCASE")

    # 1. Minimal two-layer stack
    minimal = """
TECHNOLOGY = demo
GLOBAL_TEMPERATURE = 25.0
DIELECTRIC ild1 {THICKNESS=1.0 ER=4.2}
CONDUCTOR m1 {THICKNESS=0.5 RPSQ=0.1}
VIA v1 {FROM=ild1 TO=m1 AREA=0.01 RPV=1.0}
    """

    # 2. Back-end stack with a resistivity table and an etch profile
    beol = """
$ two metal back-end-of-line stack
TECHNOLOGY = beol_2m
GLOBAL_TEMPERATURE = 25.0
REFERENCE_DIRECTION = VERTICAL
BACKGROUND_ER = 4.0

DIELECTRIC imd2 { THICKNESS = 0.30 ER = 2.9 }
CONDUCTOR metal2 {
    THICKNESS = 0.25  WMIN = 0.1  SMIN = 0.1  SIDE_TANGENT = 0.05
    CRT1 = 3.0e-3  CRT2 = -1.0e-7
    RHO_VS_WIDTH_AND_SPACING {
        WIDTHS   { 0.1 0.2 }
        SPACINGS { 0.1 0.2 }
        VALUES   { 0.040 0.035
                   0.038 0.033 }
    }
}
DIELECTRIC imd1 { THICKNESS = 0.30 ER = 2.9 }
CONDUCTOR metal1 { THICKNESS = 0.20 RPSQ = 0.12 }
DIELECTRIC ild { THICKNESS = 0.40 ER = 4.1 }
VIA via1 { FROM = metal1 TO = metal2 AREA = 0.01 RPV = 2.5 }
    """

    # 3. A stack with mistakes, to show error reporting
    broken = """
TECHNOLOGY = broken
CONDUCTOR m1 { THICKNESS = 0.5 }
DIELECTRIC d1 { THICKNESS = 1.0 ER = 4.2 }
DIELECTRIC d1 { THICKNESS = 0.2 ER = 3.9 }
VIA v1 { FROM = d1 TO = m2 AREA = 0.01 RPV = 1.0 }
    """

    demonstrate_stack("Minimal stack", minimal)
    demonstrate_stack("Two-metal BEOL stack", beol)
    demonstrate_stack("Stack with mistakes", broken)


if __name__ == '__main__':
    main()
