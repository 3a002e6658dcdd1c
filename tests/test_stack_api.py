#!/usr/bin/env python3
"""
End-to-end tests through parse_from_text / parse_from_source, and the
query API of a validated stack
"""

import unittest
import sys
import os
from concurrent.futures import ThreadPoolExecutor
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from itfstack.api import parse_from_source, parse_from_text
from itfstack.config import ParseOptions
from itfstack.errors import ErrorKind, StackParseError
from itfstack.stack import ConductorLayer, DielectricLayer, Via, ViaType
from itfstack.summary import ProcessSummary


DEMO = """TECHNOLOGY = demo
GLOBAL_TEMPERATURE = 25.0
DIELECTRIC ild1 {THICKNESS=1.0 ER=4.2}
CONDUCTOR m1 {THICKNESS=0.5 RPSQ=0.1}
VIA v1 {FROM=ild1 TO=m1 AREA=0.01 RPV=1.0}
"""

BEOL = """
$ three metal stack, declared bottom up
TECHNOLOGY = beol_3m
GLOBAL_TEMPERATURE = 25.0
REFERENCE_DIRECTION = VERTICAL
DIELECTRIC fox   { THICKNESS = 0.35 ER = 3.9 }
CONDUCTOR metal1 { THICKNESS = 0.20 RPSQ = 0.12 }
DIELECTRIC imd1  { THICKNESS = 0.30 ER = 2.9 }
CONDUCTOR metal2 { THICKNESS = 0.25 RPSQ = 0.08 }
DIELECTRIC imd2  { THICKNESS = 0.30 ER = 2.9 }
CONDUCTOR metal3 { THICKNESS = 0.80 RPSQ = 0.03 }
VIA via1 { FROM = metal1 TO = metal2 AREA = 0.01 RPV = 2.5 }
VIA via2 { FROM = metal2 TO = metal3 AREA = 0.04 RPV = 0.8 }
"""


class TestParseFromText(unittest.TestCase):

    def test_demo_stack(self):
        result = parse_from_text(DEMO)
        self.assertTrue(result.ok)
        self.assertEqual(result.errors, ())
        stack = result.stack
        self.assertEqual(len(stack.layers()), 2)
        self.assertEqual(len(stack.vias()), 1)
        summary = stack.get_process_summary()
        self.assertIsInstance(summary, ProcessSummary)
        self.assertEqual(summary.technology_name, "demo")
        self.assertEqual(summary.total_layers, 2)
        self.assertEqual(summary.conductor_layers, 1)
        self.assertEqual(summary.dielectric_layers, 1)
        self.assertEqual(summary.via_count, 1)
        self.assertEqual(summary.total_height, 1.5)
        self.assertEqual(summary.global_temperature, 25.0)

    def test_dangling_reference_yields_no_stack(self):
        result = parse_from_text(DEMO.replace("TO=m1", "TO=m2"))
        self.assertFalse(result.ok)
        self.assertIsNone(result.stack)
        self.assertEqual([e.kind for e in result.errors], [ErrorKind.DANGLING_VIA_REFERENCE])
        self.assertEqual(result.errors[0].subject, "m2")

    def test_missing_rpsq(self):
        result = parse_from_text(DEMO.replace("CONDUCTOR m1 {THICKNESS=0.5 RPSQ=0.1}", "CONDUCTOR m1 {THICKNESS=0.5}"))
        self.assertIsNone(result.stack)
        self.assertEqual(len(result.errors), 1)
        err = result.errors[0]
        self.assertEqual((err.kind, err.subject), (ErrorKind.MISSING_FIELD, "RPSQ"))
        self.assertEqual(err.line, 4)

    def test_duplicate_layer(self):
        result = parse_from_text(DEMO.replace("CONDUCTOR m1", "CONDUCTOR ild1").replace("TO=m1", "TO=ild1"))
        self.assertIsNone(result.stack)
        duplicates = [e for e in result.errors if e.kind is ErrorKind.DUPLICATE_LAYER]
        self.assertEqual(len(duplicates), 1)
        self.assertIn("line 3", duplicates[0].message)
        self.assertEqual(duplicates[0].line, 4)

    def test_errors_from_every_stage(self):
        """Syntax, build and validation problems all show up in one list"""
        text = """TECHNOLOGY = mixed
DIELECTRIC d1 { THICKNESS = 1 ER = }
CONDUCTOR m1 { THICKNESS = 0.5 }
CONDUCTOR m2 { THICKNESS = 0.5 RPSQ = 0.1 }
CONDUCTOR m2 { THICKNESS = 0.5 RPSQ = 0.1 }
VIA v1 { FROM = m2 TO = m9 AREA = 1 RPV = 1 }
"""
        result = parse_from_text(text)
        self.assertIsNone(result.stack)
        self.assertEqual([e.kind for e in result.errors], [
            ErrorKind.SYNTAX_ERROR,
            ErrorKind.MISSING_FIELD,
            ErrorKind.DUPLICATE_LAYER,
            ErrorKind.DANGLING_VIA_REFERENCE,
        ])

    def test_failed_layer_clashes_with_later_layer(self):
        result = parse_from_text("TECHNOLOGY = t\nCONDUCTOR m1 {THICKNESS=0.5}\nDIELECTRIC m1 { THICKNESS = 1 ER = 4 }")
        self.assertIsNone(result.stack)
        self.assertEqual([e.kind for e in result.errors], [ErrorKind.MISSING_FIELD, ErrorKind.DUPLICATE_LAYER])
        duplicate = result.errors[1]
        self.assertEqual(duplicate.line, 3)
        self.assertIn("line 2", duplicate.message)

    def test_via_to_unparsable_layer_is_not_dangling(self):
        """A via naming a layer that failed to parse only reports the syntax error"""
        text = """TECHNOLOGY = t
DIELECTRIC d1 { THICKNESS = 1 ER = }
CONDUCTOR m1 { THICKNESS = 0.5 RPSQ = 0.1 }
VIA v1 { FROM = d1 TO = m1 AREA = 0.01 RPV = 1 }
"""
        result = parse_from_text(text)
        self.assertIsNone(result.stack)
        self.assertEqual([e.kind for e in result.errors], [ErrorKind.SYNTAX_ERROR])
        self.assertEqual(result.errors[0].line, 2)

    def test_technology_defaults_when_absent(self):
        stack = parse_from_text("DIELECTRIC d1 { THICKNESS = 1 ER = 4 }").unwrap()
        self.assertEqual(stack.technology.name, "unknown_technology")

    def test_idempotent(self):
        first = parse_from_text(BEOL).unwrap()
        second = parse_from_text(BEOL).unwrap()
        self.assertEqual(first, second)
        self.assertEqual(first.layers(), second.layers())

    def test_unwrap_raises_with_report(self):
        result = parse_from_text("TECHNOLOGY = t\nCONDUCTOR m1 { THICKNESS = 0.5 }\n")
        with self.assertRaises(StackParseError) as ctx:
            result.unwrap()
        self.assertEqual(len(ctx.exception.errors), 1)
        report = str(ctx.exception)
        self.assertIn("MissingField at line 2, column 1", report)
        self.assertIn("CONDUCTOR m1 { THICKNESS = 0.5 }", report)
        self.assertIn("    ^", report)

    def test_options_are_applied(self):
        result = parse_from_text("DIELECTRIC d1 { THICKNESS = 1 ER = 4 }", ParseOptions(default_technology="fallback"))
        self.assertEqual(result.unwrap().technology.name, "fallback")


class TestParseFromSource(unittest.TestCase):

    def test_bytes_with_bom(self):
        result = parse_from_source(b"\xef\xbb\xbf" + DEMO.encode("utf-8"))
        self.assertTrue(result.ok)
        self.assertEqual(result.stack.technology.name, "demo")

    def test_str_passthrough(self):
        self.assertTrue(parse_from_source(DEMO).ok)

    def test_undecodable_bytes(self):
        result = parse_from_source(b"TECHNOLOGY = x\nAB\xff\n")
        self.assertIsNone(result.stack)
        self.assertEqual(len(result.errors), 1)
        err = result.errors[0]
        self.assertEqual(err.kind, ErrorKind.LEX_ERROR)
        self.assertEqual((err.line, err.column), (2, 3))

    def test_custom_encoding(self):
        text = DEMO.replace("demo", "\"démo\"")
        result = parse_from_source(text.encode("latin-1"), ParseOptions(encoding="latin-1"))
        self.assertEqual(result.unwrap().technology.name, "démo")


class TestStackQueries(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.stack = parse_from_text(BEOL).unwrap()

    def test_declaration_order(self):
        self.assertEqual([layer.name for layer in self.stack.layers()],
                         ["fox", "metal1", "imd1", "metal2", "imd2", "metal3"])

    def test_find_layer(self):
        metal2 = self.stack.find_layer("metal2")
        self.assertIsInstance(metal2, ConductorLayer)
        self.assertEqual(metal2.rpsq, 0.08)
        self.assertIsNone(self.stack.find_layer("metal9"))

    def test_layers_by_kind(self):
        self.assertEqual([c.name for c in self.stack.conductors()], ["metal1", "metal2", "metal3"])
        self.assertTrue(all(isinstance(d, DielectricLayer) for d in self.stack.dielectrics()))
        self.assertEqual(len(self.stack.dielectrics()), 3)

    def test_vias(self):
        self.assertEqual([v.name for v in self.stack.vias_for_layer("metal2")], ["via1", "via2"])
        self.assertEqual(self.stack.via_between("metal3", "metal2").name, "via2")
        self.assertIsNone(self.stack.via_between("metal1", "metal3"))
        self.assertAlmostEqual(self.stack.vias()[0].resistance(4), 0.625)

    def test_layer_bounds(self):
        bottom, top = self.stack.layer_bounds("metal1")
        self.assertAlmostEqual(bottom, 0.35)
        self.assertAlmostEqual(top, 0.55)
        self.assertIsNone(self.stack.layer_bounds("nope"))

    def test_summary_height_is_sum_in_order(self):
        expected = 0.0
        for layer in self.stack.layers():
            expected += layer.thickness
        self.assertEqual(self.stack.get_process_summary().total_height, expected)

    def test_stack_is_read_only(self):
        with self.assertRaises(AttributeError):
            self.stack.technology = None
        self.assertIsInstance(self.stack.layers(), tuple)

    def test_metal_layers(self):
        self.assertEqual([m.name for m in self.stack.metal_layers()], ["metal1", "metal2", "metal3"])
        summary = self.stack.get_process_summary()
        self.assertEqual(summary.metal_layers, 3)
        self.assertEqual(summary.poly_layers, 0)

    def test_layers_in_z_range(self):
        self.assertEqual([layer.name for layer in self.stack.layers_in_z_range(0.5, 0.9)],
                         ["metal1", "imd1", "metal2"])
        # fox ends exactly where metal1 starts; touching is not overlapping
        self.assertEqual([layer.name for layer in self.stack.layers_in_z_range(0.0, 0.35)], ["fox"])
        self.assertEqual(self.stack.layers_in_z_range(5.0, 6.0), [])

    def test_connection_path(self):
        self.assertEqual([v.name for v in self.stack.connection_path("metal1", "metal3")], ["via1", "via2"])
        self.assertEqual([v.name for v in self.stack.connection_path("metal3", "metal1")], ["via2", "via1"])
        self.assertEqual(self.stack.connection_path("metal2", "metal2"), [])
        self.assertIsNone(self.stack.connection_path("fox", "metal1"))
        self.assertIsNone(self.stack.connection_path("metal1", "metal9"))


class TestViaClassification(unittest.TestCase):

    FEOL = """TECHNOLOGY = feol
DIELECTRIC SUBSTRATE_OX { THICKNESS = 0.3 ER = 3.9 }
CONDUCTOR poly    { THICKNESS = 0.2 RPSQ = 8.0 }
CONDUCTOR metal1  { THICKNESS = 0.2 RPSQ = 0.1 }
CONDUCTOR ALPA    { THICKNESS = 1.0 RPSQ = 0.02 }
CONDUCTOR rdl     { THICKNESS = 3.0 RPSQ = 0.005 }
VIA pcont { FROM = poly TO = metal1 AREA = 0.01 RPV = 20 }
VIA via1  { FROM = metal1 TO = ALPA AREA = 0.04 RPV = 1 }
VIA pad   { FROM = ALPA TO = rdl AREA = 1 RPV = 0.1 }
VIA sub   { FROM = SUBSTRATE_OX TO = rdl AREA = 1 RPV = 0.1 }
"""

    def test_via_types(self):
        stack = parse_from_text(self.FEOL).unwrap()
        types = {v.name: v.via_type for v in stack.vias()}
        self.assertEqual(types, {
            "pcont": ViaType.CONTACT,
            "via1": ViaType.METAL,
            "pad": ViaType.OTHER,
            "sub": ViaType.CONTACT,
        })

    def test_contact_check_wins(self):
        via = Via(name="v", from_layer="metal_poly", to_layer="metal1")
        self.assertTrue(via.is_metal_via)
        self.assertTrue(via.is_contact_via)
        self.assertEqual(via.via_type, ViaType.CONTACT)

    def test_summary_counts_metal_and_poly(self):
        summary = parse_from_text(self.FEOL).unwrap().get_process_summary()
        self.assertEqual(summary.metal_layers, 2)
        self.assertEqual(summary.poly_layers, 1)
        self.assertEqual(summary.conductor_layers, 4)

    def test_path_through_several_vias(self):
        stack = parse_from_text(self.FEOL).unwrap()
        path = stack.connection_path("poly", "rdl")
        self.assertEqual([v.name for v in path], ["pcont", "via1", "pad"])


class TestConcurrentParsing(unittest.TestCase):

    def test_threads_match_sequential_results(self):
        """Parsing from many threads at once gives the same results as one at a time"""
        documents = [
            BEOL,
            DEMO,
            DEMO.replace("TO=m1", "TO=m2"),
            "TECHNOLOGY = t\nDIELECTRIC d1 { THICKNESS = 1 ER = }\nCONDUCTOR m1 { THICKNESS = 0.5 }\n",
            TestViaClassification.FEOL,
        ] * 6
        expected = [parse_from_text(doc) for doc in documents]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(parse_from_text, documents))
        self.assertEqual(len(results), len(expected))
        for got, want in zip(results, expected):
            self.assertEqual(got.stack, want.stack)
            self.assertEqual(got.errors, want.errors)
        self.assertTrue(results[0].ok)
        self.assertFalse(results[3].ok)


if __name__ == '__main__':
    unittest.main()
