#!/usr/bin/env python3
"""
Tests for parse options loaded from YAML files
"""

import unittest
import sys
import os
import tempfile
from pathlib import Path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from itfstack.config import DEFAULT_OPTIONS, ParseOptions, load_options, options_from_mapping


class TestLoadOptions(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, text):
        path = self.dir / "options.yaml"
        path.write_text(text, encoding="utf-8")
        return path

    def test_full_file(self):
        opts = load_options(self.write("encoding: latin-1\ndefault_technology: generic\nretain_unknown_keys: false\n"))
        self.assertEqual(opts, ParseOptions(encoding="latin-1", default_technology="generic",
                                            retain_unknown_keys=False))

    def test_empty_file_gives_defaults(self):
        self.assertEqual(load_options(self.write("")), DEFAULT_OPTIONS)

    def test_partial_file(self):
        opts = load_options(self.write("default_technology: 7\n"))
        self.assertEqual(opts.default_technology, "7")
        self.assertEqual(opts.encoding, "utf-8-sig")
        self.assertTrue(opts.retain_unknown_keys)

    def test_default_technology_name(self):
        self.assertEqual(DEFAULT_OPTIONS.default_technology, "unknown_technology")

    def test_null_technology_makes_it_required(self):
        opts = load_options(self.write("default_technology: null\n"))
        self.assertIsNone(opts.default_technology)

    def test_unknown_option(self):
        with self.assertRaises(ValueError) as ctx:
            load_options(self.write("encodng: utf-8\n"))
        self.assertIn("encodng", str(ctx.exception))

    def test_top_level_must_be_mapping(self):
        with self.assertRaises(ValueError):
            load_options(self.write("- encoding\n- utf-8\n"))

    def test_retain_unknown_keys_must_be_bool(self):
        with self.assertRaises(ValueError):
            options_from_mapping({"retain_unknown_keys": "sometimes"})


if __name__ == '__main__':
    unittest.main()
