"""tests for pulling json out of noisy model and tool output"""

import os
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "src"))
os.environ.setdefault("HCS_AUDIT_SKIP_VALIDATION", "1")

from utils.json_sanitizer import (  # noqa: E402
    clean_tool_output,
    coerce_json_object,
    extract_json_span,
    try_parse_json,
)


class TestJsonSanitizer(unittest.TestCase):

    def test_tool_banner_is_dropped(self):
        stdout = 'Compiling...\nINFO:Detectors:\n{"success": true, "results": {}}\nDone.'
        self.assertEqual(clean_tool_output(stdout), '{"success": true, "results": {}}')
        self.assertEqual(clean_tool_output("  plain text  "), "plain text")

    def test_extract_span(self):
        self.assertIsNone(extract_json_span("no braces"))
        self.assertIsNone(extract_json_span("} backwards {"))
        self.assertEqual(extract_json_span('x {"a": {"b": 1}} y'), '{"a": {"b": 1}}')

    def test_try_parse(self):
        self.assertEqual(try_parse_json('noise {"a": 1}'), {"a": 1})
        self.assertIsNone(try_parse_json("{broken"))

    def test_coerce_fenced_object_with_trailing_comma(self):
        text = 'Here is the report:\n```json\n{"score": 80, "findings": [1, 2,],}\n```'
        self.assertEqual(coerce_json_object(text), {"score": 80, "findings": [1, 2]})

    def test_coerce_rejects_non_objects(self):
        self.assertEqual(coerce_json_object({"a": 1}), {"a": 1})
        self.assertIsNone(coerce_json_object(["a"]))
        self.assertIsNone(coerce_json_object("[1, 2]"))
        self.assertIsNone(coerce_json_object(None))


if __name__ == "__main__":
    unittest.main()
