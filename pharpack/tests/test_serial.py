from __future__ import annotations

import math
import unittest

from pharpack import serial
from pharpack.errors import FormatError


class SerialTests(unittest.TestCase):
    def test_php_wire_forms(self):
        self.assertEqual(serial.dumps(None), b"")
        self.assertEqual(serial.dumps(True), b"b:1;")
        self.assertEqual(serial.dumps(-7), b"i:-7;")
        self.assertEqual(serial.dumps(1.5), b"d:1.5;")
        self.assertEqual(serial.dumps("hé"), b's:3:"h\xc3\xa9";')
        self.assertEqual(serial.dumps(["a", None]), b'a:2:{i:0;s:1:"a";i:1;N;}')
        self.assertEqual(
            serial.dumps({"version": "1.0", "10": 1}),
            b'a:2:{s:7:"version";s:3:"1.0";i:10;i:1;}',
        )

    def test_decode_php_output(self):
        raw = b'a:3:{s:4:"name";s:9:"installer";s:5:"flags";a:2:{i:0;b:1;i:1;d:0.25;}i:7;N;}'
        self.assertEqual(
            serial.loads(raw),
            {"name": "installer", "flags": [True, 0.25], 7: None},
        )
        self.assertIsNone(serial.loads(b""))
        self.assertEqual(serial.loads(b"a:0:{}"), [])

    def test_nested_tree_survives(self):
        tree = {
            "version": "2.3.1",
            "authors": [{"name": "ops", "email": "ops@example.org"}],
            "weights": {"x": -1, "y": 3.75},
            "enabled": False,
        }
        self.assertEqual(serial.loads(serial.dumps(tree)), tree)

    def test_special_floats(self):
        self.assertEqual(serial.dumps(float("inf")), b"d:INF;")
        self.assertEqual(serial.loads(b"d:-INF;"), float("-inf"))
        self.assertTrue(math.isnan(serial.loads(b"d:NAN;")))

    def test_non_utf8_string_preserved(self):
        raw = b's:2:"\xff\xfe";'
        value = serial.loads(raw)
        self.assertEqual(serial.dumps(value), raw)

    def test_rejects_objects_and_references(self):
        for raw in (
            b'O:8:"stdClass":0:{}',
            b"a:1:{i:0;r:1;}",
            b'C:3:"Foo":0:{}',
        ):
            with self.assertRaises(FormatError):
                serial.loads(raw)

    def test_rejects_malformed(self):
        for raw in (
            b"i:12",
            b's:10:"short";',
            b"a:2:{i:0;N;}",
            b"b:2;",
            b"N;N;",
            b"a:1:{d:1.0;N;}",
            b"i:+5;",
            b"i: 5;",
            b"i:1_000;",
            b's:+3:"abc";',
            b"a:+1:{i:0;N;}",
        ):
            with self.assertRaises(FormatError):
                serial.loads(raw)

    def test_unsupported_python_values(self):
        with self.assertRaises(ValueError):
            serial.dumps({"when": object()})
        with self.assertRaises(ValueError):
            serial.dumps({(1, 2): "tuple key"})


if __name__ == "__main__":
    unittest.main()
