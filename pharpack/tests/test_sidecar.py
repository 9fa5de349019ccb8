from __future__ import annotations

import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path

from pharpack import sidecar
from pharpack.constants import COMPRESSION_GZ, COMPRESSION_BZ2, SIG_SHA512
from pharpack.reader import parse
from pharpack.writer import new_builder


class SidecarTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_capture_persist_load(self):
        def scenario(tmp_path: Path):
            b = new_builder(SIG_SHA512)
            b.set_metadata({"version": "1.0", "tags": ["cli"]})
            b.set_alias("installer.phar")
            b.set_stub(b"#!/usr/bin/env php\n<?php Phar::mapPhar(); __HALT_COMPILER(); ?>\n")
            b.add_entry("a.php", b"<?php 1;", COMPRESSION_GZ)
            b.add_entry("b.php", b"<?php 2;", COMPRESSION_BZ2)
            b.add_entry("c.php", b"<?php 3;", COMPRESSION_GZ)
            out = tmp_path / "x.phar"
            b.finalize(str(out))

            record = sidecar.capture(parse(out.read_bytes()))
            self.assertEqual(record.compression, {"GZ": 2, "BZ2": 1})
            self.assertEqual(record.signature, "SHA-512")
            path = sidecar.persist(record, tmp_path)
            self.assertEqual(path, tmp_path / ".pharinfo")
            doc = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(doc["metadata"], {"version": "1.0", "tags": ["cli"]})
            self.assertEqual(doc["compression"], {"GZ": 2, "BZ2": 1})
            self.assertEqual(doc["alias"], "installer.phar")

            loaded = sidecar.load(tmp_path)
            self.assertEqual(loaded, record)

        self.run_with_tmpdir(scenario)

    def test_missing_sidecar_is_silent(self):
        def scenario(tmp_path: Path):
            err = io.StringIO()
            with contextlib.redirect_stderr(err):
                self.assertIsNone(sidecar.load(tmp_path))
            self.assertEqual(err.getvalue(), "")

        self.run_with_tmpdir(scenario)

    def test_malformed_sidecar_warns(self):
        bodies = [
            "{not json",
            "[1, 2]",
            json.dumps({"metadata": None, "compression": {"LZMA": 1}}),
            json.dumps({"metadata": None, "compression": {"GZ": -1}}),
            json.dumps({"metadata": None, "compression": "GZ"}),
            json.dumps({"compression": {"GZ": 1}, "stub": "***"}),
        ]

        def scenario(tmp_path: Path):
            for body in bodies:
                (tmp_path / ".pharinfo").write_text(body, encoding="utf-8")
                err = io.StringIO()
                with contextlib.redirect_stderr(err):
                    self.assertIsNone(sidecar.load(tmp_path), body)
                self.assertIn("Warning: ignoring unusable .pharinfo", err.getvalue())

        self.run_with_tmpdir(scenario)

    def test_minimal_record(self):
        def scenario(tmp_path: Path):
            (tmp_path / ".pharinfo").write_text('{"metadata": null, "compression": {}}', encoding="utf-8")
            record = sidecar.load(tmp_path)
            self.assertIsNotNone(record)
            self.assertEqual(record.compression, {})
            self.assertIsNone(record.stub)
            self.assertIsNone(record.signature)

        self.run_with_tmpdir(scenario)

    def test_is_sidecar(self):
        self.assertTrue(sidecar.is_sidecar(".pharinfo"))
        self.assertTrue(sidecar.is_sidecar("nested/dir/.pharinfo"))
        self.assertFalse(sidecar.is_sidecar("pharinfo"))
        self.assertFalse(sidecar.is_sidecar(".pharinfo.bak"))


if __name__ == "__main__":
    unittest.main()
