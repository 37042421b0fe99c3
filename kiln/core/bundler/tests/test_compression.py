"""
Tests for pre-compressed outputs and the size report
"""

import asyncio
import gzip
from pathlib import Path
import tempfile
import shutil

import brotli

from ..abort import AbortSignal
from ..compression import brotli_file, compress_file, compress_outputs, gzip_file
from ..report import analyze_outputs, log_report
from .fakes import write


class TestCompression:

    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_gzip_is_deterministic(self):
        source = write(self.temp_dir, "main.js", "console.log('x');" * 50)

        first = gzip_file(source).read_bytes()
        second = gzip_file(source).read_bytes()

        assert first == second
        assert gzip.decompress(first) == source.read_bytes()

    def test_brotli_sibling(self):
        source = write(self.temp_dir, "styles-1.css", "body{margin:0}" * 50)

        target = brotli_file(source)

        assert target.name == "styles-1.css.br"
        assert brotli.decompress(target.read_bytes()) == source.read_bytes()
        assert target.stat().st_size < source.stat().st_size

    def test_compress_file_writes_both(self):
        source = write(self.temp_dir, "index.html", "<p>x</p>")
        assert [p.name for p in compress_file(source)] == ["index.html.br", "index.html.gz"]

    def test_only_text_outputs(self):
        write(self.temp_dir, "main.js", "js")
        write(self.temp_dir, "styles-1.css", "css")
        write(self.temp_dir, "pages/index.html", "html")
        write(self.temp_dir, "assets/logo.png", b"png")

        written = asyncio.run(compress_outputs(self.temp_dir, AbortSignal()))

        assert sorted(p.name for p in written) == [
            "index.html.br", "index.html.gz",
            "main.js.br", "main.js.gz",
            "styles-1.css.br", "styles-1.css.gz",
        ]
        assert not (self.temp_dir / "assets" / "logo.png.gz").exists()
        assert not (self.temp_dir / "assets" / "logo.png.br").exists()

    def test_empty_directory(self):
        assert asyncio.run(compress_outputs(self.temp_dir / "missing", AbortSignal())) == []


class TestReport:

    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_sizes_sorted_largest_first(self):
        small = write(self.temp_dir, "styles-1.css", "a" * 10)
        large = write(self.temp_dir, "main.1.js", "b" * 1000)
        gzip_file(large)

        analysis = analyze_outputs(self.temp_dir, [small, large])

        assert [item["file"] for item in analysis["files"]] == ["main.1.js", "styles-1.css"]
        assert analysis["total_size"] == 1010
        assert analysis["files"][0]["gzip_size"] > 0
        assert analysis["files"][1]["gzip_size"] is None

    def test_log_report(self, caplog):
        large = write(self.temp_dir, "main.1.js", "b" * 2048)

        with caplog.at_level("INFO"):
            log_report(analyze_outputs(self.temp_dir, [large]))

        assert "Bundle sizes:" in caplog.text
        assert "main.1.js" in caplog.text
        assert "total" in caplog.text
