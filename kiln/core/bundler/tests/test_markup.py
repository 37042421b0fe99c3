"""
Tests for HTML rewriting and the markup stage
"""

import asyncio
import subprocess
from pathlib import Path
import tempfile
import shutil
from unittest.mock import AsyncMock, patch

from ..abort import AbortSignal
from ..cache import CacheSet
from ..markup import asset_tags, inject_assets, insert_tags, minify_html, strip_source_assets
from ..stages import BuildContext, MarkupStage
from .fakes import make_config, write


class TestMarkupRewriting:

    def test_strip_keeps_static_references(self):
        html = (
            '<link rel="stylesheet" href="./app.css">'
            '<link rel="stylesheet" href="/static/keep.css">'
            '<script type="module" src="./main.ts"></script>'
            '<script src="/analytics.js"></script>'
        )
        result = strip_source_assets(html, "static")

        assert "./app.css" not in result
        assert "/static/keep.css" in result
        assert "./main.ts" not in result
        assert "/analytics.js" in result

    def test_asset_tags_are_root_relative(self):
        out_dir = Path("/project/dist")
        scripts, styles = asset_tags(
            out_dir, [out_dir / "main.1234abcd.js"], [out_dir / "styles-5678.css"]
        )

        assert scripts == '\t<script type="module" src="/main.1234abcd.js"></script>'
        assert styles == '\t<link rel="stylesheet" href="/styles-5678.css">'

    def test_insert_without_closing_tag(self):
        assert insert_tags("<p>x</p>", "<link>", "</head>", True) == "<link>\n<p>x</p>"
        assert insert_tags("<p>x</p>", "<script>", "</body>", False) == "<p>x</p>\n<script>"

    def test_inject_into_document(self):
        html = "<html><head><title>t</title></head><body><p>x</p></body></html>"
        result = inject_assets(html, "<script src=\"/a.js\"></script>", "<link href=\"/a.css\">", "static")

        assert result.index("/a.css") < result.index("</head>")
        assert result.index("/a.js") < result.index("</body>")
        assert result.index("<p>x</p>") < result.index("/a.js")

    def test_minify_falls_back_when_tool_missing(self, caplog):
        with patch("kiln.core.bundler.markup.run_command", AsyncMock(side_effect=FileNotFoundError("html-minifier-terser"))):
            with caplog.at_level("WARNING"):
                assert asyncio.run(minify_html("<p>  x  </p>")) == "<p>  x  </p>"

        assert "HTML minification skipped" in caplog.text

    def test_minify_uses_tool_output(self):
        with patch("kiln.core.bundler.markup.run_command", AsyncMock(return_value=b"<p>x</p>")) as run:
            assert asyncio.run(minify_html("<p>  x  </p>")) == "<p>x</p>"

        assert run.await_args.args[0][0] == "html-minifier-terser"

    def test_minify_falls_back_on_error(self, caplog):
        failure = subprocess.CalledProcessError(2, ["html-minifier-terser"], stderr=b"Parse Error")
        with patch("kiln.core.bundler.markup.run_command", AsyncMock(side_effect=failure)):
            with caplog.at_level("WARNING"):
                assert asyncio.run(minify_html("<p")) == "<p"

        assert "Parse Error" in caplog.text


class TestMarkupStage:

    def setup_method(self):
        """Setup test environment"""
        self.temp_dir = Path(tempfile.mkdtemp()).resolve()
        self.config = make_config(self.temp_dir)
        self.context = BuildContext(self.config, CacheSet())
        self.dist = self.config.out_dir

    def teardown_method(self):
        """Cleanup"""
        shutil.rmtree(self.temp_dir)

    def test_every_document_rewritten(self):
        write(self.temp_dir, "src/index.html", "<html><head></head><body></body></html>")
        write(self.temp_dir, "src/about/index.html", "<html><head></head><body></body></html>")
        write(self.dist, "main.aaaa1111.js", "")
        write(self.dist, "styles-bbbb2222.css", "")
        write(self.dist, "static/legacy.js", "")

        written = asyncio.run(MarkupStage(self.context).run(AbortSignal()))

        assert sorted(written) == [self.dist / "about" / "index.html", self.dist / "index.html"]
        html = (self.dist / "about" / "index.html").read_text()
        assert 'src="/main.aaaa1111.js"' in html
        assert 'href="/styles-bbbb2222.css"' in html
        assert "legacy.js" not in html

    def test_cache_keyed_on_tags(self):
        document = write(self.temp_dir, "src/index.html", "<html><head></head><body></body></html>")
        script = write(self.dist, "main.aaaa1111.js", "")
        stage = MarkupStage(self.context)

        asyncio.run(stage.run(AbortSignal()))
        asyncio.run(stage.run(AbortSignal()))
        assert self.context.caches.markup.get_stats()["hits"] == 1

        script.rename(self.dist / "main.cccc3333.js")
        asyncio.run(stage.run(AbortSignal()))

        assert self.context.caches.markup.get_stats()["hits"] == 1
        assert "main.cccc3333.js" in (self.dist / "index.html").read_text()
        assert document.exists()

    def test_minify_when_enabled(self):
        config = make_config(self.temp_dir, minify={"html": True})
        context = BuildContext(config, CacheSet())
        write(self.temp_dir, "src/index.html", "<html>  <body>  </body></html>")

        with patch("kiln.core.bundler.stages.markup.minify_html", AsyncMock(return_value="<html></html>")) as minify:
            asyncio.run(MarkupStage(context).run(AbortSignal()))

        minify.assert_awaited_once()
        assert (self.dist / "index.html").read_text() == "<html></html>"

    def test_no_documents(self):
        assert asyncio.run(MarkupStage(self.context).run(AbortSignal())) == []
