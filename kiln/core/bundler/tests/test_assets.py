"""
Tests for the asset and static copy stages and the optimisers they use
"""

import asyncio
import os
import subprocess
import pytest
from pathlib import Path
import tempfile
import shutil
from unittest.mock import AsyncMock, MagicMock, patch

from ..abort import AbortSignal
from ..cache import CacheSet
from ..config import ImageOptions
from ..errors import CollaboratorDegradedError
from ..optimizers import FontSubsetter, ImageOptimizer, SvgOptimizer
from ..stages import AssetStage, BuildContext, StaticStage
from ..stages.assets import output_name
from .fakes import make_config, write


class TestAssetStage:

    def setup_method(self):
        """Setup test environment"""
        self.temp_dir = Path(tempfile.mkdtemp()).resolve()

    def teardown_method(self):
        """Cleanup"""
        shutil.rmtree(self.temp_dir)

    def stage(self, **overrides) -> AssetStage:
        config = make_config(self.temp_dir, **overrides)
        self.context = BuildContext(config, CacheSet(enabled=config.cache))
        return AssetStage(
            self.context,
            images=MagicMock(optimize=AsyncMock(side_effect=lambda data, fmt, suffix, source: f"{fmt}:".encode() + data)),
            svgs=MagicMock(optimize=AsyncMock(side_effect=lambda data, source: b"<svg/>")),
            fonts=MagicMock(optimize=AsyncMock(side_effect=lambda data, suffix, source: b"subset")),
        )

    @property
    def assets_out(self) -> Path:
        return self.temp_dir / "dist" / "assets"

    def test_output_names(self):
        assert output_name(Path("logo.png"), b"x") == "logo.png"
        assert output_name(Path("font.woff2"), b"x") == "font.woff2"
        assert output_name(Path("favicon.ico"), b"x") == "favicon.ico"
        assert output_name(Path("data.json"), b"x").startswith("data-")

    def test_images_copied_with_variants(self):
        write(self.temp_dir, "src/assets/img/hero.jpg", b"jpeg")
        stage = self.stage(image={"formats": ["webp", "avif"]})

        outputs = asyncio.run(stage.run(AbortSignal()))

        assert outputs == [self.assets_out / "img" / "hero.jpg"]
        assert (self.assets_out / "img" / "hero.jpg").read_bytes() == b"jpeg"
        assert (self.assets_out / "img" / "hero.webp").read_bytes() == b"webp:jpeg"
        assert (self.assets_out / "img" / "hero.avif").read_bytes() == b"avif:jpeg"
        assert stage.stats == {"images": 1}

    def test_no_variant_in_the_source_format(self):
        write(self.temp_dir, "src/assets/photo.webp", b"webp")
        stage = self.stage(image={"formats": ["webp"]})

        asyncio.run(stage.run(AbortSignal()))

        stage.images.optimize.assert_not_awaited()

    def test_failed_variant_is_skipped(self, caplog):
        write(self.temp_dir, "src/assets/hero.png", b"png")
        stage = self.stage(image={"formats": ["avif"]})
        stage.images.optimize = AsyncMock(side_effect=CollaboratorDegradedError("avifenc", "not found"))

        with caplog.at_level("WARNING"):
            outputs = asyncio.run(stage.run(AbortSignal()))

        assert outputs[0].read_bytes() == b"png"
        assert not (self.assets_out / "hero.avif").exists()
        assert "Skipping avif variant of hero.png" in caplog.text

    def test_reencoded_image_kept_when_smaller(self):
        write(self.temp_dir, "src/assets/hero.png", b"large png")
        stage = self.stage(image={"formats": ["webp"], "reencode": True})
        stage.images.reencode = AsyncMock(return_value=b"small")

        asyncio.run(stage.run(AbortSignal()))

        assert (self.assets_out / "hero.png").read_bytes() == b"small"
        assert (self.assets_out / "hero.webp").read_bytes() == b"webp:large png"
        assert stage.images.reencode.await_args.args[1] == ".png"

    def test_reencode_that_grows_is_dropped(self):
        write(self.temp_dir, "src/assets/hero.jpg", b"jpeg")
        stage = self.stage(image={"reencode": True})
        stage.images.reencode = AsyncMock(return_value=b"a much larger jpeg")

        asyncio.run(stage.run(AbortSignal()))

        assert (self.assets_out / "hero.jpg").read_bytes() == b"jpeg"

    def test_failed_reencode_copies_original(self, caplog):
        write(self.temp_dir, "src/assets/hero.png", b"png")
        stage = self.stage(image={"reencode": True})
        stage.images.reencode = AsyncMock(side_effect=CollaboratorDegradedError("magick", "not installed"))

        with caplog.at_level("WARNING"):
            asyncio.run(stage.run(AbortSignal()))

        assert (self.assets_out / "hero.png").read_bytes() == b"png"
        assert "magick" in caplog.text

    def test_svg_optimized(self):
        write(self.temp_dir, "src/assets/icon.svg", b"<svg>  </svg>")
        stage = self.stage()

        asyncio.run(stage.run(AbortSignal()))

        assert (self.assets_out / "icon.svg").read_bytes() == b"<svg/>"

    def test_svg_failure_copies_original(self):
        write(self.temp_dir, "src/assets/icon.svg", b"<svg>  </svg>")
        stage = self.stage()
        stage.svgs.optimize = AsyncMock(side_effect=CollaboratorDegradedError("svgo", "exit code 1"))

        asyncio.run(stage.run(AbortSignal()))

        assert (self.assets_out / "icon.svg").read_bytes() == b"<svg>  </svg>"

    def test_fonts_subset_only_when_enabled(self):
        write(self.temp_dir, "src/assets/fonts/Inter.ttf", b"font")
        write(self.temp_dir, "src/assets/fonts/Inter.woff2", b"woff2")

        stage = self.stage()
        asyncio.run(stage.run(AbortSignal()))
        assert (self.assets_out / "fonts" / "Inter.ttf").read_bytes() == b"font"

        stage = self.stage(fonts={"subset": True})
        stage.caches.clear()
        asyncio.run(stage.run(AbortSignal()))
        assert (self.assets_out / "fonts" / "Inter.ttf").read_bytes() == b"subset"
        assert (self.assets_out / "fonts" / "Inter.woff2").read_bytes() == b"woff2"

    def test_unchanged_assets_are_skipped(self):
        write(self.temp_dir, "src/assets/hero.png", b"png")
        stage = self.stage(image={"formats": ["webp"]})

        asyncio.run(stage.run(AbortSignal()))
        asyncio.run(stage.run(AbortSignal()))

        assert stage.images.optimize.await_count == 1
        assert stage.caches.assets.get_stats()["hits"] == 1

    def test_touched_asset_is_processed_again(self):
        source = write(self.temp_dir, "src/assets/hero.png", b"png")
        stage = self.stage(image={"formats": ["webp"]})

        asyncio.run(stage.run(AbortSignal()))
        os.utime(source, ns=(1, 1))
        asyncio.run(stage.run(AbortSignal()))

        assert stage.images.optimize.await_count == 2

    def test_script_and_style_sources_left_out(self):
        write(self.temp_dir, "src/assets/widget.js", "")
        write(self.temp_dir, "src/assets/widget.scss", "")
        write(self.temp_dir, "src/assets/readme.txt", "hi")

        outputs = asyncio.run(self.stage().run(AbortSignal()))

        assert len(outputs) == 1
        assert outputs[0].name.startswith("readme-")


class TestStaticStage:

    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp()).resolve()
        config = make_config(self.temp_dir)
        self.context = BuildContext(config, CacheSet())

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_public_to_root_static_to_static(self):
        write(self.temp_dir, "public/favicon.ico", b"ico")
        write(self.temp_dir, "static/js/legacy.js", "var x;")

        copied = asyncio.run(StaticStage(self.context).run(AbortSignal()))

        dist = self.temp_dir / "dist"
        assert sorted(copied) == sorted([dist / "favicon.ico", dist / "static" / "js" / "legacy.js"])
        assert (dist / "static" / "js" / "legacy.js").read_text() == "var x;"

    def test_missing_directories(self):
        assert asyncio.run(StaticStage(self.context).run(AbortSignal())) == []


class TestOptimizers:

    def test_webp_command(self):
        optimizer = ImageOptimizer(ImageOptions(formats=("webp",), quality=75))

        async def fake_run(cmd, timeout=None):
            Path(cmd[-1]).write_bytes(b"RIFFwebp")
            return b""

        with patch("kiln.core.bundler.optimizers.run_command", AsyncMock(side_effect=fake_run)) as run:
            data = asyncio.run(optimizer.optimize(b"png", "webp", ".png"))

        cmd = run.await_args.args[0]
        assert cmd[:4] == ["cwebp", "-quiet", "-q", "75"]
        assert cmd[-2] == "-o"
        assert data == b"RIFFwebp"

    def test_reencode_command(self):
        optimizer = ImageOptimizer(ImageOptions(quality=60))

        async def fake_run(cmd, timeout=None):
            Path(cmd[-1]).write_bytes(b"smaller")
            return b""

        with patch("kiln.core.bundler.optimizers.run_command", AsyncMock(side_effect=fake_run)) as run:
            data = asyncio.run(optimizer.reencode(b"png", ".png", "hero.png"))

        cmd = run.await_args.args[0]
        assert cmd[0] == "magick"
        assert cmd[2:5] == ["-strip", "-quality", "60"]
        assert cmd[1].endswith(".png") and cmd[-1].endswith(".png")
        assert data == b"smaller"

    def test_missing_codec_degrades(self):
        optimizer = ImageOptimizer(ImageOptions())
        with patch("kiln.core.bundler.optimizers.run_command", AsyncMock(side_effect=FileNotFoundError("avifenc"))):
            with pytest.raises(CollaboratorDegradedError) as exc_info:
                asyncio.run(optimizer.optimize(b"png", "avif", ".png", "hero.png"))

        assert exc_info.value.tool == "avifenc"

    def test_codec_without_output_degrades(self):
        with patch("kiln.core.bundler.optimizers.run_command", AsyncMock(return_value=b"")):
            with pytest.raises(CollaboratorDegradedError):
                asyncio.run(FontSubsetter().optimize(b"font", ".ttf"))

    def test_svgo_uses_stdin(self):
        with patch("kiln.core.bundler.optimizers.run_command", AsyncMock(return_value=b"<svg/>")) as run:
            data = asyncio.run(SvgOptimizer().optimize(b"<svg> </svg>"))

        assert data == b"<svg/>"
        assert run.await_args.kwargs["input_data"] == b"<svg> </svg>"

    def test_svgo_failure_degrades(self):
        failure = subprocess.CalledProcessError(1, ["svgo"], stderr=b"bad svg")
        with patch("kiln.core.bundler.optimizers.run_command", AsyncMock(side_effect=failure)):
            with pytest.raises(CollaboratorDegradedError) as exc_info:
                asyncio.run(SvgOptimizer().optimize(b"<svg", "icon.svg"))

        assert "bad svg" in str(exc_info.value)
