import io
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from project_fixture import make_project, noise_image

from vitapack import assets
from vitapack.assets import StagedFile
from vitapack.config import load_config


class TestGlobBase(unittest.TestCase):
    def test_glob_base(self):
        self.assertEqual(assets.glob_base("assets/**/*"), "assets")
        self.assertEqual(assets.glob_base("*assets/**/*"), "")
        self.assertEqual(assets.glob_base("img/icons/*.png"), "img/icons")
        self.assertEqual(assets.glob_base("img/icon.png"), "img")
        self.assertEqual(assets.glob_base("./data/[ab]/x"), "data")
        self.assertEqual(assets.glob_base("readme.txt"), "")


class TestFileSets(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)

    def tearDown(self):
        self._td.cleanup()

    def _write(self, rel: str, data: bytes = b"x") -> Path:
        p = self.root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return p

    def test_system_files_exclude_loaders(self):
        make_project(self.root, loaders=("safe", "unsafe", "unsafe_sys"))
        self._write("system/sce_sys/icon0.png")
        self._write("system/sce_sys/livearea/contents/template.xml")
        self._write("system/.DS_Store")
        config = load_config(str(self.root / "vita-project.json"))

        files = assets.system_files(config)
        self.assertEqual(sorted(files), ["sce_sys/icon0.png", "sce_sys/livearea/contents/template.xml"])

    def test_source_files_rooted_at_source_dir(self):
        make_project(self.root)
        self._write("out-src/index.lua", b"lua")
        self._write("out-src/lib/util.lua", b"util")
        config = load_config(str(self.root / "vita-project.json"))

        files = assets.source_files(config)
        self.assertEqual(sorted(files), ["index.lua", "lib/util.lua"])
        self.assertEqual(files["lib/util.lua"].read_bytes(), b"util")

    def test_source_dir_missing_is_empty(self):
        config = load_config(str(make_project(self.root)))
        self.assertEqual(assets.source_files(config), {})

    def test_user_files_default_pattern_keeps_assets_prefix(self):
        make_project(self.root)
        self._write("assets/font.ttf")
        self._write("assets/img/bg.png")
        self._write("game-assets/sound.ogg")
        self._write("other/readme.txt")
        config = load_config(str(self.root / "vita-project.json"))

        files = assets.user_files(config)
        self.assertEqual(sorted(files), ["assets/font.ttf", "assets/img/bg.png", "game-assets/sound.ogg"])

    def test_user_files_rooted_at_glob_base_with_exclusion(self):
        make_project(self.root, {
            "id": "HELLOWRLD",
            "title": "Hi",
            "files": ["res/**/*", "!res/**/*.psd", "notes.txt"],
        })
        self._write("res/a.png")
        self._write("res/sub/b.wav")
        self._write("res/sub/c.psd")
        self._write("notes.txt")
        config = load_config(str(self.root / "vita-project.json"))

        files = assets.user_files(config)
        self.assertEqual(sorted(files), ["a.png", "notes.txt", "sub/b.wav"])
        self.assertEqual(files["sub/b.wav"].source, self.root.resolve() / "res" / "sub" / "b.wav")

    def test_user_files_skip_out_and_temp_dirs(self):
        make_project(self.root, {
            "id": "HELLOWRLD",
            "title": "Hello World",
            "files": ["**/*.vpk", "**/*.txt", ".temp/*.txt"],
        })
        self._write("dist/Hello World.vpk")
        self._write("dist/notes.txt")
        self._write(".temp/staged.txt")
        self._write("docs/readme.txt")
        self._write("extra/old.vpk")
        config = load_config(str(self.root / "vita-project.json"))

        files = assets.user_files(config)
        self.assertEqual(sorted(files), ["docs/readme.txt", "extra/old.vpk"])


class TestImages(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)

    def tearDown(self):
        self._td.cleanup()

    def test_is_image(self):
        for name in ("a.png", "b.PNG", "c.bmp", "d.jpg", "e.jpeg"):
            self.assertTrue(assets.is_image(name), name)
        for name in ("a.lua", "b.png.txt", "sce_sys/param.sfo", "font.ttf"):
            self.assertFalse(assets.is_image(name), name)

    def test_recompress_png_is_indexed_and_smaller(self):
        original = noise_image(self.root / "a.png", "PNG")
        out = assets.recompress_image(original, ".png")
        self.assertNotEqual(out, original)
        self.assertLessEqual(len(out), len(original))
        with Image.open(io.BytesIO(out)) as im:
            self.assertEqual(im.format, "PNG")
            self.assertEqual(im.mode, "P")
            self.assertEqual(im.size, (64, 64))

    def test_recompress_bmp_and_jpg(self):
        for name, fmt in (("a.bmp", "BMP"), ("a.jpg", "JPEG")):
            with self.subTest(fmt=fmt):
                original = noise_image(self.root / name, fmt)
                out = assets.recompress_image(original, Path(name).suffix)
                self.assertNotEqual(out, original)
                self.assertLessEqual(len(out), len(original))
                with Image.open(io.BytesIO(out)) as im:
                    self.assertEqual(im.format, fmt)
                    im.load()

    def test_recompress_never_grows(self):
        # a tiny single color palette image cannot get smaller
        buf = io.BytesIO()
        Image.new("P", (1, 1)).save(buf, format="PNG", optimize=True)
        original = buf.getvalue()
        out = assets.recompress_image(original, ".png")
        self.assertLessEqual(len(out), len(original))

    def test_recompress_keeps_alpha(self):
        im = Image.new("RGBA", (32, 32), (255, 0, 0, 0))
        im.putpixel((3, 3), (0, 255, 0, 255))
        buf = io.BytesIO()
        im.save(buf, format="PNG")
        out = assets.recompress_image(buf.getvalue(), ".png")
        with Image.open(io.BytesIO(out)) as decoded:
            rgba = decoded.convert("RGBA")
            self.assertEqual(rgba.getpixel((0, 0))[3], 0)
            self.assertEqual(rgba.getpixel((3, 3))[3], 255)

    def test_process_images_leaves_other_files_alone(self):
        png = self.root / "bg.png"
        original_png = noise_image(png, "PNG")
        lua = self.root / "main.lua"
        lua.write_bytes(b"print(1)")
        broken = self.root / "broken.jpg"
        broken.write_bytes(b"not a jpeg")

        out = assets.process_images({
            "bg.png": StagedFile("bg.png", source=png),
            "main.lua": StagedFile("main.lua", source=lua),
            "broken.jpg": StagedFile("broken.jpg", source=broken),
        })
        self.assertIs(out["main.lua"].data, None)
        self.assertEqual(out["main.lua"].read_bytes(), b"print(1)")
        self.assertEqual(out["broken.jpg"].read_bytes(), b"not a jpeg")
        self.assertLess(len(out["bg.png"].read_bytes()), len(original_png))

    def test_process_images_warns_when_nothing_gained(self):
        tiny = self.root / "dot.png"
        Image.new("P", (1, 1)).save(tiny, format="PNG", optimize=True)
        buf = io.StringIO()
        with redirect_stdout(buf), \
                patch("vitapack.assets.recompress_image", side_effect=lambda data, suffix: data):
            out = assets.process_images({"dot.png": StagedFile("dot.png", source=tiny)})
        self.assertEqual(out["dot.png"].read_bytes(), tiny.read_bytes())
        self.assertIn("[warn] dot.png", buf.getvalue())

    def test_process_images_oversized_image_passes_through(self):
        big = self.root / "big.png"
        big.write_bytes(b"pretend this is huge")
        with patch("vitapack.assets.recompress_image",
                   side_effect=Image.DecompressionBombError("too many pixels")):
            out = assets.process_images({"big.png": StagedFile("big.png", source=big)})
        self.assertEqual(out["big.png"].read_bytes(), b"pretend this is huge")


class TestMerge(unittest.TestCase):
    def test_later_sets_win(self):
        low = {"a.txt": StagedFile("a.txt", data=b"low"), "b.txt": StagedFile("b.txt", data=b"b")}
        high = {"a.txt": StagedFile("a.txt", data=b"high")}
        merged = assets.merge_file_sets(low, high)
        self.assertEqual(merged["a.txt"].read_bytes(), b"high")
        self.assertEqual(merged["b.txt"].read_bytes(), b"b")

    def test_merge_is_order_defined(self):
        one = {"x": StagedFile("x", data=b"1")}
        two = {"x": StagedFile("x", data=b"2")}
        self.assertEqual(assets.merge_file_sets(one, two)["x"].data, b"2")
        self.assertEqual(assets.merge_file_sets(two, one)["x"].data, b"1")


if __name__ == "__main__":
    unittest.main()
