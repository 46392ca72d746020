"""
Package content gathering.

Three file sets feed a package: the compiled source tree, the system
directory (minus the loader variants) and the user declared `files`
globs. System and user images are recompressed with an indexed palette
before the sets are merged.
"""

from __future__ import annotations

import glob
import io
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .config import LOADER_FILE_NAMES, ProjectConfig


IMAGE_EXTENSIONS = {".bmp", ".png", ".jpg", ".jpeg"}
PALETTE_COLORS = 256
JPEG_QUALITY = 80

_GLOB_MAGIC = set("*?[{")

FileSet = Dict[str, "StagedFile"]


@dataclass(frozen=True)
class StagedFile:
    """A package entry: archive path plus either a source file or in-memory bytes."""

    path: str
    source: Optional[Path] = None
    data: Optional[bytes] = None

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.source is None:
            raise ValueError(f"staged file {self.path} has neither data nor source")
        return self.source.read_bytes()

    @property
    def origin(self) -> str:
        return str(self.source) if self.source is not None else "<generated>"


def _walk_files(root: Path) -> Iterable[Tuple[str, Path]]:
    """Yield (posix relative path, absolute path) for non-hidden files under root."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            full = Path(dirpath) / filename
            yield full.relative_to(root).as_posix(), full


def source_files(config: ProjectConfig) -> FileSet:
    root = config.source_path
    print(f"[assets] bundling source files from {root}")
    if not root.is_dir():
        print(f"[warn] source directory not found, nothing compiled to bundle: {root}")
        return {}
    return {rel: StagedFile(rel, source=full) for rel, full in _walk_files(root)}


def system_files(config: ProjectConfig) -> FileSet:
    root = config.system_path
    print(f"[assets] bundling system files from {root}")
    if not root.is_dir():
        return {}
    return {
        rel: StagedFile(rel, source=full)
        for rel, full in _walk_files(root)
        if rel not in LOADER_FILE_NAMES
    }


def glob_base(pattern: str) -> str:
    """
    Leading path segments of a glob pattern that contain no glob magic.

    "assets/**/*" -> "assets", "*assets/**/*" -> "", "img/icon.png" -> "img".
    """
    parts = pattern.replace("\\", "/").split("/")
    base: List[str] = []
    for part in parts[:-1]:
        if _GLOB_MAGIC & set(part):
            break
        base.append(part)
    return "/".join(p for p in base if p not in ("", "."))


def _expand(pattern: str, root: Path) -> List[str]:
    matches = glob.glob(pattern, root_dir=str(root), recursive=True)
    return sorted(m.replace(os.sep, "/") for m in matches if (root / m).is_file())


def user_files(config: ProjectConfig) -> FileSet:
    """Expand the `files` globs relative to the project directory; `!pattern` excludes."""
    root = config.project_dir
    print(f"[assets] bundling additional files: {list(config.files)}")

    excluded = set()
    for pattern in config.files:
        if pattern.startswith("!"):
            excluded.update(_expand(pattern[1:], root))

    # never pick up previous build output
    work_dirs = (config.out_path.resolve(), config.temp_path.resolve())

    out: FileSet = {}
    for pattern in config.files:
        if pattern.startswith("!"):
            continue
        base = glob_base(pattern)
        for match in _expand(pattern, root):
            if match in excluded:
                continue
            if any((root / match).resolve().is_relative_to(d) for d in work_dirs):
                continue
            rel = match[len(base) + 1:] if base and match.startswith(base + "/") else match
            out[rel] = StagedFile(rel, source=root / match)
    return out


def is_image(path: str) -> bool:
    return Path(path).suffix.lower() in IMAGE_EXTENSIONS


def _quantize(im: Image.Image, colors: int) -> Image.Image:
    if im.mode in ("RGBA", "LA", "PA") or (im.mode == "P" and "transparency" in im.info):
        return im.convert("RGBA").quantize(colors, method=Image.Quantize.FASTOCTREE)
    return im.convert("RGB").quantize(colors)


def recompress_image(data: bytes, suffix: str, colors: int = PALETTE_COLORS) -> bytes:
    """
    Lossy palette quantization of a PNG, BMP or JPEG image.

    The original bytes are returned when the recompressed image is not
    smaller, so the result is never larger than the input.
    """
    suffix = suffix.lower()
    with Image.open(io.BytesIO(data)) as im:
        im.load()
        quantized = _quantize(im, colors)

    buf = io.BytesIO()
    if suffix == ".png":
        quantized.save(buf, format="PNG", optimize=True)
    elif suffix == ".bmp":
        if quantized.mode != "P" or "transparency" in quantized.info:
            quantized = quantized.convert("RGB").quantize(colors)
        quantized.save(buf, format="BMP")
    elif suffix in (".jpg", ".jpeg"):
        quantized.convert("RGB").save(buf, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    else:
        raise ValueError(f"not a supported image type: {suffix}")

    out = buf.getvalue()
    if len(out) >= len(data):
        return data
    return out


def process_images(files: Mapping[str, StagedFile]) -> FileSet:
    """Recompress image entries; every other entry passes through unchanged."""
    out: FileSet = {}
    for rel, staged in files.items():
        if not is_image(rel):
            out[rel] = staged
            continue
        original = staged.read_bytes()
        try:
            data = recompress_image(original, Path(rel).suffix)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            print(f"[warn] cannot decode image {staged.origin}, bundling it unchanged: {e}")
            out[rel] = staged
            continue
        if data is original:
            # quantizing did not shrink it; the source bytes are bundled as is
            print(f"[warn] {rel}: recompression would not reduce size, bundling it unchanged")
        else:
            print(f"[assets] {rel}: {len(original)} -> {len(data)} bytes")
        out[rel] = StagedFile(rel, source=staged.source, data=data)
    return out


def merge_file_sets(*file_sets: Mapping[str, StagedFile]) -> FileSet:
    """
    Merge file sets into one staging set.

    Sets are given lowest precedence first; on a path collision the later
    set wins and the collision is reported.
    """
    merged: FileSet = {}
    for file_set in file_sets:
        for rel, staged in file_set.items():
            previous = merged.get(rel)
            if previous is not None:
                print(f"[warn] path collision: {rel} ({previous.origin} replaced by {staged.origin})")
            merged[rel] = staged
    return merged
