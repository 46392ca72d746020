"""
Writing staged package content: the .vpk archive and the deploy staging directory.
"""

from __future__ import annotations

import os
import shutil
import zipfile
from pathlib import Path
from typing import Mapping

from .assets import StagedFile
from .config import EBOOT_FILE_NAME, ProjectConfig


def eboot_file(config: ProjectConfig) -> StagedFile:
    """The loader selected by packageType, staged as eboot.bin."""
    print(f"[build] bundling {config.package_type.value} eboot file: {config.loader_path.name}")
    return StagedFile(EBOOT_FILE_NAME, source=config.loader_path)


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path)


def clear_directory_contents(path: Path) -> None:
    """Empty a directory, creating it when missing. The directory itself is kept."""
    print(f"[build] clearing {path}")
    path.mkdir(parents=True, exist_ok=True)
    for item in path.iterdir():
        _remove_path(item)


def write_vpk(files: Mapping[str, StagedFile], out_path: Path) -> Path:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    print(f"[build] writing {out_path} ({len(files)} entries)")
    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for rel in sorted(files):
            zf.writestr(rel, files[rel].read_bytes())
    return out_path


def write_staging_dir(files: Mapping[str, StagedFile], staging_dir: Path) -> Path:
    """
    Write the staged tree into a fresh staging directory.

    Returns only after every file has been written, flushed and closed, so
    the upload step can read the directory right away.
    """
    if staging_dir.exists():
        shutil.rmtree(staging_dir)
    staging_dir.mkdir(parents=True)
    print(f"[deploy] staging {len(files)} files into {staging_dir}")
    for rel in sorted(files):
        target = staging_dir / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as f:
            f.write(files[rel].read_bytes())
            f.flush()
            os.fsync(f.fileno())
    return staging_dir


def clear_staging_dir(staging_dir: Path) -> None:
    print(f"[deploy] clearing temp directory {staging_dir}")
    shutil.rmtree(staging_dir, ignore_errors=True)
