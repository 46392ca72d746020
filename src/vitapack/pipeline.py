"""
Build and deploy sequences.

build:  toolchain check -> compile -> assemble -> clear outDir -> <title>.vpk
deploy: toolchain check -> compile -> assemble -> stage into tempDir ->
        destroy -> FTP upload -> launch (optional) -> clear tempDir

Every step receives the validated ProjectConfig; a failing step aborts the
rest of the sequence. No rollback is attempted: if the upload fails after
`destroy` succeeded the app on the device stays stopped.
"""

from __future__ import annotations

import time
from pathlib import Path

from . import assets, package, toolchain
from .assets import FileSet
from .config import ProjectConfig
from .remote import VitaDevice


def assemble(config: ProjectConfig) -> FileSet:
    """
    Collect every package entry.

    Precedence on path collisions, lowest first: compiled source, system
    files, user files, generated files (eboot.bin, sce_sys/param.sfo).
    """
    print("[build] assembling project files...")
    compiled = assets.source_files(config)
    processed = assets.process_images(
        assets.merge_file_sets(assets.system_files(config), assets.user_files(config))
    )
    sfo = toolchain.generate_sfo(config)
    eboot = package.eboot_file(config)
    generated = {sfo.path: sfo, eboot.path: eboot}
    return assets.merge_file_sets(compiled, processed, generated)


def build(config: ProjectConfig) -> Path:
    toolchain.check_toolchain()
    toolchain.compile_sources(config)
    files = assemble(config)
    package.clear_directory_contents(config.out_path)
    out = package.write_vpk(files, config.package_path)
    print(f"[build] package built: {out}")
    return out


def deploy(config: ProjectConfig, launch: bool = True) -> int:
    """Stage the project, push it to the device and (optionally) start it. Returns the uploaded file count."""
    device = VitaDevice(config)
    toolchain.check_toolchain()
    toolchain.compile_sources(config)
    files = assemble(config)
    staging_dir = package.write_staging_dir(files, config.temp_path)

    print("[deploy] closing running applications")
    device.destroy()
    count = device.upload_tree(staging_dir)
    if launch:
        print(f"[deploy] launching {config.id}")
        device.launch()
    package.clear_staging_dir(staging_dir)
    print(f"[deploy] deployed {count} files to {config.remote_app_path}")
    return count


def command_smoke_test(config: ProjectConfig, wait: float = 2.0) -> None:
    """Round trip over the command channel: launch the app, wait, destroy it."""
    device = VitaDevice(config)
    print(f"[cmd] launching {config.id}...")
    device.launch()
    print(f"[cmd] waiting {wait:g} seconds")
    time.sleep(wait)
    print("[cmd] destroying applications...")
    device.destroy()
    print("[cmd] command channel ok")
