"""
External build tools: the Lua transpiler and VitaSDK's vita-mksfoex.
"""

from __future__ import annotations

import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from .assets import StagedFile
from .config import ProjectConfig
from .errors import ExternalProcessError, ToolchainMissingError


MKSFO_TOOL = "vita-mksfoex"
SFO_STAGING_PATH = "sce_sys/param.sfo"
PROBE_TITLE_ID = "AAAA00000"


def _run(cmd: Sequence[str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
    cmd = [str(c) for c in cmd]
    print("+", " ".join(cmd))
    try:
        result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)
    except OSError as e:
        raise ExternalProcessError(cmd, None, stderr=str(e)) from e
    if result.returncode != 0:
        raise ExternalProcessError(cmd, result.returncode, result.stdout, result.stderr)
    return result


def mksfo_command(title_id: str, title: str, out_path: Path, tool: str = MKSFO_TOOL) -> List[str]:
    return [tool, "-s", f"TITLE_ID={title_id}", title, str(out_path)]


def check_toolchain(tool: str = MKSFO_TOOL) -> None:
    """Probe the SFO generator with a throwaway title id; the probe output is discarded."""
    print(f"[toolchain] checking {tool}")
    with tempfile.TemporaryDirectory(prefix="vitapack-probe-") as td:
        try:
            _run(mksfo_command(PROBE_TITLE_ID, "probe", Path(td) / "param.sfo", tool))
        except ExternalProcessError as e:
            raise ToolchainMissingError(tool, str(e)) from e
    print(f"[toolchain] {tool} is available")


def compile_sources(config: ProjectConfig) -> None:
    print("[build] compiling source files...")
    result = _run(config.compile_command, cwd=config.project_dir)
    if result.stdout.strip():
        print(result.stdout.rstrip())
    print("[build] compile completed")


def generate_sfo(config: ProjectConfig, tool: str = MKSFO_TOOL) -> StagedFile:
    """
    Generate param.sfo for the project's id and title.

    The file is written to a scratch directory first and its bytes are
    staged at sce_sys/param.sfo.
    """
    with tempfile.TemporaryDirectory(prefix="vitapack-sfo-") as td:
        sfo_path = Path(td) / "param.sfo"
        print(f"[build] generating sfo file: {sfo_path}")
        _run(mksfo_command(config.id, config.title, sfo_path, tool))
        if not sfo_path.is_file():
            raise ExternalProcessError(
                mksfo_command(config.id, config.title, sfo_path, tool),
                0,
                stderr=f"{tool} did not produce {sfo_path}",
            )
        data = sfo_path.read_bytes()
    return StagedFile(SFO_STAGING_PATH, data=data)
