"""
Download the lpp-vita loader binaries (eboot_safe.bin, eboot_unsafe.bin,
eboot_unsafe_sys.bin) into the project's system directory.

Release assets are either the loaders themselves or zip archives that
contain them.
"""

from __future__ import annotations

import io
import os
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import requests

from .config import LOADER_FILE_NAMES
from .errors import EbootFetchError


LATEST_RELEASE_API = "https://api.github.com/repos/Rinnegatamante/lpp-vita/releases/latest"
REQUEST_TIMEOUT = 60


def _headers(token: Optional[str]) -> Dict[str, str]:
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def _download(url: str, token: Optional[str]) -> bytes:
    resp = requests.get(
        url,
        headers={**_headers(token), "Accept": "application/octet-stream"},
        stream=True,
        allow_redirects=True,
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        raise EbootFetchError(f"Failed to download {url}, status code: {resp.status_code}")
    buf = io.BytesIO()
    for chunk in resp.iter_content(chunk_size=8192):
        buf.write(chunk)
    return buf.getvalue()


def _loaders_from_zip(data: bytes) -> Dict[str, bytes]:
    found: Dict[str, bytes] = {}
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        for name in zf.namelist():
            base = name.rsplit("/", 1)[-1]
            if base in LOADER_FILE_NAMES:
                found[base] = zf.read(name)
    return found


def fetch_loaders(
    system_dir: Path,
    *,
    release_url: str = LATEST_RELEASE_API,
    token: Optional[str] = None,
) -> List[Path]:
    """
    Fetch the loader binaries of a GitHub release into system_dir.

    Args:
        system_dir: destination directory, created when missing
        release_url: GitHub API url of the release
        token: GitHub API token (defaults to $GITHUB_API_TOKEN)

    Returns:
        Paths of the loader files written
    """
    token = token or os.environ.get("GITHUB_API_TOKEN")
    print(f"[eboot] querying {release_url}")
    try:
        resp = requests.get(release_url, headers=_headers(token), timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise EbootFetchError(f"Failed to query release {release_url}: {e}") from e
    if not resp.ok:
        raise EbootFetchError(f"Failed to query release {release_url}, status code: {resp.status_code}")
    release = resp.json()
    print(f"[eboot] release: {release.get('tag_name', '?')}")

    loaders: Dict[str, bytes] = {}
    for asset in release.get("assets", []):
        name = asset.get("name", "")
        url = asset.get("browser_download_url")
        if not url:
            continue
        try:
            if name in LOADER_FILE_NAMES:
                print(f"[eboot] downloading {name}")
                loaders[name] = _download(url, token)
            elif name.lower().endswith(".zip"):
                print(f"[eboot] downloading {name}")
                loaders.update(_loaders_from_zip(_download(url, token)))
        except requests.RequestException as e:
            raise EbootFetchError(f"Failed to download {url}: {e}") from e
        except zipfile.BadZipFile as e:
            raise EbootFetchError(f"Release asset {name} is not a valid zip: {e}") from e

    if not loaders:
        raise EbootFetchError(f"No loader binaries found in release {release_url}")

    system_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for name in sorted(loaders):
        target = system_dir / name
        target.write_bytes(loaders[name])
        print(f"[eboot] saved {target} ({len(loaders[name])} bytes)")
        written.append(target)

    missing = sorted(set(LOADER_FILE_NAMES) - set(loaders))
    if missing:
        print(f"[warn] release did not contain: {', '.join(missing)}")
    return written
