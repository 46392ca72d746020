"""
Project descriptor (vita-project.json) loading and validation.

The descriptor is merged over DEFAULTS (explicit values win), validated
once and turned into an immutable ProjectConfig that every build step
receives explicitly.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import (
    ConfigError,
    ConfigFileMissingError,
    ConfigParseError,
    InvalidIdError,
    InvalidPackageTypeError,
    LoaderMissingError,
    RemoteAddressMissingError,
    TitleMissingError,
)


DEFAULT_CONFIG_PATH = "./vita-project.json"
EBOOT_FILE_NAME = "eboot.bin"
REMOTE_APP_ROOT = ("ux0:", "app")

DEFAULTS: Dict[str, Any] = {
    "id": None,
    "title": None,
    "packageType": None,
    "remoteAddress": None,
    "ports": {"transferPort": 1337, "commandPort": 1338},
    "systemDir": "system",
    "sourceDir": "out-src",
    "tempDir": ".temp",
    "outDir": "dist",
    "files": ["*assets/**/*"],
    "compileCommand": ["npx", "tstl"],
    "commandRetryInterval": 5.0,
    "commandRetryAttempts": 3,
    "networkTimeout": 10.0,
}

_ID_PATTERN = re.compile(r"^[A-Z0-9]{9}$")
_PATH_SEPARATORS = re.compile(r"[\\/]")


class PackageType(str, Enum):
    SAFE = "safe"
    UNSAFE = "unsafe"
    UNSAFE_SYS = "unsafe_sys"

    @property
    def loader_file_name(self) -> str:
        return f"eboot_{self.value}.bin"

    @classmethod
    def from_str(cls, value: Any) -> "PackageType":
        v = value.strip().lower() if isinstance(value, str) else value
        for member in cls:
            if member.value == v:
                return member
        raise InvalidPackageTypeError(value, [m.value for m in cls])


LOADER_FILE_NAMES: Tuple[str, ...] = tuple(t.loader_file_name for t in PackageType)


@dataclass(frozen=True)
class Ports:
    transfer: int = 1337
    command: int = 1338


@dataclass(frozen=True)
class ProjectConfig:
    id: str
    title: str
    package_type: PackageType
    project_dir: Path
    remote_address: Optional[str] = None
    ports: Ports = field(default_factory=Ports)
    system_dir: str = "system"
    source_dir: str = "out-src"
    temp_dir: str = ".temp"
    out_dir: str = "dist"
    files: Tuple[str, ...] = ("*assets/**/*",)
    compile_command: Tuple[str, ...] = ("npx", "tstl")
    command_retry_interval: float = 5.0
    command_retry_attempts: int = 3
    network_timeout: float = 10.0

    def _resolve(self, rel: str) -> Path:
        p = Path(rel).expanduser()
        if not p.is_absolute():
            p = self.project_dir / p
        return p

    @property
    def system_path(self) -> Path:
        return self._resolve(self.system_dir)

    @property
    def source_path(self) -> Path:
        return self._resolve(self.source_dir)

    @property
    def temp_path(self) -> Path:
        return self._resolve(self.temp_dir)

    @property
    def out_path(self) -> Path:
        return self._resolve(self.out_dir)

    @property
    def loader_path(self) -> Path:
        return self.system_path / self.package_type.loader_file_name

    @property
    def package_name(self) -> str:
        # the title is a file name here, never a path
        return _PATH_SEPARATORS.sub("_", self.title) + ".vpk"

    @property
    def package_path(self) -> Path:
        return self.out_path / self.package_name

    @property
    def remote_app_path(self) -> str:
        return "/".join(REMOTE_APP_ROOT + (self.id,))


def _read_descriptor(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigParseError(f"Failed to parse {path}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigParseError(f"Project file root must be an object: {path}")
    return data


def merge_defaults(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Shallow merge of the descriptor over DEFAULTS, folding in legacy key aliases."""
    merged = dict(DEFAULTS)
    merged.update(raw)

    if raw.get("packageType") is None:
        if raw.get("type") is not None:
            merged["packageType"] = raw["type"]
        elif raw.get("unsafe") is not None:
            merged["packageType"] = PackageType.UNSAFE.value if raw["unsafe"] else PackageType.SAFE.value
        else:
            merged["packageType"] = PackageType.SAFE.value
    if raw.get("remoteAddress") is None and raw.get("ip") is not None:
        merged["remoteAddress"] = raw["ip"]

    ports = raw.get("ports") or {}
    if not isinstance(ports, dict):
        raise ConfigError(f"'ports' must be an object, got {ports!r}")
    default_ports = DEFAULTS["ports"]
    merged["ports"] = {
        "transferPort": ports.get("transferPort", ports.get("ftp", default_ports["transferPort"])),
        "commandPort": ports.get("commandPort", ports.get("cmd", default_ports["commandPort"])),
    }
    return merged


def _check_port(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not (0 < value < 65536):
        raise ConfigError(f"'{name}' must be a port number, got {value!r}")
    return value


def _check_str_list(name: str, value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{name}' must be a list of strings, got {value!r}")
    return tuple(value)


def _check_dir(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{name}' must be a non-empty path, got {value!r}")
    return value


def _check_work_dirs(config: ProjectConfig) -> None:
    """tempDir and outDir get wiped, so they must sit strictly inside the project and hold no inputs."""
    project = config.project_dir
    inputs = (("systemDir", config.system_path.resolve()), ("sourceDir", config.source_path.resolve()))
    for name, path in (("tempDir", config.temp_path.resolve()), ("outDir", config.out_path.resolve())):
        if path == project or not path.is_relative_to(project):
            raise ConfigError(
                f"'{name}' ({path}) must be a subdirectory of the project directory ({project})"
            )
        for input_name, input_path in inputs:
            if input_path.is_relative_to(path):
                raise ConfigError(f"'{name}' ({path}) must not contain '{input_name}' ({input_path})")


def validate_config(
    merged: Mapping[str, Any],
    project_dir: Path,
    *,
    check_loader: bool = True,
    require_remote: bool = False,
) -> ProjectConfig:
    """
    Validate a merged descriptor and build the ProjectConfig.

    Nothing on disk is modified here; the only filesystem access is the
    loader presence check when check_loader is set.
    """
    app_id = merged.get("id")
    if not isinstance(app_id, str) or not _ID_PATTERN.match(app_id):
        raise InvalidIdError(app_id)

    title = merged.get("title")
    if not isinstance(title, str) or not title.strip():
        raise TitleMissingError()

    package_type = PackageType.from_str(merged.get("packageType"))

    remote_address = merged.get("remoteAddress")
    if remote_address is not None and not isinstance(remote_address, str):
        raise ConfigError(f"'remoteAddress' must be a string, got {remote_address!r}")
    if require_remote and not remote_address:
        raise RemoteAddressMissingError()

    ports = merged["ports"]
    attempts = merged.get("commandRetryAttempts")
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        raise ConfigError(f"'commandRetryAttempts' must be a positive integer, got {attempts!r}")
    interval = merged.get("commandRetryInterval")
    timeout = merged.get("networkTimeout")
    for name, value in (("commandRetryInterval", interval), ("networkTimeout", timeout)):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ConfigError(f"'{name}' must be a non-negative number, got {value!r}")

    compile_command = _check_str_list("compileCommand", merged.get("compileCommand"))
    if not compile_command:
        raise ConfigError("'compileCommand' must not be empty")

    config = ProjectConfig(
        id=app_id,
        title=title,
        package_type=package_type,
        project_dir=Path(project_dir).resolve(),
        remote_address=remote_address or None,
        ports=Ports(
            transfer=_check_port("ports.transferPort", ports["transferPort"]),
            command=_check_port("ports.commandPort", ports["commandPort"]),
        ),
        system_dir=_check_dir("systemDir", merged.get("systemDir")),
        source_dir=_check_dir("sourceDir", merged.get("sourceDir")),
        temp_dir=_check_dir("tempDir", merged.get("tempDir")),
        out_dir=_check_dir("outDir", merged.get("outDir")),
        files=_check_str_list("files", merged.get("files") or []),
        compile_command=compile_command,
        command_retry_interval=float(interval),
        command_retry_attempts=attempts,
        network_timeout=float(timeout),
    )

    _check_work_dirs(config)
    if check_loader and not config.loader_path.is_file():
        raise LoaderMissingError(package_type.loader_file_name, str(config.system_path))
    return config


def default_config_path() -> str:
    return os.environ.get("VITAPACK_CONFIG", DEFAULT_CONFIG_PATH)


def load_config(
    path: Optional[str] = None,
    *,
    check_loader: bool = True,
    require_remote: bool = False,
    remote_address: Optional[str] = None,
) -> ProjectConfig:
    """
    Read, merge and validate the project descriptor.

    Args:
        path: descriptor path (default ./vita-project.json or $VITAPACK_CONFIG)
        check_loader: require systemDir/eboot_<packageType>.bin to exist
        require_remote: require a remote address (deploy and command actions)
        remote_address: overrides the descriptor's remote address
    """
    config_path = Path(path or default_config_path())
    print(f"[config] reading {config_path}")
    if not config_path.is_file():
        raise ConfigFileMissingError(str(config_path))

    merged = merge_defaults(_read_descriptor(config_path))
    if remote_address:
        merged["remoteAddress"] = remote_address

    config = validate_config(
        merged,
        config_path.resolve().parent,
        check_loader=check_loader,
        require_remote=require_remote,
    )
    print(f"[config] {config.id} '{config.title}' ({config.package_type.value}) validated")
    return config


def config_to_dict(config: ProjectConfig) -> Dict[str, Any]:
    """Descriptor-shaped view of a config, used by `vitapack check`."""
    out: Dict[str, Any] = {
        "id": config.id,
        "title": config.title,
        "packageType": config.package_type.value,
        "ports": {"transferPort": config.ports.transfer, "commandPort": config.ports.command},
        "systemDir": config.system_dir,
        "sourceDir": config.source_dir,
        "tempDir": config.temp_dir,
        "outDir": config.out_dir,
        "files": list(config.files),
    }
    if config.remote_address:
        out["remoteAddress"] = config.remote_address
    return out
