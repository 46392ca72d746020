"""
Error types raised by the vitapack build and deploy steps.

Every error carries a human readable message; the CLI prints it and exits
with a non-zero status.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


LOADER_DOWNLOAD_URL = "https://github.com/Rinnegatamante/lpp-vita/releases/latest"


class VitaPackError(Exception):
    pass


class ConfigError(VitaPackError):
    pass


class ConfigFileMissingError(ConfigError):
    def __init__(self, path: str):
        super().__init__(f"{path} file is missing. It's required for the build process.")
        self.path = path


class ConfigParseError(ConfigError):
    pass


class InvalidIdError(ConfigError):
    def __init__(self, value: object = None):
        super().__init__(
            "'id' is not defined or does not conform the requirements. "
            f"It must be exactly 9 uppercase alphanumeric characters (got {value!r})."
        )


class TitleMissingError(ConfigError):
    def __init__(self):
        super().__init__("'title' is not available.")


class InvalidPackageTypeError(ConfigError):
    def __init__(self, value: object, allowed: Sequence[str]):
        super().__init__(
            f"'packageType' {value!r} is invalid. Use one of: {', '.join(allowed)}."
        )


class LoaderMissingError(ConfigError):
    def __init__(self, file_name: str, system_dir: str):
        super().__init__(
            f"Loader file {file_name} is missing from the system directory ({system_dir}). "
            f"Download it from '{LOADER_DOWNLOAD_URL}' or run `vitapack fetch-eboot`."
        )
        self.file_name = file_name


class RemoteAddressMissingError(ConfigError):
    def __init__(self):
        super().__init__(
            "Remote address not defined. Set 'remoteAddress' (or 'ip') in the project file "
            "or pass --ip."
        )


class ToolchainMissingError(VitaPackError):
    def __init__(self, tool: str, detail: str = ""):
        message = (
            f"{tool} is not available. Install VitaSDK (https://vitasdk.org) "
            "and make sure its bin directory is on PATH."
        )
        if detail:
            message += f"\n{detail}"
        super().__init__(message)
        self.tool = tool


class ExternalProcessError(VitaPackError):
    """A build tool exited with a non-zero status or could not be started."""

    def __init__(
        self,
        cmd: List[str],
        returncode: Optional[int],
        stdout: str = "",
        stderr: str = "",
    ):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        if returncode is None:
            head = f"failed to start: {' '.join(self.cmd)}"
        else:
            head = f"command failed with exit code {returncode}: {' '.join(self.cmd)}"
        parts = [head]
        if self.stdout.strip():
            parts.append(self.stdout.rstrip())
        if self.stderr.strip():
            parts.append(self.stderr.rstrip())
        super().__init__("\n".join(parts))


class NetworkError(VitaPackError):
    pass


class RemoteCommandError(NetworkError):
    pass


class TransferError(NetworkError):
    pass


class EbootFetchError(VitaPackError):
    pass
