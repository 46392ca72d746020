"""
Development device access.

The device runs a command listener (one newline terminated command per
TCP connection) and an anonymous FTP server. Both are reached through the
remote address and ports of the project configuration.
"""

from __future__ import annotations

import ftplib
import os
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import REMOTE_APP_ROOT, ProjectConfig
from .errors import RemoteAddressMissingError, RemoteCommandError, TransferError


@dataclass(frozen=True)
class CommandResult:
    command: str
    ok: bool
    attempts: int
    error: Optional[str] = None


def send_command(
    host: str,
    port: int,
    command: str,
    *,
    retry_interval: float = 5.0,
    retry_attempts: int = 3,
    timeout: float = 10.0,
) -> CommandResult:
    """
    Send one command line to the device's command port.

    Each attempt opens a connection, sends `command + "\\n"` and closes it.
    Failed connections are retried after retry_interval seconds, at most
    retry_attempts attempts in total.
    """
    payload = (command + "\n").encode("utf-8")
    last_error = None
    for attempt in range(1, retry_attempts + 1):
        print(f"[cmd] {host}:{port} <- {command!r} (attempt {attempt}/{retry_attempts})")
        try:
            with socket.create_connection((host, port), timeout=timeout) as sock:
                sock.sendall(payload)
            return CommandResult(command, True, attempt)
        except OSError as e:
            last_error = str(e) or e.__class__.__name__
            print(f"[cmd] connection failed: {last_error}")
            if attempt < retry_attempts:
                time.sleep(retry_interval)
    return CommandResult(command, False, retry_attempts, last_error)


class VitaDevice:
    def __init__(self, config: ProjectConfig):
        if not config.remote_address:
            raise RemoteAddressMissingError()
        self.config = config
        self.host = config.remote_address

    def send(self, command: str) -> CommandResult:
        result = send_command(
            self.host,
            self.config.ports.command,
            command,
            retry_interval=self.config.command_retry_interval,
            retry_attempts=self.config.command_retry_attempts,
            timeout=self.config.network_timeout,
        )
        if not result.ok:
            raise RemoteCommandError(
                f"command {command!r} to {self.host}:{self.config.ports.command} failed "
                f"after {result.attempts} attempt(s): {result.error}"
            )
        return result

    def destroy(self) -> CommandResult:
        return self.send("destroy")

    def launch(self, title_id: Optional[str] = None) -> CommandResult:
        return self.send(f"launch {title_id or self.config.id}")

    def reboot(self) -> CommandResult:
        return self.send("reboot")

    def screen(self, on: bool) -> CommandResult:
        return self.send(f"screen {'on' if on else 'off'}")

    @staticmethod
    def _enter_dir(ftp: ftplib.FTP, name: str) -> None:
        try:
            ftp.cwd(name)
        except ftplib.error_perm:
            ftp.mkd(name)
            ftp.cwd(name)

    def _upload_dir(self, ftp: ftplib.FTP, local_dir: Path) -> int:
        count = 0
        with os.scandir(local_dir) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            if entry.is_dir():
                self._enter_dir(ftp, entry.name)
                count += self._upload_dir(ftp, Path(entry.path))
                ftp.cwd("..")
            else:
                with open(entry.path, "rb") as f:
                    ftp.storbinary(f"STOR {entry.name}", f)
                count += 1
        return count

    def upload_tree(self, local_dir: Path) -> int:
        """Upload the contents of local_dir into ux0:/app/<id>. Returns the number of files sent."""
        port = self.config.ports.transfer
        print(f"[ftp] connecting to {self.host}:{port}")
        try:
            with ftplib.FTP() as ftp:
                ftp.connect(self.host, port, timeout=self.config.network_timeout)
                ftp.login()
                print("[ftp] connected")
                for part in REMOTE_APP_ROOT:
                    ftp.cwd(part)
                self._enter_dir(ftp, self.config.id)
                print(f"[ftp] uploading {local_dir} -> {self.config.remote_app_path}")
                count = self._upload_dir(ftp, local_dir)
        except ftplib.all_errors as e:
            raise TransferError(f"FTP transfer to {self.host}:{port} failed: {e}") from e
        print(f"[ftp] {count} files uploaded, connection closed")
        return count
