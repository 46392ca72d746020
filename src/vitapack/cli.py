"""
vitapack command line.

    vitapack build                 build dist/<title>.vpk
    vitapack deploy [--ip IP]      stage, upload to ux0:/app/<id> and launch
    vitapack test:cmd              launch, wait, destroy (command channel smoke test)
    vitapack launch|destroy|reboot|screen on|off
    vitapack check                 validate the project file and the toolchain
    vitapack fetch-eboot           download the lpp-vita loader binaries
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__, pipeline, toolchain
from .config import config_to_dict, load_config
from .eboot import LATEST_RELEASE_API, fetch_loaders
from .errors import VitaPackError
from .remote import VitaDevice


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vitapack",
        description="Build and deploy PS Vita homebrew packages.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to the project file (default: ./vita-project.json or $VITAPACK_CONFIG)",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("build", help="Build <outDir>/<title>.vpk")

    p_deploy = sub.add_parser("deploy", help="Stage the project and push it to the device over FTP")
    p_deploy.add_argument("--ip", default=None, help="Device address (overrides remoteAddress)")
    p_deploy.add_argument("--no-launch", action="store_true", help="Do not launch the app after uploading")

    p_test = sub.add_parser("test:cmd", help="Launch the app, wait and destroy it again")
    p_test.add_argument("--ip", default=None, help="Device address (overrides remoteAddress)")
    p_test.add_argument("--wait", type=float, default=2.0, help="Seconds between launch and destroy (default: 2)")

    for name, help_text in (
        ("launch", "Launch the app on the device"),
        ("destroy", "Close running applications on the device"),
        ("reboot", "Reboot the device"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--ip", default=None, help="Device address (overrides remoteAddress)")

    p_screen = sub.add_parser("screen", help="Turn the device screen on or off")
    p_screen.add_argument("state", choices=["on", "off"])
    p_screen.add_argument("--ip", default=None, help="Device address (overrides remoteAddress)")

    sub.add_parser("check", help="Validate the project file and the VitaSDK toolchain")

    p_fetch = sub.add_parser("fetch-eboot", help="Download the lpp-vita loader binaries into systemDir")
    p_fetch.add_argument("--system-dir", default=None, help="Destination (default: systemDir of the project)")
    p_fetch.add_argument("--release-url", default=LATEST_RELEASE_API, help="GitHub API release url")

    sub.add_parser("watch", help="Redeploy on file changes (not implemented)")
    return parser


def _run(args: argparse.Namespace) -> int:
    if args.cmd == "build":
        pipeline.build(load_config(args.config))
        return 0

    if args.cmd == "deploy":
        config = load_config(args.config, require_remote=True, remote_address=args.ip)
        pipeline.deploy(config, launch=not args.no_launch)
        return 0

    if args.cmd == "test:cmd":
        config = load_config(args.config, check_loader=False, require_remote=True, remote_address=args.ip)
        pipeline.command_smoke_test(config, wait=args.wait)
        return 0

    if args.cmd in ("launch", "destroy", "reboot", "screen"):
        config = load_config(args.config, check_loader=False, require_remote=True, remote_address=args.ip)
        device = VitaDevice(config)
        if args.cmd == "launch":
            device.launch()
        elif args.cmd == "destroy":
            device.destroy()
        elif args.cmd == "reboot":
            device.reboot()
        else:
            device.screen(args.state == "on")
        return 0

    if args.cmd == "check":
        config = load_config(args.config)
        toolchain.check_toolchain()
        print(json.dumps(config_to_dict(config), indent=2, ensure_ascii=False))
        return 0

    if args.cmd == "fetch-eboot":
        if args.system_dir:
            system_dir = Path(args.system_dir)
        else:
            system_dir = load_config(args.config, check_loader=False).system_path
        fetch_loaders(system_dir, release_url=args.release_url)
        return 0

    if args.cmd == "watch":
        load_config(args.config)
        print("watch is not implemented yet; use `vitapack deploy`", file=sys.stderr)
        return 2

    return 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return _run(args)
    except VitaPackError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
