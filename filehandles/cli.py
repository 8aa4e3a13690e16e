#!/usr/bin/env python3
"""
Open File Handles CLI.

Usage:
    python -m filehandles.cli keygen
    python -m filehandles.cli register --name ops --public-key HEX
    python -m filehandles.cli login --address ADDR --private-key HEX
    python -m filehandles.cli status
    python -m filehandles.cli report
    python -m filehandles.cli activate [--opts "trace=/tmp/fd.log"]

The server URL and token come from --url/--token or FHC_URL/FHC_TOKEN.
"""
from __future__ import annotations

import argparse
import json
import os
from typing import Any

from .auth import generate_admin_keypair
from .client import HandleConsoleClient


def _emit(payload: Any, output_format: str) -> None:
    if output_format == "json":
        print(json.dumps(payload, sort_keys=True))
        return
    print(payload)


def _fail(message: str, output_format: str, *, code: int = 1) -> None:
    payload = {"status": "error", "error": message, "exit_code": code}
    _emit(payload if output_format == "json" else message, output_format)
    raise SystemExit(code)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Open File Handles console client")
    parser.add_argument("--url", default=os.getenv("FHC_URL", "http://localhost:8080"))
    parser.add_argument("--token", default=os.getenv("FHC_TOKEN"))
    parser.add_argument("--format", choices=["json", "text"], default="json")

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("keygen", help="Generate an Ed25519 keypair locally")

    p_reg = sub.add_parser("register", help="Register a public key with the console")
    p_reg.add_argument("--name", required=True)
    p_reg.add_argument("--public-key", required=True)

    p_login = sub.add_parser("login", help="Exchange a signed challenge for a token")
    p_login.add_argument("--address", required=True)
    p_login.add_argument("--private-key", default=os.getenv("FHC_PRIVATE_KEY"))

    sub.add_parser("status", help="Show whether the file leak detector is active")
    sub.add_parser("report", help="Dump the open file handles")

    p_act = sub.add_parser("activate", help="Activate the file leak detector")
    p_act.add_argument("--opts", default=None, help="Agent options, passed verbatim")

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "keygen":
        private_key, public_key = generate_admin_keypair()
        _emit({"private_key": private_key.decode(), "public_key": public_key.decode()}, args.format)
        return

    c = HandleConsoleClient(args.url, token=args.token)
    try:
        try:
            if args.cmd == "register":
                _emit(c.register(args.name, args.public_key), args.format)
            elif args.cmd == "login":
                if not args.private_key:
                    _fail("missing --private-key or FHC_PRIVATE_KEY", args.format, code=2)
                data = c.login(args.address, args.private_key.encode())
                _emit(data if args.format == "json" else data["token"], args.format)
            elif args.cmd == "status":
                _emit(c.status(), args.format)
            elif args.cmd == "report":
                dump = c.report()
                if dump is None:
                    _fail("file leak detector is not activated", args.format, code=3)
                _emit({"report": dump} if args.format == "json" else dump, args.format)
            elif args.cmd == "activate":
                message = c.activate(args.opts)
                _emit({"status": "ok", "message": message} if args.format == "json" else message,
                      args.format)
            else:
                _fail(f"unknown cmd: {args.cmd}", args.format, code=2)
        except SystemExit:
            raise
        except Exception as exc:
            _fail(str(exc), args.format, code=1)
    finally:
        c.close()


if __name__ == "__main__":
    main()
