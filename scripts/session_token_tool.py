#!/usr/bin/env python3
"""
Session token tool for the encrypted session layer.

Generates session secrets and encodes or inspects session tokens from a
developer workstation, using the same codec as the session service.

Examples:
    session_token_tool.py generate-secret
    session_token_tool.py encode --secret $ACCESS_SESSION_SECRET '{"user_id": 123}'
    session_token_tool.py decode --secret $ACCESS_SESSION_SECRET --expire-after 86400 "$TOKEN"
"""

import argparse
import json
import os
import sys
from typing import List, Optional

from service_session.app.crypto.codec import SessionCodec
from service_session.app.crypto.keys import generate_secret_hex, validate_secret
from shared.errors import AccessLayerException


def _build_codec(args: argparse.Namespace, compress: bool = True) -> SessionCodec:
    key = validate_secret(args.secret)
    return SessionCodec(key, digest=args.digest, compress=compress)


def _cmd_generate_secret(args: argparse.Namespace) -> int:
    print(generate_secret_hex(args.bytes))
    return 0


def _cmd_encode(args: argparse.Namespace) -> int:
    try:
        session = json.loads(args.session)
    except json.JSONDecodeError as exc:
        print(f"[session-token] invalid JSON: {exc}", file=sys.stderr)
        return 2

    codec = _build_codec(args, compress=not args.no_compress)
    print(codec.encode(session, args.expire_after))
    return 0


def _cmd_decode(args: argparse.Namespace) -> int:
    codec = _build_codec(args)
    result = codec.decode(args.token, args.expire_after)
    print(json.dumps({
        "status": result.status.value,
        "session": result.session,
        "timestamp": result.timestamp,
        "reason": result.reason,
    }, indent=2))
    return 0 if result.is_ok else 1


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate session secrets and encode/inspect session tokens")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate-secret", help="Print a random hexadecimal session secret")
    generate.add_argument("--bytes", type=int, default=64, help="Number of random bytes (default: 64)")
    generate.set_defaults(handler=_cmd_generate_secret)

    for name, handler, help_text in (
        ("encode", _cmd_encode, "Encode a JSON object into a session token"),
        ("decode", _cmd_decode, "Decode and verify a session token"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("--secret", default=os.getenv("ACCESS_SESSION_SECRET"), help="Hexadecimal session secret (default: $ACCESS_SESSION_SECRET)")
        command.add_argument("--digest", default=os.getenv("ACCESS_SESSION_DIGEST", "SHA1"), help="MAC digest algorithm")
        command.add_argument("--expire-after", type=int, default=None, help="Expiry in seconds")
        command.set_defaults(handler=handler)
        if name == "encode":
            command.add_argument("--no-compress", action="store_true", help="Never compress the session body")
            command.add_argument("session", help="Session as a JSON object")
        else:
            command.add_argument("token", help="Session token")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        return args.handler(args)
    except AccessLayerException as exc:
        print(f"[session-token] {exc.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
