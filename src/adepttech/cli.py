"""
adepttech CLI entrypoint.

A small operator tool for walking through the OAuth2 flow and poking at the API without
writing code. Client configuration comes from `get_settings()` (YAML + environment).
Tokens are stored as the JSON produced by `MarshalledToken.to_bytes()`.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from adepttech.client.instance import Instance
from adepttech.client.token import Token, marshal_token, unmarshal_token
from adepttech.core.logging import configure_logging

logger = logging.getLogger(__name__)


def _parse_param_pairs(pairs: list[str]) -> dict[str, list[str]]:
    """Parse repeatable `KEY=VALUE` arguments into a query multi-map."""
    out: dict[str, list[str]] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Invalid --param '{pair}', expected KEY=VALUE")
        key, value = pair.split("=", 1)
        out.setdefault(key.strip(), []).append(value)
    return out


def _token_writer(path: Path | None):
    def write(token: Token) -> None:
        data = marshal_token(token).to_bytes()
        if path is None:
            print(data.decode("utf-8"))
            return
        path.write_bytes(data)
        logger.info("Token written to %s", path)

    return write


def _cmd_auth_url(args: argparse.Namespace) -> int:
    with Instance.from_settings() as client:
        print(client.auth_url(args.state))
    return 0


def _cmd_exchange(args: argparse.Namespace) -> int:
    token_file = Path(args.token_file) if args.token_file else None
    with Instance.from_settings(on_token_update=_token_writer(token_file)) as client:
        client.exchange_code(args.code)
    return 0


def _cmd_get(args: argparse.Namespace) -> int:
    token_file = Path(args.token_file)
    stored = unmarshal_token(token_file.read_bytes())

    with Instance.from_settings(on_token_update=_token_writer(token_file)) as client:
        client.assign_token(stored.token())
        payload = client.get_into(args.path, _parse_param_pairs(args.param), Any)

    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the adepttech CLI."""
    parser = argparse.ArgumentParser(prog="adepttech")
    sub = parser.add_subparsers(dest="command", required=True)

    auth = sub.add_parser("auth-url", help="Print the authorization URL to send the user to.")
    auth.add_argument("state", help="Opaque anti-forgery value echoed back on the callback.")
    auth.set_defaults(func=_cmd_auth_url)

    ex = sub.add_parser("exchange", help="Exchange an authorization code for a token.")
    ex.add_argument("code")
    ex.add_argument("--token-file", default=None, help="Write the token here instead of stdout.")
    ex.set_defaults(func=_cmd_exchange)

    get = sub.add_parser("get", help="GET an API path and print the JSON response.")
    get.add_argument("path", help="API path relative to the base URL (e.g. me).")
    get.add_argument("--token-file", required=True, help="Token JSON from `exchange`.")
    get.add_argument("--param", action="append", default=[], help="Query parameter: KEY=VALUE")
    get.set_defaults(func=_cmd_get)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m adepttech.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
