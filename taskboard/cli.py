from __future__ import annotations

import argparse
import sys

from taskboard.config import load_config


def serve(host: str, port: int, log_level: str) -> int:
    # Deferred so `taskboard token` works without the server stack
    import uvicorn

    uvicorn.run("taskboard.gateway.asgi:app", host=host, port=port, log_level=log_level)
    return 0


def issue_token(user_id: str, ttl: int | None) -> int:
    from taskboard.auth import TokenAuthenticator

    cfg = load_config()
    authenticator = TokenAuthenticator(cfg.token_secret, ttl_seconds=cfg.token_ttl_seconds)
    try:
        token = authenticator.issue(user_id, ttl_seconds=ttl)
    except ValueError as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 2
    sys.stdout.write(token + "\n")
    return 0


def main(argv: list[str] | None = None) -> None:
    cfg = load_config()
    parser = argparse.ArgumentParser("taskboard")
    sub = parser.add_subparsers(dest="cmd")

    p_serve = sub.add_parser("serve", help="Run the HTTP + realtime gateway with uvicorn")
    p_serve.add_argument("--host", default=cfg.host)
    p_serve.add_argument("--port", type=int, default=cfg.port)
    p_serve.add_argument(
        "--log-level", choices=["debug", "info", "warning", "error"], default="info"
    )

    p_token = sub.add_parser("token", help="Print a signed access token for a user id")
    p_token.add_argument("user_id")
    p_token.add_argument("--ttl", type=int, help="Lifetime in seconds (default from config)")

    args = parser.parse_args(argv)
    cmd = str(getattr(args, "cmd", None) or "")

    if cmd == "serve":
        raise SystemExit(serve(args.host, args.port, args.log_level))

    if cmd == "token":
        raise SystemExit(issue_token(args.user_id, args.ttl))

    # Default to help if unknown
    parser.print_help()


if __name__ == "__main__":
    main()
