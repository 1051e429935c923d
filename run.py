#!/usr/bin/env python3
"""
Token Ledger Entry Point

Starts the FastAPI server, issues caller tokens, or publishes token metadata.

    python run.py                          # serve on the configured host/port
    python run.py token <account>          # print a bearer token for account
    python run.py publish-metadata <path>  # deploy if needed and write metadata JSON
"""

import argparse
import sys

from token_ledger.api import TokenLedgerSystem, run_server
from token_ledger.auth import create_access_token
from token_ledger.bootstrap import publish_metadata
from token_ledger.config import get_config
from token_ledger.exceptions import ConstructionError


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Token ledger service")
    subcommands = parser.add_subparsers(dest="command")

    serve = subcommands.add_parser("serve", help="Run the HTTP API (default)")
    serve.add_argument("--debug", action="store_true", help="Enable auto-reload")

    token = subcommands.add_parser("token", help="Issue a bearer token for an account")
    token.add_argument("account")

    publish = subcommands.add_parser("publish-metadata", help="Write token metadata JSON")
    publish.add_argument("path")

    args = parser.parse_args(argv)
    config = get_config()

    if args.command == "token":
        print(create_access_token(args.account, config))
        return 0

    if args.command == "publish-metadata":
        try:
            system = TokenLedgerSystem(config)
        except ConstructionError as e:
            print(f"Deployment failed: {e}", file=sys.stderr)
            return 1
        try:
            publish_metadata(system.contract, args.path)
        finally:
            system.close()
        print(f"Metadata written to {args.path}")
        return 0

    print("Starting Token Ledger...")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")
    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=getattr(args, "debug", False)
        )
    except KeyboardInterrupt:
        print("\nShutting down Token Ledger...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
