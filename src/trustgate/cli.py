"""``trustgate`` command-line entrypoint.

Subcommands: serve | install-id | approvals list|revoke | identity status|signout
| credentials migrate. Environment is seeded from ``.env`` in the working
directory before the config is loaded.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from trustgate import __version__
from trustgate.config import ConfigError, TrustgateConfig, load_config
from trustgate.runtime import TrustgateRuntime, build_runtime


def parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(prog="trustgate", description="Trustgate gateway")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Root log level (default: info)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to trustgate.toml (default: $TRUSTGATE_CONFIG or <state dir>/trustgate.toml)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the RPC server")
    serve.add_argument("--host", default=None, help="Bind host (default: $TRUSTGATE_HOST)")
    serve.add_argument(
        "--port", type=int, default=None, help="Bind port (default: $TRUSTGATE_PORT)"
    )

    commands.add_parser("install-id", help="Print the install uuid, creating it if needed")

    approvals = commands.add_parser("approvals", help="Inspect persisted tool approvals")
    approvals_commands = approvals.add_subparsers(dest="approvals_command", required=True)
    approvals_commands.add_parser("list", help="List allow-always grants")
    revoke = approvals_commands.add_parser("revoke", help="Remove one grant by id")
    revoke.add_argument("entry_id")

    identity = commands.add_parser("identity", help="Google sign-in state")
    identity_commands = identity.add_subparsers(dest="identity_command", required=True)
    identity_commands.add_parser("status", help="Show the signed-in identity")
    identity_commands.add_parser("signout", help="Delete stored tokens and identity")

    credentials = commands.add_parser("credentials", help="Provider credential store")
    credentials_commands = credentials.add_subparsers(dest="credentials_command", required=True)
    credentials_commands.add_parser("migrate", help="Move plaintext API keys into the vault")

    return parser.parse_args(argv)


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2))


def _list_approvals(runtime: TrustgateRuntime) -> int:
    snapshot = runtime.approvals_store.read_snapshot()
    _print_json([entry.to_dict() for entry in snapshot.file.entries])
    return 0


def _revoke_approval(runtime: TrustgateRuntime, entry_id: str) -> int:
    if not runtime.approvals_store.remove_entry(entry_id):
        print(f"No tool approval with id {entry_id}", file=sys.stderr)
        return 1
    print(f"Revoked {entry_id}")
    return 0


async def _identity_status(runtime: TrustgateRuntime) -> int:
    identity = await runtime.identity.get_identity()
    _print_json({"identity": identity.to_dict() if identity is not None else None})
    return 0


async def _identity_signout(runtime: TrustgateRuntime) -> int:
    await runtime.identity.sign_out()
    print("Signed out")
    return 0


def _migrate_credentials(runtime: TrustgateRuntime) -> int:
    if not runtime.config.secure_credentials_enabled:
        print(
            "Secure credential store is off (set TRUSTGATE_AUTH_SECURE_STORE=1 or desktop mode)",
            file=sys.stderr,
        )
        return 1
    changed = runtime.auth_profiles.migrate()
    print("Migrated plaintext credentials" if changed else "Nothing to migrate")
    return 0


async def _dispatch(args: argparse.Namespace, runtime: TrustgateRuntime) -> int:
    if args.command == "install-id":
        print(runtime.install_identity.resolve())
        return 0
    if args.command == "approvals":
        if args.approvals_command == "revoke":
            return _revoke_approval(runtime, args.entry_id)
        return _list_approvals(runtime)
    if args.command == "identity":
        if args.identity_command == "signout":
            return await _identity_signout(runtime)
        return await _identity_status(runtime)
    if args.command == "credentials":
        return _migrate_credentials(runtime)
    raise SystemExit(f"Unknown command: {args.command}")


async def _run(args: argparse.Namespace, runtime: TrustgateRuntime) -> int:
    try:
        return await _dispatch(args, runtime)
    finally:
        await runtime.aclose()


def run_command(args: argparse.Namespace, config: TrustgateConfig) -> int:
    """Execute a parsed non-server subcommand and return its exit code."""
    return asyncio.run(_run(args, build_runtime(config)))


def main(argv: list[str] | None = None) -> None:
    load_dotenv(dotenv_path=Path.cwd() / ".env")
    args = parse_cli_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.config:
        # serve rebuilds the config inside the uvicorn factory from the environment
        os.environ["TRUSTGATE_CONFIG"] = str(Path(args.config).expanduser())
    try:
        config = load_config()
    except ConfigError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    if args.command == "serve":
        from trustgate.server.cli import run_server

        run_server(args.host or config.host, args.port or config.port, log_level=args.log_level)
        return
    sys.exit(run_command(args, config))


if __name__ == "__main__":
    main()
