"""Command-line interface for SheetGuard."""

import argparse
import asyncio
import sys

import uvicorn

from .config import settings


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="SheetGuard - Mutation safety engine for Google Sheets"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Server command
    server_parser = subparsers.add_parser("serve", help="Start the web server")
    server_parser.add_argument(
        "--host", default=settings.host, help=f"Host to bind to (default: {settings.host})"
    )
    server_parser.add_argument(
        "--port", type=int, default=settings.port, help=f"Port to bind to (default: {settings.port})"
    )
    server_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # Auth command
    subparsers.add_parser("auth", help="Authenticate with Google Sheets API")

    # Purge command
    purge_parser = subparsers.add_parser(
        "purge", help="Evict expired transaction entries from the registry"
    )
    purge_parser.add_argument(
        "--backend",
        choices=["memory", "sqlite"],
        default="sqlite",
        help="Registry backend to purge (default: sqlite)",
    )

    args = parser.parse_args(argv)

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "auth":
        run_auth()
    elif args.command == "purge":
        purged = asyncio.run(run_purge(args.backend))
        print(f"Purged {purged} expired transaction(s).")
    else:
        parser.print_help()
        sys.exit(1)


def run_server(host: str, port: int, reload: bool):
    """Run the web server."""
    uvicorn.run(
        "sheetguard.api:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


async def run_purge(backend: str) -> int:
    """Purge expired transactions from the configured registry."""
    from .engine import create_context

    context = await create_context(backend)
    try:
        return await context.transactions.purge_expired(context.clock())
    finally:
        await context.close()


def run_auth():
    """Run the Google authentication flow."""
    from .sheets import GoogleSheetsClient

    print("Authenticating with Google Sheets API...")
    try:
        client = GoogleSheetsClient()
        # Accessing the service property triggers auth
        _ = client.service
        print("Authentication successful!")
        print("Token saved. SheetGuard can now reach Google Sheets.")
    except Exception as e:
        print(f"Authentication failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
