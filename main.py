#!/usr/bin/env python3
"""
Library backend -- administration CLI.

Usage:
  python main.py init-db
  python main.py create-admin --email admin@example.com --password 'Adm1n!pass'
  python main.py create-admin --email admin@example.com      (prompts for the password)
  python main.py serve --host 127.0.0.1 --port 8000

Environment variables (required for every command):
  JWT_KEY       Token signing key, at least 32 characters.
  JWT_ISSUER    Issuer claim written into and required on every token.
  JWT_AUDIENCE  Audience claim written into and required on every token.
  DATABASE_URL  Optional SQLAlchemy URL. Defaults to a SQLite file in auth/.
"""

import argparse
import getpass
import sys

from auth.models import Role
from auth.service import AccountService
from auth.store import IdentityStore, create_identity_engine
from auth.tokens import TokenIssuer
from auth.totp import TotpSecretManager
from core.config import Settings, get_settings
from core.errors import ConfigurationError, IdentityError


def _init_db(settings: Settings) -> int:
    engine = create_identity_engine(settings.database_url)
    engine.dispose()
    print(f"  Identity schema ready at {settings.database_url}")
    return 0


def _create_admin(settings: Settings, email: str, password: str | None) -> int:
    """Bootstrap an ADMIN account. Self-service registration cannot create one."""
    if password is None:
        password = getpass.getpass("  Password: ")
        confirm = getpass.getpass("  Confirm password: ")
    else:
        confirm = password

    engine = create_identity_engine(settings.database_url)
    try:
        with IdentityStore(engine) as store:
            service = AccountService(
                store,
                TotpSecretManager(store, settings.totp_issuer),
                TokenIssuer.from_settings(settings),
            )
            identity = service.register(email, password, confirm, role=Role.ADMIN, allow_admin=True)
    except IdentityError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        engine.dispose()

    print(f"  Admin account created (id={identity.id}, email={identity.email}).")
    return 0


def _serve(host: str, port: int, reload: bool) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="library-admin",
        description="Administration commands for the library identity backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py create-admin --email admin@example.com
  python main.py serve --port 8080
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("init-db", help="Create the identity schema if it does not exist")

    admin = sub.add_parser("create-admin", help="Create an ADMIN account")
    admin.add_argument("--email", required=True, help="Login email for the new admin")
    admin.add_argument(
        "--password",
        default=None,
        help="Password (prompted for when omitted; must satisfy the complexity rule)",
    )

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return

    try:
        settings = get_settings()
    except ConfigurationError as exc:
        print(f"  [!] Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)

    if args.command == "init-db":
        sys.exit(_init_db(settings))
    elif args.command == "create-admin":
        sys.exit(_create_admin(settings, args.email, args.password))
    else:
        sys.exit(_serve(args.host, args.port, args.reload))


if __name__ == "__main__":
    main()
