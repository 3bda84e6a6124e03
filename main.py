#!/usr/bin/env python3
"""
homegate -- admin command line for the gateway's accounts, vault and audit log.

Works directly against the configured database; the web server does not need
to be running.

Usage:
  python main.py create-admin alice
  python main.py create-user bob --services radarr sonarr --email bob@example.com
  python main.py set-credential 2 radarr --username bob
  python main.py delete-credential 2 radarr
  python main.py audit --user 2 --service radarr --status fail
  python main.py audit --json --limit 20
  python main.py purge

Passwords are prompted for unless --password is given.

Environment variables:
  DATABASE_URL               Database holding accounts, vault and audit log.
  CREDENTIAL_ENCRYPTION_KEY  32-byte vault key, required by set-credential.
  CACHE_DB_PATH              Credential cache file, used by purge and the
                             credential commands.
  JELLYFIN_BASE_URL, ...     Configured backends; set-credential accepts only these.
"""

import argparse
import getpass
import json
import sys
from dataclasses import asdict
from typing import Optional

from sqlalchemy.exc import IntegrityError

from audit.store import DEFAULT_QUERY_LIMIT, AuditLog
from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from cache.store import CredentialCache
from core.config import Settings, get_settings
from core.errors import GatewayError
from core.models import AUDIT_FAIL, AUDIT_SUCCESS, ROLE_ADMIN, ROLE_USER
from core.services import ServiceConfig, build_service_configs
from vault.crypto import CredentialCipher
from vault.store import CredentialVault


def _prompt_password(label: str, given: Optional[str]) -> str:
    if given:
        return given
    first = getpass.getpass(f"{label}: ")
    second = getpass.getpass(f"{label} (again): ")
    if first != second:
        raise SystemExit("  [!] Passwords do not match.")
    if not first:
        raise SystemExit("  [!] Password must not be empty.")
    return first


def _create_account(settings: Settings, args: argparse.Namespace, role: str) -> int:
    password = _prompt_password("Password", args.password)
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    store = UserStore(settings.database_url)
    try:
        user_id = store.create_user(
            User(
                username=args.username,
                role=role,
                hashed_password=hash_password(password),
                email=args.email,
                allowed_services=list(dict.fromkeys(getattr(args, "services", None) or [])),
            )
        )
    except IntegrityError:
        print(f"  [!] A user named '{args.username}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created {role} '{args.username}' (id {user_id}).")
    return 0


def cmd_create_admin(settings: Settings, args: argparse.Namespace) -> int:
    return _create_account(settings, args, ROLE_ADMIN)


def cmd_create_user(settings: Settings, args: argparse.Namespace) -> int:
    return _create_account(settings, args, ROLE_USER)


def _drop_cached(settings: Settings, config: ServiceConfig, user_id: str) -> bool:
    """Forget the derived credential so the next visit logs in with the new secret."""
    cache = CredentialCache(settings.cache_db_path, default_ttl=settings.cache_default_ttl)
    try:
        return cache.delete(config.cache_key(user_id))
    finally:
        cache.close()


def cmd_set_credential(settings: Settings, args: argparse.Namespace) -> int:
    """Store (or replace) a backend username/password for one user and service."""
    config = build_service_configs(settings).get(args.service)
    if config is None:
        print(f"  [!] Service '{args.service}' is not configured.")
        return 1

    users = UserStore(settings.database_url)
    try:
        if users.get_by_id(args.user_id) is None:
            print(f"  [!] No user with id {args.user_id}.")
            return 1
    finally:
        users.close()

    password = _prompt_password(f"{args.service} password for {args.username}", args.password)
    vault = CredentialVault(CredentialCipher(settings.credential_encryption_key), settings.database_url)
    try:
        vault.set(args.user_id, args.service, {"username": args.username, "password": password})
    finally:
        vault.close()
    _drop_cached(settings, config, args.user_id)
    print(f"  Stored {args.service} credential for user {args.user_id}.")
    return 0


def cmd_delete_credential(settings: Settings, args: argparse.Namespace) -> int:
    vault = CredentialVault(CredentialCipher(settings.credential_encryption_key), settings.database_url)
    try:
        existed = vault.exists(args.user_id, args.service)
        vault.delete(args.user_id, args.service)
    finally:
        vault.close()
    # A backend that has since been disabled has no cache entry to drop.
    config = build_service_configs(settings).get(args.service)
    if config is not None:
        _drop_cached(settings, config, args.user_id)
    if existed:
        print(f"  Deleted {args.service} credential for user {args.user_id}.")
    else:
        print(f"  No {args.service} credential stored for user {args.user_id}.")
    return 0


def cmd_audit(settings: Settings, args: argparse.Namespace) -> int:
    audit = AuditLog(settings.database_url, retention_days=settings.audit_retention_days)
    try:
        entries = audit.query(user_id=args.user, service=args.service, status=args.status, limit=args.limit)
    finally:
        audit.close()

    if args.json:
        print(json.dumps([asdict(e) for e in entries], indent=2))
        return 0
    if not entries:
        print("  No audit entries match.")
        return 0
    for e in entries:
        print(f"  {e.created_at}  {e.status:<7}  user={e.user_id:<6} {e.service:<10} {e.reason or ''}")
    return 0


def cmd_purge(settings: Settings, args: argparse.Namespace) -> int:
    audit = AuditLog(settings.database_url, retention_days=settings.audit_retention_days)
    cache = CredentialCache(settings.cache_db_path, default_ttl=settings.cache_default_ttl)
    try:
        rows = audit.purge_expired()
        entries = cache.purge_expired()
    finally:
        audit.close()
        cache.close()
    print(f"  Purged {rows} audit row(s) and {entries} cache entr{'y' if entries == 1 else 'ies'}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="homegate",
        description="Manage homegate accounts, stored backend credentials and the audit log.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin alice
  python main.py create-user bob --services radarr sonarr
  python main.py set-credential 2 radarr --username bob
  python main.py audit --status fail --json
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    for name, func, help_text in (
        ("create-admin", cmd_create_admin, "Create an admin account"),
        ("create-user", cmd_create_user, "Create a regular account"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("username")
        p.add_argument("--password", help="Account password (prompted for if omitted)")
        p.add_argument("--email")
        if name == "create-user":
            p.add_argument(
                "--services",
                nargs="*",
                default=[],
                metavar="SERVICE",
                help="Services the user may open, e.g. jellyfin radarr",
            )
        p.set_defaults(func=func)

    p = sub.add_parser("set-credential", help="Store a backend login for a user")
    p.add_argument("user_id")
    p.add_argument("service")
    p.add_argument("--username", required=True, help="Login name on the backend service")
    p.add_argument("--password", help="Backend password (prompted for if omitted)")
    p.set_defaults(func=cmd_set_credential)

    p = sub.add_parser("delete-credential", help="Remove a stored backend login")
    p.add_argument("user_id")
    p.add_argument("service")
    p.set_defaults(func=cmd_delete_credential)

    p = sub.add_parser("audit", help="Show recent authentication attempts")
    p.add_argument("--user", metavar="USER_ID")
    p.add_argument("--service")
    p.add_argument("--status", choices=[AUDIT_SUCCESS, AUDIT_FAIL])
    p.add_argument("--limit", type=int, default=DEFAULT_QUERY_LIMIT)
    p.add_argument("--json", action="store_true", help="Output structured JSON")
    p.set_defaults(func=cmd_audit)

    p = sub.add_parser("purge", help="Delete expired cache entries and audit rows")
    p.set_defaults(func=cmd_purge)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    try:
        return args.func(get_settings(), args)
    except (GatewayError, ValueError) as e:
        print(f"  [!] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
