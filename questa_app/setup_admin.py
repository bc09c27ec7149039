"""
Grant (or revoke) admin access from the command line.

The admin panel only opens for users whose document carries ``is_admin``,
so the first admin on a fresh database has to be made here::

    questa-setup-admin --email owner@example.com
    questa-setup-admin --uid abc123 --email owner@example.com --create
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from .cache import TTLCache
from .config import settings
from .documents import DocumentStore
from .errors import QuestaError
from .logging_setup import setup_logging
from .repository import QuestaRepository
from .services.admin_actions import AdminActions
from .services.user_actions import UserActions

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Grant or revoke Questa admin access.")
    ap.add_argument("--uid", help="User ID of the account.")
    ap.add_argument("--email", help="Email of the account (used for lookup when --uid is not given).")
    ap.add_argument("--create", action="store_true", help="Create the user document first if it is missing.")
    ap.add_argument("--revoke", action="store_true", help="Remove admin access instead of granting it.")
    ap.add_argument("--database-url", default=None, help="Defaults to DATABASE_URL / settings.")
    return ap


def run(repo: QuestaRepository, uid: Optional[str], email: Optional[str],
        create: bool = False, revoke: bool = False) -> str:
    """Apply the admin flag and return the affected user id."""
    user = repo.get_user(uid) if uid else None
    if user is None and email and not uid:
        user = repo.find_user_by_email(email)
    if user is None:
        if not create:
            raise QuestaError(f"No user found for {uid or email}.")
        if not uid:
            raise QuestaError("--create needs --uid.")
        user = UserActions(repo).register(uid, email or "")
    AdminActions(repo, admin_id="cli").set_admin(user.id, not revoke)
    return user.id


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if not args.uid and not args.email:
        print("Pass --uid or --email.", file=sys.stderr)
        return 2
    setup_logging(level=settings.log_level, log_dir=settings.log_dir)
    store = DocumentStore.from_url(args.database_url or settings.database_url)
    repo = QuestaRepository(store, cache=TTLCache(ttl_seconds=settings.cache_ttl_seconds))
    try:
        uid = run(repo, args.uid, args.email, create=args.create, revoke=args.revoke)
    except QuestaError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(f"{uid}: admin {'revoked' if args.revoke else 'granted'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
