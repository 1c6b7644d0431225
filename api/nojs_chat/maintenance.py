import argparse
import logging
from typing import List, Optional

from nojs_chat.chat.service import ChatService
from nojs_chat.core.config import Settings, get_settings
from nojs_chat.core.logging import setup_logging
from nojs_chat.db.sqlite import connect, init_db
from nojs_chat.memory import store

logger = logging.getLogger("maintenance")


def command_cleanup(args: argparse.Namespace, settings: Settings) -> int:
    days = args.days if args.days is not None else settings.cleanup_days_old
    conn = connect(settings.sqlite_path)
    try:
        init_db(conn)
        deleted = ChatService(conn, settings).cleanup_old_sessions(days)
    finally:
        conn.close()
    print(f"deleted {deleted} session(s) older than {max(1, days)} day(s)")
    return deleted


def command_purge(args: argparse.Namespace, settings: Settings) -> int:
    conn = connect(settings.sqlite_path)
    try:
        init_db(conn)
        deleted = store.purge_expired(conn, settings.session_retention_days)
    finally:
        conn.close()
    logger.info("purge finished count=%s retention_days=%s", deleted, settings.session_retention_days)
    print(f"purged {deleted} expired session(s)")
    return deleted


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat session maintenance")
    sub = parser.add_subparsers(dest="command")

    cleanup = sub.add_parser("cleanup", help="Delete sessions not updated in the last N days")
    cleanup.add_argument("--days", type=int, default=None, help="Age threshold in days (default: CLEANUP_DAYS_OLD)")
    cleanup.set_defaults(func=command_cleanup)

    purge = sub.add_parser("purge", help="Apply the SESSION_RETENTION_DAYS expiry window")
    purge.set_defaults(func=command_purge)

    return parser


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    args.func(args, settings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
