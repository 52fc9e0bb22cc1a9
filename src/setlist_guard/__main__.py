# Command-line entry point for audit forensics.
#
#   setlist-guard verify --db audit.db      check the audit hash chain
#   setlist-guard events --db audit.db ...  print recent events as JSON lines
#
# The database path and HMAC key default to SETLIST_GUARD_AUDIT_DB and
# SETLIST_GUARD_AUDIT_HMAC_KEY.

import argparse
import json
import sys
from pathlib import Path

from . import __version__
from .config import GuardSettings
from .core.exceptions import GuardException
from .core.models import SecurityEventSeverity, SecurityEventType
from .stores.sqlite_store import SqliteAuditSink

EXIT_OK = 0
EXIT_TAMPERED = 1
EXIT_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="setlist-guard",
        description="Setlist Guard - security audit trail tools",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"setlist-guard {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    verify = subparsers.add_parser("verify", help="Verify the audit log hash chain")
    verify.add_argument("--db", help="Audit database path (default: SETLIST_GUARD_AUDIT_DB)")
    verify.add_argument("--hmac-key", help="Chain HMAC key (default: SETLIST_GUARD_AUDIT_HMAC_KEY)")

    events = subparsers.add_parser("events", help="Print recent security events as JSON lines")
    events.add_argument("--db", help="Audit database path (default: SETLIST_GUARD_AUDIT_DB)")
    events.add_argument("--type", choices=[t.value for t in SecurityEventType], dest="event_type")
    events.add_argument("--severity", choices=[s.value for s in SecurityEventSeverity])
    events.add_argument("--user", dest="user_id")
    events.add_argument("--limit", type=int, default=50)

    return parser


def _open_sink(args, settings: GuardSettings) -> SqliteAuditSink:
    db_path = args.db or settings.audit_db_path
    if not db_path:
        raise GuardException("No audit database given (--db or SETLIST_GUARD_AUDIT_DB)")
    if not Path(db_path).exists():
        raise GuardException(f"Audit database not found: {db_path}")
    hmac_key = getattr(args, "hmac_key", None) or settings.audit_hmac_key
    return SqliteAuditSink(db_path, hmac_key=hmac_key)


def _verify(args, settings: GuardSettings) -> int:
    sink = _open_sink(args, settings)
    report = sink.verify_chain()
    if report.valid:
        print(f"Audit chain OK: {report.checked} events verified")
        return EXIT_OK
    print(
        f"Audit chain BROKEN at seq {report.broken_at_seq} "
        f"(event {report.broken_event_id}): {report.reason}; "
        f"{report.checked} events verified before the break"
    )
    return EXIT_TAMPERED


def _events(args, settings: GuardSettings) -> int:
    sink = _open_sink(args, settings)
    for event in sink.query_events(
        event_type=args.event_type,
        severity=args.severity,
        user_id=args.user_id,
        limit=args.limit,
    ):
        print(json.dumps(event.to_dict(), sort_keys=True))
    return EXIT_OK


def main(argv=None) -> int:
    """Run the setlist-guard CLI and return the process exit code."""
    args = _build_parser().parse_args(argv)

    try:
        settings = GuardSettings.from_env()
        if args.command == "verify":
            return _verify(args, settings)
        return _events(args, settings)
    except GuardException as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
