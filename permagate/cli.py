#!/usr/bin/env python3
"""
Permagate admin command line interface

Usage:
    permagate init-db
    permagate stats
    permagate payment <tx_hash>
    permagate repo <owner> <name>
    permagate approval-status <repo_id> <subject_id>
    permagate logs [--owner OWNER] [--repo REPO] [--limit N]

Every command prints JSON. Exit code is 1 when the engine rejects the
request, 0 otherwise.
"""

import argparse
import json
import sys
from typing import Any, List, Optional

from .config import LOG_JSON, LOG_LEVEL, EngineConfig
from .engine import Engine
from .errors import EngineError, ErrorKind
from .logging_config import configure_logging
from .models import RepoRef


def emit(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def cmd_init_db(engine: Engine, args) -> int:
    emit({"initialized": str(engine.store.path)})
    return 0


def cmd_stats(engine: Engine, args) -> int:
    emit(engine.store.stats())
    return 0


def cmd_payment(engine: Engine, args) -> int:
    payment = engine.payments.get_payment(args.tx_hash)
    if payment is None:
        raise EngineError(ErrorKind.PAYMENT_NOT_FOUND, details={"tx_hash": args.tx_hash})
    emit({"payment": payment.to_dict()})
    return 0


def cmd_repo(engine: Engine, args) -> int:
    repo = engine.repos.find(args.owner, args.name)
    if repo is None:
        raise EngineError(ErrorKind.REPO_NOT_FOUND, details={"owner": args.owner, "name": args.name})
    emit({"repo": repo.to_dict()})
    return 0


def cmd_approval_status(engine: Engine, args) -> int:
    view = engine.approvals.status(RepoRef(repo_id=args.repo_id), args.subject_id)
    emit(view.to_dict())
    return 0


def cmd_logs(engine: Engine, args) -> int:
    pushes = engine.pushes.list_pushes(args.owner, args.repo, limit=args.limit)
    emit({"logs": [p.to_dict() for p in pushes]})
    return 0


COMMANDS = {
    "init-db": cmd_init_db,
    "stats": cmd_stats,
    "payment": cmd_payment,
    "repo": cmd_repo,
    "approval-status": cmd_approval_status,
    "logs": cmd_logs,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="permagate",
        description="Permagate admin CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  permagate init-db
  permagate --db /var/lib/permagate.db stats
  permagate payment 5h3k...tx
  permagate repo alice acme
  permagate approval-status <repo_id> <push_tx>
  permagate logs --owner alice --repo acme
        """
    )
    parser.add_argument("--db", help="Database path (default: PERMAGATE_DB_PATH)")
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Log level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("init-db", help="Create the database schema")
    subparsers.add_parser("stats", help="Row counts per table")

    payment_parser = subparsers.add_parser("payment", help="Show a recorded payment")
    payment_parser.add_argument("tx_hash", help="Ledger transaction hash")

    repo_parser = subparsers.add_parser("repo", help="Show a repository")
    repo_parser.add_argument("owner", help="Owner identity")
    repo_parser.add_argument("name", help="Repository name")

    status_parser = subparsers.add_parser("approval-status", help="Show an approval request")
    status_parser.add_argument("repo_id", help="Repository id")
    status_parser.add_argument("subject_id", help="Subject id (push transaction id)")

    logs_parser = subparsers.add_parser("logs", help="List pushes, newest first")
    logs_parser.add_argument("--owner", help="Filter by owner")
    logs_parser.add_argument("--repo", help="Filter by repository name")
    logs_parser.add_argument("--limit", type=int, help="Maximum entries")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(level=args.log_level, json_format=LOG_JSON)

    config = EngineConfig.from_env()
    if args.db:
        config.db_path = args.db

    with Engine(config) as engine:
        try:
            return COMMANDS[args.command](engine, args)
        except EngineError as e:
            print(json.dumps(e.to_dict(), sort_keys=True), file=sys.stderr)
            return 1


if __name__ == "__main__":
    sys.exit(main())
