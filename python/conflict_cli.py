"""
Conflict Check command-line interface

Usage:
    conflict-check variants "ООО Quyosh"
    conflict-check normalize-id company "123 456 789"
    conflict-check search --client-name "Alisher Navoiy" --opponent-name "Quyosh MCHJ"
    conflict-check check 42 --record --checked-by 3

Results are printed as JSON. search and check read the case store named by
--database-url (or the DATABASE_URL / DB_* environment variables).
"""

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from config_manager import ConfigManager, get_config
from conflict_cache import ConflictCacheService
from conflict_service import ConflictCheckService
from database.connection import DatabaseSessionProvider, DatabaseSettings
from database.repositories import SqlCaseRepository
from identifiers import normalize_company_id, normalize_person_id
from log_utils import setup_logging
from transliterate import detect_script, generate_variants, normalize_party_name

logger = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="conflict-check",
        description="Detect conflicts of interest between legal cases"
    )
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--database-url", help="SQLAlchemy URL of the case store")
    subparsers = parser.add_subparsers(dest="command", required=True)

    variants = subparsers.add_parser("variants", help="Show spellings of a name")
    variants.add_argument("text")

    normalize = subparsers.add_parser("normalize-id", help="Normalize an INN or PINFL")
    normalize.add_argument("kind", choices=["company", "person"])
    normalize.add_argument("value")

    search = subparsers.add_parser("search", help="Check a prospective client/opponent pair")
    for party in ("client", "opponent"):
        search.add_argument(f"--{party}-name")
        search.add_argument(f"--{party}-type", choices=["legal", "individual"], default="legal")
        search.add_argument(f"--{party}-inn", help="Company identifier (legal parties)")
        search.add_argument(f"--{party}-pinfl", help="Person identifier (individuals)")
    search.add_argument("--lawyer-id", type=int, action="append", default=[], dest="lawyer_ids")

    check = subparsers.add_parser("check", help="Check a stored case")
    check.add_argument("case_id", type=int)
    check.add_argument("--record", action="store_true", help="Append the result to the check history")
    check.add_argument("--checked-by", type=int, help="User id stored with the recorded check")

    return parser.parse_args(argv)


def _provider(database_url: Optional[str]) -> DatabaseSessionProvider:
    settings = DatabaseSettings.from_env()
    if database_url:
        settings.url = database_url
    return DatabaseSessionProvider(settings=settings)


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _run_search(args: argparse.Namespace, config: ConfigManager) -> int:
    provider = _provider(args.database_url)
    try:
        with provider.session_scope() as session:
            service = ConflictCheckService(
                SqlCaseRepository(session), config=config, cache=ConflictCacheService(config.cache)
            )
            report = service.search(
                client_name=args.client_name,
                client_type=args.client_type,
                client_company_id=args.client_inn,
                client_person_id=args.client_pinfl,
                opponent_name=args.opponent_name,
                opponent_type=args.opponent_type,
                opponent_company_id=args.opponent_inn,
                opponent_person_id=args.opponent_pinfl,
                lawyer_ids=args.lawyer_ids,
            )
    finally:
        provider.close()
    _print_json(report.to_dict())
    return 0


def _run_check(args: argparse.Namespace, config: ConfigManager) -> int:
    provider = _provider(args.database_url)
    try:
        with provider.session_scope() as session:
            repository = SqlCaseRepository(session)
            snapshot = repository.get_case_snapshot(args.case_id)
            if snapshot is None:
                logger.error("Case not found: %d", args.case_id)
                return 1
            service = ConflictCheckService(repository, config=config)
            report = service.check_conflicts(snapshot)
            if args.record:
                repository.record_check(args.case_id, report, checked_by=args.checked_by)
    finally:
        provider.close()
    payload = report.to_dict()
    payload['case_id'] = args.case_id
    _print_json(payload)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point"""
    args = _parse_args(list(argv) if argv is not None else sys.argv[1:])
    config = get_config(args.config)
    setup_logging(config.logging)

    if args.command == "variants":
        _print_json({
            'name': args.text,
            'script': detect_script(args.text),
            'normalized': normalize_party_name(args.text, config.matching.strip_legal_forms),
            'variants': sorted(generate_variants(args.text)),
        })
        return 0

    if args.command == "normalize-id":
        normalize = normalize_company_id if args.kind == "company" else normalize_person_id
        normalized = normalize(args.value)
        _print_json({'kind': args.kind, 'value': args.value, 'normalized': normalized})
        return 0 if normalized else 1

    if args.command == "search":
        return _run_search(args, config)

    if args.command == "check":
        return _run_check(args, config)

    raise ValueError(f"Unsupported command: {args.command}")


if __name__ == "__main__":
    sys.exit(main())
