import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from patriot_thanks.config import get_settings
from patriot_thanks.database import Database
from patriot_thanks.services.migration_service import (
    MigrationSummary,
    migrate_chain_incentive_categories,
    migrate_incentive_categories,
)
from patriot_thanks.telemetry.logging_utils import configure_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill eligible_categories from the legacy incentive type.")
    parser.add_argument("--database-url", help="SQLAlchemy URL; defaults to DATABASE_URL from settings")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    parser.add_argument(
        "--target",
        choices=("incentives", "chains", "all"),
        default="all",
        help="Which incentive records to migrate",
    )
    parser.add_argument("--verbose", action="store_true", help="Print one line per record")
    return parser.parse_args(argv)


def _report(label: str, summary: MigrationSummary, verbose: bool) -> None:
    if verbose:
        for line in summary.logs:
            print(f"  {line}")
    print(
        f"{label}: total={summary.total} migrated={summary.migrated} "
        f"skipped={summary.skipped} errors={summary.errors}"
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.perf_log_level)
    database = Database(args.database_url or settings.database_url)

    failed = False
    with database.session() as session:
        if args.target in ("incentives", "all"):
            summary = migrate_incentive_categories(session, dry_run=args.dry_run)
            _report("incentives", summary, args.verbose)
            failed = failed or not summary.success
        if args.target in ("chains", "all"):
            summary = migrate_chain_incentive_categories(session, dry_run=args.dry_run)
            _report("chain incentives", summary, args.verbose)
            failed = failed or not summary.success
    database.dispose()

    if args.dry_run:
        print("Dry run: no changes written.")
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
