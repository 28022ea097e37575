import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from patriot_thanks.config import get_settings
from patriot_thanks.database import Database
from patriot_thanks.models import AdminCode
from patriot_thanks.telemetry.logging_utils import configure_logging

logger = logging.getLogger("patriot_thanks.scripts.init_db")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the Patriot Thanks schema.")
    parser.add_argument("--database-url", help="SQLAlchemy URL; defaults to DATABASE_URL from settings")
    parser.add_argument("--admin-code", help="Optionally seed an admin access code")
    parser.add_argument("--admin-code-description", default="Initial admin access code")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.perf_log_level)

    database = Database(args.database_url or settings.database_url)
    database.create_all()
    logger.info("Schema created")

    if args.admin_code:
        with database.session() as session:
            if session.query(AdminCode).filter_by(code=args.admin_code).first() is None:
                session.add(AdminCode(code=args.admin_code, description=args.admin_code_description))
                session.commit()
                logger.info("Seeded admin access code")
            else:
                logger.info("Admin access code already present")
    database.dispose()
    print("Database initialized with Patriot Thanks schema.")


if __name__ == "__main__":
    main()
