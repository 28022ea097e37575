"""Backfill ``eligible_categories`` on records written before categories were lists."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..catalog import NOT_AVAILABLE_CATEGORY
from ..models import ChainIncentive, Incentive

logger = logging.getLogger(__name__)


@dataclass
class MigrationSummary:
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    errors: int = 0
    logs: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.errors == 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errors": self.errors,
            "success": self.success,
        }


def categories_for_type(legacy_type: str | None) -> list[str]:
    if legacy_type and legacy_type.strip():
        return [legacy_type.strip().upper()]
    return [NOT_AVAILABLE_CATEGORY]


def _migrate(db: Session, model: type[Incentive] | type[ChainIncentive], *, dry_run: bool) -> MigrationSummary:
    summary = MigrationSummary()
    records = db.execute(select(model)).scalars().all()
    summary.total = len(records)

    for record in records:
        if record.eligible_categories:
            summary.skipped += 1
            continue
        categories = categories_for_type(record.type)
        if dry_run:
            summary.logs.append(f"{record.id}: would set eligible_categories to {categories}")
            summary.migrated += 1
            continue
        try:
            with db.begin_nested():
                record.eligible_categories = categories
                db.flush()
        except SQLAlchemyError as exc:
            logger.exception("Category migration failed for %s %s", model.__name__, record.id)
            summary.logs.append(f"{record.id}: error {exc}")
            summary.errors += 1
            continue
        summary.logs.append(f"{record.id}: type {record.type!r} -> {categories}")
        summary.migrated += 1

    if not dry_run:
        db.commit()
    logger.info(
        "%s category migration: total=%s migrated=%s skipped=%s errors=%s%s",
        model.__name__,
        summary.total,
        summary.migrated,
        summary.skipped,
        summary.errors,
        " (dry run)" if dry_run else "",
    )
    return summary


def migrate_incentive_categories(db: Session, *, dry_run: bool = False) -> MigrationSummary:
    return _migrate(db, Incentive, dry_run=dry_run)


def migrate_chain_incentive_categories(db: Session, *, dry_run: bool = False) -> MigrationSummary:
    return _migrate(db, ChainIncentive, dry_run=dry_run)
