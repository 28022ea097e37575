from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..database import get_db
from ..models import User
from ..schemas import MigrationRequest, MigrationResponse, MigrationSummaryView
from ..services.migration_service import migrate_chain_incentive_categories, migrate_incentive_categories

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/migrate", response_model=MigrationResponse)
def migrate(
    payload: MigrationRequest | None = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> MigrationResponse:
    dry_run = payload.dry_run if payload is not None else False
    incentives = migrate_incentive_categories(db, dry_run=dry_run)
    chain_incentives = migrate_chain_incentive_categories(db, dry_run=dry_run)
    return MigrationResponse(
        success=incentives.success and chain_incentives.success,
        dry_run=dry_run,
        incentives=MigrationSummaryView(**incentives.to_payload()),
        chain_incentives=MigrationSummaryView(**chain_incentives.to_payload()),
        logs=[*incentives.logs, *chain_incentives.logs],
    )
